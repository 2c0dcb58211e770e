"""Rule-based submission classifier.

Decides whether an inbound email is a commercial-property submission from
its subject, body and attachment signals. Rules are checked in a fixed
order and the first one that fires wins; the result is fully determined by
the inputs.
"""

import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from submission_intake.services.classification.document_classifier import normalize_filename
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

DOCUMENT_CONTENT_TYPES = ("pdf", "excel", "spreadsheet", "word", "msword", "officedocument", "csv")
DOCUMENT_EXTENSIONS = (".pdf", ".xlsx", ".xlsm", ".xls", ".csv", ".doc", ".docx")

INSURANCE_FILENAME_KEYWORDS = (
    "acord",
    "sov",
    "statement of values",
    "loss run",
    "lossrun",
    "loss history",
    "property",
    "insurance",
    "submission",
    "application",
    "quote",
    "coverage",
    "schedule",
    "questionnaire",
    "supplemental",
    "payroll",
)

SUBMISSION_KEYWORDS = (
    "submission",
    "new business",
    "new-business",
    "bind",
    "quote",
    "quotation",
    "renewal",
    "indication",
    "commercial property",
    "property",
    "insurance application",
    "underwriting",
    "coverage",
    "policy",
    "premium",
)

SUBMISSION_SUBJECT_PATTERNS = (
    r"\bnew\s+(?:\w+\s+){0,2}submission\b",
    r"\bproperty\s+submission\b",
    r"\bsubmission\s*[-–—:]",
    r"\bsubmission\s+for\b",
)

RENEWAL_PATTERN = re.compile(r"\brenew(?:al|als|ed|ing)?\b")
ENDORSEMENT_KEYWORDS = ("endorsement", "policy change", "mid-term change")
NEW_BUSINESS_KEYWORDS = ("new business", "new-business", "new submission", "new property submission", "new account")


@dataclass
class SubmissionClassification:
    """Outcome of classifying one email."""

    is_submission: bool
    reason: str
    submission_type: Optional[str] = None
    matched_signals: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_submission": self.is_submission,
            "submission_type": self.submission_type,
            "reason": self.reason,
            "matched_signals": list(self.matched_signals),
        }


def is_document_attachment(filename: str, content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    if any(marker in content_type for marker in DOCUMENT_CONTENT_TYPES):
        return True
    return (filename or "").lower().endswith(DOCUMENT_EXTENSIONS)


def has_insurance_filename(filename: str) -> bool:
    spaced, compact = normalize_filename(filename)
    return any(k in spaced or k.replace(" ", "") in compact for k in INSURANCE_FILENAME_KEYWORDS)


class SubmissionClassifier:
    """Keyword and attachment heuristics; no learned model."""

    def __init__(self):
        self.logger = LOGGER

    def classify(
        self,
        subject: str,
        body: str,
        attachments: Sequence = (),
    ) -> SubmissionClassification:
        """Classify an email.

        Args:
            subject: Email subject
            body: Plain-text email body
            attachments: Objects with ``filename`` and ``content_type``

        Returns:
            SubmissionClassification with the first rule that fired, or the
            list of absent signals when none did
        """
        subject = subject or ""
        text = f"{subject}\n{body or ''}".lower()
        attachments = list(attachments or [])

        insurance_documents = [
            a.filename
            for a in attachments
            if is_document_attachment(a.filename, a.content_type) and has_insurance_filename(a.filename)
        ]
        keywords = [k for k in SUBMISSION_KEYWORDS if k in text]
        subject_pattern = next(
            (p for p in SUBMISSION_SUBJECT_PATTERNS if re.search(p, subject.lower())), None
        )

        signals: List[str] = []
        if "submission" in text:
            signals.append('word "submission" present')
        elif insurance_documents:
            signals.append(f"insurance documents attached: {', '.join(insurance_documents)}")
        elif keywords and attachments:
            signals.append(f"submission keywords with attachments: {', '.join(keywords)}")
        elif keywords:
            signals.append(f"submission keywords without attachments: {', '.join(keywords)}")
        elif subject_pattern:
            signals.append("submission-style subject")

        if not signals:
            absent = ['word "submission" not found in subject/body']
            if not attachments:
                absent.append("no attachments at all")
            elif not insurance_documents:
                absent.append("no relevant attachments")
            absent.append("no submission keywords in subject/body")
            reason = "; ".join(absent)
            self.logger.info(f"Not a submission: {reason}", extra={"subject": subject[:200]})
            return SubmissionClassification(is_submission=False, reason=reason)

        submission_type = self.resolve_submission_type(subject, text)
        reason = f"matched submission criteria: {signals[0]}"
        self.logger.info(
            f"Classified as submission ({submission_type})",
            extra={"subject": subject[:200], "signal": signals[0]},
        )
        return SubmissionClassification(
            is_submission=True,
            reason=reason,
            submission_type=submission_type,
            matched_signals=signals + [f"keyword: {k}" for k in keywords],
        )

    @staticmethod
    def resolve_submission_type(subject: str, text: str) -> str:
        """renewal, endorsement, new_business or other."""
        if RENEWAL_PATTERN.search(text):
            return "renewal"
        if any(k in text for k in ENDORSEMENT_KEYWORDS):
            return "endorsement"
        lowered_subject = (subject or "").lower()
        if any(k in text for k in NEW_BUSINESS_KEYWORDS) or (
            "new" in lowered_subject and "submission" in lowered_subject
        ):
            return "new_business"
        return "other"
