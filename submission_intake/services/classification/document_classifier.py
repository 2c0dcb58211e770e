"""Attachment document-type classifier.

Maps each attachment to one of the supported document types using only its
filename and declared content type. Rules are evaluated in a fixed priority
order; the first match wins:

1. payroll
2. questionnaire / application (ACORD forms count as applications)
3. statement of values (sov)
4. loss run (checked before generic spreadsheets, since carriers usually
   send loss runs as Excel workbooks)
5. any other spreadsheet -> schedule
6. supplemental / additional / misc
7. other
"""

import re
from typing import Optional, Sequence, Tuple

from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

DOCUMENT_TYPES = (
    "sov",
    "loss_run",
    "schedule",
    "supplemental",
    "payroll",
    "questionnaire",
    "application",
    "other",
)

PAYROLL_KEYWORDS = ("payroll", "wage report", "wages", "remuneration", "employee census")

QUESTIONNAIRE_KEYWORDS = ("questionnaire", "survey form")

APPLICATION_PATTERNS = (
    r"(?<![a-z])acord(?![a-z])",
    r"(?<![a-z])acord\d+",
    r"(?<![a-z])app(?:lication)?s?(?![a-z])",
)

SOV_PATTERNS = (
    r"(?<![a-z])sovs?(?![a-z])",
    r"(?<![a-z])sov\d+",
    r"statement ?of ?values?",
    r"schedule of values",
)

LOSS_RUN_KEYWORDS = (
    "loss run",
    "lossrun",
    "loss history",
    "loss histories",
    "losshistory",
    "loss report",
    "loss summary",
    "loss experience",
    "loss listing",
    "loss detail",
    "losses",
    "claims history",
    "claim history",
    "claims experience",
    "claims report",
    "claims summary",
    "claims listing",
    "claims detail",
    "claim report",
    "currently valued",
    "valued loss",
    "lr report",
)

SPREADSHEET_CONTENT_TYPES = ("excel", "spreadsheet", "csv", "opendocument.spreadsheet")
SPREADSHEET_EXTENSIONS = (".xlsx", ".xlsm", ".xls", ".csv", ".ods")

SUPPLEMENTAL_KEYWORDS = ("supplemental", "supplement", "additional", "addl", "misc", "miscellaneous")


def normalize_filename(filename: str) -> Tuple[str, str]:
    """Lower-case a filename and return (spaced, compact) variants.

    ``WC_LossRuns-2023.xlsx`` becomes ``("wc lossruns 2023 xlsx",
    "wclossruns2023xlsx")``.
    """
    lowered = (filename or "").lower()
    spaced = re.sub(r"[\s_\-.()\[\]]+", " ", lowered).strip()
    compact = spaced.replace(" ", "")
    return spaced, compact


def _has_keyword(spaced: str, compact: str, keywords: Sequence[str]) -> bool:
    return any(k in spaced or k.replace(" ", "") in compact for k in keywords)


def _has_pattern(spaced: str, patterns: Sequence[str]) -> bool:
    return any(re.search(p, spaced) for p in patterns)


def is_spreadsheet(filename: str, content_type: Optional[str]) -> bool:
    content_type = (content_type or "").lower()
    if any(marker in content_type for marker in SPREADSHEET_CONTENT_TYPES):
        return True
    return (filename or "").lower().endswith(SPREADSHEET_EXTENSIONS)


class DocumentClassifier:
    """Filename/content-type heuristics for attachment types."""

    def __init__(self):
        self.logger = LOGGER

    def classify(self, filename: str, content_type: Optional[str] = None) -> str:
        """Return the document type of one attachment."""
        spaced, compact = normalize_filename(filename)

        if _has_keyword(spaced, compact, PAYROLL_KEYWORDS):
            return "payroll"
        if _has_keyword(spaced, compact, QUESTIONNAIRE_KEYWORDS):
            return "questionnaire"
        if _has_pattern(spaced, APPLICATION_PATTERNS):
            return "application"
        if _has_pattern(spaced, SOV_PATTERNS):
            return "sov"
        if _has_keyword(spaced, compact, LOSS_RUN_KEYWORDS):
            return "loss_run"
        if is_spreadsheet(filename, content_type):
            return "schedule"
        if _has_keyword(spaced, compact, SUPPLEMENTAL_KEYWORDS):
            return "supplemental"
        return "other"

    def classify_attachments(self, attachments) -> dict:
        """Classify ORM attachments; returns ``{attachment.id: document_type}``."""
        document_types = {}
        for attachment in attachments:
            document_type = self.classify(attachment.filename, attachment.content_type)
            document_types[attachment.id] = document_type
            self.logger.debug(
                f"Classified {attachment.filename} as {document_type}",
                extra={"content_type": attachment.content_type},
            )
        return document_types
