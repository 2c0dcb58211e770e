"""Shared extraction context for one message.

The email and each document type are rendered as labelled sections. The
section label doubles as the ``source`` value a field record reports.
"""

import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from submission_intake.services.classification.document_classifier import DOCUMENT_TYPES
from submission_intake.services.extraction.models import EmailContent

EMAIL_SECTION = "email_body"
UNKNOWN_SOURCE = "other"
EVIDENCE_RADIUS = 200


@dataclass(frozen=True)
class ExtractionContext:
    """Ordered ``label -> text`` sections and their rendered form."""

    sections: Dict[str, str]
    rendered: str

    @property
    def labels(self) -> List[str]:
        return list(self.sections)

    def normalize_source(self, source: Optional[str]) -> str:
        """Map a model-reported source onto a known label, else ``other``."""
        if not source:
            return UNKNOWN_SOURCE
        candidate = re.sub(r"[\s\-]+", "_", str(source).strip().lower())
        candidate = candidate.replace("_documents", "").replace("_document", "")
        if candidate in ("email", "body", "email_header"):
            candidate = EMAIL_SECTION
        return candidate if candidate in self.sections else UNKNOWN_SOURCE


def truncate_section(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    omitted = len(text) - max_chars
    return f"{text[:max_chars]}\n[... truncated {omitted} characters ...]"


def render_email(email: EmailContent) -> str:
    lines = [
        f"From: {email.from_address}",
        f"To: {', '.join(email.to_addresses)}" if email.to_addresses else None,
        f"Subject: {email.subject}",
        f"Date: {email.received_at.isoformat()}" if email.received_at else None,
        "",
        email.body or "",
    ]
    return "\n".join(line for line in lines if line is not None)


def build_context(
    email: EmailContent,
    document_texts: Dict[str, str],
    max_chars: int = 200_000,
) -> ExtractionContext:
    """Build the labelled context shared by every field request.

    Args:
        email: Realized email
        document_texts: Pre-rendered text per document type
        max_chars: Per-section bound; longer sections keep a truncation marker
    """
    sections: Dict[str, str] = {EMAIL_SECTION: truncate_section(render_email(email), max_chars)}

    ordered = [t for t in DOCUMENT_TYPES if t in document_texts]
    ordered += [t for t in document_texts if t not in ordered]
    for document_type in ordered:
        text = document_texts.get(document_type) or ""
        if text.strip():
            sections[document_type] = truncate_section(text, max_chars)

    rendered = "\n\n".join(f"=== SECTION: {label} ===\n{text}" for label, text in sections.items())
    return ExtractionContext(sections=sections, rendered=rendered)


def find_evidence(context: ExtractionContext, source: str, value: Any) -> Optional[str]:
    """Locate ``value`` in a section and return it with surrounding text.

    The match is wrapped in ``<mark>`` tags and padded with up to
    ``EVIDENCE_RADIUS`` characters either side.
    """
    if value is None or isinstance(value, (dict, list)):
        return None
    needle = str(value).strip()
    if not needle:
        return None

    candidates = [source] if source in context.sections else []
    candidates += [label for label in context.sections if label not in candidates]
    for label in candidates:
        text = context.sections[label]
        index = text.lower().find(needle.lower())
        if index < 0:
            continue
        start = max(index - EVIDENCE_RADIUS, 0)
        end = min(index + len(needle) + EVIDENCE_RADIUS, len(text))
        return (
            text[start:index]
            + "<mark>"
            + text[index:index + len(needle)]
            + "</mark>"
            + text[index + len(needle):end]
        )
    return None
