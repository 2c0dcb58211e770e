"""Deterministic pattern extractor used when the completion backend is unavailable.

Only a handful of well-known fields are covered. Sections are searched in
context order (email first) and the first match wins.
"""

import re
from typing import Dict, Iterable, List, Optional, Tuple

from submission_intake.services.extraction.context_builder import EVIDENCE_RADIUS, ExtractionContext
from submission_intake.services.extraction.field_schema import FieldSpec
from submission_intake.services.extraction.models import FieldExtractionRecord
from submission_intake.utils.logging import get_logger
from submission_intake.utils.value_parsing import normalize_date_string, parse_number

LOGGER = get_logger(__name__)

_LINE_VALUE = r"\s*[:\-]\s*([^\n\r]{2,120})"
_DATE_VALUE = (
    r"\s*[:\-]?\s*("
    r"\d{4}-\d{1,2}-\d{1,2}"
    r"|\d{1,2}[/\-.]\d{1,2}[/\-.]\d{2,4}"
    r"|[A-Z][a-z]{2,8}\.?\s+\d{1,2},?\s+\d{4}"
    r")"
)
_AMOUNT = r"(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d+(?:\.\d+)?)"

# (path, patterns, kind)
FALLBACK_RULES: Tuple[Tuple[str, Tuple[str, ...], str], ...] = (
    (
        "submission.namedInsured",
        (r"(?:named\s+insured|insured\s+name|applicant\s+name|company\s+name)" + _LINE_VALUE,),
        "text",
    ),
    (
        "submission.carrierName",
        (r"(?<!prior\s)(?:carrier|insurance\s+company|insurer)" + _LINE_VALUE,),
        "text",
    ),
    (
        "submission.brokerName",
        (r"(?:broker|agent|producer)(?:\s+name)?" + _LINE_VALUE,),
        "text",
    ),
    (
        "submission.effectiveDate",
        (r"(?:effective\s+date|policy\s+start|eff\.?\s+date|proposed\s+effective)" + _DATE_VALUE,),
        "date",
    ),
    (
        "submission.expirationDate",
        (r"(?:expiration\s+date|expiry(?:\s+date)?|policy\s+end|exp\.?\s+date)" + _DATE_VALUE,),
        "date",
    ),
    (
        "locations[0].buildings[0].buildingSqFt",
        (_AMOUNT + r"\s*(?:sq\.?\s*ft\.?|square\s+feet|sf\b)",),
        "number",
    ),
    (
        "coverage.buildingLimit",
        (
            r"\$\s*" + _AMOUNT + r"\s*(?:building\s+limit|coverage\s+limit)",
            r"building\s+limit\s*[:\-]?\s*\$?\s*" + _AMOUNT,
        ),
        "number",
    ),
)


class FallbackExtractor:
    """Regex extraction of a few identity, date and limit fields."""

    def __init__(self, rules=FALLBACK_RULES):
        self.rules = rules

    def extract(self, context: ExtractionContext, specs: Iterable[FieldSpec]) -> Dict[str, FieldExtractionRecord]:
        """Return records for the covered fields that matched, keyed by path."""
        wanted = {spec.path: spec for spec in specs}
        found: Dict[str, FieldExtractionRecord] = {}

        for path, patterns, kind in self.rules:
            spec = wanted.get(path)
            if spec is None:
                continue
            hit = self._search(context, patterns)
            if hit is None:
                continue

            label, raw_value, snippet = hit
            value = self._coerce(raw_value, kind)
            if value is None:
                continue
            found[path] = FieldExtractionRecord(
                field_path=path,
                field_name=spec.name,
                field_value=value,
                source=label,
                evidence_snippet=snippet,
                reasoning=f"Deterministic fallback: pattern match in {label}",
            )

        LOGGER.info(f"Fallback extractor matched {len(found)} field(s)", extra={"paths": list(found)})
        return found

    @staticmethod
    def _search(context: ExtractionContext, patterns: Iterable[str]) -> Optional[Tuple[str, str, str]]:
        for label, text in context.sections.items():
            for pattern in patterns:
                match = re.search(pattern, text, re.IGNORECASE)
                if match:
                    start, end = match.span(1)
                    snippet = (
                        text[max(start - EVIDENCE_RADIUS, 0):start]
                        + "<mark>" + text[start:end] + "</mark>"
                        + text[end:end + EVIDENCE_RADIUS]
                    )
                    return label, match.group(1).strip(), snippet
        return None

    @staticmethod
    def _coerce(raw_value: str, kind: str):
        if kind == "number":
            number = parse_number(raw_value)
            if number is None:
                return None
            return int(number) if number.is_integer() else number
        if kind == "date":
            return normalize_date_string(raw_value)
        return raw_value.strip(" \t:-,;") or None


def merge_fallback(
    records: List[FieldExtractionRecord],
    fallback: Dict[str, FieldExtractionRecord],
    paths: Optional[Iterable[str]] = None,
) -> List[FieldExtractionRecord]:
    """Replace null records (optionally limited to ``paths``) with fallback hits."""
    allowed = set(paths) if paths is not None else None
    merged = []
    for record in records:
        replacement = fallback.get(record.field_path)
        eligible = allowed is None or record.field_path in allowed
        if replacement is not None and record.field_value is None and eligible:
            merged.append(replacement)
        else:
            merged.append(record)
    return merged
