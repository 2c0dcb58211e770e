"""Turns the merged extraction result into reply-ready artifacts."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from submission_intake.services.extraction.models import FieldExtractionRecord
from submission_intake.services.qa.submission_qa import QAFlags
from submission_intake.utils.logging import get_logger
from submission_intake.utils.value_parsing import parse_number

LOGGER = get_logger(__name__)


@dataclass
class PackagedResponse:
    summary: str
    table: str
    json: str

    def to_dict(self) -> Dict[str, str]:
        return {"summary": self.summary, "table": self.table, "json": self.json}


class ResponsePackager:
    """Builds a summary line, a text table of found fields and the JSON result."""

    def package(
        self,
        data: Dict[str, Any],
        qa_flags: QAFlags,
        records: Sequence[FieldExtractionRecord],
    ) -> PackagedResponse:
        return PackagedResponse(
            summary=self.summarize(data, qa_flags, records),
            table=self.render_table(records),
            json=json.dumps(data, indent=2, default=str),
        )

    @staticmethod
    def summarize(data: Dict[str, Any], qa_flags: QAFlags, records: Sequence[FieldExtractionRecord]) -> str:
        submission = data.get("submission") or {}
        locations = [loc for loc in (data.get("locations") or []) if isinstance(loc, dict)]
        insured = submission.get("namedInsured") or "Unknown insured"

        parts: List[str] = [f"Submission for {insured}"]
        if submission.get("effectiveDate"):
            parts.append(f"effective {submission['effectiveDate']}")

        limit = parse_number((data.get("coverage") or {}).get("buildingLimit"))
        detail = f"{len(locations)} location(s)"
        if limit is not None:
            detail += f", building limit ${limit:,.0f}"

        found = sum(1 for r in records if r.field_value is not None)
        return (
            f"{' '.join(parts)}: {detail}. "
            f"Extracted {found} of {len(records)} fields; "
            f"{len(qa_flags.warnings)} QA warning(s), {len(qa_flags.confidence_flags)} confidence flag(s)."
        )

    @staticmethod
    def render_table(records: Sequence[FieldExtractionRecord]) -> str:
        rows = [(r.field_path, str(r.field_value), r.source) for r in records if r.field_value is not None]
        if not rows:
            return "No fields extracted."
        width = max(len(path) for path, _, _ in rows)
        return "\n".join(f"{path.ljust(width)}  {value}  [{source}]" for path, value, source in rows)
