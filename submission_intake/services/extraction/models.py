"""Data structures passed between the extraction stages."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class EmailContent:
    """The realized email an extraction run reads from."""

    from_address: str
    subject: str
    body: str
    to_addresses: tuple = ()
    received_at: Optional[datetime] = None


@dataclass(frozen=True)
class FieldGuidance:
    """Prompt metadata for one field, looked up by field name."""

    field_name: str
    business_description: Optional[str] = None
    extractor_logic: Optional[str] = None
    where_to_look: Optional[str] = None

    @classmethod
    def from_definition(cls, definition) -> "FieldGuidance":
        return cls(
            field_name=definition.field_name,
            business_description=definition.business_description,
            extractor_logic=definition.extractor_logic,
            where_to_look=definition.where_to_look,
        )


@dataclass
class FieldExtractionRecord:
    """Outcome for one schema leaf; a null value still carries diagnostics."""

    field_path: str
    field_name: str
    field_value: Any = None
    source: str = "other"
    evidence_snippet: Optional[str] = None
    reasoning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field_path": self.field_path,
            "field_name": self.field_name,
            "field_value": self.field_value,
            "source": self.source,
            "evidence_snippet": self.evidence_snippet,
            "reasoning": self.reasoning,
        }


@dataclass
class FieldOutcome:
    record: FieldExtractionRecord
    rate_limited: bool = False


@dataclass
class ExtractionOutcome:
    """Merged nested output plus one record per flattened field."""

    data: Dict[str, Any]
    records: List[FieldExtractionRecord]
    used_fallback: bool = False
    rate_limited_paths: List[str] = field(default_factory=list)

    @property
    def found_count(self) -> int:
        return sum(1 for r in self.records if r.field_value is not None)
