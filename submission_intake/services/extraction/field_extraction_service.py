"""Field extraction engine.

Flattens the field schema, runs one completion request per field in
bounded concurrent batches, and merges the answers into a nested result by
field path. Every flattened field yields exactly one record.
"""

import asyncio
from typing import Dict, Iterable, List, Optional

from submission_intake.core.config import ExtractionSettings
from submission_intake.core.exceptions import QuotaExceededError
from submission_intake.core.retry import RetryPolicy
from submission_intake.services.extraction.batch_scheduler import BatchScheduler
from submission_intake.services.extraction.context_builder import (
    UNKNOWN_SOURCE,
    ExtractionContext,
    build_context,
)
from submission_intake.services.extraction.fallback_extractor import FallbackExtractor, merge_fallback
from submission_intake.services.extraction.field_extractor import FieldExtractor
from submission_intake.services.extraction.field_schema import FieldSchema, FieldSpec
from submission_intake.services.extraction.models import (
    EmailContent,
    ExtractionOutcome,
    FieldExtractionRecord,
    FieldGuidance,
    FieldOutcome,
)
from submission_intake.utils.field_path import set_by_path
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def merge_records(records: Iterable[FieldExtractionRecord]) -> Dict:
    """Write every record's value into a fresh nested dict at its path."""
    data: Dict = {}
    for record in records:
        set_by_path(data, record.field_path, record.field_value)
    return data


class FieldExtractionService:
    """Orchestrates context assembly, batched per-field calls and the merge."""

    def __init__(
        self,
        llm_client,
        schema: FieldSchema,
        settings: Optional[ExtractionSettings] = None,
        structured_output: bool = True,
        fallback: Optional[FallbackExtractor] = None,
        sleep=asyncio.sleep,
    ):
        self.settings = settings or ExtractionSettings()
        self.schema = schema
        self.fallback = fallback or FallbackExtractor()
        self.extractor = FieldExtractor(
            llm_client,
            retry_policy=RetryPolicy(
                max_attempts=self.settings.field_max_retries + 1,
                base_delay=self.settings.field_retry_base_delay,
                multiplier=2.0,
            ),
            structured_output=structured_output,
            sleep=sleep,
        )
        self.scheduler = BatchScheduler(
            batch_size=self.settings.batch_size,
            pause_seconds=self.settings.batch_pause_seconds,
            cooldown_seconds=self.settings.rate_limit_cooldown_seconds,
            sleep=sleep,
        )
        self.logger = LOGGER

    async def extract(
        self,
        email: EmailContent,
        document_texts: Dict[str, str],
        guidance: Iterable[FieldGuidance] = (),
    ) -> ExtractionOutcome:
        """Extract every schema field for one message.

        Args:
            email: Realized email
            document_texts: Rendered text per classified document type
            guidance: Field definitions, joined to fields by name

        Raises:
            LLMAuthenticationError: Backend rejected credentials; nothing is
                retried and no partial result is returned
        """
        specs = self.schema.flatten()
        context = build_context(email, document_texts, self.settings.context_max_chars)
        guidance_by_name = {g.field_name: g for g in guidance}

        self.logger.info(
            f"Extracting {len(specs)} fields",
            extra={"sections": context.labels, "context_chars": len(context.rendered)},
        )

        run = await self.scheduler.run(
            specs,
            lambda spec: self.extractor.extract(spec, guidance_by_name.get(spec.name), context),
            stop_on=(QuotaExceededError,),
        )

        if run.stopped_by is not None:
            self.logger.warning(
                f"Completion quota exhausted, using fallback extractor for unanswered fields: {run.stopped_by}",
                extra={"answered": len(run.completed), "total": len(specs)},
            )
            records = self._quota_records(specs, run.outcomes, context)
            return ExtractionOutcome(
                data=merge_records(records),
                records=records,
                used_fallback=True,
            )

        outcomes = run.outcomes
        records = [outcome.record for outcome in outcomes]
        rate_limited_paths = [o.record.field_path for o in outcomes if o.rate_limited]
        used_fallback = False
        if rate_limited_paths:
            records = merge_fallback(records, self.fallback.extract(context, specs), rate_limited_paths)
            used_fallback = True

        outcome = ExtractionOutcome(
            data=merge_records(records),
            records=records,
            used_fallback=used_fallback,
            rate_limited_paths=rate_limited_paths,
        )
        self.logger.info(
            f"Extraction complete: {outcome.found_count}/{len(records)} fields found",
            extra={"rate_limited": len(rate_limited_paths), "used_fallback": used_fallback},
        )
        return outcome

    def _quota_records(
        self,
        specs: List[FieldSpec],
        outcomes: List[Optional[FieldOutcome]],
        context: ExtractionContext,
    ) -> List[FieldExtractionRecord]:
        """Keep answered fields; fill the rest from fallback patterns or null."""
        matches = self.fallback.extract(context, specs)
        records = []
        for spec, outcome in zip(specs, outcomes):
            if outcome is not None:
                if outcome.rate_limited and outcome.record.field_value is None and spec.path in matches:
                    records.append(matches[spec.path])
                else:
                    records.append(outcome.record)
                continue
            records.append(
                matches.get(spec.path)
                or FieldExtractionRecord(
                    field_path=spec.path,
                    field_name=spec.name,
                    field_value=None,
                    source=UNKNOWN_SOURCE,
                    reasoning="Completion quota exhausted; fallback patterns found no value",
                )
            )
        return records
