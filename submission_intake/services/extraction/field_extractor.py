"""Single-field extraction against the completion backend."""

import asyncio
import re
from typing import List, Optional

from submission_intake.core.exceptions import (
    LLMAuthenticationError,
    QuotaExceededError,
    RateLimitError,
)
from submission_intake.core.retry import RetryPolicy
from submission_intake.prompts.field_extraction import FIELD_EXTRACTION_PROMPT, NOT_PROVIDED
from submission_intake.services.extraction.context_builder import (
    UNKNOWN_SOURCE,
    ExtractionContext,
    find_evidence,
)
from submission_intake.services.extraction.field_schema import FieldSpec
from submission_intake.services.extraction.models import (
    FieldExtractionRecord,
    FieldGuidance,
    FieldOutcome,
)
from submission_intake.utils.json_parser import parse_json_safely
from submission_intake.utils.logging import get_logger
from submission_intake.utils.value_parsing import is_blank, normalize_date_string

LOGGER = get_logger(__name__)


def split_where_to_look(hint: Optional[str], labels: List[str]) -> List[str]:
    """Resolve a free-text hint ("sov, application") to known section labels."""
    if not hint:
        return []
    tokens = [re.sub(r"[\s\-]+", "_", t.strip().lower()) for t in re.split(r"[,;/|]", hint)]
    aliases = {"email": "email_body", "body": "email_body", "acord": "application"}
    resolved = []
    for token in tokens:
        token = aliases.get(token, token)
        if token in labels and token not in resolved:
            resolved.append(token)
    return resolved


def build_field_instructions(
    spec: FieldSpec,
    guidance: Optional[FieldGuidance],
    context: ExtractionContext,
) -> str:
    labels = context.labels
    priority = split_where_to_look(guidance.where_to_look if guidance else None, labels)
    remaining = [label for label in labels if label not in priority]
    return FIELD_EXTRACTION_PROMPT.format(
        field_path=spec.path,
        field_name=spec.name,
        field_type=spec.field_type,
        business_description=(guidance and guidance.business_description) or NOT_PROVIDED,
        extractor_logic=(guidance and guidance.extractor_logic) or NOT_PROVIDED,
        priority_sections=", ".join(priority) or "(no preference, search all)",
        remaining_sections=", ".join(remaining) or "(none)",
        allowed_sources=", ".join(labels + [UNKNOWN_SOURCE]),
    )


class FieldExtractor:
    """Issues one completion request per field, retrying on rate limits.

    Authentication and quota failures propagate; every other failure becomes
    a null record whose reasoning describes the error.
    """

    def __init__(
        self,
        llm_client,
        retry_policy: Optional[RetryPolicy] = None,
        structured_output: bool = True,
        sleep=asyncio.sleep,
    ):
        self.llm_client = llm_client
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=2.0)
        self.structured_output = structured_output
        self.sleep = sleep
        self.logger = LOGGER

    async def extract(
        self,
        spec: FieldSpec,
        guidance: Optional[FieldGuidance],
        context: ExtractionContext,
    ) -> FieldOutcome:
        instructions = build_field_instructions(spec, guidance, context)
        generation_config = {"temperature": 0.0}
        if self.structured_output:
            generation_config["response_mime_type"] = "application/json"

        async def call() -> str:
            return await self.llm_client.generate_content(
                contents=context.rendered,
                system_instruction=instructions,
                generation_config=generation_config,
            )

        def log_retry(attempt: int, error: BaseException, delay: float) -> None:
            self.logger.warning(
                f"Rate limited extracting {spec.path}; retry {attempt} in {delay:.1f}s",
                extra={"field_path": spec.path},
            )

        try:
            response_text = await self.retry_policy.run(
                call,
                retry_on=(RateLimitError,),
                give_up_on=(QuotaExceededError,),
                sleep=self.sleep,
                on_retry=log_retry,
            )
        except (LLMAuthenticationError, QuotaExceededError):
            raise
        except RateLimitError as e:
            return FieldOutcome(
                record=self._null_record(spec, f"Rate limit retries exhausted: {e}"),
                rate_limited=True,
            )
        except Exception as e:
            self.logger.warning(
                f"Extraction failed for {spec.path}: {e}",
                extra={"field_path": spec.path, "error_type": type(e).__name__},
            )
            return FieldOutcome(record=self._null_record(spec, f"Extraction error ({type(e).__name__}): {e}"))

        return FieldOutcome(record=self._parse_response(spec, response_text, context))

    def _parse_response(
        self,
        spec: FieldSpec,
        response_text: str,
        context: ExtractionContext,
    ) -> FieldExtractionRecord:
        payload = parse_json_safely(response_text)
        if not isinstance(payload, dict):
            return self._null_record(spec, f"Unparseable model response: {(response_text or '')[:200]}")

        value = payload.get("fieldValue")
        if is_blank(value):
            value = None
        elif isinstance(value, str):
            value = value.strip()
            if spec.field_type == "date":
                value = normalize_date_string(value)

        source = context.normalize_source(payload.get("source"))
        evidence = payload.get("evidenceSnippet")
        if is_blank(evidence):
            evidence = find_evidence(context, source, value) if value is not None else None

        reasoning = payload.get("reasoning")
        if value is None and is_blank(reasoning):
            reasoning = "Value not found in any section"

        return FieldExtractionRecord(
            field_path=spec.path,
            field_name=spec.name,
            field_value=value,
            source=source,
            evidence_snippet=evidence,
            reasoning=reasoning,
        )

    @staticmethod
    def _null_record(spec: FieldSpec, reasoning: str) -> FieldExtractionRecord:
        return FieldExtractionRecord(
            field_path=spec.path,
            field_name=spec.name,
            field_value=None,
            source=UNKNOWN_SOURCE,
            reasoning=reasoning,
        )
