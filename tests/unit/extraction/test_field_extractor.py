import pytest
from unittest.mock import call

from submission_intake.core.exceptions import (
    APIClientError,
    LLMAuthenticationError,
    QuotaExceededError,
    RateLimitError,
)
from submission_intake.core.retry import RetryPolicy
from submission_intake.services.extraction.context_builder import build_context
from submission_intake.services.extraction.field_extractor import (
    FieldExtractor,
    build_field_instructions,
    split_where_to_look,
)
from submission_intake.services.extraction.field_schema import FieldSpec
from submission_intake.services.extraction.models import EmailContent, FieldGuidance

NAMED_INSURED = FieldSpec("submission.namedInsured", "namedInsured", "string")
EFFECTIVE_DATE = FieldSpec("submission.effectiveDate", "effectiveDate", "date")


@pytest.fixture
def context():
    email = EmailContent(
        from_address="broker@brokerage.example",
        subject="New submission - Acme Storage",
        body="Named Insured: Acme Storage LLC\nEffective Date: 04/01/2025",
    )
    return build_context(email, {"sov": "Loc 1, 100 Main St, Austin TX"})


def _extractor(client, sleep):
    return FieldExtractor(client, RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=2.0), sleep=sleep)


class TestFieldInstructions:

    def test_where_to_look_resolves_known_labels(self):
        labels = ["email_body", "sov", "application"]
        assert split_where_to_look("application, SOV, loss_run, email", labels) == ["application", "sov", "email_body"]
        assert split_where_to_look(None, labels) == []

    def test_instructions_name_the_field_and_sections(self, context):
        guidance = FieldGuidance(
            field_name="namedInsured",
            business_description="Legal name of the applicant.",
            where_to_look="sov",
        )
        text = build_field_instructions(NAMED_INSURED, guidance, context)

        assert "- Path: submission.namedInsured" in text
        assert "Legal name of the applicant." in text
        assert "First search these sections: sov" in text
        assert "search every remaining section: email_body" in text


class TestFieldExtractor:

    @pytest.mark.asyncio
    async def test_parses_value_source_and_evidence(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(
            answers={"submission.namedInsured": {"fieldValue": "Acme Storage LLC", "source": "email", "reasoning": "Stated"}}
        )
        outcome = await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)

        record = outcome.record
        assert outcome.rate_limited is False
        assert record.field_value == "Acme Storage LLC"
        assert record.source == "email_body"
        assert "<mark>Acme Storage LLC</mark>" in record.evidence_snippet

    @pytest.mark.asyncio
    async def test_dates_are_normalized(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(
            answers={"submission.effectiveDate": {"fieldValue": "04/01/2025", "source": "email_body"}}
        )
        outcome = await _extractor(client, no_sleep).extract(EFFECTIVE_DATE, None, context)
        assert outcome.record.field_value == "2025-04-01"

    @pytest.mark.asyncio
    async def test_blank_value_is_null_with_reasoning(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(answers={"submission.namedInsured": {"fieldValue": "N/A", "source": "sov"}})
        record = (await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)).record

        assert record.field_value is None
        assert record.source == "sov"
        assert record.reasoning == "Value not found in any section"

    @pytest.mark.asyncio
    async def test_rate_limit_retries_with_backoff(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(
            answers={"submission.namedInsured": {"fieldValue": "Acme Storage LLC", "source": "email_body"}},
            failures={"submission.namedInsured": [RateLimitError("429"), RateLimitError("429")]},
        )
        outcome = await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)

        assert outcome.record.field_value == "Acme Storage LLC"
        assert client.calls["submission.namedInsured"] == 3
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]

    @pytest.mark.asyncio
    async def test_server_suggested_delay_wins(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(
            failures={"submission.namedInsured": [RateLimitError("429", retry_after=7)]},
        )
        await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)
        assert no_sleep.await_args_list == [call(7.0)]

    @pytest.mark.asyncio
    async def test_exhausted_rate_limit_yields_flagged_null(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(failures={"submission.namedInsured": [RateLimitError("429")] * 4})
        outcome = await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)

        assert outcome.rate_limited is True
        assert outcome.record.field_value is None
        assert outcome.record.source == "other"
        assert outcome.record.reasoning.startswith("Rate limit retries exhausted")
        assert client.calls["submission.namedInsured"] == 4
        assert no_sleep.await_args_list == [call(1.0), call(2.0), call(4.0)]

    @pytest.mark.asyncio
    async def test_other_errors_become_null_records(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(default_error=APIClientError("HTTP 400 from backend"))
        outcome = await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)

        assert outcome.rate_limited is False
        assert outcome.record.field_value is None
        assert outcome.record.reasoning.startswith("Extraction error (APIClientError)")
        no_sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unparseable_response(self, context, fake_completion_client, no_sleep):
        client = fake_completion_client(answers={"submission.namedInsured": "I cannot help with that."})
        record = (await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)).record

        assert record.field_value is None
        assert record.reasoning.startswith("Unparseable model response")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [LLMAuthenticationError("401"), QuotaExceededError("insufficient_quota")])
    async def test_auth_and_quota_errors_propagate(self, context, fake_completion_client, no_sleep, error):
        client = fake_completion_client(default_error=error)
        with pytest.raises(type(error)):
            await _extractor(client, no_sleep).extract(NAMED_INSURED, None, context)
        assert client.calls["submission.namedInsured"] == 1
