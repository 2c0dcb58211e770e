import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio

from submission_intake.api.v1.endpoints import email_intake
from submission_intake.core.database import get_async_session
from submission_intake.core.exceptions import MessageNotFoundError, ReplyDispatchError
from submission_intake.dependencies import get_ingest_service, get_mailbox_poller, get_orchestrator
from submission_intake.main import app
from submission_intake.services.intake_orchestrator import ProcessResult
from submission_intake.services.mailbox_poller import PollResult

ENDPOINTS = "submission_intake.api.v1.endpoints"


def make_message(**overrides):
    fields = dict(
        id=uuid4(),
        message_id="imap-101",
        from_address="broker@brokerage.example",
        subject="New property submission - Acme",
        received_at=datetime(2025, 3, 3, 9, 15, tzinfo=timezone.utc),
        processing_status="done",
        is_submission=True,
        submission_type="new_business",
        submission_number=3,
        error_message=None,
        reply_sent_at=None,
        attachments=[
            SimpleNamespace(id=uuid4(), filename="acord125.pdf", content_type="application/pdf", size_bytes=2048, document_type="acord"),
        ],
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


@pytest.fixture
def orchestrator():
    return SimpleNamespace(process_message=AsyncMock(return_value=ProcessResult(processed=True, submission_number=3)))


@pytest.fixture
def poller():
    return SimpleNamespace(poll_once=AsyncMock(return_value=PollResult(new_emails_found=2)))


@pytest.fixture
def ingest():
    return SimpleNamespace(store_raw_message=AsyncMock())


@pytest.fixture
def messages():
    return SimpleNamespace(
        reset=AsyncMock(),
        list_recent=AsyncMock(return_value=[]),
        list_submissions=AsyncMock(return_value=[]),
        get_by_message_id=AsyncMock(return_value=None),
    )


@pytest.fixture
def extractions():
    return SimpleNamespace(get_by_email_message_id=AsyncMock(return_value=None))


@pytest_asyncio.fixture
async def client(orchestrator, poller, ingest, messages, extractions):
    async def session_override():
        yield SimpleNamespace()

    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_mailbox_poller] = lambda: poller
    app.dependency_overrides[get_ingest_service] = lambda: ingest
    app.dependency_overrides[get_async_session] = session_override

    with patch(f"{ENDPOINTS}.email_intake.EmailMessageRepository", new=lambda session: messages), \
            patch(f"{ENDPOINTS}.email_intake.ExtractionRepository", new=lambda session: extractions):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            yield http

    app.dependency_overrides.clear()


class TestProcess:

    @pytest.mark.asyncio
    async def test_processed(self, client, orchestrator):
        response = await client.post("/api/v1/email-intake/messages/imap-101/process")

        assert response.status_code == 200
        assert response.json() == {
            "processed": True,
            "reason": None,
            "detail": None,
            "submission_number": 3,
        }
        orchestrator.process_message.assert_awaited_once_with("imap-101")

    @pytest.mark.asyncio
    async def test_idempotent_no_op(self, client, orchestrator):
        orchestrator.process_message.return_value = ProcessResult(processed=False, reason="already_processed")

        response = await client.post("/api/v1/email-intake/messages/imap-101/process")

        assert response.status_code == 200
        assert response.json()["reason"] == "already_processed"

    @pytest.mark.asyncio
    async def test_unknown_message(self, client, orchestrator):
        orchestrator.process_message.side_effect = MessageNotFoundError("Email message imap-9 not found")

        response = await client.post("/api/v1/email-intake/messages/imap-9/process")

        assert response.status_code == 404
        assert response.json()["detail"] == "Email message imap-9 not found"

    @pytest.mark.asyncio
    async def test_pipeline_failure(self, client, orchestrator):
        orchestrator.process_message.side_effect = ReplyDispatchError("Reply dispatch failed: 554")

        response = await client.post("/api/v1/email-intake/messages/imap-101/process")

        assert response.status_code == 500
        assert "554" in response.json()["detail"]


class TestPollAndUpload:

    @pytest.mark.asyncio
    async def test_poll(self, client):
        response = await client.post("/api/v1/email-intake/poll")
        assert response.status_code == 200
        assert response.json() == {"new_emails_found": 2, "processed": 0}

    @pytest.mark.asyncio
    async def test_upload_stores_and_processes_in_background(self, client, ingest, orchestrator):
        raw = b"From: broker@brokerage.example\r\nSubject: submission\r\n\r\nSee attached.\r\n"

        response = await client.post(
            "/api/v1/email-intake/upload",
            files={"file": ("submission.eml", raw, "message/rfc822")},
        )

        assert response.status_code == 202
        body = response.json()
        assert body["queued"] is True
        assert body["message_id"].startswith("eml-")
        ingest.store_raw_message.assert_awaited_once_with(raw, body["message_id"])

        await asyncio.gather(*list(email_intake._background_tasks))
        orchestrator.process_message.assert_awaited_once_with(body["message_id"])

    @pytest.mark.asyncio
    async def test_empty_upload(self, client, ingest):
        response = await client.post(
            "/api/v1/email-intake/upload",
            files={"file": ("empty.eml", b"", "message/rfc822")},
        )
        assert response.status_code == 400
        ingest.store_raw_message.assert_not_awaited()


class TestMessages:

    @pytest.mark.asyncio
    async def test_reset(self, client, messages):
        messages.reset.return_value = make_message(processing_status="pending", submission_number=None)

        response = await client.post("/api/v1/email-intake/messages/imap-101/reset")

        assert response.status_code == 200
        assert response.json()["processing_status"] == "pending"
        messages.reset.assert_awaited_once_with("imap-101")

    @pytest.mark.asyncio
    async def test_reset_unknown(self, client, messages):
        messages.reset.side_effect = MessageNotFoundError("Email message imap-9 not found")
        response = await client.post("/api/v1/email-intake/messages/imap-9/reset")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list_submissions(self, client, messages):
        messages.list_submissions.return_value = [make_message()]

        response = await client.get("/api/v1/email-intake/submissions", params={"limit": 10})

        assert response.status_code == 200
        [item] = response.json()
        assert item["submission_number"] == 3
        assert item["attachments"][0]["document_type"] == "acord"
        messages.list_submissions.assert_awaited_once_with(limit=10)

    @pytest.mark.asyncio
    async def test_submission_detail(self, client, messages, extractions):
        message = make_message()
        messages.get_by_message_id.return_value = message
        extractions.get_by_email_message_id.return_value = SimpleNamespace(
            data={"submission": {"namedInsured": "Acme"}},
            qa_flags={"warnings": [], "confidenceFlags": []},
            summary_text="Submission for Acme",
            field_extractions=[
                SimpleNamespace(
                    field_path="submission.namedInsured",
                    field_name="namedInsured",
                    field_value="Acme",
                    source="acord",
                    evidence_snippet="...<mark>Acme</mark>...",
                    reasoning="Named Insured box",
                )
            ],
        )

        response = await client.get("/api/v1/email-intake/submissions/imap-101")

        assert response.status_code == 200
        body = response.json()
        assert body["message"]["message_id"] == "imap-101"
        assert body["extraction"]["field_extractions"][0]["source"] == "acord"
        extractions.get_by_email_message_id.assert_awaited_once_with(message.id)

    @pytest.mark.asyncio
    async def test_submission_detail_unknown(self, client):
        response = await client.get("/api/v1/email-intake/submissions/imap-9")
        assert response.status_code == 404


class TestFieldSchema:

    @pytest.mark.asyncio
    async def test_schema(self, client):
        response = await client.get("/api/v1/field-schema")

        assert response.status_code == 200
        body = response.json()
        paths = [field["path"] for field in body["fields"]]
        assert "submission.namedInsured" in paths
        assert isinstance(body["expected_shape"]["locations"], list)

    @pytest.mark.asyncio
    async def test_save_definitions(self, client):
        repository = SimpleNamespace(
            upsert_many=AsyncMock(return_value=1),
            list_definitions=AsyncMock(
                return_value=[SimpleNamespace(
                    field_name="namedInsured",
                    category="submission",
                    field_type="string",
                    business_description="Legal name",
                    extractor_logic=None,
                    where_to_look="application",
                    alternate_field_names=["applicant"],
                )]
            ),
        )

        with patch("submission_intake.services.field_definition_service.FieldDefinitionRepository", new=lambda session: repository):
            response = await client.put(
                "/api/v1/field-definitions",
                json=[{"field_name": "namedInsured", "where_to_look": "application"}],
            )

        assert response.status_code == 200
        assert response.json()[0]["alternate_field_names"] == ["applicant"]
        saved = repository.upsert_many.await_args.args[0]
        assert saved[0]["field_name"] == "namedInsured"


class TestHealth:

    @pytest.mark.asyncio
    async def test_health(self, client):
        with patch(f"{ENDPOINTS}.health.db_client") as db_client:
            db_client.health_check = AsyncMock(return_value={"status": "healthy"})
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "healthy"
        assert "X-Correlation-ID" in response.headers
