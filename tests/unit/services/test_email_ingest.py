from contextlib import asynccontextmanager
from email.message import EmailMessage as MimeMessage
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from submission_intake.services.email_ingest_service import (
    EmailIngestService,
    html_to_text,
    parse_raw_email,
    upload_message_id,
)

MODULE = "submission_intake.services.email_ingest_service"


def build_raw_email(html=False, references=None):
    message = MimeMessage()
    message["From"] = "Jane Broker <Jane@Brokerage.example>"
    message["To"] = "intake@agency.example, underwriting@agency.example"
    message["Cc"] = "assistant@brokerage.example"
    message["Subject"] = "New property submission - Acme Holdings"
    message["Message-ID"] = "<msg-2@brokerage.example>"
    message["Date"] = "Mon, 03 Mar 2025 09:15:00 +0000"
    if references:
        message["References"] = references
    if html:
        message.set_content("<html><body><p>Please quote.</p><script>x()</script></body></html>", subtype="html")
    else:
        message.set_content("Please quote the attached submission.\n")
    message.add_attachment(
        b"Location,Building Limit\n1,5000000\n",
        maintype="text",
        subtype="csv",
        filename="Acme SOV.csv",
    )
    return message.as_bytes()


class TestParseRawEmail:

    def test_headers_body_and_attachment(self):
        parsed = parse_raw_email(build_raw_email())

        assert parsed.from_address == "jane@brokerage.example"
        assert parsed.to_addresses == ["intake@agency.example", "underwriting@agency.example"]
        assert parsed.cc_addresses == ["assistant@brokerage.example"]
        assert parsed.subject == "New property submission - Acme Holdings"
        assert parsed.body_text == "Please quote the attached submission."
        assert parsed.header_message_id == "<msg-2@brokerage.example>"
        assert parsed.thread_id == "<msg-2@brokerage.example>"
        assert parsed.received_at.year == 2025

        assert len(parsed.attachments) == 1
        attachment = parsed.attachments[0]
        assert attachment.filename == "Acme SOV.csv"
        assert attachment.content_type == "text/csv"
        assert b"5000000" in attachment.content

    def test_thread_id_comes_from_first_reference(self):
        parsed = parse_raw_email(build_raw_email(references="<msg-0@x> <msg-1@x>"))
        assert parsed.thread_id == "<msg-0@x>"

    def test_html_only_body_is_converted(self):
        parsed = parse_raw_email(build_raw_email(html=True))
        assert parsed.body_text == "Please quote."

    def test_html_to_text_drops_scripts(self):
        assert html_to_text("<p>One</p><style>p{}</style><p>Two</p>") == "One\nTwo"


class TestUploadMessageId:

    def test_stable_and_prefixed(self):
        first = upload_message_id(b"raw email")
        assert first == upload_message_id(b"raw email")
        assert first.startswith("eml-")
        assert len(first) == len("eml-") + 16
        assert first != upload_message_id(b"other email")


class TestStoreRawMessage:

    @pytest.fixture
    def storage(self):
        async def put(bucket, key, content, content_type):
            return key

        return SimpleNamespace(put=AsyncMock(side_effect=put))

    @pytest.fixture
    def service(self, storage):
        @asynccontextmanager
        async def factory():
            yield SimpleNamespace()

        return EmailIngestService(storage, factory, bucket="documents")

    @pytest.mark.asyncio
    async def test_stores_raw_attachments_and_row(self, service, storage):
        repository = SimpleNamespace(
            get_by_message_id=AsyncMock(return_value=None),
            upsert_message=AsyncMock(return_value="row"),
        )

        with patch(f"{MODULE}.EmailMessageRepository", new=lambda session: repository):
            result = await service.store_raw_message(build_raw_email(), "imap-101")

        assert result == "row"
        keys = [c.args[1] for c in storage.put.await_args_list]
        assert keys[0] == "emails/raw/imap-101.eml"
        assert keys[1].startswith("emails/attachments/imap-101/")
        assert keys[1].endswith("-Acme_SOV.csv")

        message_id, fields, attachments = repository.upsert_message.await_args.args
        assert message_id == "imap-101"
        assert fields["raw_storage_key"] == "emails/raw/imap-101.eml"
        assert fields["from_address"] == "jane@brokerage.example"
        assert attachments[0]["filename"] == "Acme SOV.csv"
        assert attachments[0]["size_bytes"] > 0

    @pytest.mark.asyncio
    async def test_processed_message_is_not_refreshed(self, service, storage):
        existing = SimpleNamespace(processing_status="done")
        repository = SimpleNamespace(
            get_by_message_id=AsyncMock(return_value=existing),
            upsert_message=AsyncMock(),
        )

        with patch(f"{MODULE}.EmailMessageRepository", new=lambda session: repository):
            result = await service.store_raw_message(build_raw_email(), "imap-101")

        assert result is existing
        storage.put.assert_not_awaited()
        repository.upsert_message.assert_not_awaited()
