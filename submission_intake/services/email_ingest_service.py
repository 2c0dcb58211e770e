"""Fetch-and-store: turns raw RFC 822 bytes into a stored message row."""

import hashlib
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from email import policy
from email.message import EmailMessage as MimeMessage
from email.parser import BytesParser
from email.utils import getaddresses, parsedate_to_datetime
from typing import List, Optional

from bs4 import BeautifulSoup
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from submission_intake.core.config import settings
from submission_intake.database.models import EmailMessage, ProcessingStatus
from submission_intake.repositories.email_message_repository import EmailMessageRepository
from submission_intake.services.storage_service import StorageService
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

UPLOAD_ID_PREFIX = "eml-"


@dataclass
class ParsedAttachment:
    filename: str
    content_type: str
    content: bytes


@dataclass
class ParsedEmail:
    from_address: str
    subject: str
    body_text: str
    to_addresses: List[str] = field(default_factory=list)
    cc_addresses: List[str] = field(default_factory=list)
    header_message_id: Optional[str] = None
    thread_id: Optional[str] = None
    received_at: Optional[datetime] = None
    attachments: List[ParsedAttachment] = field(default_factory=list)


def upload_message_id(raw: bytes) -> str:
    """Stable id for an uploaded .eml file: ``eml-`` + 16 hex chars of its SHA-256."""
    return f"{UPLOAD_ID_PREFIX}{hashlib.sha256(raw).hexdigest()[:16]}"


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style"]):
        tag.decompose()
    text = soup.get_text("\n")
    return re.sub(r"\n\s*\n+", "\n\n", text).strip()


def _addresses(message: MimeMessage, header: str) -> List[str]:
    values = message.get_all(header, [])
    return [addr.strip().lower() for _, addr in getaddresses([str(v) for v in values]) if addr]


def _safe_filename(filename: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", filename).strip("_") or "attachment"


def parse_raw_email(raw: bytes) -> ParsedEmail:
    """Parse RFC 822 bytes into addresses, text body and attachments."""
    message = BytesParser(policy=policy.default).parsebytes(raw)

    body_part = message.get_body(preferencelist=("plain", "html"))
    body_text = ""
    if body_part is not None:
        content = body_part.get_content()
        body_text = html_to_text(content) if body_part.get_content_type() == "text/html" else content

    attachments = []
    for part in message.iter_attachments():
        payload = part.get_payload(decode=True) or b""
        filename = part.get_filename() or f"attachment-{len(attachments) + 1}"
        attachments.append(
            ParsedAttachment(
                filename=filename,
                content_type=part.get_content_type(),
                content=payload,
            )
        )

    received_at = None
    if message.get("Date"):
        try:
            received_at = parsedate_to_datetime(str(message["Date"]))
        except (TypeError, ValueError):
            LOGGER.debug(f"Unparseable Date header: {message['Date']!r}")

    from_addresses = _addresses(message, "From")
    header_message_id = str(message.get("Message-ID", "")).strip() or None
    references = str(message.get("References", "")).split()

    return ParsedEmail(
        from_address=from_addresses[0] if from_addresses else "",
        subject=str(message.get("Subject", "")).strip(),
        body_text=(body_text or "").strip(),
        to_addresses=_addresses(message, "To"),
        cc_addresses=_addresses(message, "Cc"),
        header_message_id=header_message_id,
        thread_id=references[0] if references else header_message_id,
        received_at=received_at,
        attachments=attachments,
    )


class EmailIngestService:
    """Stores raw mail and attachments in the blob store and upserts the message row."""

    def __init__(
        self,
        storage: StorageService,
        session_factory: async_sessionmaker[AsyncSession],
        bucket: Optional[str] = None,
    ):
        self.storage = storage
        self.session_factory = session_factory
        self.bucket = bucket or settings.storage.bucket
        self.logger = LOGGER

    async def store_raw_message(self, raw: bytes, message_id: str) -> EmailMessage:
        """Persist one raw message under ``message_id``.

        Existing messages that are processing or done are returned unchanged.
        """
        parsed = parse_raw_email(raw)

        async with self.session_factory() as session:
            repository = EmailMessageRepository(session)
            existing = await repository.get_by_message_id(message_id)
            if existing is not None and existing.processing_status not in ProcessingStatus.CLAIMABLE:
                self.logger.debug(f"Message {message_id} already {existing.processing_status}; not refreshed")
                return existing

            raw_key = await self.storage.put(self.bucket, f"emails/raw/{message_id}.eml", raw, "message/rfc822")

            attachment_rows = []
            for attachment in parsed.attachments:
                key = f"emails/attachments/{message_id}/{uuid.uuid4().hex[:8]}-{_safe_filename(attachment.filename)}"
                await self.storage.put(self.bucket, key, attachment.content, attachment.content_type)
                attachment_rows.append(
                    {
                        "filename": attachment.filename,
                        "content_type": attachment.content_type,
                        "size_bytes": len(attachment.content),
                        "storage_key": key,
                    }
                )

            message = await repository.upsert_message(
                message_id,
                {
                    "thread_id": parsed.thread_id,
                    "header_message_id": parsed.header_message_id,
                    "from_address": parsed.from_address,
                    "to_addresses": parsed.to_addresses,
                    "cc_addresses": parsed.cc_addresses,
                    "subject": parsed.subject,
                    "body_text": parsed.body_text,
                    "received_at": parsed.received_at,
                    "raw_storage_key": raw_key,
                },
                attachment_rows,
            )

        self.logger.info(
            f"Stored email {message_id}",
            extra={"attachments": len(attachment_rows), "from": parsed.from_address},
        )
        return message
