"""Service wiring shared by the API and the background poll loop."""

from functools import lru_cache

from submission_intake.core.config import settings
from submission_intake.core.database import async_session_maker
from submission_intake.core.llm_client import create_llm_client
from submission_intake.core.retry import RetryPolicy
from submission_intake.services.document_parser import DocumentParser
from submission_intake.services.email_ingest_service import EmailIngestService
from submission_intake.services.extraction.field_extraction_service import FieldExtractionService
from submission_intake.services.extraction.field_schema import load_field_schema
from submission_intake.services.intake_orchestrator import IntakeOrchestrator
from submission_intake.services.mailbox.imap_source import ImapMailboxSource
from submission_intake.services.mailbox_poller import MailboxPoller
from submission_intake.services.reply_service import ReplyService
from submission_intake.services.storage_service import StorageService


@lru_cache
def get_storage_service() -> StorageService:
    return StorageService(settings.storage, timeout=settings.http_timeout)


@lru_cache
def get_ingest_service() -> EmailIngestService:
    return EmailIngestService(get_storage_service(), async_session_maker)


@lru_cache
def get_orchestrator() -> IntakeOrchestrator:
    extraction_service = FieldExtractionService(
        create_llm_client(settings),
        load_field_schema(settings.extraction.schema_path),
        settings=settings.extraction,
        structured_output=settings.llm.structured_output,
    )
    return IntakeOrchestrator(
        session_factory=async_session_maker,
        extraction_service=extraction_service,
        document_parser=DocumentParser(get_storage_service()),
        reply_service=ReplyService(settings.smtp, settings.system_email_address),
        system_address=settings.system_email_address,
    )


@lru_cache
def get_mailbox_poller() -> MailboxPoller:
    return MailboxPoller(
        source=ImapMailboxSource(settings.mailbox),
        ingest=get_ingest_service(),
        orchestrator=get_orchestrator(),
        session_factory=async_session_maker,
        retry_policy=RetryPolicy(
            max_attempts=settings.polling.max_attempts,
            base_delay=settings.polling.base_delay,
            multiplier=2.0,
            max_delay=settings.polling.max_delay,
        ),
        inter_message_delay=settings.polling.inter_message_delay,
    )
