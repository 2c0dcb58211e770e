"""Per-message processing state machine.

``process_message`` claims a message (pending/error -> processing), then
runs classification, extraction, QA, packaging, persistence and the reply
before finalizing it as ``done`` with a submission number. Any failure after
the claim leaves the message in ``error`` and re-raises.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from submission_intake.database.models import EmailMessage
from submission_intake.repositories.email_message_repository import EmailMessageRepository
from submission_intake.repositories.extraction_repository import ExtractionRepository
from submission_intake.repositories.field_definition_repository import FieldDefinitionRepository
from submission_intake.services.classification.document_classifier import DocumentClassifier
from submission_intake.services.classification.submission_classifier import SubmissionClassifier
from submission_intake.services.document_parser import DocumentParser
from submission_intake.services.extraction.field_extraction_service import FieldExtractionService
from submission_intake.services.extraction.models import EmailContent, FieldGuidance
from submission_intake.services.qa.submission_qa import SubmissionQA
from submission_intake.services.reply_service import ReplyService
from submission_intake.services.response_packager import ResponsePackager
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

SYSTEM_SENDER_DIAGNOSTIC = "Skipped: email from system address (prevents reply loop)"


@dataclass
class ProcessResult:
    processed: bool
    reason: Optional[str] = None
    detail: Optional[str] = None
    submission_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "reason": self.reason,
            "detail": self.detail,
            "submission_number": self.submission_number,
        }


class IntakeOrchestrator:
    """Runs the intake pipeline for one stored message at a time."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        extraction_service: FieldExtractionService,
        document_parser: DocumentParser,
        reply_service: ReplyService,
        system_address: str,
        submission_classifier: Optional[SubmissionClassifier] = None,
        document_classifier: Optional[DocumentClassifier] = None,
        qa: Optional[SubmissionQA] = None,
        packager: Optional[ResponsePackager] = None,
    ):
        self.session_factory = session_factory
        self.extraction_service = extraction_service
        self.document_parser = document_parser
        self.reply_service = reply_service
        self.system_address = (system_address or "").strip().lower()
        self.submission_classifier = submission_classifier or SubmissionClassifier()
        self.document_classifier = document_classifier or DocumentClassifier()
        self.qa = qa or SubmissionQA()
        self.packager = packager or ResponsePackager()
        self.logger = LOGGER

    def is_from_system(self, from_address: str) -> bool:
        return bool(self.system_address) and self.system_address in (from_address or "").lower()

    async def process_message(self, message_id: str) -> ProcessResult:
        """Process one message end to end.

        Returns a non-processed result for idempotent no-ops (already done or
        in flight), self-sent mail and non-submissions.

        Raises:
            MessageNotFoundError: If the message does not exist
            Exception: Any pipeline failure, after the message is marked error
        """
        async with self.session_factory() as session:
            messages = EmailMessageRepository(session)
            claim = await messages.claim(message_id)
            if not claim.claimed:
                self.logger.info(f"Skipping {message_id}: {claim.reason}")
                return ProcessResult(processed=False, reason=claim.reason)

            try:
                return await self._run(session, messages, claim.message)
            except Exception as e:
                self.logger.error(f"Processing failed for {message_id}: {e}", exc_info=True)
                await session.rollback()
                try:
                    await messages.mark_error(message_id, f"{type(e).__name__}: {e}")
                except SQLAlchemyError:
                    self.logger.error(f"Could not record error status for {message_id}", exc_info=True)
                raise

    async def _run(
        self,
        session: AsyncSession,
        messages: EmailMessageRepository,
        message: EmailMessage,
    ) -> ProcessResult:
        if self.is_from_system(message.from_address):
            await messages.mark_done(message.id, is_submission=None, error_message=SYSTEM_SENDER_DIAGNOSTIC)
            return ProcessResult(processed=False, reason="from_system_address", detail=SYSTEM_SENDER_DIAGNOSTIC)

        attachments = list(message.attachments or [])
        classification = self.submission_classifier.classify(message.subject, message.body_text, attachments)
        if not classification.is_submission:
            await messages.mark_done(message.id, is_submission=False, error_message=classification.reason)
            return ProcessResult(processed=False, reason="not_a_submission", detail=classification.reason)

        document_types = self.document_classifier.classify_attachments(attachments)
        if document_types:
            await messages.update_document_types(document_types)
        document_texts = await self.document_parser.render_sections(attachments, document_types)

        guidance = await self._load_guidance()
        outcome = await self.extraction_service.extract(
            EmailContent(
                from_address=message.from_address,
                subject=message.subject,
                body=message.body_text,
                to_addresses=tuple(message.to_addresses or ()),
                received_at=message.received_at,
            ),
            document_texts,
            guidance,
        )

        qa_flags = self.qa.check(outcome.data, list(document_types.values()))
        packaged = self.packager.package(outcome.data, qa_flags, outcome.records)

        await ExtractionRepository(session).save_run(
            message.id,
            outcome.data,
            qa_flags.to_dict(),
            packaged.summary,
            [record.to_dict() for record in outcome.records],
        )

        if message.reply_sent_at is None:
            await self.reply_service.send_reply(message, packaged, qa_flags)
            await messages.mark_reply_sent(message.id)
        else:
            self.logger.info(f"Reply for {message.message_id} already sent; not resending")

        submission_number = await messages.finalize_submission(message.id, classification.submission_type)
        self.logger.info(
            f"Processed submission #{submission_number}",
            extra={
                "message_id": message.message_id,
                "submission_type": classification.submission_type,
                "fields_found": outcome.found_count,
                "warnings": len(qa_flags.warnings),
            },
        )
        return ProcessResult(processed=True, submission_number=submission_number)

    async def _load_guidance(self) -> List[FieldGuidance]:
        """Read field definitions on a short session of their own.

        The claim session stays idle while extraction runs, so no
        transaction is held open across the completion calls.
        """
        async with self.session_factory() as session:
            definitions = await FieldDefinitionRepository(session).list_definitions()
        return [FieldGuidance.from_definition(d) for d in definitions]
