"""Repository for inbound email messages and their attachments."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set
from uuid import UUID

from sqlalchemy import delete, func, select, text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.core.exceptions import MessageNotFoundError
from submission_intake.database.models import EmailAttachment, EmailMessage, ProcessingStatus
from submission_intake.repositories.base_repository import BaseRepository
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

# Transaction-scoped advisory lock serializing submission number assignment
SUBMISSION_NUMBER_LOCK_KEY = 7_340_211


@dataclass
class ClaimResult:
    """Outcome of an attempt to claim a message for processing."""

    claimed: bool
    message: EmailMessage
    reason: Optional[str] = None


class EmailMessageRepository(BaseRepository[EmailMessage]):
    """Data access for email messages, including the processing state machine."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, EmailMessage)

    async def get_by_message_id(self, message_id: str) -> Optional[EmailMessage]:
        result = await self.session.execute(
            select(EmailMessage).where(EmailMessage.message_id == message_id)
        )
        return result.scalar_one_or_none()

    async def settled_message_ids(self, message_ids: Iterable[str]) -> Set[str]:
        """Return which of ``message_ids`` are stored and not in ``error``.

        Errored messages are left out so that a poll offers them again.
        """
        ids = list(message_ids)
        if not ids:
            return set()
        result = await self.session.execute(
            select(EmailMessage.message_id).where(
                EmailMessage.message_id.in_(ids),
                EmailMessage.processing_status != ProcessingStatus.ERROR,
            )
        )
        return set(result.scalars().all())

    async def claim(self, message_id: str) -> ClaimResult:
        """Atomically move a message from pending/error to processing.

        The row is read with ``SELECT ... FOR UPDATE`` and updated in the same
        transaction, so a concurrent claimer blocks and then observes
        ``processing``.

        Raises:
            MessageNotFoundError: If no message has this id
        """
        try:
            result = await self.session.execute(
                select(EmailMessage)
                .where(EmailMessage.message_id == message_id)
                .with_for_update()
            )
            message = result.scalar_one_or_none()

            if message is None:
                await self.session.rollback()
                raise MessageNotFoundError(f"Email message {message_id} not found")

            if message.processing_status == ProcessingStatus.DONE:
                await self.session.rollback()
                return ClaimResult(claimed=False, message=message, reason="already_processed")

            if message.processing_status == ProcessingStatus.PROCESSING:
                await self.session.rollback()
                return ClaimResult(claimed=False, message=message, reason="already_processing")

            message.processing_status = ProcessingStatus.PROCESSING
            message.error_message = None
            message.updated_at = datetime.now(timezone.utc)
            await self.session.commit()

            self.logger.debug(
                "Claimed email message",
                extra={"message_id": message_id},
            )
            return ClaimResult(claimed=True, message=message)

        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error claiming email message {message_id}: {str(e)}", exc_info=True)
            raise

    async def mark_done(
        self,
        id: UUID,
        is_submission: Optional[bool],
        submission_type: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        """Finalize a message without assigning a submission number."""
        await self._set_fields(
            id,
            processing_status=ProcessingStatus.DONE,
            is_submission=is_submission,
            submission_type=submission_type,
            error_message=error_message,
        )

    async def mark_error(self, message_id: str, error_message: str) -> None:
        try:
            await self.session.execute(
                update(EmailMessage)
                .where(EmailMessage.message_id == message_id)
                .values(
                    processing_status=ProcessingStatus.ERROR,
                    error_message=error_message[:4000],
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking message {message_id} as error: {str(e)}", exc_info=True)
            raise

    async def mark_reply_sent(self, id: UUID) -> None:
        await self._set_fields(id, reply_sent_at=datetime.now(timezone.utc))

    async def update_document_types(self, document_types: Dict[UUID, str]) -> None:
        """Persist the classified type of each attachment."""
        try:
            for attachment_id, document_type in document_types.items():
                await self.session.execute(
                    update(EmailAttachment)
                    .where(EmailAttachment.id == attachment_id)
                    .values(document_type=document_type)
                )
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating document types: {str(e)}", exc_info=True)
            raise

    async def finalize_submission(self, id: UUID, submission_type: Optional[str]) -> int:
        """Mark a message as a processed submission and assign its number.

        The number is ``max + 1`` computed under a transaction-scoped
        advisory lock, so concurrent finalizers are serialized.
        """
        try:
            await self.session.execute(
                text("SELECT pg_advisory_xact_lock(:key)"),
                {"key": SUBMISSION_NUMBER_LOCK_KEY},
            )
            current_max = await self.session.scalar(
                select(func.coalesce(func.max(EmailMessage.submission_number), 0))
            )
            submission_number = int(current_max) + 1

            await self.session.execute(
                update(EmailMessage)
                .where(EmailMessage.id == id)
                .values(
                    processing_status=ProcessingStatus.DONE,
                    is_submission=True,
                    submission_type=submission_type,
                    submission_number=submission_number,
                    error_message=None,
                    updated_at=datetime.now(timezone.utc),
                )
            )
            await self.session.commit()

            self.logger.info(
                "Submission finalized",
                extra={"email_message_id": str(id), "submission_number": submission_number},
            )
            return submission_number

        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error finalizing submission {id}: {str(e)}", exc_info=True)
            raise

    async def reset(self, message_id: str) -> EmailMessage:
        """Administrative reset of a message back to pending.

        Raises:
            MessageNotFoundError: If no message has this id
        """
        message = await self.get_by_message_id(message_id)
        if message is None:
            raise MessageNotFoundError(f"Email message {message_id} not found")

        message.processing_status = ProcessingStatus.PENDING
        message.error_message = None
        message.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        return message

    async def upsert_message(
        self,
        message_id: str,
        fields: Dict[str, Any],
        attachments: List[Dict[str, Any]],
    ) -> EmailMessage:
        """Create a message, or refresh one that has not been processed yet.

        Messages in ``processing`` or ``done`` are returned untouched.
        """
        try:
            message = await self.get_by_message_id(message_id)

            if message is None:
                message = EmailMessage(message_id=message_id, **fields)
                message.attachments = [EmailAttachment(**a) for a in attachments]
                self.session.add(message)
                await self.session.commit()
                return message

            if message.processing_status not in ProcessingStatus.CLAIMABLE:
                return message

            for key, value in fields.items():
                setattr(message, key, value)
            await self.session.execute(
                delete(EmailAttachment).where(EmailAttachment.email_message_id == message.id)
            )
            for attachment in attachments:
                self.session.add(EmailAttachment(email_message_id=message.id, **attachment))
            message.updated_at = datetime.now(timezone.utc)
            await self.session.commit()
            await self.session.refresh(message, attribute_names=["attachments"])
            return message

        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error storing email message {message_id}: {str(e)}", exc_info=True)
            raise

    async def list_submissions(self, limit: int = 100) -> List[EmailMessage]:
        result = await self.session.execute(
            select(EmailMessage)
            .where(EmailMessage.is_submission.is_(True))
            .order_by(EmailMessage.submission_number.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_recent(self, limit: int = 50) -> List[EmailMessage]:
        return await self.get_all(limit=limit)

    async def _set_fields(self, id: UUID, **values) -> None:
        try:
            values["updated_at"] = datetime.now(timezone.utc)
            await self.session.execute(
                update(EmailMessage).where(EmailMessage.id == id).values(**values)
            )
            await self.session.commit()
        except SQLAlchemyError as e:
            self.logger.error(f"Error updating email message {id}: {str(e)}", exc_info=True)
            raise
