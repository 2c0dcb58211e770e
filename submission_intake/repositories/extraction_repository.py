"""Repository for extraction results and their per-field records."""

from typing import Any, Dict, Iterable, Optional
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.database.models import ExtractionResult, FieldExtraction
from submission_intake.repositories.base_repository import BaseRepository
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


class ExtractionRepository(BaseRepository[ExtractionResult]):
    """Persists the merged extraction output of a message.

    A run replaces the previous output wholesale: the result row is upserted
    and its field records are deleted and recreated in one transaction.
    """

    def __init__(self, session: AsyncSession):
        super().__init__(session, ExtractionResult)

    async def get_by_email_message_id(self, email_message_id: UUID) -> Optional[ExtractionResult]:
        result = await self.session.execute(
            select(ExtractionResult).where(ExtractionResult.email_message_id == email_message_id)
        )
        return result.scalar_one_or_none()

    async def save_run(
        self,
        email_message_id: UUID,
        data: Dict[str, Any],
        qa_flags: Dict[str, Any],
        summary_text: Optional[str],
        records: Iterable[Dict[str, Any]],
    ) -> UUID:
        """Upsert the result row and replace its field records.

        Args:
            email_message_id: Owning message primary key
            data: Merged nested extraction output
            qa_flags: ``{"warnings": [...], "confidenceFlags": [...]}``
            summary_text: Packaged summary
            records: Field record dicts (field_path, field_name, field_value,
                source, evidence_snippet, reasoning)

        Returns:
            The extraction result id
        """
        try:
            stmt = (
                insert(ExtractionResult)
                .values(
                    email_message_id=email_message_id,
                    data=data,
                    qa_flags=qa_flags,
                    summary_text=summary_text,
                )
                .on_conflict_do_update(
                    index_elements=[ExtractionResult.email_message_id],
                    set_={
                        "data": data,
                        "qa_flags": qa_flags,
                        "summary_text": summary_text,
                        "updated_at": func.now(),
                    },
                )
                .returning(ExtractionResult.id)
            )
            result_id = (await self.session.execute(stmt)).scalar_one()

            await self.session.execute(
                delete(FieldExtraction).where(FieldExtraction.extraction_result_id == result_id)
            )
            records = list(records)
            self.session.add_all(
                FieldExtraction(extraction_result_id=result_id, **record) for record in records
            )
            await self.session.commit()

            self.logger.debug(
                "Saved extraction run",
                extra={
                    "email_message_id": str(email_message_id),
                    "extraction_result_id": str(result_id),
                    "record_count": len(records),
                },
            )
            return result_id

        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(
                f"Error saving extraction for message {email_message_id}: {str(e)}",
                exc_info=True,
            )
            raise
