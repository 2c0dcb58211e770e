from typing import Any, Dict, Iterable, List

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.database.models import FieldDefinition
from submission_intake.repositories.base_repository import BaseRepository
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFINITION_COLUMNS = (
    "category",
    "field_type",
    "business_description",
    "extractor_logic",
    "where_to_look",
    "alternate_field_names",
)


class FieldDefinitionRepository(BaseRepository[FieldDefinition]):
    """Field definitions store: prompt metadata keyed by field name."""

    def __init__(self, session: AsyncSession):
        super().__init__(session, FieldDefinition)

    async def list_definitions(self) -> List[FieldDefinition]:
        result = await self.session.execute(select(FieldDefinition).order_by(FieldDefinition.field_name))
        return list(result.scalars().all())

    async def upsert_many(self, definitions: Iterable[Dict[str, Any]]) -> int:
        """Insert or update definitions by ``field_name``; returns the row count."""
        rows = [
            {"field_name": d["field_name"], **{c: d.get(c) for c in DEFINITION_COLUMNS}}
            for d in definitions
        ]
        for row in rows:
            if row["alternate_field_names"] is None:
                row["alternate_field_names"] = []
        if not rows:
            return 0

        try:
            stmt = insert(FieldDefinition).values(rows)
            stmt = stmt.on_conflict_do_update(
                index_elements=[FieldDefinition.field_name],
                set_={c: getattr(stmt.excluded, c) for c in DEFINITION_COLUMNS},
            )
            await self.session.execute(stmt)
            await self.session.commit()
            return len(rows)
        except SQLAlchemyError as e:
            await self.session.rollback()
            self.logger.error(f"Error upserting field definitions: {str(e)}", exc_info=True)
            raise
