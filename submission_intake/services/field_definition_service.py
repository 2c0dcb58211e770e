"""Field definition management: defaults shipped with the package plus edits."""

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.database.models import FieldDefinition
from submission_intake.repositories.field_definition_repository import FieldDefinitionRepository
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

DEFAULT_DEFINITIONS_PATH = Path(__file__).resolve().parents[1] / "data" / "field_definitions.json"


def load_default_definitions(path: Optional[str] = None) -> List[Dict[str, Any]]:
    with open(path or DEFAULT_DEFINITIONS_PATH, encoding="utf-8") as f:
        return json.load(f)


class FieldDefinitionService:
    def __init__(self, session: AsyncSession):
        self.repository = FieldDefinitionRepository(session)

    async def list_definitions(self) -> List[FieldDefinition]:
        return await self.repository.list_definitions()

    async def save_definitions(self, definitions: Iterable[Dict[str, Any]]) -> int:
        count = await self.repository.upsert_many(definitions)
        LOGGER.info(f"Saved {count} field definition(s)")
        return count

    async def seed_defaults(self, path: Optional[str] = None) -> int:
        """Load the packaged defaults when no definitions exist yet."""
        if await self.repository.count() > 0:
            return 0
        count = await self.repository.upsert_many(load_default_definitions(path))
        LOGGER.info(f"Seeded {count} default field definition(s)")
        return count
