from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from submission_intake.services.field_definition_service import FieldDefinitionService, load_default_definitions

MODULE = "submission_intake.services.field_definition_service"


@pytest.fixture
def repository():
    return SimpleNamespace(
        list_definitions=AsyncMock(return_value=[]),
        upsert_many=AsyncMock(side_effect=lambda defs: len(list(defs))),
        count=AsyncMock(return_value=0),
    )


@pytest.fixture
def service(repository):
    with patch(f"{MODULE}.FieldDefinitionRepository", new=lambda session: repository):
        yield FieldDefinitionService(session=None)


class TestDefaults:

    def test_packaged_definitions(self):
        definitions = load_default_definitions()
        names = {d["field_name"] for d in definitions}

        assert len(definitions) == len(names)
        assert {"namedInsured", "effectiveDate", "buildingLimit"} <= names
        assert all("business_description" in d for d in definitions)


class TestFieldDefinitionService:

    @pytest.mark.asyncio
    async def test_seeds_empty_table(self, service, repository):
        count = await service.seed_defaults()
        assert count == len(load_default_definitions())

    @pytest.mark.asyncio
    async def test_does_not_reseed(self, service, repository):
        repository.count.return_value = 12
        assert await service.seed_defaults() == 0
        repository.upsert_many.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save(self, service, repository):
        saved = await service.save_definitions([{"field_name": "namedInsured", "where_to_look": "ACORD 125"}])
        assert saved == 1
