"""Field schema and field definition endpoints."""

from typing import Annotated, List

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.core.config import settings
from submission_intake.core.database import get_async_session as get_session
from submission_intake.schemas.email_intake import FieldDefinitionPayload, FieldSchemaResponse
from submission_intake.services.extraction.field_schema import load_field_schema
from submission_intake.services.field_definition_service import FieldDefinitionService

router = APIRouter()


async def get_field_definition_service(
    db_session: Annotated[AsyncSession, Depends(get_session)]
) -> FieldDefinitionService:
    return FieldDefinitionService(db_session)


@router.get(
    "/field-schema",
    response_model=FieldSchemaResponse,
    summary="Get the extraction field schema",
    operation_id="get_field_schema",
)
async def get_field_schema() -> FieldSchemaResponse:
    schema = load_field_schema(settings.extraction.schema_path)
    return FieldSchemaResponse(
        expected_shape=schema.expected_shape(),
        fields=[
            {"path": spec.path, "name": spec.name, "type": spec.field_type}
            for spec in schema.flatten()
        ],
    )


@router.get(
    "/field-definitions",
    response_model=List[FieldDefinitionPayload],
    summary="List field definitions",
    operation_id="list_field_definitions",
)
async def list_field_definitions(
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
) -> List[FieldDefinitionPayload]:
    definitions = await service.list_definitions()
    return [FieldDefinitionPayload.model_validate(d) for d in definitions]


@router.put(
    "/field-definitions",
    response_model=List[FieldDefinitionPayload],
    summary="Create or update field definitions",
    operation_id="save_field_definitions",
)
async def save_field_definitions(
    payload: List[FieldDefinitionPayload],
    service: Annotated[FieldDefinitionService, Depends(get_field_definition_service)],
) -> List[FieldDefinitionPayload]:
    await service.save_definitions([item.model_dump() for item in payload])
    definitions = await service.list_definitions()
    return [FieldDefinitionPayload.model_validate(d) for d in definitions]
