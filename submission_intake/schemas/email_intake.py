"""Request and response models for the email intake API."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ProcessMessageResponse(BaseModel):
    processed: bool = Field(..., description="Whether the pipeline ran to completion")
    reason: Optional[str] = Field(
        None,
        description="already_processed, already_processing, from_system_address or not_a_submission",
    )
    detail: Optional[str] = Field(None, description="Classifier reason or skip diagnostic")
    submission_number: Optional[int] = Field(None, description="Assigned submission number")


class PollResponse(BaseModel):
    new_emails_found: int = Field(..., description="Identifiers not previously stored")
    processed: int = Field(0, description="Always 0; processing happens on the worker")


class UploadResponse(BaseModel):
    message_id: str
    queued: bool = True


class AttachmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    filename: str
    content_type: Optional[str] = None
    size_bytes: int = 0
    document_type: str = "other"


class EmailMessageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    message_id: str
    from_address: str
    subject: str
    received_at: Optional[datetime] = None
    processing_status: str
    is_submission: Optional[bool] = None
    submission_type: Optional[str] = None
    submission_number: Optional[int] = None
    error_message: Optional[str] = None
    reply_sent_at: Optional[datetime] = None
    attachments: list[AttachmentResponse] = Field(default_factory=list)


class FieldExtractionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_path: str
    field_name: str
    field_value: Any = None
    source: str
    evidence_snippet: Optional[str] = None
    reasoning: Optional[str] = None


class ExtractionResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    data: dict[str, Any]
    qa_flags: dict[str, Any]
    summary_text: Optional[str] = None
    field_extractions: list[FieldExtractionResponse] = Field(default_factory=list)


class SubmissionDetailResponse(BaseModel):
    message: EmailMessageResponse
    extraction: Optional[ExtractionResultResponse] = None


class FieldDefinitionPayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    field_name: str = Field(..., min_length=1)
    category: Optional[str] = None
    field_type: Optional[str] = None
    business_description: Optional[str] = None
    extractor_logic: Optional[str] = None
    where_to_look: Optional[str] = Field(
        None, description="Comma-separated section labels to search first"
    )
    alternate_field_names: list[str] = Field(default_factory=list)


class FieldSchemaResponse(BaseModel):
    expected_shape: dict[str, Any]
    fields: list[dict[str, str]]
