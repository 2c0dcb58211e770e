"""SQLAlchemy models for the email intake tables."""

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Integer,
    String,
    Text,
    TIMESTAMP,
)
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from submission_intake.core.database import Base


class ProcessingStatus:
    """Values of ``EmailMessage.processing_status``."""

    PENDING = "pending"
    PROCESSING = "processing"
    DONE = "done"
    ERROR = "error"

    CLAIMABLE = (PENDING, ERROR)


class EmailMessage(Base):
    """One inbound email; the unit the intake pipeline claims and processes."""

    __tablename__ = "email_messages"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    message_id: Mapped[str] = mapped_column(String, unique=True, nullable=False, index=True)
    thread_id: Mapped[str | None] = mapped_column(String, nullable=True)
    header_message_id: Mapped[str | None] = mapped_column(String, nullable=True)
    from_address: Mapped[str] = mapped_column(String, nullable=False)
    to_addresses: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    cc_addresses: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    subject: Mapped[str] = mapped_column(String, nullable=False, default="")
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    received_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)
    raw_storage_key: Mapped[str | None] = mapped_column(String, nullable=True)

    processing_status: Mapped[str] = mapped_column(
        String, nullable=False, default=ProcessingStatus.PENDING, index=True
    )  # pending | processing | done | error
    is_submission: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    submission_type: Mapped[str | None] = mapped_column(String, nullable=True)
    submission_number: Mapped[int | None] = mapped_column(Integer, unique=True, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    reply_sent_at: Mapped[datetime | None] = mapped_column(TIMESTAMP(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    attachments: Mapped[list["EmailAttachment"]] = relationship(
        "EmailAttachment",
        back_populates="email_message",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    extraction_result: Mapped["ExtractionResult | None"] = relationship(
        "ExtractionResult",
        back_populates="email_message",
        cascade="all, delete-orphan",
        uselist=False,
    )


class EmailAttachment(Base):
    """A stored attachment of an inbound email."""

    __tablename__ = "email_attachments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email_message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("email_messages.id", ondelete="CASCADE"), nullable=False, index=True
    )
    filename: Mapped[str] = mapped_column(String, nullable=False)
    content_type: Mapped[str | None] = mapped_column(String, nullable=True)
    size_bytes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    storage_key: Mapped[str] = mapped_column(String, nullable=False)
    document_type: Mapped[str] = mapped_column(
        String, nullable=False, default="other"
    )  # sov | loss_run | schedule | supplemental | payroll | questionnaire | application | other
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    email_message: Mapped["EmailMessage"] = relationship("EmailMessage", back_populates="attachments")


class ExtractionResult(Base):
    """Merged extraction output of one message; recreated on every run."""

    __tablename__ = "extraction_results"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    email_message_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("email_messages.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    data: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    qa_flags: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    summary_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )

    email_message: Mapped["EmailMessage"] = relationship("EmailMessage", back_populates="extraction_result")
    field_extractions: Mapped[list["FieldExtraction"]] = relationship(
        "FieldExtraction",
        back_populates="extraction_result",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class FieldExtraction(Base):
    """One extraction record per schema leaf, found or not."""

    __tablename__ = "field_extractions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    extraction_result_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("extraction_results.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    field_path: Mapped[str] = mapped_column(String, nullable=False)
    field_name: Mapped[str] = mapped_column(String, nullable=False)
    field_value: Mapped[Any] = mapped_column(JSONB, nullable=True)
    source: Mapped[str] = mapped_column(String, nullable=False, default="other")
    evidence_snippet: Mapped[str | None] = mapped_column(Text, nullable=True)
    reasoning: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )

    extraction_result: Mapped["ExtractionResult"] = relationship(
        "ExtractionResult", back_populates="field_extractions"
    )


class FieldDefinition(Base):
    """Per-field prompt metadata joined to the schema by field name."""

    __tablename__ = "field_definitions"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    field_name: Mapped[str] = mapped_column(String, unique=True, nullable=False)
    category: Mapped[str | None] = mapped_column(String, nullable=True)
    field_type: Mapped[str | None] = mapped_column(String, nullable=True)
    business_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    extractor_logic: Mapped[str | None] = mapped_column(Text, nullable=True)
    where_to_look: Mapped[str | None] = mapped_column(Text, nullable=True)
    alternate_field_names: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    created_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()"
    )
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP(timezone=True), server_default="NOW()", onupdate=datetime.utcnow
    )
