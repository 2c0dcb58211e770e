"""Create email intake tables

Revision ID: 5b7e2c1d9a4f
Revises:
Create Date: 2026-09-14 10:12:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '5b7e2c1d9a4f'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        'email_messages',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('message_id', sa.String(), nullable=False,
                  comment='Stable id: imap-<uid> or eml-<sha256 prefix>'),
        sa.Column('thread_id', sa.String(), nullable=True),
        sa.Column('header_message_id', sa.String(), nullable=True,
                  comment='RFC 822 Message-ID, used for reply threading'),
        sa.Column('from_address', sa.String(), nullable=False),
        sa.Column('to_addresses', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('cc_addresses', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('subject', sa.String(), nullable=False, server_default=''),
        sa.Column('body_text', sa.Text(), nullable=False, server_default=''),
        sa.Column('received_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('raw_storage_key', sa.String(), nullable=True),
        sa.Column('processing_status', sa.String(), nullable=False, server_default='pending',
                  comment='pending, processing, done, error'),
        sa.Column('is_submission', sa.Boolean(), nullable=True),
        sa.Column('submission_type', sa.String(), nullable=True),
        sa.Column('submission_number', sa.Integer(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True,
                  comment='Failure detail, or classifier reason for non-submissions'),
        sa.Column('reply_sent_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.UniqueConstraint('message_id', name='uq_email_messages_message_id'),
        sa.UniqueConstraint('submission_number', name='uq_email_messages_submission_number'),
    )
    op.create_index('ix_email_messages_message_id', 'email_messages', ['message_id'])
    op.create_index('ix_email_messages_processing_status', 'email_messages', ['processing_status'])

    op.create_table(
        'email_attachments',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email_message_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('email_messages.id', ondelete='CASCADE'), nullable=False),
        sa.Column('filename', sa.String(), nullable=False),
        sa.Column('content_type', sa.String(), nullable=True),
        sa.Column('size_bytes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('storage_key', sa.String(), nullable=False),
        sa.Column('document_type', sa.String(), nullable=False, server_default='other',
                  comment='sov, loss_run, schedule, supplemental, payroll, questionnaire, application, other'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_email_attachments_email_message_id', 'email_attachments', ['email_message_id'])

    op.create_table(
        'extraction_results',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('email_message_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('email_messages.id', ondelete='CASCADE'), nullable=False, unique=True),
        sa.Column('data', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('qa_flags', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('summary_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )

    op.create_table(
        'field_extractions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('extraction_result_id', postgresql.UUID(as_uuid=True),
                  sa.ForeignKey('extraction_results.id', ondelete='CASCADE'), nullable=False),
        sa.Column('field_path', sa.String(), nullable=False),
        sa.Column('field_name', sa.String(), nullable=False),
        sa.Column('field_value', postgresql.JSONB(), nullable=True),
        sa.Column('source', sa.String(), nullable=False, server_default='other'),
        sa.Column('evidence_snippet', sa.Text(), nullable=True),
        sa.Column('reasoning', sa.Text(), nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )
    op.create_index('ix_field_extractions_extraction_result_id', 'field_extractions', ['extraction_result_id'])

    op.create_table(
        'field_definitions',
        sa.Column('id', postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column('field_name', sa.String(), nullable=False, unique=True),
        sa.Column('category', sa.String(), nullable=True),
        sa.Column('field_type', sa.String(), nullable=True),
        sa.Column('business_description', sa.Text(), nullable=True),
        sa.Column('extractor_logic', sa.Text(), nullable=True),
        sa.Column('where_to_look', sa.Text(), nullable=True),
        sa.Column('alternate_field_names', postgresql.JSONB(), nullable=False, server_default='[]'),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), server_default=sa.text('NOW()')),
    )


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('field_definitions')
    op.drop_index('ix_field_extractions_extraction_result_id', table_name='field_extractions')
    op.drop_table('field_extractions')
    op.drop_table('extraction_results')
    op.drop_index('ix_email_attachments_email_message_id', table_name='email_attachments')
    op.drop_table('email_attachments')
    op.drop_index('ix_email_messages_processing_status', table_name='email_messages')
    op.drop_index('ix_email_messages_message_id', table_name='email_messages')
    op.drop_table('email_messages')
