"""Email intake API endpoints."""

import asyncio
from typing import Annotated, List, Set

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from sqlalchemy.ext.asyncio import AsyncSession

from submission_intake.core.database import get_async_session as get_session
from submission_intake.core.exceptions import AppError, MessageNotFoundError
from submission_intake.dependencies import get_ingest_service, get_mailbox_poller, get_orchestrator
from submission_intake.repositories.email_message_repository import EmailMessageRepository
from submission_intake.repositories.extraction_repository import ExtractionRepository
from submission_intake.schemas.email_intake import (
    EmailMessageResponse,
    ExtractionResultResponse,
    PollResponse,
    ProcessMessageResponse,
    SubmissionDetailResponse,
    UploadResponse,
)
from submission_intake.services.email_ingest_service import EmailIngestService, upload_message_id
from submission_intake.services.intake_orchestrator import IntakeOrchestrator
from submission_intake.services.mailbox_poller import MailboxPoller
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

router = APIRouter()

# Strong references to fire-and-forget processing tasks
_background_tasks: Set[asyncio.Task] = set()


def _log_task_result(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        LOGGER.error(f"Background processing failed: {error}", exc_info=error)


@router.post(
    "/messages/{message_id}/process",
    response_model=ProcessMessageResponse,
    summary="Process a stored email message",
    operation_id="process_email_message",
)
async def process_message(
    message_id: str,
    orchestrator: Annotated[IntakeOrchestrator, Depends(get_orchestrator)],
) -> ProcessMessageResponse:
    """Run the intake pipeline for one message; idempotent for done or in-flight messages."""
    try:
        result = await orchestrator.process_message(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    except AppError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    return ProcessMessageResponse(**result.to_dict())


@router.post(
    "/poll",
    response_model=PollResponse,
    summary="Poll the mailbox once",
    operation_id="poll_mailbox",
)
async def poll_mailbox(
    poller: Annotated[MailboxPoller, Depends(get_mailbox_poller)],
) -> PollResponse:
    try:
        result = await poller.poll_once()
    except AppError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)
    return PollResponse(**result.to_dict())


@router.post(
    "/messages/{message_id}/reset",
    response_model=EmailMessageResponse,
    summary="Reset a message to pending",
    operation_id="reset_email_message",
)
async def reset_message(
    message_id: str,
    db_session: Annotated[AsyncSession, Depends(get_session)],
) -> EmailMessageResponse:
    try:
        message = await EmailMessageRepository(db_session).reset(message_id)
    except MessageNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=e.message)
    LOGGER.info(f"Reset {message_id} to pending")
    return EmailMessageResponse.model_validate(message)


@router.post(
    "/upload",
    response_model=UploadResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Upload a raw .eml file",
    operation_id="upload_email",
)
async def upload_email(
    file: UploadFile = File(..., description="RFC 822 message (.eml)"),
    ingest: EmailIngestService = Depends(get_ingest_service),
    orchestrator: IntakeOrchestrator = Depends(get_orchestrator),
) -> UploadResponse:
    """Store an uploaded message and start processing without waiting for it."""
    raw = await file.read()
    if not raw:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")

    message_id = upload_message_id(raw)
    try:
        await ingest.store_raw_message(raw, message_id)
    except AppError as e:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=e.message)

    task = asyncio.create_task(orchestrator.process_message(message_id))
    _background_tasks.add(task)
    task.add_done_callback(_log_task_result)
    return UploadResponse(message_id=message_id)


@router.get(
    "/messages",
    response_model=List[EmailMessageResponse],
    summary="List recent email messages",
    operation_id="list_email_messages",
)
async def list_messages(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    limit: int = Query(50, ge=1, le=500),
) -> List[EmailMessageResponse]:
    messages = await EmailMessageRepository(db_session).list_recent(limit=limit)
    return [EmailMessageResponse.model_validate(m) for m in messages]


@router.get(
    "/submissions",
    response_model=List[EmailMessageResponse],
    summary="List processed submissions",
    operation_id="list_submissions",
)
async def list_submissions(
    db_session: Annotated[AsyncSession, Depends(get_session)],
    limit: int = Query(100, ge=1, le=500),
) -> List[EmailMessageResponse]:
    messages = await EmailMessageRepository(db_session).list_submissions(limit=limit)
    return [EmailMessageResponse.model_validate(m) for m in messages]


@router.get(
    "/submissions/{message_id}",
    response_model=SubmissionDetailResponse,
    summary="Get a submission with its extraction result",
    operation_id="get_submission",
)
async def get_submission(
    message_id: str,
    db_session: Annotated[AsyncSession, Depends(get_session)],
) -> SubmissionDetailResponse:
    message = await EmailMessageRepository(db_session).get_by_message_id(message_id)
    if message is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Email message {message_id} not found",
        )

    extraction = await ExtractionRepository(db_session).get_by_email_message_id(message.id)
    return SubmissionDetailResponse(
        message=EmailMessageResponse.model_validate(message),
        extraction=ExtractionResultResponse.model_validate(extraction) if extraction else None,
    )
