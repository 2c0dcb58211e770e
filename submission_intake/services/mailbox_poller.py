"""Mailbox poll cycle: discover new identifiers and hand them to the worker."""

import asyncio
from dataclasses import dataclass
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from submission_intake.core.retry import RetryPolicy
from submission_intake.repositories.email_message_repository import EmailMessageRepository
from submission_intake.services.email_ingest_service import EmailIngestService
from submission_intake.services.intake_orchestrator import IntakeOrchestrator, ProcessResult
from submission_intake.services.mailbox.imap_source import (
    ImapMailboxSource,
    stable_message_id,
    uid_from_message_id,
)
from submission_intake.services.polling_worker import PollingWorker
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


@dataclass
class PollResult:
    new_emails_found: int
    processed: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"new_emails_found": self.new_emails_found, "processed": self.processed}


class MailboxPoller:
    """Lists the mailbox, filters settled messages and enqueues the rest.

    A message is settled once stored in any status other than ``error``;
    errored messages are enqueued again and retried by the orchestrator.

    ``poll_once`` returns as soon as identifiers are queued; processing
    happens on the worker, so ``processed`` in the result is always 0.
    """

    def __init__(
        self,
        source: ImapMailboxSource,
        ingest: EmailIngestService,
        orchestrator: IntakeOrchestrator,
        session_factory: async_sessionmaker[AsyncSession],
        retry_policy: Optional[RetryPolicy] = None,
        inter_message_delay: float = 0.5,
        sleep=asyncio.sleep,
    ):
        self.source = source
        self.ingest = ingest
        self.orchestrator = orchestrator
        self.session_factory = session_factory
        self.worker = PollingWorker(
            self.handle_message,
            retry_policy=retry_policy,
            inter_message_delay=inter_message_delay,
            sleep=sleep,
        )
        self.logger = LOGGER

    async def poll_once(self) -> PollResult:
        uids = await self.source.list_candidate_identifiers()
        if not uids:
            return PollResult(new_emails_found=0)

        message_ids = [stable_message_id(uid) for uid in uids]
        async with self.session_factory() as session:
            settled = await EmailMessageRepository(session).settled_message_ids(message_ids)

        new_ids = [message_id for message_id in message_ids if message_id not in settled]
        queued = self.worker.enqueue(new_ids)
        self.logger.info(
            f"Poll found {len(new_ids)} new message(s)",
            extra={"candidates": len(uids), "queued": queued},
        )
        return PollResult(new_emails_found=len(new_ids))

    async def handle_message(self, message_id: str) -> ProcessResult:
        """Fetch, store, process, then mark the message seen in the mailbox."""
        uid = uid_from_message_id(message_id)
        raw = await self.source.fetch_raw_message(uid)
        await self.ingest.store_raw_message(raw, message_id)
        result = await self.orchestrator.process_message(message_id)
        await self.source.mark_seen(uid)
        self.logger.info(f"Handled {message_id}", extra=result.to_dict())
        return result
