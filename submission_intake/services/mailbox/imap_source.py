"""IMAP mailbox source for the shared submission inbox."""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, List, Optional

import aioimaplib

from submission_intake.core.config import MailboxSettings, settings
from submission_intake.core.exceptions import MailboxError
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

MESSAGE_ID_PREFIX = "imap-"


def stable_message_id(uid: str) -> str:
    return f"{MESSAGE_ID_PREFIX}{uid}"


def uid_from_message_id(message_id: str) -> str:
    return message_id[len(MESSAGE_ID_PREFIX):] if message_id.startswith(MESSAGE_ID_PREFIX) else message_id


class ImapMailboxSource:
    """Lists, fetches and flags messages over IMAP4-SSL.

    Identifiers returned by ``list_candidate_identifiers`` are IMAP UIDs.
    Delivery is at-least-once: the same UID can be listed again until it is
    marked seen.
    """

    def __init__(self, mailbox_settings: Optional[MailboxSettings] = None):
        self.config = mailbox_settings or settings.mailbox
        self.logger = LOGGER

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[aioimaplib.IMAP4_SSL]:
        client = aioimaplib.IMAP4_SSL(
            host=self.config.imap_host,
            port=self.config.imap_port,
            timeout=self.config.imap_timeout_seconds,
        )
        try:
            await client.wait_hello_from_server()
            response = await client.login(self.config.imap_user, self.config.imap_password)
            if response.result != "OK":
                raise MailboxError(f"IMAP login failed for {self.config.imap_user}: {response.result}")
            response = await client.select(self.config.imap_folder)
            if response.result != "OK":
                raise MailboxError(f"Cannot select folder {self.config.imap_folder}: {response.result}")
            yield client
        except MailboxError:
            raise
        except Exception as e:
            self.logger.error(f"IMAP session error: {e}", exc_info=True)
            raise MailboxError(f"IMAP session error: {e}", original_error=e) from e
        finally:
            try:
                await client.logout()
            except Exception as e:
                self.logger.debug(f"IMAP logout failed: {e}")

    async def list_candidate_identifiers(self) -> List[str]:
        """UIDs of unseen mail addressed to the system mailbox.

        Falls back to everything received in the lookback window when nothing
        is unseen. Mail sent from the system address is excluded.
        """
        address = self.config.system_address
        async with self._session() as client:
            criteria = ["UNSEEN", "TO", f'"{address}"'] if address else ["UNSEEN"]
            uids = await self._search(client, *criteria)

            if not uids:
                since = (datetime.now(timezone.utc) - timedelta(hours=self.config.lookback_hours)).strftime("%d-%b-%Y")
                uids = await self._search(client, "SINCE", since)

            if uids and address:
                own = set(await self._search(client, "FROM", f'"{address}"'))
                uids = [uid for uid in uids if uid not in own]

        self.logger.info(f"Found {len(uids)} candidate message(s)", extra={"folder": self.config.imap_folder})
        return uids

    async def fetch_raw_message(self, uid: str) -> bytes:
        """Full RFC 822 bytes of one message (does not set \\Seen)."""
        async with self._session() as client:
            response = await client.uid("fetch", uid, "(BODY.PEEK[])")
            if response.result != "OK":
                raise MailboxError(f"Failed to fetch message {uid}: {response.result}")

            for line in response.lines:
                if isinstance(line, bytearray):
                    return bytes(line)
        raise MailboxError(f"Message {uid} returned no body")

    async def mark_seen(self, uid: str) -> None:
        async with self._session() as client:
            response = await client.uid("store", uid, "+FLAGS.SILENT", "(\\Seen)")
            if response.result != "OK":
                raise MailboxError(f"Failed to mark message {uid} as seen: {response.result}")

    async def _search(self, client: aioimaplib.IMAP4_SSL, *criteria: str) -> List[str]:
        response = await client.uid_search(*criteria)
        if response.result != "OK":
            self.logger.warning(f"IMAP search {' '.join(criteria)} failed: {response.result}")
            return []
        if not response.lines:
            return []
        first = response.lines[0]
        if isinstance(first, (bytes, bytearray)):
            first = first.decode()
        return [uid for uid in first.split() if uid.isdigit()]
