from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from submission_intake.core.config import MailboxSettings
from submission_intake.core.exceptions import MailboxError
from submission_intake.services.mailbox.imap_source import ImapMailboxSource, stable_message_id, uid_from_message_id

OK = "OK"


def response(lines=(), result=OK):
    return SimpleNamespace(result=result, lines=list(lines))


@pytest.fixture
def client():
    return SimpleNamespace(
        wait_hello_from_server=AsyncMock(),
        login=AsyncMock(return_value=response()),
        select=AsyncMock(return_value=response()),
        logout=AsyncMock(),
        uid_search=AsyncMock(),
        uid=AsyncMock(return_value=response()),
    )


@pytest.fixture
def source(client):
    mailbox_settings = MailboxSettings(
        IMAP_USER="intake@agency.example",
        IMAP_PASSWORD="secret",
        SYSTEM_EMAIL_ADDRESS="Intake@Agency.example",
    )
    with patch("submission_intake.services.mailbox.imap_source.aioimaplib.IMAP4_SSL", return_value=client):
        yield ImapMailboxSource(mailbox_settings)


class TestMessageIds:

    def test_round_trip(self):
        assert stable_message_id("4711") == "imap-4711"
        assert uid_from_message_id("imap-4711") == "4711"
        assert uid_from_message_id("eml-abc") == "eml-abc"


class TestListCandidates:

    @pytest.mark.asyncio
    async def test_unseen_minus_own_mail(self, source, client):
        client.uid_search.side_effect = [
            response([b"101 102 103"]),
            response([b"102"]),
        ]

        assert await source.list_candidate_identifiers() == ["101", "103"]

        first, second = client.uid_search.await_args_list
        assert first.args == ("UNSEEN", "TO", '"intake@agency.example"')
        assert second.args == ("FROM", '"intake@agency.example"')
        client.logout.assert_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_lookback_window(self, source, client):
        client.uid_search.side_effect = [response([b""]), response([b"90 91"]), response([b""])]

        assert await source.list_candidate_identifiers() == ["90", "91"]
        assert client.uid_search.await_args_list[1].args[0] == "SINCE"

    @pytest.mark.asyncio
    async def test_login_failure(self, source, client):
        client.login.return_value = response(result="NO")

        with pytest.raises(MailboxError):
            await source.list_candidate_identifiers()
        client.logout.assert_awaited()


class TestFetchAndFlag:

    @pytest.mark.asyncio
    async def test_fetch_returns_literal(self, source, client):
        client.uid.return_value = response([b"1 FETCH (UID 101 BODY[] {12}", bytearray(b"Subject: hi\r\n"), b")"])

        assert await source.fetch_raw_message("101") == b"Subject: hi\r\n"
        client.uid.assert_awaited_once_with("fetch", "101", "(BODY.PEEK[])")

    @pytest.mark.asyncio
    async def test_fetch_without_body(self, source, client):
        client.uid.return_value = response([b"OK"])
        with pytest.raises(MailboxError):
            await source.fetch_raw_message("101")

    @pytest.mark.asyncio
    async def test_mark_seen(self, source, client):
        await source.mark_seen("101")
        client.uid.assert_awaited_once_with("store", "101", "+FLAGS.SILENT", "(\\Seen)")
