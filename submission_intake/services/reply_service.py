"""Outbound reply to the submitting broker."""

import asyncio
import smtplib
from email.message import EmailMessage as MimeMessage
from email.utils import formataddr, make_msgid
from typing import List, Optional

from submission_intake.core.config import SmtpSettings, settings
from submission_intake.core.exceptions import ReplyDispatchError
from submission_intake.services.qa.submission_qa import QAFlags
from submission_intake.services.response_packager import PackagedResponse
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)


def reply_subject(subject: str) -> str:
    subject = (subject or "").strip()
    return subject if subject.lower().startswith("re:") else f"Re: {subject}"


def reply_recipients(message, system_address: str) -> List[str]:
    """Sender, To and Cc of the original minus the system mailbox, de-duplicated."""
    recipients: List[str] = []
    for address in [message.from_address, *(message.to_addresses or []), *(message.cc_addresses or [])]:
        address = (address or "").strip().lower()
        if address and address != system_address and address not in recipients:
            recipients.append(address)
    return recipients


def render_body(packaged: PackagedResponse, qa_flags: QAFlags) -> str:
    lines = ["Thank you for your submission.", ""]
    lines += [packaged.summary, "", "Extracted fields:", packaged.table]
    if qa_flags.warnings:
        lines += ["", "Items to review:"] + [f"- {w}" for w in qa_flags.warnings]
    return "\n".join(lines)


class ReplyService:
    """Sends replies over SMTP; blocking I/O runs in a worker thread."""

    def __init__(self, smtp_settings: Optional[SmtpSettings] = None, system_address: Optional[str] = None):
        self.config = smtp_settings or settings.smtp
        self.system_address = (system_address or settings.system_email_address).lower()
        self.logger = LOGGER

    def build_reply(self, message, packaged: PackagedResponse, qa_flags: QAFlags) -> MimeMessage:
        recipients = reply_recipients(message, self.system_address)
        if not recipients:
            raise ReplyDispatchError(f"No reply recipients for message {message.message_id}")

        reply = MimeMessage()
        reply["From"] = formataddr((self.config.from_name, self.config.user or self.system_address))
        reply["To"] = ", ".join(recipients)
        reply["Subject"] = reply_subject(message.subject)
        reply["Message-ID"] = make_msgid()
        if message.header_message_id:
            reply["In-Reply-To"] = message.header_message_id
            references = [message.thread_id] if message.thread_id and message.thread_id != message.header_message_id else []
            reply["References"] = " ".join(references + [message.header_message_id])

        reply.set_content(render_body(packaged, qa_flags))
        reply.add_attachment(
            packaged.json.encode("utf-8"),
            maintype="application",
            subtype="json",
            filename="extraction.json",
        )
        return reply

    async def send_reply(self, message, packaged: PackagedResponse, qa_flags: QAFlags) -> None:
        """Send the packaged result to everyone on the original thread.

        Raises:
            ReplyDispatchError: If the reply cannot be built or sent
        """
        reply = self.build_reply(message, packaged, qa_flags)
        try:
            await asyncio.to_thread(self._send, reply)
        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send reply for {message.message_id}: {e}", exc_info=True)
            raise ReplyDispatchError(f"Reply dispatch failed: {e}", original_error=e) from e

        self.logger.info(
            f"Sent reply for {message.message_id}",
            extra={"to": reply["To"], "subject": reply["Subject"]},
        )

    def _send(self, reply: MimeMessage) -> None:
        if self.config.port == 465:
            smtp = smtplib.SMTP_SSL(self.config.host, self.config.port, timeout=self.config.timeout_seconds)
        else:
            smtp = smtplib.SMTP(self.config.host, self.config.port, timeout=self.config.timeout_seconds)
        with smtp:
            if self.config.use_tls and self.config.port != 465:
                smtp.starttls()
            if self.config.user:
                smtp.login(self.config.user, self.config.password)
            smtp.send_message(reply)
