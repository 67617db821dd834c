"""Auto-reply generation and SMTP dispatch."""

from __future__ import annotations

from email.message import EmailMessage

import aiosmtplib
import structlog

from .config import AccountConfig
from .interface import ReplyDispatcher, ReplyGenerator
from .models import Category

logger = structlog.get_logger()

REPLY_TEMPLATES: dict[Category, str] = {
    Category.INTERESTED: "Thank you! Our team will reach out to you very soon. Please stay connected.",
    Category.NOT_INTERESTED: "Thank you for your response! No worries, we won't disturb you further.",
    Category.OUT_OF_OFFICE: "Thank you for informing! We will follow up once you are back.",
}

NO_REPLY_CATEGORIES: frozenset[Category] = frozenset({Category.SPAM, Category.MEETINGS})


class TemplateReplyGenerator(ReplyGenerator):
    """Fixed reply text per category; no reply for anything else."""

    def __init__(self, templates: dict[Category, str] | None = None) -> None:
        self._templates = dict(REPLY_TEMPLATES if templates is None else templates)

    async def generate(self, category: Category, subject: str, body: str, sender: str) -> str:
        if category in NO_REPLY_CATEGORIES:
            return ""
        return self._templates.get(category, "")


def reply_subject(subject: str) -> str:
    if subject.strip().lower().startswith("re:"):
        return subject
    return f"Re: {subject}"


def build_reply(
    *,
    sender: str,
    recipient: str,
    subject: str,
    body: str,
    in_reply_to: str | None,
) -> EmailMessage:
    message = EmailMessage()
    message["From"] = sender
    message["To"] = recipient
    message["Subject"] = reply_subject(subject)
    if in_reply_to:
        message["In-Reply-To"] = f"<{in_reply_to}>"
        message["References"] = f"<{in_reply_to}>"
    message.set_content(body)
    message.add_alternative("<p>" + body.replace("\n", "<br>") + "</p>", subtype="html")
    return message


class SmtpReplyDispatcher(ReplyDispatcher):
    """Sends replies over SMTP using each account's own credentials."""

    def __init__(self, accounts: list[AccountConfig], *, timeout: float = 30.0) -> None:
        self._accounts = {account.account_id: account for account in accounts}
        self._timeout = timeout

    async def dispatch(
        self,
        account_id: str,
        recipient: str,
        subject: str,
        body: str,
        in_reply_to: str | None,
    ) -> bool:
        if not body.strip():
            logger.info("reply_skipped_empty_body", account_id=account_id)
            return False

        account = self._accounts.get(account_id)
        if account is None:
            logger.error("reply_account_unknown", account_id=account_id)
            return False

        message = build_reply(
            sender=account.username,
            recipient=recipient,
            subject=subject,
            body=body,
            in_reply_to=in_reply_to,
        )
        implicit_tls = account.smtp_port == 465
        try:
            await aiosmtplib.send(
                message,
                hostname=account.reply_host,
                port=account.smtp_port,
                username=account.username,
                password=account.password.get_secret_value(),
                use_tls=implicit_tls,
                start_tls=not implicit_tls,
                timeout=self._timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as exc:
            logger.warning(
                "reply_send_failed",
                account_id=account_id,
                recipient=recipient,
                error=str(exc),
            )
            return False

        logger.info("reply_sent", account_id=account_id, recipient=recipient)
        return True
