"""Derived message fields: canonical identifier, preview and the stored document."""

from __future__ import annotations

from datetime import UTC, datetime

from .models import Category, EmailDocument
from .parser import ParsedEmail

PREVIEW_LENGTH = 150


def canonical_id(message_id: str | None, account_id: str, uid: int | str) -> str:
    """Return the dedup identifier for a message.

    The protocol Message-ID without its enclosing angle brackets, or
    ``{account_id}_{uid}`` when the message carries none.
    """
    cleaned = (message_id or "").strip().strip("<>").strip()
    if cleaned:
        return cleaned
    return f"{account_id}_{uid}"


def make_preview(body_text: str, length: int = PREVIEW_LENGTH) -> str:
    if len(body_text) <= length:
        return body_text
    return body_text[:length] + "..."


def build_document(
    parsed: ParsedEmail,
    *,
    account_id: str,
    uid: int,
    category: Category,
    folder: str = "INBOX",
) -> EmailDocument:
    """Assemble the document stored and indexed for one message."""
    body_text = parsed.text
    return EmailDocument(
        id=canonical_id(parsed.message_id, account_id, uid),
        account_id=account_id,
        from_=parsed.from_display or parsed.from_address,
        sender_address=parsed.from_address,
        to=parsed.to_display or ", ".join(parsed.to_addresses),
        subject=parsed.subject or "(No Subject)",
        body_text=body_text,
        folder=folder,
        date=parsed.date or datetime.now(UTC),
        category=category,
        preview=make_preview(body_text),
        uid=uid,
    )
