"""Collaborator interfaces consumed by the message pipeline.

The engine only calls out through these ABCs; concrete adapters live
in :mod:`mailsync.store`, :mod:`mailsync.search_index`,
:mod:`mailsync.notifier` and :mod:`mailsync.reply`.
"""

from __future__ import annotations

import abc
from collections.abc import AsyncIterator

from .models import Category, EmailDocument


class MessageStore(abc.ABC):
    """Durable storage for classified messages."""

    @abc.abstractmethod
    async def upsert(self, document: EmailDocument) -> EmailDocument:
        """Insert or update the record keyed by ``(document.id, document.account_id)``.

        Must be idempotent: repeated calls for the same key update the
        existing record and return the merged result.
        """
        ...

    @abc.abstractmethod
    def iter_all(self) -> AsyncIterator[EmailDocument]:
        """Yield every stored document (used for re-indexing)."""
        ...

    async def initialize(self) -> None:
        """Create whatever schema the store needs.  Default is a no-op."""

    async def ping(self) -> None:
        """Raise if the store is unreachable.  Default is a no-op."""

    async def close(self) -> None:
        """Release connections.  Default is a no-op."""


class SearchIndex(abc.ABC):
    """Full-text index over stored messages.  Best-effort."""

    @abc.abstractmethod
    async def upsert(self, document: EmailDocument) -> None:
        ...

    async def initialize(self) -> None:
        """Create the index if needed.  Default is a no-op."""

    async def close(self) -> None:
        """Release connections.  Default is a no-op."""


class Notifier(abc.ABC):
    """Outbound notification for messages classified as interested."""

    @abc.abstractmethod
    async def notify(self, subject: str, sender: str) -> None:
        """Send the notification.  Implementations must not raise."""
        ...

    async def close(self) -> None:
        """Release connections.  Default is a no-op."""


class ReplyGenerator(abc.ABC):
    """Produces the auto-reply body for a classified message."""

    @abc.abstractmethod
    async def generate(
        self,
        category: Category,
        subject: str,
        body: str,
        sender: str,
    ) -> str:
        """Return the reply body, or an empty string for no reply."""
        ...


class ReplyDispatcher(abc.ABC):
    """Sends an auto-reply from the account that received the message."""

    @abc.abstractmethod
    async def dispatch(
        self,
        account_id: str,
        recipient: str,
        subject: str,
        body: str,
        in_reply_to: str | None,
    ) -> bool:
        """Send the reply.  Returns ``False`` on failure instead of raising."""
        ...
