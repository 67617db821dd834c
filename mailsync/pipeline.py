"""Per-message pipeline: fetch, parse, classify, store, then side effects."""

from __future__ import annotations

import structlog

from .classifier import MessageClassifier
from .envelope import build_document
from .errors import MailboxError, TransportError
from .imap_client import AsyncImapClient
from .interface import MessageStore, Notifier, ReplyDispatcher, ReplyGenerator, SearchIndex
from .models import Category, EmailDocument
from .parser import MimeParser
from .reply import NO_REPLY_CATEGORIES

logger = structlog.get_logger()


class MessagePipeline:
    """Turns one fetched message into a stored, classified document.

    The store write is the only required step.  Indexing, notification
    and auto-replies are best-effort: their failures are logged and never
    fail the message.
    """

    def __init__(
        self,
        *,
        store: MessageStore,
        index: SearchIndex | None = None,
        notifier: Notifier | None = None,
        reply_generator: ReplyGenerator | None = None,
        reply_dispatcher: ReplyDispatcher | None = None,
        classifier: MessageClassifier | None = None,
        parser: MimeParser | None = None,
    ) -> None:
        self._store = store
        self._index = index
        self._notifier = notifier
        self._reply_generator = reply_generator
        self._reply_dispatcher = reply_dispatcher
        self._classifier = classifier or MessageClassifier()
        self._parser = parser or MimeParser()

    async def process_uid(self, client: AsyncImapClient, uid: int) -> bool:
        """Fetch and ingest *uid*.  Returns ``False`` if the message failed.

        Transport errors are re-raised so the watcher can reconnect; every
        other failure is contained to this message.
        """
        account_id = client.account_id
        try:
            raw = await client.fetch_raw(uid)
            if raw is None:
                raise MailboxError(f"no body returned for uid {uid}")
            await self.ingest(account_id, uid, raw)
        except TransportError:
            raise
        except Exception as exc:
            logger.error(
                "message_processing_failed",
                account_id=account_id,
                uid=uid,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False
        return True

    async def ingest(self, account_id: str, uid: int, raw: bytes) -> EmailDocument:
        parsed = self._parser.parse(raw)
        body = parsed.text
        category = self._classifier.classify(parsed.subject, body, parsed.from_address)
        document = build_document(parsed, account_id=account_id, uid=uid, category=category)

        stored = await self._store.upsert(document)
        logger.info(
            "message_stored",
            account_id=account_id,
            uid=uid,
            message_id=stored.id,
            category=category.value,
        )

        await self._index_document(stored)
        if category is Category.INTERESTED:
            await self._notify(stored)
        await self._reply(stored)
        return stored

    async def _index_document(self, document: EmailDocument) -> None:
        if self._index is None:
            return
        try:
            await self._index.upsert(document)
        except Exception as exc:
            logger.warning(
                "search_index_failed",
                account_id=document.account_id,
                message_id=document.id,
                error=str(exc),
            )

    async def _notify(self, document: EmailDocument) -> None:
        if self._notifier is None:
            return
        try:
            await self._notifier.notify(document.subject, document.from_)
        except Exception as exc:
            logger.warning(
                "notification_failed",
                account_id=document.account_id,
                message_id=document.id,
                error=str(exc),
            )

    async def _reply(self, document: EmailDocument) -> None:
        if self._reply_generator is None or self._reply_dispatcher is None:
            return
        if document.category in NO_REPLY_CATEGORIES or not document.sender_address:
            return
        try:
            body = await self._reply_generator.generate(
                document.category,
                document.subject,
                document.body_text,
                document.from_,
            )
            if not body.strip():
                return
            await self._reply_dispatcher.dispatch(
                document.account_id,
                document.sender_address,
                document.subject,
                body,
                document.id,
            )
        except Exception as exc:
            logger.warning(
                "auto_reply_failed",
                account_id=document.account_id,
                message_id=document.id,
                error=str(exc),
            )
