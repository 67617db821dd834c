"""Starts, stops and reports on every configured account watcher."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .config import AccountConfig, SyncConfig
from .interface import MessageStore, SearchIndex
from .models import Readiness, ReindexResult, WatcherState, WatcherStatus
from .pipeline import MessagePipeline
from .state import is_connected
from .watcher import AccountWatcher

logger = structlog.get_logger()

WatcherFactory = Callable[[AccountConfig], AccountWatcher]


class IngestionOrchestrator:
    """Fans lifecycle commands out to one :class:`AccountWatcher` per account.

    Watchers are independent: a failure to start one account is logged
    and never prevents the others from starting.
    """

    def __init__(
        self,
        accounts: list[AccountConfig],
        *,
        pipeline: MessagePipeline,
        store: MessageStore,
        index: SearchIndex,
        config: SyncConfig,
        watcher_factory: WatcherFactory | None = None,
    ) -> None:
        self._store = store
        self._index = index
        self._config = config
        factory = watcher_factory or (lambda account: AccountWatcher(account, pipeline, config))
        self._watchers = [factory(account) for account in accounts]
        self._lifecycle_lock = asyncio.Lock()

    @property
    def watchers(self) -> list[AccountWatcher]:
        return list(self._watchers)

    async def start_all(self) -> list[AccountWatcher]:
        """Start every watcher in order, staggered; return the ones that connected."""
        async with self._lifecycle_lock:
            return await self._start_all()

    async def _start_all(self) -> list[AccountWatcher]:
        if not self._watchers:
            logger.warning("no_accounts_configured")
            return []

        started: list[AccountWatcher] = []
        for position, watcher in enumerate(self._watchers):
            if position > 0:
                await asyncio.sleep(self._config.start_stagger_seconds)
            try:
                if await watcher.start():
                    started.append(watcher)
            except Exception:
                logger.exception("watcher_start_error", account_id=watcher.account_id)

        logger.info(
            "watchers_started",
            configured=len(self._watchers),
            connected=len(started),
        )
        return started

    async def stop_all(self) -> None:
        async with self._lifecycle_lock:
            await self._stop_all()

    async def _stop_all(self) -> None:
        results = await asyncio.gather(
            *(watcher.stop() for watcher in self._watchers),
            return_exceptions=True,
        )
        for watcher, result in zip(self._watchers, results):
            if isinstance(result, Exception):
                logger.error(
                    "watcher_stop_failed",
                    account_id=watcher.account_id,
                    error=str(result),
                )
        logger.info("watchers_stopped", count=len(self._watchers))

    async def resync(self) -> int:
        """Restart every watcher, including a fresh backfill.  Returns how many connected.

        Overlapping calls run one after the other.
        """
        async with self._lifecycle_lock:
            logger.info("resync_requested", configured=len(self._watchers))
            await self._stop_all()
            started = await self._start_all()
            return len(started)

    async def reindex_all(self) -> ReindexResult:
        """Send every stored message to the search index again."""
        result = ReindexResult()
        async for document in self._store.iter_all():
            result.total += 1
            try:
                await self._index.upsert(document)
            except Exception as exc:
                result.errors += 1
                logger.warning(
                    "reindex_document_failed",
                    account_id=document.account_id,
                    message_id=document.id,
                    error=str(exc),
                )
            else:
                result.indexed += 1

        logger.info(
            "reindex_complete",
            indexed=result.indexed,
            errors=result.errors,
            total=result.total,
        )
        return result

    def statuses(self) -> list[WatcherStatus]:
        return [watcher.status() for watcher in self._watchers]

    def readiness(self) -> Readiness:
        statuses = self.statuses()
        return Readiness(
            configured=len(statuses),
            connected=sum(1 for status in statuses if is_connected(status.state)),
            monitoring=sum(
                1
                for status in statuses
                if status.monitoring and status.state is WatcherState.MONITORING
            ),
        )
