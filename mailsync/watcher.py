"""Per-account watcher: connect, backfill, monitor, reconnect."""

from __future__ import annotations

import asyncio
import contextlib

import structlog

from .config import AccountConfig, SyncConfig
from .errors import MailboxError, MailSyncError, TransportError
from .imap_client import AsyncImapClient
from .models import WatcherState, WatcherStatus
from .monitor import LiveMonitor
from .pipeline import MessagePipeline
from .retry import reconnect_retrying
from .state import WatcherEvent, next_state
from .sync import BackfillCoordinator

logger = structlog.get_logger()


class AccountWatcher:
    """Owns one account's connection and drives its lifecycle.

    :meth:`start` opens the connection and, when that succeeds, spawns a
    single lifecycle task that runs the backfill and then live
    monitoring.  Lost connections are re-established in that same task
    with a fixed delay between attempts; a completed backfill is never
    repeated.  :meth:`stop` cancels the task from any state.
    """

    def __init__(
        self,
        account: AccountConfig,
        pipeline: MessagePipeline,
        config: SyncConfig,
        client: AsyncImapClient | None = None,
    ) -> None:
        self.account = account
        self._pipeline = pipeline
        self._config = config
        self._client = client or AsyncImapClient(account)
        self._state = WatcherState.DISCONNECTED
        self._task: asyncio.Task[None] | None = None
        self._transition_lock = asyncio.Lock()
        self._monitor = LiveMonitor(self._client, pipeline, config)
        self._backfill_complete = False
        self._backfill_processed = 0
        self._backfill_failed = 0
        self._last_error: str | None = None

    @property
    def account_id(self) -> str:
        return self.account.account_id

    @property
    def state(self) -> WatcherState:
        return self._state

    @property
    def client(self) -> AsyncImapClient:
        return self._client

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def _apply(self, event: WatcherEvent) -> None:
        previous = self._state
        self._state = next_state(previous, event)
        logger.info(
            "watcher_state_changed",
            account_id=self.account_id,
            transition=event.value,
            from_state=previous.value,
            to_state=self._state.value,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> bool:
        """Connect and spawn the lifecycle task.

        Returns ``False`` when the initial connection cannot be
        established; the watcher is then back in ``disconnected`` and
        nothing is retried.
        """
        async with self._transition_lock:
            return await self._start()

    async def _start(self) -> bool:
        if self.running:
            return True

        self._backfill_complete = False
        self._monitor = LiveMonitor(self._client, self._pipeline, self._config)
        self._apply(WatcherEvent.START)
        try:
            await self._client.connect()
        except MailSyncError as exc:
            self._last_error = str(exc)
            logger.error(
                "watcher_start_failed",
                account_id=self.account_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._apply(WatcherEvent.CONNECT_FAILED)
            return False

        self._last_error = None
        self._apply(WatcherEvent.CONNECTED)
        self._task = asyncio.create_task(self._lifecycle(), name=f"watcher-{self.account_id}")
        return True

    async def stop(self) -> None:
        """Cancel any pending work, close the connection, go ``disconnected``."""
        async with self._transition_lock:
            await self._stop()

    async def _stop(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await self._client.disconnect()
        if self._state is not WatcherState.DISCONNECTED:
            self._apply(WatcherEvent.STOP)
        logger.info("watcher_stopped", account_id=self.account_id)

    async def _lifecycle(self) -> None:
        try:
            await self._run_lifecycle()
        except Exception as exc:
            self._last_error = str(exc)
            logger.exception("watcher_failed", account_id=self.account_id)
            await self._client.disconnect()
            self._apply(WatcherEvent.STOP)

    async def _run_lifecycle(self) -> None:
        resuming = False
        while True:
            try:
                if not self._backfill_complete:
                    await self._backfill()
                    await self._monitor.prime()
                    self._apply(WatcherEvent.BACKFILL_DONE)
                elif resuming:
                    await self._monitor.resume()
                resuming = False
                await self._monitor.run()
            except (TransportError, MailboxError) as exc:
                self._last_error = str(exc)
                logger.warning(
                    "watcher_connection_lost",
                    account_id=self.account_id,
                    state=self._state.value,
                    error=str(exc),
                )
                self._apply(WatcherEvent.CONNECTION_LOST)
                if not await self._reconnect():
                    return
                resuming = True

    async def _backfill(self) -> None:
        coordinator = BackfillCoordinator(self._client, self._pipeline, self._config)
        result = await coordinator.run()
        self._backfill_processed += result.processed
        self._backfill_failed += result.failed
        self._backfill_complete = True

    async def _reconnect(self) -> bool:
        """Re-open the connection, retrying transport errors indefinitely."""
        await self._client.disconnect()
        delay = self._config.reconnect_delay_seconds
        logger.info("watcher_reconnecting", account_id=self.account_id, delay_seconds=delay)
        await asyncio.sleep(delay)
        try:
            async for attempt in reconnect_retrying(delay, account_id=self.account_id):
                with attempt:
                    await self._client.connect()
        except MailSyncError as exc:
            self._last_error = str(exc)
            logger.error(
                "watcher_reconnect_failed",
                account_id=self.account_id,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            self._apply(WatcherEvent.CONNECT_FAILED)
            return False

        self._last_error = None
        if self._backfill_complete:
            self._apply(WatcherEvent.RECONNECTED)
        else:
            self._apply(WatcherEvent.RESUME_BACKFILL)
        logger.info("watcher_reconnected", account_id=self.account_id)
        return True

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def status(self) -> WatcherStatus:
        return WatcherStatus(
            account_id=self.account_id,
            state=self._state,
            monitoring=self._monitor.active and self._state is WatcherState.MONITORING,
            backfill_complete=self._backfill_complete,
            watermark=self._monitor.watermark,
            messages_processed=self._backfill_processed + self._monitor.processed,
            messages_failed=self._backfill_failed + self._monitor.failed,
            last_error=self._last_error,
        )
