"""Live monitoring of one mailbox via IMAP IDLE."""

from __future__ import annotations

import asyncio

import structlog

from .config import SyncConfig
from .errors import IdleUnavailableError
from .imap_client import AsyncImapClient, exists_count
from .pipeline import MessagePipeline

logger = structlog.get_logger()


class LiveMonitor:
    """Waits for ``EXISTS`` notifications and processes the delta range.

    The monitor alternates between two states: waiting in IDLE for the
    message count to change, and draining the sequence range between the
    watermark and the newly reported count.  Both run in the same
    coroutine, so a drain can never overlap another drain.

    The watermark survives reconnects.  It only moves forward after a
    delta range has been fully processed.
    """

    def __init__(self, client: AsyncImapClient, pipeline: MessagePipeline, config: SyncConfig) -> None:
        self._client = client
        self._pipeline = pipeline
        self._config = config
        self.watermark: int | None = None
        self.active = False
        self.processed = 0
        self.failed = 0

    async def prime(self) -> int:
        """Record the current mailbox message count as the watermark."""
        self.watermark = await self._client.mailbox_count()
        logger.info(
            "monitor_primed",
            account_id=self._client.account_id,
            watermark=self.watermark,
        )
        return self.watermark

    async def resume(self) -> None:
        """Reconcile the watermark with the mailbox after a reconnect."""
        if self.watermark is None:
            await self.prime()
            return
        count = await self._client.mailbox_count()
        if count > self.watermark:
            logger.info(
                "monitor_gap_detected",
                account_id=self._client.account_id,
                watermark=self.watermark,
                count=count,
            )
            await self.drain(count)
        elif count < self.watermark:
            logger.info(
                "monitor_mailbox_shrank",
                account_id=self._client.account_id,
                watermark=self.watermark,
                count=count,
            )
            self.watermark = count

    async def run(self) -> None:
        """Monitor until cancelled.  Transport errors propagate.

        After every IDLE cycle the mailbox count is checked against the
        watermark, so messages reported outside IDLE (for example in a
        FETCH response during a drain) are still picked up.
        """
        if self.watermark is None:
            await self.prime()
        try:
            while True:
                count = await self.wait_for_count()
                if count is not None and self.watermark is not None and count > self.watermark:
                    await self.drain(count)
                await self.resume()
        finally:
            self.active = False

    async def wait_for_count(self) -> int | None:
        """One IDLE cycle.  Returns the last reported ``EXISTS`` count, if any."""
        self.active = True
        try:
            responses = await self._client.idle_wait(self._config.idle_renewal_seconds)
        except IdleUnavailableError as exc:
            self.active = False
            logger.warning(
                "idle_unavailable",
                account_id=self._client.account_id,
                retry_in=self._config.idle_retry_delay_seconds,
                error=str(exc),
            )
            await asyncio.sleep(self._config.idle_retry_delay_seconds)
            return None
        return exists_count(responses)

    async def drain(self, new_count: int) -> None:
        """Process sequence numbers ``watermark+1 .. new_count`` in order."""
        assert self.watermark is not None
        account_id = self._client.account_id
        async with self._client.mailbox_lock:
            start = self.watermark + 1
            uids = await self._client.search_sequence_range(start, new_count)
            logger.info(
                "delta_detected",
                account_id=account_id,
                start=start,
                end=new_count,
                uids=len(uids),
            )
            for uid in uids:
                if await self._pipeline.process_uid(self._client, uid):
                    self.processed += 1
                else:
                    self.failed += 1
            self.watermark = new_count
