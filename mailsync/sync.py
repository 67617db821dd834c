"""Bounded historical backfill for one account."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

import structlog

from .config import SyncConfig
from .errors import TransportError
from .imap_client import AsyncImapClient
from .models import BackfillResult
from .pipeline import MessagePipeline

logger = structlog.get_logger()


def batched(uids: list[int], size: int) -> list[list[int]]:
    """Split *uids* into consecutive batches of at most *size*."""
    return [uids[i : i + size] for i in range(0, len(uids), size)]


class BackfillCoordinator:
    """Processes every message of the trailing window in bounded batches.

    Batches run sequentially in ascending UID order; the messages within
    one batch run concurrently.  The mailbox lock is held for the whole
    run so live-monitor deltas cannot interleave with it.
    """

    def __init__(self, client: AsyncImapClient, pipeline: MessagePipeline, config: SyncConfig) -> None:
        self._client = client
        self._pipeline = pipeline
        self._config = config

    def window_start(self, now: datetime | None = None) -> datetime:
        now = now or datetime.now(UTC)
        return now - timedelta(days=self._config.backfill_days)

    async def run(self) -> BackfillResult:
        """Run the backfill.  Transport errors abort it and propagate."""
        account_id = self._client.account_id
        since = self.window_start()
        result = BackfillResult()

        async with self._client.mailbox_lock:
            uids = await self._client.search_since(since.date())
            batches = batched(uids, self._config.batch_size)
            result.selected = len(uids)
            logger.info(
                "backfill_started",
                account_id=account_id,
                since=since.date().isoformat(),
                selected=len(uids),
                batches=len(batches),
            )

            for number, batch in enumerate(batches, start=1):
                outcomes = await asyncio.gather(
                    *(self._pipeline.process_uid(self._client, uid) for uid in batch),
                    return_exceptions=True,
                )
                for outcome in outcomes:
                    if isinstance(outcome, TransportError):
                        raise outcome
                for uid, outcome in zip(batch, outcomes):
                    if outcome is True:
                        result.processed += 1
                    else:
                        if isinstance(outcome, BaseException):
                            logger.error(
                                "backfill_message_failed",
                                account_id=account_id,
                                uid=uid,
                                error=str(outcome),
                            )
                        result.failed += 1
                result.batches = number
                logger.info(
                    "backfill_batch_complete",
                    account_id=account_id,
                    batch=number,
                    of=len(batches),
                    processed=result.processed,
                    failed=result.failed,
                )

        logger.info(
            "backfill_complete",
            account_id=account_id,
            selected=result.selected,
            processed=result.processed,
            failed=result.failed,
        )
        return result
