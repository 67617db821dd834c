"""Tests for mailsync.sync (historical backfill)."""

from __future__ import annotations

import asyncio
from collections import Counter
from datetime import UTC, datetime, timedelta

import pytest

from mailsync.config import SyncConfig
from mailsync.errors import MailboxError, TransportError
from mailsync.pipeline import MessagePipeline
from mailsync.sync import BackfillCoordinator, batched


class TestBatched:
    def test_splits_in_order(self):
        assert batched([1, 2, 3, 4, 5, 6, 7], 3) == [[1, 2, 3], [4, 5, 6], [7]]

    def test_empty(self):
        assert batched([], 5) == []


class TestBackfillCoordinator:
    @pytest.mark.asyncio
    async def test_processes_every_uid_once_in_batches(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        fake_client.add_messages(list(range(1, 13)))
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)

        result = await coordinator.run()

        assert result.selected == 12
        assert result.batches == 3
        assert result.processed == 12
        assert result.failed == 0
        assert Counter(fake_client.fetched) == Counter(range(1, 13))
        assert len(memory_store.records) == 12

    @pytest.mark.asyncio
    async def test_batches_run_sequentially(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        fake_client.add_messages(list(range(1, 11)))
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)

        await coordinator.run()

        first_batch = set(fake_client.fetched[:5])
        second_batch = set(fake_client.fetched[5:])
        assert first_batch == {1, 2, 3, 4, 5}
        assert second_batch == {6, 7, 8, 9, 10}

    @pytest.mark.asyncio
    async def test_message_failure_does_not_abort_batch(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        fake_client.add_messages([1, 2, 3])
        fake_client.fetch_errors[2] = MailboxError("NO")
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)

        result = await coordinator.run()

        assert result.processed == 2
        assert result.failed == 1

    @pytest.mark.asyncio
    async def test_transport_error_aborts(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        fake_client.add_messages(list(range(1, 11)))
        fake_client.fetch_errors[3] = TransportError("reset")
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)

        with pytest.raises(TransportError):
            await coordinator.run()
        assert not any(uid > 5 for uid in fake_client.fetched)
        assert not fake_client.mailbox_lock.locked()

    @pytest.mark.asyncio
    async def test_empty_mailbox(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)
        result = await coordinator.run()
        assert result.selected == 0
        assert result.batches == 0

    @pytest.mark.asyncio
    async def test_holds_mailbox_lock_for_whole_run(self, fake_client, memory_store, sync_config):
        fake_client.connected = True
        fake_client.add_messages(list(range(1, 8)))
        seen_locked: list[bool] = []
        original = fake_client.fetch_raw

        async def fetch_and_check(uid: int):
            seen_locked.append(fake_client.mailbox_lock.locked())
            return await original(uid)

        fake_client.fetch_raw = fetch_and_check
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)
        await coordinator.run()

        assert seen_locked and all(seen_locked)
        assert not fake_client.mailbox_lock.locked()

    @pytest.mark.asyncio
    async def test_concurrency_bounded_by_batch_size(self, fake_client, memory_store):
        fake_client.connected = True
        fake_client.add_messages(list(range(1, 10)))
        in_flight = 0
        peak = 0
        original = fake_client.fetch_raw

        async def slow_fetch(uid: int):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            try:
                return await original(uid)
            finally:
                in_flight -= 1

        fake_client.fetch_raw = slow_fetch
        config = SyncConfig(batch_size=4)
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), config)
        await coordinator.run()

        assert peak == 4

    def test_window_start(self, fake_client, memory_store, sync_config):
        coordinator = BackfillCoordinator(fake_client, MessagePipeline(store=memory_store), sync_config)
        now = datetime(2025, 6, 30, tzinfo=UTC)
        assert coordinator.window_start(now) == now - timedelta(days=30)
