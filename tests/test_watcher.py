"""Tests for mailsync.watcher."""

from __future__ import annotations

import asyncio

import pytest

from tests.conftest import FakeImapClient, wait_until

from mailsync.config import SyncConfig
from mailsync.errors import AuthenticationError, TransportError
from mailsync.models import WatcherState
from mailsync.pipeline import MessagePipeline
from mailsync.state import WatcherEvent
from mailsync.watcher import AccountWatcher


def _watcher(account_config, client, store, config) -> AccountWatcher:
    return AccountWatcher(account_config, MessagePipeline(store=store), config, client=client)


def _record_states(watcher: AccountWatcher) -> list[WatcherState]:
    """Capture every state the watcher passes through."""
    states: list[WatcherState] = [watcher.state]
    original = watcher._apply

    def recording(event):
        original(event)
        states.append(watcher.state)

    watcher._apply = recording
    return states


class TestStart:
    @pytest.mark.asyncio
    async def test_backfill_then_monitoring(self, account_config, fake_client, memory_store, sync_config):
        fake_client.add_messages([1, 2, 3])
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        states = _record_states(watcher)

        assert await watcher.start() is True
        await wait_until(lambda: watcher.state is WatcherState.MONITORING)

        assert states == [
            WatcherState.DISCONNECTED,
            WatcherState.CONNECTING,
            WatcherState.SYNCING,
            WatcherState.MONITORING,
        ]
        assert len(memory_store.records) == 3
        status = watcher.status()
        assert status.backfill_complete is True
        assert status.watermark == 3
        assert status.messages_processed == 3
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_auth_failure_is_terminal(self, account_config, fake_client, memory_store, sync_config):
        fake_client.connect_errors = [AuthenticationError("bad credentials")]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)

        assert await watcher.start() is False

        assert watcher.state is WatcherState.DISCONNECTED
        assert watcher.running is False
        assert watcher.status().last_error == "bad credentials"
        await asyncio.sleep(0.05)
        assert fake_client.connect_calls == 1

    @pytest.mark.asyncio
    async def test_initial_transport_failure_is_not_retried(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.connect_errors = [TransportError("connection refused")]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)

        assert await watcher.start() is False
        await asyncio.sleep(0.05)
        assert fake_client.connect_calls == 1
        assert watcher.state is WatcherState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_twice_is_noop(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        assert await watcher.start() is True
        assert await watcher.start() is True
        assert fake_client.connect_calls == 1
        await watcher.stop()

    def test_state_change_is_logged_without_error(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        watcher._apply(WatcherEvent.START)
        assert watcher.state is WatcherState.CONNECTING

    @pytest.mark.asyncio
    async def test_concurrent_starts_connect_once(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)

        results = await asyncio.gather(watcher.start(), watcher.start())

        assert results == [True, True]
        assert fake_client.connect_calls == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_stop_waits_for_pending_start(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)

        await asyncio.gather(watcher.start(), watcher.stop())

        assert watcher.state is WatcherState.DISCONNECTED
        assert watcher.running is False


class TestReconnect:
    @pytest.mark.asyncio
    async def test_reconnect_resumes_monitoring_without_backfill(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.add_messages([1, 2])
        fake_client.idle_script = [TransportError("socket closed")]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        states = _record_states(watcher)

        await watcher.start()
        await wait_until(lambda: fake_client.connect_calls == 2 and watcher.state is WatcherState.MONITORING)

        assert states[-3:] == [
            WatcherState.MONITORING,
            WatcherState.RECONNECTING,
            WatcherState.MONITORING,
        ]
        assert WatcherState.SYNCING not in states[4:]
        assert fake_client.search_since_calls == 1
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_messages_arriving_while_disconnected_are_drained(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.add_messages([1, 2])

        def drop_connection():
            fake_client.add_messages([3])
            raise TransportError("socket closed")

        fake_client.idle_script = [drop_connection]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)

        await watcher.start()
        await wait_until(lambda: watcher.status().watermark == 3)

        assert ("msg-3@example.com", "account1") in memory_store.records
        assert fake_client.range_searches == [(3, 3)]
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_connection_lost_during_backfill_resumes_backfill(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.add_messages([1, 2, 3])
        fake_client.fetch_errors[2] = TransportError("reset")
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        states = _record_states(watcher)

        await watcher.start()
        await wait_until(lambda: watcher.state is WatcherState.MONITORING)

        assert states == [
            WatcherState.DISCONNECTED,
            WatcherState.CONNECTING,
            WatcherState.SYNCING,
            WatcherState.RECONNECTING,
            WatcherState.SYNCING,
            WatcherState.MONITORING,
        ]
        assert fake_client.search_since_calls == 2
        assert len(memory_store.records) == 3
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_transport_errors_on_reconnect_are_retried(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.idle_script = [TransportError("socket closed")]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        await watcher.start()
        fake_client.connect_errors = [TransportError("refused"), TransportError("refused")]

        await wait_until(lambda: fake_client.connect_calls == 4 and watcher.state is WatcherState.MONITORING)
        await watcher.stop()

    @pytest.mark.asyncio
    async def test_auth_failure_on_reconnect_is_terminal(
        self, account_config, fake_client, memory_store, sync_config
    ):
        fake_client.idle_script = [TransportError("socket closed")]
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        await watcher.start()
        fake_client.connect_errors = [AuthenticationError("password changed")]

        await wait_until(lambda: not watcher.running)

        assert watcher.state is WatcherState.DISCONNECTED
        assert watcher.status().last_error == "password changed"
        assert fake_client.connect_calls == 2


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_from_monitoring(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        await watcher.start()
        await wait_until(lambda: watcher.state is WatcherState.MONITORING)

        await watcher.stop()

        assert watcher.state is WatcherState.DISCONNECTED
        assert watcher.running is False
        assert fake_client.connected is False
        assert not fake_client.mailbox_lock.locked()

    @pytest.mark.asyncio
    async def test_stop_cancels_pending_reconnect(self, account_config, fake_client, memory_store):
        config = SyncConfig(reconnect_delay_seconds=30.0, start_stagger_seconds=0.0)
        fake_client.idle_script = [TransportError("socket closed")]
        watcher = _watcher(account_config, fake_client, memory_store, config)
        await watcher.start()
        await wait_until(lambda: watcher.state is WatcherState.RECONNECTING)

        await asyncio.wait_for(watcher.stop(), timeout=1.0)

        assert watcher.state is WatcherState.DISCONNECTED
        assert fake_client.connect_calls == 1

    @pytest.mark.asyncio
    async def test_stop_when_never_started(self, account_config, fake_client, memory_store, sync_config):
        watcher = _watcher(account_config, fake_client, memory_store, sync_config)
        await watcher.stop()
        assert watcher.state is WatcherState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_restart_runs_fresh_backfill(self, account_config, memory_store, sync_config):
        client = FakeImapClient()
        client.add_messages([1])
        watcher = _watcher(account_config, client, memory_store, sync_config)
        await watcher.start()
        await wait_until(lambda: watcher.state is WatcherState.MONITORING)
        await watcher.stop()

        assert await watcher.start() is True
        await wait_until(lambda: watcher.state is WatcherState.MONITORING)
        assert client.search_since_calls == 2
        assert len(memory_store.records) == 1
        await watcher.stop()
