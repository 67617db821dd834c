"""Shared test fixtures for the mailsync test suite."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from datetime import date
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import pytest

from mailsync.config import AccountConfig, SyncConfig
from mailsync.errors import TransportError
from mailsync.interface import MessageStore, SearchIndex
from mailsync.models import EmailDocument


@pytest.fixture
def account_config() -> AccountConfig:
    return AccountConfig(
        account_id="account1",
        host="imap.test.com",
        port=993,
        use_ssl=True,
        username="testuser@test.com",
        password="testpass",
        mailbox="INBOX",
    )


@pytest.fixture
def second_account_config() -> AccountConfig:
    return AccountConfig(
        account_id="account2",
        host="imap.other.com",
        username="other@other.com",
        password="otherpass",
    )


@pytest.fixture
def sync_config() -> SyncConfig:
    return SyncConfig(
        batch_size=5,
        backfill_days=30,
        reconnect_delay_seconds=0.01,
        idle_retry_delay_seconds=0.01,
        idle_renewal_seconds=1.0,
        start_stagger_seconds=0.0,
    )


# ------------------------------------------------------------------
# Sample EML builders
# ------------------------------------------------------------------


def _build_plain_email(
    *,
    subject: str = "Test Subject",
    from_addr: str = "Sender Name <sender@example.com>",
    to_addr: str = "recipient@example.com",
    body: str = "Hello, World!",
    message_id: str | None = "<test-001@example.com>",
) -> bytes:
    """Build a simple plain-text email as raw bytes."""
    msg = MIMEText(body, "plain")
    msg["Subject"] = subject
    msg["From"] = from_addr
    msg["To"] = to_addr
    if message_id is not None:
        msg["Message-ID"] = message_id
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_html_email(*, body_html: str = "<p>Hello <b>there</b></p>") -> bytes:
    msg = MIMEText(body_html, "html")
    msg["Subject"] = "HTML Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "recipient@example.com"
    msg["Message-ID"] = "<html-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    return msg.as_bytes()


def _build_multipart_email(
    *,
    body_text: str = "Plain body",
    body_html: str = "<p>HTML body</p>",
) -> bytes:
    msg = MIMEMultipart("alternative")
    msg["Subject"] = "Multipart Email"
    msg["From"] = "sender@example.com"
    msg["To"] = "a@example.com, B <b@example.com>"
    msg["Message-ID"] = "<multi-001@example.com>"
    msg["Date"] = "Sun, 01 Jun 2025 12:00:00 +0000"
    msg.attach(MIMEText(body_text, "plain"))
    msg.attach(MIMEText(body_html, "html"))
    return msg.as_bytes()


@pytest.fixture
def plain_eml_bytes() -> bytes:
    return _build_plain_email()


@pytest.fixture
def html_eml_bytes() -> bytes:
    return _build_html_email()


@pytest.fixture
def multipart_eml_bytes() -> bytes:
    return _build_multipart_email()


# ------------------------------------------------------------------
# In-memory collaborators
# ------------------------------------------------------------------


class FakeImapClient:
    """Scriptable stand-in for :class:`mailsync.imap_client.AsyncImapClient`.

    ``messages`` is the mailbox in sequence order as ``(uid, raw)`` pairs.
    ``fetch_errors`` are raised once for their uid.  ``idle_script``
    items are returned (or raised) by successive ``idle_wait`` calls;
    once it is empty ``idle_wait`` blocks until cancelled, like a quiet
    IDLE connection.
    """

    def __init__(self, account_id: str = "account1") -> None:
        self.account_id = account_id
        self.mailbox_lock = asyncio.Lock()
        self.messages: list[tuple[int, bytes]] = []
        self.connected = False
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.connect_errors: list[Exception] = []
        self.idle_script: list[Any] = []
        self.fetch_errors: dict[int, Exception] = {}
        self.fetched: list[int] = []
        self.search_since_calls = 0
        self.range_searches: list[tuple[int, int]] = []
        self.idle_calls = 0

    def add_messages(self, uids: list[int], raw: Callable[[int], bytes] | None = None) -> None:
        for uid in uids:
            body = raw(uid) if raw else _build_plain_email(message_id=f"<msg-{uid}@example.com>")
            self.messages.append((uid, body))

    def _require(self) -> None:
        if not self.connected:
            raise TransportError("not connected")

    async def connect(self) -> None:
        self.connect_calls += 1
        await asyncio.sleep(0)
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    async def mailbox_count(self) -> int:
        self._require()
        return len(self.messages)

    async def search_since(self, since: date) -> list[int]:
        self._require()
        self.search_since_calls += 1
        return [uid for uid, _ in self.messages]

    async def search_sequence_range(self, start: int, end: int) -> list[int]:
        self._require()
        self.range_searches.append((start, end))
        return [uid for uid, _ in self.messages[start - 1 : end]]

    async def fetch_raw(self, uid: int) -> bytes | None:
        self._require()
        if uid in self.fetch_errors:
            raise self.fetch_errors.pop(uid)
        self.fetched.append(uid)
        await asyncio.sleep(0)
        return dict(self.messages).get(uid)

    async def idle_wait(self, timeout: float) -> list[Any]:
        self._require()
        self.idle_calls += 1
        if self.idle_script:
            item = self.idle_script.pop(0)
            if isinstance(item, BaseException):
                raise item
            if callable(item):
                return item()
            return item
        await asyncio.Event().wait()
        return []


class InMemoryStore(MessageStore):
    """Dict-backed store keyed by ``(id, account_id)``."""

    def __init__(self) -> None:
        self.records: dict[tuple[str, str], EmailDocument] = {}
        self.upsert_calls = 0

    async def upsert(self, document: EmailDocument) -> EmailDocument:
        self.upsert_calls += 1
        self.records[(document.id, document.account_id)] = document
        return document

    async def iter_all(self) -> AsyncIterator[EmailDocument]:
        for document in list(self.records.values()):
            yield document


class RecordingIndex(SearchIndex):
    def __init__(self) -> None:
        self.documents: list[EmailDocument] = []

    async def upsert(self, document: EmailDocument) -> None:
        self.documents.append(document)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll *predicate* until it is true or *timeout* elapses."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def fake_client() -> FakeImapClient:
    return FakeImapClient()


@pytest.fixture
def memory_store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def recording_index() -> RecordingIndex:
    return RecordingIndex()
