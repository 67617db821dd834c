"""Async IMAP client wrapping imapclient with asyncio.to_thread."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import date
from typing import Any, TypeVar

import structlog
from imapclient import IMAPClient
from imapclient.exceptions import IMAPClientAbortError, IMAPClientError, LoginError

from .config import AccountConfig
from .errors import (
    AuthenticationError,
    IdleUnavailableError,
    MailboxError,
    MailSyncError,
    TransportError,
)

logger = structlog.get_logger()

T = TypeVar("T")

_BODY_KEY = b"BODY[]"


def map_imap_error(exc: BaseException) -> MailSyncError:
    """Translate an imapclient / socket exception into the mailsync hierarchy."""
    if isinstance(exc, LoginError):
        return AuthenticationError(str(exc))
    if isinstance(exc, (IMAPClientAbortError, OSError)):
        return TransportError(str(exc) or type(exc).__name__)
    return MailboxError(str(exc))


def exists_count(responses: list[Any]) -> int | None:
    """Return the count of the last ``EXISTS`` response, or ``None``.

    imapclient yields untagged responses as tuples such as ``(3, b'EXISTS')``.
    """
    count: int | None = None
    for response in responses:
        if not isinstance(response, tuple) or len(response) < 2:
            continue
        number, keyword = response[0], response[1]
        if keyword != b"EXISTS":
            continue
        if isinstance(number, bytes):
            if not number.isdigit():
                continue
            number = int(number)
        if isinstance(number, int):
            count = number
    return count


class AsyncImapClient:
    """Async-friendly IMAP client for one account.

    All blocking ``imapclient`` operations are wrapped with
    ``asyncio.to_thread()`` to avoid blocking the event loop.  Wire
    commands are serialized by an internal lock because the underlying
    connection is not thread-safe.

    ``mailbox_lock`` is the coarse lock callers hold while working
    through a set of messages (a whole backfill, or one delta range).
    It survives reconnects.
    """

    def __init__(self, account: AccountConfig) -> None:
        self._account = account
        self._conn: IMAPClient | None = None
        self._command_lock = asyncio.Lock()
        self._in_flight = False
        self.mailbox_lock = asyncio.Lock()

    @property
    def account_id(self) -> str:
        return self._account.account_id

    @property
    def connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Connect, login, and select the configured mailbox."""
        if self._conn is not None:
            await self.disconnect()
        try:
            self._conn = await asyncio.to_thread(self._connect_sync)
        except (IMAPClientError, OSError) as exc:
            raise map_imap_error(exc) from exc
        logger.info(
            "imap_connected",
            account_id=self.account_id,
            host=self._account.host,
            mailbox=self._account.mailbox,
        )

    def _connect_sync(self) -> IMAPClient:
        conn = IMAPClient(
            self._account.host,
            port=self._account.port,
            ssl=self._account.use_ssl,
            timeout=self._account.timeout_seconds,
        )
        try:
            conn.login(self._account.username, self._account.password.get_secret_value())
            conn.select_folder(self._account.mailbox)
        except Exception:
            conn.shutdown()
            raise
        return conn

    async def disconnect(self) -> None:
        """Release the connection.

        A command (or IDLE wait) still running in a worker thread is
        unblocked by shutting the socket down; otherwise the session is
        logged out cleanly.
        """
        conn = self._conn
        if conn is None:
            return
        self._conn = None
        if self._in_flight:
            await asyncio.to_thread(self._shutdown_sync, conn)
        else:
            await asyncio.to_thread(self._logout_sync, conn)
        logger.info("imap_disconnected", account_id=self.account_id)

    def _shutdown_sync(self, conn: IMAPClient) -> None:
        try:
            conn.shutdown()
        except (IMAPClientError, OSError) as exc:
            logger.debug("imap_shutdown_error", account_id=self.account_id, error=str(exc))

    def _logout_sync(self, conn: IMAPClient) -> None:
        try:
            conn.logout()
        except (IMAPClientError, OSError) as exc:
            logger.debug("imap_logout_error", account_id=self.account_id, error=str(exc))
            self._shutdown_sync(conn)

    async def is_connected(self) -> bool:
        """Check connection liveness with a NOOP command."""
        if self._conn is None:
            return False
        try:
            await self._call(lambda conn: conn.noop())
        except MailSyncError:
            return False
        return True

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def mailbox_count(self) -> int:
        """Current number of messages in the watched mailbox (``STATUS MESSAGES``)."""
        status = await self._call(
            lambda conn: conn.folder_status(self._account.mailbox, [b"MESSAGES"])
        )
        return int(status[b"MESSAGES"])

    async def search_since(self, since: date) -> list[int]:
        """UIDs of messages with an internal date on or after *since*.

        IMAP date search is day-granular (not timestamp-granular).
        """
        uids = await self._call(lambda conn: conn.search(["SINCE", since]))
        return sorted(int(uid) for uid in uids)

    async def search_sequence_range(self, start: int, end: int) -> list[int]:
        """Resolve the sequence-number range ``start:end`` to UIDs."""
        uids = await self._call(lambda conn: conn.search([f"{start}:{end}"]))
        return sorted(int(uid) for uid in uids)

    async def fetch_raw(self, uid: int) -> bytes | None:
        """Fetch the full RFC 822 source of *uid* without setting ``\\Seen``."""
        data = await self._call(lambda conn: conn.fetch([uid], ["BODY.PEEK[]"]))
        entry = data.get(uid)
        if not entry:
            return None
        return entry.get(_BODY_KEY)

    async def idle_wait(self, timeout: float) -> list[Any]:
        """Enter IDLE, wait up to *timeout* seconds, and leave IDLE.

        Returns the untagged responses received meanwhile.  Raises
        :class:`IdleUnavailableError` when the server refuses IDLE.
        """
        return await self._call(lambda conn: self._idle_sync(conn, timeout))

    def _idle_sync(self, conn: IMAPClient, timeout: float) -> list[Any]:
        try:
            conn.idle()
        except IMAPClientAbortError:
            raise
        except IMAPClientError as exc:
            raise IdleUnavailableError(str(exc)) from exc
        responses = list(conn.idle_check(timeout=timeout))
        _, trailing = conn.idle_done()
        responses.extend(trailing or [])
        return responses

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _call(self, func: Callable[[IMAPClient], T]) -> T:
        async with self._command_lock:
            conn = self._conn
            if conn is None:
                raise TransportError(f"account {self.account_id} is not connected")
            try:
                return await asyncio.to_thread(self._run_sync, conn, func)
            except (IMAPClientError, OSError) as exc:
                raise map_imap_error(exc) from exc

    def _run_sync(self, conn: IMAPClient, func: Callable[[IMAPClient], T]) -> T:
        self._in_flight = True
        try:
            return func(conn)
        finally:
            self._in_flight = False
