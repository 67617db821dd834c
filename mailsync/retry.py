"""Tenacity retry wrapper for watcher reconnects."""

from __future__ import annotations

import structlog
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, wait_fixed

from .errors import TransportError

logger = structlog.get_logger()


def reconnect_retrying(delay_seconds: float, *, account_id: str) -> AsyncRetrying:
    """Return an :class:`AsyncRetrying` that retries transport errors forever.

    Every attempt is separated by the same fixed *delay_seconds*; there is
    no stop condition, so the loop only ends on success, on a
    non-transport error, or when the surrounding task is cancelled.

    Usage::

        async for attempt in reconnect_retrying(5.0, account_id="account1"):
            with attempt:
                await client.connect()
    """

    def _log_retry(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome else None
        logger.warning(
            "reconnect_attempt_failed",
            account_id=account_id,
            attempt=state.attempt_number,
            delay_seconds=delay_seconds,
            error=str(exc),
        )

    return AsyncRetrying(
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception_type(TransportError),
        before_sleep=_log_retry,
        reraise=True,
    )
