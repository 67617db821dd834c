"""Graceful shutdown handling via SIGTERM / SIGINT."""

from __future__ import annotations

import asyncio
import signal

import structlog

logger = structlog.get_logger()

SHUTDOWN_SIGNALS = (signal.SIGTERM, signal.SIGINT)


def install_signal_handlers(shutdown_event: asyncio.Event) -> None:
    """Register SIGTERM and SIGINT handlers that set *shutdown_event*.

    Call once from the running event loop.  A second signal while the
    watchers are being stopped is logged and otherwise ignored.
    """
    loop = asyncio.get_running_loop()

    def _handle(sig: signal.Signals) -> None:
        if shutdown_event.is_set():
            logger.info("shutdown_already_in_progress", signal=sig.name)
            return
        logger.info("shutdown_signal_received", signal=sig.name)
        shutdown_event.set()

    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, _handle, sig)


def remove_signal_handlers() -> None:
    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.remove_signal_handler(sig)
