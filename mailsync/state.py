"""Watcher state machine.

Transitions are a pure function of ``(state, event)`` over a fixed
table; the watcher applies them and performs the side effects
(opening and closing connections) at the boundary.
"""

from __future__ import annotations

from enum import Enum

from .errors import InvalidTransitionError
from .models import WatcherState


class WatcherEvent(str, Enum):
    """Events that drive a watcher between states."""

    START = "start"
    CONNECTED = "connected"
    CONNECT_FAILED = "connect_failed"
    BACKFILL_DONE = "backfill_done"
    CONNECTION_LOST = "connection_lost"
    RECONNECTED = "reconnected"
    RESUME_BACKFILL = "resume_backfill"
    STOP = "stop"


_S = WatcherState
_E = WatcherEvent

TRANSITIONS: dict[tuple[WatcherState, WatcherEvent], WatcherState] = {
    (_S.DISCONNECTED, _E.START): _S.CONNECTING,
    (_S.CONNECTING, _E.CONNECTED): _S.SYNCING,
    (_S.CONNECTING, _E.CONNECT_FAILED): _S.DISCONNECTED,
    (_S.SYNCING, _E.BACKFILL_DONE): _S.MONITORING,
    (_S.SYNCING, _E.CONNECTION_LOST): _S.RECONNECTING,
    (_S.MONITORING, _E.CONNECTION_LOST): _S.RECONNECTING,
    # Backfill already completed: go straight back to monitoring.
    (_S.RECONNECTING, _E.RECONNECTED): _S.MONITORING,
    # Connection dropped before backfill finished.
    (_S.RECONNECTING, _E.RESUME_BACKFILL): _S.SYNCING,
    (_S.RECONNECTING, _E.CONNECT_FAILED): _S.DISCONNECTED,
}


def next_state(state: WatcherState, event: WatcherEvent) -> WatcherState:
    """Return the state reached from *state* on *event*.

    ``STOP`` is accepted from every state.  Any other pair missing from
    :data:`TRANSITIONS` raises :class:`InvalidTransitionError`.
    """
    if event is WatcherEvent.STOP:
        return WatcherState.DISCONNECTED
    try:
        return TRANSITIONS[(state, event)]
    except KeyError:
        raise InvalidTransitionError(
            f"event {event.value!r} is not valid in state {state.value!r}"
        ) from None


def is_connected(state: WatcherState) -> bool:
    """True for states in which the watcher holds a live connection."""
    return state in (WatcherState.SYNCING, WatcherState.MONITORING)
