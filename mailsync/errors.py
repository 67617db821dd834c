"""Exception hierarchy for the ingestion engine.

Each class maps to one row of the failure policy: configuration and
authentication errors are terminal for a single watcher, transport
errors trigger a reconnect, IDLE refusals trigger a short retry, and
mailbox errors are isolated to the message being processed.
"""

from __future__ import annotations


class MailSyncError(Exception):
    """Base class for all mailsync errors."""


class ConfigurationError(MailSyncError):
    """An account configuration is missing required fields or is invalid."""

    def __init__(self, message: str, fields: list[str] | None = None) -> None:
        super().__init__(message)
        self.fields = fields or []


class AuthenticationError(MailSyncError):
    """The IMAP server rejected the account credentials.

    Never retried automatically: an operator has to fix the credentials.
    """


class TransportError(MailSyncError):
    """The connection to the IMAP server broke or timed out."""


class IdleUnavailableError(MailSyncError):
    """The server refused to enter IDLE (or does not advertise it)."""


class MailboxError(MailSyncError):
    """The server answered a command with NO/BAD."""


class InvalidTransitionError(ValueError):
    """Raised when a watcher event is not valid in its current state."""
