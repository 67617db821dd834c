"""mailsync: multi-account IMAP ingestion engine.

Public API re-exported here for convenience::

    from mailsync import IngestionOrchestrator, AccountWatcher, classify_email
"""

from .classifier import MessageClassifier, Rule, classify_email
from .config import AccountConfig, ServiceConfig, SyncConfig, load_accounts
from .errors import (
    AuthenticationError,
    ConfigurationError,
    IdleUnavailableError,
    InvalidTransitionError,
    MailboxError,
    MailSyncError,
    TransportError,
)
from .imap_client import AsyncImapClient
from .interface import MessageStore, Notifier, ReplyDispatcher, ReplyGenerator, SearchIndex
from .models import Category, EmailDocument, WatcherState, WatcherStatus
from .orchestrator import IngestionOrchestrator
from .pipeline import MessagePipeline
from .service import IngestionService
from .watcher import AccountWatcher

__all__ = [
    "AccountConfig",
    "AccountWatcher",
    "AsyncImapClient",
    "AuthenticationError",
    "Category",
    "ConfigurationError",
    "EmailDocument",
    "IdleUnavailableError",
    "IngestionOrchestrator",
    "IngestionService",
    "InvalidTransitionError",
    "MailSyncError",
    "MailboxError",
    "MessageClassifier",
    "MessagePipeline",
    "MessageStore",
    "Notifier",
    "ReplyDispatcher",
    "ReplyGenerator",
    "Rule",
    "SearchIndex",
    "ServiceConfig",
    "SyncConfig",
    "TransportError",
    "WatcherState",
    "WatcherStatus",
    "classify_email",
    "load_accounts",
]
