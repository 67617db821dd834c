"""Data models shared across the ingestion engine."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum

from pydantic import BaseModel, Field


class Category(str, Enum):
    """Classification label attached to every stored message."""

    INTERESTED = "interested"
    NOT_INTERESTED = "not-interested"
    MEETINGS = "meetings"
    OUT_OF_OFFICE = "out-of-office"
    SPAM = "spam"
    INBOX = "inbox"


class WatcherState(str, Enum):
    """Connection lifecycle state of an account watcher."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SYNCING = "syncing"
    MONITORING = "monitoring"
    RECONNECTING = "reconnecting"


class EmailDocument(BaseModel):
    """A classified message as handed to the store and the search index.

    ``(id, account_id)`` is the dedup key.
    """

    id: str = Field(description="Canonical identifier (Message-ID without brackets, or account_uid)")
    account_id: str = Field(description="Account the message was ingested from")
    from_: str = Field(alias="from", description="From header as displayed")
    sender_address: str = Field(default="", description="Bare sender email address")
    to: str = Field(default="", description="To header as displayed")
    subject: str = Field(default="(No Subject)")
    body_text: str = Field(default="")
    folder: str = Field(default="INBOX")
    date: datetime = Field(default_factory=lambda: datetime.now(UTC))
    category: Category = Field(default=Category.INBOX)
    preview: str = Field(default="")
    uid: int | None = Field(default=None, description="IMAP UID the message was fetched with")
    created_at: datetime | None = Field(default=None, description="Set by the store on first insert")
    updated_at: datetime | None = Field(default=None, description="Set by the store on every upsert")

    model_config = {"populate_by_name": True}


class WatcherStatus(BaseModel):
    """Point-in-time view of one account watcher."""

    account_id: str
    state: WatcherState
    monitoring: bool = Field(description="True while an IDLE wait is established")
    backfill_complete: bool = False
    watermark: int | None = Field(default=None, description="Last known mailbox message count")
    messages_processed: int = 0
    messages_failed: int = 0
    last_error: str | None = None


class Readiness(BaseModel):
    """Aggregate readiness across all configured watchers."""

    configured: int
    connected: int
    monitoring: int


class BackfillResult(BaseModel):
    """Outcome of one historical backfill run."""

    selected: int = 0
    batches: int = 0
    processed: int = 0
    failed: int = 0


class ReindexResult(BaseModel):
    """Outcome of re-emitting every stored message to the search index."""

    indexed: int = 0
    errors: int = 0
    total: int = 0


class ServiceStatus(str, Enum):
    """Runtime status of the ingestion process."""

    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class HealthStatus(BaseModel):
    """Response model for the ``/health`` endpoint."""

    status: ServiceStatus
    uptime_seconds: float = Field(description="Seconds since the service started")
    readiness: Readiness
    watchers: list[WatcherStatus] = Field(default_factory=list)
