"""Service and account configuration loaded from environment variables.

Uses pydantic-settings so every field can be overridden via env vars.
Accounts are read from numbered prefixes (``IMAP1_``, ``IMAP2_``, ...)
in the order of ``MAILSYNC_ACCOUNT_IDS``.
"""

from __future__ import annotations

import structlog
from pydantic import Field, SecretStr, ValidationError
from pydantic_settings import BaseSettings

from .errors import ConfigurationError

logger = structlog.get_logger()


class AccountConfig(BaseSettings):
    """IMAP connection settings for a single mailbox account.

    Instantiate with ``_env_prefix="IMAP1_"`` (etc.) to read one account
    from the environment.
    """

    model_config = {"env_prefix": "IMAP_", "frozen": True}

    account_id: str = Field(description="Stable account identifier (e.g. account1)")
    host: str = Field(min_length=1, description="IMAP server hostname")
    port: int = Field(default=993, description="IMAP server port")
    use_ssl: bool = Field(default=True, description="Use an implicit TLS connection")
    username: str = Field(min_length=1, description="IMAP login username")
    password: SecretStr = Field(description="IMAP login password")
    mailbox: str = Field(default="INBOX", description="Mailbox to watch")
    timeout_seconds: float = Field(default=30.0, description="Socket timeout for IMAP commands")
    smtp_host: str | None = Field(
        default=None,
        description="SMTP host for replies (derived from the IMAP host when unset)",
    )
    smtp_port: int = Field(default=587, description="SMTP port (465 uses implicit TLS)")

    @property
    def reply_host(self) -> str:
        if self.smtp_host:
            return self.smtp_host
        if "gmail" in self.host:
            return "smtp.gmail.com"
        if self.host.startswith("imap."):
            return "smtp." + self.host[len("imap."):]
        return self.host


class SyncConfig(BaseSettings):
    """Backfill batching and reconnect timing."""

    model_config = {"env_prefix": "SYNC_"}

    batch_size: int = Field(default=5, ge=1, description="Messages processed concurrently per backfill batch")
    backfill_days: int = Field(default=30, ge=1, description="Trailing window for the initial backfill")
    reconnect_delay_seconds: float = Field(
        default=5.0,
        description="Fixed delay before every reconnect attempt",
    )
    idle_retry_delay_seconds: float = Field(
        default=3.0,
        description="Delay before re-issuing IDLE after the server refused it",
    )
    idle_renewal_seconds: float = Field(
        default=300.0,
        description="Re-issue IDLE after this many seconds without activity",
    )
    start_stagger_seconds: float = Field(
        default=1.0,
        description="Delay between starting consecutive account watchers",
    )


class DatabaseConfig(BaseSettings):
    """Message store connection settings."""

    model_config = {"env_prefix": "DATABASE_"}

    url: str = Field(
        default="sqlite+aiosqlite:///mailsync.db",
        description="Async SQLAlchemy URL for the message store",
    )
    echo: bool = Field(default=False, description="Log emitted SQL")


class ElasticsearchConfig(BaseSettings):
    """Search index settings."""

    model_config = {"env_prefix": "ELASTICSEARCH_"}

    url: str = Field(default="http://localhost:9200", description="Elasticsearch base URL")
    index: str = Field(default="emails", description="Index holding message documents")
    request_timeout: float = Field(default=30.0, description="Request timeout in seconds")


class WebhookConfig(BaseSettings):
    """Targets notified when a message is classified as interested."""

    model_config = {"env_prefix": "WEBHOOK_"}

    slack_url: str | None = Field(default=None, description="Slack incoming-webhook URL")
    interested_url: str | None = Field(
        default=None,
        description="Generic webhook receiving a JSON payload per interested message",
    )
    timeout_seconds: float = Field(default=10.0, description="HTTP request timeout")


class ServiceConfig(BaseSettings):
    """Root configuration for the ingestion service.

    Nested configs are populated from their own env-var prefixes.
    """

    model_config = {"env_prefix": "MAILSYNC_"}

    account_ids: list[str] = Field(
        default_factory=lambda: ["account1", "account2"],
        description="Account identifiers; account N reads IMAP{N}_* variables",
    )
    health_port: int = Field(default=3001, description="Port for health and control endpoints")
    log_level: str = Field(default="INFO", description="Root log level")
    log_json: bool = Field(default=True, description="Emit JSON log lines")

    sync: SyncConfig = Field(default_factory=SyncConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    elasticsearch: ElasticsearchConfig = Field(default_factory=ElasticsearchConfig)
    webhooks: WebhookConfig = Field(default_factory=WebhookConfig)


def read_account(account_id: str, env_prefix: str) -> AccountConfig:
    """Read one account from env vars under *env_prefix*.

    Raises :class:`ConfigurationError` naming the missing or invalid fields.
    """
    try:
        return AccountConfig(_env_prefix=env_prefix, account_id=account_id)
    except ValidationError as exc:
        fields = [".".join(str(p) for p in err["loc"]) for err in exc.errors()]
        raise ConfigurationError(
            f"account {account_id} ({env_prefix}*) is misconfigured: {', '.join(fields)}",
            fields=fields,
        ) from exc


def load_account(account_id: str, env_prefix: str) -> AccountConfig | None:
    """Load one account, or return ``None`` (and log) when it is misconfigured.

    One broken account never prevents the others from starting.
    """
    try:
        return read_account(account_id, env_prefix)
    except ConfigurationError as exc:
        logger.error(
            "account_config_invalid",
            account_id=account_id,
            env_prefix=env_prefix,
            fields=exc.fields,
        )
        return None


def load_accounts(account_ids: list[str]) -> list[AccountConfig]:
    """Load every configured account, skipping the invalid ones."""
    accounts: list[AccountConfig] = []
    for index, account_id in enumerate(account_ids, start=1):
        account = load_account(account_id, f"IMAP{index}_")
        if account is not None:
            accounts.append(account)
    logger.info(
        "accounts_loaded",
        configured=len(account_ids),
        valid=len(accounts),
    )
    return accounts
