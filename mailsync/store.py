"""SQLAlchemy-backed message store with idempotent upsert."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime

import structlog
from sqlalchemy import DateTime, Integer, Text, UniqueConstraint, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from .config import DatabaseConfig
from .interface import MessageStore
from .models import Category, EmailDocument

logger = structlog.get_logger()

_PAGE_SIZE = 500


class Base(DeclarativeBase):
    pass


class EmailRecord(Base):
    __tablename__ = "emails"
    __table_args__ = (
        UniqueConstraint("message_id", "account_id", name="uq_emails_message_account"),
    )

    pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    message_id: Mapped[str] = mapped_column(Text, nullable=False)
    account_id: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    from_: Mapped[str] = mapped_column("from", Text, nullable=False, default="")
    sender_address: Mapped[str] = mapped_column(Text, nullable=False, default="")
    to: Mapped[str] = mapped_column(Text, nullable=False, default="")
    subject: Mapped[str] = mapped_column(Text, nullable=False, default="")
    body_text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    folder: Mapped[str] = mapped_column(Text, nullable=False, default="INBOX")
    date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    category: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    preview: Mapped[str] = mapped_column(Text, nullable=False, default="")
    uid: Mapped[int | None] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


def _make_engine(config: DatabaseConfig) -> AsyncEngine:
    if config.url.startswith("sqlite"):
        return create_async_engine(config.url, echo=config.echo)
    return create_async_engine(config.url, echo=config.echo, pool_size=5, max_overflow=10)


def _record_values(document: EmailDocument) -> dict[str, object]:
    return {
        "from_": document.from_,
        "sender_address": document.sender_address,
        "to": document.to,
        "subject": document.subject,
        "body_text": document.body_text,
        "folder": document.folder,
        "date": document.date.astimezone(UTC),
        "category": document.category.value,
        "preview": document.preview,
        "uid": document.uid,
    }


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes
    return value if value.tzinfo is not None else value.replace(tzinfo=UTC)


def _to_document(record: EmailRecord) -> EmailDocument:
    return EmailDocument(
        id=record.message_id,
        account_id=record.account_id,
        from_=record.from_,
        sender_address=record.sender_address,
        to=record.to,
        subject=record.subject,
        body_text=record.body_text,
        folder=record.folder,
        date=_aware(record.date),
        category=Category(record.category),
        preview=record.preview,
        uid=record.uid,
        created_at=_aware(record.created_at),
        updated_at=_aware(record.updated_at),
    )


class SqlMessageStore(MessageStore):
    """Stores one row per ``(message_id, account_id)``.

    The unique constraint backs the dedup invariant; a concurrent insert
    that loses the race is retried once as an update.
    """

    def __init__(self, config: DatabaseConfig, engine: AsyncEngine | None = None) -> None:
        self._engine = engine or _make_engine(config)
        self._session = async_sessionmaker(self._engine, class_=AsyncSession, expire_on_commit=False)

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def initialize(self) -> None:
        await self.create_schema()

    async def create_schema(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("message_store_schema_ready")

    async def ping(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("message_store_closed")

    async def upsert(self, document: EmailDocument) -> EmailDocument:
        try:
            return await self._upsert_once(document)
        except IntegrityError:
            logger.debug(
                "email_insert_race",
                message_id=document.id,
                account_id=document.account_id,
            )
            return await self._upsert_once(document)

    async def _upsert_once(self, document: EmailDocument) -> EmailDocument:
        now = datetime.now(UTC)
        values = _record_values(document)

        async with self._session() as session, session.begin():
            result = await session.execute(
                select(EmailRecord).where(
                    EmailRecord.message_id == document.id,
                    EmailRecord.account_id == document.account_id,
                )
            )
            record = result.scalar_one_or_none()
            if record is None:
                record = EmailRecord(
                    message_id=document.id,
                    account_id=document.account_id,
                    created_at=now,
                    updated_at=now,
                    **values,
                )
                session.add(record)
                created = True
            else:
                for key, value in values.items():
                    setattr(record, key, value)
                record.updated_at = now
                created = False

        logger.debug(
            "email_inserted" if created else "email_updated",
            message_id=document.id,
            account_id=document.account_id,
            category=document.category.value,
        )
        return _to_document(record)

    async def get(self, message_id: str, account_id: str) -> EmailDocument | None:
        async with self._session() as session:
            result = await session.execute(
                select(EmailRecord).where(
                    EmailRecord.message_id == message_id,
                    EmailRecord.account_id == account_id,
                )
            )
            record = result.scalar_one_or_none()
        return _to_document(record) if record is not None else None

    async def count(self, account_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(EmailRecord)
        if account_id is not None:
            stmt = stmt.where(EmailRecord.account_id == account_id)
        async with self._session() as session:
            return (await session.execute(stmt)).scalar_one()

    async def iter_all(self) -> AsyncIterator[EmailDocument]:
        """Yield all documents in insertion order, paging by primary key."""
        last_pk = 0
        while True:
            async with self._session() as session:
                result = await session.execute(
                    select(EmailRecord)
                    .where(EmailRecord.pk > last_pk)
                    .order_by(EmailRecord.pk)
                    .limit(_PAGE_SIZE)
                )
                records = result.scalars().all()
            if not records:
                return
            for record in records:
                yield _to_document(record)
            last_pk = records[-1].pk
