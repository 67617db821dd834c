"""Elasticsearch adapter for the search index gateway."""

from __future__ import annotations

from typing import Any

import structlog
from elasticsearch import AsyncElasticsearch

from .config import ElasticsearchConfig
from .interface import SearchIndex
from .models import EmailDocument

logger = structlog.get_logger()

EMAIL_MAPPINGS: dict[str, Any] = {
    "properties": {
        "id": {"type": "keyword"},
        "from": {"type": "text"},
        "sender_address": {"type": "keyword"},
        "to": {"type": "text"},
        "subject": {"type": "text", "analyzer": "standard"},
        "body_text": {"type": "text", "analyzer": "standard"},
        "folder": {"type": "keyword"},
        "date": {"type": "date"},
        "account_id": {"type": "keyword"},
        "category": {"type": "keyword"},
    }
}


def document_key(document: EmailDocument) -> str:
    """Index document id; the canonical id alone is not unique across accounts."""
    return f"{document.account_id}_{document.id}"


class ElasticsearchIndex(SearchIndex):
    """Wraps :class:`AsyncElasticsearch` for message documents."""

    def __init__(self, config: ElasticsearchConfig, client: AsyncElasticsearch | None = None) -> None:
        self._config = config
        self._client = client or AsyncElasticsearch(
            hosts=[config.url],
            request_timeout=config.request_timeout,
        )

    @property
    def client(self) -> AsyncElasticsearch:
        return self._client

    async def initialize(self) -> None:
        await self.ensure_index()

    async def ensure_index(self) -> None:
        """Create the index with its mapping if it does not exist yet."""
        if await self._client.indices.exists(index=self._config.index):
            logger.info("search_index_exists", index=self._config.index)
            return
        await self._client.indices.create(index=self._config.index, mappings=EMAIL_MAPPINGS)
        logger.info("search_index_created", index=self._config.index)

    async def upsert(self, document: EmailDocument) -> None:
        body = document.model_dump(
            mode="json",
            by_alias=True,
            exclude={"created_at", "updated_at", "uid"},
        )
        await self._client.index(
            index=self._config.index,
            id=document_key(document),
            document=body,
        )
        logger.debug(
            "email_indexed",
            message_id=document.id,
            account_id=document.account_id,
        )

    async def close(self) -> None:
        await self._client.close()
