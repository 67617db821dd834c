"""Webhook notifications for messages classified as interested."""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import Any

import httpx
import structlog

from .config import WebhookConfig
from .interface import Notifier

logger = structlog.get_logger()


def slack_payload(subject: str, sender: str) -> dict[str, Any]:
    return {
        "text": "New Interested Lead!",
        "blocks": [
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": f"*New Interested Lead*\n\n*Subject:* {subject}\n*From:* {sender}",
                },
            }
        ],
    }


class WebhookNotifier(Notifier):
    """Posts to the Slack and generic webhooks that are configured.

    Both targets are called concurrently; every failure is logged and
    swallowed so notification never affects message processing.
    """

    def __init__(self, config: WebhookConfig, client: httpx.AsyncClient | None = None) -> None:
        self._config = config
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.timeout_seconds),
        )

    @property
    def enabled(self) -> bool:
        return bool(self._config.slack_url or self._config.interested_url)

    async def notify(self, subject: str, sender: str) -> None:
        targets: list[tuple[str, str, dict[str, Any]]] = []
        if self._config.slack_url:
            targets.append(("slack", self._config.slack_url, slack_payload(subject, sender)))
        if self._config.interested_url:
            payload = {
                "subject": subject,
                "sender": sender,
                "timestamp": datetime.now(UTC).isoformat(),
            }
            targets.append(("interested", self._config.interested_url, payload))

        if not targets:
            return

        results = await asyncio.gather(
            *(self._post(url, payload) for _, url, payload in targets),
            return_exceptions=True,
        )
        for (name, _, _), result in zip(targets, results):
            if isinstance(result, Exception):
                logger.warning("webhook_failed", webhook=name, error=str(result))
            else:
                logger.info("webhook_sent", webhook=name)

    async def _post(self, url: str, payload: dict[str, Any]) -> None:
        response = await self._client.post(url, json=payload)
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()
