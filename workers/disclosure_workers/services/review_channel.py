from __future__ import annotations

import logging

import httpx

logger = logging.getLogger(__name__)

MAX_MESSAGE_LENGTH = 2000


class ReviewChannel:
    """Posts reviewer-facing messages to a chat webhook. Delivery is best effort."""

    def __init__(
        self,
        webhook_url: str | None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, text: str) -> None:
        if len(text) > MAX_MESSAGE_LENGTH:
            text = text[: MAX_MESSAGE_LENGTH - 3] + "..."
        if not self.webhook_url:
            logger.info("review message (no webhook configured): %s", text)
            return
        try:
            response = await self._client.post(self.webhook_url, json={"content": text})
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("review message delivery failed: %s", exc)

    async def aclose(self) -> None:
        await self._client.aclose()
