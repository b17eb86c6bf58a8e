from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx

USER_AGENT = "disclosure-pipeline/1.0 (entity resolution)"


@dataclass(slots=True, frozen=True)
class SearchHit:
    id: str
    label: str | None = None
    description: str | None = None


class WikidataClient:
    def __init__(
        self,
        api_url: str,
        *,
        language: str = "sv",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_url = api_url
        self.language = language
        self._client = client or httpx.AsyncClient(timeout=timeout, headers={"User-Agent": USER_AGENT})

    async def search_company(self, name: str) -> list[SearchHit]:
        payload = await self._get(
            {
                "action": "wbsearchentities",
                "search": name,
                "type": "item",
                "language": self.language,
                "uselang": self.language,
                "limit": 20,
                "format": "json",
            }
        )
        hits = payload.get("search")
        if not isinstance(hits, list):
            return []
        return [
            SearchHit(id=hit["id"], label=hit.get("label"), description=hit.get("description"))
            for hit in hits
            if isinstance(hit, dict) and isinstance(hit.get("id"), str)
        ]

    async def get_entities(self, ids: list[str]) -> list[dict[str, Any]]:
        if not ids:
            return []
        payload = await self._get(
            {
                "action": "wbgetentities",
                "ids": "|".join(ids[:50]),
                "props": "labels|descriptions|claims|sitelinks/urls",
                "languages": f"{self.language}|en",
                "format": "json",
            }
        )
        entities = payload.get("entities")
        if not isinstance(entities, dict):
            return []
        return [entities[entity_id] for entity_id in ids if isinstance(entities.get(entity_id), dict)]

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, params: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.get(self.api_url, params=params)
        response.raise_for_status()
        payload = response.json()
        return payload if isinstance(payload, dict) else {}
