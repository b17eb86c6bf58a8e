from __future__ import annotations

import logging
from typing import Any

import httpx

from disclosure_workers.core.errors import GatewayError, GatewayNotFoundError
from disclosure_workers.schemas.fragments import CompanySnapshot
from disclosure_workers.schemas.metadata import Metadata

logger = logging.getLogger(__name__)

SUB_FRAGMENTS = frozenset(
    {
        "scope1",
        "scope2",
        "scope3",
        "biogenic",
        "statedTotalEmissions",
        "scope1And2",
        "turnover",
        "employees",
        "goals",
        "initiatives",
        "equalities",
        "industry",
    }
)


class CompanyApiClient:
    """HTTP gateway to the company system of record; every write is an idempotent upsert."""

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client.headers.update(headers)

    async def get_company(self, wikidata_id: str) -> CompanySnapshot | None:
        try:
            payload = await self._request("GET", f"/companies/{wikidata_id}")
        except GatewayNotFoundError:
            return None
        return CompanySnapshot.model_validate(payload)

    async def create_company(self, *, wikidata_id: str, name: str, description: str | None = None) -> CompanySnapshot:
        body: dict[str, Any] = {"wikidataId": wikidata_id, "name": name}
        if description:
            body["description"] = description
        payload = await self._request("POST", "/companies", json=body)
        return CompanySnapshot.model_validate(payload)

    async def upsert(
        self,
        sub_fragment: str,
        wikidata_id: str,
        value: Any,
        metadata: Metadata,
        *,
        year: str | None = None,
    ) -> dict[str, Any]:
        if sub_fragment not in SUB_FRAGMENTS:
            raise GatewayError(f"unknown sub-fragment {sub_fragment!r}")
        body = {
            "year": year,
            "value": value,
            "metadata": metadata.model_dump(mode="json", by_alias=True),
        }
        logger.info("upsert company=%s field=%s year=%s delete=%s", wikidata_id, sub_fragment, year, value is None)
        return await self._request("POST", f"/companies/{wikidata_id}/{sub_fragment}", json=body)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = await self._client.request(method, f"{self.base_url}{path}", **kwargs)
        except httpx.HTTPError as exc:
            raise GatewayError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise GatewayNotFoundError(f"{method} {path}: not found", status_code=404)
        if response.is_error:
            raise GatewayError(
                f"{method} {path} returned {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        if not response.content:
            return {}
        payload = response.json()
        return payload if isinstance(payload, dict) else {"data": payload}
