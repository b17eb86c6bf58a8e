from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx


@dataclass(slots=True, frozen=True)
class JobHandle:
    id: str
    kind: str
    status: str


class JobClient:
    """Queue handle shared by the poll loops of one worker process."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._client.headers.update({"X-API-Key": api_key})

    async def __aenter__(self) -> JobClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def enqueue(
        self,
        kind: str,
        data: dict[str, Any],
        *,
        max_attempts: int | None = None,
        dedupe_key: str | None = None,
    ) -> JobHandle:
        body: dict[str, Any] = {"kind": kind, "data": data}
        if max_attempts is not None:
            body["max_attempts"] = max_attempts
        if dedupe_key is not None:
            body["dedupe_key"] = dedupe_key
        response = await self._client.post(f"{self.base_url}/jobs", json=body)
        response.raise_for_status()
        job = response.json()
        return JobHandle(id=job["id"], kind=job["kind"], status=job["status"])

    async def get_jobs(self, limit: int = 10) -> list[dict[str, Any]]:
        response = await self._client.get(f"{self.base_url}/jobs", params={"limit": limit})
        response.raise_for_status()
        return response.json()

    async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
        response = await self._client.post(
            f"{self.base_url}/jobs/{job_id}/claim",
            json={"lease_seconds": lease_seconds},
        )
        response.raise_for_status()
        return response.json()

    async def submit_result(
        self,
        job_id: str,
        *,
        status: str,
        result_json: dict[str, Any] | None = None,
        error_json: dict[str, Any] | None = None,
        logs: list[str] | None = None,
    ) -> dict[str, Any]:
        payload = {
            "status": status,
            "result_json": result_json,
            "error_json": error_json,
            "logs": logs or [],
        }
        response = await self._client.post(f"{self.base_url}/jobs/{job_id}/result", json=payload)
        response.raise_for_status()
        return response.json()

    async def reap_expired_jobs(self, limit: int = 100) -> dict[str, Any]:
        """Requeue expired leases; jobs out of attempts come back under ``dead_lettered``."""
        response = await self._client.post(f"{self.base_url}/jobs/reap-expired", params={"limit": limit})
        response.raise_for_status()
        payload = response.json()
        return {"requeued": int(payload.get("requeued", 0)), "dead_lettered": payload.get("dead_lettered") or []}
