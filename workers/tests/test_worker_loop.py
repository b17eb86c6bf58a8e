from __future__ import annotations

import asyncio
from typing import Any

import httpx

from disclosure_workers.core.config import Settings
from disclosure_workers.core.errors import EntityNotFoundError
from disclosure_workers.jobs.context import PipelineServices
from disclosure_workers.jobs.executor import HandlerRegistry
from disclosure_workers.main import claim_next, process_job, reap_once


class QueueStub:
    def __init__(self, final_status: str) -> None:
        self.final_status = final_status
        self.submitted: list[dict[str, Any]] = []

    async def enqueue(
        self, kind: str, data: dict[str, Any], *, max_attempts: int | None = None, dedupe_key: str | None = None
    ) -> Any:
        raise AssertionError("unexpected enqueue")

    async def submit_result(self, job_id: str, **result: Any) -> dict[str, Any]:
        self.submitted.append({"id": job_id, **result})
        return {"id": job_id, "status": self.final_status}


class ReviewStub:
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def send(self, text: str) -> None:
        self.messages.append(text)


def _services(queue: QueueStub, review: ReviewStub) -> PipelineServices:
    return PipelineServices(queue=queue, review=review, extraction=None, wikidata=None, companies=None, resolver=None)


def _job() -> dict[str, Any]:
    return {
        "id": "job-7",
        "kind": "guess_wikidata",
        "data": {"company_name": "Nowhere AB"},
        "attempt": 1,
        "max_attempts": 3,
        "stacktrace": [],
    }


def test_dead_letter_is_announced_on_review_channel() -> None:
    async def handler(payload: Any, job: Any, services: Any) -> None:
        raise EntityNotFoundError('No Wikidata entry for "Nowhere AB"')

    registry = HandlerRegistry()
    registry.run("guess_wikidata", handler)
    queue, review = QueueStub("dead_letter"), ReviewStub()

    status = asyncio.run(process_job(_job(), registry=registry, services=_services(queue, review)))

    assert status == "dead_letter"
    assert queue.submitted[0]["status"] == "dead_letter"
    assert review.messages == ['❌ guess_wikidata failed for Nowhere AB: No Wikidata entry for "Nowhere AB"']


def test_retried_failure_is_not_announced() -> None:
    async def handler(payload: Any, job: Any, services: Any) -> None:
        raise TimeoutError("search timed out")

    registry = HandlerRegistry()
    registry.run("guess_wikidata", handler)
    queue, review = QueueStub("queued"), ReviewStub()

    status = asyncio.run(process_job(_job(), registry=registry, services=_services(queue, review)))

    assert status == "queued"
    assert queue.submitted[0]["status"] == "failed"
    assert queue.submitted[0]["error_json"]["error"] == "search timed out"
    assert review.messages == []


def test_claim_next_skips_jobs_claimed_elsewhere() -> None:
    class ClaimingQueue:
        def __init__(self) -> None:
            self.attempted: list[str] = []

        async def claim_job(self, job_id: str, lease_seconds: int = 120) -> dict[str, Any]:
            self.attempted.append(job_id)
            if job_id == "taken":
                request = httpx.Request("POST", f"http://queue.local/jobs/{job_id}/claim")
                response = httpx.Response(409, request=request)
                raise httpx.HTTPStatusError("conflict", request=request, response=response)
            return {"id": job_id, "status": "claimed"}

    queue = ClaimingQueue()

    claimed = asyncio.run(claim_next(queue, [{"id": "taken"}, {"id": "free"}], lease_seconds=60))  # type: ignore[arg-type]

    assert claimed == {"id": "free", "status": "claimed"}
    assert queue.attempted == ["taken", "free"]


def test_reaper_announces_jobs_dead_lettered_by_lease_expiry() -> None:
    class ReapingQueue:
        def __init__(self) -> None:
            self.limits: list[int] = []

        async def reap_expired_jobs(self, limit: int = 100) -> dict[str, Any]:
            self.limits.append(limit)
            job = {**_job(), "status": "dead_letter", "error_json": {"error": "lease expired on attempt 3"}}
            return {"requeued": 2, "dead_lettered": [job]}

    queue, review = ReapingQueue(), ReviewStub()
    services = PipelineServices(queue=queue, review=review, extraction=None, wikidata=None, companies=None, resolver=None)

    reaped = asyncio.run(reap_once(Settings(lease_reaper_batch_size=25), services))

    assert queue.limits == [25]
    assert reaped["requeued"] == 2
    assert review.messages == ["❌ guess_wikidata failed for Nowhere AB: lease expired on attempt 3"]
