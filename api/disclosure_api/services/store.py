from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from disclosure_api.services.errors import (
    RepositoryConflictError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryValidationError,
)

TERMINAL_RESULT_STATUSES = {"done", "failed", "dead_letter", "awaiting_approval"}


def compute_retry_delay_seconds(*, attempt: int, base_seconds: int, max_seconds: int) -> int:
    if base_seconds <= 0:
        return 0
    multiplier = max(0, attempt - 1)
    delay = base_seconds * (2**multiplier)
    return min(delay, max_seconds)


def lease_expired(job: dict[str, Any], now: datetime | None = None) -> bool:
    now = now or datetime.now(timezone.utc)
    lease = job.get("lease_expires_at")
    if not lease:
        return False

    if isinstance(lease, str):
        lease = datetime.fromisoformat(lease.replace("Z", "+00:00"))

    return lease <= now


def should_requeue(job: dict[str, Any], now: datetime | None = None) -> bool:
    return job.get("status") == "claimed" and lease_expired(job, now=now)


def error_message(error_json: dict[str, Any] | None) -> str:
    if not error_json:
        return "unknown error"
    message = error_json.get("error")
    if isinstance(message, str) and message.strip():
        return message.strip()
    return str(error_json)


def lease_expired_message(attempt: int) -> str:
    return f"lease expired on attempt {attempt}"


class InMemoryJobRepository:
    """Process-local job store used when no database is configured."""

    def __init__(
        self,
        *,
        job_max_attempts: int = 3,
        job_retry_base_seconds: int = 30,
        job_retry_max_seconds: int = 600,
    ) -> None:
        self.job_max_attempts = max(1, job_max_attempts)
        self.job_retry_base_seconds = max(0, job_retry_base_seconds)
        self.job_retry_max_seconds = max(0, job_retry_max_seconds)
        self.jobs: dict[str, dict[str, Any]] = {}

    async def close(self) -> None:
        return None

    async def enqueue_job(
        self,
        *,
        kind: str,
        data: dict[str, Any],
        max_attempts: int | None = None,
        dedupe_key: str | None = None,
    ) -> dict[str, Any]:
        if not kind.strip():
            raise RepositoryValidationError("kind must be a non-empty string")
        if dedupe_key is not None:
            for job in self.jobs.values():
                if job["dedupe_key"] == dedupe_key:
                    return self._snapshot(job["id"])

        now = datetime.now(timezone.utc)
        job_id = str(uuid4())
        self.jobs[job_id] = {
            "id": job_id,
            "kind": kind,
            "dedupe_key": dedupe_key,
            "data": copy.deepcopy(data),
            "status": "queued",
            "attempt": 0,
            "max_attempts": max(1, max_attempts or self.job_max_attempts),
            "stacktrace": [],
            "logs": [],
            "result_json": None,
            "error_json": None,
            "locked_by": None,
            "lease_expires_at": None,
            "run_after": now,
            "created_at": now,
            "updated_at": now,
        }
        return self._snapshot(job_id)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        if job_id not in self.jobs:
            raise RepositoryNotFoundError("job not found")
        return self._snapshot(job_id)

    async def list_queued_jobs(self, limit: int) -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        runnable = [job for job in self.jobs.values() if job["status"] == "queued" and job["run_after"] <= now]
        runnable.sort(key=lambda job: (job["run_after"], job["created_at"]))
        return [self._snapshot(job["id"]) for job in runnable[:limit]]

    async def list_jobs(self, *, status: str | None, limit: int) -> list[dict[str, Any]]:
        rows = [job for job in self.jobs.values() if status is None or job["status"] == status]
        rows.sort(key=lambda job: job["created_at"], reverse=True)
        return [self._snapshot(job["id"]) for job in rows[:limit]]

    async def claim_job(self, job_id: str, worker_id: str, lease_seconds: int) -> dict[str, Any]:
        job = self._require(job_id)
        now = datetime.now(timezone.utc)
        if job["status"] != "queued" or job["run_after"] > now:
            raise RepositoryConflictError("job is not claimable")

        job["status"] = "claimed"
        job["attempt"] += 1
        job["locked_by"] = worker_id
        job["lease_expires_at"] = now + timedelta(seconds=lease_seconds)
        job["updated_at"] = now
        return self._snapshot(job_id)

    async def submit_job_result(
        self,
        job_id: str,
        worker_id: str,
        status: str,
        result_json: dict[str, Any] | None,
        error_json: dict[str, Any] | None,
        logs: list[str] | None = None,
    ) -> dict[str, Any]:
        job = self._require(job_id)
        if status not in TERMINAL_RESULT_STATUSES:
            raise RepositoryValidationError(f"invalid result status {status!r}")
        if job["status"] != "claimed":
            raise RepositoryConflictError("job is not in claimed state")
        if job["locked_by"] != worker_id:
            raise RepositoryForbiddenError("job claimed by another worker")

        now = datetime.now(timezone.utc)
        resolved_status = status
        if status in {"failed", "dead_letter"}:
            job["stacktrace"].append(error_message(error_json))
        if status == "failed":
            if job["attempt"] >= job["max_attempts"]:
                resolved_status = "dead_letter"
            else:
                delay = compute_retry_delay_seconds(
                    attempt=job["attempt"],
                    base_seconds=self.job_retry_base_seconds,
                    max_seconds=self.job_retry_max_seconds,
                )
                job["run_after"] = now + timedelta(seconds=delay)
                resolved_status = "queued"

        job["status"] = resolved_status
        job["result_json"] = copy.deepcopy(result_json)
        job["error_json"] = copy.deepcopy(error_json)
        job["logs"].extend(logs or [])
        job["locked_by"] = None
        job["lease_expires_at"] = None
        job["updated_at"] = now
        return self._snapshot(job_id)

    async def requeue_expired_claimed_jobs(self, limit: int) -> list[dict[str, Any]]:
        now = datetime.now(timezone.utc)
        expired = [job for job in self.jobs.values() if should_requeue(job, now=now)][:limit]
        for job in expired:
            # An abandoned claim spends its attempt like a reported failure does.
            message = lease_expired_message(job["attempt"])
            job["stacktrace"].append(message)
            if job["attempt"] >= job["max_attempts"]:
                job["status"] = "dead_letter"
                job["error_json"] = {"error": message, "type": "LeaseExpired"}
            else:
                job["status"] = "queued"
                job["run_after"] = now
            job["locked_by"] = None
            job["lease_expires_at"] = None
            job["updated_at"] = now
        return [self._snapshot(job["id"]) for job in expired]

    async def approve_job(self, job_id: str, reviewer: str) -> dict[str, Any]:
        job = self._require_awaiting_approval(job_id)
        now = datetime.now(timezone.utc)
        job["data"]["approved"] = True
        job["data"]["approved_by"] = reviewer
        job["status"] = "queued"
        job["run_after"] = now
        job["updated_at"] = now
        return self._snapshot(job_id)

    async def reject_job(self, job_id: str, reviewer: str, reason: str | None) -> dict[str, Any]:
        job = self._require_awaiting_approval(job_id)
        job["status"] = "rejected"
        job["result_json"] = {"rejected_by": reviewer, "reason": reason}
        job["updated_at"] = datetime.now(timezone.utc)
        return self._snapshot(job_id)

    def _require(self, job_id: str) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if job is None:
            raise RepositoryNotFoundError("job not found")
        return job

    def _require_awaiting_approval(self, job_id: str) -> dict[str, Any]:
        job = self._require(job_id)
        if job["status"] != "awaiting_approval":
            raise RepositoryConflictError("job is not awaiting approval")
        return job

    def _snapshot(self, job_id: str) -> dict[str, Any]:
        return copy.deepcopy(self.jobs[job_id])
