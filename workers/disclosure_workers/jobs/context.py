from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from pydantic import BaseModel

from disclosure_workers.schemas.payloads import dump_payload
from disclosure_workers.services.job_client import JobHandle

logger = logging.getLogger(__name__)


class JobQueue(Protocol):
    async def enqueue(
        self,
        kind: str,
        data: dict[str, Any],
        *,
        max_attempts: int | None = None,
        dedupe_key: str | None = None,
    ) -> JobHandle: ...


class MessageSink(Protocol):
    async def send(self, text: str) -> None: ...


@dataclass(slots=True)
class JobContext:
    """What a handler sees of its claimed job: identity, retry context and the side channels."""

    id: str
    kind: str
    data: dict[str, Any]
    attempt: int
    max_attempts: int
    stacktrace: list[str]
    queue: JobQueue
    review: MessageSink
    logs: list[str] = field(default_factory=list)

    @classmethod
    def from_job(cls, job: dict[str, Any], *, queue: JobQueue, review: MessageSink) -> JobContext:
        return cls(
            id=str(job["id"]),
            kind=str(job["kind"]),
            data=dict(job.get("data") or {}),
            attempt=int(job.get("attempt") or 0),
            max_attempts=int(job.get("max_attempts") or 1),
            stacktrace=[str(entry) for entry in job.get("stacktrace") or []],
            queue=queue,
            review=review,
        )

    @property
    def is_final_attempt(self) -> bool:
        return self.attempt >= self.max_attempts

    def log(self, message: str) -> None:
        stamp = datetime.now(timezone.utc).isoformat(timespec="seconds")
        self.logs.append(f"{stamp} {message}")
        logger.info("job id=%s kind=%s: %s", self.id, self.kind, message)

    async def send_message(self, text: str) -> None:
        await self.review.send(text)

    async def enqueue(self, payload: BaseModel, *, key: str | None = None) -> JobHandle:
        """Queue a follow-up job once per (this job, kind, key); a retry gets the first job back."""
        kind = getattr(payload, "kind")
        dedupe_key = f"{self.id}:{kind}" if key is None else f"{self.id}:{kind}:{key}"
        handle = await self.queue.enqueue(kind, dump_payload(payload), dedupe_key=dedupe_key)
        self.log(f"enqueued {kind} job {handle.id}")
        return handle


@dataclass(slots=True)
class PipelineServices:
    queue: JobQueue
    review: MessageSink
    extraction: Any
    wikidata: Any
    companies: Any
    resolver: Any
