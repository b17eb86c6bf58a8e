from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from disclosure_workers.core.errors import AwaitingApproval, UnrecoverableJobError
from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.schemas.payloads import parse_payload

logger = logging.getLogger(__name__)

Handler = Callable[[Any, JobContext, PipelineServices], Awaitable[dict[str, Any] | None]]


@dataclass(slots=True)
class JobOutcome:
    status: str
    result_json: dict[str, Any] | None = None
    error_json: dict[str, Any] | None = None
    logs: list[str] = field(default_factory=list)


class HandlerRegistry:
    def __init__(self) -> None:
        self._handlers: dict[str, Handler] = {}

    def run(self, kind: str, handler: Handler) -> Handler:
        if kind in self._handlers:
            raise ValueError(f"handler already registered for {kind!r}")
        self._handlers[kind] = handler
        return handler

    def get(self, kind: str) -> Handler | None:
        return self._handlers.get(kind)

    @property
    def kinds(self) -> frozenset[str]:
        return frozenset(self._handlers)


def _error_json(exc: BaseException) -> dict[str, Any]:
    return {"error": str(exc) or type(exc).__name__, "type": type(exc).__name__}


async def execute_job(job: dict[str, Any], *, registry: HandlerRegistry, services: PipelineServices) -> JobOutcome:
    """Run one claimed job and classify its result into a queue status."""
    context = JobContext.from_job(job, queue=services.queue, review=services.review)

    handler = registry.get(context.kind)
    if handler is None:
        context.log(f"no handler registered for kind {context.kind!r}")
        return JobOutcome(
            status="dead_letter",
            error_json={"error": f"no handler registered for kind {context.kind!r}", "type": "UnknownJobKind"},
            logs=context.logs,
        )

    try:
        payload = parse_payload(context.kind, context.data)
    except ValidationError as exc:
        context.log(f"invalid payload: {exc}")
        return JobOutcome(
            status="dead_letter",
            error_json={"error": f"invalid {context.kind} payload: {exc}", "type": "InvalidPayload"},
            logs=context.logs,
        )

    try:
        result = await handler(payload, context, services)
    except AwaitingApproval as exc:
        context.log(f"awaiting approval: {exc}")
        return JobOutcome(status="awaiting_approval", result_json={"reason": str(exc)}, logs=context.logs)
    except UnrecoverableJobError as exc:
        context.log(f"unrecoverable: {exc}")
        return JobOutcome(status="dead_letter", error_json=_error_json(exc), logs=context.logs)
    except Exception as exc:
        logger.exception("job execution failed for id=%s kind=%s", context.id, context.kind)
        context.log(f"failed: {exc}")
        return JobOutcome(status="failed", error_json=_error_json(exc), logs=context.logs)

    return JobOutcome(status="done", result_json=result or {}, logs=context.logs)
