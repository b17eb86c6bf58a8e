from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

JobStatus = Literal["queued", "claimed", "awaiting_approval", "done", "dead_letter", "rejected"]
ResultStatus = Literal["done", "failed", "dead_letter", "awaiting_approval"]


class JobOut(BaseModel):
    id: str
    kind: str
    dedupe_key: str | None = None
    data: dict[str, Any] = Field(default_factory=dict)
    status: JobStatus
    attempt: int = 0
    max_attempts: int
    stacktrace: list[str] = Field(default_factory=list)
    logs: list[str] = Field(default_factory=list)
    result_json: dict[str, Any] | None = None
    error_json: dict[str, Any] | None = None
    locked_by: str | None = None
    lease_expires_at: datetime | None = None
    run_after: datetime
    created_at: datetime
    updated_at: datetime


class EnqueueRequest(BaseModel):
    kind: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)
    max_attempts: int | None = Field(default=None, ge=1)
    dedupe_key: str | None = Field(default=None, min_length=1, max_length=255)


class ClaimRequest(BaseModel):
    lease_seconds: int = Field(default=120, ge=1)


class ResultRequest(BaseModel):
    status: ResultStatus
    result_json: dict[str, Any] | None = None
    error_json: dict[str, Any] | None = None
    logs: list[str] = Field(default_factory=list)


class ReviewRequest(BaseModel):
    reason: str | None = None


class ReapResponse(BaseModel):
    requeued: int
    dead_lettered: list[JobOut] = Field(default_factory=list)
