from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any
from uuid import uuid4

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from disclosure_api.core.config import get_settings
from disclosure_api.services.errors import (
    RepositoryConflictError,
    RepositoryError,
    RepositoryForbiddenError,
    RepositoryNotFoundError,
    RepositoryUnavailableError,
    RepositoryValidationError,
)
from disclosure_api.services.store import (
    TERMINAL_RESULT_STATUSES,
    InMemoryJobRepository,
    compute_retry_delay_seconds,
    error_message,
)

__all__ = [
    "PostgresJobRepository",
    "RepositoryConflictError",
    "RepositoryError",
    "RepositoryForbiddenError",
    "RepositoryNotFoundError",
    "RepositoryUnavailableError",
    "RepositoryValidationError",
    "get_repository",
]

JOB_COLUMNS = """
  id::text as id,
  kind,
  dedupe_key,
  data,
  status,
  attempt,
  max_attempts,
  stacktrace,
  logs,
  result_json,
  error_json,
  locked_by,
  lease_expires_at,
  run_after,
  created_at,
  updated_at
"""

SCHEMA_SQL = """
create table if not exists jobs (
  id uuid primary key,
  kind text not null,
  data jsonb not null default '{}'::jsonb,
  status text not null default 'queued',
  attempt integer not null default 0,
  max_attempts integer not null,
  stacktrace jsonb not null default '[]'::jsonb,
  logs jsonb not null default '[]'::jsonb,
  result_json jsonb,
  error_json jsonb,
  locked_by text,
  locked_at timestamptz,
  lease_expires_at timestamptz,
  run_after timestamptz not null default now(),
  created_at timestamptz not null default now(),
  updated_at timestamptz not null default now()
);
alter table jobs add column if not exists dedupe_key text;
create unique index if not exists jobs_dedupe_key_idx on jobs (dedupe_key) where dedupe_key is not null;
create index if not exists jobs_runnable_idx on jobs (run_after, created_at) where status = 'queued';
create index if not exists jobs_status_idx on jobs (status, created_at desc);
"""


class PostgresJobRepository:
    def __init__(
        self,
        database_url: str | None,
        min_pool_size: int,
        max_pool_size: int,
        job_max_attempts: int,
        job_retry_base_seconds: int,
        job_retry_max_seconds: int,
    ) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.job_max_attempts = max(1, job_max_attempts)
        self.job_retry_base_seconds = max(0, job_retry_base_seconds)
        self.job_retry_max_seconds = max(0, job_retry_max_seconds)
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

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
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                f"""
                insert into jobs (id, kind, dedupe_key, data, max_attempts)
                values ($1::uuid, $2, $3, $4::jsonb, $5)
                on conflict (dedupe_key) where dedupe_key is not null do nothing
                returning {JOB_COLUMNS}
                """,
                str(uuid4()),
                kind,
                dedupe_key,
                json.dumps(data),
                max(1, max_attempts or self.job_max_attempts),
            )
            if row is None:
                row = await conn.fetchrow(f"select {JOB_COLUMNS} from jobs where dedupe_key = $1", dedupe_key)
        return self._job_row_to_dict(row)

    async def get_job(self, job_id: str) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            row = await pool.fetchrow(f"select {JOB_COLUMNS} from jobs where id = $1::uuid", job_id)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def list_queued_jobs(self, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from jobs
            where status = 'queued' and run_after <= now()
            order by run_after asc, created_at asc
            limit $1
            """,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def list_jobs(self, *, status: str | None, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from jobs
            where ($1::text is null or status = $1::text)
            order by created_at desc
            limit $2
            """,
            status,
            limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def claim_job(self, job_id: str, worker_id: str, lease_seconds: int) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        f"""
                        update jobs
                        set
                          status = 'claimed',
                          locked_by = $2,
                          locked_at = now(),
                          lease_expires_at = now() + ($3::int * interval '1 second'),
                          attempt = attempt + 1,
                          updated_at = now()
                        where id = $1::uuid and status = 'queued' and run_after <= now()
                        returning {JOB_COLUMNS}
                        """,
                        job_id,
                        worker_id,
                        lease_seconds,
                    )
                    if not row:
                        exists = await conn.fetchval("select 1 from jobs where id = $1::uuid", job_id)
                        if not exists:
                            raise RepositoryNotFoundError("job not found")
                        raise RepositoryConflictError("job is not claimable")
                    return self._job_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    async def submit_job_result(
        self,
        job_id: str,
        worker_id: str,
        status: str,
        result_json: dict[str, Any] | None,
        error_json: dict[str, Any] | None,
        logs: list[str] | None = None,
    ) -> dict[str, Any]:
        if status not in TERMINAL_RESULT_STATUSES:
            raise RepositoryValidationError(f"invalid result status {status!r}")
        pool = await self._get_pool()

        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    claimed = await conn.fetchrow(
                        """
                        select status, locked_by, attempt, max_attempts
                        from jobs
                        where id = $1::uuid
                        for update
                        """,
                        job_id,
                    )
                    if not claimed:
                        raise RepositoryNotFoundError("job not found")
                    if claimed["status"] != "claimed":
                        raise RepositoryConflictError("job is not in claimed state")
                    if claimed["locked_by"] != worker_id:
                        raise RepositoryForbiddenError("job claimed by another worker")

                    attempt = int(claimed["attempt"])
                    resolved_status = status
                    run_after: datetime | None = None
                    failure: str | None = None
                    if status in {"failed", "dead_letter"}:
                        failure = error_message(error_json)
                    if status == "failed":
                        if attempt >= int(claimed["max_attempts"]):
                            resolved_status = "dead_letter"
                        else:
                            delay = compute_retry_delay_seconds(
                                attempt=attempt,
                                base_seconds=self.job_retry_base_seconds,
                                max_seconds=self.job_retry_max_seconds,
                            )
                            run_after = datetime.now(timezone.utc) + timedelta(seconds=delay)
                            resolved_status = "queued"

                    row = await conn.fetchrow(
                        f"""
                        update jobs
                        set
                          status = $2,
                          result_json = $3::jsonb,
                          error_json = $4::jsonb,
                          stacktrace = case
                            when $5::text is null then stacktrace
                            else stacktrace || jsonb_build_array($5::text)
                          end,
                          logs = logs || $6::jsonb,
                          locked_by = null,
                          locked_at = null,
                          lease_expires_at = null,
                          run_after = coalesce($7::timestamptz, run_after),
                          updated_at = now()
                        where id = $1::uuid
                        returning {JOB_COLUMNS}
                        """,
                        job_id,
                        resolved_status,
                        json.dumps(result_json) if result_json is not None else None,
                        json.dumps(error_json) if error_json is not None else None,
                        failure,
                        json.dumps(list(logs or [])),
                        run_after,
                    )
                    return self._job_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    async def requeue_expired_claimed_jobs(self, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                rows = await conn.fetch(
                    f"""
                    with expired as (
                      select id
                      from jobs
                      where status = 'claimed' and lease_expires_at <= now()
                      order by lease_expires_at asc
                      limit $1
                      for update skip locked
                    )
                    update jobs
                    set
                      status = case when attempt >= max_attempts then 'dead_letter' else 'queued' end,
                      stacktrace = stacktrace || jsonb_build_array('lease expired on attempt ' || attempt::text),
                      error_json = case
                        when attempt >= max_attempts then jsonb_build_object(
                          'error', 'lease expired on attempt ' || attempt::text,
                          'type', 'LeaseExpired'
                        )
                        else error_json
                      end,
                      locked_by = null,
                      locked_at = null,
                      lease_expires_at = null,
                      run_after = case when attempt >= max_attempts then run_after else now() end,
                      updated_at = now()
                    where id in (select id from expired)
                    returning {JOB_COLUMNS}
                    """,
                    limit,
                )
                return [self._job_row_to_dict(row) for row in rows]

    async def approve_job(self, job_id: str, reviewer: str) -> dict[str, Any]:
        return await self._review_transition(
            job_id,
            """
            update jobs
            set
              status = 'queued',
              data = data || jsonb_build_object('approved', true, 'approved_by', $2::text),
              run_after = now(),
              updated_at = now()
            where id = $1::uuid and status = 'awaiting_approval'
            returning {columns}
            """,
            reviewer,
        )

    async def reject_job(self, job_id: str, reviewer: str, reason: str | None) -> dict[str, Any]:
        return await self._review_transition(
            job_id,
            """
            update jobs
            set
              status = 'rejected',
              result_json = jsonb_build_object('rejected_by', $2::text, 'reason', $3::text),
              updated_at = now()
            where id = $1::uuid and status = 'awaiting_approval'
            returning {columns}
            """,
            reviewer,
            reason,
        )

    async def _review_transition(self, job_id: str, query: str, *args: Any) -> dict[str, Any]:
        pool = await self._get_pool()
        try:
            async with pool.acquire() as conn:
                async with conn.transaction():
                    row = await conn.fetchrow(query.format(columns=JOB_COLUMNS), job_id, *args)
                    if not row:
                        exists = await conn.fetchval("select 1 from jobs where id = $1::uuid", job_id)
                        if not exists:
                            raise RepositoryNotFoundError("job not found")
                        raise RepositoryConflictError("job is not awaiting approval")
                    return self._job_row_to_dict(row)
        except (pg_exc.InvalidTextRepresentationError, asyncpg.DataError) as exc:
            raise RepositoryNotFoundError("job not found") from exc

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("DISCLOSURE_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            async with pool.acquire() as conn:
                await conn.execute(SCHEMA_SQL)
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc
        self._pool = pool
        return self._pool

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "kind": row["kind"],
            "dedupe_key": row["dedupe_key"],
            "data": _decode_json(row["data"], default={}),
            "status": row["status"],
            "attempt": int(row["attempt"]),
            "max_attempts": int(row["max_attempts"]),
            "stacktrace": _decode_json(row["stacktrace"], default=[]),
            "logs": _decode_json(row["logs"], default=[]),
            "result_json": _decode_json(row["result_json"], default=None),
            "error_json": _decode_json(row["error_json"], default=None),
            "locked_by": row["locked_by"],
            "lease_expires_at": row["lease_expires_at"],
            "run_after": row["run_after"],
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
        }


def _decode_json(value: Any, *, default: Any) -> Any:
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return default
    if value is None:
        return default
    return value


@lru_cache
def get_repository() -> PostgresJobRepository | InMemoryJobRepository:
    settings = get_settings()
    if not settings.database_url:
        return InMemoryJobRepository(
            job_max_attempts=settings.job_max_attempts,
            job_retry_base_seconds=settings.job_retry_base_seconds,
            job_retry_max_seconds=settings.job_retry_max_seconds,
        )
    return PostgresJobRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
        job_max_attempts=settings.job_max_attempts,
        job_retry_base_seconds=settings.job_retry_base_seconds,
        job_retry_max_seconds=settings.job_retry_max_seconds,
    )
