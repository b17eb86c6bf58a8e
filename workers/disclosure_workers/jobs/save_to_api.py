from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import asdict, dataclass
from typing import Any

from disclosure_workers.core.errors import AwaitingApproval, GatewayNotFoundError, JobError
from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.schemas.fragments import PERIODIC_FRAGMENTS
from disclosure_workers.schemas.metadata import Metadata
from disclosure_workers.schemas.payloads import SaveToApiPayload
from disclosure_workers.services.diff import normalize_tree

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertOutcome:
    sub_fragment: str
    year: str | None
    status: str
    error: str | None = None

    @property
    def label(self) -> str:
        return f"{self.year}/{self.sub_fragment}" if self.year else self.sub_fragment


async def _capture(sub_fragment: str, year: str | None, call: Awaitable[Any]) -> UpsertOutcome:
    try:
        await call
    except GatewayNotFoundError as exc:
        return UpsertOutcome(sub_fragment, year, "not_found", str(exc))
    except Exception as exc:
        logger.warning("upsert %s year=%s failed: %s", sub_fragment, year, exc)
        return UpsertOutcome(sub_fragment, year, "failed", str(exc) or type(exc).__name__)
    return UpsertOutcome(sub_fragment, year, "ok")


def _field_group_calls(
    payload: SaveToApiPayload,
    body: dict[str, Any],
    metadata: Metadata,
    companies: Any,
) -> tuple[list[Awaitable[UpsertOutcome]], list[UpsertOutcome]]:
    calls: list[Awaitable[UpsertOutcome]] = []
    rejected: list[UpsertOutcome] = []
    wikidata_id = payload.wikidata.node

    if payload.sub_endpoint in PERIODIC_FRAGMENTS:
        for year, fields in body.items():
            if not isinstance(fields, dict):
                rejected.append(
                    UpsertOutcome(payload.sub_endpoint, year, "invalid", "a whole reporting period cannot be cleared")
                )
                continue
            for sub_fragment, value in fields.items():
                call = companies.upsert(sub_fragment, wikidata_id, value, metadata, year=year)
                calls.append(_capture(sub_fragment, year, call))
        return calls, rejected

    for sub_fragment, value in body.items():
        calls.append(_capture(sub_fragment, None, companies.upsert(sub_fragment, wikidata_id, value, metadata)))
    return calls, rejected


def _report(payload: SaveToApiPayload, outcomes: list[UpsertOutcome]) -> str:
    lines = [f"## {payload.sub_endpoint} for {payload.company_name} ({payload.wikidata.node})"]
    saved = [outcome for outcome in outcomes if outcome.status == "ok"]
    if saved:
        lines.append("✅ Saved: " + ", ".join(outcome.label for outcome in saved))
        lines.append(payload.diff.summary())
    for outcome in outcomes:
        if outcome.status == "not_found":
            lines.append(f"⚠️ {outcome.label}: company not found")
        elif outcome.status in {"failed", "invalid"}:
            lines.append(f"❌ {outcome.label}: {outcome.error}")
    return "\n".join(lines)


async def save_to_api(payload: SaveToApiPayload, job: JobContext, services: PipelineServices) -> dict[str, Any]:
    if payload.requires_approval and not payload.approved:
        await job.send_message(
            f"{payload.diff.summary()}\n\n"
            f"Review {payload.company_name} ({payload.wikidata.node}): "
            f"approve with `POST /jobs/{job.id}/approve` or reject with `POST /jobs/{job.id}/reject`."
        )
        raise AwaitingApproval(f"{len(payload.diff.changes)} change(s) to {payload.sub_endpoint} need review")

    metadata = payload.metadata.approved_by(payload.approved_by) if payload.approved else payload.metadata
    body = normalize_tree(payload.body)

    calls, outcomes = _field_group_calls(payload, body, metadata, services.companies)
    outcomes.extend(await asyncio.gather(*calls))
    for outcome in outcomes:
        job.log(f"upsert {outcome.label}: {outcome.status}" + (f" ({outcome.error})" if outcome.error else ""))

    await job.send_message(_report(payload, outcomes))

    failed = [outcome for outcome in outcomes if outcome.status == "failed"]
    if failed:
        raise JobError(
            f"{len(failed)} of {len(outcomes)} upsert(s) failed: "
            + "; ".join(f"{outcome.label}: {outcome.error}" for outcome in failed)
        )
    return {"outcomes": [asdict(outcome) for outcome in outcomes]}
