from __future__ import annotations

from typing import Any

from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.schemas.fragments import stored_fragment
from disclosure_workers.schemas.metadata import default_metadata
from disclosure_workers.schemas.payloads import DiffFragmentPayload, SaveToApiPayload
from disclosure_workers.services.diff import diff_fragments, select_field_groups


async def diff_fragment(payload: DiffFragmentPayload, job: JobContext, services: PipelineServices) -> dict[str, Any]:
    before = stored_fragment(payload.fragment, payload.existing_company)
    diff = diff_fragments(payload.fragment, before, payload.proposed)
    job.log(diff.summary())

    if not diff.requires_approval:
        return {"fragment": payload.fragment, "changes": 0}

    shared = payload.forward()
    for key in ("proposed", "fragment", "existing_company"):
        shared.pop(key, None)
    save = SaveToApiPayload(
        **shared,
        sub_endpoint=payload.fragment,
        body=select_field_groups(payload.proposed, diff, before),
        diff=diff,
        metadata=default_metadata(payload.url),
        requires_approval=diff.requires_approval,
    )
    handle = await job.enqueue(save)
    return {"fragment": payload.fragment, "changes": len(diff.changes), "next_job_id": handle.id}
