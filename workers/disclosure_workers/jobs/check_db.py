from __future__ import annotations

from typing import Any

from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.schemas.payloads import CheckDbPayload, ExtractFragmentPayload


async def check_db(payload: CheckDbPayload, job: JobContext, services: PipelineServices) -> dict[str, Any]:
    wikidata_id = payload.wikidata.node
    existing = await services.companies.get_company(wikidata_id)
    if existing is None:
        # Field upserts need a company record to attach to.
        job.log(f"No company stored for {wikidata_id}; creating it")
        await services.companies.create_company(
            wikidata_id=wikidata_id,
            name=payload.company_name,
            description=payload.wikidata.description,
        )
        await job.send_message(f"Created company {payload.company_name} ({wikidata_id}).")
    else:
        job.log(f"Found stored company {existing.name} ({wikidata_id})")

    queued: list[str] = []
    shared = payload.forward()
    shared.pop("fragments", None)
    for fragment in dict.fromkeys(payload.fragments):
        handle = await job.enqueue(
            ExtractFragmentPayload(**shared, fragment=fragment, existing_company=existing),
            key=fragment,
        )
        queued.append(handle.id)
    return {"wikidata_id": wikidata_id, "created": existing is None, "extract_job_ids": queued}
