from __future__ import annotations

import json
from typing import Any

from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.schemas.payloads import CheckDbPayload, GuessWikidataPayload


async def guess_wikidata(payload: GuessWikidataPayload, job: JobContext, services: PipelineServices) -> dict[str, Any]:
    match = await services.resolver.resolve(payload.company_name, stacktrace=job.stacktrace, log=job.log)
    rendered = json.dumps({"wikidata": match.model_dump(exclude_none=True)}, indent=2, ensure_ascii=False)

    await job.send_message(
        f"## Wikidata\nBest match for {payload.company_name}:\n\n```json\n{rendered}\n```"
    )
    handle = await job.enqueue(CheckDbPayload(**payload.forward(wikidata=match)))
    return {"wikidata": match.model_dump(mode="json"), "next_job_id": handle.id}
