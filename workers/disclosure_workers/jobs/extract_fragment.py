from __future__ import annotations

from typing import Any

from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.prompts.fragments import FRAGMENT_PROMPTS, build_extraction_messages
from disclosure_workers.schemas.payloads import DiffFragmentPayload, ExtractFragmentPayload
from disclosure_workers.services.llm_client import parse_structured


async def extract_fragment(payload: ExtractFragmentPayload, job: JobContext, services: PipelineServices) -> dict[str, Any]:
    if not payload.markdown.strip():
        job.log(f"No report text to extract {payload.fragment} from")
        return {"fragment": payload.fragment, "skipped": True}

    schema = FRAGMENT_PROMPTS[payload.fragment].schema
    messages = build_extraction_messages(
        payload.fragment,
        company_name=payload.company_name,
        markdown=payload.markdown,
        stacktrace=job.stacktrace,
    )
    if job.stacktrace:
        job.log(f"Retrying with {len(job.stacktrace)} previous error(s) as context")

    response = await services.extraction.ask(messages, schema=schema, schema_name=payload.fragment)
    job.log("Response: " + response)
    proposed = parse_structured(schema, response).to_fragment()

    # The report text is not needed downstream.
    shared = payload.forward(proposed=proposed)
    shared.pop("markdown", None)
    handle = await job.enqueue(DiffFragmentPayload(**shared))
    return {"fragment": payload.fragment, "proposed": proposed, "next_job_id": handle.id}
