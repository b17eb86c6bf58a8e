from __future__ import annotations

import asyncio
import logging
import random
from typing import Any

import httpx

from disclosure_workers.core.config import Settings, get_settings
from disclosure_workers.core.telemetry import (
    configure_worker_logging,
    job_span,
    mark_job_outcome,
    setup_worker_telemetry,
    shutdown_worker_telemetry,
    tracer,
)
from disclosure_workers.jobs.context import PipelineServices
from disclosure_workers.jobs.executor import HandlerRegistry, execute_job
from disclosure_workers.jobs.pipeline import build_registry
from disclosure_workers.services.company_api import CompanyApiClient
from disclosure_workers.services.entity_resolver import EntityResolver
from disclosure_workers.services.job_client import JobClient
from disclosure_workers.services.llm_client import ExtractionClient
from disclosure_workers.services.review_channel import ReviewChannel
from disclosure_workers.services.wikidata import WikidataClient

logger = logging.getLogger(__name__)


def build_services(settings: Settings) -> PipelineServices:
    timeout = settings.http_timeout_seconds
    extraction = ExtractionClient(api_key=settings.openai_api_key, model=settings.openai_model)
    wikidata = WikidataClient(settings.wikidata_api_url, language=settings.wikidata_language, timeout=timeout)
    return PipelineServices(
        queue=JobClient(settings.api_base_url, settings.api_key, timeout=timeout),
        review=ReviewChannel(settings.review_webhook_url, timeout=timeout),
        extraction=extraction,
        wikidata=wikidata,
        companies=CompanyApiClient(settings.company_api_base_url, token=settings.company_api_token, timeout=timeout),
        resolver=EntityResolver(wikidata, extraction, language=settings.wikidata_language),
    )


async def close_services(services: PipelineServices) -> None:
    for handle in (services.queue, services.review, services.extraction, services.wikidata, services.companies):
        try:
            await handle.aclose()
        except Exception:
            logger.exception("failed to close %s", type(handle).__name__)


async def claim_next(queue: JobClient, jobs: list[dict[str, Any]], lease_seconds: int) -> dict[str, Any] | None:
    for job in jobs:
        try:
            return await queue.claim_job(job["id"], lease_seconds=lease_seconds)
        except httpx.HTTPStatusError as exc:
            # Another poll loop or worker got there first.
            if exc.response.status_code == 409:
                continue
            raise
    return None


async def announce_dead_letter(review: Any, job: dict[str, Any], error_json: dict[str, Any] | None) -> None:
    company = (job.get("data") or {}).get("company_name") or "unknown company"
    error = (error_json or {}).get("error", "unknown error")
    await review.send(f"❌ {job['kind']} failed for {company}: {error}")


async def process_job(
    job: dict[str, Any],
    *,
    registry: HandlerRegistry,
    services: PipelineServices,
) -> str:
    with job_span(job) as span:
        outcome = await execute_job(job, registry=registry, services=services)
        stored = await services.queue.submit_result(
            job["id"],
            status=outcome.status,
            result_json=outcome.result_json,
            error_json=outcome.error_json,
            logs=outcome.logs,
        )
        final_status = str(stored.get("status", outcome.status))
        mark_job_outcome(span, final_status)

    logger.info("job id=%s kind=%s attempt=%s -> %s", job["id"], job["kind"], job.get("attempt"), final_status)
    if final_status == "dead_letter":
        await announce_dead_letter(services.review, job, outcome.error_json)
    return final_status


async def poll_loop(
    slot: int,
    settings: Settings,
    *,
    registry: HandlerRegistry,
    services: PipelineServices,
) -> None:
    backoff = settings.poll_interval_seconds
    while True:
        try:
            with tracer.start_as_current_span("worker.poll_cycle") as span:
                span.set_attribute("worker.slot", slot)
                jobs = await services.queue.get_jobs(limit=settings.concurrency)
                claimed = await claim_next(services.queue, jobs, settings.claim_lease_seconds) if jobs else None
                if claimed is None:
                    await asyncio.sleep(settings.poll_interval_seconds)
                    continue
                await process_job(claimed, registry=registry, services=services)
            backoff = settings.poll_interval_seconds
        except Exception as exc:
            jitter = random.uniform(0.0, 0.5)
            sleep_for = min(backoff * (2.0 + jitter), settings.max_backoff_seconds)
            logger.exception("poll loop %s failed: %s; retry in %.1fs", slot, exc, sleep_for)
            await asyncio.sleep(sleep_for)
            backoff = sleep_for


async def reap_once(settings: Settings, services: PipelineServices) -> dict[str, Any]:
    reaped = await services.queue.reap_expired_jobs(limit=settings.lease_reaper_batch_size)
    if reaped["requeued"]:
        logger.info("requeued expired leases: %s", reaped["requeued"])
    for job in reaped["dead_lettered"]:
        logger.warning("job id=%s kind=%s dead-lettered after lease expiry", job["id"], job["kind"])
        await announce_dead_letter(services.review, job, job.get("error_json"))
    return reaped


async def reap_loop(settings: Settings, services: PipelineServices) -> None:
    while True:
        try:
            await reap_once(settings, services)
        except Exception:
            logger.exception("lease reaper failed")
        await asyncio.sleep(settings.lease_reaper_interval_seconds)


async def run_worker() -> None:
    settings = get_settings()
    configure_worker_logging()
    telemetry_runtime = setup_worker_telemetry(settings)
    registry = build_registry()
    services = build_services(settings)
    logger.info("worker %s starting %s poll loop(s)", settings.worker_id, settings.concurrency)

    try:
        await asyncio.gather(
            reap_loop(settings, services),
            *(
                poll_loop(slot, settings, registry=registry, services=services)
                for slot in range(max(1, settings.concurrency))
            ),
        )
    finally:
        await close_services(services)
        shutdown_worker_telemetry(telemetry_runtime)


if __name__ == "__main__":
    asyncio.run(run_worker())
