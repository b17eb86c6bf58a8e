from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from disclosure_workers.core.errors import AwaitingApproval, JobError
from disclosure_workers.jobs.context import JobContext, PipelineServices
from disclosure_workers.jobs.save_to_api import save_to_api
from disclosure_workers.schemas.metadata import default_metadata
from disclosure_workers.schemas.payloads import SaveToApiPayload
from disclosure_workers.services.company_api import CompanyApiClient
from disclosure_workers.services.diff import diff_fragments, select_field_groups


class RecordingReview:
    def __init__(self) -> None:
        self.messages: list[str] = []

    async def send(self, text: str) -> None:
        self.messages.append(text)


class NoQueue:
    async def enqueue(
        self, kind: str, data: dict[str, Any], *, max_attempts: int | None = None, dedupe_key: str | None = None
    ) -> Any:
        raise AssertionError("save jobs never enqueue follow-up work")


def _payload(fragment: str, stored: dict[str, Any], proposed: dict[str, Any], **extra: Any) -> SaveToApiPayload:
    diff = diff_fragments(fragment, stored, proposed)
    extra.setdefault("requires_approval", diff.requires_approval)
    return SaveToApiPayload(
        company_name="Acme AB",
        url="https://example.com/report.pdf",
        wikidata={"node": "Q42"},
        sub_endpoint=fragment,
        body=select_field_groups(proposed, diff),
        diff=diff,
        metadata=default_metadata("https://example.com/report.pdf"),
        **extra,
    )


def _run_save(
    payload: SaveToApiPayload,
    handler: Any,
    review: RecordingReview,
) -> dict[str, Any]:
    async def run() -> dict[str, Any]:
        transport = httpx.MockTransport(handler)
        async with httpx.AsyncClient(transport=transport) as http:
            companies = CompanyApiClient("https://api.example.com", token="secret", client=http)
            services = PipelineServices(
                queue=NoQueue(),
                review=review,
                extraction=None,
                wikidata=None,
                companies=companies,
                resolver=None,
            )
            job = JobContext(
                id="job-1",
                kind="save_to_api",
                data={},
                attempt=1,
                max_attempts=3,
                stacktrace=[],
                queue=services.queue,
                review=review,
            )
            return await save_to_api(payload, job, services)

    return asyncio.run(run())


def test_unapproved_changes_are_parked_for_review() -> None:
    review = RecordingReview()
    payload = _payload("economy", {}, {"2023": {"turnover": {"value": 10, "currency": "SEK"}}})

    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("nothing may be written before approval")

    with pytest.raises(AwaitingApproval):
        _run_save(payload, handler, review)

    assert len(review.messages) == 1
    assert "### economy: 1 change(s)" in review.messages[0]
    assert "/jobs/job-1/approve" in review.messages[0]


def test_approved_save_fans_out_and_reports_partial_failure() -> None:
    review = RecordingReview()
    requests: list[tuple[str, dict[str, Any]]] = []
    stored = {"2023": {"scope1": {"total": 1}, "scope2": {"mb": 2}, "scope1And2": {"total": 3}}}
    proposed = {"2023": {"scope1": {"total": 10}, "scope2": {"mb": 20}, "scope1And2": None}}
    payload = _payload("emissions", stored, proposed, approved=True, approved_by="reviewer-1")

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append((request.url.path, json.loads(request.content)))
        if request.url.path.endswith("/scope2"):
            return httpx.Response(500, text="database is down", request=request)
        return httpx.Response(200, json={"ok": True}, request=request)

    with pytest.raises(JobError) as excinfo:
        _run_save(payload, handler, review)

    paths = sorted(path for path, _ in requests)
    assert paths == ["/companies/Q42/scope1", "/companies/Q42/scope1And2", "/companies/Q42/scope2"]
    bodies = {path: body for path, body in requests}
    assert bodies["/companies/Q42/scope1"]["year"] == "2023"
    assert bodies["/companies/Q42/scope1"]["value"] == {"total": 10}
    assert bodies["/companies/Q42/scope1And2"]["value"] is None
    assert bodies["/companies/Q42/scope1"]["metadata"]["verified"] is True
    assert "reviewer-1" in bodies["/companies/Q42/scope1"]["metadata"]["comment"]

    assert "1 of 3 upsert(s) failed" in str(excinfo.value)
    report = review.messages[-1]
    assert "✅ Saved: 2023/scope1, 2023/scope1And2" in report
    assert "❌ 2023/scope2" in report


def test_not_found_is_reported_without_retry() -> None:
    review = RecordingReview()
    payload = _payload(
        "goals",
        {"goals": []},
        {"goals": [{"description": "Netto noll 2040"}]},
        requires_approval=False,
    )

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "company not found"}, request=request)

    result = _run_save(payload, handler, review)

    assert result["outcomes"] == [
        {
            "sub_fragment": "goals",
            "year": None,
            "status": "not_found",
            "error": "POST /companies/Q42/goals: not found",
        }
    ]
    assert "⚠️ goals: company not found" in review.messages[-1]


def test_currency_is_persisted_upper_case() -> None:
    review = RecordingReview()
    captured: list[dict[str, Any]] = []
    payload = SaveToApiPayload(
        company_name="Acme AB",
        wikidata={"node": "Q42"},
        sub_endpoint="economy",
        body={"2023": {"turnover": {"value": 1000, "currency": " sek "}}},
        diff={"fragment_path": "economy", "changes": []},
        metadata=default_metadata(None),
        requires_approval=False,
    )

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(json.loads(request.content))
        return httpx.Response(200, json={}, request=request)

    _run_save(payload, handler, review)

    assert captured[0]["value"] == {"value": 1000, "currency": "SEK"}
    assert captured[0]["metadata"]["verified"] is False
