from __future__ import annotations

import asyncio
import json
from typing import Any

import httpx
import pytest

from disclosure_workers.core.errors import GatewayError
from disclosure_workers.schemas.metadata import default_metadata
from disclosure_workers.services.company_api import CompanyApiClient
from disclosure_workers.services.job_client import JobClient
from disclosure_workers.services.review_channel import MAX_MESSAGE_LENGTH, ReviewChannel
from disclosure_workers.services.wikidata import WikidataClient


def test_job_client_enqueues_and_submits_with_api_key() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/jobs":
            return httpx.Response(202, json={"id": "j-1", "kind": "check_db", "status": "queued"}, request=request)
        return httpx.Response(200, json={"id": "j-1", "status": "queued"}, request=request)

    async def run() -> tuple[Any, Any]:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        async with JobClient("http://queue.local/", "local-worker-key", client=http) as client:
            handle = await client.enqueue("check_db", {"company_name": "Acme AB"}, max_attempts=5)
            stored = await client.submit_result("j-1", status="failed", error_json={"error": "boom"}, logs=["x"])
        return handle, stored

    handle, stored = asyncio.run(run())

    assert handle.id == "j-1"
    assert handle.status == "queued"
    assert stored["status"] == "queued"
    assert all(request.headers["X-API-Key"] == "local-worker-key" for request in seen)
    assert json.loads(seen[0].content) == {"kind": "check_db", "data": {"company_name": "Acme AB"}, "max_attempts": 5}
    assert json.loads(seen[1].content) == {
        "status": "failed",
        "result_json": None,
        "error_json": {"error": "boom"},
        "logs": ["x"],
    }


def test_review_channel_truncates_and_swallows_delivery_errors() -> None:
    posted: list[dict[str, Any]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(request.content))
        return httpx.Response(500, request=request)

    async def run() -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        channel = ReviewChannel("https://chat.example.com/webhook", client=http)
        await channel.send("x" * 5000)
        await channel.aclose()

    asyncio.run(run())

    assert len(posted[0]["content"]) == MAX_MESSAGE_LENGTH


def test_review_channel_without_webhook_only_logs() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    async def run() -> None:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        await ReviewChannel(None, client=http).send("hello")
        await http.aclose()

    asyncio.run(run())


def test_company_api_missing_company_is_none_and_errors_carry_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(404, request=request)
        return httpx.Response(422, text="bad year", request=request)

    async def run() -> tuple[Any, GatewayError]:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = CompanyApiClient("https://api.example.com/", token="t", client=http)
        missing = await client.get_company("Q1")
        with pytest.raises(GatewayError) as excinfo:
            await client.upsert("turnover", "Q1", {"value": 1}, default_metadata(None), year="2023")
        await client.aclose()
        return missing, excinfo.value

    missing, error = asyncio.run(run())

    assert missing is None
    assert error.status_code == 422


def test_company_api_rejects_unknown_sub_fragment() -> None:
    client = CompanyApiClient("https://api.example.com", client=httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200))))

    with pytest.raises(GatewayError):
        asyncio.run(client.upsert("revenue", "Q1", 1, default_metadata(None)))


def test_wikidata_client_parses_search_and_keeps_entity_order() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        action = request.url.params["action"]
        if action == "wbsearchentities":
            assert request.url.params["search"] == "Telia"
            return httpx.Response(
                200,
                json={"search": [{"id": "Q1", "label": "Telia"}, {"id": "Q2"}, {"label": "no id"}]},
                request=request,
            )
        assert request.url.params["ids"] == "Q2|Q1"
        return httpx.Response(200, json={"entities": {"Q1": {"id": "Q1"}, "Q2": {"id": "Q2"}}}, request=request)

    async def run() -> tuple[Any, Any]:
        http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = WikidataClient("https://www.wikidata.org/w/api.php", client=http)
        hits = await client.search_company("Telia")
        entities = await client.get_entities(["Q2", "Q1"])
        await client.aclose()
        return hits, entities

    hits, entities = asyncio.run(run())

    assert [hit.id for hit in hits] == ["Q1", "Q2"]
    assert [entity["id"] for entity in entities] == ["Q2", "Q1"]
