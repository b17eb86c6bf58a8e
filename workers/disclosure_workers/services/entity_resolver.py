from __future__ import annotations

import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from disclosure_workers.core.errors import EntityNotFoundError, EntityResolutionError, ExtractionParseError
from disclosure_workers.prompts import wikidata as wikidata_prompt
from disclosure_workers.schemas.payloads import WikidataMatch
from disclosure_workers.services.llm_client import ChatMessage, parse_structured, with_retry_context
from disclosure_workers.services.wikidata import SearchHit

logger = logging.getLogger(__name__)

INSIGNIFICANT_WORDS = frozenset({"ab", "the", "and", "inc", "co", "publ"})
MAX_SEARCH_ATTEMPTS = 4
# Wikidata property "carbon footprint"
EMISSIONS_CLAIM = "P5991"

SearchFn = Callable[[str], Awaitable[list[SearchHit]]]
LogFn = Callable[[str], None]


class EntitySource(Protocol):
    async def search_company(self, name: str) -> list[SearchHit]: ...

    async def get_entities(self, ids: list[str]) -> list[dict[str, Any]]: ...


class StructuredAsker(Protocol):
    async def ask(self, messages: list[ChatMessage], *, schema: type, schema_name: str) -> str: ...


@dataclass(slots=True)
class SearchOutcome:
    results: list[SearchHit]
    queries: list[str] = field(default_factory=list)


@dataclass(slots=True)
class CandidateIdentity:
    id: str
    has_emissions: bool
    label: str | None = None
    description: str | None = None
    url: str | None = None

    def for_prompt(self) -> dict[str, Any]:
        # Claims are dropped to keep the prompt small; only descriptive fields remain.
        data = asdict(self)
        data.pop("has_emissions")
        return data


def simplify_company_name(name: str) -> str:
    return " ".join(word for word in name.lower().split() if word not in INSIGNIFICANT_WORDS)


def drop_last_token(name: str) -> str:
    return " ".join(name.split()[:-1])


async def search_with_retries(name: str, search: SearchFn, *, log: LogFn | None = None) -> SearchOutcome:
    """Search with progressively narrower names: as given, without stopwords, then trimming tokens."""
    queries: list[str] = []
    query = name.strip()
    for attempt in range(MAX_SEARCH_ATTEMPTS):
        if not query:
            break
        queries.append(query)
        if log:
            log(f"Searching for company name: {query} (attempt {attempt})")
        results = await search(query)
        if results:
            return SearchOutcome(results=results, queries=queries)
        query = simplify_company_name(query) if attempt == 0 else drop_last_token(query)
    return SearchOutcome(results=[], queries=queries)


def to_candidate(entity: dict[str, Any], language: str = "sv") -> CandidateIdentity:
    claims = entity.get("claims") or {}
    return CandidateIdentity(
        id=str(entity.get("id")),
        has_emissions=bool(claims.get(EMISSIONS_CLAIM)),
        label=_localized(entity.get("labels"), language),
        description=_localized(entity.get("descriptions"), language),
        url=_sitelink_url(entity.get("sitelinks"), language),
    )


def rank_candidates(candidates: list[CandidateIdentity]) -> list[CandidateIdentity]:
    # sorted() is stable, so search order is kept within each group.
    return sorted(candidates, key=lambda candidate: 0 if candidate.has_emissions else 1)


class EntityResolver:
    def __init__(self, source: EntitySource, extraction: StructuredAsker, *, language: str = "sv") -> None:
        self.source = source
        self.extraction = extraction
        self.language = language

    async def resolve(self, company_name: str, *, stacktrace: list[str], log: LogFn) -> WikidataMatch:
        outcome = await search_with_retries(company_name, self.source.search_company, log=log)
        log(f"Search results after {len(outcome.queries)} attempt(s): {len(outcome.results)}")

        entities = await self.source.get_entities([hit.id for hit in outcome.results])
        if not entities:
            raise EntityNotFoundError(f'No Wikidata entry for "{company_name}"')

        candidates = rank_candidates([to_candidate(entity, self.language) for entity in entities])
        log("Candidates: " + ", ".join(f"{c.id} ({c.label})" for c in candidates))

        response = await self.extraction.ask(
            self.build_messages(company_name, candidates, stacktrace),
            schema=wikidata_prompt.WikidataAnswer,
            schema_name="wikidata",
        )
        log("Response: " + response)

        try:
            answer = parse_structured(wikidata_prompt.WikidataAnswer, response)
        except ExtractionParseError as exc:
            raise EntityResolutionError(f"Could not parse wikidataId from json: {response}") from exc
        if answer.wikidata is None or not answer.wikidata.node:
            raise EntityResolutionError(f"Could not parse wikidataId from json: {response}")

        match = answer.wikidata
        if match.node not in {candidate.id for candidate in candidates}:
            logger.warning("wikidata answer %s for %r was not among the candidates", match.node, company_name)
        return match

    @staticmethod
    def build_messages(
        company_name: str,
        candidates: list[CandidateIdentity],
        stacktrace: list[str],
    ) -> list[ChatMessage]:
        messages: list[ChatMessage] = [
            {"role": "system", "content": wikidata_prompt.system_prompt(company_name)},
            {"role": "user", "content": wikidata_prompt.prompt},
            {"role": "assistant", "content": "OK. Just send me the wikidata search results?"},
            {
                "role": "user",
                "content": json.dumps([c.for_prompt() for c in candidates], indent=2, ensure_ascii=False),
            },
        ]
        return with_retry_context(messages, stacktrace)


def _localized(values: Any, language: str) -> str | None:
    if not isinstance(values, dict):
        return None
    for code in (language, "en"):
        entry = values.get(code)
        if isinstance(entry, dict) and isinstance(entry.get("value"), str):
            return entry["value"]
    return None


def _sitelink_url(sitelinks: Any, language: str) -> str | None:
    if not isinstance(sitelinks, dict):
        return None
    for site in (f"{language}wiki", "enwiki"):
        entry = sitelinks.get(site)
        if isinstance(entry, dict) and isinstance(entry.get("url"), str):
            return entry["url"]
    return None
