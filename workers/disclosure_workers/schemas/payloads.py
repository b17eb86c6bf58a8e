from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter

from disclosure_workers.schemas.diff import DiffResult
from disclosure_workers.schemas.fragments import ALL_FRAGMENTS, CompanySnapshot, FragmentName
from disclosure_workers.schemas.metadata import Metadata

JobKind = Literal["guess_wikidata", "check_db", "extract_fragment", "diff_fragment", "save_to_api"]
JOB_KINDS: tuple[JobKind, ...] = ("guess_wikidata", "check_db", "extract_fragment", "diff_fragment", "save_to_api")


class WikidataMatch(BaseModel):
    node: str = Field(min_length=1)
    url: str | None = None
    label: str | None = None
    description: str | None = None


class CompanyJobPayload(BaseModel):
    company_name: str = Field(min_length=1)
    url: str | None = None

    def forward(self, **changes: Any) -> dict[str, Any]:
        """Fields shared with the next stage, with ``changes`` merged on top."""
        shared = self.model_dump(exclude={"kind"})
        shared.update(changes)
        return shared


class GuessWikidataPayload(CompanyJobPayload):
    kind: Literal["guess_wikidata"] = "guess_wikidata"
    markdown: str = ""
    fragments: list[FragmentName] = Field(default_factory=lambda: list(ALL_FRAGMENTS))


class CheckDbPayload(CompanyJobPayload):
    kind: Literal["check_db"] = "check_db"
    markdown: str = ""
    fragments: list[FragmentName] = Field(default_factory=lambda: list(ALL_FRAGMENTS))
    wikidata: WikidataMatch


class ExtractFragmentPayload(CompanyJobPayload):
    kind: Literal["extract_fragment"] = "extract_fragment"
    fragment: FragmentName
    markdown: str = ""
    wikidata: WikidataMatch
    existing_company: CompanySnapshot | None = None


class DiffFragmentPayload(CompanyJobPayload):
    kind: Literal["diff_fragment"] = "diff_fragment"
    fragment: FragmentName
    wikidata: WikidataMatch
    existing_company: CompanySnapshot | None = None
    proposed: dict[str, Any]


class SaveToApiPayload(CompanyJobPayload):
    kind: Literal["save_to_api"] = "save_to_api"
    wikidata: WikidataMatch
    sub_endpoint: FragmentName
    body: dict[str, Any]
    diff: DiffResult
    metadata: Metadata
    requires_approval: bool = True
    approved: bool = False
    approved_by: str | None = None


JobPayload = Annotated[
    Union[GuessWikidataPayload, CheckDbPayload, ExtractFragmentPayload, DiffFragmentPayload, SaveToApiPayload],
    Field(discriminator="kind"),
]

_PAYLOAD_ADAPTER: TypeAdapter[JobPayload] = TypeAdapter(JobPayload)


def parse_payload(kind: str, data: dict[str, Any] | None) -> JobPayload:
    return _PAYLOAD_ADAPTER.validate_python({**(data or {}), "kind": kind})


def dump_payload(payload: BaseModel) -> dict[str, Any]:
    return payload.model_dump(mode="json", exclude={"kind"})
