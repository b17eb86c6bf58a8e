from __future__ import annotations

from abc import abstractmethod
from dataclasses import dataclass
from datetime import date
from typing import Any

from pydantic import BaseModel

from disclosure_workers.schemas.fragments import (
    Economy,
    Emissions,
    Equality,
    FragmentModel,
    FragmentName,
    Goal,
    Industry,
    Initiative,
)
from disclosure_workers.services.llm_client import ChatMessage, with_retry_context

MAX_REPORT_CHARS = 100_000

GOLDEN_RULE = (
    "*** Golden Rule ***\n"
    "- Extract values only if explicitly available in the context. Do not infer or create data. "
    "Leave optional fields absent if no data is provided.\n"
)


class ExtractionSchema(BaseModel):
    @abstractmethod
    def to_fragment(self) -> dict[str, Any]:
        """Reshape the model answer into the tree the diff engine compares."""


class EmissionsYear(FragmentModel):
    year: int
    emissions: Emissions | None = None


class EmissionsExtraction(ExtractionSchema):
    emissions: list[EmissionsYear]

    def to_fragment(self) -> dict[str, Any]:
        return {str(item.year): item.emissions.to_wire() for item in self.emissions if item.emissions is not None}


class EconomyYear(FragmentModel):
    year: int
    economy: Economy | None = None


class EconomyExtraction(ExtractionSchema):
    economy: list[EconomyYear]

    def to_fragment(self) -> dict[str, Any]:
        return {str(item.year): item.economy.to_wire() for item in self.economy if item.economy is not None}


class GoalsExtraction(ExtractionSchema):
    goals: list[Goal]

    def to_fragment(self) -> dict[str, Any]:
        return {"goals": [goal.to_wire() for goal in self.goals]}


class InitiativesExtraction(ExtractionSchema):
    initiatives: list[Initiative]

    def to_fragment(self) -> dict[str, Any]:
        return {"initiatives": [initiative.to_wire() for initiative in self.initiatives]}


class EqualityExtraction(ExtractionSchema):
    equality: list[Equality]

    def to_fragment(self) -> dict[str, Any]:
        return {"equalities": [item.to_wire() for item in self.equality]}


class IndustryExtraction(ExtractionSchema):
    industry: Industry | None = None

    def to_fragment(self) -> dict[str, Any]:
        if self.industry is None:
            return {}
        return {"industry": self.industry.to_wire()}


@dataclass(frozen=True, slots=True)
class FragmentPrompt:
    schema: type[ExtractionSchema]
    prompt: str


def _current_year_rule() -> str:
    return f"- If no year is specified, assume the current year {date.today().year}.\n"


EMISSIONS_PROMPT = (
    GOLDEN_RULE
    + """
*** Emissions ***
- Extract scope 1, scope 2 (market based mb, location based lb, or unknown), scope 3 per category (1-16)
  and biogenic emissions for every reporting year found in the report.
- Report all values in tCO2e. Convert units such as ktCO2e or MtCO2e into tCO2e.
- Use statedTotalEmissions only when the report states a total explicitly.
- Use scope1And2 only when scope 1 and scope 2 are reported together as one number.
*** Dates ***
"""
)

ECONOMY_PROMPT = (
    GOLDEN_RULE
    + """
*** Turnover ***
- Extract turnover (intäkter, omsättning) as a numerical value for all available years.
- Convert units like "MSEK", "kSEK", "kEUR" into the base numerical value, e.g. 250 MSEK -> 250000000 SEK.
- Specify the currency as a separate ISO code field (SEK, USD, EUR). If the currency is not specified, assume SEK.
*** Employees ***
- Extract the number of employees for all available years with its unit, e.g. "FTE".
*** Dates ***
"""
)

GOALS_PROMPT = """
Extract the company's climate goals. Add the year the goal should be reached, the base year and the target
in percent when available. If no year is mentioned, leave year absent.

** LANGUAGE: WRITE IN SWEDISH. If text is in English, translate to Swedish **
"""

INITIATIVES_PROMPT = """
Extract the company's climate initiatives. Add the year, a short title, a description and the scope
the initiative concerns when available. If the list is long, only include the most important ones.

** LANGUAGE: WRITE IN SWEDISH. If text is in English, translate to Swedish **
"""

EQUALITY_PROMPT = """
Extract the company's diversity and gender equality initiatives and future goals for all the years you can find.
If the number of initiatives is long, only include max three most important ones.
If no year is mentioned, set year to null. If you can't find any information about gender equality,
report it as an empty array.

** LANGUAGE: WRITE IN SWEDISH. If text is in English, translate to Swedish **
"""

INDUSTRY_PROMPT = """
Classify the company according to the Global Industry Classification Standard (GICS).
Respond with the eight digit sub industry code as subIndustryCode.
"""

FRAGMENT_PROMPTS: dict[str, FragmentPrompt] = {
    "emissions": FragmentPrompt(schema=EmissionsExtraction, prompt=EMISSIONS_PROMPT),
    "economy": FragmentPrompt(schema=EconomyExtraction, prompt=ECONOMY_PROMPT),
    "goals": FragmentPrompt(schema=GoalsExtraction, prompt=GOALS_PROMPT),
    "initiatives": FragmentPrompt(schema=InitiativesExtraction, prompt=INITIATIVES_PROMPT),
    "equalities": FragmentPrompt(schema=EqualityExtraction, prompt=EQUALITY_PROMPT),
    "industry": FragmentPrompt(schema=IndustryExtraction, prompt=INDUSTRY_PROMPT),
}


def build_extraction_messages(
    fragment: FragmentName,
    *,
    company_name: str,
    markdown: str,
    stacktrace: list[str],
) -> list[ChatMessage]:
    entry = FRAGMENT_PROMPTS[fragment]
    prompt = entry.prompt
    if fragment in {"emissions", "economy"}:
        prompt += _current_year_rule()

    report = markdown if len(markdown) <= MAX_REPORT_CHARS else markdown[:MAX_REPORT_CHARS]
    messages: list[ChatMessage] = [
        {
            "role": "system",
            "content": "You are an expert in CSRD reporting. Be accurate and only use information from the report.",
        },
        {"role": "user", "content": f"Sustainability report for {company_name}:\n\n{report}"},
        {"role": "user", "content": prompt},
    ]
    return with_retry_context(messages, stacktrace)
