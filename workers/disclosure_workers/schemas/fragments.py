from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

FragmentName = Literal["emissions", "economy", "goals", "initiatives", "equalities", "industry"]

ALL_FRAGMENTS: tuple[FragmentName, ...] = ("emissions", "economy", "goals", "initiatives", "equalities", "industry")
PERIODIC_FRAGMENTS: frozenset[str] = frozenset({"emissions", "economy"})


class FragmentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def to_wire(self) -> dict[str, Any]:
        """Dump only the fields that were supplied; explicit nulls survive as clears."""
        return self.model_dump(mode="json", by_alias=True, exclude_unset=True)


class ScopeTotal(FragmentModel):
    total: float | None = None


class Scope2(FragmentModel):
    mb: float | None = Field(default=None, description="Market-based scope 2 emissions")
    lb: float | None = Field(default=None, description="Location-based scope 2 emissions")
    unknown: float | None = Field(default=None, description="Unspecified scope 2 emissions")


class Scope3Category(FragmentModel):
    category: int = Field(ge=1, le=16)
    total: float | None = None


class Scope3(FragmentModel):
    categories: list[Scope3Category] | None = None
    stated_total_emissions: ScopeTotal | None = Field(default=None, alias="statedTotalEmissions")


class Emissions(FragmentModel):
    scope1: ScopeTotal | None = None
    scope2: Scope2 | None = None
    scope3: Scope3 | None = None
    biogenic: ScopeTotal | None = None
    stated_total_emissions: ScopeTotal | None = Field(default=None, alias="statedTotalEmissions")
    scope1_and_2: ScopeTotal | None = Field(default=None, alias="scope1And2")


class Turnover(FragmentModel):
    value: float | None = None
    currency: str | None = None

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().upper()


class Employees(FragmentModel):
    value: float | None = None
    unit: str | None = None


class Economy(FragmentModel):
    turnover: Turnover | None = None
    employees: Employees | None = None


class Goal(FragmentModel):
    description: str
    year: str | None = None
    target: float | None = None
    base_year: str | None = Field(default=None, alias="baseYear")


class Initiative(FragmentModel):
    title: str
    description: str | None = None
    year: str | None = None
    scope: str | None = None


class EqualityItem(FragmentModel):
    description: str
    year: int | None = None
    target: str | None = None
    base_year: int | None = Field(default=None, alias="baseYear")


class Equality(FragmentModel):
    initiatives: list[EqualityItem] | None = None
    goals: list[EqualityItem] | None = None


class Industry(FragmentModel):
    sub_industry_code: str = Field(alias="subIndustryCode")


class ReportingPeriod(FragmentModel):
    year: str
    start_date: str | None = Field(default=None, alias="startDate")
    end_date: str | None = Field(default=None, alias="endDate")
    report_url: str | None = Field(default=None, alias="reportURL")
    emissions: Emissions | None = None
    economy: Economy | None = None

    @field_validator("year", mode="before")
    @classmethod
    def coerce_year(cls, value: Any) -> Any:
        return str(value) if isinstance(value, int) else value


class CompanySnapshot(FragmentModel):
    wikidata_id: str = Field(alias="wikidataId")
    name: str
    description: str | None = None
    goals: list[Goal] = Field(default_factory=list)
    initiatives: list[Initiative] = Field(default_factory=list)
    equalities: list[Equality] = Field(default_factory=list)
    industry: Industry | None = None
    reporting_periods: list[ReportingPeriod] = Field(default_factory=list, alias="reportingPeriods")


def stored_fragment(fragment: FragmentName, company: CompanySnapshot | None) -> dict[str, Any]:
    """Project the stored company onto the same tree shape extraction produces."""
    if company is None:
        return {}
    if fragment in PERIODIC_FRAGMENTS:
        tree: dict[str, Any] = {}
        for period in company.reporting_periods:
            value = getattr(period, fragment)
            if value is not None:
                tree[period.year] = value.model_dump(mode="json", by_alias=True, exclude_none=True)
        return tree
    if fragment == "industry":
        if company.industry is None:
            return {}
        return {"industry": company.industry.model_dump(mode="json", by_alias=True, exclude_none=True)}
    items = getattr(company, fragment)
    return {fragment: [item.model_dump(mode="json", by_alias=True, exclude_none=True) for item in items]}
