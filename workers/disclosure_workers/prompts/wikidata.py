from __future__ import annotations

from pydantic import BaseModel

from disclosure_workers.schemas.payloads import WikidataMatch


class WikidataAnswer(BaseModel):
    wikidata: WikidataMatch | None = None


def system_prompt(company_name: str) -> str:
    return (
        f"I have a company named {company_name} and I am looking for the wikidata entry related to this company. "
        "Be helpful and try to be accurate."
    )


prompt = """
Given the following search results from wikidata, which one is the best match for the company?
Prefer entries that look like a company over people, places or products, and prefer entries
that already report a carbon footprint. Respond with the wikidata node id (for example Q123),
the url to its wikidata page, the label and the description.

If none of the results is the company, respond with {"wikidata": null}.

Example (use only the format, not the data):
{
  "wikidata": {
    "node": "Q123",
    "url": "https://www.wikidata.org/wiki/Q123",
    "label": "Company AB",
    "description": "Swedish company"
  }
}
"""
