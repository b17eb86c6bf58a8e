from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

AUTOMATED_COMMENT = "Parsed by the disclosure pipeline"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Metadata(BaseModel):
    """Attribution attached to every write sent to the company API."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: Literal["automated", "human"] = "automated"
    comment: str = AUTOMATED_COMMENT
    report_url: str | None = Field(default=None, alias="reportURL")
    verified: bool = False
    user: str = "disclosure-pipeline"
    created_at: datetime = Field(default_factory=_utc_now, alias="createdAt")
    updated_at: datetime = Field(default_factory=_utc_now, alias="updatedAt")

    def approved_by(self, reviewer: str | None) -> Metadata:
        return self.model_copy(
            update={
                "verified": True,
                "comment": f"{self.comment} (approved by {reviewer or 'unknown reviewer'})",
                "updated_at": _utc_now(),
            }
        )


def default_metadata(report_url: str | None) -> Metadata:
    return Metadata(report_url=report_url)
