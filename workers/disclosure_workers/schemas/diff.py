from __future__ import annotations

import json
from typing import Any, Literal

from pydantic import BaseModel, Field, computed_field

ChangeKind = Literal["added", "modified", "removed"]


class FieldChange(BaseModel):
    path: list[str]
    kind: ChangeKind
    before: Any = None
    after: Any = None

    @property
    def dotted_path(self) -> str:
        return ".".join(self.path) or "<root>"

    def describe(self) -> str:
        if self.kind == "added":
            return f"- `{self.dotted_path}`: added {_render(self.after)}"
        if self.kind == "removed":
            return f"- `{self.dotted_path}`: removed (was {_render(self.before)})"
        return f"- `{self.dotted_path}`: {_render(self.before)} → {_render(self.after)}"


class DiffResult(BaseModel):
    fragment_path: str
    changes: list[FieldChange] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def requires_approval(self) -> bool:
        return bool(self.changes)

    def field_groups(self, depth: int) -> list[tuple[str, ...]]:
        """Distinct path prefixes that can be upserted independently, in first-seen order."""
        groups: dict[tuple[str, ...], None] = {}
        for change in self.changes:
            groups.setdefault(tuple(change.path[:depth]), None)
        return list(groups)

    def summary(self) -> str:
        if not self.changes:
            return f"No changes for {self.fragment_path}."
        lines = [f"### {self.fragment_path}: {len(self.changes)} change(s)"]
        lines.extend(change.describe() for change in self.changes)
        return "\n".join(lines)


def _render(value: Any) -> str:
    if isinstance(value, (dict, list)):
        return f"`{json.dumps(value, ensure_ascii=False, sort_keys=True)}`"
    return f"`{value}`"
