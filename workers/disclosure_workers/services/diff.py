from __future__ import annotations

import json
from collections import Counter
from collections.abc import Callable, Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from disclosure_workers.core.errors import DiffError
from disclosure_workers.schemas.diff import DiffResult, FieldChange
from disclosure_workers.schemas.fragments import PERIODIC_FRAGMENTS

# Lists whose items are matched by a key field instead of by value.
KEYED_LISTS: dict[str, str] = {"categories": "category"}

# Lists compared as multisets, but whose items are paired by an identifying field
# first so an item that only omits fields is not read as a replacement.
IDENTITY_FIELDS: dict[str, str] = {"goals": "description", "initiatives": "title"}

STRING_NORMALIZERS: dict[str, Callable[[str], str]] = {
    "currency": lambda value: value.strip().upper(),
}


def diff_fragments(fragment_path: str, before: Mapping[str, Any] | None, after: Mapping[str, Any]) -> DiffResult:
    """Compare a stored fragment tree with a proposed one.

    Keys missing from ``after`` carry no opinion and are never reported. An explicit
    ``None`` in ``after`` clears the stored value and is reported as a removal.
    """
    if before is None:
        before = {}
    if not isinstance(before, Mapping) or not isinstance(after, Mapping):
        raise DiffError(
            f"cannot diff {fragment_path}: expected mappings, got "
            f"{type(before).__name__} and {type(after).__name__}"
        )

    changes: list[FieldChange] = []
    _diff_value(before, after, [], changes)
    return DiffResult(fragment_path=fragment_path, changes=changes)


def field_group_depth(fragment_path: str) -> int:
    return 2 if fragment_path in PERIODIC_FRAGMENTS else 1


def select_field_groups(
    proposed: Mapping[str, Any],
    diff: DiffResult,
    stored: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    """Restrict ``proposed`` to the field groups that the diff reports as changed.

    Each group is upserted as a whole, so fields the proposal leaves out are filled
    from ``stored`` rather than dropped.
    """
    body: dict[str, Any] = {}
    for group in diff.field_groups(field_group_depth(diff.fragment_path)):
        source: Any = proposed
        previous: Any = stored
        for key in group:
            source = source[key]
            previous = previous.get(key) if isinstance(previous, Mapping) else None
        target = body
        for key in group[:-1]:
            target = target.setdefault(key, {})
        target[group[-1]] = normalize_tree(merge_omitted(previous, source, group[-1]))
    return body


def merge_omitted(stored: Any, proposed: Any, key: str | None = None) -> Any:
    """Overlay ``proposed`` on ``stored``; explicit nulls in ``proposed`` still win."""
    if isinstance(proposed, Mapping) and isinstance(stored, Mapping):
        merged = dict(stored)
        for child_key, child in proposed.items():
            merged[child_key] = merge_omitted(stored.get(child_key), child, str(child_key))
        return merged

    if isinstance(proposed, list) and isinstance(stored, list):
        keyed = KEYED_LISTS.get(key or "")
        matches = _match_by_identity(stored, proposed, keyed or IDENTITY_FIELDS.get(key or ""))
        merged_items = [
            merge_omitted(stored[matches[index]], item) if index in matches else item
            for index, item in enumerate(proposed)
        ]
        if keyed:
            # Keyed items the proposal does not mention stay as stored.
            claimed = set(matches.values())
            merged_items.extend(item for index, item in enumerate(stored) if index not in claimed)
        return merged_items

    return proposed


def normalize_tree(value: Any, key: str | None = None) -> Any:
    if isinstance(value, Mapping):
        return {child_key: normalize_tree(child, child_key) for child_key, child in value.items()}
    if isinstance(value, list):
        return [normalize_tree(item, key) for item in value]
    if isinstance(value, str) and key in STRING_NORMALIZERS:
        return STRING_NORMALIZERS[key](value)
    return value


def _diff_value(before: Any, after: Any, path: list[str], changes: list[FieldChange]) -> None:
    if after is None:
        if before is not None:
            changes.append(FieldChange(path=path, kind="removed", before=before))
        return

    if before is None:
        pruned = _prune_nulls(after)
        if pruned not in (None, {}, []):
            changes.append(FieldChange(path=path, kind="added", after=normalize_tree(pruned, _last(path))))
        return

    if isinstance(after, Mapping) and isinstance(before, Mapping):
        for key, value in after.items():
            _diff_value(before.get(key), value, [*path, str(key)], changes)
        return

    if isinstance(after, list) and isinstance(before, list):
        item_key = KEYED_LISTS.get(_last(path) or "")
        if item_key:
            _diff_keyed_list(before, after, item_key, path, changes)
        else:
            _diff_unkeyed_list(before, after, path, changes)
        return

    if _canonical(before, _last(path)) != _canonical(after, _last(path)):
        changes.append(
            FieldChange(path=path, kind="modified", before=before, after=normalize_tree(after, _last(path)))
        )


def _diff_keyed_list(
    before: list[Any],
    after: list[Any],
    item_key: str,
    path: list[str],
    changes: list[FieldChange],
) -> None:
    stored = {str(item.get(item_key)): item for item in before if isinstance(item, Mapping)}
    for item in after:
        if not isinstance(item, Mapping) or item.get(item_key) is None:
            raise DiffError(f"item in {'.'.join(path)} is missing its {item_key!r} key")
        _diff_value(stored.get(str(item[item_key])), item, [*path, str(item[item_key])], changes)


def _diff_unkeyed_list(before: list[Any], after: list[Any], path: list[str], changes: list[FieldChange]) -> None:
    matches = _match_by_identity(before, after, IDENTITY_FIELDS.get(_last(path) or ""))
    claimed = set(matches.values())

    remaining = Counter(_canonical_key(item) for index, item in enumerate(before) if index not in claimed)
    for index, item in enumerate(after):
        if index in matches:
            _diff_value(before[matches[index]], item, [*path, str(matches[index])], changes)
            continue
        key = _canonical_key(item)
        if remaining[key] > 0:
            remaining[key] -= 1
            continue
        changes.append(FieldChange(path=[*path, str(index)], kind="added", after=normalize_tree(_prune_nulls(item))))

    for index, item in enumerate(before):
        if index in claimed:
            continue
        key = _canonical_key(item)
        if remaining[key] > 0:
            remaining[key] -= 1
            changes.append(FieldChange(path=[*path, str(index)], kind="removed", before=item))


def _match_by_identity(before: list[Any], after: list[Any], field: str | None) -> dict[int, int]:
    """Pair proposed items with stored ones sharing ``field``, as ``{after_index: before_index}``."""
    if not field:
        return {}
    unclaimed: dict[str, list[int]] = {}
    for index, item in enumerate(before):
        if isinstance(item, Mapping) and item.get(field) is not None:
            unclaimed.setdefault(_canonical_key(item[field]), []).append(index)

    matches: dict[int, int] = {}
    for index, item in enumerate(after):
        if not isinstance(item, Mapping) or item.get(field) is None:
            continue
        candidates = unclaimed.get(_canonical_key(item[field]))
        if candidates:
            matches[index] = candidates.pop(0)
    return matches


def _canonical(value: Any, key: str | None = None) -> Any:
    """Comparison form: numbers by value, configured strings normalized, nulls dropped."""
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, (int, float)):
        try:
            return Decimal(str(value)).normalize()
        except InvalidOperation:
            return value
    if isinstance(value, str):
        normalizer = STRING_NORMALIZERS.get(key or "")
        return normalizer(value) if normalizer else value
    if isinstance(value, Mapping):
        return {
            str(child_key): _canonical(child, str(child_key))
            for child_key, child in value.items()
            if child is not None
        }
    if isinstance(value, list):
        return [_canonical(item, key) for item in value]
    return value


def _canonical_key(item: Any) -> str:
    return json.dumps(_canonical(item), sort_keys=True, default=str, ensure_ascii=False)


def _prune_nulls(value: Any) -> Any:
    if isinstance(value, Mapping):
        pruned = {key: _prune_nulls(child) for key, child in value.items() if child is not None}
        return {key: child for key, child in pruned.items() if child not in ({}, None)}
    if isinstance(value, list):
        return [_prune_nulls(item) for item in value]
    return value


def _last(path: list[str]) -> str | None:
    return path[-1] if path else None
