from __future__ import annotations

import pytest

from disclosure_workers.core.errors import DiffError
from disclosure_workers.services.diff import diff_fragments, select_field_groups

STORED_EMISSIONS = {
    "2023": {
        "scope1": {"total": 1200},
        "scope2": {"mb": 300.0, "lb": 450},
        "scope1And2": {"total": 1500},
        "scope3": {"categories": [{"category": 1, "total": 10}, {"category": 6, "total": 4.5}]},
    }
}


def _paths(result) -> list[str]:
    return [change.dotted_path for change in result.changes]


def test_equal_fragments_need_no_approval() -> None:
    proposed = {
        "2023": {
            "scope1": {"total": 1200.0},
            "scope2": {"lb": 450.0, "mb": 300},
            "scope3": {"categories": [{"category": 6, "total": 4.5}, {"category": 1, "total": 10.0}]},
        }
    }

    result = diff_fragments("emissions", STORED_EMISSIONS, proposed)

    assert result.changes == []
    assert result.requires_approval is False
    assert select_field_groups(proposed, result) == {}


def test_changed_and_added_fields_are_enumerated_exactly() -> None:
    proposed = {
        "2023": {"scope1": {"total": 1250}, "biogenic": {"total": 12}},
        "2024": {"scope1": {"total": 900}},
    }

    result = diff_fragments("emissions", STORED_EMISSIONS, proposed)

    assert result.requires_approval is True
    assert _paths(result) == ["2023.scope1.total", "2023.biogenic", "2024"]
    assert [change.kind for change in result.changes] == ["modified", "added", "added"]
    assert result.changes[0].before == 1200
    assert result.changes[0].after == 1250


def test_explicit_null_is_a_removal_not_a_no_op() -> None:
    proposed = {"2023": {"scope1And2": None}}

    result = diff_fragments("emissions", STORED_EMISSIONS, proposed)

    assert _paths(result) == ["2023.scope1And2"]
    assert result.changes[0].kind == "removed"
    assert result.changes[0].before == {"total": 1500}
    assert select_field_groups(proposed, result) == {"2023": {"scope1And2": None}}


def test_null_for_absent_field_is_no_change() -> None:
    result = diff_fragments("emissions", STORED_EMISSIONS, {"2023": {"biogenic": None, "scope2": {"unknown": None}}})

    assert result.changes == []


def test_fields_only_in_stored_state_are_ignored() -> None:
    result = diff_fragments("emissions", STORED_EMISSIONS, {"2023": {"scope1": {"total": 1200}}})

    assert result.requires_approval is False


def test_currency_is_normalized_before_comparison() -> None:
    stored = {"2023": {"turnover": {"value": 4212299000, "currency": "SEK"}}}

    same = diff_fragments("economy", stored, {"2023": {"turnover": {"value": 4.212299e9, "currency": " sek "}}})
    other = diff_fragments("economy", stored, {"2023": {"turnover": {"currency": "eur"}}})

    assert same.changes == []
    assert _paths(other) == ["2023.turnover.currency"]
    assert other.changes[0].after == "EUR"


def test_other_strings_compare_exactly() -> None:
    stored = {"2023": {"employees": {"value": 10, "unit": "FTE"}}}

    result = diff_fragments("economy", stored, {"2023": {"employees": {"unit": "fte"}}})

    assert _paths(result) == ["2023.employees.unit"]


def test_scope3_categories_match_by_category_key() -> None:
    proposed = {"2023": {"scope3": {"categories": [{"category": 6, "total": 5}, {"category": 7, "total": 2}]}}}

    result = diff_fragments("emissions", STORED_EMISSIONS, proposed)

    assert _paths(result) == ["2023.scope3.categories.6.total", "2023.scope3.categories.7"]
    assert select_field_groups(proposed, result) == {
        "2023": {"scope3": {"categories": [{"category": 6, "total": 5}, {"category": 7, "total": 2}]}}
    }


def test_keyed_item_without_key_is_a_defect() -> None:
    with pytest.raises(DiffError):
        diff_fragments("emissions", STORED_EMISSIONS, {"2023": {"scope3": {"categories": [{"total": 1}]}}})


def test_goals_compare_as_multiset() -> None:
    stored = {"goals": [{"description": "Netto noll", "year": "2040"}, {"description": "Halvera utsläpp"}]}

    reordered = diff_fragments(
        "goals",
        stored,
        {"goals": [{"description": "Halvera utsläpp", "year": None}, {"description": "Netto noll", "year": "2040"}]},
    )
    changed = diff_fragments("goals", stored, {"goals": [{"description": "Netto noll", "year": "2040"}]})

    assert reordered.changes == []
    assert [(change.dotted_path, change.kind) for change in changed.changes] == [("goals.1", "removed")]
    assert select_field_groups({"goals": [{"description": "Netto noll", "year": "2040"}]}, changed) == {
        "goals": [{"description": "Netto noll", "year": "2040"}]
    }


def test_new_company_treats_everything_as_added() -> None:
    result = diff_fragments("industry", None, {"industry": {"subIndustryCode": "50101020"}})

    assert _paths(result) == ["industry"]
    assert result.changes[0].kind == "added"
    assert select_field_groups({"industry": {"subIndustryCode": "50101020"}}, result) == {
        "industry": {"subIndustryCode": "50101020"}
    }


def test_summary_is_readable_markdown() -> None:
    result = diff_fragments("economy", {}, {"2023": {"turnover": {"value": 10, "currency": "sek"}}})

    summary = result.summary()

    assert summary.startswith("### economy: 1 change(s)")
    assert "`2023`" in summary
    assert '"currency": "SEK"' in summary


def test_non_mapping_fragment_is_rejected() -> None:
    with pytest.raises(DiffError):
        diff_fragments("goals", {"goals": []}, ["not", "a", "mapping"])  # type: ignore[arg-type]


def test_goal_that_omits_a_field_keeps_the_stored_value() -> None:
    stored = {"goals": [{"description": "Net zero", "year": "2040", "target": 100}]}
    proposed = {"goals": [{"description": "Net zero", "year": "2040"}]}

    result = diff_fragments("goals", stored, proposed)

    assert result.changes == []
    assert result.requires_approval is False


def test_goal_change_is_field_level_and_body_keeps_omitted_fields() -> None:
    stored = {
        "goals": [
            {"description": "Net zero", "year": "2040", "target": 100},
            {"description": "Halve travel", "year": "2030"},
        ]
    }
    proposed = {"goals": [{"description": "Halve travel", "year": "2030"}, {"description": "Net zero", "year": "2045"}]}

    result = diff_fragments("goals", stored, proposed)

    assert [(change.dotted_path, change.kind) for change in result.changes] == [("goals.0.year", "modified")]
    assert select_field_groups(proposed, result, stored) == {
        "goals": [
            {"description": "Halve travel", "year": "2030"},
            {"description": "Net zero", "year": "2045", "target": 100},
        ]
    }


def test_explicit_null_inside_a_goal_clears_only_that_field() -> None:
    stored = {"goals": [{"description": "Net zero", "year": "2040", "target": 100}]}
    proposed = {"goals": [{"description": "Net zero", "target": None}]}

    result = diff_fragments("goals", stored, proposed)

    assert [(change.dotted_path, change.kind) for change in result.changes] == [("goals.0.target", "removed")]
    assert select_field_groups(proposed, result, stored) == {
        "goals": [{"description": "Net zero", "year": "2040", "target": None}]
    }


def test_initiatives_pair_by_title() -> None:
    stored = {"initiatives": [{"title": "Solar roofs", "description": "All sites", "year": "2022"}]}
    proposed = {"initiatives": [{"title": "Solar roofs", "year": "2023"}]}

    result = diff_fragments("initiatives", stored, proposed)

    assert _paths(result) == ["initiatives.0.year"]
    assert select_field_groups(proposed, result, stored) == {
        "initiatives": [{"title": "Solar roofs", "description": "All sites", "year": "2023"}]
    }


def test_group_body_fills_omitted_siblings_from_stored_state() -> None:
    proposed = {"2023": {"scope2": {"mb": 310}, "scope3": {"categories": [{"category": 6, "total": 5}]}}}

    result = diff_fragments("emissions", STORED_EMISSIONS, proposed)

    assert select_field_groups(proposed, result, STORED_EMISSIONS) == {
        "2023": {
            "scope2": {"mb": 310, "lb": 450},
            "scope3": {"categories": [{"category": 6, "total": 5}, {"category": 1, "total": 10}]},
        }
    }
