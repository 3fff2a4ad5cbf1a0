"""Arithmetic of the calculation helpers and the shape of the embedded script."""

from __future__ import annotations

import pytest

from pdf_actions.scripts import (
    HELPERS_JS,
    ability_modifier,
    is_checked,
    passive_score,
    proficiency_bonus_from_level,
    proficiency_multiplier,
    save_total,
    skill_total,
    to_number,
)


@pytest.mark.parametrize(
    "score, expected",
    [(10, 0), (11, 0), (8, -1), (9, -1), (20, 5), (1, -5), (30, 10), ("15", 2), (None, -5), ("abc", -5)],
)
def test_ability_modifier(score, expected) -> None:
    assert ability_modifier(score) == expected


@pytest.mark.parametrize(
    "proficient, expertise, half, expected",
    [
        (False, False, False, 0),
        (False, False, True, 0.5),
        (True, False, False, 1),
        (False, True, False, 2),
        (True, True, True, 2),
        (True, False, True, 1),
    ],
)
def test_proficiency_multiplier_precedence(proficient, expertise, half, expected) -> None:
    assert proficiency_multiplier(proficient, expertise, half) == expected


def test_skill_and_save_totals_floor_toward_negative_infinity() -> None:
    assert skill_total(3, 0.5, 3, 0) == 4
    assert skill_total(-2, 1, 2, 0) == 0
    assert skill_total(-1, 0.5, 1, 0) == -1
    assert save_total(3, True, 2, 0) == 5
    assert save_total(-1, False, 2, 0) == -1
    assert save_total(2, True, 3, 1) == 6


def test_non_numeric_values_count_as_zero() -> None:
    assert to_number("") == 0
    assert to_number("Off") == 0
    assert to_number(float("nan")) == 0
    assert to_number("2.5") == 2.5
    assert to_number(True) == 1
    assert skill_total("x", 1, "3") == 3


@pytest.mark.parametrize("value", ["Off", 0, "", None, False])
def test_unchecked_values(value) -> None:
    assert is_checked(value) is False


@pytest.mark.parametrize("value", ["Yes", "On", 1, True])
def test_checked_values(value) -> None:
    assert is_checked(value) is True


@pytest.mark.parametrize("level, expected", [(1, 2), (4, 2), (5, 3), (9, 4), (13, 5), (17, 6), (20, 6), (0, 2), (99, 6)])
def test_proficiency_bonus_from_level(level, expected) -> None:
    assert proficiency_bonus_from_level(level) == expected


def test_passive_score() -> None:
    assert passive_score(3) == 13
    assert passive_score(-1, 5) == 14


def test_helpers_js_defines_every_recipe_function() -> None:
    for name in (
        "getNumberValueFromField",
        "getBoolValueFromField",
        "calculateModifier",
        "getProficiencyMultiplier",
        "calculateSkillBonus",
        "calculateSaveBonus",
        "calculateModifierFromScore",
        "calculateSaveFromFields",
        "calculateSkillFromFields",
    ):
        assert f"function {name}(" in HELPERS_JS
    HELPERS_JS.encode("ascii")
    assert HELPERS_JS.count("event.value =") == 3
