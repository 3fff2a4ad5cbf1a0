"""Calculation script library.

The numeric recipes exist twice: as plain Python functions (used for tests and for
callers that want to preview a value) and as the canonical JavaScript text
``HELPERS_JS`` that is embedded once per document under Names/JavaScript. The two
must agree; the JS side additionally reads form fields and assigns ``event.value``.

Numeric semantics shared by both:
  - missing / non-numeric field values count as 0
  - a checkbox is unchecked when its value is "Off", 0, "" or absent
  - totals are floored toward negative infinity (-0.5 -> -1)
"""
from __future__ import annotations
import math
from typing import Any

HELPERS_VERSION = "1.0.0"

UNCHECKED_VALUES = ("Off", 0, "")


def to_number(value: Any) -> float:
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    try:
        n = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(n) or math.isinf(n):
        return 0
    return int(n) if n.is_integer() else n


def is_checked(value: Any) -> bool:
    if value is None or isinstance(value, bool):
        return bool(value)
    if isinstance(value, (int, float)):
        return value != 0
    return value not in UNCHECKED_VALUES


def ability_modifier(score: Any) -> int:
    return math.floor((to_number(score) - 10) / 2)


def proficiency_multiplier(proficient: bool, expertise: bool, half: bool) -> float:
    # expertise > proficient > half > none
    if expertise:
        return 2
    if proficient:
        return 1
    if half:
        return 0.5
    return 0


def skill_total(ability_mod: Any, prof_mult: Any, prof_bonus: Any, misc: Any = 0) -> int:
    return math.floor(to_number(ability_mod) + to_number(prof_mult) * to_number(prof_bonus) + to_number(misc))


def save_total(ability_mod: Any, proficient: bool, prof_bonus: Any, misc: Any = 0) -> int:
    bonus = to_number(prof_bonus) if proficient else 0
    return math.floor(to_number(ability_mod) + bonus + to_number(misc))


def proficiency_bonus_from_level(level: Any) -> int:
    level = math.floor(to_number(level) or 1)
    level = min(max(level, 1), 20)
    return (level - 1) // 4 + 2


def passive_score(active: Any, misc: Any = 0) -> float:
    return 10 + to_number(active) + to_number(misc)


# Canonical document-level script. Must stay pure ASCII: it is stored in a PDF
# literal string and read back byte-for-byte.
HELPERS_JS = """\
/* Sheet calculation helpers v""" + HELPERS_VERSION + """ */

function getNumberValueFromField(fieldName) {
  var f = this.getField(fieldName);
  if (!f) {
    return 0;
  }
  var n = Number(f.value);
  return isNaN(n) ? 0 : n;
}

function getBoolValueFromField(fieldName) {
  if (fieldName === undefined || fieldName === null) {
    return false;
  }
  var f = this.getField(fieldName);
  if (!f) {
    return false;
  }
  var v = f.value;
  return v !== "Off" && v !== 0 && v !== "" && v != null;
}

function calculateModifier(score) {
  return Math.floor(((Number(score) || 0) - 10) / 2);
}

function getProficiencyMultiplier(proficient, expertise, half) {
  if (expertise) {
    return 2;
  }
  if (proficient) {
    return 1;
  }
  if (half) {
    return 0.5;
  }
  return 0;
}

function calculateSkillBonus(abilityMod, profMult, proficiencyBonus, misc) {
  return Math.floor((Number(abilityMod) || 0)
    + (Number(profMult) || 0) * (Number(proficiencyBonus) || 0)
    + (Number(misc) || 0));
}

function calculateSaveBonus(abilityMod, isProficient, proficiencyBonus, misc) {
  return Math.floor((Number(abilityMod) || 0)
    + (isProficient ? (Number(proficiencyBonus) || 0) : 0)
    + (Number(misc) || 0));
}

function proficiencyBonusFromLevel(level) {
  level = Math.min(Math.max(Math.floor(Number(level) || 1), 1), 20);
  return Math.floor((level - 1) / 4) + 2;
}

function passiveScore(active, misc) {
  return 10 + (Number(active) || 0) + (Number(misc) || 0);
}

function calculateModifierFromScore(scoreField) {
  event.value = calculateModifier(getNumberValueFromField(scoreField));
}

function calculateSaveFromFields(abilityModField, proficientField, proficiencyBonusField) {
  var mod = getNumberValueFromField(abilityModField);
  var prof = getBoolValueFromField(proficientField);
  var profBonus = getNumberValueFromField(proficiencyBonusField);
  event.value = calculateSaveBonus(mod, prof, profBonus, 0);
}

function calculateSkillFromFields(abilityModField, proficientField, expertiseField, halfProfField, proficiencyBonusField) {
  var mod = getNumberValueFromField(abilityModField);
  var mult = getProficiencyMultiplier(
    getBoolValueFromField(proficientField),
    getBoolValueFromField(expertiseField),
    getBoolValueFromField(halfProfField)
  );
  var profBonus = getNumberValueFromField(proficiencyBonusField);
  event.value = calculateSkillBonus(mod, mult, profBonus, 0);
}
"""
