"""Action recipes: role mappings -> one line of calculation JavaScript, and back.

Each ActionKind has exactly one RecipeSpec. resolve_recipe() builds the call
installed on the target field; parse_calculation_script() recognises those same
call shapes when reading a document back. Both go through RECIPE_SPECS so every
kind is handled at both sites.
"""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Mapping
import json
import re

from .errors import MissingRequiredRoleError, InvalidRecipeError
from .schema import ActionKind

UNDEFINED = "undefined"


@dataclass(frozen=True)
class RecipeSpec:
    kind: ActionKind
    function: str
    arguments: Tuple[str, ...]  # roles passed positionally to the helper function
    target_role: str
    optional_roles: Tuple[str, ...] = ()

    @property
    def roles(self) -> Tuple[str, ...]:
        return self.arguments + (self.target_role,)

    @property
    def required_roles(self) -> Tuple[str, ...]:
        return tuple(r for r in self.roles if r not in self.optional_roles)


RECIPE_SPECS: Dict[ActionKind, RecipeSpec] = {
    ActionKind.ABILITY_MODIFIER: RecipeSpec(
        kind=ActionKind.ABILITY_MODIFIER,
        function="calculateModifierFromScore",
        arguments=("scoreField",),
        target_role="modifierField",
    ),
    ActionKind.SAVING_THROW_MODIFIER: RecipeSpec(
        kind=ActionKind.SAVING_THROW_MODIFIER,
        function="calculateSaveFromFields",
        arguments=("abilityModifierField", "proficiencyField", "proficiencyBonusField"),
        target_role="targetField",
    ),
    ActionKind.SKILL_MODIFIER: RecipeSpec(
        kind=ActionKind.SKILL_MODIFIER,
        function="calculateSkillFromFields",
        arguments=(
            "abilityModifierField",
            "proficiencyField",
            "expertiseField",
            "halfProficiencyField",
            "proficiencyBonusField",
        ),
        target_role="targetField",
        optional_roles=("expertiseField", "halfProficiencyField"),
    ),
}


@dataclass(frozen=True)
class ActionRecipe:
    kind: ActionKind
    mapping: Mapping[str, Optional[str]] = field(default_factory=dict)

    @property
    def spec(self) -> RecipeSpec:
        return RECIPE_SPECS[self.kind]

    @property
    def target_field(self) -> Optional[str]:
        return _clean(self.mapping.get(self.spec.target_role))

    @classmethod
    def from_public(cls, action_type: str, mapping: Mapping[str, Optional[str]]) -> "ActionRecipe":
        """Build from the wire shape ``{"type": "skill-modifier", "mapping": {...}}``."""
        try:
            kind = ActionKind(action_type)
        except ValueError as e:
            raise InvalidRecipeError(f"Unknown action type: {action_type!r}") from e
        return cls(kind, dict(mapping or {}))

    @classmethod
    def ability_modifier(cls, score_field: str, modifier_field: str) -> "ActionRecipe":
        return cls(ActionKind.ABILITY_MODIFIER, {
            "scoreField": score_field,
            "modifierField": modifier_field,
        })

    @classmethod
    def saving_throw_modifier(cls, ability_modifier_field: str, proficiency_field: str,
                              proficiency_bonus_field: str, target_field: str) -> "ActionRecipe":
        return cls(ActionKind.SAVING_THROW_MODIFIER, {
            "abilityModifierField": ability_modifier_field,
            "proficiencyField": proficiency_field,
            "proficiencyBonusField": proficiency_bonus_field,
            "targetField": target_field,
        })

    @classmethod
    def skill_modifier(cls, ability_modifier_field: str, proficiency_field: str,
                       proficiency_bonus_field: str, target_field: str,
                       expertise_field: Optional[str] = None,
                       half_proficiency_field: Optional[str] = None) -> "ActionRecipe":
        return cls(ActionKind.SKILL_MODIFIER, {
            "abilityModifierField": ability_modifier_field,
            "proficiencyField": proficiency_field,
            "expertiseField": expertise_field,
            "halfProficiencyField": half_proficiency_field,
            "proficiencyBonusField": proficiency_bonus_field,
            "targetField": target_field,
        })


@dataclass(frozen=True)
class ResolvedAction:
    target_field: str
    script: str
    mapping: Dict[str, Optional[str]] = field(default_factory=dict)  # every role, blanks as None


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    if not isinstance(value, str):
        raise InvalidRecipeError(f"Field names must be strings, got {type(value).__name__}")
    return value if value.strip() else None


def js_string_literal(value: str) -> str:
    # JSON string syntax is valid JS and keeps the script pure ASCII
    return json.dumps(value)


def resolve_recipe(recipe: ActionRecipe) -> ResolvedAction:
    spec = RECIPE_SPECS.get(recipe.kind)
    if spec is None:
        raise InvalidRecipeError(f"Unsupported action kind: {recipe.kind!r}")

    unknown = sorted(set(recipe.mapping) - set(spec.roles))
    if unknown:
        raise InvalidRecipeError(f"{spec.kind.value} does not take roles: {', '.join(unknown)}")

    values = {role: _clean(recipe.mapping.get(role)) for role in spec.roles}
    missing = [role for role in spec.required_roles if values[role] is None]
    if missing:
        raise MissingRequiredRoleError(spec.kind.value, missing)

    args = [js_string_literal(values[role]) if values[role] is not None else UNDEFINED
            for role in spec.arguments]
    script = f"{spec.function}({', '.join(args)});"
    return ResolvedAction(target_field=values[spec.target_role], script=script, mapping=values)


_JS_STRING = r'"(?:[^"\\]|\\.)*"'
_ARGUMENT = re.compile(rf'\s*({_JS_STRING}|{UNDEFINED})\s*')
_CALL = re.compile(r'^\s*([A-Za-z_$][\w$]*)\s*\((.*)\)\s*;?\s*$', re.S)


def _split_arguments(raw: str) -> Optional[List[Optional[str]]]:
    if not raw.strip():
        return []
    values: List[Optional[str]] = []
    pos = 0
    while True:
        m = _ARGUMENT.match(raw, pos)
        if not m:
            return None
        token = m.group(1)
        if token == UNDEFINED:
            values.append(None)
        else:
            try:
                values.append(json.loads(token))
            except ValueError:
                return None
        pos = m.end()
        if pos == len(raw):
            return values
        if raw[pos] != ",":
            return None
        pos += 1


def parse_calculation_script(script: str) -> Optional[Tuple[ActionKind, Dict[str, Optional[str]]]]:
    """Recognise a calculate script produced by resolve_recipe.

    Returns (kind, mapping without the target role), or None for anything that is
    not exactly one of the known call shapes.
    """
    m = _CALL.match(script or "")
    if not m:
        return None
    function, raw_args = m.group(1), m.group(2)
    spec = next((s for s in RECIPE_SPECS.values() if s.function == function), None)
    if spec is None:
        return None
    args = _split_arguments(raw_args)
    if args is None or len(args) != len(spec.arguments):
        return None
    mapping = dict(zip(spec.arguments, args))
    if any(mapping[role] is None for role in spec.arguments if role not in spec.optional_roles):
        return None
    return spec.kind, mapping
