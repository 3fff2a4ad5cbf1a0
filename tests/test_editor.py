"""Attaching calculate actions and reading them back from the document."""

from __future__ import annotations

import io
import random

import pytest
from pypdf import PdfReader

from pdf_actions.editor import (
    apply_recipe,
    attach_action,
    count_helper_scripts,
    list_attached_actions,
    read_helper_script,
)
from pdf_actions.errors import (
    FieldNotFoundError,
    MalformedDocumentError,
    MissingRequiredRoleError,
    SheetActionError,
)
from pdf_actions.extract import extract_fields, extract_fields_with_geometry
from pdf_actions.recipes import ActionRecipe
from pdf_actions.schema import ActionKind, AttachedAction, UnknownAction
from pdf_actions.scripts import HELPERS_JS
from pdf_builder import EXPECTED_FIELD_NAMES, build_sheet, field_object_bytes


def _field(data: bytes, name: str):
    reader = PdfReader(io.BytesIO(data))
    for ref in reader.trailer["/Root"]["/AcroForm"]["/Fields"]:
        obj = ref.get_object()
        if obj.get("/T") == name:
            return obj
    raise AssertionError(f"{name} not found")


def _calculate_script(data: bytes, name: str) -> str:
    return _field(data, name)["/AA"]["/C"]["/JS"]


def _js_names(data: bytes):
    reader = PdfReader(io.BytesIO(data))
    tree = reader.trailer["/Root"]["/Names"]["/JavaScript"]
    leaves = [k.get_object() for k in tree["/Kids"]] if "/Kids" in tree else [tree]
    names = []
    for leaf in leaves:
        entries = leaf["/Names"]
        names.extend(str(entries[i]) for i in range(0, len(entries), 2))
    return names


def test_ability_modifier_script_on_target(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert _calculate_script(out, "STRmod") == 'calculateModifierFromScore("STR");'


def test_update_is_appended_after_original_bytes(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert out.startswith(sheet_bytes)
    assert len(out) > len(sheet_bytes)
    tail = out[len(sheet_bytes):]
    assert b"/Prev" in tail and b"startxref" in tail
    # both pypdf and the field walker read the new revision
    assert [f.name for f in extract_fields(out)] == EXPECTED_FIELD_NAMES


def test_untouched_fields_are_not_rewritten(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    tail = out[len(sheet_bytes):]
    assert b"(STRmod)" in tail
    for name in ("STR", "ProfBonus", "Check Box 26"):
        assert field_object_bytes(out, name) == field_object_bytes(sheet_bytes, name)
        assert b"/T (%s)" % name.encode() not in tail


def test_helper_script_installed_once(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    out = attach_action(out, ActionRecipe.ability_modifier("WIS (score)", "WISmod"))
    out = attach_action(out, ActionRecipe.saving_throw_modifier("STRmod", "Check Box 26", "ProfBonus", "ProfBonus"))
    assert count_helper_scripts(out) == 1
    assert read_helper_script(out) == HELPERS_JS


def test_helper_inserted_into_existing_name_tree() -> None:
    data = build_sheet(javascript_names=("Alpha", "Zeta"))
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert _js_names(out) == ["Alpha", "HelpersJS", "Zeta"]
    assert read_helper_script(out) == HELPERS_JS


def test_helper_inserted_into_split_name_tree() -> None:
    data = build_sheet(javascript_names=("Alpha", "Zeta"), split_name_tree=True)
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert _js_names(out) == ["Alpha", "HelpersJS", "Zeta"]
    assert count_helper_scripts(out) == 1


def test_existing_helper_is_reused() -> None:
    data = build_sheet(javascript_names=("HelpersJS",))
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert count_helper_scripts(out) == 1
    # the document's own copy wins; it is not replaced
    assert read_helper_script(out) == "/* HelpersJS */"


def test_calculation_order_appended_once(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    out = attach_action(out, ActionRecipe.ability_modifier("WIS (score)", "WISmod"))
    out = attach_action(out, ActionRecipe.ability_modifier("STR", "STRmod"))
    reader = PdfReader(io.BytesIO(out))
    acroform = reader.trailer["/Root"]["/AcroForm"]
    order = [ref.get_object()["/T"] for ref in acroform["/CO"]]
    assert order == ["STRmod", "WISmod"]
    assert acroform["/NeedAppearances"] is True or acroform["/NeedAppearances"].value is True


def test_existing_calculation_order_is_kept() -> None:
    data = build_sheet(calculation_order=("ProfBonus",))
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    reader = PdfReader(io.BytesIO(out))
    order = [ref.get_object()["/T"] for ref in reader.trailer["/Root"]["/AcroForm"]["/CO"]]
    assert order == ["ProfBonus", "STRmod"]


def test_reattaching_replaces_the_calculate_action(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    out = attach_action(out, ActionRecipe.ability_modifier("WIS (score)", "STRmod"))
    assert _calculate_script(out, "STRmod") == 'calculateModifierFromScore("WIS (score)");'
    actions = list_attached_actions(out)
    assert [a.target_field for a in actions] == ["STRmod"]
    assert actions[0].mapping["scoreField"] == "WIS (score)"


def test_shared_additional_actions_are_not_mutated() -> None:
    data = build_sheet(shared_aa=True)
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    target_aa = _field(out, "STRmod")["/AA"]
    assert "/F" in target_aa and "/C" in target_aa
    other_aa = _field(out, "ProfBonus")["/AA"]
    assert "/C" not in other_aa
    assert "/F" in other_aa


def test_names_with_parentheses_and_spaces_survive(sheet_bytes: bytes) -> None:
    recipe = ActionRecipe.saving_throw_modifier("WIS (score)", "Check Box 26", "ProfBonus", "WISmod")
    out = attach_action(sheet_bytes, recipe)
    assert _calculate_script(out, "WISmod") == (
        'calculateSaveFromFields("WIS (score)", "Check Box 26", "ProfBonus");'
    )
    [action] = list_attached_actions(out)
    assert action.kind is ActionKind.SAVING_THROW_MODIFIER
    assert action.mapping["abilityModifierField"] == "WIS (score)"


def test_nested_field_by_full_and_partial_name(sheet_bytes: bytes) -> None:
    recipe = ActionRecipe.skill_modifier("STRmod", "Check Box 26", "ProfBonus", "skills.Athletics")
    out = attach_action(sheet_bytes, recipe)
    out = attach_action(out, ActionRecipe.skill_modifier("STRmod", "Check Box 26", "ProfBonus", "Acrobatics"))
    targets = [a.target_field for a in list_attached_actions(out)]
    assert targets == ["skills.Athletics", "skills.Acrobatics"]


def test_missing_role_leaves_bytes_untouched(sheet_bytes: bytes) -> None:
    original = bytes(sheet_bytes)
    with pytest.raises(MissingRequiredRoleError):
        attach_action(sheet_bytes, ActionRecipe.ability_modifier("", "STRmod"))
    assert sheet_bytes == original


def test_unknown_target_field(sheet_bytes: bytes) -> None:
    with pytest.raises(FieldNotFoundError) as exc:
        attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "CHAmod"))
    assert exc.value.field_name == "CHAmod"


def test_attach_needs_an_acroform() -> None:
    with pytest.raises(MalformedDocumentError):
        attach_action(build_sheet(acroform=False), ActionRecipe.ability_modifier("STR", "STRmod"))


def test_list_actions_on_fresh_sheet(sheet_bytes: bytes) -> None:
    assert list_attached_actions(sheet_bytes) == []


def test_list_actions_reports_round_trip(sheet_bytes: bytes) -> None:
    out = attach_action(sheet_bytes, ActionRecipe.ability_modifier("STR", "STRmod"))
    actions = list_attached_actions(out)
    assert actions == [
        AttachedAction(
            kind=ActionKind.ABILITY_MODIFIER,
            target_field="STRmod",
            mapping={"scoreField": "STR", "modifierField": "STRmod"},
        )
    ]


def test_foreign_calculate_scripts_are_listed_as_unknown() -> None:
    data = build_sheet(calculate_scripts={"ProfBonus": "event.value = 2;"})
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    actions = list_attached_actions(out)
    assert [type(a) for a in actions] == [AttachedAction, UnknownAction]
    assert actions[1].field_name == "ProfBonus"
    assert actions[1].script == "event.value = 2;"
    assert actions[1].to_public()["type"] == "unknown"


def test_result_names_the_field_that_was_edited(sheet_bytes: bytes) -> None:
    recipe = ActionRecipe.skill_modifier("STRmod", "Check Box 26", "ProfBonus", "Acrobatics")
    result = apply_recipe(sheet_bytes, recipe)
    assert result.action.target_field == "skills.Acrobatics"
    assert result.action.mapping["targetField"] == "skills.Acrobatics"
    assert list_attached_actions(result.data) == [result.action]
    assert attach_action(sheet_bytes, recipe) == result.data


def test_duplicate_name_only_first_dictionary_gets_the_action() -> None:
    data = build_sheet(duplicate_field="STRmod")
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    reader = PdfReader(io.BytesIO(out))
    same_name = [ref.get_object() for ref in reader.trailer["/Root"]["/AcroForm"]["/Fields"]
                 if ref.get_object().get("/T") == "STRmod"]
    assert len(same_name) == 2
    assert same_name[0]["/AA"]["/C"]["/JS"] == 'calculateModifierFromScore("STR");'
    assert "/AA" not in same_name[1]
    assert [a.target_field for a in list_attached_actions(out)] == ["STRmod"]


def test_update_trailer_carries_previous_keys() -> None:
    data = build_sheet(info=True, trailer_extra=b"/DocChecksum /0A1B2C3D ")
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    tail = out[len(data):]
    trailer = tail[tail.rindex(b"trailer"):tail.rindex(b"startxref")]
    for key in (b"/Root", b"/Info", b"/ID", b"/DocChecksum /0A1B2C3D"):
        assert key in trailer
    assert trailer.count(b"/Prev") == 1
    assert trailer.count(b"/Size") == 1
    assert PdfReader(io.BytesIO(out)).metadata.title == "Character Sheet"


@pytest.mark.parametrize("split", [False, True])
def test_name_tree_is_ordered_by_string_bytes(split: bool) -> None:
    # UTF-16 keys start with the FE FF marker, so they sort after every latin-1 key
    data = build_sheet(javascript_names=("Alpha", "A一"), split_name_tree=split)
    out = attach_action(data, ActionRecipe.ability_modifier("STR", "STRmod"))
    assert _js_names(out) == ["Alpha", "HelpersJS", "A一"]
    assert count_helper_scripts(out) == 1


def _only_sheet_errors(data: bytes) -> None:
    recipe = ActionRecipe.ability_modifier("STR", "STRmod")
    operations = (
        extract_fields,
        extract_fields_with_geometry,
        list_attached_actions,
        lambda d: attach_action(d, recipe),
    )
    for operation in operations:
        try:
            operation(data)
        except SheetActionError:
            pass


@pytest.mark.parametrize("seed", range(160))
def test_damaged_sheet_raises_only_sheet_errors(seed: int) -> None:
    data = build_sheet(javascript_names=("Alpha",), calculate_scripts={"ProfBonus": "event.value = 2;"})
    rng = random.Random(seed)
    start = rng.randrange(len(data))
    _only_sheet_errors(data[:start] + data[start + rng.randint(1, 40):])


@pytest.mark.parametrize("keep", [0.1, 0.3, 0.5, 0.7, 0.9, 0.99])
def test_truncated_sheet_raises_only_sheet_errors(keep: float) -> None:
    data = build_sheet()
    _only_sheet_errors(data[:int(len(data) * keep)])
