"""Install calculation actions into a sheet's object graph.

attach_action() is all-or-nothing: the recipe is resolved and the target field
located before anything is touched, every mutation happens on objects held by an
ObjectArena, and the result is a fresh byte string made of the untouched original
followed by one incremental update. The caller's bytes are never modified.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import List, Optional, Tuple, Any, Dict

from pypdf.generic import (
    ArrayObject,
    BooleanObject,
    ByteStringObject,
    DictionaryObject,
    IndirectObject,
    NameObject,
    StreamObject,
    TextStringObject,
)

from config import HELPER_SCRIPT_NAME
from logging_utils import get_logger
from .arena import ObjectArena, raw_get, key_of
from .errors import FieldNotFoundError, MalformedDocumentError, SheetActionError, UnsupportedDocumentError
from .extract import FieldNode, FormDocument, iter_field_nodes, read_form
from .recipes import ActionRecipe, RECIPE_SPECS, parse_calculation_script, resolve_recipe
from .schema import AttachedAction, ListedAction, UnknownAction
from .scripts import HELPERS_JS

logger = get_logger("editor")

_MAX_NAME_TREE_DEPTH = 32


def _text(value: Any) -> str:
    if isinstance(value, ByteStringObject):
        raw = bytes(value)
        if raw.startswith((b"\xfe\xff", b"\xff\xfe")):
            return raw.decode("utf-16")
        return raw.decode("latin-1")
    return str(value)


def _key_bytes(value: Any) -> bytes:
    """A name-tree key as the string bytes stored in the file; trees sort on these."""
    if isinstance(value, IndirectObject):
        value = value.get_object()
    if isinstance(value, ByteStringObject):
        return bytes(value)
    if not isinstance(value, TextStringObject):
        value = TextStringObject(str(value))
    return value.get_original_bytes()


def javascript_action(script: str) -> DictionaryObject:
    action = DictionaryObject()
    action[NameObject("/S")] = NameObject("/JavaScript")
    # pypdf escapes backslashes, parentheses and control bytes when writing literals
    action[NameObject("/JS")] = TextStringObject(script)
    return action


def script_text(action: Any) -> Optional[str]:
    """The /JS source of a JavaScript action dictionary, or None for other actions."""
    if not isinstance(action, DictionaryObject):
        return None
    if str(action.get("/S")) != "/JavaScript" or "/JS" not in action:
        return None
    js = action["/JS"]
    if isinstance(js, StreamObject):
        return _text(ByteStringObject(js.get_data()))
    return _text(js)


# ---- Name tree -------------------------------------------------------------------

def _name_tree_entries(arena: ObjectArena, node: DictionaryObject, depth: int = 0) -> List[Tuple[str, Any]]:
    if depth > _MAX_NAME_TREE_DEPTH:
        raise MalformedDocumentError("Name tree is too deep")
    entries: List[Tuple[str, Any]] = []
    names, _ = arena.resolve(raw_get(node, "/Names"))
    if isinstance(names, ArrayObject):
        for i in range(0, len(names) - 1, 2):
            entries.append((_text(arena.resolve(names[i])[0]), names[i + 1]))
    kids, _ = arena.resolve(raw_get(node, "/Kids"))
    if isinstance(kids, ArrayObject):
        for kid in kids:
            kid_obj, _ = arena.resolve(kid)
            if isinstance(kid_obj, DictionaryObject):
                entries.extend(_name_tree_entries(arena, kid_obj, depth + 1))
    return entries


def _widen_limits(arena: ObjectArena, node: DictionaryObject, owner: IndirectObject, key: str) -> None:
    limits, _ = arena.resolve(raw_get(node, "/Limits"))
    if not isinstance(limits, ArrayObject) or len(limits) != 2:
        return
    low, high = limits[0], limits[1]
    new_key = TextStringObject(key)
    raw = _key_bytes(new_key)
    if _key_bytes(low) <= raw <= _key_bytes(high):
        return
    node[NameObject("/Limits")] = ArrayObject([
        new_key if raw < _key_bytes(low) else low,
        new_key if raw > _key_bytes(high) else high,
    ])
    arena.touch(owner)


def _name_tree_insert(arena: ObjectArena, node: DictionaryObject, owner: IndirectObject,
                      key: str, value: IndirectObject, depth: int = 0) -> None:
    """Insert (key, value) keeping the leaf's Names array sorted, widening /Limits on the way."""
    if depth > _MAX_NAME_TREE_DEPTH:
        raise MalformedDocumentError("Name tree is too deep")
    raw = _key_bytes(key)
    kids, _ = arena.resolve(raw_get(node, "/Kids"))
    if isinstance(kids, ArrayObject) and len(kids) > 0:
        chosen = kids[-1]
        for kid in kids:
            kid_obj, _ = arena.resolve(kid)
            limits = kid_obj.get("/Limits") if isinstance(kid_obj, DictionaryObject) else None
            if isinstance(limits, ArrayObject) and len(limits) == 2 and raw <= _key_bytes(limits[1]):
                chosen = kid
                break
        kid_obj, kid_ref = arena.resolve(chosen)
        if not isinstance(kid_obj, DictionaryObject):
            raise MalformedDocumentError("Name tree node is not a dictionary")
        _name_tree_insert(arena, kid_obj, kid_ref or owner, key, value, depth + 1)
        _widen_limits(arena, node, owner, key)
        return

    names, names_ref = arena.resolve(raw_get(node, "/Names"))
    if not isinstance(names, ArrayObject):
        names, names_ref = ArrayObject(), None
        node[NameObject("/Names")] = names
    pos = len(names) - len(names) % 2
    for i in range(0, len(names) - 1, 2):
        if _key_bytes(arena.resolve(names[i])[0]) > raw:
            pos = i
            break
    names.insert(pos, value)
    names.insert(pos, TextStringObject(key))
    arena.touch(names_ref or owner)
    _widen_limits(arena, node, owner, key)


def ensure_helper_script(arena: ObjectArena) -> IndirectObject:
    """Make sure Catalog/Names/JavaScript holds exactly one HelpersJS entry.

    Missing Names or JavaScript dictionaries are created. If the entry already
    exists nothing is modified and its action reference is returned.
    """
    catalog_ref = arena.root_ref
    catalog = arena.get(catalog_ref)

    names, names_ref = arena.resolve(raw_get(catalog, "/Names"))
    if not isinstance(names, DictionaryObject):
        names = DictionaryObject()
        names_ref = arena.allocate(names)
        catalog[NameObject("/Names")] = names_ref
        arena.touch(catalog_ref)
    names_owner = names_ref or catalog_ref

    js_root, js_ref = arena.resolve(raw_get(names, "/JavaScript"))
    if not isinstance(js_root, DictionaryObject):
        js_root = DictionaryObject()
        js_root[NameObject("/Names")] = ArrayObject()
        js_ref = arena.allocate(js_root)
        names[NameObject("/JavaScript")] = js_ref
        arena.touch(names_owner)

    for name, value in _name_tree_entries(arena, js_root):
        if name == HELPER_SCRIPT_NAME:
            logger.info(f"{HELPER_SCRIPT_NAME} already present; reusing it")
            return value

    action_ref = arena.allocate(javascript_action(HELPERS_JS))
    _name_tree_insert(arena, js_root, js_ref or names_owner, HELPER_SCRIPT_NAME, action_ref)
    logger.info(f"Installed {HELPER_SCRIPT_NAME} as object {action_ref.idnum}")
    return action_ref


# ---- Fields ----------------------------------------------------------------------

def find_field(form: FormDocument, field_name: str) -> FieldNode:
    """First field whose fully-qualified name, or failing that partial /T, matches."""
    nodes = list(iter_field_nodes(form.fields))
    for node in nodes:
        if node.name == field_name:
            return node
    for node in nodes:
        if node.partial_name == field_name:
            return node
    raise FieldNotFoundError(field_name)


def install_calculate_action(arena: ObjectArena, node: FieldNode, script: str) -> IndirectObject:
    """Point the field's /AA /C at a new JavaScript action, replacing any previous one."""
    action_ref = arena.allocate(javascript_action(script))
    existing, _ = arena.resolve(raw_get(node.obj, "/AA"))
    # Always a fresh direct /AA: an indirect one may be shared with other fields.
    aa = DictionaryObject()
    if isinstance(existing, DictionaryObject):
        for k in existing:
            aa[NameObject(k)] = existing.raw_get(k)
    aa[NameObject("/C")] = action_ref
    node.obj[NameObject("/AA")] = aa
    arena.touch(node.ref)
    return action_ref


def add_to_calculation_order(arena: ObjectArena, field_ref: IndirectObject) -> None:
    catalog_ref = arena.root_ref
    catalog = arena.get(catalog_ref)
    acroform, acroform_ref = arena.resolve(raw_get(catalog, "/AcroForm"))
    owner = acroform_ref or catalog_ref

    co, co_ref = arena.resolve(raw_get(acroform, "/CO"))
    if not isinstance(co, ArrayObject):
        co, co_ref = ArrayObject(), None
        acroform[NameObject("/CO")] = co
        arena.touch(owner)
    if not any(isinstance(item, IndirectObject) and key_of(item) == key_of(field_ref) for item in co):
        co.append(field_ref)
        arena.touch(co_ref or owner)

    needs = acroform.get("/NeedAppearances")
    if not (isinstance(needs, BooleanObject) and needs.value):
        acroform[NameObject("/NeedAppearances")] = BooleanObject(True)
        arena.touch(owner)


@dataclass(frozen=True)
class AttachResult:
    """New sheet bytes plus the action as it will read back from them."""
    data: bytes
    action: AttachedAction


def _unreadable(e: Exception) -> MalformedDocumentError:
    return MalformedDocumentError(f"Failed to parse PDF: {e}")


def apply_recipe(data: bytes, recipe: ActionRecipe) -> AttachResult:
    """Install ``recipe`` on its target field and describe what was installed.

    The returned action names the field that was actually edited: a partial /T
    given by the caller comes back as the fully-qualified name, so it matches
    what list_attached_actions() reports for the new bytes.

    Raises MissingRequiredRoleError / InvalidRecipeError before the bytes are
    parsed, MalformedDocumentError for unusable input, FieldNotFoundError when the
    target is absent, SerializationFailedError if writing the update fails.
    """
    resolved = resolve_recipe(recipe)
    try:
        arena = ObjectArena(data)
        form = read_form(data, arena.reader)
        target = find_field(form, resolved.target_field)
        if target.ref is None:
            raise UnsupportedDocumentError(
                f"Field {resolved.target_field!r} is not an indirect object and cannot be ordered"
            )
        ensure_helper_script(arena)
        install_calculate_action(arena, target, resolved.script)
        add_to_calculation_order(arena, target.ref)
    except FieldNotFoundError:
        logger.warning(f"Attach {recipe.kind.value}: field {resolved.target_field!r} not found")
        raise
    except SheetActionError:
        raise
    except Exception as e:
        raise _unreadable(e) from e

    out = arena.write_incremental_update()
    logger.info(
        f"Attached {recipe.kind.value} to {target.name!r}; "
        f"{len(arena.modified_keys)} objects written, {len(data)} -> {len(out)} bytes"
    )
    mapping = dict(resolved.mapping)
    mapping[recipe.spec.target_role] = target.name
    return AttachResult(
        data=out,
        action=AttachedAction(kind=recipe.kind, target_field=target.name, mapping=mapping),
    )


def attach_action(data: bytes, recipe: ActionRecipe) -> bytes:
    """Return new sheet bytes with ``recipe`` installed on its target field."""
    return apply_recipe(data, recipe).data


# ---- Reading back ----------------------------------------------------------------

def read_calculate_script(arena: ObjectArena, field_obj: DictionaryObject) -> Optional[str]:
    """Text of the field's /AA /C script; '' for a non-JavaScript action, None if absent."""
    aa, _ = arena.resolve(raw_get(field_obj, "/AA"))
    if not isinstance(aa, DictionaryObject) or "/C" not in aa:
        return None
    action, _ = arena.resolve(aa.raw_get("/C"))
    script = script_text(action)
    return script if script is not None else ""


def list_attached_actions(data: bytes) -> List[ListedAction]:
    """Rebuild the attached actions from the document itself.

    Fields named in the AcroForm /CO array come first, in that order (the order
    actions were attached in); any other field with a calculate action follows in
    document order. Scripts not produced by a known recipe become UnknownAction.
    """
    try:
        arena = ObjectArena(data)
        form = read_form(data, arena.reader)
        co, _ = arena.resolve(raw_get(form.acroform, "/CO"))
        co_rank: Dict[Tuple[int, int], int] = {}
        if isinstance(co, ArrayObject):
            for item in co:
                if isinstance(item, IndirectObject):
                    co_rank.setdefault(key_of(item), len(co_rank))

        found = []
        seen = set()
        for index, node in enumerate(iter_field_nodes(form.fields)):
            if node.name in seen:
                continue  # aliases of the first occurrence
            seen.add(node.name)
            script = read_calculate_script(arena, node.obj)
            if script is None:
                continue
            rank = co_rank.get(key_of(node.ref)) if node.ref is not None else None
            found.append(((0, rank) if rank is not None else (1, index), node.name, script))
    except SheetActionError:
        raise
    except Exception as e:
        raise _unreadable(e) from e

    actions: List[ListedAction] = []
    for _, name, script in sorted(found, key=lambda f: f[0]):
        parsed = parse_calculation_script(script)
        if parsed is None:
            actions.append(UnknownAction(field_name=name, script=script))
            continue
        kind, mapping = parsed
        mapping[RECIPE_SPECS[kind].target_role] = name
        actions.append(AttachedAction(kind=kind, target_field=name, mapping=mapping))
    return actions


def _helper_entries(data: bytes) -> List[Any]:
    try:
        arena = ObjectArena(data)
        read_form(data, arena.reader)
        catalog = arena.get(arena.root_ref)
        names, _ = arena.resolve(raw_get(catalog, "/Names"))
        if not isinstance(names, DictionaryObject):
            return []
        js_root, _ = arena.resolve(raw_get(names, "/JavaScript"))
        if not isinstance(js_root, DictionaryObject):
            return []
        return [arena.resolve(value)[0] for name, value in _name_tree_entries(arena, js_root)
                if name == HELPER_SCRIPT_NAME]
    except SheetActionError:
        raise
    except Exception as e:
        raise _unreadable(e) from e


def count_helper_scripts(data: bytes) -> int:
    return len(_helper_entries(data))


def read_helper_script(data: bytes) -> Optional[str]:
    entries = _helper_entries(data)
    return script_text(entries[0]) if entries else None
