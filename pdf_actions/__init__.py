"""PDF form action engine.

Installs self-calculating JavaScript (ability, skill and saving throw modifiers)
into AcroForm character sheets and reads those actions back.
"""
from .schema import ActionKind, AttachedAction, FormField, PixelBox, SheetSummary, UnknownAction
from .errors import (
    SheetActionError,
    MalformedDocumentError,
    UnsupportedDocumentError,
    FieldNotFoundError,
    MissingRequiredRoleError,
    InvalidRecipeError,
    SerializationFailedError,
    SheetNotFoundError,
)
from .extract import extract_fields, extract_fields_with_geometry, validate_sheet
from .recipes import ActionRecipe, resolve_recipe
from .editor import AttachResult, apply_recipe, attach_action, list_attached_actions, read_helper_script, count_helper_scripts
from .scripts import HELPERS_JS
from .storage import SheetStorageManager

__all__ = [
    "ActionKind",
    "ActionRecipe",
    "AttachedAction",
    "FormField",
    "PixelBox",
    "SheetSummary",
    "UnknownAction",
    "SheetActionError",
    "MalformedDocumentError",
    "UnsupportedDocumentError",
    "FieldNotFoundError",
    "MissingRequiredRoleError",
    "InvalidRecipeError",
    "SerializationFailedError",
    "SheetNotFoundError",
    "extract_fields",
    "extract_fields_with_geometry",
    "validate_sheet",
    "resolve_recipe",
    "AttachResult",
    "apply_recipe",
    "attach_action",
    "list_attached_actions",
    "read_helper_script",
    "count_helper_scripts",
    "HELPERS_JS",
    "SheetStorageManager",
]
