from __future__ import annotations
from typing import Iterable


class SheetActionError(Exception):
    pass


class MalformedDocumentError(SheetActionError):
    """Input bytes are not a parsable PDF, or lack a usable AcroForm."""


class UnsupportedDocumentError(MalformedDocumentError):
    """Parsable PDF that cannot carry calculation actions (encrypted, XFA, locked)."""


class FieldNotFoundError(SheetActionError):
    def __init__(self, field_name: str):
        super().__init__(f"Form field not found: {field_name!r}")
        self.field_name = field_name


class MissingRequiredRoleError(SheetActionError):
    def __init__(self, kind: str, roles: Iterable[str]):
        self.kind = kind
        self.roles = list(roles)
        super().__init__(f"{kind} is missing required roles: {', '.join(self.roles)}")


class InvalidRecipeError(SheetActionError):
    pass


class SerializationFailedError(SheetActionError):
    pass


class SheetNotFoundError(SheetActionError):
    def __init__(self, sheet_id: str):
        super().__init__(f"Unknown sheet_id: {sheet_id}")
        self.sheet_id = sheet_id
