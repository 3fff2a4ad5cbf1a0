from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Dict, Any, Optional, Tuple, Union

Rect = Tuple[float, float, float, float]


class ActionKind(str, Enum):
    ABILITY_MODIFIER = "ability-modifier"
    SKILL_MODIFIER = "skill-modifier"
    SAVING_THROW_MODIFIER = "saving-throw-modifier"


@dataclass(frozen=True)
class PixelBox:
    """Top-left origin box in rendered page pixels."""
    left: float
    top: float
    width: float
    height: float


@dataclass
class FormField:
    """A terminal AcroForm field.

    ``name`` is the fully-qualified dotted name. ``field_type`` is the raw /FT token
    without the slash ('Tx', 'Btn', 'Ch', 'Sig'), inherited from ancestors when the
    terminal node does not carry one. Geometry is only filled in by
    extract_fields_with_geometry: ``rect`` in PDF space (bottom-left origin) and
    ``box`` in top-left pixel space at the requested render scale.
    """
    name: str
    field_type: str = "Unknown"
    calculable: bool = True
    page: Optional[int] = None
    rect: Optional[Rect] = None
    box: Optional[PixelBox] = None

    def to_public(self) -> Dict[str, Any]:  # stable outward shape
        return {
            "name": self.name,
            "field_type": self.field_type,
            "calculable": self.calculable,
            **({"page": self.page} if self.page is not None else {}),
            **({"rect": list(self.rect)} if self.rect else {}),
            **({"box": {
                "left": self.box.left,
                "top": self.box.top,
                "width": self.box.width,
                "height": self.box.height,
            }} if self.box else {}),
        }


@dataclass(frozen=True)
class AttachedAction:
    kind: ActionKind
    target_field: str
    mapping: Dict[str, Optional[str]] = field(default_factory=dict)

    def to_public(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "target_field": self.target_field,
            "mapping": dict(self.mapping),
        }


@dataclass(frozen=True)
class UnknownAction:
    """A calculate script on a field that matches none of the known recipe shapes."""
    field_name: str
    script: str

    def to_public(self) -> Dict[str, Any]:
        return {"type": "unknown", "target_field": self.field_name, "script": self.script}


ListedAction = Union[AttachedAction, UnknownAction]


@dataclass
class SheetSummary:
    sheet_id: str
    original_filename: str
    size: int
    actions: List[ListedAction] = field(default_factory=list)

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "sheet_id": self.sheet_id,
            "original_filename": self.original_filename,
            "size": self.size,
            "action_count": len(self.actions),
            "actions": [a.to_public() for a in self.actions],
        }
