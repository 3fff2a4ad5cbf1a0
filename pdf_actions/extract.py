from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterator, List, Dict, Any, Optional, Set, Tuple

from pypdf import PdfReader
from pypdf.generic import ArrayObject, DictionaryObject, IndirectObject

import fitz  # PyMuPDF

from config import DEFAULT_RENDER_SCALE, MAX_FORM_FIELDS, ERROR_MESSAGES
from logging_utils import get_logger
from .arena import open_reader, key_of
from .errors import MalformedDocumentError, UnsupportedDocumentError
from .schema import FormField, PixelBox

logger = get_logger("extract")

# Ff bits (PDF 32000-1, table 226)
FF_RADIO = 1 << 15
FF_PUSHBUTTON = 1 << 16


@dataclass
class FormDocument:
    """A parsed sheet with its form dictionaries located."""
    reader: PdfReader
    catalog: DictionaryObject
    acroform: DictionaryObject
    fields: ArrayObject


@dataclass
class FieldNode:
    name: str  # fully-qualified dotted name
    partial_name: Optional[str]
    obj: DictionaryObject
    ref: Optional[IndirectObject]
    field_type: Optional[str]
    flags: int
    terminal: bool
    widgets: List[DictionaryObject] = field(default_factory=list)


def _value(container: DictionaryObject, key: str) -> Any:
    return container[key] if key in container else None


def _name_token(value: Any) -> Optional[str]:
    return str(value).lstrip("/") if value is not None else None


def read_form(data: bytes, reader: Optional[PdfReader] = None) -> FormDocument:
    """Parse sheet bytes and locate Catalog, AcroForm and the Fields array.

    Raises MalformedDocumentError when any of them is missing or the bytes do not
    parse, UnsupportedDocumentError for encrypted documents.
    """
    reader = reader or open_reader(data)
    try:
        if reader.is_encrypted:
            raise UnsupportedDocumentError(ERROR_MESSAGES['encrypted_pdf'])
        catalog = reader.trailer["/Root"]
        if not isinstance(catalog, DictionaryObject):
            raise MalformedDocumentError(ERROR_MESSAGES['no_catalog'])
        acroform = _value(catalog, "/AcroForm")
        if not isinstance(acroform, DictionaryObject):
            raise MalformedDocumentError(ERROR_MESSAGES['not_acroform'])
        fields = _value(acroform, "/Fields")
        if not isinstance(fields, ArrayObject):
            raise MalformedDocumentError(ERROR_MESSAGES['no_fields_array'])
    except MalformedDocumentError:
        raise
    except KeyError as e:
        raise MalformedDocumentError(ERROR_MESSAGES['no_catalog']) from e
    except Exception as e:
        # pypdf resolves lazily; damaged objects surface here as arbitrary errors
        raise MalformedDocumentError(f"{ERROR_MESSAGES['parse_failed']}: {e}") from e
    return FormDocument(reader=reader, catalog=catalog, acroform=acroform, fields=fields)


def validate_sheet(data: bytes) -> FormDocument:
    """Upload-time checks: a PDF whose AcroForm can carry calculate actions."""
    if not data.startswith(b"%PDF-"):
        raise MalformedDocumentError(ERROR_MESSAGES['not_pdf'])
    form = read_form(data)
    if "/XFA" in form.acroform:
        raise UnsupportedDocumentError(ERROR_MESSAGES['xfa_form'])
    try:
        perms = _value(form.catalog, "/Perms")
    except Exception as e:
        raise MalformedDocumentError(f"{ERROR_MESSAGES['parse_failed']}: {e}") from e
    if isinstance(perms, DictionaryObject) and "/DocMDP" in perms:
        raise UnsupportedDocumentError(ERROR_MESSAGES['locked_pdf'])
    return form


def iter_field_nodes(fields: ArrayObject) -> Iterator[FieldNode]:
    """Depth-first, document-order walk of the field tree.

    Yields every node carrying a /T. Kids without /T are widget annotations of
    their parent and are attached to it instead of being yielded.
    """
    seen: Set[Tuple[int, int]] = set()

    def walk(items: ArrayObject, parent_name: str, parent_ft: Optional[str], parent_ff: int):
        for item in items:
            ref = item if isinstance(item, IndirectObject) else None
            if ref is not None:
                if key_of(ref) in seen:
                    logger.warning(f"Field tree cycle at {ref.idnum} {ref.generation} R; skipping")
                    continue
                seen.add(key_of(ref))
            node = item.get_object()
            if not isinstance(node, DictionaryObject):
                continue
            partial = _value(node, "/T")
            partial = str(partial) if partial is not None else None
            ft = _name_token(_value(node, "/FT")) or parent_ft
            ff = int(_value(node, "/Ff") or parent_ff)
            if partial is None:
                continue
            name = f"{parent_name}.{partial}" if parent_name else partial

            kids = _value(node, "/Kids")
            kids = kids if isinstance(kids, ArrayObject) else ArrayObject()
            named, widgets = ArrayObject(), []
            for kid in kids:
                kid_obj = kid.get_object()
                if isinstance(kid_obj, DictionaryObject) and "/T" in kid_obj:
                    named.append(kid)
                elif isinstance(kid_obj, DictionaryObject):
                    widgets.append(kid_obj)
            if not kids and "/Rect" in node:
                widgets.append(node)

            yield FieldNode(
                name=name,
                partial_name=partial,
                obj=node,
                ref=ref,
                field_type=ft,
                flags=ff,
                terminal=not named,
                widgets=widgets,
            )
            if named:
                yield from walk(named, name, ft, ff)

    yield from walk(fields, "", None, 0)


def is_calculable(field_type: Optional[str], flags: int) -> bool:
    if field_type in ("Tx", "Ch"):
        return True
    if field_type == "Btn":
        # Checkboxes and radio groups hold values; push buttons do not
        return not flags & FF_PUSHBUTTON
    return False


def _collect(form: FormDocument) -> List[FormField]:
    collected: List[FormField] = []
    names: Set[str] = set()
    try:
        for node in iter_field_nodes(form.fields):
            if not node.terminal:
                continue
            if node.name in names:
                continue  # aliases of the first occurrence
            if len(collected) >= MAX_FORM_FIELDS:
                logger.warning(f"Field cap of {MAX_FORM_FIELDS} reached; remaining fields ignored")
                break
            names.add(node.name)
            collected.append(FormField(
                name=node.name,
                field_type=node.field_type or "Unknown",
                calculable=is_calculable(node.field_type, node.flags),
            ))
    except Exception as e:
        raise MalformedDocumentError(f"{ERROR_MESSAGES['parse_failed']}: {e}") from e
    return collected


def extract_fields(data: bytes) -> List[FormField]:
    """List a sheet's form fields in document order.

    Returns an empty list for an AcroForm with no fields; raises
    MalformedDocumentError if the bytes are not a PDF or have no AcroForm/Fields.
    """
    fields = _collect(read_form(data))
    logger.info(f"Extracted {len(fields)} fields")
    return fields


def extract_fields_with_geometry(data: bytes, scale: float = DEFAULT_RENDER_SCALE) -> List[FormField]:
    """Like extract_fields, with page index and rectangles for every widget.

    A field with several widgets appears once per widget; a field without a
    widget appears once with no geometry. ``rect`` is the PDF-space
    [x1, y1, x2, y2]; ``box`` is the top-left-origin pixel box at ``scale``:
    top = pageHeight*scale - y2*scale.
    """
    if scale <= 0:
        raise ValueError("scale must be positive")
    fields = extract_fields(data)
    by_name: Dict[str, FormField] = {f.name: f for f in fields}
    placed: Dict[str, List[FormField]] = {f.name: [] for f in fields}

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        raise MalformedDocumentError(f"{ERROR_MESSAGES['parse_failed']}: {e}") from e

    try:
        with doc:
            for page_index, page in enumerate(doc):
                page_height = page.mediabox.height
                to_pdf = ~page.transformation_matrix
                for w in page.widgets() or []:
                    base = by_name.get(w.field_name)
                    if base is None:
                        continue
                    r = w.rect * to_pdf
                    x1, y1, x2, y2 = r.x0, r.y0, r.x1, r.y1
                    placed[base.name].append(FormField(
                        name=base.name,
                        field_type=base.field_type,
                        calculable=base.calculable,
                        page=page_index,
                        rect=(x1, y1, x2, y2),
                        box=PixelBox(
                            left=x1 * scale,
                            top=page_height * scale - y2 * scale,
                            width=(x2 - x1) * scale,
                            height=(y2 - y1) * scale,
                        ),
                    ))
    except Exception as e:
        raise MalformedDocumentError(f"{ERROR_MESSAGES['parse_failed']}: {e}") from e

    ordered: List[FormField] = []
    for f in fields:
        ordered.extend(sorted(placed[f.name], key=lambda p: p.page) or [f])
    return ordered
