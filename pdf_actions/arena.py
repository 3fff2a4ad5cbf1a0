"""Object arena over a parsed PDF.

Objects are addressed by (object number, generation). Anything read comes from the
pypdf reader's cache; objects mutated in place are marked dirty and newly allocated
ones get fresh numbers past the trailer /Size. Nothing is written back to the
source bytes: write_incremental_update() appends only dirty and new objects after
them, with a cross-reference section covering exactly those objects.
"""
from __future__ import annotations
from typing import Dict, Tuple, Optional, Any, List
import io
import re

from pypdf import PdfReader
from pypdf.generic import (
    DictionaryObject,
    IndirectObject,
    NameObject,
    NumberObject,
    PdfObject,
)

from .errors import MalformedDocumentError, SerializationFailedError

ObjectKey = Tuple[int, int]

_STARTXREF = re.compile(rb"startxref\s+(\d+)")
# Previous-trailer keys not repeated in the appended one; the rest are carried over.
_DROPPED_TRAILER_KEYS = frozenset({
    "/Size", "/Prev", "/XRefStm", "/Type", "/W", "/Index", "/Filter", "/DecodeParms", "/Length",
})


def key_of(ref: IndirectObject) -> ObjectKey:
    return (ref.idnum, ref.generation)


def raw_get(container: DictionaryObject, key: str) -> Any:
    """Dictionary value without following indirect references, or None."""
    if key not in container:
        return None
    return container.raw_get(key)


def open_reader(data: bytes) -> PdfReader:
    if not data or b"%PDF-" not in data[:1024]:
        raise MalformedDocumentError("Not a PDF file")
    try:
        return PdfReader(io.BytesIO(data), strict=False)
    except Exception as e:
        raise MalformedDocumentError(f"Failed to parse PDF: {e}") from e


def last_startxref(data: bytes) -> int:
    tail = data[-2048:]
    pos = tail.rfind(b"startxref")
    m = _STARTXREF.match(tail[pos:]) if pos >= 0 else None
    if not m:
        raise MalformedDocumentError("PDF has no startxref marker")
    return int(m.group(1))


class ObjectArena:
    def __init__(self, data: bytes, reader: Optional[PdfReader] = None):
        self.data = data
        self.reader = reader or open_reader(data)
        self._dirty: Dict[ObjectKey, PdfObject] = {}
        self._new: Dict[ObjectKey, PdfObject] = {}
        try:
            size = int(self.reader.trailer.get("/Size", 0))
            # Some writers understate /Size; never reuse a number the xref already knows.
            known = [num for entries in self.reader.xref.values() for num in entries]
            known.extend(self.reader.xref_objStm)
        except Exception as e:
            raise MalformedDocumentError(f"Unreadable cross-reference data: {e}") from e
        self._next_number = max([size, 1] + [num + 1 for num in known])

    @property
    def root_ref(self) -> IndirectObject:
        ref = raw_get(self.reader.trailer, "/Root")
        if not isinstance(ref, IndirectObject):
            raise MalformedDocumentError("PDF trailer has no /Root reference")
        return ref

    def get(self, ref: IndirectObject) -> PdfObject:
        k = key_of(ref)
        if k in self._new:
            return self._new[k]
        if k in self._dirty:
            return self._dirty[k]
        obj = self.reader.get_object(ref)
        if obj is None:
            raise MalformedDocumentError(f"Object {k[0]} {k[1]} R is missing")
        return obj

    def resolve(self, value: Any) -> Tuple[Any, Optional[IndirectObject]]:
        """Return (direct object, reference it was reached through or None)."""
        if isinstance(value, IndirectObject):
            return self.get(value), value
        return value, None

    def allocate(self, obj: PdfObject) -> IndirectObject:
        k = (self._next_number, 0)
        self._next_number += 1
        self._new[k] = obj
        return IndirectObject(k[0], k[1], self.reader)

    def touch(self, ref: IndirectObject) -> None:
        k = key_of(ref)
        if k in self._new:
            return
        self._dirty[k] = self.get(ref)

    @property
    def modified_keys(self) -> List[ObjectKey]:
        return sorted(set(self._dirty) | set(self._new))

    def _object_for(self, k: ObjectKey) -> PdfObject:
        return self._new[k] if k in self._new else self._dirty[k]

    def write_incremental_update(self) -> bytes:
        """Original bytes followed by one update section for dirty and new objects."""
        try:
            prev = last_startxref(self.data)
            out = io.BytesIO()
            out.write(self.data)
            if not self.data.endswith((b"\n", b"\r")):
                out.write(b"\n")

            offsets: Dict[ObjectKey, int] = {}
            for k in self.modified_keys:
                offsets[k] = out.tell()
                out.write(b"%d %d obj\n" % k)
                self._object_for(k).write_to_stream(out)
                out.write(b"\nendobj\n")

            xref_offset = out.tell()
            out.write(b"xref\n0 1\n0000000000 65535 f\r\n")
            for start, keys in _subsections(list(offsets)):
                out.write(b"%d %d\n" % (start, len(keys)))
                for k in keys:
                    out.write(b"%010d %05d n\r\n" % (offsets[k], k[1]))

            trailer = DictionaryObject()
            for name in self.reader.trailer:
                if name not in _DROPPED_TRAILER_KEYS:
                    trailer[NameObject(name)] = self.reader.trailer.raw_get(name)
            trailer[NameObject("/Size")] = NumberObject(self._next_number)
            trailer[NameObject("/Prev")] = NumberObject(prev)
            out.write(b"trailer\n")
            trailer.write_to_stream(out)
            out.write(b"\nstartxref\n%d\n%%%%EOF\n" % xref_offset)
            return out.getvalue()
        except MalformedDocumentError as e:
            raise SerializationFailedError(str(e)) from e
        except Exception as e:
            raise SerializationFailedError(f"Failed to write updated PDF: {e}") from e


def _subsections(keys: List[ObjectKey]) -> List[Tuple[int, List[ObjectKey]]]:
    """Group object keys into runs of consecutive object numbers."""
    runs: List[Tuple[int, List[ObjectKey]]] = []
    for k in sorted(keys):
        if runs and runs[-1][0] + len(runs[-1][1]) == k[0]:
            runs[-1][1].append(k)
        else:
            runs.append((k[0], [k]))
    return runs
