"""
PDF Object Cursor
=================
Typed, read-only access to a PDF's indirect-object table via PyMuPDF.

Every value read from an object dictionary is returned as a ``PdfValue``
carrying an explicit ``PdfKind`` tag, so callers branch on the tag
instead of probing the raw PDF source text.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Optional

import fitz  # PyMuPDF

logger = logging.getLogger(__name__)

# Bounded so a reference cycle cannot hang the scan.
MAX_REFERENCE_DEPTH = 8

_REFERENCE_PATTERN = re.compile(r"^\s*(\d+)\s+(\d+)\s+R\s*$")


class PdfKind(Enum):
    """Tag for an object or dictionary value."""
    STREAM = "stream"
    DICTIONARY = "dict"
    NAME = "name"
    NUMBER = "number"
    REFERENCE = "reference"
    ARRAY = "array"
    STRING = "string"
    BOOLEAN = "bool"
    NULL = "null"


# PyMuPDF's xref_get_key type strings → tags
_FITZ_KINDS = {
    "name": PdfKind.NAME,
    "int": PdfKind.NUMBER,
    "float": PdfKind.NUMBER,
    "xref": PdfKind.REFERENCE,
    "array": PdfKind.ARRAY,
    "dict": PdfKind.DICTIONARY,
    "string": PdfKind.STRING,
    "bool": PdfKind.BOOLEAN,
    "null": PdfKind.NULL,
}


@dataclass(frozen=True)
class PdfValue:
    """A tagged dictionary value in PDF source form."""
    kind: PdfKind
    raw: str = ""

    @property
    def is_null(self) -> bool:
        return self.kind is PdfKind.NULL

    def as_number(self, default: float = 0) -> float:
        if self.kind is not PdfKind.NUMBER:
            return default
        try:
            return float(self.raw)
        except ValueError:
            return default

    def as_name(self) -> Optional[str]:
        """Name without the leading slash, e.g. 'Image'."""
        if self.kind is not PdfKind.NAME:
            return None
        return self.raw.lstrip("/")

    def as_reference(self) -> Optional[int]:
        """Target object number of an indirect reference."""
        if self.kind is not PdfKind.REFERENCE:
            return None
        match = _REFERENCE_PATTERN.match(self.raw)
        return int(match.group(1)) if match else None

    def names(self) -> list[str]:
        """All names in a NAME or ARRAY value, e.g. ['FlateDecode', 'DCTDecode']."""
        if self.kind is PdfKind.NAME:
            return [self.raw.lstrip("/")]
        if self.kind is PdfKind.ARRAY:
            return re.findall(r"/([^\s/\[\]<>()]+)", self.raw)
        return []


NULL = PdfValue(PdfKind.NULL, "null")


class ObjectCursor:
    """
    Cursor over every indirect object in an open document,
    including objects no page references.
    """

    def __init__(self, doc: fitz.Document):
        self.doc = doc

    def xrefs(self) -> Iterator[int]:
        """Object numbers in ascending order (0 is always the free head)."""
        for xref in range(1, self.doc.xref_length()):
            yield xref

    def kind_of(self, xref: int) -> PdfKind:
        """Classify an indirect object."""
        if self.doc.xref_is_stream(xref):
            return PdfKind.STREAM
        source = self.doc.xref_object(xref, compressed=True).strip()
        return _classify_source(source)

    def get(self, xref: int, key: str) -> PdfValue:
        """Read ``key`` from the object's dictionary (NULL if absent)."""
        fitz_type, value = self.doc.xref_get_key(xref, key)
        kind = _FITZ_KINDS.get(fitz_type, PdfKind.NULL)
        if kind is PdfKind.NULL:
            return NULL
        return PdfValue(kind, value)

    def resolve(self, value: PdfValue) -> PdfValue:
        """Follow indirect references until a direct value is reached."""
        depth = 0
        while value.kind is PdfKind.REFERENCE and depth < MAX_REFERENCE_DEPTH:
            target = value.as_reference()
            if target is None or not 0 < target < self.doc.xref_length():
                return NULL
            source = self.doc.xref_object(target, compressed=True).strip()
            value = PdfValue(_classify_source(source), source)
            depth += 1
        if value.kind is PdfKind.REFERENCE:
            logger.warning(f"Reference chain too deep: {value.raw}")
            return NULL
        return value

    def get_resolved(self, xref: int, key: str) -> PdfValue:
        return self.resolve(self.get(xref, key))

    def raw_stream(self, xref: int) -> bytes:
        """Stream bytes exactly as stored in the file (filters not undone)."""
        data = self.doc.xref_stream_raw(xref)
        return data or b""


def _classify_source(source: str) -> PdfKind:
    """Tag a direct object from its PDF source text."""
    if not source or source == "null":
        return PdfKind.NULL
    if source.startswith("<<"):
        return PdfKind.DICTIONARY
    if source.startswith("["):
        return PdfKind.ARRAY
    if source.startswith("/"):
        return PdfKind.NAME
    if source.startswith("(") or source.startswith("<"):
        return PdfKind.STRING
    if source in ("true", "false"):
        return PdfKind.BOOLEAN
    if _REFERENCE_PATTERN.match(source):
        return PdfKind.REFERENCE
    try:
        float(source)
        return PdfKind.NUMBER
    except ValueError:
        return PdfKind.NULL
