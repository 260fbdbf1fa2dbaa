"""
Shared fixtures: hand-built PDFs, temporary stores, fake collaborators.

PDFs are assembled byte by byte with a correct cross-reference table so
that PyMuPDF opens them without repair. Object layout of ``make_pdf``:

    1 catalog, 2 pages, 3 page, 4 content stream, 5 font,
    6.. images (in the order given), then ``extra`` objects, then any
    blank pages beyond the first.
"""

from __future__ import annotations

import pytest

from ultrasound_parser.database import ReportStore
from ultrasound_parser.engine import PipelineConfig, ReportPipeline
from ultrasound_parser.models import EntityRecord, ExtractedDocument, PageInfo
from ultrasound_parser.storage import FileObjectStore

FIRST_IMAGE_OBJECT = 6

REPORT_LINES = (
    "Veterinary Ultrasound Report",
    "Patient: Luna",
    "Diagnosis: Mild hepatomegaly",
    "Recommendations: Repeat ultrasound in 30 days",
)

JPEG_DATA = b"\xff\xd8\xff\xe0" + b"\x00" * 5996
ICON_DATA = b"\x78\x9c" + b"\x01" * 298


# ─── PDF Builder ──────────────────────────────────────────────────────────────


def assemble_pdf(objects: list[bytes]) -> bytes:
    """``objects[i]`` is the body of object ``i + 1``."""
    out = bytearray(b"%PDF-1.4\n%\xe2\xe3\xcf\xd3\n")
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_offset = len(out)
    out += f"xref\n0 {len(objects) + 1}\n".encode()
    out += b"0000000000 65535 f \n"
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += (
        f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\n"
        f"startxref\n{xref_offset}\n%%EOF\n"
    ).encode()
    return bytes(out)


def stream_object(dictionary: str, data: bytes) -> bytes:
    return (
        f"<< {dictionary} /Length {len(data)} >>\nstream\n".encode()
        + data
        + b"\nendstream"
    )


def image_object(
    data: bytes,
    width="200",
    height="300",
    pdf_filter: str = "/DCTDecode",
) -> bytes:
    """An image XObject stream. Pass ``width=None`` to omit /Width."""
    parts = ["/Type /XObject /Subtype /Image"]
    if width is not None:
        parts.append(f"/Width {width}")
    if height is not None:
        parts.append(f"/Height {height}")
    parts.append("/ColorSpace /DeviceRGB /BitsPerComponent 8")
    if pdf_filter:
        parts.append(f"/Filter {pdf_filter}")
    return stream_object(" ".join(parts), data)


def _escape(text: str) -> str:
    return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")


def make_pdf(
    images: list[bytes] = (),
    extra: list[bytes] = (),
    lines: tuple[str, ...] = REPORT_LINES,
    page_count: int = 1,
) -> bytes:
    """
    PDF whose first page references every object in ``images``.
    Additional blank pages are appended after ``extra``.
    """
    xobjects = " ".join(
        f"/Im{i + 1} {FIRST_IMAGE_OBJECT + i} 0 R" for i in range(len(images))
    )
    resources = "/Font << /F1 5 0 R >>"
    if xobjects:
        resources += f" /XObject << {xobjects} >>"

    text_ops = " T* ".join(f"({_escape(line)}) Tj" for line in lines)
    content = f"BT /F1 12 Tf 16 TL 72 720 Td {text_ops} ET".encode()

    first_blank = FIRST_IMAGE_OBJECT + len(images) + len(extra)
    kids = ["3 0 R"] + [f"{first_blank + i} 0 R" for i in range(page_count - 1)]
    blank_pages = [
        b"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] >>"
    ] * (page_count - 1)

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{' '.join(kids)}] /Count {page_count} >>".encode(),
        (
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Resources << {resources} >> /Contents 4 0 R >>"
        ).encode(),
        stream_object("", content),
        b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
        *images,
        *extra,
        *blank_pages,
    ]
    return assemble_pdf(objects)


@pytest.fixture
def report_pdf() -> bytes:
    """
    Two-page report with one ultrasound JPEG (kept) and one small
    icon (dropped).
    """
    return make_pdf(
        [
            image_object(JPEG_DATA),
            image_object(ICON_DATA, width="20", height="20", pdf_filter="/FlateDecode"),
        ],
        page_count=2,
    )


# ─── Fakes ────────────────────────────────────────────────────────────────────


class FakeEngine:
    """Returns a fixed document; optionally raises instead."""

    def __init__(self, document: ExtractedDocument = None, error: Exception = None):
        self.document = document or ExtractedDocument()
        self.error = error
        self.calls = 0

    def process(self, pdf_bytes: bytes) -> ExtractedDocument:
        self.calls += 1
        if self.error:
            raise self.error
        return self.document


def sample_document() -> ExtractedDocument:
    return ExtractedDocument(
        text="\n".join(REPORT_LINES),
        entities=[
            EntityRecord(type_label="Patient Name", text="Luna", confidence=0.95),
            EntityRecord(type_label="Especie", text="Canino", confidence=0.9),
            EntityRecord(type_label="Owner", text="Ana Torres", confidence=0.88),
            EntityRecord(type_label="Diagnosis", text="Hepatomegalia leve", confidence=0.8),
        ],
        pages=[PageInfo(page_number=1, width=612, height=792)],
    )


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine(sample_document())


# ─── Stores ───────────────────────────────────────────────────────────────────


@pytest.fixture
def object_store(tmp_path) -> FileObjectStore:
    store = FileObjectStore(str(tmp_path / "uploads"), base_url="http://testserver")
    store.init()
    return store


@pytest.fixture
def report_store(tmp_path) -> ReportStore:
    store = ReportStore(str(tmp_path / "reports.sqlite"))
    store.init()
    return store


@pytest.fixture
def pipeline(object_store, report_store, fake_engine) -> ReportPipeline:
    return ReportPipeline(
        PipelineConfig(upload_workers=2),
        object_store,
        report_store,
        fake_engine,
    )
