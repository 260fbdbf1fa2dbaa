"""
Image Extractor
===============
Recovers raster images embedded in a PDF using PyMuPDF (fitz).

Walks the whole indirect-object table rather than page resources, so images
nested inside form XObjects or left unreferenced after edits are still found.
Small images (icons, watermarks, logos) are dropped.
"""

from __future__ import annotations

import logging
from typing import Optional

import fitz  # PyMuPDF

from .models import ImageFormat, ImageSniff, ImageXObjectRef, RawImageRecord
from .pdf_objects import ObjectCursor, PdfKind

logger = logging.getLogger(__name__)

# Acceptance bounds (exclusive)
MIN_IMAGE_BYTES = 1000
MIN_IMAGE_DIMENSION = 50

_DCT_FILTERS = {"DCTDecode", "DCT"}


def open_pdf(pdf_bytes: bytes) -> fitz.Document:
    """Open an in-memory PDF. Raises on unreadable data."""
    return fitz.open(stream=pdf_bytes, filetype="pdf")


class ImageScanner:
    """
    Structural image scanner.

    Accepts an image only if
        byte_size > min_bytes and width > min_dimension and height > min_dimension
    and numbers accepted images 0..n-1 in object-table order.
    """

    def __init__(
        self,
        min_bytes: int = MIN_IMAGE_BYTES,
        min_dimension: int = MIN_IMAGE_DIMENSION,
    ):
        self.min_bytes = min_bytes
        self.min_dimension = min_dimension

    def scan(self, pdf_bytes: bytes) -> list[RawImageRecord]:
        """
        Extract every accepted image stream from the document.

        Never raises: on a parse failure the images collected so far
        are returned, and a malformed document yields an empty list.
        """
        images: list[RawImageRecord] = []

        try:
            with open_pdf(pdf_bytes) as doc:
                logger.info(
                    f"Scanning {doc.xref_length() - 1} objects "
                    f"({doc.page_count} page(s)) for images"
                )
                cursor = ObjectCursor(doc)

                for xref in cursor.xrefs():
                    try:
                        record = self._read_image(cursor, xref, len(images))
                    except Exception as e:
                        logger.warning(f"Could not read image object {xref}: {e}")
                        continue

                    if record is None:
                        continue

                    images.append(record)
                    logger.info(
                        f"  Image {record.index + 1}: {record.width}x{record.height} "
                        f"({record.format.value}, {format_bytes(record.byte_size)})"
                    )

        except Exception as e:
            logger.warning(
                f"Image scan aborted after {len(images)} image(s): {e}"
            )

        logger.info(f"Total images extracted: {len(images)}")
        return images

    def _read_image(
        self, cursor: ObjectCursor, xref: int, next_index: int
    ) -> Optional[RawImageRecord]:
        """Build a record for an accepted image stream, else None."""
        if cursor.get(xref, "Subtype").as_name() != "Image":
            return None

        # Image dictionaries without stream data are skipped silently
        if cursor.kind_of(xref) is not PdfKind.STREAM:
            return None

        width = _as_dimension(cursor.get_resolved(xref, "Width").as_number())
        height = _as_dimension(cursor.get_resolved(xref, "Height").as_number())
        image_format = classify_filter(cursor.get_resolved(xref, "Filter").names())

        data = cursor.raw_stream(xref)
        if not data:
            return None

        if not self.accepts(len(data), width, height):
            logger.debug(
                f"Skipping image object {xref}: {width}x{height}, "
                f"{len(data)} bytes"
            )
            return None

        return RawImageRecord(
            index=next_index,
            data=data,
            width=width,
            height=height,
            format=image_format,
            byte_size=len(data),
            xref=xref,
        )

    def accepts(self, byte_size: int, width: int, height: int) -> bool:
        return (
            byte_size > self.min_bytes
            and width > self.min_dimension
            and height > self.min_dimension
        )


def classify_filter(filter_names: list[str]) -> ImageFormat:
    """A DCT filter anywhere in the chain means JPEG; anything else is PNG."""
    if any(name in _DCT_FILTERS for name in filter_names):
        return ImageFormat.JPG
    return ImageFormat.PNG


def find_image_references(pdf_bytes: bytes) -> list[ImageXObjectRef]:
    """
    List image XObjects reachable from each page's resources.
    Complements ``ImageScanner.scan`` for diagnostics; never raises.
    """
    refs: list[ImageXObjectRef] = []
    try:
        with open_pdf(pdf_bytes) as doc:
            for page in doc:
                # (xref, smask, width, height, bpc, colorspace, alt, name, filter, referencer)
                for img in page.get_images(full=True):
                    refs.append(ImageXObjectRef(
                        page=page.number + 1,
                        name=img[7],
                        xref=img[0],
                        width=img[2],
                        height=img[3],
                    ))
    except Exception as e:
        logger.warning(f"Error finding image references: {e}")
    return refs


def validate_image_data(data: Optional[bytes]) -> ImageSniff:
    """
    Detect an image format from its magic bytes.

    Payloads shorter than 8 bytes are invalid. Unrecognized signatures are
    assumed to be JPEG, matching the DCT-filter heuristic used by the scanner.
    """
    if not data or len(data) < 8:
        return ImageSniff(valid=False, format=None)

    header = data[:8]
    if header[:3] == b"\xff\xd8\xff":
        return ImageSniff(valid=True, format=ImageFormat.JPG)
    if header[:4] == b"\x89PNG":
        return ImageSniff(valid=True, format=ImageFormat.PNG)
    if header[:3] == b"GIF":
        return ImageSniff(valid=True, format=ImageFormat.GIF)

    return ImageSniff(valid=True, format=ImageFormat.JPG)


def format_bytes(size: int) -> str:
    """Human-readable byte count, e.g. 6000 → '5.86 KB'."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB"]
    value = float(size)
    i = 0
    while value >= 1024 and i < len(units) - 1:
        value /= 1024
        i += 1
    return f"{round(value, 2):g} {units[i]}"


def _as_dimension(value: float) -> int:
    if value != value or value < 0:  # NaN or negative
        return 0
    return int(value)
