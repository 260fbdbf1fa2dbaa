"""
Filesystem Object Store
=======================
Binary object store for original PDFs and extracted images.
Object paths are relative to the store root and double as URL suffixes.

Directory Layout:
    uploads/
    ├── reports/                 # Original PDFs: {timestamp}-{name}.pdf
    └── images/
        └── {request_key}/       # Extracted images: image-{index}.{format}
"""

from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional, Protocol

from .models import ImageFormat, StoredObject

logger = logging.getLogger(__name__)

# Project root: one level up from the package
_PROJECT_ROOT = Path(__file__).parent.parent.absolute()

DEFAULT_UPLOADS_DIR = _PROJECT_ROOT / "uploads"


def get_storage_dir() -> str:
    """Return the configured storage root."""
    return os.environ.get("REPORT_STORAGE_DIR", str(DEFAULT_UPLOADS_DIR))


class ObjectStore(Protocol):
    """Interface the pipeline needs from a binary object store."""

    def put(self, data: bytes, path: str, content_type: Optional[str] = None) -> StoredObject:
        ...

    def exists(self) -> bool:
        ...


class FileObjectStore:
    """
    Stores blobs under a root directory.

    ``put`` writes to a temporary sibling and renames it into place, so
    readers never observe a partially written object.
    """

    def __init__(self, root_dir: Optional[str] = None, base_url: str = ""):
        self.root = Path(root_dir or get_storage_dir()).resolve()
        self.base_url = base_url.rstrip("/")

    def init(self):
        """Ensure the root directory exists."""
        self.root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Storage initialized: {self.root}")

    def put(
        self, data: bytes, path: str, content_type: Optional[str] = None
    ) -> StoredObject:
        dest = self._resolve(path)
        dest.parent.mkdir(parents=True, exist_ok=True)

        tmp = dest.with_name(dest.name + ".part")
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, dest)

        logger.debug(
            f"Stored {len(data)} bytes at {path} ({content_type or 'unknown type'})"
        )
        return StoredObject(url=self.url_for(path), path=path)

    def get(self, path: str) -> Optional[bytes]:
        target = self._resolve(path)
        if not target.is_file():
            return None
        return target.read_bytes()

    def delete(self, path: str) -> bool:
        target = self._resolve(path)
        if target.is_file():
            target.unlink()
            logger.info(f"Deleted object: {path}")
            return True
        logger.warning(f"Object not found for deletion: {path}")
        return False

    def exists(self) -> bool:
        """Health probe: the root exists and is writable."""
        return self.root.is_dir() and os.access(self.root, os.W_OK)

    def resolve(self, path: str) -> Optional[str]:
        """Absolute filesystem path of a stored object, if present."""
        try:
            target = self._resolve(path)
        except ValueError:
            return None
        return str(target) if target.is_file() else None

    def url_for(self, path: str) -> str:
        return f"{self.base_url}/uploads/{path}"

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if target != self.root and self.root not in target.parents:
            raise ValueError(f"Path escapes storage root: {path}")
        return target


# ─── Object Paths ─────────────────────────────────────────────────────────────


def pdf_object_path(file_name: str, timestamp_ms: Optional[int] = None) -> str:
    """reports/{timestamp}-{sanitized name}"""
    timestamp_ms = timestamp_ms if timestamp_ms is not None else int(time.time() * 1000)
    return f"reports/{timestamp_ms}-{sanitize_name(file_name)}"


def image_object_path(request_key: str, index: int, image_format: ImageFormat) -> str:
    """images/{request key}/image-{index}.{format}"""
    return f"images/{sanitize_name(request_key)}/image-{index}.{image_format.value}"


def image_content_type(image_format: ImageFormat) -> str:
    return f"image/{'jpeg' if image_format is ImageFormat.JPG else image_format.value}"


def sanitize_name(name: str) -> str:
    """Replace anything outside [A-Za-z0-9.-] with '_' for object names."""
    cleaned = "".join(
        c if (c.isascii() and c.isalnum()) or c in ".-" else "_"
        for c in (name or "")
    )
    cleaned = cleaned.lstrip(".")[:100]
    return cleaned or "file"
