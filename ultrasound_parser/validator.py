"""
Validation
==========
Upload and request-parameter validation.

Upload checks, in order:
    - MIME type is exactly application/pdf
    - Declared size within the configured maximum
    - Buffer is non-empty
    - Buffer starts with the %PDF- header

Each failure returns a specific, user-facing message.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any, Optional

from .models import FileValidationResult

logger = logging.getLogger(__name__)

# Single upload limit for the whole service
DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024

ALLOWED_MIME_TYPES = ("application/pdf",)
PDF_MAGIC = b"%PDF-"

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$",
    re.IGNORECASE,
)

DEFAULT_PAGE_LIMIT = 20
MAX_PAGE_LIMIT = 100
MAX_STRING_LENGTH = 1000


class FileValidator:
    """Validates an uploaded report before any processing starts."""

    def __init__(self, max_file_size: int = DEFAULT_MAX_FILE_SIZE):
        self.max_file_size = max_file_size

    def validate(
        self,
        data: Optional[bytes],
        mime_type: Optional[str],
        size: Optional[int] = None,
    ) -> FileValidationResult:
        """
        Args:
            data: Raw file bytes (None if no file was sent).
            mime_type: Declared MIME type.
            size: Declared size; defaults to ``len(data)``.
        """
        if data is None:
            return _invalid("No file was provided")

        if mime_type not in ALLOWED_MIME_TYPES:
            return _invalid(
                f"File type not allowed: {mime_type}. Only PDF files are accepted."
            )

        size = len(data) if size is None else size
        if size > self.max_file_size:
            return _invalid(
                f"File exceeds the maximum allowed size "
                f"({self.max_file_size / 1024 / 1024:g} MB)"
            )

        if len(data) == 0:
            return _invalid("The file is empty or corrupt")

        if data[:5] != PDF_MAGIC:
            return _invalid("The file is not a valid PDF")

        return FileValidationResult(valid=True, error=None)


def _invalid(message: str) -> FileValidationResult:
    logger.info(f"Upload rejected: {message}")
    return FileValidationResult(valid=False, error=message)


# ─── Request Parameters ───────────────────────────────────────────────────────


def is_valid_uuid(value: Any) -> bool:
    return isinstance(value, str) and bool(UUID_PATTERN.match(value))


def sanitize_string(value: Any) -> str:
    """Trim, strip HTML brackets and backslashes, cap length."""
    if not value or not isinstance(value, str):
        return ""
    cleaned = re.sub(r"[<>]", "", value.strip())
    cleaned = cleaned.replace("\\", "")
    return cleaned[:MAX_STRING_LENGTH]


def is_valid_date(value: Any) -> bool:
    """Accepts ISO 8601 dates and datetimes (a trailing 'Z' is allowed)."""
    if not value or not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
        return True
    except ValueError:
        return False


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def validate_pagination_params(params: dict) -> dict:
    """Normalize limit (1-100, default 20), startAfter (uuid or None), page (>= 1)."""
    limit = _to_int(params.get("limit"), DEFAULT_PAGE_LIMIT) or DEFAULT_PAGE_LIMIT
    start_after = params.get("startAfter")
    return {
        "limit": min(max(limit, 1), MAX_PAGE_LIMIT),
        "start_after": start_after if is_valid_uuid(start_after) else None,
        "page": max(_to_int(params.get("page"), 1), 1),
    }


def validate_search_params(params: dict) -> dict:
    date_from = params.get("dateFrom")
    date_to = params.get("dateTo")
    return {
        "patient_name": sanitize_string(params.get("patientName")),
        "owner_name": sanitize_string(params.get("ownerName")),
        "date_from": date_from if is_valid_date(date_from) else None,
        "date_to": date_to if is_valid_date(date_to) else None,
    }
