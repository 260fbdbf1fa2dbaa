"""
Error Taxonomy
==============
Exceptions raised by the report pipeline.

    ValidationError        → bad input, user-actionable (HTTP 400)
    ExtractionWarning      → partial extraction failure, logged only
    UploadProcessingError  → any other pipeline failure (HTTP 500)
"""

from __future__ import annotations

from typing import Optional


class ReportParserError(Exception):
    """Base class for all report parser errors."""


class ValidationError(ReportParserError):
    """The uploaded file or a request parameter is invalid."""


class ExtractionWarning(ReportParserError):
    """
    An image or entity could not be recovered.

    Never escalated to the caller: the affected item is dropped and
    the warning is logged.
    """

    def __init__(self, message: str, index: Optional[int] = None):
        super().__init__(message)
        self.index = index


class UploadProcessingError(ReportParserError):
    """
    A fatal pipeline step failed.

    The message is deliberately generic; the underlying cause is kept
    in ``detail`` for logs and debug responses.
    """

    GENERIC_MESSAGE = "Report processing failed"

    def __init__(self, detail: str = "", step: str = ""):
        super().__init__(self.GENERIC_MESSAGE)
        self.detail = detail
        self.step = step
