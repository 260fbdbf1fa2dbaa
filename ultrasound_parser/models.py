"""
Data Models
===========
Pydantic models for report ingestion.

Python attributes are snake_case; the JSON wire shape uses camelCase
aliases. External clients parse ``CanonicalReport.to_wire()`` directly,
so field names here are a stable contract.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# Placeholder for any schema field no source could fill.
NOT_DETECTED = "No detectado"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class WireModel(BaseModel):
    """Base for models that cross the API boundary."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


# ─── Enums ────────────────────────────────────────────────────────────────────


class ImageFormat(str, Enum):
    """Encoding of an embedded image, as exposed to clients."""
    JPG = "jpg"
    PNG = "png"
    GIF = "gif"


class ReportStatus(str, Enum):
    """Lifecycle status of a stored report."""
    PROCESSED = "processed"
    DELETED = "deleted"


# ─── Scanner Models ───────────────────────────────────────────────────────────


class RawImageRecord(WireModel):
    """
    An image recovered from the PDF object table.
    ``index`` is the externally visible ordinal, not the PDF object number.
    """
    index: int = Field(ge=0)
    data: bytes = Field(repr=False, exclude=True)
    width: int = 0
    height: int = 0
    format: ImageFormat = ImageFormat.PNG
    byte_size: int = 0
    xref: int = Field(default=0, exclude=True)


class ImageSniff(BaseModel):
    """Result of magic-byte sniffing on an image payload."""
    valid: bool
    format: Optional[ImageFormat] = None


class ImageXObjectRef(WireModel):
    """An image XObject reachable from a page's resource dictionary."""
    page: int = Field(ge=1)
    name: str
    xref: int
    width: int = 0
    height: int = 0


# ─── Extraction Models ────────────────────────────────────────────────────────


class EntityRecord(WireModel):
    """A typed span detected by the extraction engine."""
    type_label: str = ""
    text: str = ""
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)

    @classmethod
    def from_raw(cls, raw: dict) -> "EntityRecord":
        """
        Build from a loosely-shaped extractor payload
        (``type``/``type_``, ``mentionText``/``mention_text``, ``confidence``).
        """
        label = raw.get("type") or raw.get("type_") or raw.get("typeLabel") or ""
        text = raw.get("mentionText") or raw.get("mention_text") or raw.get("text") or ""
        try:
            confidence = float(raw.get("confidence") or 0.0)
        except (TypeError, ValueError):
            confidence = 0.0
        return cls(
            type_label=str(label),
            text=str(text),
            confidence=min(1.0, max(0.0, confidence)),
        )


class PageInfo(WireModel):
    page_number: int = Field(ge=1)
    width: float = 0.0
    height: float = 0.0


class ExtractedDocument(WireModel):
    """Output contract of an entity extraction engine."""
    text: str = ""
    entities: list[EntityRecord] = Field(default_factory=list)
    pages: list[PageInfo] = Field(default_factory=list)


class FieldValue(WireModel):
    """A mapped field value with its display confidence (0-100)."""
    value: str
    confidence: int = Field(ge=0, le=100)


class TextSections(WireModel):
    """Sections carved from raw text by the fallback extractor."""
    patient: str = ""
    diagnosis: str = ""
    recommendations: str = ""


# ─── Canonical Report ─────────────────────────────────────────────────────────


class PatientInfo(WireModel):
    name: str = NOT_DETECTED
    species: str = NOT_DETECTED
    breed: str = NOT_DETECTED
    age: str = NOT_DETECTED
    weight: str = NOT_DETECTED
    sex: str = NOT_DETECTED


class OwnerInfo(WireModel):
    name: str = NOT_DETECTED
    phone: str = NOT_DETECTED
    email: str = NOT_DETECTED
    address: str = NOT_DETECTED


class VeterinarianInfo(WireModel):
    name: str = NOT_DETECTED
    license: str = NOT_DETECTED
    clinic: str = NOT_DETECTED


class StudyInfo(WireModel):
    date: str = NOT_DETECTED
    type: str = NOT_DETECTED


class ClinicalFindings(WireModel):
    diagnosis: str = NOT_DETECTED
    observations: str = NOT_DETECTED
    recommendations: str = NOT_DETECTED
    measurements: str = NOT_DETECTED


# Fixed schema: section name → model. Order matches the wire layout.
SECTION_MODELS: dict[str, type[WireModel]] = {
    "patient": PatientInfo,
    "owner": OwnerInfo,
    "veterinarian": VeterinarianInfo,
    "study": StudyInfo,
    "clinical": ClinicalFindings,
}


class ImageReference(WireModel):
    """A stored image. ``index`` is the scan-time ordinal."""
    index: int = Field(ge=0)
    url: str
    path: str
    width: int = 0
    height: int = 0
    format: ImageFormat = ImageFormat.PNG
    size: int = 0


class StoredObject(WireModel):
    """Location of a blob written to the object store."""
    url: str
    path: str


class FileReference(WireModel):
    url: str
    path: str
    file_name: str = ""
    size: int = 0


class ReportFiles(WireModel):
    original_pdf: FileReference


class ProcessingMetadata(WireModel):
    pages_processed: int = 0
    entities_detected: int = 0
    text_length: int = 0
    processed_at: str = Field(default_factory=utc_now_iso)


class CanonicalReport(WireModel):
    """
    The fixed-schema report emitted for every upload.
    Every section field is always present; missing values hold NOT_DETECTED.
    """
    id: Optional[str] = None
    status: Optional[ReportStatus] = None
    patient: PatientInfo = Field(default_factory=PatientInfo)
    owner: OwnerInfo = Field(default_factory=OwnerInfo)
    veterinarian: VeterinarianInfo = Field(default_factory=VeterinarianInfo)
    study: StudyInfo = Field(default_factory=StudyInfo)
    clinical: ClinicalFindings = Field(default_factory=ClinicalFindings)
    raw_text: str = ""
    images: list[ImageReference] = Field(default_factory=list)
    processing_metadata: ProcessingMetadata = Field(
        default_factory=ProcessingMetadata
    )
    files: Optional[ReportFiles] = None
    processing_time: Optional[int] = Field(
        default=None,
        description="Wall-clock pipeline time in milliseconds",
    )
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None


# ─── Validation / Query Models ────────────────────────────────────────────────


class FileValidationResult(BaseModel):
    valid: bool
    error: Optional[str] = None


class ReportPage(WireModel):
    """One page of a report listing."""
    items: list[dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    has_more: bool = False
    last_id: Optional[str] = None
