"""
Report Builder
==============
Assembles the canonical report from mapped entities, text fallbacks
and sentinels.

Precedence per field:
    1. Value mapped from an entity (if non-empty)
    2. Fallback text section (diagnosis / recommendations only)
    3. NOT_DETECTED
"""

from __future__ import annotations

import logging
from typing import Optional

from .entity_mapper import MappedFields
from .models import (
    NOT_DETECTED,
    SECTION_MODELS,
    CanonicalReport,
    ExtractedDocument,
    ImageReference,
    ProcessingMetadata,
    TextSections,
)

logger = logging.getLogger(__name__)

# (section, field) → TextSections attribute used as fallback
FALLBACK_FIELDS: dict[tuple[str, str], str] = {
    ("clinical", "diagnosis"): "diagnosis",
    ("clinical", "recommendations"): "recommendations",
}


def is_empty(value: Optional[str]) -> bool:
    """True for missing, blank or sentinel values."""
    return not value or not value.strip() or value == NOT_DETECTED


def build_report(
    document: ExtractedDocument,
    mapped: MappedFields,
    sections: TextSections,
    images: Optional[list[ImageReference]] = None,
) -> CanonicalReport:
    """
    Finalize every schema field to a plain string.

    Args:
        document: Extraction engine output (text, entities, pages).
        mapped: Entity mapper output.
        sections: Text fallback output.
        images: Stored image references, any order.

    Returns:
        CanonicalReport with every section field populated.
    """
    section_values: dict[str, dict[str, str]] = {}
    backfilled: list[str] = []

    for section_name, model in SECTION_MODELS.items():
        values: dict[str, str] = {}
        for field_name in model.model_fields:
            mapped_value = mapped.get(section_name, {}).get(field_name)
            value = mapped_value.value if mapped_value else ""

            if is_empty(value):
                fallback_attr = FALLBACK_FIELDS.get((section_name, field_name))
                fallback = getattr(sections, fallback_attr) if fallback_attr else ""
                if not is_empty(fallback):
                    value = fallback
                    backfilled.append(f"{section_name}.{field_name}")

            values[field_name] = value if not is_empty(value) else NOT_DETECTED
        section_values[section_name] = values

    if backfilled:
        logger.info(f"Backfilled from text: {', '.join(backfilled)}")

    return CanonicalReport(
        **{name: SECTION_MODELS[name](**vals) for name, vals in section_values.items()},
        raw_text=document.text,
        images=sorted(images or [], key=lambda ref: ref.index),
        processing_metadata=ProcessingMetadata(
            pages_processed=len(document.pages) or 1,
            entities_detected=len(document.entities),
            text_length=len(document.text),
        ),
    )
