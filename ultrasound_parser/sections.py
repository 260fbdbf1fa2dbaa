"""
Text Fallback Extractor
=======================
Carves report sections out of raw document text using bilingual
(English/Spanish) header anchors.

Best effort only: results backfill fields the entity mapper left empty
and never overwrite a mapped value.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .models import TextSections

logger = logging.getLogger(__name__)

MAX_SECTION_LENGTH = 500

# ─── Header Anchors ───────────────────────────────────────────────────────────

PATIENT_HEADERS = ("paciente", "patient", "datos del animal")
DIAGNOSIS_HEADERS = (
    "diagnóstico", "diagnostico", "diagnosis",
    "hallazgos", "findings", "impresión",
)
RECOMMENDATION_HEADERS = (
    "recomendaciones", "recommendations",
    "tratamiento", "treatment", "seguimiento",
)


def _section_pattern(
    headers: tuple[str, ...], stop_headers: Optional[tuple[str, ...]]
) -> re.Pattern:
    """header [:\\s]* (shortest span) up to a stop header or end of text."""
    start = "|".join(re.escape(h) for h in headers)
    stop = r"\Z"
    if stop_headers:
        stop = "|".join(re.escape(h) for h in stop_headers) + r"|\Z"
    return re.compile(
        rf"(?:{start})[:\s]*(.*?)(?={stop})",
        re.IGNORECASE | re.DOTALL,
    )


SECTION_PATTERNS: dict[str, re.Pattern] = {
    "patient": _section_pattern(PATIENT_HEADERS, DIAGNOSIS_HEADERS),
    "diagnosis": _section_pattern(DIAGNOSIS_HEADERS, RECOMMENDATION_HEADERS),
    "recommendations": _section_pattern(RECOMMENDATION_HEADERS, None),
}


def extract_sections(raw_text: Optional[str]) -> TextSections:
    """
    Locate the patient, diagnosis and recommendations sections.

    Never raises; missing sections come back as empty strings.
    """
    sections = TextSections()
    if not raw_text or not isinstance(raw_text, str):
        return sections

    for name, pattern in SECTION_PATTERNS.items():
        try:
            match = pattern.search(raw_text)
        except Exception as e:
            logger.warning(f"Section pattern {name!r} failed: {e}")
            continue

        if match and match.group(1):
            setattr(
                sections,
                name,
                match.group(1).strip()[:MAX_SECTION_LENGTH],
            )

    found = [n for n in SECTION_PATTERNS if getattr(sections, n)]
    logger.debug(f"Fallback sections found: {found or 'none'}")
    return sections
