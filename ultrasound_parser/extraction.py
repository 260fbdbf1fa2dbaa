"""
Entity Extraction Engines
=========================
Adapters that turn PDF bytes into an ``ExtractedDocument``
(full text, typed entities with confidences, page list).

    DocumentAIEngine → Google Document AI processor (``documentai`` extra)
    LocalTextEngine  → PyMuPDF text layer, no entities

Each call is a single request; errors propagate to the pipeline.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

from .image_extractor import open_pdf
from .models import EntityRecord, ExtractedDocument, PageInfo

logger = logging.getLogger(__name__)


class EntityExtractionEngine(Protocol):
    def process(self, pdf_bytes: bytes) -> ExtractedDocument:
        ...


@dataclass
class DocumentAIConfig:
    project_id: str = ""
    location: str = "us"
    processor_id: str = ""

    @classmethod
    def from_env(cls) -> "DocumentAIConfig":
        return cls(
            project_id=os.environ.get("GCP_PROJECT_ID", ""),
            location=os.environ.get("GCP_LOCATION", "us"),
            processor_id=os.environ.get("GCP_PROCESSOR_ID", ""),
        )

    @property
    def configured(self) -> bool:
        return bool(self.project_id and self.processor_id)

    @property
    def processor_name(self) -> str:
        """projects/{project}/locations/{location}/processors/{processor}"""
        return (
            f"projects/{self.project_id}/locations/{self.location}"
            f"/processors/{self.processor_id}"
        )


class DocumentAIEngine:
    """Google Document AI processor client."""

    def __init__(self, config: DocumentAIConfig, client=None):
        self.config = config
        if client is None:
            from google.api_core.client_options import ClientOptions
            from google.cloud import documentai

            client = documentai.DocumentProcessorServiceClient(
                client_options=ClientOptions(
                    api_endpoint=f"{config.location}-documentai.googleapis.com"
                )
            )
        self.client = client

    def process(self, pdf_bytes: bytes) -> ExtractedDocument:
        from google.cloud import documentai

        logger.info(f"Processing document with {self.config.processor_name}")
        request = documentai.ProcessRequest(
            name=self.config.processor_name,
            raw_document=documentai.RawDocument(
                content=pdf_bytes,
                mime_type="application/pdf",
            ),
        )
        result = self.client.process_document(request=request)
        return document_from_documentai(result.document)


def document_from_documentai(document) -> ExtractedDocument:
    """Convert a ``documentai.Document`` into the engine output contract."""
    entities = [
        EntityRecord.from_raw({
            "type": entity.type_,
            "mentionText": entity.mention_text,
            "confidence": entity.confidence,
        })
        for entity in document.entities
    ]
    pages = []
    for i, page in enumerate(document.pages):
        dimension = page.dimension
        pages.append(PageInfo(
            page_number=page.page_number or i + 1,
            width=dimension.width if dimension else 0.0,
            height=dimension.height if dimension else 0.0,
        ))
    return ExtractedDocument(text=document.text or "", entities=entities, pages=pages)


class LocalTextEngine:
    """
    Reads the PDF text layer with PyMuPDF.

    Produces no entities, so every field comes from the text fallback
    or the sentinel. Used when no Document AI processor is configured.
    """

    def process(self, pdf_bytes: bytes) -> ExtractedDocument:
        with open_pdf(pdf_bytes) as doc:
            texts: list[str] = []
            pages: list[PageInfo] = []
            for page in doc:
                texts.append(page.get_text("text"))
                pages.append(PageInfo(
                    page_number=page.number + 1,
                    width=page.rect.width,
                    height=page.rect.height,
                ))

        text = "\n".join(texts)
        logger.info(f"Read {len(text)} characters from {len(pages)} page(s)")
        return ExtractedDocument(text=text, entities=[], pages=pages)


def create_engine(config: Optional[DocumentAIConfig] = None) -> EntityExtractionEngine:
    """Document AI when a processor is configured, else the local text engine."""
    config = config or DocumentAIConfig.from_env()
    if config.configured:
        return DocumentAIEngine(config)
    logger.info("No Document AI processor configured; using local text engine")
    return LocalTextEngine()
