"""
Report Pipeline
===============
Main orchestrator that turns an uploaded PDF into a persisted
canonical report.

Usage:
    pipeline = ReportPipeline(config, object_store, report_store, engine)
    report = pipeline.process_upload(pdf_bytes, "study.pdf")

Architecture:
    PDF → FileValidator → ObjectStore (original) → ImageScanner →
    ObjectStore (images, bounded fan-out) → EntityExtractionEngine →
    EntityFieldMapper + extract_sections → build_report → ReportStore
"""

from __future__ import annotations

import logging
import os
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .entity_mapper import (
    DEFAULT_ALIAS_TABLE,
    OVERWRITE_CONFIDENCE,
    AliasTable,
    EntityFieldMapper,
)
from .errors import ExtractionWarning, UploadProcessingError, ValidationError
from .extraction import EntityExtractionEngine
from .image_extractor import (
    MIN_IMAGE_BYTES,
    MIN_IMAGE_DIMENSION,
    ImageScanner,
    format_bytes,
)
from .models import (
    CanonicalReport,
    FileReference,
    ImageReference,
    RawImageRecord,
    ReportFiles,
)
from .report_builder import build_report
from .sections import extract_sections
from .storage import (
    ObjectStore,
    image_content_type,
    image_object_path,
    pdf_object_path,
)
from .validator import DEFAULT_MAX_FILE_SIZE, FileValidator

logger = logging.getLogger(__name__)

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class PipelineConfig:
    """Configuration for the report pipeline."""

    # Upload limits
    max_file_size: int = DEFAULT_MAX_FILE_SIZE

    # Image acceptance (exclusive bounds)
    min_image_bytes: int = MIN_IMAGE_BYTES
    min_image_dimension: int = MIN_IMAGE_DIMENSION

    # Entity mapping
    overwrite_threshold: float = OVERWRITE_CONFIDENCE

    # Concurrency
    upload_workers: int = 4

    # Error detail exposure
    debug: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        config = cls()
        if os.environ.get("REPORT_MAX_FILE_SIZE_MB"):
            config.max_file_size = int(
                float(os.environ["REPORT_MAX_FILE_SIZE_MB"]) * 1024 * 1024
            )
        if os.environ.get("REPORT_UPLOAD_WORKERS"):
            config.upload_workers = max(1, int(os.environ["REPORT_UPLOAD_WORKERS"]))
        config.debug = os.environ.get("REPORT_DEBUG", "").lower() in ("1", "true", "yes")
        config.log_level = os.environ.get("REPORT_LOG_LEVEL", config.log_level)
        return config


class ReportPipeline:
    """
    Orchestrates the full ingestion pipeline:
        1. File validation
        2. Original PDF persistence
        3. Image scan
        4. Image upload (per-image failure isolation)
        5. Entity extraction
        6. Mapping + text fallback + report assembly
        7. Report persistence

    Holds no per-request state; safe to share across request threads.
    """

    def __init__(
        self,
        config: Optional[PipelineConfig],
        object_store: ObjectStore,
        report_store,
        extraction_engine: EntityExtractionEngine,
        alias_table: AliasTable = DEFAULT_ALIAS_TABLE,
        scanner: Optional[ImageScanner] = None,
    ):
        self.config = config or PipelineConfig()
        self.object_store = object_store
        self.report_store = report_store
        self.extraction_engine = extraction_engine
        self.validator = FileValidator(self.config.max_file_size)
        self.scanner = scanner or ImageScanner(
            min_bytes=self.config.min_image_bytes,
            min_dimension=self.config.min_image_dimension,
        )
        self.mapper = EntityFieldMapper(
            alias_table, overwrite_threshold=self.config.overwrite_threshold
        )
        self._setup_logging()

    def _setup_logging(self):
        """Configure logging based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        package_logger = logging.getLogger("ultrasound_parser")
        package_logger.setLevel(log_level)

        # Console handler
        if not package_logger.handlers:
            console = logging.StreamHandler()
            console.setLevel(log_level)
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            package_logger.addHandler(console)

        # File handler
        if self.config.log_file:
            log_path = Path(self.config.log_file).absolute()
            already = any(
                isinstance(h, logging.FileHandler)
                and h.baseFilename == str(log_path)
                for h in package_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(
                    logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
                )
                package_logger.addHandler(file_handler)

    def process_upload(
        self,
        pdf_bytes: bytes,
        original_file_name: str,
        mime_type: str = "application/pdf",
        declared_size: Optional[int] = None,
    ) -> CanonicalReport:
        """
        Process an uploaded report end to end.

        Args:
            pdf_bytes: Raw upload.
            original_file_name: Client-side file name.
            mime_type: Declared MIME type.
            declared_size: Declared size (defaults to ``len(pdf_bytes)``).

        Returns:
            The persisted CanonicalReport (with id and timestamps).

        Raises:
            ValidationError: The upload is not an acceptable PDF.
            UploadProcessingError: A fatal step failed.
        """
        start_time = time.time()
        logger.info(f"Processing upload: {original_file_name}")

        # ── Step 1: Validate ──────────────────────────────────────────
        validation = self.validator.validate(pdf_bytes, mime_type, declared_size)
        if not validation.valid:
            raise ValidationError(validation.error)

        logger.info(
            f"File: {original_file_name} ({format_bytes(len(pdf_bytes))})"
        )

        # ── Step 2: Store original PDF ────────────────────────────────
        pdf_object = self._run_step(
            "store_pdf",
            self.object_store.put,
            pdf_bytes,
            pdf_object_path(original_file_name),
            "application/pdf",
        )
        logger.info(f"PDF stored: {pdf_object.path}")

        # ── Step 3: Scan images ───────────────────────────────────────
        images = self.scanner.scan(pdf_bytes)

        # ── Step 4: Upload images ─────────────────────────────────────
        # TODO: delete these objects when a later step fails; they are
        # currently orphaned in the store.
        request_key = uuid.uuid4().hex
        image_refs = self.upload_images(images, request_key)
        logger.info(f"{len(image_refs)}/{len(images)} image(s) uploaded")

        # ── Step 5: Entity extraction ─────────────────────────────────
        document = self._run_step(
            "extract", self.extraction_engine.process, pdf_bytes
        )

        # ── Step 6: Map, backfill, assemble ───────────────────────────
        def assemble() -> CanonicalReport:
            mapped = self.mapper.map_entities(document.entities)
            sections = extract_sections(document.text)
            return build_report(document, mapped, sections, image_refs)

        report = self._run_step("assemble", assemble)
        report.files = ReportFiles(
            original_pdf=FileReference(
                url=pdf_object.url,
                path=pdf_object.path,
                file_name=original_file_name,
                size=len(pdf_bytes),
            )
        )
        report.processing_time = int((time.time() - start_time) * 1000)

        # ── Step 7: Persist ───────────────────────────────────────────
        stored = self._run_step(
            "persist", self.report_store.create, report.to_wire()
        )
        result = CanonicalReport.model_validate(stored)

        logger.info(
            f"Report {result.id} processed in {report.processing_time}ms: "
            f"{result.processing_metadata.entities_detected} entities, "
            f"{len(result.images)} image(s)"
        )
        return result

    def upload_images(
        self, images: list[RawImageRecord], request_key: str
    ) -> list[ImageReference]:
        """
        Upload images concurrently. A failed upload drops only that image.

        Returns:
            References for the successful uploads, in scan-index order.
        """
        if not images:
            return []

        results: list[Optional[ImageReference]] = [None] * len(images)
        workers = max(1, min(self.config.upload_workers, len(images)))

        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [
                pool.submit(self._upload_image, image, request_key)
                for image in images
            ]
            for slot, future in enumerate(futures):
                try:
                    results[slot] = future.result()
                except ExtractionWarning as warning:
                    logger.warning(str(warning))
                except Exception as e:
                    logger.warning(f"Error uploading image {images[slot].index}: {e}")

        return [ref for ref in results if ref is not None]

    def _upload_image(
        self, image: RawImageRecord, request_key: str
    ) -> ImageReference:
        path = image_object_path(request_key, image.index, image.format)
        try:
            stored = self.object_store.put(
                image.data, path, image_content_type(image.format)
            )
        except Exception as e:
            raise ExtractionWarning(
                f"Error uploading image {image.index}: {e}", index=image.index
            ) from e

        return ImageReference(
            index=image.index,
            url=stored.url,
            path=stored.path,
            width=image.width,
            height=image.height,
            format=image.format,
            size=image.byte_size,
        )

    def _run_step(self, step: str, func, *args):
        """Run a fatal step, converting any failure to UploadProcessingError."""
        try:
            return func(*args)
        except UploadProcessingError:
            raise
        except Exception as e:
            logger.error(f"Pipeline step {step!r} failed: {e}", exc_info=True)
            raise UploadProcessingError(detail=str(e), step=step) from e
