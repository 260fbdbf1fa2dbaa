"""
CLI Interface
=============
Command-line interface for the ultrasound report parser.

Usage:
    python -m ultrasound_parser scan <pdf_path> [options]
    python -m ultrasound_parser process <pdf_path> [options]
    python -m ultrasound_parser map <entities_json> [--text FILE]
    python -m ultrasound_parser info <pdf_path>
    python -m ultrasound_parser serve [--host] [--port] [--debug]
"""

from __future__ import annotations

import json
import os
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .entity_mapper import EntityFieldMapper
from .errors import UploadProcessingError, ValidationError
from .image_extractor import (
    ImageScanner,
    find_image_references,
    format_bytes,
    open_pdf,
)
from .models import NOT_DETECTED, SECTION_MODELS, EntityRecord, ExtractedDocument
from .report_builder import build_report
from .sections import extract_sections

console = Console()


@click.group()
@click.version_option(version=__version__, prog_name="ultrasound-parser")
def cli():
    """Ultrasound Report Parser: turns report PDFs into canonical records."""
    pass


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--output-dir", "-o",
    default=None,
    help="Write accepted images to this directory",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def scan(pdf_path: str, output_dir: str, json_output: bool):
    """Extract embedded images from a PDF."""
    pdf_bytes = Path(pdf_path).read_bytes()
    images = ImageScanner().scan(pdf_bytes)

    written: list[str] = []
    if output_dir:
        out = Path(output_dir)
        out.mkdir(parents=True, exist_ok=True)
        for image in images:
            target = out / f"image-{image.index}.{image.format.value}"
            target.write_bytes(image.data)
            written.append(str(target))

    if json_output:
        print(json.dumps(
            [image.to_wire() for image in images],
            indent=2,
            ensure_ascii=False,
        ))
        return

    console.print()
    table = Table(
        title=f"Images in {os.path.basename(pdf_path)}", border_style="cyan"
    )
    table.add_column("#", justify="right")
    table.add_column("Dimensions")
    table.add_column("Format")
    table.add_column("Size", justify="right")
    table.add_column("Object", justify="right", style="dim")

    for image in images:
        table.add_row(
            str(image.index),
            f"{image.width}x{image.height}",
            image.format.value,
            format_bytes(image.byte_size),
            str(image.xref),
        )

    console.print(table)
    if written:
        console.print(f"[green]Wrote {len(written)} image(s) to {output_dir}[/]")
    console.print()


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
@click.option("--storage-dir", default=None, help="Object store root directory")
@click.option("--db-path", default=None, help="SQLite database path")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def process(pdf_path: str, storage_dir: str, db_path: str, json_output: bool):
    """Run the full ingestion pipeline on a local PDF."""
    from .database import ReportStore
    from .engine import PipelineConfig, ReportPipeline
    from .extraction import create_engine
    from .storage import FileObjectStore

    config = PipelineConfig.from_env()
    if json_output:
        # Suppress console output for JSON mode
        config.log_level = "ERROR"

    object_store = FileObjectStore(storage_dir)
    object_store.init()
    report_store = ReportStore(db_path)
    report_store.init()
    pipeline = ReportPipeline(config, object_store, report_store, create_engine())

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Ultrasound Report Parser v{__version__}[/]\n"
                f"[dim]Processing: {os.path.basename(pdf_path)}[/]",
                border_style="cyan",
            )
        )

    try:
        report = pipeline.process_upload(
            Path(pdf_path).read_bytes(), os.path.basename(pdf_path)
        )
    except ValidationError as e:
        console.print(f"[red]Invalid file:[/] {e}")
        sys.exit(1)
    except UploadProcessingError as e:
        console.print(f"[red]Error during {e.step}:[/] {e.detail}")
        sys.exit(1)

    if json_output:
        print(json.dumps(report.to_wire(), indent=2, ensure_ascii=False))
    else:
        _display_report(report.to_wire())
        console.print(f"[bold]Report id:[/] {report.id}")
        console.print(f"[dim]Processed in {report.processing_time}ms[/]")
        console.print()


@cli.command("map")
@click.argument("entities_json", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--text", "text_path",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Raw report text used for the diagnosis/recommendations fallback",
)
def map_entities(entities_json: str, text_path: str):
    """Map an entity list (type, mentionText, confidence) to a report."""
    with open(entities_json, "r", encoding="utf-8") as f:
        payload = json.load(f)

    # Accept either a bare list or an extractor document with "entities"
    raw_entities = payload.get("entities", []) if isinstance(payload, dict) else payload
    entities = [EntityRecord.from_raw(raw) for raw in raw_entities]

    text = ""
    if text_path:
        text = Path(text_path).read_text(encoding="utf-8")

    document = ExtractedDocument(text=text, entities=entities)
    mapped = EntityFieldMapper().map_entities(entities)
    report = build_report(document, mapped, extract_sections(text))

    wire = report.to_wire()
    wire.pop("rawText", None)
    print(json.dumps(wire, indent=2, ensure_ascii=False))


@cli.command()
@click.argument("pdf_path", type=click.Path(exists=True, dir_okay=False))
def info(pdf_path: str):
    """Display PDF file information."""
    pdf_bytes = Path(pdf_path).read_bytes()

    with open_pdf(pdf_bytes) as doc:
        page_count = doc.page_count
        object_count = doc.xref_length() - 1
        metadata = doc.metadata or {}

    console.print()
    table = Table(title="PDF Information", border_style="cyan")
    table.add_column("Property", style="bold")
    table.add_column("Value")

    table.add_row("File", os.path.basename(pdf_path))
    table.add_row("Pages", str(page_count))
    table.add_row("Objects", str(object_count))
    table.add_row("File Size", format_bytes(len(pdf_bytes)))

    for key in ["title", "author", "subject", "creator", "producer"]:
        val = metadata.get(key, "")
        if val:
            table.add_row(key.title(), val)

    console.print(table)

    refs = find_image_references(pdf_bytes)
    if refs:
        ref_table = Table(title="Image XObjects", border_style="dim")
        ref_table.add_column("Page", justify="right")
        ref_table.add_column("Name")
        ref_table.add_column("Object", justify="right")
        ref_table.add_column("Dimensions")
        for ref in refs:
            ref_table.add_row(
                str(ref.page), ref.name, str(ref.xref), f"{ref.width}x{ref.height}"
            )
        console.print(ref_table)
    else:
        console.print("[dim]No image XObjects referenced from pages[/]")
    console.print()


@cli.command()
@click.option("--host", default="0.0.0.0", help="Server host")
@click.option("--port", default=5000, type=int, help="Server port")
@click.option("--debug", is_flag=True, default=False, help="Debug mode")
def serve(host: str, port: int, debug: bool):
    """Start the HTTP microservice."""
    from .server import run_server

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Ultrasound Report Service[/]\n"
            f"[dim]Starting on {host}:{port}[/]",
            border_style="cyan",
        )
    )
    console.print()

    run_server(host=host, port=port, debug=debug)


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_report(wire: dict):
    """Display the report sections in one table."""
    console.print()
    table = Table(title="Report", border_style="cyan")
    table.add_column("Field", style="bold")
    table.add_column("Value")

    for section_name in SECTION_MODELS:
        for field_name, value in wire.get(section_name, {}).items():
            style = "dim" if value == NOT_DETECTED else ""
            table.add_row(
                f"{section_name}.{field_name}",
                f"[{style}]{value}[/]" if style else value,
            )

    console.print(table)

    images = wire.get("images", [])
    if images:
        img_table = Table(title="Images", border_style="dim")
        img_table.add_column("#", justify="right")
        img_table.add_column("Path")
        img_table.add_column("Dimensions")
        img_table.add_column("Size", justify="right")
        for img in images:
            img_table.add_row(
                str(img["index"]),
                img["path"],
                f"{img['width']}x{img['height']}",
                format_bytes(img["size"]),
            )
        console.print(img_table)


if __name__ == "__main__":
    cli()
