"""
Module entry point for: python -m ultrasound_parser

Allows running the parser directly as a module:
    python -m ultrasound_parser scan <pdf_path> [options]
    python -m ultrasound_parser process <pdf_path> [options]
    python -m ultrasound_parser serve [options]
"""

from .cli import cli


def main():
    cli()


if __name__ == "__main__":
    main()
