"""
Ultrasound Report Service - Main Entry Point
============================================
Starts the Flask-based report ingestion microservice.

Usage:
    python main.py                    # Default: 0.0.0.0:5000
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode (error detail in responses)
"""

import argparse
import logging

from ultrasound_parser.server import create_app

logging.basicConfig(
    level=logging.INFO,
    format="[%(asctime)s] %(levelname)-8s %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Ultrasound Report Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument("--port", type=int, default=5000, help="Bind port")
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    # create_app() initializes the object store and database
    app = create_app({"DEBUG_ERRORS": True} if args.debug else None)

    logger.info(f"Database path: {app.config['DB_PATH']}")
    logger.info(f"Storage dir: {app.config['STORAGE_DIR']}")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug)


if __name__ == "__main__":
    main()
