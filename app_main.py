"""Application entry point for the CBT engine."""

from __future__ import annotations

import argparse
from pathlib import Path

from cbt_app.core.cbt_manager import CbtManager
from cbt_app.server.api_server import run_api_server
from cbt_app.utils.logging_config import configure_logging
from cbt_app.utils.settings import CbtSettings


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the CBT exam server.")
    parser.add_argument(
        "--import-questions",
        type=Path,
        metavar="FILE",
        help="Load a question bank text file before serving.",
    )
    parser.add_argument("--subject", help="Default subject for imported questions.")
    parser.add_argument("--class-level", help="Default class level for imported questions.")
    return parser.parse_args()


def main() -> None:
    """Load settings, initialize logging and serve the API."""
    args = _parse_args()
    settings = CbtSettings.from_env()
    logger = configure_logging(settings.log_level)
    logger.info("Starting CBT engine…")

    manager = CbtManager(settings=settings)
    if args.import_questions:
        created = manager.import_questions(
            args.import_questions,
            subject=args.subject,
            class_level=args.class_level,
        )
        logger.info("Question bank ready with %d imported questions", len(created))

    logger.info("Serving API on http://%s:%d/", settings.host, settings.port)
    run_api_server(manager, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
