"""Service entry point: ``python -m bondly_api`` or ``bondly-api``."""

from __future__ import annotations

import logging
import sys

import uvicorn
from pydantic import ValidationError

from bondly_api.api.app import create_app
from bondly_api.config import get_settings
from bondly_api.logs import configure_logging
from bondly_api.runtime import Application

logger = logging.getLogger("bondly_api")


def main() -> int:
    try:
        settings = get_settings()
        settings.validate_requirements()
    except (ValidationError, ValueError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    configure_logging(settings)
    logger.info("Starting Bondly API with settings: %s", settings.redacted_summary())

    app = create_app(Application(settings))
    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
        log_config=None,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
