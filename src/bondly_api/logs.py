"""Logging setup.

Components log through module-level stdlib loggers and tag each record
with an event name from their own Enum, passed via ``extra``:

    logger.info("Airdrop submitted", extra={"event": AirdropEvent.SUBMITTED, "tx_hash": h})

The formatter installed here appends the event tag and any context
fields so log lines stay greppable by event.
"""

from __future__ import annotations

import logging
import sys
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bondly_api.config import Settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {
    "message",
    "asctime",
    "taskName",
}


class EventFormatter(logging.Formatter):
    """Formatter that renders the ``event`` tag and extra context fields."""

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        fields: list[str] = []
        event = getattr(record, "event", None)
        if event is not None:
            fields.append(f"event={event.value if isinstance(event, Enum) else event}")
        for key, value in sorted(record.__dict__.items()):
            if key in _RESERVED or key == "event":
                continue
            fields.append(f"{key}={value}")
        if not fields:
            return base
        return f"{base} [{' '.join(fields)}]"


def configure_logging(settings: Settings) -> None:
    """Install the event formatter on the root logger."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(EventFormatter(LOG_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.get_logging_level())

    # Quiet chatty client libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("web3").setLevel(logging.WARNING)
