"""Process-wide logging setup for the API server and CLI jobs."""

from __future__ import annotations

import json
import logging
import sys


class JsonFormatter(logging.Formatter):
    """One JSON object per line with a ``severity`` field."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
        }
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: str | None = None, env: str | None = None) -> None:
    """Set up root logging.

    Outside the ``local`` environment logs are emitted as JSON lines;
    locally a plain human-readable format is used.

    Args:
        level: Log level name; defaults to ``settings.log_level``.
        env: Environment name; defaults to ``settings.env``.
    """
    from opconsole.settings import get_settings

    settings = get_settings()
    level_name = (level or settings.log_level).upper()
    env_name = (env or settings.env).strip()
    numeric_level = getattr(logging, level_name, logging.INFO)

    if env_name != "local":
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
        logging.root.handlers.clear()
        logging.root.addHandler(handler)
        logging.root.setLevel(numeric_level)
    else:
        logging.basicConfig(
            level=numeric_level,
            format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
            stream=sys.stderr,
        )

    # Quieten noisy libraries
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
