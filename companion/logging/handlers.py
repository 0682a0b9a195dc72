"""
JSONL output for the Companion log channels.

Every channel logger writes through a size-rotated file handler whose
formatter guarantees exactly one JSON object per line.
"""

import json
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JSONLineFormatter(logging.Formatter):
    """
    Render a record as a single JSON line.

    Entries logged via ``entry.to_json()`` already carry their own fields and
    pass through untouched. Anything else is wrapped in a small envelope.
    """

    def format(self, record: logging.LogRecord) -> str:
        message = record.getMessage()
        try:
            payload = json.loads(message)
        except json.JSONDecodeError:
            payload = None

        if not isinstance(payload, dict):
            payload = {
                "timestamp": datetime.fromtimestamp(record.created).isoformat(),
                "logger": record.name,
                "level": record.levelname,
                "message": message,
            }
            if record.exc_info:
                payload["exception"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


class ChannelFileHandler(RotatingFileHandler):
    """RotatingFileHandler that creates its log directory on first use."""

    def __init__(self, path: str | Path, max_bytes: int, backup_count: int):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        super().__init__(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        self.setFormatter(JSONLineFormatter())


def create_jsonl_logger(
    name: str,
    filepath: Path,
    level: str = "INFO",
    max_bytes: int = 10_000_000,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Bind a channel logger to a JSONL file.

    Handlers from an earlier binding are closed first, so calling this again
    after the log directory changes redirects the channel cleanly. The
    logger does not propagate to the root logger.
    """
    logger = logging.getLogger(name)
    numeric = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    logger.setLevel(numeric)

    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()

    logger.addHandler(ChannelFileHandler(filepath, max_bytes, backup_count))
    logger.propagate = False
    return logger
