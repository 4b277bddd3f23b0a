from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import IO, Any

ROOT_LOGGER = "batchdbg"
LOG_DIR_ENV = "BATCHDBG_LOG_DIR"


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; event payloads are merged, not nested."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": round(record.created, 3),
            "level": record.levelname.lower(),
            "logger": record.name,
        }
        message = record.getMessage()
        try:
            payload = json.loads(message)
        except ValueError:
            payload = None
        if isinstance(payload, dict):
            entry.update(payload)
        else:
            entry["message"] = message
        return json.dumps(entry, sort_keys=True, default=str)


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(
    *,
    level: str = "info",
    format_name: str = "json",
    stream: IO[str] | None = None,
    log_dir: Path | None = None,
    filename: str = "batchdbg.log",
) -> None:
    """
    Route the ``batchdbg`` logger tree to a stream or a log file.

    With neither a stream nor a log directory (argument or BATCHDBG_LOG_DIR)
    records are discarded so the debugger console stays clean. Calling this
    again replaces the previous handler.
    """
    level_value = getattr(logging, level.strip().upper(), logging.INFO)
    logger = get_logger()
    logger.setLevel(level_value)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    env_dir = os.environ.get(LOG_DIR_ENV)
    if stream is None and env_dir:
        log_dir = Path(env_dir)

    handler: logging.Handler
    if stream is not None:
        handler = logging.StreamHandler(stream)
    elif log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(log_dir / filename, encoding="utf-8")
    else:
        logger.addHandler(logging.NullHandler())
        return

    if format_name == "json":
        handler.setFormatter(JsonLineFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s"))
    logger.addHandler(handler)


def log_event(
    logger: logging.Logger,
    event: str,
    *,
    level: int = logging.INFO,
    **fields: Any,
) -> None:
    if not logger.isEnabledFor(level):
        return
    payload = {"event": event, **fields}
    logger.log(level, json.dumps(payload, sort_keys=True, default=str))
