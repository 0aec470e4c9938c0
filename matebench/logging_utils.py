from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


class JSONLFormatter(logging.Formatter):
    """One JSON object per record, for machine-readable run logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": record.created,
            "level": record.levelname,
            "msg": record.getMessage(),
            "name": record.name,
            "thread": record.threadName,
            "func": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(log_dir: Optional[str] = None, level: int = logging.INFO,
                  console: Optional[Console] = None, name: str = "matebench") -> logging.Logger:
    """Configure the ``matebench`` logger tree.

    Console output goes through rich; with ``log_dir`` set, a rotating text log
    and a rotating JSON-lines log are written there as well.
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG if log_dir else level)
    logger.handlers.clear()

    console_handler = RichHandler(console=console, rich_tracebacks=False, markup=False, show_path=False)
    console_handler.setLevel(level)
    logger.addHandler(console_handler)

    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(Path(log_dir) / "matebench.log", maxBytes=5_000_000, backupCount=5)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter("%(asctime)s - %(threadName)s - %(levelname)s - %(message)s"))
        logger.addHandler(file_handler)

        jsonl_handler = RotatingFileHandler(Path(log_dir) / "structured.jsonl", maxBytes=5_000_000, backupCount=5)
        jsonl_handler.setLevel(level)
        jsonl_handler.setFormatter(JSONLFormatter())
        logger.addHandler(jsonl_handler)

    logger.propagate = False
    return logger
