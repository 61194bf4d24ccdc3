from __future__ import annotations
import logging
import os
import json
from typing import Any, Optional

__all__ = ["get_logger", "configure_logging", "TurnLogger", "truncate"]

LOGGER_NAME = "booking-engine"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def truncate(s: Any, limit: int = 4000) -> str:
    """Safely truncate long values for logs (keeps unicode; appends ellipsis)."""
    if not isinstance(s, str):
        try:
            s = json.dumps(s, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            s = str(s)
    return s if len(s) <= limit else (s[:limit] + " …[truncated]")


def get_logger(name: str = LOGGER_NAME, logfile: Optional[str] = None) -> logging.Logger:
    """Create or fetch a configured logger with a console handler (and a file handler if asked).
    Respects LOGLEVEL env. Idempotent (won't duplicate handlers).
    """
    level = getattr(logging, os.getenv("LOGLEVEL", "INFO").upper(), logging.INFO)
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers):
        ch = logging.StreamHandler()
        ch.setLevel(level)
        ch.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(ch)

    if logfile and not any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        fh = logging.FileHandler(logfile, encoding="utf-8")
        fh.setLevel(logging.DEBUG)
        fh.setFormatter(logging.Formatter(_FORMAT))
        logger.addHandler(fh)

    return logger


def configure_logging(level: Optional[str] = None, logfile: Optional[str] = None) -> logging.Logger:
    """Host entry point: set LOGLEVEL (if given) and install handlers on the engine logger."""
    if level:
        os.environ["LOGLEVEL"] = level
    return get_logger(LOGGER_NAME, logfile=logfile)


class TurnLogger:
    """High-signal logging for one call's turns: one INFO line per turn start/result, bodies at DEBUG."""

    def __init__(self, logger: logging.Logger, session_id: str):
        self._log = logger
        self._sid = session_id

    def turn_start(self, turn: int, step_id: Optional[str], utterance: str):
        self._log.info("TURN START  | session=%s turn=%d step=%s chars=%d", self._sid, turn, step_id, len(utterance or ""))
        self._log.debug("TURN INPUT  | session=%s utterance=%s", self._sid, truncate(utterance, 500))

    def turn_result(self, turn: int, action: str, step_id: Optional[str], reply: str, debug: Optional[dict] = None):
        self._log.info("TURN RESULT | session=%s turn=%d action=%s step=%s", self._sid, turn, action, step_id)
        self._log.debug("TURN REPLY  | session=%s reply=%s", self._sid, truncate(reply, 500))
        if debug:
            self._log.debug("TURN DEBUG  | session=%s\n%s", self._sid, truncate(json.dumps(debug, ensure_ascii=False, indent=2, default=str)))

    def rejected(self, field_key: str, reason: str, rejected_by: Optional[str]):
        self._log.info("SLOT REJECT | session=%s field=%s reason=%s by=%s", self._sid, field_key, reason, rejected_by)
