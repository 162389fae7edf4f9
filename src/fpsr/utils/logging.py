from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Optional

_LEVELS = {
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

_FORMAT = "[%(command)s] %(levelname)s: %(message)s"

# Nested calls inherit the active CLI command name
_current_command: ContextVar[str] = ContextVar("fpsr_current_command", default="fpsr")


class _CommandFilter(logging.Filter):
    """Stamp every record with the active command for prefix formatting."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401
        record.command = getattr(record, "command", None) or _current_command.get()
        return True


def _numeric_level(level: str | int) -> int:
    if isinstance(level, str):
        return _LEVELS.get(level.lower(), logging.WARNING)
    return int(level)


def setup_logging(level: str | int = "WARNING") -> None:
    """
    Configure the ``fpsr`` logger once.

    Records go to stderr with a ``[command] LEVEL: message`` prefix.
    Repeated calls only adjust the level.
    """
    logger = logging.getLogger("fpsr")
    if not logger.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler.addFilter(_CommandFilter())
        logger.addHandler(handler)
    logger.setLevel(_numeric_level(level))


def set_command_context(command: str) -> None:
    """Tag subsequent log records with the active command name."""
    _current_command.set(command)


def resolve_log_level(verbose: bool, debug: bool) -> str:
    if debug:
        return "DEBUG"
    if verbose:
        return "INFO"
    return "WARNING"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name if name is not None else "fpsr")
