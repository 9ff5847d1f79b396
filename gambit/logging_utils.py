"""Logging configuration for command line entry points.

Library modules only create loggers with ``logging.getLogger(__name__)``;
``setup_logging`` is called once by scripts that own the process.
"""

from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from pythonjsonlogger import jsonlogger

_session_id: ContextVar[Optional[str]] = ContextVar("session_id", default=None)


def set_session_context(session_id: Optional[str]) -> None:
    _session_id.set(session_id)


def get_session_context() -> Optional[str]:
    return _session_id.get()


class SessionJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter that tags every record with component and session id."""

    def __init__(self, component: str = "gambit") -> None:
        self.component = component
        super().__init__(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S%z",
        )

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["component"] = self.component
        log_record["level"] = log_record.pop("levelname", record.levelname)
        log_record["target"] = log_record.pop("name", record.name)
        session_id = get_session_context()
        if session_id:
            log_record["session_id"] = session_id
        if "asctime" in log_record:
            log_record["timestamp"] = log_record.pop("asctime")


def setup_logging(
    level: str = "INFO",
    *,
    json_format: bool = False,
    component: str = "gambit",
) -> None:
    root_logger = logging.getLogger()
    root_logger.setLevel(level.upper())
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level.upper())
    if json_format:
        formatter: logging.Formatter = SessionJsonFormatter(component=component)
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # torch and matplotlib are chatty at DEBUG
    for noisy in ("matplotlib", "PIL", "torch.distributed"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
