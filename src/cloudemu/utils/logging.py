from __future__ import annotations

import json
import logging
import os
import re
import threading
from collections.abc import MutableMapping
from pathlib import Path
from typing import Any

import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, merge_contextvars

LOG_DIR = Path(os.getenv("CLOUDEMU_LOG_DIR", "artifacts/logs"))
HARNESS_LOG = LOG_DIR / "cloudemu.log"

# Numeric level for CLOUDEMU_LOG_LEVEL=TRACE
TRACE = 5

_UNSAFE = re.compile(r"[\s/:\\]")


def _level_from_env() -> int:
    raw = os.getenv("CLOUDEMU_LOG_LEVEL", "INFO").upper()
    if raw == "TRACE":
        return TRACE
    level = logging.getLevelName(raw)
    return level if isinstance(level, int) else logging.INFO


def current_test_log_path(test_name: str | None = None) -> Path:
    """
    Path of the log file collecting records of `test_name`.

    Without a test name this is the harness-wide log.
    """
    if not test_name:
        return HARNESS_LOG
    return LOG_DIR / f"test_{_UNSAFE.sub('_', str(test_name))}.log"


class _FileSink:
    """
    structlog processor appending every record, as one JSON line, to the
    harness log and (when a test is bound) to that test's log.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def __call__(
        self, logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
    ) -> MutableMapping[str, Any]:
        targets = [HARNESS_LOG]
        test_name = event_dict.get("test")
        if isinstance(test_name, str) and test_name:
            targets.append(current_test_log_path(test_name))

        line = json.dumps(event_dict, ensure_ascii=False, default=str) + "\n"
        try:
            LOG_DIR.mkdir(parents=True, exist_ok=True)
            with self._lock:
                for target in targets:
                    with target.open("a", encoding="utf-8") as f:
                        f.write(line)
        except OSError:
            # stdout still carries the record
            pass
        return event_dict


def _add_message(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    event_dict.setdefault("message", event_dict.get("event"))
    return event_dict


def _drop_unset(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for key in [k for k, v in event_dict.items() if v is None]:
        del event_dict[key]
    return event_dict


def bind_context(*, emulator: str | None = None, test_name: str | None = None) -> None:
    """Attach the emulator and/or test name to every following log record."""
    bind_contextvars(emulator=emulator, test=test_name)


_configured = False


def setup_logging() -> None:
    """
    Configure structlog once per process.

    Records are rendered as JSON lines on stdout with an ISO "timestamp",
    the level, the calling module and any bound context (emulator, test).
    Each record is also appended to artifacts/logs/cloudemu.log and, inside
    a test, to artifacts/logs/test_<name>.log. CLOUDEMU_LOG_LEVEL selects
    the threshold (TRACE, DEBUG, INFO, WARNING, ERROR).
    """
    global _configured
    if _configured:
        return

    level = _level_from_env()
    structlog.configure(
        processors=[
            merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
            structlog.processors.CallsiteParameterAdder(
                [structlog.processors.CallsiteParameter.MODULE]
            ),
            _add_message,
            _drop_unset,
            _FileSink(),
            structlog.processors.JSONRenderer(default=str),
        ],
        logger_factory=structlog.PrintLoggerFactory(),
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=True,
    )
    # Third-party loggers follow the same threshold
    logging.getLogger().setLevel(level)
    _configured = True


def get_logger(name: str | None = None) -> Any:
    """Return a structlog logger, configuring logging on first use."""
    setup_logging()
    return structlog.get_logger(name or __name__)


__all__ = [
    "bind_context",
    "clear_contextvars",
    "current_test_log_path",
    "get_logger",
    "setup_logging",
]
