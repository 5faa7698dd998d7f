"""Structured logging configuration with structlog.

Level and format come from ``LedgerSettings`` (``LEDGER_LOG_LEVEL``,
``LEDGER_LOG_FORMAT``): "json" for machine-readable output, "console" or
empty for human-readable colored output.
"""

from __future__ import annotations

import logging
import sys
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

import structlog

if TYPE_CHECKING:
    from collections.abc import MutableMapping
    from typing import Any, TextIO

LOG_FILE_TIMESTAMP_FORMAT = "%Y-%m-%d_%H-%M-%S"


def _serialize_enums(
    _logger: object,
    _method_name: str,
    event_dict: MutableMapping[str, Any],
) -> MutableMapping[str, Any]:
    """Replace Enum instances with their .value for readable log output."""
    for key, value in event_dict.items():
        if isinstance(value, Enum):
            event_dict[key] = value.value
        elif isinstance(value, dict):
            event_dict[key] = {k: v.value if isinstance(v, Enum) else v for k, v in value.items()}
    return event_dict


def _is_test() -> bool:
    return "pytest" in sys.modules


def _build_stdlib_formatter(*, json_mode: bool, colors: bool = False) -> logging.Formatter:
    renderer = structlog.processors.JSONRenderer() if json_mode else structlog.dev.ConsoleRenderer(colors=colors)
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def setup_logging(
    log_dir: Path | str | None = None,
    level: int | str = logging.INFO,
    *,
    json_mode: bool = False,
    stream: TextIO | None = None,
) -> Path | None:
    """Configure structlog with stream output and an optional log file.

    When log_dir is provided, a datetime-stamped log file is created inside
    it. Returns the log file path if created, None otherwise. ``stream``
    defaults to stderr so command output on stdout stays clean.
    """
    if isinstance(level, str):
        level = logging.getLevelNamesMapping()[level.upper()]

    # format_exc_info runs in ProcessorFormatter, not here, so file output
    # does not render tracebacks twice.
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            _serialize_enums,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    stream = stream or sys.stderr
    stream_handler = logging.StreamHandler(stream)
    stream_handler.setFormatter(_build_stdlib_formatter(json_mode=json_mode, colors=stream.isatty()))
    root_logger.addHandler(stream_handler)

    if log_dir is not None and not _is_test():
        dir_path = Path(log_dir)
        dir_path.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now(tz=UTC).strftime(LOG_FILE_TIMESTAMP_FORMAT)
        file_path = dir_path / f"{timestamp}.log"
        file_handler = logging.FileHandler(file_path, encoding="utf-8")
        file_handler.setFormatter(_build_stdlib_formatter(json_mode=json_mode))
        root_logger.addHandler(file_handler)
        return file_path

    return None
