"""
Centralized logging for the market feature pipeline.

Every module obtains its logger through `get_logger(__name__, utility=...)`;
the returned object is a loguru logger bound with the module name and the
utility whose log folder it writes to.
"""

import atexit
import logging
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from loguru import logger as _loguru_logger

# One log file per utility per process run
RUN_ID = f"{datetime.now().strftime('%Y%m%d_%H%M%S')}_{os.getpid()}"

LOGS_BASE_DIR = Path(os.getenv("PIPELINE_LOG_DIR", Path(__file__).parent.parent.parent.parent / "logs"))

LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {message} | {function}:{line}"

UTILITIES = ("data_collector", "feature_engineering", "predictor", "database", "pipeline", "general")

_sinks_initialized = False
_console_sink_id: Optional[int] = None
_file_sink_ids: Dict[str, int] = {}


def _ascii_patch(record: dict) -> None:
    """Replace non-ASCII characters so sinks with strict encodings never fail."""
    record["message"] = str(record.get("message", "")).encode("ascii", errors="replace").decode("ascii")


class InterceptHandler(logging.Handler):
    """Routes stdlib logging records (requests, urllib3, sqlalchemy) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = _loguru_logger.level(record.levelname).name
        except (ValueError, AttributeError):
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        _loguru_logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _detect_utility(name: str) -> str:
    lower_name = name.lower()
    if "data_collector" in lower_name or "market_data" in lower_name:
        return "data_collector"
    if "feature_engineering" in lower_name:
        return "feature_engineering"
    if "models" in lower_name or "predict" in lower_name:
        return "predictor"
    if "database" in lower_name:
        return "database"
    if "pipelines" in lower_name:
        return "pipeline"
    return "general"


def get_logger(name: str, utility: Optional[str] = None):
    """Return a loguru logger bound to `name` and `utility`.

    Args:
        name: Usually the caller's `__name__`
        utility: Log folder under `logs/`; detected from `name` when omitted

    Returns:
        Bound loguru logger exposing `.debug`, `.info`, `.warning`, `.error`
    """
    if utility is None:
        utility = _detect_utility(name)

    _initialize_sinks_once()
    if os.getenv("PIPELINE_FILE_LOGGING", "false").lower() == "true":
        _ensure_file_sink_for_utility(utility)

    return _loguru_logger.bind(name=name, utility=utility)


def _initialize_sinks_once() -> None:
    """Install the console sink and the stdlib intercept once per process."""
    global _sinks_initialized, _console_sink_id
    if _sinks_initialized:
        return

    _loguru_logger.remove()
    _loguru_logger.configure(patcher=_ascii_patch)

    level = os.getenv("PIPELINE_LOG_LEVEL", "INFO").upper()
    _console_sink_id = _loguru_logger.add(sys.stdout, level=level, format=LOG_FORMAT)

    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    _sinks_initialized = True


def _ensure_file_sink_for_utility(utility: str) -> None:
    """Add a rotating file sink for `utility` if this run has none yet."""
    if utility in _file_sink_ids:
        return

    util_dir = LOGS_BASE_DIR / utility
    util_dir.mkdir(parents=True, exist_ok=True)
    log_file = util_dir / f"{utility}_{RUN_ID}.log"

    # Only records bound to this utility land in its file
    _file_sink_ids[utility] = _loguru_logger.add(
        str(log_file),
        level="INFO",
        rotation="10 MB",
        retention="30 days",
        compression="zip",
        encoding="utf-8",
        enqueue=True,
        format=LOG_FORMAT,
        filter=lambda record: record["extra"].get("utility") == utility,
    )


def shutdown_logging() -> None:
    """Remove all sinks so queued messages are flushed. Safe to call twice."""
    global _sinks_initialized, _console_sink_id

    for utility, sink_id in list(_file_sink_ids.items()):
        try:
            _loguru_logger.remove(sink_id)
        except ValueError:
            sys.stderr.write(f"Log sink for {utility} was already removed\n")
    _file_sink_ids.clear()

    if _console_sink_id is not None:
        try:
            _loguru_logger.remove(_console_sink_id)
        except ValueError:
            sys.stderr.write("Console log sink was already removed\n")
    _console_sink_id = None
    _sinks_initialized = False


atexit.register(shutdown_logging)
