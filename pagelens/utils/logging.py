"""
Structured logging for pagelens.

Events are rendered by structlog through stdlib handlers: one JSON object
per line by default, or a coloured console line when `general.log_format`
is "console". A crawl job binds its id with LogContext for the lifetime of
its task, and each URL it processes runs inside a CausalTrace, so every
line from navigate to analyze carries the same `cause_id`, `url` and `depth`.
"""

import logging
import sys
import uuid
from datetime import date
from pathlib import Path
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

from pagelens.utils.config import get_settings

# ============================================================
# Processors
# ============================================================


def _drop_health_checks(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Drop debug lines emitted by the /health route."""
    if method_name == "debug" and str(event_dict.get("event", "")).startswith("health_check"):
        raise structlog.DropEvent
    return event_dict


def _crawl_scope(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """Fold job and trace ids into a short `scope` tag for console output.

    `job_id=3f2a...` and `cause_id=9c1e...` become `scope=3f2a9b1c/9c1e77d0`.
    """
    job_id = event_dict.pop("job_id", None)
    cause_id = event_dict.pop("cause_id", None)
    if job_id is None:
        if cause_id is not None:
            event_dict["cause_id"] = cause_id
        return event_dict
    scope = str(job_id)[:8]
    if cause_id is not None:
        scope = f"{scope}/{str(cause_id)[:8]}"
    event_dict["scope"] = scope
    return event_dict


def _log_file_path(logs_dir: str) -> Path:
    log_dir = Path(logs_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"pagelens_{date.today():%Y%m%d}.log"


def configure_logging(
    log_level: str | None = None,
    json_format: bool | None = None,
    log_file: str | Path | None = None,
) -> None:
    """Configure structlog and the stdlib root handlers.

    Arguments left as None come from the `general` settings section
    (`log_level`, `log_format`, `log_to_file`, `logs_dir`).

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR.
        json_format: JSON lines (True) or console rendering (False).
        log_file: Explicit log file; disables the dated file under logs_dir.
    """
    general = get_settings().general
    level_name = (log_level or general.log_level).upper()
    if json_format is None:
        json_format = general.log_format.lower() != "console"

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file is not None:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    elif general.log_to_file:
        handlers.append(logging.FileHandler(_log_file_path(general.logs_dir), encoding="utf-8"))

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level_name, logging.INFO),
        handlers=handlers,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        _drop_health_checks,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors += [_crawl_scope, structlog.dev.ConsoleRenderer(colors=True)]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


# ============================================================
# Crawl context
# ============================================================


class LogContext:
    """Bind keys to every log line of the current task while the block runs.

    Each crawl job runs in its own asyncio task, so the binding stays with
    that job's lines:

        with LogContext(job_id=job.job_id):
            logger.info("Crawl job started")
    """

    def __init__(self, **kwargs: Any):
        self.context = kwargs

    def __enter__(self) -> "LogContext":
        bind_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        unbind_context(*self.context)


class CausalTrace:
    """Trace id shared by every log line produced while processing one URL."""

    def __init__(self, url: str | None = None, depth: int | None = None):
        self.id = uuid.uuid4().hex
        self.context: dict[str, Any] = {"cause_id": self.id}
        if url is not None:
            self.context["url"] = url
        if depth is not None:
            self.context["depth"] = depth

    def __enter__(self) -> "CausalTrace":
        bind_context(**self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        unbind_context(*self.context)
