"""
Logging setup for bridge sessions.

Components log through stdlib ``logging.getLogger(__name__)``; structlog
renders those records (JSON lines normally, console output at DEBUG) and
merges the session fields bound with :func:`bind_session`.
"""

import logging
import sys
from typing import IO, List, Optional

import structlog

from .config import settings

_QUIET_LOGGERS = ("httpcore", "httpx")


def _processors() -> List[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]


def _renderer(json_output: bool) -> structlog.types.Processor:
    if json_output:
        return structlog.processors.JSONRenderer(sort_keys=True)
    return structlog.dev.ConsoleRenderer(colors=False)


def setup_logging(
    log_level: Optional[str] = None,
    *,
    json_output: Optional[bool] = None,
    stream: Optional[IO[str]] = None,
) -> None:
    """Install a single root handler that formats every record with structlog.

    Args:
        log_level: Level name; defaults to ``settings.log_level``
        json_output: Force JSON (True) or console (False) rendering; by
            default console output is used only at DEBUG
        stream: Destination, stderr by default so CLI output stays clean
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    if json_output is None:
        json_output = level > logging.DEBUG

    pre_chain = _processors()
    if json_output:
        pre_chain.append(structlog.processors.format_exc_info)

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, _renderer(json_output)],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.stdlib.get_logger(name)


def bind_session(session_id: str, **fields: object) -> None:
    """Attach a bridge session id (and extra fields) to every record logged in this context."""
    structlog.contextvars.bind_contextvars(bridge_session=session_id, **fields)


def clear_session() -> None:
    structlog.contextvars.clear_contextvars()
