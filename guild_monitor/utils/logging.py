"""
Logging for the monitoring loops.

Several periodic tasks share one event loop, so a bare ``logger.info`` line
does not say which loop, or which world, produced it. ``log_context`` binds
the current task name and world in context variables; every asyncio task
copies the context it was created in, so the binding follows a tick into
``gather`` children and ``asyncio.to_thread`` workers without being passed
around.

``configure_logging(config)`` is called once per CLI command. Library code
only ever uses ``logging.getLogger(__name__)``.

Text lines carry a ``task/world`` scope::

    2024-03-01T18:00:05Z [INFO] death_ingestion/Antica guild_monitor.pipeline...: ...

JSON lines (``json_format = true`` under ``[logging]``)::

    {"ts": "...", "level": "INFO", "logger": "...", "task": "presence",
     "world": "Antica", "msg": "..."}
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Iterator, Optional

if TYPE_CHECKING:
    from guild_monitor.config import LoggingConfig

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(scope)s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

UNSCOPED = "-"

_task_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "guild_monitor_task", default=None
)
_world_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "guild_monitor_world", default=None
)

# third-party loggers held at WARNING
_CHATTY_LOGGERS = ("httpx", "httpcore", "asyncio")


@contextmanager
def log_context(task: Optional[str] = None, world: Optional[str] = None) -> Iterator[None]:
    """Bind ``task`` and/or ``world`` to every record logged inside the block.

    Arguments left as ``None`` keep the enclosing binding, so a per-world
    block nested in a task block reports both.
    """
    tokens = []
    if task is not None:
        tokens.append((_task_var, _task_var.set(task)))
    if world is not None:
        tokens.append((_world_var, _world_var.set(world)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def current_scope() -> tuple[Optional[str], Optional[str]]:
    """The ``(task, world)`` currently bound, ``None`` where unbound."""
    return _task_var.get(), _world_var.get()


class _ScopeFilter(logging.Filter):
    """Stamp ``task``, ``world`` and the combined ``scope`` onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        task, world = current_scope()
        record.task = task or UNSCOPED
        record.world = world or UNSCOPED
        record.scope = record.task if world is None else f"{record.task}/{world}"
        return True


class _JsonFormatter(logging.Formatter):
    """One JSON object per line: ts, level, logger, task, world, msg [, exc]."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).strftime(
                LOG_DATE_FORMAT
            ),
            "level": record.levelname,
            "logger": record.name,
            "task": getattr(record, "task", UNSCOPED),
            "world": getattr(record, "world", UNSCOPED),
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def build_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonFormatter()
    return logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)


def build_handlers(config: "LoggingConfig", level: int) -> list[logging.Handler]:
    """stdout, plus ``config.log_file`` when set; each scoped and formatted."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        log_path = Path(config.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    formatter = build_formatter(config.json_format)
    for handler in handlers:
        handler.setLevel(level)
        handler.addFilter(_ScopeFilter())
        handler.setFormatter(formatter)
    return handlers


def configure_logging(config: "LoggingConfig") -> None:
    """Install the root handlers described by the ``[logging]`` section.

    Replaces any handlers from an earlier call, so a test or a second CLI
    command in one process does not log twice.
    """
    level = getattr(logging, config.level.upper(), logging.INFO)
    logging.basicConfig(level=level, handlers=build_handlers(config, level), force=True)

    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
