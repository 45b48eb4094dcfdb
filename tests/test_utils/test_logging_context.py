"""Tests for task/world scoping of log records."""

from __future__ import annotations

import asyncio
import json
import logging

from guild_monitor.config import LoggingConfig
from guild_monitor.scheduler import PeriodicTask
from guild_monitor.utils.logging import (
    _ScopeFilter,
    build_formatter,
    build_handlers,
    current_scope,
    log_context,
)


class _Collect(logging.Handler):
    def __init__(self, json_format: bool = False) -> None:
        super().__init__()
        self.lines: list[str] = []
        self.addFilter(_ScopeFilter())
        self.setFormatter(build_formatter(json_format))

    def emit(self, record: logging.LogRecord) -> None:
        self.lines.append(self.format(record))


def _logger(handler: logging.Handler, name: str) -> logging.Logger:
    logger = logging.getLogger(f"guild_monitor.tests.{name}")
    logger.handlers = [handler]
    logger.propagate = False
    logger.setLevel(logging.DEBUG)
    return logger


class TestLogContext:
    def test_nested_blocks_combine_and_unwind(self):
        assert current_scope() == (None, None)
        with log_context(task="presence"):
            with log_context(world="Antica"):
                assert current_scope() == ("presence", "Antica")
            assert current_scope() == ("presence", None)
        assert current_scope() == (None, None)

    def test_json_line_carries_task_and_world(self):
        handler = _Collect(json_format=True)
        logger = _logger(handler, "json")
        with log_context(task="death_ingestion", world="Secura"):
            logger.info("3 new death(s)")

        payload = json.loads(handler.lines[0])
        assert payload["task"] == "death_ingestion"
        assert payload["world"] == "Secura"
        assert payload["msg"] == "3 new death(s)"
        assert payload["level"] == "INFO"

    def test_unscoped_record_uses_placeholder(self):
        handler = _Collect()
        logger = _logger(handler, "text")
        logger.warning("no scope")
        assert " - guild_monitor.tests.text: no scope" in handler.lines[0]

    def test_text_scope_is_task_slash_world(self):
        handler = _Collect()
        logger = _logger(handler, "scope")
        with log_context(task="presence", world="Antica"):
            logger.info("tick")
        assert "[INFO] presence/Antica guild_monitor.tests.scope: tick" in handler.lines[0]

    def test_scope_follows_worker_threads(self):
        async def scenario():
            with log_context(task="cleanup"):
                return await asyncio.to_thread(current_scope)

        assert asyncio.run(scenario()) == ("cleanup", None)

    def test_periodic_task_binds_its_name(self):
        seen = []

        async def tick():
            seen.append(current_scope())

        async def scenario():
            task = PeriodicTask("presence", 60, tick)
            task.start()
            while not seen:
                await asyncio.sleep(0)
            await task.stop()

        asyncio.run(scenario())
        assert seen[0] == ("presence", None)
        assert current_scope() == (None, None)


class TestBuildHandlers:
    def test_file_handler_created_with_parent_dirs(self, tmp_path):
        log_file = tmp_path / "logs" / "monitor.log"
        handlers = build_handlers(LoggingConfig(log_file=str(log_file)), logging.INFO)
        try:
            assert len(handlers) == 2
            assert log_file.parent.is_dir()
            assert all(any(isinstance(f, _ScopeFilter) for f in h.filters) for h in handlers)
        finally:
            for h in handlers:
                h.close()

    def test_no_file_handler_without_log_file(self):
        handlers = build_handlers(LoggingConfig(log_file=""), logging.INFO)
        assert len(handlers) == 1
