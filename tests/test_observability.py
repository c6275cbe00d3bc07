"""Tests for the observability module.

Tests for metrics collection, logging configuration and operation tracing.
"""
import json
import logging
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest

from connected_notes import observability
from connected_notes.observability import (
    ROOT_LOGGER_NAME,
    MetricsCollector,
    configure_logging,
    configure_logging_from_config,
    get_logger,
    metrics,
    timed_operation,
    traced,
)


class TestMetricsCollector:
    """Tests for MetricsCollector class."""

    def test_record_and_summarize(self):
        collector = MetricsCollector()
        collector.record_operation("save_content", 10.0, True)
        collector.record_operation("save_content", 30.0, False, error="disk full")

        data = collector.get_metrics()["save_content"]
        assert data["count"] == 2
        assert data["error_count"] == 1
        assert data["avg_duration_ms"] == 20.0
        assert data["last_error"] == "disk full"

        summary = collector.get_summary()
        assert summary["total_operations"] == 2
        assert summary["overall_success_rate"] == 0.5

    def test_reset(self):
        collector = MetricsCollector()
        collector.record_operation("op", 1.0, True)
        collector.reset()
        assert collector.get_metrics() == {}

    def test_save_metrics(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "metrics.json"
            collector = MetricsCollector(metrics_file=path)
            collector.record_operation("op", 1.0, True)
            assert collector.save_metrics()
            assert json.loads(path.read_text())["operations"]["op"]["count"] == 1

    def test_save_metrics_without_file(self):
        assert MetricsCollector().save_metrics() is False


class TestTimedOperation:
    def test_records_failure_and_reraises(self):
        metrics.reset()
        with pytest.raises(RuntimeError):
            with timed_operation("failing_op"):
                raise RuntimeError("boom")
        assert metrics.get_metrics()["failing_op"]["error_count"] == 1

    def test_traced_sync(self):
        metrics.reset()

        @traced("count_things")
        def count_things(note_id=None):
            return [1, 2, 3]

        assert count_things(note_id="n1") == [1, 2, 3]
        assert metrics.get_metrics()["count_things"]["success_count"] == 1

    def test_traced_logs_positional_ids(self):
        @traced("load_note")
        def load_note(note_id, verbose=False):
            return None

        with patch.object(observability.logger, "debug") as debug:
            load_note("n1", True)
        assert "START load_note (note_id=n1)" in debug.call_args_list[0].args[0]

    @pytest.mark.anyio
    async def test_traced_coroutine(self):
        metrics.reset()

        @traced()
        async def rename_something():
            return None

        await rename_something()
        assert metrics.get_metrics()["rename_something"]["count"] == 1


class TestLogging:
    def test_configure_logging_creates_file_handler(self):
        with tempfile.TemporaryDirectory() as tmp:
            root_logger = logging.getLogger(ROOT_LOGGER_NAME)
            saved_handlers = list(root_logger.handlers)
            try:
                log_dir = configure_logging(log_dir=tmp, console=False)
                assert log_dir == Path(tmp)
                assert (Path(tmp) / "connected-notes.log").exists()
            finally:
                for handler in root_logger.handlers:
                    if handler not in saved_handlers:
                        handler.close()
                root_logger.handlers = saved_handlers

    def test_structured_logger_formats_context(self):
        slog = get_logger("scheduler")
        slog.set_context(session="s1")
        with patch.object(slog._logger, "info") as info:
            slog.info("Rated flashcard", rating=3)
        info.assert_called_once_with("[scheduler] Rated flashcard | session=s1 rating=3")

    def test_configure_logging_from_config(self, test_config, tmp_path):
        root_logger = logging.getLogger(ROOT_LOGGER_NAME)
        saved_handlers = list(root_logger.handlers)
        config = test_config.model_copy(update={"log_dir": tmp_path, "log_level": "debug"})
        try:
            assert configure_logging_from_config(config, console=False) == tmp_path
            assert root_logger.level == logging.DEBUG
        finally:
            for handler in root_logger.handlers:
                if handler not in saved_handlers:
                    handler.close()
            root_logger.handlers = saved_handlers
