"""Observability utilities for the Connected Notes core.

Provides logging setup with rotation, a structured component logger,
and lightweight timing metrics for note and flashcard operations.
"""
import functools
import inspect
import json
import logging
import time
import uuid
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Callable, Dict, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

# Root of the package logger hierarchy
ROOT_LOGGER_NAME = "connected_notes"

DEFAULT_LOG_DIR = Path.home() / ".connected-notes" / "logs"

# Logging format with ISO 8601 timestamps
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 5 * 1024 * 1024,
    backup_count: int = 3,
    console: bool = True,
) -> Path:
    """Configure rotating file logging for the package logger hierarchy.

    Args:
        log_dir: Directory for log files. Defaults to ~/.connected-notes/logs/
        level: Logging level (default: INFO)
        max_bytes: Maximum size per log file before rotation (default: 5 MB)
        backup_count: Number of rotated files to keep (default: 3)
        console: Also log to console (default: True)

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger(ROOT_LOGGER_NAME)
    root_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "connected-notes.log"
    if not any(isinstance(h, RotatingFileHandler) for h in root_logger.handlers):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in root_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    root_logger.info(f"Logging configured: {log_file} (max {max_bytes} bytes, {backup_count} backups)")

    return log_path


@dataclass
class OperationMetrics:
    """Metrics for a single operation type."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None


class MetricsCollector:
    """Collects timing and success/failure counts per operation.

    Everything runs on one event loop, so no locking is needed. Metrics
    stay in memory unless a ``metrics_file`` is given, in which case
    ``save_metrics`` writes a JSON snapshot.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        """Record metrics for an operation.

        Args:
            operation: The operation name (e.g., 'rename_note')
            duration_ms: Duration in milliseconds
            success: Whether the operation succeeded
            error: Error message if the operation failed
        """
        m = self._metrics[operation]
        m.count += 1
        m.total_duration_ms += duration_ms
        m.min_duration_ms = min(m.min_duration_ms, duration_ms)
        m.max_duration_ms = max(m.max_duration_ms, duration_ms)

        if success:
            m.success_count += 1
        else:
            m.error_count += 1
            m.last_error = error
            m.last_error_time = datetime.now(timezone.utc)

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Get a snapshot of all metrics keyed by operation name."""
        result = {}
        for op, m in self._metrics.items():
            avg_duration = m.total_duration_ms / m.count if m.count > 0 else 0
            min_dur = m.min_duration_ms if m.min_duration_ms != float('inf') else 0
            result[op] = {
                'count': m.count,
                'success_count': m.success_count,
                'error_count': m.error_count,
                'success_rate': m.success_count / m.count if m.count > 0 else 0,
                'avg_duration_ms': round(avg_duration, 2),
                'min_duration_ms': round(min_dur, 2),
                'max_duration_ms': round(m.max_duration_ms, 2),
                'last_error': m.last_error,
                'last_error_time': m.last_error_time.isoformat() if m.last_error_time else None
            }
        return result

    def get_summary(self) -> Dict[str, Any]:
        """Get aggregate statistics across all operations."""
        total_ops = sum(m.count for m in self._metrics.values())
        total_success = sum(m.success_count for m in self._metrics.values())
        total_errors = sum(m.error_count for m in self._metrics.values())

        return {
            'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
            'total_operations': total_ops,
            'total_success': total_success,
            'total_errors': total_errors,
            'overall_success_rate': total_success / total_ops if total_ops > 0 else 1.0,
            'operations_tracked': list(self._metrics.keys())
        }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        self._metrics.clear()
        self._start_time = datetime.now(timezone.utc)

    def save_metrics(self) -> bool:
        """Write a JSON snapshot to ``metrics_file``.

        Returns:
            True if saved, False if no file is configured or writing failed.
        """
        if self._metrics_file is None:
            return False
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "start_time": self._start_time.isoformat(),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "operations": self.get_metrics(),
            }
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
            return True
        except (OSError, TypeError) as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False


# Global metrics collector instance
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context):
    """Context manager for timing and logging operations.

    Args:
        operation: Name of the operation being performed
        **context: Additional context to include in log messages

    Yields:
        A dictionary where you can store result info (e.g., renamed_count)

    Example:
        with timed_operation('rebuild_tag_groups', notes=len(notes)) as op:
            groups = extract_tag_groups(...)
            op['group_count'] = len(groups)
    """
    correlation_id = str(uuid.uuid4())[:8]
    start_time = time.perf_counter()
    result_info: Dict[str, Any] = {'correlation_id': correlation_id}

    context_str = ', '.join(f'{k}={v}' for k, v in context.items())
    logger.debug(f"[{correlation_id}] START {operation} ({context_str})")

    error_msg = None
    success = True

    try:
        yield result_info
    except Exception as e:
        success = False
        error_msg = str(e)
        raise
    finally:
        duration_ms = (time.perf_counter() - start_time) * 1000
        metrics.record_operation(operation, duration_ms, success, error_msg)

        result_str = ', '.join(f'{k}={v}' for k, v in result_info.items() if k != 'correlation_id')
        status = 'OK' if success else f'ERROR: {error_msg}'
        logger.debug(
            f"[{correlation_id}] END {operation} "
            f"({duration_ms:.2f}ms) [{status}] {result_str}"
        )


# Arguments copied into the START log line of a traced call
CONTEXT_ARGUMENTS = ('note_id', 'flashcard_id', 'tag')


def _call_context(signature: inspect.Signature, args: tuple, kwargs: Dict[str, Any]) -> Dict[str, Any]:
    try:
        bound = signature.bind_partial(*args, **kwargs)
    except TypeError:
        # Bad call; let the function raise its own error
        return {}
    return {key: bound.arguments[key] for key in CONTEXT_ARGUMENTS if key in bound.arguments}


def _record_result(op: Dict[str, Any], result: Any) -> None:
    if hasattr(result, '__len__'):
        op['result_count'] = len(result)
    elif result is not None:
        op['has_result'] = True


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator for automatic operation tracing.

    Works on plain functions and coroutine functions. For coroutines the
    timing covers the awaited body, not just coroutine creation.

    Example:
        @traced('save_content')
        async def save_content(self, note_id: str, content: str) -> None:
            ...
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__
        signature = inspect.signature(func)

        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                with timed_operation(op_name, **_call_context(signature, args, kwargs)) as op:
                    result = await func(*args, **kwargs)
                    _record_result(op, result)
                    return result

            return async_wrapper  # type: ignore

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(op_name, **_call_context(signature, args, kwargs)) as op:
                result = func(*args, **kwargs)
                _record_result(op, result)
                return result

        return wrapper  # type: ignore
    return decorator


class StructuredLogger:
    """Logger adapter that adds a component name and persistent context."""

    def __init__(self, component: str):
        self._logger = logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")
        self._component = component
        self._context: Dict[str, Any] = {}

    def set_context(self, **context) -> None:
        """Set persistent context that will be included in all log messages."""
        self._context.update(context)

    def _format_message(self, msg: str, **extra) -> str:
        all_context = {**self._context, **extra}
        if all_context:
            ctx_str = ' '.join(f'{k}={v}' for k, v in all_context.items())
            return f"[{self._component}] {msg} | {ctx_str}"
        return f"[{self._component}] {msg}"

    def debug(self, msg: str, **extra) -> None:
        self._logger.debug(self._format_message(msg, **extra))

    def info(self, msg: str, **extra) -> None:
        self._logger.info(self._format_message(msg, **extra))

    def warning(self, msg: str, **extra) -> None:
        self._logger.warning(self._format_message(msg, **extra))

    def error(self, msg: str, exc_info: bool = False, **extra) -> None:
        self._logger.error(self._format_message(msg, **extra), exc_info=exc_info)


def get_logger(component: str) -> StructuredLogger:
    """Get a structured logger for a component (e.g. 'scheduler')."""
    return StructuredLogger(component)


def configure_logging_from_config(notes_config: Any, console: bool = True) -> Path:
    """Configure logging from a ``NotesConfig`` (log_dir and log_level)."""
    level = getattr(logging, str(notes_config.log_level).upper(), logging.INFO)
    return configure_logging(log_dir=notes_config.log_dir, level=level, console=console)
