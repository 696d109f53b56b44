"""Observability for notesync: rotating file logs, operation timing and counters.

Every service operation is wrapped by ``traced`` which times it, records
success or failure in the process-wide ``metrics`` collector, and logs a
start/end pair tagged with a short correlation id.
"""
import functools
import json
import logging
import time
import uuid
from collections import Counter, defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notesync" / "logs"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar('F', bound=Callable[..., Any])

# Keyword arguments worth echoing in trace logs
_TRACE_CONTEXT_KEYS = ("note_id", "username", "owner_username", "target_username")


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
) -> Path:
    """Attach a rotating file handler (and optionally stderr) to the notesync loggers.

    Args:
        log_dir: Directory for ``notesync.log``. Defaults to ~/.notesync/logs/
        level: Logging level
        max_bytes: Size at which the log file is rotated
        backup_count: Number of rotated files kept
        console: Also log to stderr. stdout is left alone since the MCP
            stdio transport owns it.

    Returns:
        Path to the log directory
    """
    log_path = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    log_path.mkdir(parents=True, exist_ok=True)

    package_logger = logging.getLogger("notesync")
    package_logger.setLevel(level)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    log_file = log_path / "notesync.log"
    if not any(
        isinstance(h, RotatingFileHandler)
        and Path(h.baseFilename) == log_file.resolve()
        for h in package_logger.handlers
    ):
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

    if console and not any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, RotatingFileHandler)
        for h in package_logger.handlers
    ):
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(formatter)
        package_logger.addHandler(console_handler)

    package_logger.info(f"Logging configured: {log_file} (level {logging.getLevelName(level)})")
    return log_path


@dataclass
class OperationMetrics:
    """Running totals for one operation name."""
    count: int = 0
    success_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    min_duration_ms: float = float('inf')
    max_duration_ms: float = 0.0
    last_error: Optional[str] = None
    last_error_time: Optional[datetime] = None

    def snapshot(self) -> Dict[str, Any]:
        return {
            'count': self.count,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'success_rate': self.success_count / self.count if self.count else 0,
            'avg_duration_ms': round(self.total_duration_ms / self.count, 2) if self.count else 0,
            'min_duration_ms': round(self.min_duration_ms, 2) if self.count else 0,
            'max_duration_ms': round(self.max_duration_ms, 2),
            'last_error': self.last_error,
            'last_error_time': self.last_error_time.isoformat() if self.last_error_time else None,
        }


class MetricsCollector:
    """Thread-safe operation timings plus named event counters.

    Events count things that are not operations of their own, such as
    projection writes that failed after a successful commit.

    Args:
        metrics_file: Where ``save_metrics`` writes a JSON snapshot. When None,
            metrics live in memory only.
    """

    def __init__(self, metrics_file: Optional[Union[str, Path]] = None):
        self._metrics: Dict[str, OperationMetrics] = defaultdict(OperationMetrics)
        self._events: Counter = Counter()
        self._lock = Lock()
        self._start_time = datetime.now(timezone.utc)
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def record_operation(
        self,
        operation: str,
        duration_ms: float,
        success: bool,
        error: Optional[str] = None
    ) -> None:
        with self._lock:
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

    def record_event(self, name: str, amount: int = 1) -> None:
        """Bump a named counter (e.g. ``projection_sync_failed``)."""
        with self._lock:
            self._events[name] += amount

    def get_metrics(self) -> Dict[str, Dict[str, Any]]:
        """Per-operation snapshot keyed by operation name."""
        with self._lock:
            return {op: m.snapshot() for op, m in self._metrics.items()}

    def get_events(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._events)

    def get_summary(self) -> Dict[str, Any]:
        """Aggregate health of the process since start (or the last reset)."""
        with self._lock:
            total_ops = sum(m.count for m in self._metrics.values())
            total_success = sum(m.success_count for m in self._metrics.values())
            return {
                'uptime_seconds': (datetime.now(timezone.utc) - self._start_time).total_seconds(),
                'total_operations': total_ops,
                'total_success': total_success,
                'total_errors': total_ops - total_success,
                'overall_success_rate': total_success / total_ops if total_ops else 1.0,
                'operations_tracked': sorted(self._metrics),
                'events': dict(self._events),
            }

    def reset(self) -> None:
        """Reset all metrics (useful for testing)."""
        with self._lock:
            self._metrics.clear()
            self._events.clear()
            self._start_time = datetime.now(timezone.utc)

    def set_metrics_file(self, metrics_file: Optional[Union[str, Path]]) -> None:
        self._metrics_file = Path(metrics_file) if metrics_file else None

    def save_metrics(self) -> bool:
        """Write a JSON snapshot to the metrics file.

        Returns:
            True if written, False if no file is set or the write failed.
        """
        if self._metrics_file is None:
            return False
        with self._lock:
            data = {
                "start_time": self._start_time.isoformat(),
                "saved_at": datetime.now(timezone.utc).isoformat(),
                "operations": {op: m.snapshot() for op, m in self._metrics.items()},
                "events": dict(self._events),
            }
        try:
            self._metrics_file.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self._metrics_file.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_file.replace(self._metrics_file)
            return True
        except OSError as e:
            logger.error(f"Failed to save metrics to {self._metrics_file}: {e}")
            return False


# Process-wide collector
metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context) -> Iterator[Dict[str, Any]]:
    """Time a block, record it in ``metrics`` and log start/end.

    Yields:
        A dict the block can fill with result info (e.g. result_count)
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


def traced(operation_name: Optional[str] = None) -> Callable[[F], F]:
    """Decorator form of ``timed_operation``.

    Note ids and usernames passed as keyword arguments are echoed in the
    trace log.
    """
    def decorator(func: F) -> F:
        op_name = operation_name or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            context = {k: kwargs[k] for k in _TRACE_CONTEXT_KEYS if k in kwargs}
            with timed_operation(op_name, **context) as op:
                result = func(*args, **kwargs)
                if isinstance(result, (list, tuple, dict)):
                    op['result_count'] = len(result)
                elif result is not None:
                    op['has_result'] = True
                return result

        return wrapper  # type: ignore
    return decorator
