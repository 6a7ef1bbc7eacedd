"""Logging setup and per-operation metrics for the knowledge base.

Store operations are wrapped in ``timed_operation`` (or the ``traced``
decorator). Each run is logged at DEBUG under a short run id and folded into
the process-wide ``metrics`` collector, which ``KnowledgeBase.stats()``
reports.
"""
import functools
import logging
import os
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from logging.handlers import RotatingFileHandler
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar, Union

logger = logging.getLogger(__name__)

DEFAULT_LOG_DIR = Path.home() / ".notegraph" / "logs"
LOG_FILE_NAME = "notegraph.log"
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

F = TypeVar("F", bound=Callable[..., Any])


def configure_logging(
    log_dir: Optional[Union[str, Path]] = None,
    level: int = logging.INFO,
    console: bool = True,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> Path:
    """Send the ``notegraph`` logger hierarchy to a rotating log file.

    Calling it again with the same directory adjusts the level without
    stacking another handler. Console output goes to stderr so JSON printed
    on stdout stays parseable.

    Returns:
        The directory holding ``notegraph.log``.
    """
    directory = Path(log_dir) if log_dir else DEFAULT_LOG_DIR
    directory.mkdir(parents=True, exist_ok=True)
    log_file = os.path.abspath(directory / LOG_FILE_NAME)

    package_logger = logging.getLogger("notegraph")
    package_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = list(package_logger.handlers)
    if not any(getattr(h, "baseFilename", None) == log_file for h in handlers):
        handlers.append(
            RotatingFileHandler(
                log_file, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
            )
        )
    if console and not any(type(h) is logging.StreamHandler for h in handlers):
        handlers.append(logging.StreamHandler())

    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        if handler not in package_logger.handlers:
            package_logger.addHandler(handler)

    package_logger.debug(f"Logging to {log_file}")
    return directory


@dataclass
class OperationStats:
    """Running totals for one operation name."""

    count: int = 0
    error_count: int = 0
    total_ms: float = 0.0
    max_ms: float = 0.0
    # Sum of result_count over successful runs
    results: int = 0
    # How many runs raised each flag (e.g. "fallback")
    flags: Dict[str, int] = field(default_factory=dict)
    last_error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "count": self.count,
            "error_count": self.error_count,
            "avg_ms": round(self.total_ms / self.count, 2) if self.count else 0.0,
            "max_ms": round(self.max_ms, 2),
            "results": self.results,
            "flags": dict(self.flags),
            "last_error": self.last_error,
        }


class MetricsCollector:
    """Thread-safe, in-memory totals keyed by operation name."""

    def __init__(self):
        self._stats: Dict[str, OperationStats] = {}
        self._lock = Lock()

    def record(
        self,
        operation: str,
        duration_ms: float,
        error: Optional[str] = None,
        facts: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Fold one run into the totals.

        ``facts`` is what the run reported about itself: ``result_count`` is
        summed, and every other truthy entry counts as a raised flag.
        """
        facts = facts or {}
        with self._lock:
            stats = self._stats.setdefault(operation, OperationStats())
            stats.count += 1
            stats.total_ms += duration_ms
            stats.max_ms = max(stats.max_ms, duration_ms)
            if error is not None:
                stats.error_count += 1
                stats.last_error = error
                return
            stats.results += int(facts.get("result_count", 0))
            for name, value in facts.items():
                if name != "result_count" and value:
                    stats.flags[name] = stats.flags.get(name, 0) + 1

    def snapshot(self) -> Dict[str, Dict[str, Any]]:
        """Copy of the totals as plain dicts, keyed by operation name."""
        with self._lock:
            return {name: stats.as_dict() for name, stats in sorted(self._stats.items())}

    def reset(self) -> None:
        with self._lock:
            self._stats.clear()


metrics = MetricsCollector()


@contextmanager
def timed_operation(operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """Time a block of work and record it under ``operation``.

    The yielded dict collects facts about the outcome:

        with timed_operation("assemble_context", top_k=5) as op:
            op["result_count"] = len(notes)
            op["fallback"] = True

    ``context`` only decorates the DEBUG log lines.
    """
    run_id = uuid.uuid4().hex[:8]
    facts: Dict[str, Any] = {}
    described = " ".join(f"{k}={v}" for k, v in context.items())
    logger.debug(f"[{run_id}] {operation} started {described}".rstrip())

    started = time.perf_counter()
    error: Optional[str] = None
    try:
        yield facts
    except Exception as e:
        error = f"{type(e).__name__}: {e}"
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.record(operation, elapsed_ms, error=error, facts=facts)
        outcome = error or " ".join(f"{k}={v}" for k, v in facts.items()) or "ok"
        logger.debug(f"[{run_id}] {operation} finished in {elapsed_ms:.1f}ms: {outcome}")


def traced(operation: str) -> Callable[[F], F]:
    """Decorate a store method so each call runs inside ``timed_operation``.

    List results are counted as ``result_count``.
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            with timed_operation(operation) as op:
                result = func(*args, **kwargs)
                if isinstance(result, list):
                    op["result_count"] = len(result)
                return result

        return wrapper  # type: ignore
    return decorator
