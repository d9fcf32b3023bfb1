"""
Optional timing instrumentation for long-running operations.

Components accept an instrumentation sink and wrap their expensive steps in
``begin_op``/``end_op`` pairs. The sink never influences results; the
default ``NullInstrumentation`` does nothing.
"""

import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple

import structlog

from ..config.settings import get_settings

logger = structlog.get_logger()


class Instrumentation(Protocol):
    """Sink for operation timings."""

    def begin_op(self, name: str, category: str = "default") -> None:
        ...

    def end_op(self, name: str, category: str = "default") -> float:
        ...


class NullInstrumentation:
    """Instrumentation sink that records nothing."""

    def begin_op(self, name: str, category: str = "default") -> None:
        return None

    def end_op(self, name: str, category: str = "default") -> float:
        return 0.0


@dataclass
class OperationRecord:
    """A completed operation."""

    name: str
    category: str
    duration: float  # seconds


class OperationTimer:
    """
    Records wall-clock durations of named operations.

    Operations are keyed by ``(category, name)``; the same key may be open
    more than once (nested calls), in which case ``end_op`` closes the most
    recent one. Operations slower than ``threshold_ms`` (the
    ``slow_operation_ms`` setting by default) are logged and passed to
    ``issue_callback``.
    """

    def __init__(
        self,
        threshold_ms: Optional[float] = None,
        issue_callback: Optional[Callable[[OperationRecord], None]] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        if threshold_ms is None:
            threshold_ms = get_settings().slow_operation_ms
        self.threshold_ms = threshold_ms
        self.issue_callback = issue_callback
        self.clock = clock
        self._open: Dict[Tuple[str, str], List[float]] = defaultdict(list)
        self.history: List[OperationRecord] = []

    def begin_op(self, name: str, category: str = "default") -> None:
        self._open[(category, name)].append(self.clock())

    def end_op(self, name: str, category: str = "default") -> float:
        """
        Close an operation and return its duration in seconds.

        Ending an operation that was never started logs a warning and
        returns 0.
        """
        starts = self._open.get((category, name))
        if not starts:
            logger.warning("Operation ended without start", operation=name, category=category)
            return 0.0

        duration = self.clock() - starts.pop()
        record = OperationRecord(name=name, category=category, duration=duration)
        self.history.append(record)

        if duration * 1000.0 > self.threshold_ms:
            logger.warning(
                "Slow operation",
                operation=name,
                category=category,
                duration_ms=round(duration * 1000.0, 3),
            )
            if self.issue_callback is not None:
                self.issue_callback(record)
        else:
            logger.debug("Operation finished", operation=name, category=category, duration=duration)

        return duration

    def average_duration(self, name: str, category: Optional[str] = None) -> float:
        """Mean duration in seconds of all completed runs of ``name``."""
        durations = [
            r.duration
            for r in self.history
            if r.name == name and (category is None or r.category == category)
        ]
        if not durations:
            return 0.0
        return sum(durations) / len(durations)

    def top_operations(self, count: int = 5) -> List[Tuple[str, float]]:
        """Operations with the highest average duration, slowest first."""
        totals: Dict[str, List[float]] = defaultdict(list)
        for record in self.history:
            totals[record.name].append(record.duration)

        averages = [(name, sum(d) / len(d)) for name, d in totals.items()]
        averages.sort(key=lambda item: item[1], reverse=True)
        return averages[: max(0, count)]

    def report(self) -> str:
        """Human readable summary grouped by category."""
        by_category: Dict[str, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
        for record in self.history:
            by_category[record.category][record.name].append(record.duration)

        lines = ["Operation timings"]
        for category in sorted(by_category):
            lines.append(f"[{category}]")
            for name, durations in sorted(by_category[category].items()):
                avg_ms = sum(durations) / len(durations) * 1000.0
                lines.append(f"  {name}: {len(durations)} runs, avg {avg_ms:.2f} ms")
        return "\n".join(lines)

    def clear(self) -> None:
        self._open.clear()
        self.history.clear()


@contextmanager
def measure(
    instrumentation: Optional[Instrumentation], name: str, category: str = "default"
) -> Iterator[None]:
    """Wrap a block in a begin/end pair; ``None`` disables timing."""
    if instrumentation is None:
        yield
        return

    instrumentation.begin_op(name, category)
    try:
        yield
    finally:
        instrumentation.end_op(name, category)
