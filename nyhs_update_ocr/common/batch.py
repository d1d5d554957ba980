#!/usr/bin/env python3
"""
Batch runner with progress reporting.

A batch is an ordered list of independent operations, each a
(callable, args) pair. The runner works through them in "ticks": one tick
processes operations until a time limit passes, then reports progress. A
failing operation is recorded and the batch carries on with the next one.

Usage:
    batch = Batch(
        title="Extracting text...",
        operations=[(process_result, (nid, action)) for nid in nids],
        progress_message="Processed @current out of @total. Estimated time: @estimate.",
        error_message="The process has encountered an error.",
    )
    report = BatchRunner(messenger=Messenger()).run(batch)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

Operation = Tuple[Callable[..., Any], Tuple[Any, ...]]


def format_message(template: str, values: Dict[str, Any]) -> str:
    """Replace @name placeholders, longest names first."""
    out = template
    for key in sorted(values, key=len, reverse=True):
        out = out.replace(f"@{key}", str(values[key]))
    return out


def format_interval(seconds: float) -> str:
    seconds = int(round(seconds))
    if seconds < 60:
        return f"{seconds} sec"
    minutes, sec = divmod(seconds, 60)
    if minutes < 60:
        return f"{minutes} min {sec} sec"
    hours, minutes = divmod(minutes, 60)
    return f"{hours} hours {minutes} min"


# ============================================================================
# Messenger
# ============================================================================

class Messenger:
    """One-shot operator messages, shown once when flushed."""

    def __init__(self):
        self.messages: List[Tuple[str, str]] = []

    def add_status(self, message: str) -> None:
        self.messages.append(("status", message))

    def add_warning(self, message: str) -> None:
        self.messages.append(("warning", message))

    def add_error(self, message: str) -> None:
        self.messages.append(("error", message))

    def by_type(self, kind: str) -> List[str]:
        return [m for k, m in self.messages if k == kind]

    def flush(self) -> List[Tuple[str, str]]:
        shown = self.messages
        self.messages = []
        for kind, message in shown:
            print(f"[{kind.upper()}] {message}")
        return shown


# ============================================================================
# Batch
# ============================================================================

class UnitStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class UnitError:
    index: int
    args: Tuple[Any, ...]
    error_type: str
    error: str


@dataclass
class BatchReport:
    """Outcome of a batch, complete once finished is True."""
    title: str
    total: int
    succeeded: int = 0
    failed: int = 0
    errors: List[UnitError] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    finished: bool = False

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed


class Batch:
    def __init__(
        self,
        title: str,
        operations: Sequence[Operation],
        progress_message: str = "Completed @current of @total.",
        error_message: str = "An error has occurred.",
        finished: Optional[Callable[[BatchReport], None]] = None,
    ):
        self.title = title
        self.operations: List[Operation] = list(operations)
        self.progress_message = progress_message
        self.error_message = error_message
        self.finished = finished
        self.statuses: List[UnitStatus] = [UnitStatus.PENDING] * len(self.operations)
        self.report = BatchReport(title=title, total=len(self.operations))
        self._cursor = 0
        self._started: Optional[float] = None

    @property
    def total(self) -> int:
        return len(self.operations)

    @property
    def current(self) -> int:
        return self._cursor

    @property
    def is_finished(self) -> bool:
        return self._cursor >= len(self.operations)

    def progress_values(self) -> Dict[str, Any]:
        elapsed = time.monotonic() - self._started if self._started is not None else 0.0
        current, total = self.current, self.total
        if current and total > current:
            estimate = elapsed / current * (total - current)
        else:
            estimate = 0.0
        percentage = int(current * 100 / total) if total else 100
        return {
            "current": current,
            "total": total,
            "remaining": total - current,
            "percentage": percentage,
            "elapsed": format_interval(elapsed),
            "estimate": format_interval(estimate),
        }

    def progress(self) -> str:
        return format_message(self.progress_message, self.progress_values())

    def _run_unit(self, index: int) -> None:
        func, args = self.operations[index]
        self.statuses[index] = UnitStatus.RUNNING
        try:
            func(*args)
        except Exception as e:
            self.statuses[index] = UnitStatus.FAILED
            self.report.failed += 1
            self.report.errors.append(
                UnitError(index=index, args=tuple(args), error_type=type(e).__name__, error=str(e))
            )
            log.error(f"[{index + 1}/{self.total}] {type(e).__name__}: {e}")
            log.debug("Operation failure", exc_info=True)
        else:
            self.statuses[index] = UnitStatus.DONE
            self.report.succeeded += 1

    def process(self, time_limit: float = 1.0) -> bool:
        """
        Run one tick: operations in order until time_limit seconds pass.
        At least one operation runs per tick. time_limit <= 0 runs to the end.

        Returns True once every operation has been attempted.
        """
        if self._started is None:
            self._started = time.monotonic()
        tick_start = time.monotonic()

        while not self.is_finished:
            self._run_unit(self._cursor)
            self._cursor += 1
            if time_limit > 0 and time.monotonic() - tick_start >= time_limit:
                break

        self.report.elapsed_seconds = time.monotonic() - self._started
        if self.is_finished and not self.report.finished:
            self.report.finished = True
            if self.finished is not None:
                self.finished(self.report)
        return self.is_finished


class BatchRunner:
    """Drives a Batch tick by tick until every operation has been attempted."""

    def __init__(
        self,
        messenger: Optional[Messenger] = None,
        time_limit: float = 1.0,
        on_progress: Optional[Callable[[Batch, str], None]] = None,
    ):
        self.messenger = messenger
        self.time_limit = time_limit
        self.on_progress = on_progress

    def run(self, batch: Batch) -> BatchReport:
        log.info(f"{batch.title} ({batch.total} operation(s))")
        while True:
            done = batch.process(self.time_limit)
            message = batch.progress()
            log.info(message)
            if self.on_progress is not None:
                self.on_progress(batch, message)
            if done:
                break

        report = batch.report
        log.info(f"{batch.title} finished: {report.succeeded} succeeded, {report.failed} failed")
        if self.messenger is not None and report.failed:
            self.messenger.add_error(batch.error_message)
            for err in report.errors:
                self.messenger.add_error(f"Operation {err.index + 1} {err.args}: {err.error_type}: {err.error}")
        return report
