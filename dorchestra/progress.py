"""
ProgressSink - consumers of progress events.

The orchestrator only emits events; it does not know how they are stored or
displayed. Sinks provided here:
- NullSink: discards events
- CallbackSink: forwards to a plain function
- CollectingSink: keeps events in memory (tests, in-process polling)
- LoggingSink: writes events to the dorchestra logger
- TaskFileSink: persists task state as JSON for a polling UI
- RichProgressSink: renders events on a rich console
- MultiSink: fans out to several sinks

Timing between events is step-dependent and unbounded; consumers must not
assume uniform intervals.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from rich.console import Console

from dorchestra.schemas import EventKind, ProgressEvent

logger = logging.getLogger(__name__)


class ProgressSink(ABC):
    """Abstract base class for progress event consumers."""

    @abstractmethod
    def emit(self, event: ProgressEvent) -> None:
        """
        Consume one event.

        Implementations may raise; the orchestrator logs sink errors and
        keeps running.
        """
        pass


class NullSink(ProgressSink):
    """Discards every event."""

    def emit(self, event: ProgressEvent) -> None:
        return None


class CallbackSink(ProgressSink):
    """Forwards every event to a callable."""

    def __init__(self, callback: Callable[[ProgressEvent], None]):
        self._callback = callback

    def emit(self, event: ProgressEvent) -> None:
        self._callback(event)


class CollectingSink(ProgressSink):
    """
    In-memory sink.

    Thread-safe so a poller on another thread can read while a run emits.
    """

    def __init__(self) -> None:
        self._events: list[ProgressEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[ProgressEvent]:
        with self._lock:
            return list(self._events)

    def of_kind(self, *kinds: EventKind) -> list[ProgressEvent]:
        return [e for e in self.events if e.kind in kinds]

    def messages(self) -> list[str]:
        return [e.message for e in self.events]

    def latest(self) -> Optional[ProgressEvent]:
        with self._lock:
            return self._events[-1] if self._events else None

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class LoggingSink(ProgressSink):
    """Writes events to a logger; failures at error level, skips at warning."""

    def __init__(self, log: Optional[logging.Logger] = None):
        self._log = log or logging.getLogger("dorchestra.progress")

    def emit(self, event: ProgressEvent) -> None:
        if event.kind == EventKind.STEP_FAILED:
            level = logging.ERROR
        elif event.kind == EventKind.STEP_SKIPPED:
            level = logging.WARNING
        else:
            level = logging.INFO
        self._log.log(level, f"[{event.phase}] {event.message}", extra={"event": event.kind.value})


class TaskFileSink(ProgressSink):
    """
    Persists task state as a JSON file a UI can poll.

    File layout:
        {
          "taskId": "...",
          "taskType": "quick_launch",
          "status": "in_progress" | "completed" | "failed" | "cancelled",
          "currentStep": 2,
          "totalSteps": 7,
          "phase": "extract",
          "message": "Extracting teaching points...",
          "completedSteps": ["create"],
          "warnings": [...],
          "events": [...],
          "updatedAt": "..."
        }

    The whole file is rewritten on each event (write to a temp file, then
    rename) so a reader never sees a partial document.
    """

    def __init__(
        self,
        path: Path | str,
        task_id: str,
        task_type: str = "orchestration",
        keep_events: int = 200,
    ):
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._keep_events = keep_events
        self._lock = threading.Lock()
        self._state: dict[str, Any] = {
            "taskId": task_id,
            "taskType": task_type,
            "status": "in_progress",
            "currentStep": 0,
            "totalSteps": None,
            "phase": None,
            "message": None,
            "completedSteps": [],
            "warnings": [],
            "events": [],
            "startedAt": datetime.now(timezone.utc).isoformat(),
        }

    @property
    def path(self) -> Path:
        return self._path

    def emit(self, event: ProgressEvent) -> None:
        with self._lock:
            state = self._state
            state["phase"] = event.phase
            state["message"] = event.message
            if event.total_steps is not None:
                state["totalSteps"] = event.total_steps
            if event.step_index is not None:
                state["currentStep"] = event.step_index + 1

            if event.kind == EventKind.STEP_SUCCESS:
                state["completedSteps"].append(event.phase)
            elif event.kind == EventKind.STEP_SKIPPED:
                state["warnings"].append(event.message)
            elif event.kind == EventKind.STEP_FAILED:
                state["status"] = "failed"
                state["error"] = event.message
            elif event.kind == EventKind.RUN_COMPLETE:
                state["status"] = "completed"
                if event.data is not None:
                    state["result"] = event.data
            elif event.kind == EventKind.RUN_CANCELLED:
                state["status"] = "cancelled"

            state["events"].append(event.to_dict())
            if len(state["events"]) > self._keep_events:
                state["events"] = state["events"][-self._keep_events:]
            state["updatedAt"] = datetime.now(timezone.utc).isoformat()
            self._write(state)

    def _write(self, state: dict[str, Any]) -> None:
        tmp_path = self._path.with_suffix(self._path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(state, f, indent=2, default=str)
        tmp_path.replace(self._path)

    @staticmethod
    def read(path: Path | str) -> Optional[dict[str, Any]]:
        """Read a task file, returning None when it does not exist yet."""
        path = Path(path)
        if not path.exists():
            return None
        with open(path) as f:
            return json.load(f)


class RichProgressSink(ProgressSink):
    """Renders progress on a rich console for the CLI."""

    _STYLES = {
        EventKind.RUN_START: ("bold blue", "▶"),
        EventKind.STEP_START: ("cyan", "…"),
        EventKind.STEP_UPDATE: ("dim", " "),
        EventKind.STEP_SUCCESS: ("green", "✓"),
        EventKind.STEP_FAILED: ("bold red", "✗"),
        EventKind.STEP_SKIPPED: ("yellow", "⚠"),
        EventKind.RUN_COMPLETE: ("bold green", "■"),
        EventKind.RUN_CANCELLED: ("bold yellow", "■"),
    }

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    def emit(self, event: ProgressEvent) -> None:
        style, marker = self._STYLES.get(event.kind, ("", " "))
        position = ""
        if event.step_index is not None and event.total_steps:
            position = f"[{event.step_index + 1}/{event.total_steps}] "
        self._console.print(f"[{style}]{marker}[/{style}] {position}{event.message}", highlight=False)


class MultiSink(ProgressSink):
    """Fans one event out to several sinks; one failing sink does not starve the rest."""

    def __init__(self, *sinks: ProgressSink):
        self._sinks = [s for s in sinks if s is not None]

    def emit(self, event: ProgressEvent) -> None:
        for sink in self._sinks:
            try:
                sink.emit(event)
            except Exception:
                logger.exception(f"Progress sink {type(sink).__name__} failed")
