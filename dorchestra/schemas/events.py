"""
ProgressEvent schema - point-in-time run status for external observers.

Events are flat and serializable. Consumers should treat absent optional
fields as "no new information".
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class EventKind(str, Enum):
    """Where in the run lifecycle an event was emitted."""
    RUN_START = "run_start"
    STEP_START = "step_start"
    STEP_UPDATE = "step_update"
    STEP_SUCCESS = "step_success"
    STEP_FAILED = "step_failed"
    STEP_SKIPPED = "step_skipped"
    RUN_COMPLETE = "run_complete"
    RUN_CANCELLED = "run_cancelled"

    @property
    def is_step_terminal(self) -> bool:
        return self in (EventKind.STEP_SUCCESS, EventKind.STEP_FAILED, EventKind.STEP_SKIPPED)


@dataclass(frozen=True)
class ProgressEvent:
    """
    A progress event.

    Attributes:
        phase: Usually the active step's id ("init" and "ready" bracket a run)
        message: Human-readable status line
        kind: Lifecycle position of the event
        step_index: Zero-based index of the active step
        total_steps: Number of steps in the run
        data: Structured payload for progressive rendering
        timestamp: When the event was emitted
    """
    phase: str
    message: str
    kind: EventKind = EventKind.STEP_UPDATE
    step_index: Optional[int] = None
    total_steps: Optional[int] = None
    data: Optional[dict[str, Any]] = None
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the flat wire record, omitting absent optional fields."""
        result: dict[str, Any] = {
            "phase": self.phase,
            "message": self.message,
            "kind": self.kind.value,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.step_index is not None:
            result["stepIndex"] = self.step_index
        if self.total_steps is not None:
            result["totalSteps"] = self.total_steps
        if self.data is not None:
            result["data"] = self.data
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProgressEvent":
        timestamp = data.get("timestamp")
        return cls(
            phase=data["phase"],
            message=data.get("message", ""),
            kind=EventKind(data.get("kind", EventKind.STEP_UPDATE.value)),
            step_index=data.get("stepIndex"),
            total_steps=data.get("totalSteps"),
            data=data.get("data"),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else _utcnow(),
        )
