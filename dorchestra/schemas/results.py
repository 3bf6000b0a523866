"""
Result schemas - what a run, a preview, or a readiness evaluation returns.

StepOutcome tracks the result of executing a single step within a run.
RunResult is returned by full and commit runs.
Preview is the immutable, serializable output of an analyze run.
CheckResult / ReadinessResult are returned by readiness evaluation.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from .descriptors import Severity


class StepStatus(str, Enum):
    """Status of a step execution."""
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    NOT_RUN = "not_run"


@dataclass(frozen=True)
class StepOutcome:
    """
    The outcome of executing a single step.

    Attributes:
        step_id: Identifier of the step
        status: completed, failed (abort), skipped (continue), or not_run
        started_at: When the handler was invoked
        completed_at: When the handler returned or raised
        error: Error details if the handler failed
    """
    step_id: str
    status: StepStatus
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[dict[str, Any]] = None

    @property
    def duration_ms(self) -> Optional[int]:
        """Calculate execution duration in milliseconds if both timestamps present."""
        if self.started_at and self.completed_at:
            delta = self.completed_at - self.started_at
            return int(delta.total_seconds() * 1000)
        return None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "step_id": self.step_id,
            "status": self.status.value,
        }
        if self.started_at is not None:
            result["started_at"] = self.started_at.isoformat()
        if self.completed_at is not None:
            result["completed_at"] = self.completed_at.isoformat()
        if self.error is not None:
            result["error"] = self.error
        return result


@dataclass
class RunResult:
    """
    Result of a sequential run.

    A run that only hit continue failures is successful with non-empty
    warnings. A run stopped by an abort step raises StepExecutionError instead
    of returning; a cancelled run returns with cancelled=True.
    """
    spec_slug: str
    run_id: str
    success: bool = True
    results: dict[str, Any] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    step_outcomes: list[StepOutcome] = field(default_factory=list)
    cancelled: bool = False

    @property
    def has_warnings(self) -> bool:
        return bool(self.warnings)

    def get_outcome(self, step_id: str) -> Optional[StepOutcome]:
        for outcome in self.step_outcomes:
            if outcome.step_id == step_id:
                return outcome
        return None

    def skipped_steps(self) -> list[str]:
        return [o.step_id for o in self.step_outcomes if o.status == StepStatus.SKIPPED]

    def to_dict(self) -> dict[str, Any]:
        result = {
            "spec": self.spec_slug,
            "run_id": self.run_id,
            "success": self.success,
            "results": self.results,
            "warnings": self.warnings,
            "steps": [o.to_dict() for o in self.step_outcomes],
        }
        if self.cancelled:
            result["cancelled"] = True
        return result


@dataclass(frozen=True)
class Preview:
    """
    Serializable snapshot produced by the analyze phase.

    Attributes:
        spec_slug: Spec the preview was computed from
        input: Caller input the analyze phase ran with
        fields: Public results of the analyze phase
        summary: Computed summary for human review (counts, breakdowns)
        warnings: Soft failures recorded during analysis
    """
    spec_slug: str
    input: dict[str, Any] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)
    summary: dict[str, Any] = field(default_factory=dict)
    warnings: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict[str, Any]:
        return {
            "spec": self.spec_slug,
            "input": copy.deepcopy(self.input),
            "fields": copy.deepcopy(self.fields),
            "summary": copy.deepcopy(self.summary),
            "warnings": list(self.warnings),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Preview":
        return cls(
            spec_slug=data["spec"],
            input=dict(data.get("input", {})),
            fields=dict(data.get("fields", {})),
            summary=dict(data.get("summary", {})),
            warnings=tuple(data.get("warnings", [])),
        )


@dataclass(frozen=True)
class CheckResult:
    """The outcome of one readiness check."""
    id: str
    name: str
    description: str
    severity: Severity
    passed: bool
    detail: str
    fix_action: Optional[dict[str, str]] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "severity": self.severity.value,
            "passed": self.passed,
            "detail": self.detail,
        }
        if self.fix_action is not None:
            result["fixAction"] = self.fix_action
        return result


@dataclass(frozen=True)
class ReadinessResult:
    """
    Severity-weighted readiness verdict.

    level is "ready" when every critical and recommended check passes,
    "almost" when only recommended checks fail, "incomplete" otherwise.
    ready is true whenever every critical check passes.
    """
    spec_slug: str
    ready: bool
    score: int
    level: str
    checks: tuple[CheckResult, ...]
    critical_passed: int
    critical_total: int
    recommended_passed: int
    recommended_total: int
    subject: Optional[str] = None

    def failed_checks(self) -> tuple[CheckResult, ...]:
        return tuple(c for c in self.checks if not c.passed)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "spec": self.spec_slug,
            "ready": self.ready,
            "score": self.score,
            "level": self.level,
            "checks": [c.to_dict() for c in self.checks],
            "criticalPassed": self.critical_passed,
            "criticalTotal": self.critical_total,
            "recommendedPassed": self.recommended_passed,
            "recommendedTotal": self.recommended_total,
        }
        if self.subject is not None:
            result["subject"] = self.subject
        return result
