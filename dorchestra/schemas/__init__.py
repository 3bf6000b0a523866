"""
dorchestra.schemas - Schema definitions for the orchestration layer.

OrchestrationSpec -> StepDescriptor / CheckDescriptor -> ProgressEvent ->
RunResult / Preview / ReadinessResult

Lifecycle:
1. OrchestrationSpec: Static, versioned spec loaded from a SpecSource
2. StepDescriptor / CheckDescriptor: Read-only units declared by the spec
3. ProgressEvent: Emitted while a run executes
4. RunResult / Preview / ReadinessResult: Returned to the caller
"""

from .descriptors import (
    CheckDescriptor,
    FixAction,
    OnError,
    Severity,
    StepDescriptor,
)
from .spec_def import (
    OrchestrationSpec,
)
from .events import (
    EventKind,
    ProgressEvent,
)
from .results import (
    CheckResult,
    Preview,
    ReadinessResult,
    RunResult,
    StepOutcome,
    StepStatus,
)

__all__ = [
    # Descriptors
    "StepDescriptor",
    "CheckDescriptor",
    "FixAction",
    "OnError",
    "Severity",
    # Spec
    "OrchestrationSpec",
    # Events
    "EventKind",
    "ProgressEvent",
    # Results
    "CheckResult",
    "Preview",
    "ReadinessResult",
    "RunResult",
    "StepOutcome",
    "StepStatus",
]
