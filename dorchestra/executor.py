"""
Executor - Sequential step dispatch and execution engine.

The SequentialOrchestrator implements:
- Handler dispatch by operation name via StepRegistry
- Per-step failure policy (abort vs continue)
- Progress events before and after every step
- Cooperative cancellation between steps
- Step outcome tracking

Execution flow:
1. Emit run_start
2. For each step, in ascending `order`:
   a. Stop if the cancellation token is set
   b. Emit step_start with the step's progressMessage
   c. Resolve the handler and invoke it with (context, descriptor)
   d. Success: emit step_success ("<name> ✓")
   e. Failure, onError=abort: emit step_failed, raise StepExecutionError
   f. Failure, onError=continue: record "<name>: <message>" as a warning,
      emit step_skipped, move on
3. Emit run_complete and return a RunResult

Exactly one step runs at a time; step N+1 never starts before step N's handler
has returned or its failure has been recorded. An unknown operation is handled
exactly like a handler that raised.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Iterable, Optional

from dorchestra.context import OrchestrationContext
from dorchestra.errors import StepExecutionError
from dorchestra.handlers import StepRegistry
from dorchestra.progress import NullSink, ProgressSink
from dorchestra.schemas import (
    EventKind,
    ProgressEvent,
    RunResult,
    StepDescriptor,
    StepOutcome,
    StepStatus,
)
from dorchestra.utils import sanitize_error_message

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def order_steps(steps: Iterable[StepDescriptor]) -> list[StepDescriptor]:
    """Sort by `order`; Python's sort is stable so ties keep declaration order."""
    return sorted(steps, key=lambda s: s.order)


class CancellationToken:
    """
    Cooperative cancellation signal, checked between steps.

    Handlers are opaque, so a step already running is never interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()
        self.reason: Optional[str] = None

    def cancel(self, reason: Optional[str] = None) -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class SequentialOrchestrator:
    """
    Runs an ordered list of StepDescriptors against one OrchestrationContext.

    Usage:
        registry = StepRegistry.create_default()
        orchestrator = SequentialOrchestrator(registry.freeze())
        result = orchestrator.run(steps, OrchestrationContext(input={...}))
    """

    def __init__(self, registry: StepRegistry, sink: Optional[ProgressSink] = None):
        """
        Initialize the orchestrator.

        Args:
            registry: StepRegistry used to resolve operation names
            sink: Default ProgressSink (NullSink when omitted)
        """
        self._registry = registry
        self._sink = sink or NullSink()

    @property
    def registry(self) -> StepRegistry:
        return self._registry

    def run(
        self,
        steps: Iterable[StepDescriptor],
        context: OrchestrationContext,
        sink: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
        title: Optional[str] = None,
    ) -> RunResult:
        """
        Execute steps in order against the context.

        Args:
            steps: Step descriptors (sorted by `order` before running)
            context: Fresh context owned by this run
            sink: ProgressSink for this run (overrides the default)
            cancel_token: Optional token checked between steps
            title: Human title for run-level messages (defaults to spec slug)

        Returns:
            RunResult with public results, warnings, and step outcomes

        Raises:
            StepExecutionError: If a step with onError=abort fails
        """
        sink = sink or self._sink
        ordered = order_steps(steps)
        total = len(ordered)
        title = title or context.spec_slug or "run"
        outcomes: list[StepOutcome] = []
        log_extra = {"run_id": context.run_id, "spec": context.spec_slug}

        logger.info(f"Starting {title}: {total} steps (run_id={context.run_id})", extra=log_extra)
        self._emit(sink, ProgressEvent(
            phase="init",
            message=f"Starting {title} ({total} steps)...",
            kind=EventKind.RUN_START,
            total_steps=total,
        ))

        try:
            for index, step in enumerate(ordered):
                if cancel_token is not None and cancel_token.cancelled:
                    return self._cancelled(sink, context, ordered, index, outcomes, cancel_token)

                context.set_active_step(step.id)
                context.bind(self._update_emitter(sink, index, total))
                self._emit(sink, ProgressEvent(
                    phase=step.id,
                    message=step.progress_message,
                    kind=EventKind.STEP_START,
                    step_index=index,
                    total_steps=total,
                ))

                started_at = _utcnow()
                try:
                    handler = self._registry.get(step.operation)
                    handler(context, step)
                except Exception as e:
                    completed_at = _utcnow()
                    message = str(e) or type(e).__name__
                    error_info = {"type": type(e).__name__, "message": message}

                    if step.aborts_on_error:
                        logger.error(
                            f"Step '{step.id}' failed (abort): {sanitize_error_message(e)}",
                            extra={**log_extra, "step": step.id},
                        )
                        outcomes.append(StepOutcome(
                            step_id=step.id,
                            status=StepStatus.FAILED,
                            started_at=started_at,
                            completed_at=completed_at,
                            error=error_info,
                        ))
                        self._emit(sink, ProgressEvent(
                            phase=step.id,
                            message=f"Failed: {message}",
                            kind=EventKind.STEP_FAILED,
                            step_index=index,
                            total_steps=total,
                        ))
                        outcomes.extend(
                            StepOutcome(step_id=s.id, status=StepStatus.NOT_RUN)
                            for s in ordered[index + 1:]
                        )
                        error = StepExecutionError(step.id, step.name, message, cause=e)
                        error.partial_result = self._result(context, outcomes, success=False)
                        raise error from e

                    logger.warning(
                        f"Step '{step.id}' failed (continue): {sanitize_error_message(e)}",
                        extra={**log_extra, "step": step.id},
                    )
                    context.warn(f"{step.name}: {message}")
                    outcomes.append(StepOutcome(
                        step_id=step.id,
                        status=StepStatus.SKIPPED,
                        started_at=started_at,
                        completed_at=completed_at,
                        error=error_info,
                    ))
                    self._emit(sink, ProgressEvent(
                        phase=step.id,
                        message=f"{step.name} — skipped ({message})",
                        kind=EventKind.STEP_SKIPPED,
                        step_index=index,
                        total_steps=total,
                    ))
                    continue

                outcomes.append(StepOutcome(
                    step_id=step.id,
                    status=StepStatus.COMPLETED,
                    started_at=started_at,
                    completed_at=_utcnow(),
                ))
                logger.info(f"Step '{step.id}' completed", extra={**log_extra, "step": step.id})
                self._emit(sink, ProgressEvent(
                    phase=step.id,
                    message=f"{step.name} ✓",
                    kind=EventKind.STEP_SUCCESS,
                    step_index=index,
                    total_steps=total,
                ))
        finally:
            context.set_active_step(None)
            context.bind(None)

        result = self._result(context, outcomes, success=True)
        logger.info(
            f"{title} complete with {len(result.warnings)} warning(s)", extra=log_extra
        )
        self._emit(sink, ProgressEvent(
            phase="ready",
            message=f"{title} complete!",
            kind=EventKind.RUN_COMPLETE,
            total_steps=total,
            data=result.results,
        ))
        return result

    def _cancelled(
        self,
        sink: ProgressSink,
        context: OrchestrationContext,
        ordered: list[StepDescriptor],
        index: int,
        outcomes: list[StepOutcome],
        token: CancellationToken,
    ) -> RunResult:
        next_step = ordered[index]
        logger.warning(
            f"Run cancelled before step '{next_step.id}'",
            extra={"run_id": context.run_id, "spec": context.spec_slug},
        )
        outcomes.extend(
            StepOutcome(step_id=s.id, status=StepStatus.NOT_RUN) for s in ordered[index:]
        )
        reason = f": {token.reason}" if token.reason else ""
        self._emit(sink, ProgressEvent(
            phase=next_step.id,
            message=f"Cancelled before {next_step.name}{reason}",
            kind=EventKind.RUN_CANCELLED,
            step_index=index,
            total_steps=len(ordered),
        ))
        result = self._result(context, outcomes, success=False)
        result.cancelled = True
        return result

    def _update_emitter(self, sink: ProgressSink, index: int, total: int):
        """Emitter handed to the context so handlers can publish step updates."""
        def emit(event: ProgressEvent) -> None:
            self._emit(sink, ProgressEvent(
                phase=event.phase,
                message=event.message,
                kind=event.kind,
                step_index=index,
                total_steps=total,
                data=event.data,
                timestamp=event.timestamp,
            ))
        return emit

    @staticmethod
    def _result(
        context: OrchestrationContext,
        outcomes: list[StepOutcome],
        success: bool,
    ) -> RunResult:
        return RunResult(
            spec_slug=context.spec_slug,
            run_id=context.run_id,
            success=success,
            results=context.public_results(),
            warnings=list(context.warnings),
            step_outcomes=list(outcomes),
        )

    @staticmethod
    def _emit(sink: ProgressSink, event: ProgressEvent) -> None:
        """Deliver an event; a failing sink is logged and never breaks the run."""
        try:
            sink.emit(event)
        except Exception:
            logger.exception(f"Progress sink failed on event '{event.kind.value}' ({event.phase})")
