"""
Two-phase saga: analyze -> human review -> commit.

The steps of one spec are split into an analyze prefix and a commit remainder.
Analyze runs on a fresh context and freezes its public results into a Preview.
A human may then override individual fields. Commit runs the remaining steps on
a second fresh context seeded with merge_overrides(preview, overrides), so
what commit sees is reproducible from (preview, overrides) alone.

Overrides replace whole fields. Nested values are not merged.
"""

import copy
import logging
from typing import Any, Callable, Iterable, Mapping, Optional

from dorchestra.context import OrchestrationContext
from dorchestra.executor import CancellationToken, SequentialOrchestrator, order_steps
from dorchestra.progress import ProgressSink
from dorchestra.schemas import Preview, RunResult, StepDescriptor

logger = logging.getLogger(__name__)

Summarizer = Callable[[Mapping[str, Any]], dict[str, Any]]

PHASE_ANALYZE = "analyze"
PHASE_COMMIT = "commit"


def count_summary(fields: Mapping[str, Any]) -> dict[str, Any]:
    """Default summary: item counts of list-valued fields."""
    return {
        f"{key}Count": len(value)
        for key, value in fields.items()
        if isinstance(value, (list, tuple))
    }


def merge_overrides(preview: Preview, overrides: Optional[Mapping[str, Any]]) -> dict[str, Any]:
    """
    Field-level merge: every override key wins unconditionally.

    Pure function; neither argument is mutated.
    """
    merged = copy.deepcopy(dict(preview.fields))
    merged.update(copy.deepcopy(dict(overrides or {})))
    return merged


class TwoPhaseSaga:
    """
    Splits a spec into analyze and commit phases and runs each separately.

    A step belongs to analyze if its descriptor says phase "analyze", or, when
    it declares no phase, if its operation is one of analyze_operations.
    """

    def __init__(
        self,
        orchestrator: SequentialOrchestrator,
        analyze_operations: Iterable[str] = (),
        summarizer: Optional[Summarizer] = None,
    ):
        self._orchestrator = orchestrator
        self._analyze_operations = frozenset(analyze_operations)
        self._summarizer = summarizer or count_summary

    @property
    def analyze_operations(self) -> frozenset[str]:
        return self._analyze_operations

    def is_analyze_step(self, step: StepDescriptor) -> bool:
        if step.phase is not None:
            return step.phase == PHASE_ANALYZE
        return step.operation in self._analyze_operations

    def split(
        self, steps: Iterable[StepDescriptor]
    ) -> tuple[list[StepDescriptor], list[StepDescriptor]]:
        """Partition steps into (analyze, commit), both in ascending order."""
        ordered = order_steps(steps)
        analyze = [s for s in ordered if self.is_analyze_step(s)]
        commit = [s for s in ordered if not self.is_analyze_step(s)]
        return analyze, commit

    def analyze(
        self,
        steps: Iterable[StepDescriptor],
        input: Mapping[str, Any],
        sink: Optional[ProgressSink] = None,
        spec_slug: str = "",
        cancel_token: Optional[CancellationToken] = None,
    ) -> Preview:
        """
        Run the analyze steps and freeze their output into a Preview.

        Raises:
            StepExecutionError: If an analyze step with onError=abort fails
        """
        analyze_steps, _ = self.split(steps)
        context = OrchestrationContext(input=input, spec_slug=spec_slug)
        logger.info(
            f"Analyze phase: {len(analyze_steps)} steps",
            extra={"run_id": context.run_id, "spec": spec_slug},
        )
        result = self._orchestrator.run(
            analyze_steps,
            context,
            sink=sink,
            cancel_token=cancel_token,
            title=f"{spec_slug or 'run'} analysis",
        )
        fields = copy.deepcopy(result.results)
        return Preview(
            spec_slug=spec_slug,
            input=copy.deepcopy(dict(input)),
            fields=fields,
            summary=self._summarizer(fields),
            warnings=tuple(result.warnings),
        )

    def commit(
        self,
        steps: Iterable[StepDescriptor],
        preview: Preview,
        overrides: Optional[Mapping[str, Any]] = None,
        input: Optional[Mapping[str, Any]] = None,
        sink: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """
        Run the commit steps against the reviewed preview.

        Args:
            steps: All steps of the spec; analyze steps are skipped
            preview: Output of analyze()
            overrides: Reviewer edits, keyed by field name
            input: Caller input (defaults to the preview's input)

        Raises:
            StepExecutionError: If a commit step with onError=abort fails
        """
        _, commit_steps = self.split(steps)
        context = OrchestrationContext(
            input=preview.input if input is None else input,
            results=merge_overrides(preview, overrides),
            warnings=list(preview.warnings),
            spec_slug=preview.spec_slug,
        )
        logger.info(
            f"Commit phase: {len(commit_steps)} steps, {len(overrides or {})} override(s)",
            extra={"run_id": context.run_id, "spec": preview.spec_slug},
        )
        return self._orchestrator.run(
            commit_steps,
            context,
            sink=sink,
            cancel_token=cancel_token,
            title=preview.spec_slug or "commit",
        )
