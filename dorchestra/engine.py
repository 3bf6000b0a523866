"""
Engine - the entrypoints callers use.

Ties a SpecSource to the step and check registries:

    engine = Engine.from_config(load_config())
    result = engine.run_all("QUICK-LAUNCH-001", {"subjectName": "...", ...})

    preview = engine.analyze("QUICK-LAUNCH-001", input)
    result = engine.commit("QUICK-LAUNCH-001", preview, {"domainName": "..."})

    verdict = engine.evaluate("DOMAIN-READY-001", {"domainId": result.results["domainId"]})

Spec resolution always happens before any handler runs, so a missing or
malformed spec raises without side effects.
"""

import logging
from typing import Any, Mapping, Optional, Union

from dorchestra.config import DorchestraConfig
from dorchestra.context import OrchestrationContext
from dorchestra.errors import ConfigurationError
from dorchestra.executor import CancellationToken, SequentialOrchestrator
from dorchestra.handlers import CheckRegistry, StepRegistry
from dorchestra.progress import ProgressSink
from dorchestra.readiness import ParallelCheckEngine
from dorchestra.registry import SpecRegistry, SpecSource
from dorchestra.saga import Summarizer, TwoPhaseSaga
from dorchestra.schemas import Preview, ReadinessResult, RunResult

logger = logging.getLogger(__name__)


class Engine:
    """
    Runs specs resolved from a SpecSource.

    Registries are frozen on construction; register handlers before building
    the engine.
    """

    def __init__(
        self,
        spec_source: SpecSource,
        step_registry: StepRegistry,
        check_registry: Optional[CheckRegistry] = None,
        sink: Optional[ProgressSink] = None,
        analyze_operations: Optional[list[str]] = None,
        summarizer: Optional[Summarizer] = None,
        max_check_workers: Optional[int] = None,
    ):
        self._spec_source = spec_source
        self._step_registry = step_registry.freeze()
        self._check_registry = (check_registry or CheckRegistry()).freeze()
        self._orchestrator = SequentialOrchestrator(self._step_registry, sink=sink)
        self._saga = TwoPhaseSaga(
            self._orchestrator,
            analyze_operations=analyze_operations or [],
            summarizer=summarizer,
        )
        self._checks = ParallelCheckEngine(self._check_registry, max_workers=max_check_workers)

    @property
    def spec_source(self) -> SpecSource:
        return self._spec_source

    @property
    def step_registry(self) -> StepRegistry:
        return self._step_registry

    @property
    def check_registry(self) -> CheckRegistry:
        return self._check_registry

    @property
    def saga(self) -> TwoPhaseSaga:
        return self._saga

    def run_all(
        self,
        spec_slug: str,
        input: Mapping[str, Any],
        sink: Optional[ProgressSink] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> RunResult:
        """
        Run every step of a spec in one pass.

        Raises:
            SpecNotFoundError / SpecMalformedError: Before any step runs
            StepExecutionError: If a step with onError=abort fails
        """
        spec = self._spec_source.load(spec_slug)
        steps = self._spec_source.load_steps(spec_slug)
        context = OrchestrationContext(input=input, spec_slug=spec.slug)
        return self._orchestrator.run(
            steps, context, sink=sink, cancel_token=cancel_token, title=spec.title
        )

    def analyze(
        self,
        spec_slug: str,
        input: Mapping[str, Any],
        sink: Optional[ProgressSink] = None,
    ) -> Preview:
        """Run the analyze phase of a spec and return the reviewable Preview."""
        spec = self._spec_source.load(spec_slug)
        steps = self._spec_source.load_steps(spec_slug)
        return self._saga.analyze(steps, input, sink=sink, spec_slug=spec.slug)

    def commit(
        self,
        spec_slug: str,
        preview: Preview,
        overrides: Optional[Mapping[str, Any]] = None,
        input: Optional[Mapping[str, Any]] = None,
        sink: Optional[ProgressSink] = None,
    ) -> RunResult:
        """
        Run the commit phase against a reviewed Preview.

        Raises:
            ConfigurationError: If the preview was produced by a different spec
            StepExecutionError: If a commit step with onError=abort fails
        """
        spec = self._spec_source.load(spec_slug)
        if preview.spec_slug and preview.spec_slug.lower() != spec.slug.lower():
            raise ConfigurationError(
                f"Preview was produced by {preview.spec_slug}, cannot commit it against {spec.slug}"
            )
        steps = self._spec_source.load_steps(spec_slug)
        return self._saga.commit(steps, preview, overrides, input=input, sink=sink)

    def evaluate(
        self,
        spec_slug: str,
        context: Union[OrchestrationContext, Mapping[str, Any], None] = None,
        subject: Optional[str] = None,
    ) -> ReadinessResult:
        """Run every readiness check of a spec and score the result."""
        spec = self._spec_source.load(spec_slug)
        checks = self._spec_source.load_checks(spec_slug)
        return self._checks.evaluate(checks, context, spec_slug=spec.slug, subject=subject)

    def validate(self, spec_slug: str) -> list[str]:
        """
        List the names a spec references that nothing is registered for.

        Returns an empty list when every step operation and check query
        resolves.
        """
        spec = self._spec_source.load(spec_slug)
        problems = [
            f'Unknown step operation: "{op}"'
            for op in spec.operations()
            if not self._step_registry.has(op)
        ]
        problems.extend(
            f'Unknown check query: "{q}"'
            for q in spec.queries()
            if not self._check_registry.has(q)
        )
        if not spec.steps and not spec.checks:
            problems.append("Spec declares no steps and no checks")
        return problems

    @classmethod
    def from_config(
        cls,
        config: DorchestraConfig,
        store=None,
        collaborators=None,
        sink: Optional[ProgressSink] = None,
    ) -> "Engine":
        """
        Build an engine from configuration with the built-in domain handlers.

        Args:
            config: Loaded DorchestraConfig
            store: DomainStore (defaults to a JsonFileDomainStore at config.store_path)
            collaborators: Collaborators bundle (defaults to the offline NoOps)
            sink: Default ProgressSink
        """
        from dorchestra.domain import JsonFileDomainStore, compute_assertion_summary

        if store is None:
            store = JsonFileDomainStore(config.store_path)
        logger.debug(f"Building engine from {config!r}")
        return cls(
            SpecRegistry(config.definitions_dir),
            StepRegistry.create_default(store=store, collaborators=collaborators),
            CheckRegistry.create_default(store=store),
            sink=sink,
            analyze_operations=config.analyze_operations,
            summarizer=compute_assertion_summary,
            max_check_workers=config.max_check_workers,
        )
