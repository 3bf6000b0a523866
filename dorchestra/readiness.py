"""
Readiness evaluation - independent checks run concurrently, then scored.

Each CheckDescriptor is resolved through the CheckRegistry and run against a
read-only snapshot of the context. Checks never see each other's results, so
they are fanned out on a thread pool and gathered back in declaration order.

A check that cannot run (unknown query, executor raised) becomes a failing
CheckResult; evaluation itself never raises for check failures and never
short-circuits.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Iterable, Mapping, Optional, Union

from dorchestra.context import OrchestrationContext
from dorchestra.errors import UnknownOperationError
from dorchestra.handlers import CheckRegistry
from dorchestra.schemas import CheckDescriptor, CheckResult, ReadinessResult, Severity
from dorchestra.utils import resolve_template

logger = logging.getLogger(__name__)

LEVEL_READY = "ready"
LEVEL_ALMOST = "almost"
LEVEL_INCOMPLETE = "incomplete"


def compute_score(passed: int, total: int) -> int:
    """Percentage of passing checks, rounded half-up; 0 when there are none."""
    if total == 0:
        return 0
    return int(math.floor(100 * passed / total + 0.5))


def compute_verdict(
    checks: Iterable[CheckResult],
    spec_slug: str = "",
    subject: Optional[str] = None,
) -> ReadinessResult:
    """
    Aggregate check results into a ReadinessResult.

    ready is true when every critical check passes. level is "ready" when
    critical and recommended all pass, "almost" when only recommended checks
    fail, and "incomplete" when any critical check fails. Optional checks
    count toward the score only.
    """
    checks = tuple(checks)
    critical = [c for c in checks if c.severity == Severity.CRITICAL]
    recommended = [c for c in checks if c.severity == Severity.RECOMMENDED]
    critical_passed = sum(1 for c in critical if c.passed)
    recommended_passed = sum(1 for c in recommended if c.passed)
    passed = sum(1 for c in checks if c.passed)

    all_critical = critical_passed == len(critical)
    all_recommended = recommended_passed == len(recommended)

    if all_critical and all_recommended:
        level = LEVEL_READY
    elif all_critical:
        level = LEVEL_ALMOST
    else:
        level = LEVEL_INCOMPLETE

    return ReadinessResult(
        spec_slug=spec_slug,
        ready=all_critical,
        score=compute_score(passed, len(checks)),
        level=level,
        checks=checks,
        critical_passed=critical_passed,
        critical_total=len(critical),
        recommended_passed=recommended_passed,
        recommended_total=len(recommended),
        subject=subject,
    )


class ParallelCheckEngine:
    """
    Runs readiness checks concurrently and scores them.

    Usage:
        engine = ParallelCheckEngine(CheckRegistry.create_default(store))
        verdict = engine.evaluate(checks, {"domainId": "d-1"})
    """

    def __init__(self, registry: CheckRegistry, max_workers: Optional[int] = None):
        """
        Initialize the check engine.

        Args:
            registry: CheckRegistry used to resolve query names
            max_workers: Thread pool size (defaults to one worker per check, capped at 16)
        """
        self._registry = registry
        self._max_workers = max_workers

    @property
    def registry(self) -> CheckRegistry:
        return self._registry

    def evaluate(
        self,
        checks: Iterable[CheckDescriptor],
        context: Union[OrchestrationContext, Mapping[str, Any], None] = None,
        spec_slug: str = "",
        subject: Optional[str] = None,
    ) -> ReadinessResult:
        """
        Run every check and compute the verdict.

        Args:
            checks: Check descriptors, in declaration order
            context: OrchestrationContext or plain mapping of variables
            spec_slug: Spec the checks were resolved from
            subject: Optional identifier of the entity being evaluated

        Returns:
            ReadinessResult whose checks follow declaration order
        """
        checks = list(checks)
        snapshot = self._snapshot(context)
        if not spec_slug and isinstance(context, OrchestrationContext):
            spec_slug = context.spec_slug

        if checks:
            workers = self._max_workers or min(len(checks), 16)
            with ThreadPoolExecutor(max_workers=workers) as executor:
                results = list(executor.map(lambda c: self.run_check(c, snapshot), checks))
        else:
            results = []

        verdict = compute_verdict(results, spec_slug=spec_slug, subject=subject)
        logger.info(
            f"Readiness {spec_slug or '(inline)'}: {verdict.level} "
            f"score={verdict.score} critical={verdict.critical_passed}/{verdict.critical_total}",
            extra={"spec": spec_slug},
        )
        return verdict

    def run_check(self, check: CheckDescriptor, snapshot: Mapping[str, Any]) -> CheckResult:
        """Run one check; failures to run become a failing result."""
        try:
            passed, detail = self._registry.dispatch(snapshot, check)
        except UnknownOperationError:
            passed, detail = False, f'Unknown check query: "{check.query}"'
        except Exception as e:
            logger.warning(f"Check '{check.id}' raised: {e}", extra={"step": check.id})
            passed, detail = False, f"Check failed: {e}"

        fix_action = None
        if check.fix_action is not None:
            fix_action = {
                "label": check.fix_action.label,
                "href": resolve_template(check.fix_action.href_template, snapshot),
            }

        return CheckResult(
            id=check.id,
            name=check.name,
            description=check.description,
            severity=check.severity,
            passed=passed,
            detail=detail,
            fix_action=fix_action,
        )

    @staticmethod
    def _snapshot(context: Union[OrchestrationContext, Mapping[str, Any], None]) -> Mapping[str, Any]:
        if context is None:
            return OrchestrationContext().snapshot()
        if isinstance(context, OrchestrationContext):
            return context.snapshot()
        return OrchestrationContext(input=context).snapshot()
