"""Tests for parallel readiness evaluation and scoring."""

import threading

import pytest

from dorchestra.context import OrchestrationContext
from dorchestra.handlers import CheckOutcome, CheckRegistry
from dorchestra.readiness import (
    LEVEL_ALMOST,
    LEVEL_INCOMPLETE,
    LEVEL_READY,
    ParallelCheckEngine,
    compute_score,
    compute_verdict,
)
from dorchestra.schemas import CheckDescriptor, CheckResult, FixAction, Severity


def _check(check_id, severity, query="flag", **kwargs):
    return CheckDescriptor(id=check_id, query=query, severity=Severity(severity), **kwargs)


def _result(check_id, severity, passed):
    return CheckResult(
        id=check_id,
        name=check_id,
        description="",
        severity=Severity(severity),
        passed=passed,
        detail="",
    )


@pytest.fixture
def flag_registry():
    """Checks pass when the snapshot holds a truthy value under queryArgs.key."""
    registry = CheckRegistry()

    @registry.check("flag")
    def flag(snapshot, check):
        key = check.query_args.get("key", check.id)
        value = snapshot.get(key)
        return CheckOutcome(bool(value), f"{key}={value}")

    @registry.check("explodes")
    def explodes(snapshot, check):
        raise ConnectionError("store offline")

    @registry.check("as_dict")
    def as_dict(snapshot, check):
        return {"passed": True, "detail": "dict form"}

    return registry


class TestScore:

    @pytest.mark.parametrize(
        "passed,total,expected",
        [(0, 0, 0), (0, 4, 0), (4, 4, 100), (1, 3, 33), (2, 3, 67), (1, 8, 13), (5, 8, 63)],
    )
    def test_rounding(self, passed, total, expected):
        assert compute_score(passed, total) == expected


class TestVerdict:
    """Severity-weighted aggregation."""

    def test_all_pass_is_ready(self):
        verdict = compute_verdict([
            _result("a", "critical", True),
            _result("b", "recommended", True),
            _result("c", "optional", False),
        ])
        assert verdict.ready is True
        assert verdict.level == LEVEL_READY
        assert verdict.score == 67

    def test_recommended_failure_is_almost(self):
        verdict = compute_verdict([
            _result("a", "critical", True),
            _result("b", "recommended", False),
        ])
        assert verdict.ready is True
        assert verdict.level == LEVEL_ALMOST
        assert verdict.recommended_passed == 0
        assert verdict.recommended_total == 1

    def test_critical_failure_is_incomplete(self):
        verdict = compute_verdict([
            _result("a", "critical", False),
            _result("b", "recommended", True),
            _result("c", "optional", True),
        ])
        assert verdict.ready is False
        assert verdict.level == LEVEL_INCOMPLETE
        assert verdict.critical_passed == 0
        assert verdict.critical_total == 1

    def test_optional_never_blocks(self):
        verdict = compute_verdict([_result("a", "optional", False)])
        assert verdict.ready is True
        assert verdict.level == LEVEL_READY
        assert verdict.score == 0

    def test_no_checks(self):
        verdict = compute_verdict([], spec_slug="EMPTY")
        assert verdict.ready is True
        assert verdict.level == LEVEL_READY
        assert verdict.score == 0
        assert verdict.checks == ()

    def test_to_dict_shape(self):
        verdict = compute_verdict([_result("a", "critical", True)], spec_slug="X", subject="d-1")
        data = verdict.to_dict()
        assert data["spec"] == "X"
        assert data["subject"] == "d-1"
        assert data["criticalPassed"] == 1
        assert data["checks"][0]["severity"] == "critical"


class TestParallelCheckEngine:
    """Check execution against a snapshot."""

    def test_evaluates_all_checks_in_declaration_order(self, flag_registry):
        checks = [
            _check("published", "critical"),
            _check("sources", "recommended"),
            _check("tested", "optional"),
        ]

        verdict = ParallelCheckEngine(flag_registry).evaluate(
            checks, {"published": True, "sources": 0, "tested": "yes"}
        )

        assert [c.id for c in verdict.checks] == ["published", "sources", "tested"]
        assert [c.passed for c in verdict.checks] == [True, False, True]
        assert verdict.level == LEVEL_ALMOST
        assert verdict.score == 67

    def test_unknown_query_fails_only_that_check(self, flag_registry):
        checks = [_check("mystery", "critical", query="nope"), _check("ok", "recommended")]

        verdict = ParallelCheckEngine(flag_registry).evaluate(checks, {"ok": True})

        mystery, ok = verdict.checks
        assert mystery.passed is False
        assert mystery.detail == 'Unknown check query: "nope"'
        assert ok.passed is True
        assert verdict.level == LEVEL_INCOMPLETE

    def test_raising_executor_becomes_failed_check(self, flag_registry):
        checks = [_check("db", "recommended", query="explodes"), _check("ok", "critical")]

        verdict = ParallelCheckEngine(flag_registry).evaluate(checks, {"ok": 1})

        assert verdict.checks[0].passed is False
        assert verdict.checks[0].detail == "Check failed: store offline"
        assert verdict.checks[1].passed is True

    def test_mapping_outcome_accepted(self, flag_registry):
        verdict = ParallelCheckEngine(flag_registry).evaluate([_check("d", "critical", query="as_dict")])
        assert verdict.checks[0].passed is True
        assert verdict.checks[0].detail == "dict form"

    def test_fix_action_resolved_against_snapshot(self, flag_registry):
        check = _check(
            "onboarding",
            "recommended",
            fix_action=FixAction(label="Configure", href_template="/x/domains/${domainId}?tab=${tab}"),
        )

        verdict = ParallelCheckEngine(flag_registry).evaluate([check], {"domainId": "d-42"})

        assert verdict.checks[0].fix_action == {"label": "Configure", "href": "/x/domains/d-42?tab="}

    def test_checks_run_concurrently(self):
        registry = CheckRegistry()
        barrier = threading.Barrier(3, timeout=5)

        @registry.check("rendezvous")
        def rendezvous(snapshot, check):
            barrier.wait()
            return CheckOutcome(True, "met")

        checks = [_check(f"c{i}", "critical", query="rendezvous") for i in range(3)]

        verdict = ParallelCheckEngine(registry).evaluate(checks)

        assert all(c.passed for c in verdict.checks)

    def test_snapshot_is_read_only(self):
        registry = CheckRegistry()

        @registry.check("mutator")
        def mutator(snapshot, check):
            snapshot["hacked"] = True
            return CheckOutcome(True, "")

        ctx = OrchestrationContext(input={"domainId": "d-1"})
        verdict = ParallelCheckEngine(registry).evaluate([_check("m", "critical", query="mutator")], ctx)

        assert verdict.checks[0].passed is False
        assert verdict.checks[0].detail.startswith("Check failed:")
        assert "hacked" not in ctx.results

    def test_context_results_visible(self, flag_registry):
        ctx = OrchestrationContext(input={}, spec_slug="CTX-1")
        ctx.results["published"] = True

        verdict = ParallelCheckEngine(flag_registry).evaluate([_check("published", "critical")], ctx)

        assert verdict.checks[0].passed is True
        assert verdict.spec_slug == "CTX-1"

    def test_empty_checks(self, flag_registry):
        verdict = ParallelCheckEngine(flag_registry).evaluate([])
        assert verdict.ready is True
        assert verdict.score == 0
