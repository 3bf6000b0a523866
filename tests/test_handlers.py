"""Tests for the step and check registries."""

import pytest

from dorchestra.context import OrchestrationContext
from dorchestra.errors import RegistryFrozenError, UnknownOperationError
from dorchestra.handlers import CheckOutcome, CheckRegistry, StepRegistry, noop_step, normalize_outcome
from dorchestra.schemas import CheckDescriptor, Severity, StepDescriptor


class TestStepRegistry:

    def test_register_and_get(self):
        registry = StepRegistry()
        registry.register("noop", noop_step)
        assert registry.get("noop") is noop_step
        assert "noop" in registry
        assert registry.has("noop")
        assert len(registry) == 1

    def test_decorator(self):
        registry = StepRegistry()

        @registry.step("tag")
        def tag(ctx, step):
            ctx.results["tagged"] = step.id

        ctx = OrchestrationContext()
        registry.dispatch(ctx, StepDescriptor(id="t1", operation="tag", order=1))
        assert ctx.results == {"tagged": "t1"}

    def test_reregister_replaces(self):
        registry = StepRegistry()
        registry.register("op", lambda ctx, step: None)
        replacement = lambda ctx, step: None  # noqa: E731
        registry.register("op", replacement)
        assert registry.get("op") is replacement

    def test_unknown_operation(self):
        registry = StepRegistry()
        registry.register("known", noop_step)
        with pytest.raises(UnknownOperationError) as exc_info:
            registry.get("mystery")
        assert exc_info.value.name == "mystery"
        assert exc_info.value.registered == ["known"]
        assert 'Unknown step operation: "mystery"' in str(exc_info.value)

    def test_non_callable_rejected(self):
        with pytest.raises(TypeError):
            StepRegistry().register("bad", "not a function")

    def test_freeze(self):
        registry = StepRegistry()
        registry.register("noop", noop_step)
        assert registry.freeze() is registry
        assert registry.frozen
        with pytest.raises(RegistryFrozenError, match="frozen"):
            registry.register("late", noop_step)
        assert registry.get("noop") is noop_step

    def test_create_default(self, store):
        registry = StepRegistry.create_default(store=store)
        for op in (
            "noop",
            "create_domain",
            "extract_content",
            "save_assertions",
            "generate_identity",
            "scaffold_domain",
            "generate_curriculum",
            "create_caller",
            "create_course",
            "configure_onboarding",
            "invite_students",
        ):
            assert op in registry, op
        assert registry.list_operations() == sorted(registry.list_operations())


class TestCheckRegistry:

    def test_dispatch_normalizes(self):
        registry = CheckRegistry()

        @registry.check("always")
        def always(snapshot, check):
            return {"passed": 1, "detail": "yes"}

        outcome = registry.dispatch({}, CheckDescriptor(id="c", query="always", severity=Severity.OPTIONAL))
        assert outcome == CheckOutcome(True, "yes")

    def test_create_default(self, store):
        queries = CheckRegistry.create_default(store=store).list_queries()
        for query in ("playbook", "playbook_spec_role", "ai_keys", "onboarding", "lesson_plan"):
            assert query in queries


class TestNormalizeOutcome:

    def test_passthrough(self):
        outcome = CheckOutcome(False, "no")
        assert normalize_outcome(outcome) is outcome

    def test_tuple(self):
        assert normalize_outcome((1, 42)) == CheckOutcome(True, "42")

    def test_mapping_without_detail(self):
        assert normalize_outcome({"passed": False}) == CheckOutcome(False, "")

    def test_mapping_without_passed(self):
        with pytest.raises(TypeError, match="missing 'passed'"):
            normalize_outcome({"detail": "?"})

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            normalize_outcome(True)
