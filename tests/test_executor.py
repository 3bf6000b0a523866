"""Tests for the sequential orchestrator.

Covers ordering, abort short-circuit, continue isolation, unknown operations,
progress event pairing, cancellation, and the DEMO-001 scenario.
"""

import pytest

from dorchestra.context import OrchestrationContext
from dorchestra.errors import StepExecutionError
from dorchestra.executor import CancellationToken, SequentialOrchestrator, order_steps
from dorchestra.handlers import StepRegistry
from dorchestra.progress import CallbackSink, CollectingSink, ProgressSink
from dorchestra.schemas import EventKind, OnError, StepDescriptor, StepStatus


def _step(step_id, operation, order, on_error=OnError.ABORT, **kwargs):
    return StepDescriptor(id=step_id, operation=operation, order=order, on_error=on_error, **kwargs)


@pytest.fixture
def recording_registry():
    """Registry whose 'record' handler appends the step id to results['seen']."""
    registry = StepRegistry()

    @registry.step("record")
    def record(ctx, step):
        ctx.results.setdefault("seen", []).append(step.id)

    @registry.step("boom")
    def boom(ctx, step):
        raise RuntimeError(step.args.get("message", "boom"))

    return registry


# =============================================================================
# DEMO-001
# =============================================================================


class TestDemoScenario:
    """The end-to-end concrete scenario."""

    def test_final_result(self, demo_registry, demo_source, sink):
        steps = demo_source.load_steps("DEMO-001")
        ctx = OrchestrationContext(input={"name": "Acme"}, spec_slug="DEMO-001")

        result = SequentialOrchestrator(demo_registry).run(steps, ctx, sink=sink)

        assert result.success is True
        assert result.warnings == ["extract: timeout"]
        assert result.results == {"id": "acme-1", "notified": True}

    def test_event_sequence(self, demo_registry, demo_source, sink):
        steps = demo_source.load_steps("DEMO-001")
        ctx = OrchestrationContext(input={"name": "Acme"}, spec_slug="DEMO-001")

        SequentialOrchestrator(demo_registry).run(steps, ctx, sink=sink)

        step_events = [e for e in sink.events if e.kind == EventKind.STEP_START or e.kind.is_step_terminal]
        assert [(e.kind, e.phase) for e in step_events] == [
            (EventKind.STEP_START, "create"),
            (EventKind.STEP_SUCCESS, "create"),
            (EventKind.STEP_START, "extract"),
            (EventKind.STEP_SKIPPED, "extract"),
            (EventKind.STEP_START, "notify"),
            (EventKind.STEP_SUCCESS, "notify"),
        ]
        assert len(sink.of_kind(EventKind.STEP_START)) == 3
        assert len(sink.of_kind(EventKind.STEP_SUCCESS)) == 2
        assert len(sink.of_kind(EventKind.STEP_SKIPPED)) == 1

    def test_run_level_events(self, demo_registry, demo_source, sink):
        steps = demo_source.load_steps("DEMO-001")
        ctx = OrchestrationContext(input={"name": "Acme"}, spec_slug="DEMO-001")

        SequentialOrchestrator(demo_registry).run(steps, ctx, sink=sink, title="Demo")

        first, last = sink.events[0], sink.events[-1]
        assert first.kind == EventKind.RUN_START
        assert first.phase == "init"
        assert first.message == "Starting Demo (3 steps)..."
        assert last.kind == EventKind.RUN_COMPLETE
        assert last.phase == "ready"
        assert last.data == {"id": "acme-1", "notified": True}

    def test_messages(self, demo_registry, demo_source, sink):
        steps = demo_source.load_steps("DEMO-001")
        ctx = OrchestrationContext(input={"name": "Acme"})

        SequentialOrchestrator(demo_registry).run(steps, ctx, sink=sink)

        messages = sink.messages()
        assert "create ✓" in messages
        assert "extract — skipped (timeout)" in messages
        assert "notify ✓" in messages


# =============================================================================
# ORDERING
# =============================================================================


class TestOrdering:
    """Steps run in ascending order regardless of declaration order."""

    def test_sorted_by_order(self, recording_registry):
        steps = [_step("c", "record", 3), _step("a", "record", 1), _step("b", "record", 2)]
        ctx = OrchestrationContext()

        result = SequentialOrchestrator(recording_registry).run(steps, ctx)

        assert result.results["seen"] == ["a", "b", "c"]

    def test_ties_keep_declaration_order(self):
        steps = [_step("x", "record", 1), _step("y", "record", 1), _step("z", "record", 0)]
        assert [s.id for s in order_steps(steps)] == ["z", "x", "y"]

    def test_step_index_follows_sorted_order(self, recording_registry, sink):
        steps = [_step("second", "record", 20), _step("first", "record", 10)]

        SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext(), sink=sink)

        starts = sink.of_kind(EventKind.STEP_START)
        assert [(e.phase, e.step_index, e.total_steps) for e in starts] == [
            ("first", 0, 2),
            ("second", 1, 2),
        ]


# =============================================================================
# FAILURE POLICY
# =============================================================================


class TestAbort:
    """An aborting failure stops the run and raises."""

    def test_later_steps_never_run(self, recording_registry, sink):
        steps = [
            _step("one", "record", 1),
            _step("two", "boom", 2, args={"message": "disk full"}),
            _step("three", "record", 3),
        ]
        ctx = OrchestrationContext()

        with pytest.raises(StepExecutionError) as exc_info:
            SequentialOrchestrator(recording_registry).run(steps, ctx, sink=sink)

        err = exc_info.value
        assert err.step_id == "two"
        assert str(err) == "Step 'two' failed: disk full"
        assert isinstance(err.cause, RuntimeError)
        assert ctx.results["seen"] == ["one"]
        assert [e.phase for e in sink.of_kind(EventKind.STEP_START)] == ["one", "two"]
        assert sink.latest().kind == EventKind.STEP_FAILED
        assert sink.latest().message == "Failed: disk full"
        assert not sink.of_kind(EventKind.RUN_COMPLETE)

    def test_partial_result_attached(self, recording_registry):
        steps = [_step("one", "record", 1), _step("two", "boom", 2), _step("three", "record", 3)]

        with pytest.raises(StepExecutionError) as exc_info:
            SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext())

        partial = exc_info.value.partial_result
        assert partial is not None
        assert partial.success is False
        assert partial.results == {"seen": ["one"]}
        statuses = [(o.step_id, o.status) for o in partial.step_outcomes]
        assert statuses == [
            ("one", StepStatus.COMPLETED),
            ("two", StepStatus.FAILED),
            ("three", StepStatus.NOT_RUN),
        ]


class TestContinue:
    """A continue failure becomes a warning and the run goes on."""

    def test_failure_isolated(self, recording_registry):
        steps = [
            _step("one", "boom", 1, on_error=OnError.CONTINUE, name="First", args={"message": "nope"}),
            _step("two", "record", 2),
        ]

        result = SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext())

        assert result.success is True
        assert result.warnings == ["First: nope"]
        assert result.results["seen"] == ["two"]
        assert result.skipped_steps() == ["one"]

    def test_outcome_records_error(self, recording_registry):
        steps = [_step("one", "boom", 1, on_error=OnError.CONTINUE)]

        result = SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext())

        outcome = result.get_outcome("one")
        assert outcome.status == StepStatus.SKIPPED
        assert outcome.error == {"type": "RuntimeError", "message": "boom"}
        assert outcome.duration_ms is not None


class TestUnknownOperation:
    """An unregistered operation is a step failure, not a crash."""

    def test_unknown_with_continue(self, recording_registry, sink):
        steps = [
            _step("mystery", "does_not_exist", 1, on_error=OnError.CONTINUE),
            _step("after", "record", 2),
        ]

        result = SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext(), sink=sink)

        assert len(result.warnings) == 1
        assert result.warnings[0].startswith('mystery: Unknown step operation: "does_not_exist"')
        assert result.results["seen"] == ["after"]
        assert [e.kind for e in sink.events if e.phase == "mystery"] == [
            EventKind.STEP_START,
            EventKind.STEP_SKIPPED,
        ]

    def test_unknown_with_abort(self, recording_registry):
        steps = [_step("mystery", "does_not_exist", 1), _step("after", "record", 2)]
        ctx = OrchestrationContext()

        with pytest.raises(StepExecutionError, match="Unknown step operation"):
            SequentialOrchestrator(recording_registry).run(steps, ctx)

        assert "seen" not in ctx.results


# =============================================================================
# PROGRESS
# =============================================================================


class TestProgress:
    """Event pairing, handler updates, and sink failures."""

    def test_every_start_has_one_terminal(self, recording_registry, sink):
        steps = [
            _step("a", "record", 1),
            _step("b", "boom", 2, on_error=OnError.CONTINUE),
            _step("c", "record", 3),
        ]

        SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext(), sink=sink)

        for step_id in ("a", "b", "c"):
            kinds = [e.kind for e in sink.events if e.phase == step_id]
            assert kinds[0] == EventKind.STEP_START
            assert sum(1 for k in kinds if k.is_step_terminal) == 1

    def test_progress_message_on_start(self, recording_registry, sink):
        steps = [_step("a", "record", 1, progress_message="Creating domain...")]

        SequentialOrchestrator(recording_registry).run(steps, OrchestrationContext(), sink=sink)

        assert sink.of_kind(EventKind.STEP_START)[0].message == "Creating domain..."

    def test_handler_updates_carry_position(self, sink):
        registry = StepRegistry()

        @registry.step("chatty")
        def chatty(ctx, step):
            ctx.emit("chunk 1/2")
            ctx.emit("chunk 2/2")

        steps = [_step("warmup", "noop_like", 0, on_error=OnError.CONTINUE), _step("talk", "chatty", 1)]
        SequentialOrchestrator(registry).run(steps, OrchestrationContext(), sink=sink)

        updates = sink.of_kind(EventKind.STEP_UPDATE)
        assert [u.message for u in updates] == ["chunk 1/2", "chunk 2/2"]
        assert all(u.phase == "talk" and u.step_index == 1 and u.total_steps == 2 for u in updates)

    def test_emit_after_run_is_dropped(self, sink):
        registry = StepRegistry()
        kept = {}

        @registry.step("keep")
        def keep(ctx, step):
            kept["ctx"] = ctx

        SequentialOrchestrator(registry).run([_step("k", "keep", 1)], OrchestrationContext(), sink=sink)
        count = len(sink.events)
        kept["ctx"].emit("late")

        assert len(sink.events) == count

    def test_failing_sink_does_not_break_run(self, recording_registry):
        class ExplodingSink(ProgressSink):
            def emit(self, event):
                raise IOError("sink down")

        steps = [_step("a", "record", 1), _step("b", "record", 2)]

        result = SequentialOrchestrator(recording_registry, sink=ExplodingSink()).run(
            steps, OrchestrationContext()
        )

        assert result.results["seen"] == ["a", "b"]

    def test_default_sink_used(self, recording_registry):
        sink = CollectingSink()
        orchestrator = SequentialOrchestrator(recording_registry, sink=sink)

        orchestrator.run([_step("a", "record", 1)], OrchestrationContext())

        assert sink.events


# =============================================================================
# CANCELLATION
# =============================================================================


class TestCancellation:
    """The token is honored between steps."""

    def test_cancel_between_steps(self, recording_registry, sink):
        token = CancellationToken()

        def cancel_after_first_success(event):
            sink.emit(event)
            if event.kind == EventKind.STEP_SUCCESS and event.phase == "a":
                token.cancel("user closed the wizard")

        steps = [_step("a", "record", 1), _step("b", "record", 2), _step("c", "record", 3)]

        result = SequentialOrchestrator(recording_registry).run(
            steps, OrchestrationContext(), sink=CallbackSink(cancel_after_first_success), cancel_token=token
        )

        assert result.cancelled is True
        assert result.success is False
        assert result.results["seen"] == ["a"]
        assert [o.status for o in result.step_outcomes] == [
            StepStatus.COMPLETED,
            StepStatus.NOT_RUN,
            StepStatus.NOT_RUN,
        ]
        last = sink.latest()
        assert last.kind == EventKind.RUN_CANCELLED
        assert "user closed the wizard" in last.message

    def test_precancelled_runs_nothing(self, recording_registry):
        token = CancellationToken()
        token.cancel()
        ctx = OrchestrationContext()

        result = SequentialOrchestrator(recording_registry).run([_step("a", "record", 1)], ctx, cancel_token=token)

        assert result.cancelled is True
        assert "seen" not in ctx.results


class TestResults:
    """Private keys stay out of the returned results."""

    def test_underscore_keys_hidden(self):
        registry = StepRegistry()

        @registry.step("stash")
        def stash(ctx, step):
            ctx.results["_scratch"] = "internal"
            ctx.results["visible"] = 1

        result = SequentialOrchestrator(registry).run([_step("s", "stash", 1)], OrchestrationContext())

        assert result.results == {"visible": 1}
        assert result.run_id
