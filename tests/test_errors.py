"""Tests for the error hierarchy."""

from dorchestra.errors import (
    ConfigurationError,
    DorchestraError,
    PermanentError,
    RunCancelledError,
    SpecMalformedError,
    SpecNotFoundError,
    StepExecutionError,
    TransientError,
    UnknownOperationError,
)


def test_configuration_errors_share_base():
    for error in (
        SpecNotFoundError("X"),
        SpecMalformedError("X", "bad"),
        UnknownOperationError("op"),
    ):
        assert isinstance(error, ConfigurationError)
        assert isinstance(error, DorchestraError)


def test_spec_not_found_message():
    assert str(SpecNotFoundError("QL-1")) == (
        "Spec not found: QL-1. Import the spec into the definitions directory."
    )
    assert str(SpecNotFoundError("QL-1", hint="Try again.")) == "Spec not found: QL-1. Try again."


def test_spec_malformed_message():
    error = SpecMalformedError("QL-1", "no steps configured")
    assert error.slug == "QL-1"
    assert error.reason == "no steps configured"
    assert str(error) == "Spec 'QL-1' is malformed: no steps configured"


def test_step_execution_error():
    cause = ValueError("bad input")
    error = StepExecutionError("create", "Create domain", "bad input", cause=cause)
    assert error.step_id == "create"
    assert error.detail == "bad input"
    assert error.cause is cause
    assert error.partial_result is None
    assert str(error) == "Step 'Create domain' failed: bad input"


def test_run_cancelled_message():
    assert str(RunCancelledError("extract")) == "Run cancelled before step 'extract'"
    assert str(RunCancelledError()) == "Run cancelled"


def test_retry_classification():
    assert not issubclass(TransientError, PermanentError)
    assert issubclass(TransientError, DorchestraError)
    assert issubclass(PermanentError, DorchestraError)
