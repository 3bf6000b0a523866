"""
Error classes for dorchestra execution.

Configuration errors are raised before (or at) the offending step and name the
spec, slug, or operation at fault:
- SpecNotFoundError: the spec does not exist (import it)
- SpecMalformedError: the spec exists but its structure is wrong (fix it)
- UnknownOperationError: a descriptor names an operation nobody registered

Execution errors:
- StepExecutionError: a step with onError=abort failed; the run stops
- RunCancelledError: a run was cancelled between steps

Handlers and collaborators classify their own failures with TransientError
(safe to retry) or PermanentError (do not retry). The orchestrator treats both
the same way; the distinction is for callers that retry whole runs.
"""

from typing import Optional


class DorchestraError(Exception):
    """Base exception for dorchestra."""
    pass


class ConfigurationError(DorchestraError):
    """A spec, registry, or config file is wrong. Not retryable."""
    pass


class SpecNotFoundError(ConfigurationError):
    """Raised when a spec slug cannot be resolved by the SpecSource."""

    def __init__(self, slug: str, hint: Optional[str] = None):
        self.slug = slug
        message = f"Spec not found: {slug}."
        message += f" {hint}" if hint else " Import the spec into the definitions directory."
        super().__init__(message)


class SpecMalformedError(ConfigurationError):
    """Raised when a spec exists but does not have a usable structure."""

    def __init__(self, slug: str, reason: str):
        self.slug = slug
        self.reason = reason
        super().__init__(f"Spec '{slug}' is malformed: {reason}")


class UnknownOperationError(ConfigurationError):
    """Raised when an operation or check query has no registered handler."""

    def __init__(self, name: str, registered: Optional[list[str]] = None):
        self.name = name
        self.registered = registered or []
        super().__init__(
            f'Unknown step operation: "{name}". Registered: {sorted(self.registered)}'
        )


class RegistryFrozenError(ConfigurationError):
    """Raised when registering into a registry that has been frozen."""
    pass


class StepExecutionError(DorchestraError):
    """Raised when a step with onError=abort fails."""

    def __init__(
        self,
        step_id: str,
        step_name: str,
        message: str,
        cause: Optional[BaseException] = None,
    ):
        self.step_id = step_id
        self.step_name = step_name
        self.detail = message
        self.cause = cause
        # RunResult up to and including the failed step; set by the orchestrator
        self.partial_result = None
        super().__init__(f"Step '{step_name}' failed: {message}")


class RunCancelledError(DorchestraError):
    """Raised by callers that prefer an exception over a cancelled RunResult."""

    def __init__(self, next_step_id: Optional[str] = None):
        self.next_step_id = next_step_id
        where = f" before step '{next_step_id}'" if next_step_id else ""
        super().__init__(f"Run cancelled{where}")


class TransientError(DorchestraError):
    """
    Transient error - safe to retry.

    Examples:
    - Generation service rate limit
    - Network timeout
    - Store temporarily unavailable
    """
    pass


class PermanentError(DorchestraError):
    """
    Permanent error - do not retry.

    Examples:
    - Invalid input (empty document, missing subject name)
    - Referenced record does not exist
    """
    pass
