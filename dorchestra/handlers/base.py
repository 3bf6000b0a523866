"""
Handler signatures and common implementations.

Step handlers receive the run's context and their own descriptor and either
return normally or raise. Check executors receive a read-only mapping and their
descriptor and return a CheckOutcome (or a {passed, detail} dict).

Every step handler must be idempotent with respect to its own id: running it
again against a context that already reflects a partial success must not
duplicate externally visible side effects. Use find-or-create keyed by a
stable slug, never blind inserts.
"""

from typing import TYPE_CHECKING, Any, Callable, Mapping, NamedTuple, Union

if TYPE_CHECKING:
    from dorchestra.context import OrchestrationContext
    from dorchestra.schemas import CheckDescriptor, StepDescriptor


class CheckOutcome(NamedTuple):
    """Pass/fail plus a human-readable detail line."""
    passed: bool
    detail: str


StepHandler = Callable[["OrchestrationContext", "StepDescriptor"], None]

CheckExecutor = Callable[
    [Mapping[str, Any], "CheckDescriptor"],
    Union[CheckOutcome, Mapping[str, Any]],
]


def noop_step(ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
    """Handler for UI-only wizard steps that have nothing to execute."""
    return None


def normalize_outcome(value: Any) -> CheckOutcome:
    """
    Coerce an executor's return value into a CheckOutcome.

    Raises:
        TypeError: If the value is neither a CheckOutcome, a (passed, detail)
            pair, nor a mapping with a `passed` key
    """
    if isinstance(value, CheckOutcome):
        return value
    if isinstance(value, Mapping):
        if "passed" not in value:
            raise TypeError("check executor result is missing 'passed'")
        return CheckOutcome(bool(value["passed"]), str(value.get("detail", "")))
    if isinstance(value, tuple) and len(value) == 2:
        return CheckOutcome(bool(value[0]), str(value[1]))
    raise TypeError(
        f"check executor must return CheckOutcome or {{passed, detail}}, got {type(value).__name__}"
    )
