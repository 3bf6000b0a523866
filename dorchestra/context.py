"""
OrchestrationContext - the mutable, run-scoped accumulator threaded through steps.

A context is created at the start of one run and discarded at the end. The
orchestrator owns it for the run's duration; handlers receive it by reference
and must not keep it after they return.

Data flow is forward-only: a step may read keys written by steps with a lower
`order`, never the other way round. When a `continue` step fails, keys it
would have written are simply absent; downstream handlers use `.get()` with
defaults.
"""

import copy
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from dorchestra.schemas import EventKind, ProgressEvent
from dorchestra.utils import generate_ulid

# Called with an event; installed by the orchestrator for the active run
Emitter = Callable[[ProgressEvent], None]


class OrchestrationContext:
    """
    Mutable bag for one run.

    Attributes:
        input: Caller-supplied parameters (read-only view)
        results: Keyed partial results, populated incrementally
        warnings: Append-only list of soft-failure messages
        run_id: ULID of the run
        spec_slug: Spec the run was resolved from
    """

    def __init__(
        self,
        input: Optional[Mapping[str, Any]] = None,
        results: Optional[Mapping[str, Any]] = None,
        warnings: Optional[list[str]] = None,
        spec_slug: str = "",
        run_id: Optional[str] = None,
    ):
        self._input = MappingProxyType(copy.deepcopy(dict(input or {})))
        self.results: dict[str, Any] = copy.deepcopy(dict(results or {}))
        self._warnings: list[str] = list(warnings or [])
        self.spec_slug = spec_slug
        self.run_id = run_id or generate_ulid()
        self._emitter: Optional[Emitter] = None
        self._active_step: Optional[str] = None

    @property
    def input(self) -> Mapping[str, Any]:
        return self._input

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(self._warnings)

    def warn(self, message: str) -> None:
        """Record a soft failure."""
        self._warnings.append(str(message))

    def extend_warnings(self, messages) -> None:
        for message in messages:
            self.warn(message)

    def get(self, key: str, default: Any = None) -> Any:
        """Look a key up in results first, then input."""
        if key in self.results:
            return self.results[key]
        return self._input.get(key, default)

    def require(self, key: str) -> Any:
        """Return a results key written by an earlier step, or raise KeyError."""
        if key not in self.results:
            raise KeyError(f"'{key}' has not been produced by an earlier step")
        return self.results[key]

    def public_results(self) -> dict[str, Any]:
        """Results whose keys do not start with an underscore."""
        return {k: v for k, v in self.results.items() if not k.startswith("_")}

    def snapshot(self) -> Mapping[str, Any]:
        """
        Read-only, deep-copied view of input overlaid with results.

        Used by the check engine so concurrent checks cannot mutate run state.
        """
        merged: dict[str, Any] = copy.deepcopy(dict(self._input))
        merged.update(copy.deepcopy(self.results))
        return MappingProxyType(merged)

    # -- progress -------------------------------------------------------------

    def bind(self, emitter: Optional[Emitter]) -> None:
        """Install (or clear) the run's event emitter."""
        self._emitter = emitter

    def set_active_step(self, step_id: Optional[str]) -> None:
        self._active_step = step_id

    def emit(self, message: str, data: Optional[dict[str, Any]] = None, phase: Optional[str] = None) -> None:
        """Publish an intermediate progress update from inside a handler."""
        if self._emitter is None:
            return
        self._emitter(ProgressEvent(
            phase=phase or self._active_step or "run",
            message=message,
            kind=EventKind.STEP_UPDATE,
            data=data,
        ))

    def __repr__(self) -> str:
        return (
            f"OrchestrationContext(spec={self.spec_slug!r}, run_id={self.run_id!r}, "
            f"results={sorted(self.results)}, warnings={len(self._warnings)})"
        )
