"""
Handler registries for dispatching operations to handler functions.

StepRegistry maps a step descriptor's `operation` to a StepHandler.
CheckRegistry maps a check descriptor's `query` to a CheckExecutor.

Names are plain strings matched exactly. Registries are built once at startup
and frozen before execution; an unknown name is a runtime-detectable condition
(UnknownOperationError), not a crash.
"""

from typing import TYPE_CHECKING, Callable, Generic, Optional, TypeVar

from dorchestra.errors import RegistryFrozenError, UnknownOperationError
from dorchestra.handlers.base import (
    CheckExecutor,
    CheckOutcome,
    StepHandler,
    noop_step,
    normalize_outcome,
)

if TYPE_CHECKING:
    from dorchestra.context import OrchestrationContext
    from dorchestra.domain.collaborators import Collaborators
    from dorchestra.domain.store import DomainStore
    from dorchestra.schemas import CheckDescriptor, StepDescriptor

F = TypeVar("F", bound=Callable)


class _NameRegistry(Generic[F]):
    """Shared register/lookup/freeze behavior."""

    kind = "handler"

    def __init__(self) -> None:
        self._entries: dict[str, F] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(self, name: str, fn: F) -> None:
        """
        Register a function under a name. Re-registering replaces the entry.

        Raises:
            RegistryFrozenError: If the registry has been frozen
        """
        if self._frozen:
            raise RegistryFrozenError(
                f"Cannot register {self.kind} '{name}': registry is frozen"
            )
        if not callable(fn):
            raise TypeError(f"{self.kind} for '{name}' must be callable")
        self._entries[name] = fn

    def get(self, name: str) -> F:
        """
        Get the function registered for a name.

        Raises:
            UnknownOperationError: If nothing is registered under this name
        """
        try:
            return self._entries[name]
        except KeyError:
            raise UnknownOperationError(name, list(self._entries)) from None

    def has(self, name: str) -> bool:
        return name in self._entries

    def names(self) -> list[str]:
        return sorted(self._entries)

    def freeze(self) -> "_NameRegistry[F]":
        """Make the registry read-only. Returns self for chaining."""
        self._frozen = True
        return self

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class StepRegistry(_NameRegistry[StepHandler]):
    """
    Registry of step handlers keyed by operation name.

    Usage:
        registry = StepRegistry()

        @registry.step("create_domain")
        def create_domain(ctx, step):
            ...

        registry.freeze()
    """

    kind = "step handler"

    def step(self, name: str) -> Callable[[StepHandler], StepHandler]:
        """Decorator form of register()."""
        def decorator(fn: StepHandler) -> StepHandler:
            self.register(name, fn)
            return fn
        return decorator

    def list_operations(self) -> list[str]:
        return self.names()

    def dispatch(self, context: "OrchestrationContext", descriptor: "StepDescriptor") -> None:
        """Resolve the descriptor's operation and invoke its handler."""
        handler = self.get(descriptor.operation)
        handler(context, descriptor)

    @classmethod
    def create_default(
        cls,
        store: Optional["DomainStore"] = None,
        collaborators: Optional["Collaborators"] = None,
    ) -> "StepRegistry":
        """
        Create a registry with the built-in domain setup handlers.

        If no store is given an InMemoryDomainStore is used; if no
        collaborators are given the no-op generators are used.
        """
        from dorchestra.domain.steps import register_domain_steps

        registry = cls()
        registry.register("noop", noop_step)
        register_domain_steps(registry, store=store, collaborators=collaborators)
        return registry


class CheckRegistry(_NameRegistry[CheckExecutor]):
    """Registry of readiness check executors keyed by query name."""

    kind = "check executor"

    def check(self, name: str) -> Callable[[CheckExecutor], CheckExecutor]:
        """Decorator form of register()."""
        def decorator(fn: CheckExecutor) -> CheckExecutor:
            self.register(name, fn)
            return fn
        return decorator

    def list_queries(self) -> list[str]:
        return self.names()

    def dispatch(self, snapshot, descriptor: "CheckDescriptor") -> CheckOutcome:
        """Resolve the descriptor's query, run it, and normalize the outcome."""
        executor = self.get(descriptor.query)
        return normalize_outcome(executor(snapshot, descriptor))

    @classmethod
    def create_default(cls, store: Optional["DomainStore"] = None) -> "CheckRegistry":
        """Create a registry with the built-in readiness check executors."""
        from dorchestra.domain.checks import register_domain_checks

        registry = cls()
        register_domain_checks(registry, store=store)
        return registry
