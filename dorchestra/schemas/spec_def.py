"""
OrchestrationSpec schema - the versioned, data-defined description of a run.

A spec document carries either an ordered list of step descriptors (for
sequential orchestration), a list of check descriptors (for readiness
evaluation), or both. Two document shapes are accepted:

Flat:
    slug: QUICK-LAUNCH-001
    version: "1.0"
    steps: [...]

Parameter-nested (the shape specs are stored in by the admin platform):
    slug: QUICK-LAUNCH-001
    config:
      parameters:
        - id: launch_steps
          config:
            steps: [...]
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from .descriptors import CheckDescriptor, StepDescriptor


def _find_collection(data: dict[str, Any], key: str) -> Any:
    """
    Locate a steps/checks collection in a spec document.

    Returns None when the collection is absent. A top-level key wins over a
    parameter-nested one.
    """
    if key in data:
        return data[key]

    config = data.get("config")
    parameters = None
    if isinstance(config, dict):
        parameters = config.get("parameters")
    if parameters is None:
        parameters = data.get("parameters")
    if not isinstance(parameters, list):
        return None

    for param in parameters:
        if not isinstance(param, dict):
            continue
        param_config = param.get("config")
        if isinstance(param_config, dict) and key in param_config:
            return param_config[key]
    return None


def _check_unique(kind: str, ids: list[str]) -> None:
    if len(ids) != len(set(ids)):
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        raise ValueError(f"duplicate {kind} ids: {duplicates}")


@dataclass(frozen=True)
class OrchestrationSpec:
    """
    A spec definition - immutable and version-controlled.

    Attributes:
        slug: Stable identifier (e.g. QUICK-LAUNCH-001)
        version: Version string of the definition
        title: Human title used in run-level progress messages
        steps: Step descriptors in declaration order
        checks: Check descriptors in declaration order
        is_active: Inactive specs are treated as not found by spec sources
    """
    slug: str
    version: str = "1.0"
    title: str = ""
    steps: tuple[StepDescriptor, ...] = field(default_factory=tuple)
    checks: tuple[CheckDescriptor, ...] = field(default_factory=tuple)
    is_active: bool = True

    def __post_init__(self):
        _check_unique("step", [s.id for s in self.steps])
        _check_unique("check", [c.id for c in self.checks])
        if not self.title:
            object.__setattr__(self, "title", self.slug)

    def sorted_steps(self) -> tuple[StepDescriptor, ...]:
        """Steps ordered by `order`; ties keep declaration order."""
        return tuple(sorted(self.steps, key=lambda s: s.order))

    def get_step(self, step_id: str) -> Optional[StepDescriptor]:
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    def operations(self) -> list[str]:
        return sorted({s.operation for s in self.steps})

    def queries(self) -> list[str]:
        return sorted({c.query for c in self.checks})

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the flat document format."""
        result: dict[str, Any] = {
            "slug": self.slug,
            "version": self.version,
            "title": self.title,
        }
        if self.steps:
            result["steps"] = [s.to_dict() for s in self.steps]
        if self.checks:
            result["checks"] = [c.to_dict() for c in self.checks]
        if not self.is_active:
            result["isActive"] = False
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any], slug: Optional[str] = None) -> "OrchestrationSpec":
        """
        Deserialize from a spec document.

        Args:
            data: Parsed YAML/JSON document
            slug: Fallback slug when the document does not declare one

        Raises:
            ValueError: If the document structure is invalid
        """
        if not isinstance(data, dict):
            raise ValueError(f"spec document must be a mapping, got {type(data).__name__}")

        raw_steps = _find_collection(data, "steps")
        raw_checks = _find_collection(data, "checks")

        steps: list[StepDescriptor] = []
        if raw_steps is not None:
            if not isinstance(raw_steps, list):
                raise ValueError("'steps' must be a list")
            for i, entry in enumerate(raw_steps):
                try:
                    steps.append(StepDescriptor.from_dict(entry))
                except (KeyError, TypeError, ValueError) as e:
                    raise ValueError(f"steps[{i}]: {e}") from e

        checks: list[CheckDescriptor] = []
        if raw_checks is not None:
            if not isinstance(raw_checks, list):
                raise ValueError("'checks' must be a list")
            for i, entry in enumerate(raw_checks):
                try:
                    checks.append(CheckDescriptor.from_dict(entry))
                except (KeyError, TypeError, ValueError) as e:
                    raise ValueError(f"checks[{i}]: {e}") from e

        resolved_slug = data.get("slug") or slug
        if not resolved_slug:
            raise ValueError("spec has no slug")

        return cls(
            slug=str(resolved_slug),
            version=str(data.get("version", "1.0")),
            title=data.get("title") or data.get("name") or "",
            steps=tuple(steps),
            checks=tuple(checks),
            is_active=bool(data.get("isActive", data.get("is_active", True))),
        )
