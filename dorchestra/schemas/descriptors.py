"""
Descriptor schemas - the declared units of work inside a spec.

StepDescriptor and CheckDescriptor are read-only. They are created by editing
the external spec, never at runtime. The orchestrator reads the routing fields
(id, operation/query, order, onError/severity) and passes everything else
through to the handler untouched.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OnError(str, Enum):
    """Per-step failure policy."""
    ABORT = "abort"
    CONTINUE = "continue"

    @classmethod
    def from_string(cls, value: str) -> "OnError":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [e.value for e in cls]
            raise ValueError(f"Invalid onError '{value}'. Valid values: {valid}")


class Severity(str, Enum):
    """Readiness tier of a check. Only critical blocks readiness."""
    CRITICAL = "critical"
    RECOMMENDED = "recommended"
    OPTIONAL = "optional"

    @classmethod
    def from_string(cls, value: str) -> "Severity":
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = [e.value for e in cls]
            raise ValueError(f"Invalid severity '{value}'. Valid values: {valid}")


def _require(data: dict[str, Any], *keys: str) -> Any:
    """Return the first present key, or raise naming all accepted spellings."""
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    raise ValueError(f"missing required field '{keys[0]}'")


@dataclass(frozen=True)
class StepDescriptor:
    """
    One declared unit of sequential work.

    Attributes:
        id: Stable identity, unique within the spec
        name: Human label used in progress events and warnings
        operation: Key into the StepRegistry
        order: Steps execute in ascending order
        on_error: abort stops the run, continue records a warning
        progress_message: Shown while the step is active
        args: Opaque handler arguments
        phase: Optional explicit saga phase ("analyze" or "commit")
    """
    id: str
    operation: str
    order: int
    name: str = ""
    on_error: OnError = OnError.ABORT
    progress_message: str = ""
    args: dict[str, Any] = field(default_factory=dict)
    phase: Optional[str] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("step id must be non-empty")
        if not self.operation:
            raise ValueError(f"step '{self.id}': operation must be non-empty")
        if not self.name:
            object.__setattr__(self, "name", self.id)
        if not self.progress_message:
            object.__setattr__(self, "progress_message", f"{self.name}...")
        if self.phase is not None and self.phase not in ("analyze", "commit"):
            raise ValueError(
                f"step '{self.id}': phase must be 'analyze' or 'commit', got '{self.phase}'"
            )

    @property
    def aborts_on_error(self) -> bool:
        return self.on_error == OnError.ABORT

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the wire format used in spec documents."""
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "operation": self.operation,
            "order": self.order,
            "onError": self.on_error.value,
            "progressMessage": self.progress_message,
        }
        if self.args:
            result["args"] = self.args
        if self.phase:
            result["phase"] = self.phase
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "StepDescriptor":
        """Deserialize from a spec document entry. Raises ValueError on bad input."""
        if not isinstance(data, dict):
            raise ValueError(f"step entry must be a mapping, got {type(data).__name__}")
        order = _require(data, "order", "sortOrder")
        try:
            order = int(order)
        except (TypeError, ValueError):
            raise ValueError(f"step '{data.get('id')}': order must be an integer, got {order!r}")
        args = data.get("args") or {}
        if not isinstance(args, dict):
            raise ValueError(f"step '{data.get('id')}': args must be a mapping")
        return cls(
            id=str(_require(data, "id")),
            operation=str(_require(data, "operation")),
            order=order,
            name=data.get("name") or data.get("label") or "",
            on_error=OnError.from_string(data.get("onError", data.get("on_error", "abort"))),
            progress_message=data.get("progressMessage") or data.get("activeLabel") or "",
            args=dict(args),
            phase=data.get("phase"),
        )


@dataclass(frozen=True)
class FixAction:
    """A human-actionable remediation link with ${var} placeholders."""
    label: str
    href_template: str

    def to_dict(self) -> dict[str, Any]:
        return {"label": self.label, "hrefTemplate": self.href_template}

    @classmethod
    def from_value(cls, value: Any) -> Optional["FixAction"]:
        """Accept a bare template string or a {label, hrefTemplate|href} mapping."""
        if value is None:
            return None
        if isinstance(value, str):
            return cls(label="Fix", href_template=value)
        if isinstance(value, dict):
            template = value.get("hrefTemplate", value.get("href"))
            if template is None:
                raise ValueError("fixAction requires hrefTemplate or href")
            return cls(label=value.get("label", "Fix"), href_template=str(template))
        raise ValueError(f"fixAction must be a string or mapping, got {type(value).__name__}")


@dataclass(frozen=True)
class CheckDescriptor:
    """
    One declared unit of independent verification.

    Attributes:
        id: Stable identity, unique within the spec
        name: Human label
        description: What the check verifies
        severity: critical, recommended, or optional
        query: Key into the CheckRegistry
        query_args: Opaque executor arguments
        fix_action: Optional remediation link template
    """
    id: str
    query: str
    severity: Severity
    name: str = ""
    description: str = ""
    query_args: dict[str, Any] = field(default_factory=dict)
    fix_action: Optional[FixAction] = None

    def __post_init__(self):
        if not self.id:
            raise ValueError("check id must be non-empty")
        if not self.query:
            raise ValueError(f"check '{self.id}': query must be non-empty")
        if not self.name:
            object.__setattr__(self, "name", self.id)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "severity": self.severity.value,
            "query": self.query,
        }
        if self.query_args:
            result["queryArgs"] = self.query_args
        if self.fix_action:
            result["fixAction"] = self.fix_action.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CheckDescriptor":
        if not isinstance(data, dict):
            raise ValueError(f"check entry must be a mapping, got {type(data).__name__}")
        fix_value = data.get("fixAction")
        if fix_value is None:
            fix_value = data.get("fixActionTemplate")
        return cls(
            id=str(_require(data, "id")),
            query=str(_require(data, "query")),
            severity=Severity.from_string(_require(data, "severity")),
            name=data.get("name", ""),
            description=data.get("description", ""),
            query_args=dict(data.get("queryArgs") or {}),
            fix_action=FixAction.from_value(fix_value),
        )
