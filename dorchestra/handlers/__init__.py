"""
Handlers module for step and check dispatch.

This module provides:
- StepHandler / CheckExecutor: the handler function signatures
- CheckOutcome: the (passed, detail) result of a check executor
- StepRegistry / CheckRegistry: explicit name -> function maps
"""

from dorchestra.handlers.base import (
    CheckExecutor,
    CheckOutcome,
    StepHandler,
    noop_step,
    normalize_outcome,
)
from dorchestra.handlers.registry import CheckRegistry, StepRegistry

__all__ = [
    "CheckExecutor",
    "CheckOutcome",
    "StepHandler",
    "noop_step",
    "normalize_outcome",
    "CheckRegistry",
    "StepRegistry",
]
