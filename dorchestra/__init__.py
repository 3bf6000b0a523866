"""
dorchestra - Spec-driven orchestration engine

Runs ordered steps and parallel readiness checks declared in versioned spec
documents. Used to set up AI tutor domains in one pass (Quick Launch), in an
interactive wizard (Course Setup), or as analyze -> review -> commit.
"""

__version__ = "0.1.0"
__author__ = "Local Pipeline Team"


__all__ = [
    "DorchestraConfig",
    "load_config",
    "get_dorchestra_home",
    "Engine",
    "OrchestrationContext",
    "SequentialOrchestrator",
    "ParallelCheckEngine",
    "TwoPhaseSaga",
]

from .config import DorchestraConfig, load_config, get_dorchestra_home
from .context import OrchestrationContext
from .engine import Engine
from .executor import SequentialOrchestrator
from .readiness import ParallelCheckEngine
from .saga import TwoPhaseSaga
