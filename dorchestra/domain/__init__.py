"""
Domain setup: the built-in handlers that make the shipped specs runnable.

This module provides:
- DomainStore and its in-memory / JSON-file implementations
- Collaborator protocols for extraction and generation, with offline NoOps
- Step handlers for Quick Launch and Course Setup
- Readiness check executors
- compute_assertion_summary for the Quick Launch review preview
"""

from dorchestra.domain.checks import DomainChecks, register_domain_checks
from dorchestra.domain.collaborators import (
    Collaborators,
    ContentExtractor,
    CurriculumGenerator,
    IdentityGenerator,
    NoOpContentExtractor,
    NoOpCurriculumGenerator,
    NoOpIdentityGenerator,
)
from dorchestra.domain.steps import DomainSteps, register_domain_steps
from dorchestra.domain.store import (
    DomainStore,
    InMemoryDomainStore,
    JsonFileDomainStore,
    composite_key,
)
from dorchestra.domain.summary import compute_assertion_summary

__all__ = [
    "DomainChecks",
    "register_domain_checks",
    "Collaborators",
    "ContentExtractor",
    "CurriculumGenerator",
    "IdentityGenerator",
    "NoOpContentExtractor",
    "NoOpCurriculumGenerator",
    "NoOpIdentityGenerator",
    "DomainSteps",
    "register_domain_steps",
    "DomainStore",
    "InMemoryDomainStore",
    "JsonFileDomainStore",
    "composite_key",
    "compute_assertion_summary",
]
