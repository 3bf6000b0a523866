"""
Built-in readiness check executors.

Executors read a snapshot of the evaluation context (domainId, sourceId,
callerId, ...) and query the DomainStore. They never write.

Queries:
    playbook, playbook_spec_role, identity_spec, content_sources, assertions,
    assertions_reviewed, onboarding, ai_keys, test_caller,
    content_spec_curriculum, lesson_plan, prompt_composed
"""

import os
from typing import TYPE_CHECKING, Any, Mapping, Optional

from dorchestra.domain.steps import CURRICULUM_METADATA
from dorchestra.domain.store import DomainStore, InMemoryDomainStore
from dorchestra.handlers import CheckOutcome

if TYPE_CHECKING:
    from dorchestra.handlers import CheckRegistry
    from dorchestra.schemas import CheckDescriptor

CURRICULUM_REQUIRED_FIELDS = tuple(CURRICULUM_METADATA)

SPEC_KINDS = {"IDENTITY": "identity_spec", "CONTENT": "content_spec"}


def _domain_id(snapshot: Mapping[str, Any]) -> str:
    domain_id = snapshot.get("domainId")
    if not domain_id:
        raise ValueError("domainId is required")
    return domain_id


class DomainChecks:
    """Check executors bound to a DomainStore."""

    def __init__(self, store: DomainStore):
        self.store = store

    # -- helpers ---------------------------------------------------------------

    def _published_playbook(self, domain_id: str) -> Optional[dict[str, Any]]:
        playbooks = self.store.list("playbook", domainId=domain_id, status="PUBLISHED")
        return playbooks[0] if playbooks else None

    def _playbook_specs(self, playbook: Optional[dict[str, Any]], role: str) -> list[dict[str, Any]]:
        if playbook is None:
            return []
        kind = SPEC_KINDS.get(role)
        if kind is None:
            return []
        specs = []
        for spec_id in playbook.get("specIds", []):
            spec = self.store.get(kind, spec_id)
            if spec is not None and spec.get("isActive", True):
                specs.append(spec)
        return specs

    def _domain_source_ids(self, domain_id: str) -> list[str]:
        subject_ids = [link["subjectId"] for link in self.store.list("subject_domain", domainId=domain_id)]
        source_ids: list[str] = []
        for subject_id in subject_ids:
            source_ids.extend(
                link["sourceId"] for link in self.store.list("subject_source", subjectId=subject_id)
            )
        return source_ids

    def _assertions(self, source_ids: list[str]) -> list[dict[str, Any]]:
        result: list[dict[str, Any]] = []
        for source_id in source_ids:
            result.extend(self.store.list("assertion", sourceId=source_id))
        return result

    # -- executors -------------------------------------------------------------

    def playbook(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        playbook = self._published_playbook(_domain_id(snapshot))
        if playbook is None:
            return CheckOutcome(False, "No published playbook found")
        return CheckOutcome(True, f'Published: "{playbook["name"]}"')

    def playbook_spec_role(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        role = check.query_args.get("specRole")
        if not role:
            return CheckOutcome(False, "Missing queryArgs.specRole")
        playbook = self._published_playbook(_domain_id(snapshot))
        names = [s["name"] for s in self._playbook_specs(playbook, role)]
        if not names:
            return CheckOutcome(False, f"No {role} spec in published playbook")
        return CheckOutcome(True, f"{len(names)} {role} spec(s): {', '.join(names)}")

    def identity_spec(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        playbook = self._published_playbook(_domain_id(snapshot))
        names = [s["name"] for s in self._playbook_specs(playbook, "IDENTITY")]
        if not names:
            return CheckOutcome(False, "No IDENTITY spec in published playbook")
        return CheckOutcome(True, f"{len(names)} IDENTITY spec(s): {', '.join(names)}")

    def content_sources(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        count = len(self._domain_source_ids(_domain_id(snapshot)))
        if count == 0:
            return CheckOutcome(False, "No content sources linked to domain subjects")
        return CheckOutcome(True, f"{count} content source(s) linked")

    def assertions(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        source_ids = self._domain_source_ids(_domain_id(snapshot))
        if not source_ids:
            return CheckOutcome(False, "No content sources to extract from")
        count = len(self._assertions(source_ids))
        if count == 0:
            return CheckOutcome(False, "No teaching points extracted from documents")
        return CheckOutcome(True, f"{count} teaching point(s) extracted")

    def assertions_reviewed(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        source_id = snapshot.get("sourceId")
        if source_id:
            source_ids = [source_id]
        else:
            source_ids = self._domain_source_ids(_domain_id(snapshot))
            if not source_ids:
                return CheckOutcome(False, "No content sources linked")

        assertions = self._assertions(source_ids)
        if not assertions:
            return CheckOutcome(False, "No teaching points extracted yet")
        reviewed = sum(1 for a in assertions if a.get("reviewedAt"))
        if reviewed > 0:
            return CheckOutcome(True, f"{reviewed}/{len(assertions)} teaching points reviewed")
        return CheckOutcome(False, f"{len(assertions)} teaching points awaiting review")

    def onboarding(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        domain = self.store.get("domain", _domain_id(snapshot)) or {}
        missing = []
        if not domain.get("onboardingIdentitySpecId"):
            missing.append("identity spec")
        if not domain.get("onboardingFlowPhases"):
            missing.append("flow phases")
        if missing:
            return CheckOutcome(False, f"Missing: {', '.join(missing)}")
        return CheckOutcome(True, "Identity spec + flow phases configured")

    def ai_keys(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        has_claude = bool(os.environ.get("ANTHROPIC_API_KEY"))
        has_openai = bool(os.environ.get("OPENAI_API_KEY"))
        if has_claude and has_openai:
            return CheckOutcome(True, "Claude + OpenAI configured")
        if has_claude:
            return CheckOutcome(True, "Claude configured")
        if has_openai:
            return CheckOutcome(True, "OpenAI configured")
        return CheckOutcome(False, "No AI provider API keys found")

    def test_caller(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        count = self.store.count("caller", domainId=_domain_id(snapshot))
        if count == 0:
            return CheckOutcome(False, "No callers assigned to this domain")
        return CheckOutcome(True, f"{count} caller(s) in domain")

    def content_spec_curriculum(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        playbook = self._published_playbook(_domain_id(snapshot))
        specs = self._playbook_specs(playbook, "CONTENT")
        if not specs:
            return CheckOutcome(True, "No CONTENT spec in playbook (curriculum not required)")

        spec = specs[0]
        config = spec.get("config") or {}
        meta = (config.get("metadata") or {}).get("curriculum")
        if not meta:
            return CheckOutcome(False, f"{spec['name']} is missing metadata.curriculum section")

        missing = [f for f in CURRICULUM_REQUIRED_FIELDS if f not in meta]
        if missing:
            return CheckOutcome(False, f"{spec['name']} curriculum metadata missing: {', '.join(missing)}")

        selector_key, _, selector_value = str(meta["moduleSelector"]).partition("=")
        modules = [p for p in config.get("parameters") or [] if p.get(selector_key) == selector_value]
        if not modules:
            return CheckOutcome(
                False, f'No parameters match moduleSelector "{meta["moduleSelector"]}" in {spec["name"]}'
            )

        with_outcomes = [
            p for p in modules
            if p.get("learningOutcomes") or (p.get("config") or {}).get("learningOutcomes")
        ]
        if not with_outcomes:
            return CheckOutcome(
                True, f"{len(modules)} modules but no learningOutcomes; mastery scoring will be limited"
            )
        return CheckOutcome(True, f"{len(modules)} modules, {len(with_outcomes)} with learning outcomes")

    def lesson_plan(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        playbook = self._published_playbook(_domain_id(snapshot))
        specs = self._playbook_specs(playbook, "CONTENT")
        if not specs:
            return CheckOutcome(False, "No curriculum content configured")

        config = specs[0].get("config") or {}
        lesson_plan = (config.get("deliveryConfig") or {}).get("lessonPlan")
        if lesson_plan:
            return CheckOutcome(True, f"{len(lesson_plan)} lesson(s) planned")
        modules = config.get("modules") or []
        if modules:
            return CheckOutcome(True, f"{len(modules)} module(s) configured (no lesson plan yet)")
        return CheckOutcome(False, "Lesson plan not yet generated")

    def prompt_composed(self, snapshot: Mapping[str, Any], check: "CheckDescriptor") -> CheckOutcome:
        caller_id = snapshot.get("callerId")
        if not caller_id:
            return CheckOutcome(False, "No test caller; compose a prompt first")
        if self.store.count("composed_prompt", callerId=caller_id) > 0:
            return CheckOutcome(True, "First prompt composed; ready to preview")
        return CheckOutcome(False, "Compose and preview the first prompt before starting")

    def register(self, registry: "CheckRegistry") -> None:
        for query in (
            "playbook",
            "playbook_spec_role",
            "identity_spec",
            "content_sources",
            "assertions",
            "assertions_reviewed",
            "onboarding",
            "ai_keys",
            "test_caller",
            "content_spec_curriculum",
            "lesson_plan",
            "prompt_composed",
        ):
            registry.register(query, getattr(self, query))


def register_domain_checks(registry: "CheckRegistry", store: Optional[DomainStore] = None) -> DomainChecks:
    """Register the built-in readiness executors on a CheckRegistry."""
    checks = DomainChecks(store if store is not None else InMemoryDomainStore())
    checks.register(registry)
    return checks
