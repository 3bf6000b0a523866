"""
Built-in step handlers for setting up tutor domains.

Quick Launch (QUICK-LAUNCH-001):
    create_domain -> extract_content -> save_assertions -> generate_identity
    -> scaffold_domain -> generate_curriculum -> create_caller

Course Setup (COURSE-SETUP-001):
    noop (wizard steps) -> create_course, with configure_onboarding and
    invite_students available as standalone operations

Every handler writes through DomainStore.find_or_create, keyed by slugs or
composite keys, so re-running a step never duplicates records.

Fields a reviewer may override between analyze and commit (domainName,
persona, learningGoals, identityConfig, callerName) are read with ctx.get,
which prefers results over input.

Input keys (camelCase, as sent by the admin UI):
    subjectName, persona, learningGoals, qualificationRef,
    sourceText | filePath, fileName,
    courseName, learningOutcomes, teachingStyle, welcomeMessage,
    studentEmails, behaviorTargets, domainId, subjectId, curriculumId
"""

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from dorchestra.domain.collaborators import Collaborators, content_hash
from dorchestra.domain.store import DomainStore, InMemoryDomainStore, composite_key
from dorchestra.errors import PermanentError
from dorchestra.utils import slugify

if TYPE_CHECKING:
    from dorchestra.context import OrchestrationContext
    from dorchestra.handlers import StepRegistry
    from dorchestra.schemas import StepDescriptor

logger = logging.getLogger(__name__)

DEFAULT_MAX_ASSERTIONS = 500
DEFAULT_MAX_SAMPLE_SIZE = 60
DEFAULT_GOAL_PRIORITY = 5

# Onboarding flow phases per teaching persona
PERSONA_FLOW_PHASES: dict[str, list[str]] = {
    "tutor": ["welcome", "baseline", "first_topic", "recap"],
    "coach": ["welcome", "goals", "first_session", "action_plan"],
    "mentor": ["welcome", "background", "aspirations", "next_steps"],
    "socratic": ["welcome", "opening_question", "exploration", "reflection"],
}

CURRICULUM_METADATA = {
    "type": "sequential",
    "trackingMode": "module-based",
    "moduleSelector": "section=content",
    "moduleOrder": "sortBySequence",
    "progressKey": "current_module",
    "masteryThreshold": 0.7,
}


def _require_input(ctx: "OrchestrationContext", key: str) -> Any:
    value = ctx.input.get(key)
    if value is None or value == "":
        raise PermanentError(f"{key} is required")
    return value


def _require_result(ctx: "OrchestrationContext", key: str, producer: str) -> Any:
    value = ctx.results.get(key)
    if value is None:
        raise PermanentError(f"{key} is not set; {producer} must run first")
    return value


def read_source_text(input: Any) -> str:
    """Source text from sourceText, or read from filePath."""
    text = input.get("sourceText")
    if text is not None:
        return str(text)
    file_path = input.get("filePath")
    if not file_path:
        raise PermanentError("sourceText or filePath is required")
    return Path(file_path).read_text(encoding="utf-8", errors="replace")


def _source_display_name(input: Any) -> str:
    name = input.get("fileName") or (Path(input["filePath"]).name if input.get("filePath") else "source")
    return Path(name).stem or "source"


def _contract_parameters(modules: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Modules in the parameters[] shape progress tracking selects on."""
    return [
        {
            "id": m.get("id", f"MOD-{i + 1}"),
            "name": m.get("title") or m.get("name", ""),
            "description": m.get("description", ""),
            "section": "content",
            "sequence": m.get("sortOrder", i),
            "config": {
                **m,
                "learningOutcomes": m.get("learningOutcomes") or [],
                "assessmentCriteria": m.get("assessmentCriteria") or [],
                "keyTerms": m.get("keyTerms") or [],
            },
        }
        for i, m in enumerate(modules)
    ]


class DomainSteps:
    """
    Step handlers bound to a DomainStore and a set of collaborators.

    Each public method has the StepHandler signature (ctx, step).
    """

    def __init__(self, store: DomainStore, collaborators: Optional[Collaborators] = None):
        self.store = store
        self.collaborators = collaborators or Collaborators()

    # -- shared helpers --------------------------------------------------------

    def _find_or_create_domain(self, name: str, description: str) -> dict[str, Any]:
        slug = slugify(name)
        if not slug:
            raise PermanentError(f"Cannot derive a slug from name {name!r}")
        domain, _ = self.store.find_or_create("domain", slug, {
            "slug": slug,
            "name": name,
            "description": description,
            "isActive": True,
        })
        return domain

    def _find_or_create_subject(self, slug: str, name: str, **extra: Any) -> dict[str, Any]:
        subject, _ = self.store.find_or_create("subject", slug, {
            "slug": slug,
            "name": name,
            "isActive": True,
            **extra,
        })
        return subject

    def _link_subject(self, subject_id: str, domain_id: str) -> None:
        self.store.find_or_create(
            "subject_domain",
            composite_key(subject_id, domain_id),
            {"subjectId": subject_id, "domainId": domain_id},
        )

    def _scaffold(
        self,
        ctx: "OrchestrationContext",
        domain: dict[str, Any],
        persona: str,
        playbook_name: Optional[str] = None,
    ) -> None:
        identity_config = ctx.results.get("identityConfig") or {"persona": persona}
        identity_spec, created = self.store.find_or_create("identity_spec", f"{domain['slug']}-identity", {
            "domainId": domain["id"],
            "name": f"{domain['name']} Identity",
            "specRole": "IDENTITY",
            "config": identity_config,
            "isActive": True,
        })
        if not created and "identityConfig" in ctx.results and identity_spec.get("config") != identity_config:
            identity_spec = self.store.update("identity_spec", identity_spec["id"], {"config": identity_config})

        playbook_name = playbook_name or f"{domain['name']} Playbook"
        playbook, _ = self.store.find_or_create("playbook", composite_key(domain["id"], slugify(playbook_name)), {
            "domainId": domain["id"],
            "name": playbook_name,
            "status": "PUBLISHED",
            "specIds": [identity_spec["id"]],
        })

        phases = PERSONA_FLOW_PHASES.get(persona)
        if phases is None:
            ctx.warn(f"No onboarding flow for persona '{persona}', using tutor defaults")
            phases = PERSONA_FLOW_PHASES["tutor"]
        self.store.update("domain", domain["id"], {
            "onboardingIdentitySpecId": identity_spec["id"],
            "onboardingFlowPhases": phases,
        })

        ctx.results["identitySpecId"] = identity_spec["id"]
        ctx.results["playbookId"] = playbook["id"]
        ctx.results["playbookName"] = playbook["name"]

    # -- Quick Launch ----------------------------------------------------------

    def create_domain(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Find or create the domain and subject, and link them."""
        subject_name = _require_input(ctx, "subjectName")
        domain = self._find_or_create_domain(subject_name, f"Quick-launched domain for {subject_name}")
        subject = self._find_or_create_subject(
            domain["slug"], subject_name, qualificationRef=ctx.input.get("qualificationRef")
        )
        self._link_subject(subject["id"], domain["id"])

        ctx.results["domainId"] = domain["id"]
        ctx.results["domainSlug"] = domain["slug"]
        ctx.results["domainName"] = domain["name"]
        ctx.results["subjectId"] = subject["id"]
        ctx.results["subjectSlug"] = subject["slug"]

    def extract_content(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Extract teaching points from the uploaded source text."""
        text = read_source_text(ctx.input)
        if not text.strip():
            raise PermanentError("Could not extract text from document; file may be empty or corrupted")

        ctx.emit(f"Extracted {len(text):,} characters")
        max_assertions = int(step.args.get("maxAssertions", DEFAULT_MAX_ASSERTIONS))

        def on_chunk(index: int, total: int, so_far: int) -> None:
            ctx.emit(f"Extracting... chunk {index + 1}/{total} ({so_far} points so far)")

        result = self.collaborators.extractor.extract(
            text,
            source_slug=ctx.results.get("subjectSlug") or "quick-launch",
            max_assertions=max_assertions,
            on_chunk=on_chunk,
        )
        assertions = list(result.get("assertions") or [])
        ctx.results["assertions"] = assertions
        ctx.results["assertionCount"] = len(assertions)
        ctx.extend_warnings(result.get("warnings") or [])
        ctx.emit(f"Extracted {len(assertions)} teaching points")

    def save_assertions(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Persist extracted assertions under a content source linked to the subject."""
        assertions = ctx.results.get("assertions") or []
        if not assertions:
            ctx.warn("No assertions to save")
            return

        subject_id = _require_result(ctx, "subjectId", "create_domain")
        subject_slug = ctx.results.get("subjectSlug") or "quick-launch"
        display_name = _source_display_name(ctx.input)
        source_slug = f"{subject_slug}-{slugify(display_name) or 'source'}"

        source, _ = self.store.find_or_create("content_source", source_slug, {
            "slug": source_slug,
            "name": display_name,
            "trustLevel": "UNVERIFIED",
        })
        self.store.find_or_create("subject_source", composite_key(subject_id, source["id"]), {
            "subjectId": subject_id,
            "sourceId": source["id"],
            "tags": ["content"],
        })

        created = 0
        for a in assertions:
            digest = a.get("contentHash") or content_hash(a["assertion"])
            _, is_new = self.store.find_or_create("assertion", composite_key(source["id"], digest), {
                "sourceId": source["id"],
                "assertion": a["assertion"],
                "category": a.get("category"),
                "chapter": a.get("chapter"),
                "section": a.get("section"),
                "tags": a.get("tags") or [],
                "contentHash": digest,
                "reviewedAt": None,
            })
            created += int(is_new)

        logger.info(f"Saved {created} new assertion(s) to {source_slug} ({len(assertions) - created} existing)")
        ctx.results["sourceId"] = source["id"]

    def generate_identity(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """
        Generate a tailored identity; falls back to defaults with a warning.

        An identityConfig already in results (from analyze, or a reviewer's
        override) is kept as is.
        """
        if ctx.results.get("identityConfig"):
            logger.debug("identityConfig already set, skipping generation")
            return

        assertions = ctx.results.get("assertions") or []
        max_sample_size = int(step.args.get("maxSampleSize", DEFAULT_MAX_SAMPLE_SIZE))
        try:
            config = self.collaborators.identity.generate(
                subject_name=ctx.get("domainName") or _require_input(ctx, "subjectName"),
                persona=ctx.get("persona") or "tutor",
                learning_goals=list(ctx.get("learningGoals") or []),
                assertions=[
                    {k: a.get(k) for k in ("assertion", "category", "chapter", "tags")}
                    for a in assertions
                ],
                max_sample_size=max_sample_size,
            )
        except Exception as e:
            logger.warning(f"Identity generation failed: {e}")
            ctx.warn(f"Identity generation failed ({e}), using defaults")
            return
        ctx.results["identityConfig"] = config

    def scaffold_domain(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Create the identity spec and published playbook, and configure onboarding."""
        domain_id = _require_result(ctx, "domainId", "create_domain")
        domain = self.store.get("domain", domain_id)
        if domain is None:
            raise PermanentError(f"Domain not found: {domain_id}")

        domain_name = ctx.get("domainName")
        if domain_name and domain_name != domain["name"]:
            logger.info(f"Renaming domain {domain['slug']}: {domain['name']!r} -> {domain_name!r}")
            domain = self.store.update("domain", domain_id, {"name": domain_name})
            ctx.results["domainName"] = domain_name

        persona = ctx.get("persona") or ctx.input.get("teachingStyle") or "tutor"
        self._scaffold(ctx, domain, persona, playbook_name=step.args.get("playbookName"))

    def generate_curriculum(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Generate a CONTENT spec with module structure, once per domain."""
        if ctx.input.get("curriculumId"):
            ctx.results["curriculumId"] = ctx.input["curriculumId"]
            return

        domain_id = _require_result(ctx, "domainId", "create_domain")
        domain = self.store.get("domain", domain_id)
        if domain is None:
            raise PermanentError(f"Domain not found: {domain_id}")
        content_slug = f"{domain['slug']}-content"

        existing = self.store.find("content_spec", content_slug)
        if existing is not None:
            self._record_curriculum(ctx, existing)
            return

        result = self.collaborators.curriculum.generate(
            subject_name=domain["name"],
            assertions=list(ctx.results.get("assertions") or []),
            learning_goals=list(
                ctx.get("learningGoals") or ctx.input.get("learningOutcomes") or []
            ),
        )
        modules = list(result.get("modules") or [])
        if not modules:
            ctx.warn(result.get("error") or "Curriculum generation produced no modules")
            ctx.results["moduleCount"] = 0
            return

        content_spec, _ = self.store.find_or_create("content_spec", content_slug, {
            "domainId": domain_id,
            "name": f"{domain['name']} Curriculum",
            "description": result.get("description", ""),
            "specRole": "CONTENT",
            "isActive": True,
            "config": {
                "modules": modules,
                "deliveryConfig": result.get("deliveryConfig") or {},
                "metadata": {"curriculum": dict(CURRICULUM_METADATA)},
                "parameters": _contract_parameters(modules),
            },
        })

        playbook_id = ctx.results.get("playbookId")
        if playbook_id:
            playbook = self.store.get("playbook", playbook_id)
            if playbook is not None and content_spec["id"] not in playbook.get("specIds", []):
                self.store.update("playbook", playbook_id, {
                    "specIds": [*playbook.get("specIds", []), content_spec["id"]],
                })

        self._record_curriculum(ctx, content_spec)

    @staticmethod
    def _record_curriculum(ctx: "OrchestrationContext", content_spec: dict[str, Any]) -> None:
        ctx.results["contentSpecId"] = content_spec["id"]
        ctx.results["curriculumId"] = content_spec["id"]
        ctx.results["moduleCount"] = len(content_spec.get("config", {}).get("modules", []))

    def create_caller(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Create the test caller and one LEARN goal per learning goal."""
        domain_id = _require_result(ctx, "domainId", "create_domain")
        name = ctx.get("callerName")
        if not name:
            subject_name = ctx.input.get("subjectName") or ctx.results.get("domainName", "")
            name = f"Test Caller ({subject_name})"
        caller, _ = self.store.find_or_create("caller", composite_key(domain_id, slugify(name)), {
            "domainId": domain_id,
            "name": name,
        })

        goals = list(ctx.get("learningGoals") or [])
        content_spec_id = ctx.results.get("contentSpecId")
        for goal_name in goals:
            self.store.find_or_create("goal", composite_key(caller["id"], slugify(goal_name)), {
                "callerId": caller["id"],
                "type": "LEARN",
                "name": goal_name,
                "contentSpecId": content_spec_id,
                "priority": DEFAULT_GOAL_PRIORITY,
            })

        ctx.results["callerId"] = caller["id"]
        ctx.results["callerName"] = caller["name"]
        ctx.results["goalCount"] = len(goals)

    # -- Course Setup ----------------------------------------------------------

    def create_course(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """
        Find or create the course domain and subject, scaffold it, then run
        onboarding and enrollment. Onboarding and enrollment failures become
        warnings; the course itself has been created by then.
        """
        course_name = _require_input(ctx, "courseName")

        if ctx.input.get("domainId"):
            domain = self.store.get("domain", ctx.input["domainId"])
            if domain is None:
                raise PermanentError(f"Domain not found: {ctx.input['domainId']}")
        else:
            domain = self._find_or_create_domain(course_name, f"Course: {course_name}")

        ctx.results["domainId"] = domain["id"]
        ctx.results["domainSlug"] = domain["slug"]
        ctx.results["domainName"] = domain["name"]

        subject = None
        if ctx.input.get("subjectId"):
            subject = self.store.get("subject", ctx.input["subjectId"])
            if subject is None:
                ctx.warn("Pre-created subject not found, creating new one")
        if subject is None:
            subject = self._find_or_create_subject(slugify(course_name), course_name)
        ctx.results["subjectId"] = subject["id"]
        self._link_subject(subject["id"], domain["id"])

        persona = ctx.input.get("teachingStyle") or "tutor"
        self._scaffold(ctx, domain, persona, playbook_name=course_name)

        if ctx.input.get("welcomeMessage") or ctx.input.get("behaviorTargets"):
            ctx.emit("Configuring onboarding...", phase="onboarding")
            try:
                self.configure_onboarding(ctx, step)
            except Exception as e:
                logger.error(f"Onboarding configuration failed: {e}")
                ctx.warn(f"Onboarding config: {e}")

        if ctx.input.get("studentEmails"):
            ctx.emit("Enrolling students...", phase="enrollment")
            try:
                self.invite_students(ctx, step)
            except Exception as e:
                logger.error(f"Student enrollment failed: {e}")
                ctx.warn(f"Enrollment: {e}")

    def configure_onboarding(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Set the welcome message, flow phases and default behavior targets."""
        domain_id = _require_result(ctx, "domainId", "create_course")
        domain = self.store.get("domain", domain_id)
        if domain is None:
            raise PermanentError(f"Domain not found: {domain_id}")

        targets = dict(domain.get("onboardingDefaultTargets") or {})
        for param_id, value in (ctx.input.get("behaviorTargets") or {}).items():
            targets[param_id] = {"value": value, "confidence": 0.5}

        persona = ctx.input.get("teachingStyle") or "tutor"
        changes: dict[str, Any] = {
            "onboardingWelcome": ctx.input.get("welcomeMessage"),
            "onboardingFlowPhases": PERSONA_FLOW_PHASES.get(persona, PERSONA_FLOW_PHASES["tutor"]),
        }
        if targets:
            changes["onboardingDefaultTargets"] = targets
        self.store.update("domain", domain_id, changes)

    def invite_students(self, ctx: "OrchestrationContext", step: "StepDescriptor") -> None:
        """Create one invite per student email; existing invites are kept."""
        domain_id = _require_result(ctx, "domainId", "create_course")
        invitation_count = 0
        for email in ctx.input.get("studentEmails") or []:
            email = str(email).strip().lower()
            if "@" not in email:
                ctx.warn(f"Failed to invite {email}: invalid email address")
                continue
            _, created = self.store.find_or_create("invite", composite_key(domain_id, email), {
                "email": email,
                "domainId": domain_id,
                "role": "STUDENT",
                "expiresInDays": 30,
            })
            invitation_count += int(created)
        ctx.results["invitationCount"] = invitation_count

    def register(self, registry: "StepRegistry") -> None:
        for operation in (
            "create_domain",
            "extract_content",
            "save_assertions",
            "generate_identity",
            "scaffold_domain",
            "generate_curriculum",
            "create_caller",
            "create_course",
            "configure_onboarding",
            "invite_students",
        ):
            registry.register(operation, getattr(self, operation))


def register_domain_steps(
    registry: "StepRegistry",
    store: Optional[DomainStore] = None,
    collaborators: Optional[Collaborators] = None,
) -> DomainSteps:
    """Register the built-in domain handlers on a StepRegistry."""
    steps = DomainSteps(store if store is not None else InMemoryDomainStore(), collaborators)
    steps.register(registry)
    return steps
