"""
Collaborator protocols for the generation work domain steps delegate.

The step handlers own idempotency, bookkeeping and progress; the actual
extraction and generation algorithms sit behind these protocols so that:
1. dorchestra has no AI provider imports
2. Backends can be swapped (hosted model, local model, mock)
3. Tests run against deterministic implementations

The NoOp* implementations are deterministic and offline. They are what the
CLI uses unless an application wires in real collaborators.
"""

import hashlib
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Protocol, runtime_checkable

# (chunk_index, total_chunks, extracted_so_far)
ChunkCallback = Callable[[int, int, int], None]


def content_hash(text: str) -> str:
    return hashlib.sha256(text.strip().lower().encode("utf-8")).hexdigest()[:16]


@runtime_checkable
class ContentExtractor(Protocol):
    """
    Protocol for extracting teaching points (assertions) from source text.
    """

    def extract(
        self,
        text: str,
        source_slug: str,
        max_assertions: int = 500,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> dict[str, Any]:
        """
        Extract assertions from text.

        Args:
            text: Plain text of the source document
            source_slug: Slug of the source, for provenance
            max_assertions: Upper bound on returned assertions
            on_chunk: Called after each chunk is processed

        Returns:
            Dict with {"assertions": [...], "warnings": [...]}. Each assertion
            has assertion, category, chapter, section, tags, contentHash.
        """
        ...


@runtime_checkable
class IdentityGenerator(Protocol):
    """Protocol for generating a tutor identity from content and persona."""

    def generate(
        self,
        subject_name: str,
        persona: str,
        learning_goals: list[str],
        assertions: list[dict[str, Any]],
        max_sample_size: int = 60,
    ) -> dict[str, Any]:
        """Return an identity config; raise on failure."""
        ...


@runtime_checkable
class CurriculumGenerator(Protocol):
    """Protocol for generating a module structure from content or goals."""

    def generate(
        self,
        subject_name: str,
        assertions: list[dict[str, Any]],
        learning_goals: list[str],
    ) -> dict[str, Any]:
        """Return {"modules": [...], "description": str}; raise on failure."""
        ...


class NoOpContentExtractor:
    """
    Treats each non-blank line as one teaching point.

    Lines starting with '#' open a new chapter. Processes text in chunks of
    chunk_size lines so progress callbacks behave like a real extractor's.
    """

    def __init__(self, chunk_size: int = 50):
        self._chunk_size = chunk_size

    def extract(
        self,
        text: str,
        source_slug: str,
        max_assertions: int = 500,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> dict[str, Any]:
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        chunks = [lines[i:i + self._chunk_size] for i in range(0, len(lines), self._chunk_size)]
        assertions: list[dict[str, Any]] = []
        warnings: list[str] = []
        seen: set[str] = set()
        chapter: Optional[str] = None

        for index, chunk in enumerate(chunks):
            for line in chunk:
                if line.startswith("#"):
                    chapter = line.lstrip("#").strip() or None
                    continue
                digest = content_hash(line)
                if digest in seen:
                    continue
                seen.add(digest)
                assertions.append({
                    "assertion": line,
                    "category": "fact",
                    "chapter": chapter,
                    "section": None,
                    "tags": [source_slug],
                    "contentHash": digest,
                })
            if on_chunk is not None:
                on_chunk(index, len(chunks), len(assertions))

        if len(assertions) > max_assertions:
            warnings.append(
                f"Truncated {len(assertions)} teaching points to maxAssertions={max_assertions}"
            )
            assertions = assertions[:max_assertions]

        return {"assertions": assertions, "warnings": warnings}


class NoOpIdentityGenerator:
    """Builds a template identity from the persona and goals."""

    def generate(
        self,
        subject_name: str,
        persona: str,
        learning_goals: list[str],
        assertions: list[dict[str, Any]],
        max_sample_size: int = 60,
    ) -> dict[str, Any]:
        sample = assertions[:max_sample_size]
        return {
            "persona": persona,
            "roleStatement": f"You are a {persona} helping learners with {subject_name}.",
            "goals": list(learning_goals),
            "sampleSize": len(sample),
        }


class NoOpCurriculumGenerator:
    """Groups assertions into modules by chapter, or one module per learning goal."""

    def generate(
        self,
        subject_name: str,
        assertions: list[dict[str, Any]],
        learning_goals: list[str],
    ) -> dict[str, Any]:
        chapters: "OrderedDict[str, list[str]]" = OrderedDict()
        for a in assertions:
            chapters.setdefault(a.get("chapter") or subject_name, []).append(a["assertion"])

        if chapters:
            modules = [
                {"id": f"MOD-{i + 1}", "title": title, "learningOutcomes": [], "pointCount": len(points)}
                for i, (title, points) in enumerate(chapters.items())
            ]
            source = "assertions"
        else:
            modules = [
                {"id": f"MOD-{i + 1}", "title": goal, "learningOutcomes": [goal], "pointCount": 0}
                for i, goal in enumerate(learning_goals)
            ]
            source = "goals"

        return {
            "modules": modules,
            "description": f"Curriculum for {subject_name} generated from {source}",
        }


@dataclass
class Collaborators:
    """Bundle of collaborators handed to the domain step handlers."""
    extractor: ContentExtractor = field(default_factory=NoOpContentExtractor)
    identity: IdentityGenerator = field(default_factory=NoOpIdentityGenerator)
    curriculum: CurriculumGenerator = field(default_factory=NoOpCurriculumGenerator)
