"""
SpecSource - Load and validate orchestration specs.

The spec source provides:
- Loading specs from YAML or JSON files in a definitions directory
- Version support (optional, default="latest")
- Caching loaded definitions
- Distinct errors for "spec not found" and "spec found but malformed"
- Content-addressable lookup via SHA256 hash

Resolution always completes before any step is dispatched, so a malformed
spec never causes a partial run.
"""

import copy
import hashlib
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Optional

import yaml

from dorchestra.errors import SpecMalformedError, SpecNotFoundError
from dorchestra.schemas import CheckDescriptor, OrchestrationSpec, StepDescriptor

logger = logging.getLogger(__name__)


class SpecSource(ABC):
    """
    Abstract base class for spec storage.

    Implementations resolve a slug to an OrchestrationSpec. The helpers
    load_steps() and load_checks() add the collection-level checks every
    caller needs.
    """

    @abstractmethod
    def load(self, slug: str, version: Optional[str] = None) -> OrchestrationSpec:
        """
        Load a spec by slug.

        Raises:
            SpecNotFoundError: If no active spec has this slug (or version)
            SpecMalformedError: If the spec document cannot be parsed
        """
        pass

    @abstractmethod
    def list_specs(self) -> list[str]:
        """List all available spec slugs."""
        pass

    def load_steps(self, slug: str, version: Optional[str] = None) -> list[StepDescriptor]:
        """
        Load a spec's step descriptors sorted by `order`.

        Raises:
            SpecNotFoundError: If the spec does not exist
            SpecMalformedError: If the spec has no steps
        """
        spec = self.load(slug, version=version)
        if not spec.steps:
            raise SpecMalformedError(
                spec.slug,
                "no steps configured. Check the 'steps' array "
                "(or config.parameters[].config.steps).",
            )
        return list(spec.sorted_steps())

    def load_checks(self, slug: str, version: Optional[str] = None) -> list[CheckDescriptor]:
        """
        Load a spec's check descriptors in declaration order.

        Raises:
            SpecNotFoundError: If the spec does not exist
            SpecMalformedError: If the spec has no checks
        """
        spec = self.load(slug, version=version)
        if not spec.checks:
            raise SpecMalformedError(
                spec.slug,
                "no checks configured. Check the 'checks' array "
                "(or config.parameters[].config.checks).",
            )
        return list(spec.checks)

    @staticmethod
    def compute_hash(spec: OrchestrationSpec) -> str:
        """
        Compute SHA256 hash of a spec for content addressing.

        Uses canonical JSON serialization (sorted keys, no whitespace)
        to ensure consistent hashing.
        """
        canonical = json.dumps(spec.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode()).hexdigest()


def _parse_document(slug: str, data: Any, origin: str) -> OrchestrationSpec:
    """Build an OrchestrationSpec, mapping structural problems to SpecMalformedError."""
    if not isinstance(data, dict):
        raise SpecMalformedError(slug, f"{origin} does not contain a mapping")
    try:
        return OrchestrationSpec.from_dict(data, slug=slug)
    except (KeyError, TypeError, ValueError) as e:
        raise SpecMalformedError(slug, f"{origin}: {e}") from e


def _check_version(spec: OrchestrationSpec, slug: str, version: Optional[str]) -> None:
    if version is not None and version != "latest" and spec.version != version:
        raise SpecNotFoundError(
            slug,
            hint=f"Version mismatch: requested '{version}', found '{spec.version}'.",
        )


class SpecRegistry(SpecSource):
    """
    Spec source backed by a directory of YAML/JSON documents.

    Example directory structure:
        definitions/
            QUICK-LAUNCH-001.yaml
            readiness/
                DOMAIN-READY-001.yaml
                COURSE-READY-001.yaml

    Slugs match file stems case-insensitively; YAML files are preferred over
    JSON when both exist.
    """

    def __init__(self, definitions_dir: Path | str):
        """
        Initialize the registry.

        Args:
            definitions_dir: Path to directory containing spec documents
        """
        self._definitions_dir = Path(definitions_dir)
        self._cache: dict[str, OrchestrationSpec] = {}
        self._stamps: dict[str, tuple[Path, int]] = {}  # slug -> (path, mtime_ns)
        self._hash_index: dict[str, str] = {}  # sha256 -> slug

    @property
    def definitions_dir(self) -> Path:
        """Get the definitions directory path."""
        return self._definitions_dir

    def load(self, slug: str, version: Optional[str] = None) -> OrchestrationSpec:
        """
        Load a spec by slug and optional version.

        Results are cached for subsequent unversioned calls. A cached spec is
        reloaded when its file's mtime changes, and dropped when the file is gone.
        """
        key = slug.lower()
        if version is None or version == "latest":
            if key in self._cache and self._is_fresh(key):
                return self._cache[key]

        def_path = self._find_definition(slug)
        if def_path is None:
            raise SpecNotFoundError(slug)

        try:
            mtime_ns = def_path.stat().st_mtime_ns
            data = self._load_file(def_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise SpecMalformedError(slug, f"failed to load {def_path}: {e}") from e

        spec = _parse_document(slug, data, str(def_path))

        if spec.slug.lower() != key:
            raise SpecMalformedError(
                slug, f"slug mismatch: file is '{def_path.stem}' but slug is '{spec.slug}'"
            )
        if not spec.is_active:
            raise SpecNotFoundError(slug, hint="The spec exists but is not active.")
        _check_version(spec, slug, version)

        logger.debug(f"Loaded spec {spec.slug} v{spec.version} from {def_path}")
        self._cache[key] = spec
        self._stamps[key] = (def_path, mtime_ns)
        self._hash_index[self.compute_hash(spec)] = key
        return spec

    def _is_fresh(self, key: str) -> bool:
        path, mtime_ns = self._stamps[key]
        try:
            fresh = path.stat().st_mtime_ns == mtime_ns
        except OSError:
            fresh = False
        if not fresh:
            logger.debug(f"Spec {key} changed on disk, reloading")
            self._evict(key)
        return fresh

    def _evict(self, key: str) -> None:
        self._cache.pop(key, None)
        self._stamps.pop(key, None)
        for digest in [d for d, k in self._hash_index.items() if k == key]:
            del self._hash_index[digest]

    def _load_file(self, path: Path) -> Any:
        """Load a definition file (YAML or JSON)."""
        suffix = path.suffix.lower()
        with open(path) as f:
            if suffix in (".yaml", ".yml"):
                return yaml.safe_load(f)
            elif suffix == ".json":
                return json.load(f)
            else:
                raise ValueError(f"Unsupported file format: {suffix}")

    def _find_definition(self, slug: str) -> Optional[Path]:
        """Find the definition file for a slug, searching subdirectories."""
        if not self._definitions_dir.exists():
            return None

        wanted = slug.lower()
        for ext in (".yaml", ".yml", ".json"):
            matches = sorted(
                f for f in self._definitions_dir.glob(f"**/*{ext}")
                if f.stem.lower() == wanted and "_deprecated" not in str(f)
            )
            if matches:
                return matches[0]
        return None

    def load_by_hash(self, sha256: str) -> Optional[OrchestrationSpec]:
        """Return a cached spec by its content hash, or None."""
        key = self._hash_index.get(sha256)
        if key is None:
            return None
        return self._cache.get(key)

    def list_specs(self) -> list[str]:
        if not self._definitions_dir.exists():
            return []

        slugs = set()
        for ext in ("*.yaml", "*.yml", "*.json"):
            for f in self._definitions_dir.glob(f"**/{ext}"):
                if "_deprecated" not in str(f):
                    slugs.add(f.stem)
        return sorted(slugs)

    def clear_cache(self) -> None:
        """Clear the definition cache."""
        self._cache.clear()
        self._stamps.clear()
        self._hash_index.clear()

    def preload_all(self) -> int:
        """
        Preload all spec definitions into cache.

        Returns:
            Number of specs loaded

        Raises:
            SpecMalformedError: If any spec definition is invalid
        """
        count = 0
        for slug in self.list_specs():
            try:
                self.load(slug)
            except SpecNotFoundError:
                # inactive specs are listed but not loadable
                continue
            count += 1
        return count


class InMemorySpecSource(SpecSource):
    """
    Spec source backed by a dict of raw documents keyed by slug.

    Documents are parsed on every load so tests can mutate them between runs.
    """

    def __init__(self, documents: Optional[dict[str, dict[str, Any]]] = None):
        self._documents: dict[str, dict[str, Any]] = {}
        for slug, document in (documents or {}).items():
            self.put(slug, document)

    def put(self, slug: str, document: dict[str, Any]) -> None:
        """Add or replace a spec document."""
        self._documents[slug.lower()] = copy.deepcopy(document)

    def load(self, slug: str, version: Optional[str] = None) -> OrchestrationSpec:
        data = self._documents.get(slug.lower())
        if data is None:
            raise SpecNotFoundError(slug)
        spec = _parse_document(slug, copy.deepcopy(data), "in-memory document")
        if not spec.is_active:
            raise SpecNotFoundError(slug, hint="The spec exists but is not active.")
        _check_version(spec, slug, version)
        return spec

    def list_specs(self) -> list[str]:
        return sorted(
            data.get("slug", key) if isinstance(data, dict) else key
            for key, data in self._documents.items()
        )
