import json
from pathlib import Path

import pytest
import yaml

from dorchestra.config import DorchestraConfig
from dorchestra.domain import InMemoryDomainStore
from dorchestra.engine import Engine
from dorchestra.handlers import CheckRegistry, StepRegistry
from dorchestra.progress import CollectingSink
from dorchestra.registry import InMemorySpecSource


DEMO_SPEC = {
    "slug": "DEMO-001",
    "title": "Demo",
    "steps": [
        {"id": "create", "operation": "create_record", "order": 1, "onError": "abort"},
        {"id": "extract", "operation": "extract_text", "order": 2, "onError": "continue"},
        {"id": "notify", "operation": "notify", "order": 3, "onError": "continue"},
    ],
}


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep config lookups and default stores out of the real home directory."""
    home = tmp_path / "dorchestra-home"
    monkeypatch.setenv("DORCHESTRA_HOME", str(home))
    monkeypatch.delenv("DORCHESTRA_DEFINITIONS_DIR", raising=False)
    return home


@pytest.fixture
def sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def demo_registry() -> StepRegistry:
    """Handlers for DEMO-001: create succeeds, extract times out, notify succeeds."""
    registry = StepRegistry()

    @registry.step("create_record")
    def create_record(ctx, step):
        ctx.results["id"] = f"{ctx.input['name'].lower()}-1"

    @registry.step("extract_text")
    def extract_text(ctx, step):
        raise TimeoutError("timeout")

    @registry.step("notify")
    def notify(ctx, step):
        ctx.results["notified"] = True

    return registry


@pytest.fixture
def demo_source() -> InMemorySpecSource:
    return InMemorySpecSource({"DEMO-001": DEMO_SPEC})


@pytest.fixture
def store() -> InMemoryDomainStore:
    return InMemoryDomainStore()


@pytest.fixture
def test_config(tmp_path) -> DorchestraConfig:
    return DorchestraConfig({
        "store_path": str(tmp_path / "store.json"),
        "task_dir": str(tmp_path / "tasks"),
        "logging": {"level": "WARNING", "console": False},
    })


@pytest.fixture
def domain_engine(test_config, store) -> Engine:
    """Engine over the shipped specs with the built-in handlers and an in-memory store."""
    return Engine.from_config(test_config, store=store)


@pytest.fixture
def quick_launch_input() -> dict:
    return {
        "subjectName": "GCSE Biology",
        "persona": "tutor",
        "learningGoals": ["Understand cells", "Pass paper 1"],
        "fileName": "biology-notes.txt",
        "sourceText": "\n".join([
            "# Cells",
            "Cells are the basic unit of life.",
            "The nucleus contains genetic material.",
            "# Enzymes",
            "Enzymes are biological catalysts.",
            "Enzymes are biological catalysts.",
        ]),
    }


@pytest.fixture
def write_spec(tmp_path):
    """Write a spec document into a temporary definitions directory."""
    defs_dir = tmp_path / "definitions"
    defs_dir.mkdir(exist_ok=True)

    def _write(slug: str, data: dict, fmt: str = "yaml", subdir: str = "") -> Path:
        target_dir = defs_dir / subdir if subdir else defs_dir
        target_dir.mkdir(parents=True, exist_ok=True)
        path = target_dir / f"{slug}.{fmt}"
        if fmt == "json":
            path.write_text(json.dumps(data))
        else:
            path.write_text(yaml.safe_dump(data))
        return path

    _write.dir = defs_dir
    return _write


@pytest.fixture
def empty_check_registry() -> CheckRegistry:
    return CheckRegistry()
