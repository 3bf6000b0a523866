"""
Configuration management for dorchestra.

Loads and validates config.yaml from the dorchestra home directory
(~/.dorchestra, or $DORCHESTRA_HOME). Every key is optional; a missing file
yields the built-in defaults.

Example config.yaml:

    definitions_dir: ~/specs
    store_path: ~/.dorchestra/store.json
    task_dir: ~/.dorchestra/tasks
    max_check_workers: 8
    analyze_operations: [create_domain, extract_content, generate_identity]
    specs:
      quick_launch: QUICK-LAUNCH-001
      domain_ready: DOMAIN-READY-001
    logging:
      level: INFO
      format: pretty
      console: true
      output: ~/.dorchestra/logs/dorchestra-{date}.log
"""

import os
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dorchestra.errors import ConfigurationError

BUILTIN_DEFINITIONS_DIR = Path(__file__).parent / "specs" / "definitions"

DEFAULT_SPECS = {
    "quick_launch": "QUICK-LAUNCH-001",
    "course_setup": "COURSE-SETUP-001",
    "domain_ready": "DOMAIN-READY-001",
    "course_ready": "COURSE-READY-001",
}

# Quick Launch steps that only read source material and propose content
DEFAULT_ANALYZE_OPERATIONS = ["create_domain", "extract_content", "generate_identity"]

LOG_FORMATS = ("structured", "pretty")


class ConfigError(ConfigurationError):
    """Configuration validation error."""
    pass


def get_dorchestra_home() -> Path:
    """Get the dorchestra home directory (~/.dorchestra or $DORCHESTRA_HOME)."""
    return Path(os.environ.get("DORCHESTRA_HOME", Path.home() / ".dorchestra")).expanduser()


def _path(value: Any, default: Path) -> Path:
    if value is None or value == "":
        return default
    return Path(str(value)).expanduser()


class DorchestraConfig:
    """Complete dorchestra configuration."""

    def __init__(self, data: Optional[Dict[str, Any]] = None, config_path: Optional[Path] = None):
        self.config_path = config_path
        self.raw_config = data or {}
        if not isinstance(self.raw_config, dict):
            raise ConfigError(f"Configuration must be a mapping, got {type(self.raw_config).__name__}")

        home = get_dorchestra_home()
        raw = self.raw_config

        env_definitions = os.environ.get("DORCHESTRA_DEFINITIONS_DIR")
        self.definitions_dir = _path(env_definitions or raw.get("definitions_dir"), BUILTIN_DEFINITIONS_DIR)
        self.store_path = _path(raw.get("store_path"), home / "store.json")
        self.task_dir = _path(raw.get("task_dir"), home / "tasks")
        self.max_check_workers = raw.get("max_check_workers")
        self.analyze_operations: List[str] = list(
            raw.get("analyze_operations", DEFAULT_ANALYZE_OPERATIONS)
        )
        self.specs: Dict[str, str] = {**DEFAULT_SPECS, **(raw.get("specs") or {})}
        self.logging: Dict[str, Any] = raw.get("logging") or {}

    @classmethod
    def from_file(cls, config_path: Path) -> "DorchestraConfig":
        """Load and parse a YAML configuration file."""
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")

        try:
            with open(config_path, "r") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML syntax: {e}")

        return cls(data or {}, config_path=config_path)

    def spec_slug(self, name: str) -> str:
        """Resolve a named spec (e.g. 'quick_launch') to its slug; unknown names pass through."""
        return self.specs.get(name, name)

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path with date interpolation, or None when file logging is off."""
        log_output = self.logging.get("output")
        if not log_output:
            return None
        log_output = str(log_output).replace("{date}", datetime.now().strftime("%Y-%m-%d"))
        return Path(log_output).expanduser()

    def get_log_level(self) -> str:
        """Get logging level."""
        return str(self.logging.get("level", "INFO")).upper()

    def get_log_format(self) -> str:
        """Get log format (structured or pretty)."""
        return self.logging.get("format", "pretty")

    def should_log_to_console(self) -> bool:
        """Check if console logging is enabled."""
        return bool(self.logging.get("console", True))

    def validate(self) -> None:
        """Validate entire configuration."""
        if not self.definitions_dir.is_dir():
            raise ConfigError(f"definitions_dir does not exist: {self.definitions_dir}")

        if self.max_check_workers is not None:
            if not isinstance(self.max_check_workers, int) or self.max_check_workers < 1:
                raise ConfigError(
                    f"max_check_workers must be a positive integer, got {self.max_check_workers!r}"
                )

        if not all(isinstance(op, str) for op in self.analyze_operations):
            raise ConfigError("analyze_operations must be a list of operation names")

        if self.get_log_format() not in LOG_FORMATS:
            raise ConfigError(
                f"logging.format must be one of {list(LOG_FORMATS)}, got {self.get_log_format()!r}"
            )

        log_file = self.get_log_file_path()
        if log_file is not None and not log_file.parent.exists():
            log_file.parent.mkdir(parents=True, exist_ok=True)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "definitions_dir": str(self.definitions_dir),
            "store_path": str(self.store_path),
            "task_dir": str(self.task_dir),
            "max_check_workers": self.max_check_workers,
            "analyze_operations": list(self.analyze_operations),
            "specs": dict(self.specs),
            "logging": dict(self.logging),
        }

    def __repr__(self) -> str:
        return f"DorchestraConfig(definitions_dir={self.definitions_dir}, store={self.store_path})"


def load_config(config_path: Optional[Path] = None) -> DorchestraConfig:
    """
    Load dorchestra configuration.

    Args:
        config_path: Path to config file. Defaults to <dorchestra home>/config.yaml

    Returns:
        DorchestraConfig instance (defaults when the default file does not exist)

    Raises:
        ConfigError: If an explicitly given file is missing, or any file is invalid
    """
    if config_path is None:
        default_path = get_dorchestra_home() / "config.yaml"
        if not default_path.exists():
            return DorchestraConfig()
        config_path = default_path

    return DorchestraConfig.from_file(Path(config_path))
