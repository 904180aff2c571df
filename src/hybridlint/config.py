"""
Project configuration — loads .hybridlint.yaml and provides defaults.

Supports:
- tracked extensions and excluded directory names
- ignore patterns (augments .gitignore)
- parallel extraction settings and worker count override
- similarity / classification tuning
- AI oracle provider, models and retry count
- module aliases for import resolution
- linter command and output directory

Environment variables override the file; CLI flags override both.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from .errors import ConfigError

DEFAULT_EXTENSIONS = (".ts", ".tsx", ".js", ".jsx")

DEFAULT_EXCLUDED_DIRS = (
    "node_modules", "dist", "build", ".git", ".next", "coverage",
)


@dataclass
class LintConfig:
    """Configuration consumed by the index, classifier, oracle and linter."""
    extensions: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    excluded_dirs: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))
    ignore: list[str] = field(default_factory=list)

    # Extraction
    parallel: bool = True
    parallel_threshold: int = 50  # file count above which workers are used
    worker_count: int = 0  # 0 = auto
    incremental: bool = True

    # Classification
    similarity_threshold: float = 0.7
    similarity_limit: int = 5
    unused_prefix: str = "_"
    cross_file_analysis: bool = False
    use_ai: bool = False

    # Import resolution
    module_aliases: dict[str, str] = field(default_factory=dict)

    # History
    history_commits: int = 10

    # AI oracle
    ai_provider: str = "openai"  # openai | azure
    openai_api_key: str = ""
    azure_api_key: str = ""
    azure_endpoint: str = ""
    azure_deployments: dict[str, str] = field(default_factory=dict)
    default_model: str = "gpt-3.5-turbo"
    complex_model: str = "gpt-4o"
    max_retries: int = 3
    ai_timeout: float = 60.0

    # Collaborators
    linter_command: list[str] = field(default_factory=lambda: ["npx", "eslint"])
    output_dir: str = ".hybridlint"

    @classmethod
    def load(cls, project_root: Path, environ: Optional[Mapping[str, str]] = None) -> "LintConfig":
        """Load config from .hybridlint.yaml in project root, or return defaults."""
        config_path = project_root / ".hybridlint.yaml"
        if not config_path.exists():
            config_path = project_root / ".hybridlint.yml"

        data: dict[str, Any] = {}
        if config_path.exists():
            data = _load_yaml(config_path)

        config = cls._from_dict(data)
        config.apply_environment(os.environ if environ is None else environ)
        return config

    @classmethod
    def _from_dict(cls, data: dict[str, Any]) -> "LintConfig":
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        config = cls(**data)
        config.extensions = [_normalize_extension(e) for e in config.extensions]
        if isinstance(config.linter_command, str):
            config.linter_command = config.linter_command.split()
        return config

    def apply_environment(self, environ: Mapping[str, str]) -> None:
        """Pick up credentials and overrides from the environment."""
        if environ.get("OPENAI_API_KEY"):
            self.openai_api_key = environ["OPENAI_API_KEY"]
        if environ.get("AZURE_OPENAI_KEY"):
            self.azure_api_key = environ["AZURE_OPENAI_KEY"]
        if environ.get("AZURE_OPENAI_ENDPOINT"):
            self.azure_endpoint = environ["AZURE_OPENAI_ENDPOINT"]
        if environ.get("AI_PROVIDER"):
            self.ai_provider = environ["AI_PROVIDER"]
        if environ.get("DEFAULT_MODEL"):
            self.default_model = environ["DEFAULT_MODEL"]
        if environ.get("COMPLEX_MODEL"):
            self.complex_model = environ["COMPLEX_MODEL"]
        self.max_retries = _env_int(environ, "MAX_RETRIES", self.max_retries)
        self.worker_count = _env_int(environ, "WORKER_COUNT", self.worker_count)

    def output_path(self, project_root: Path) -> Path:
        out = Path(self.output_dir)
        return out if out.is_absolute() else project_root / out

    def to_dict(self) -> dict[str, Any]:
        """Non-default, non-secret settings, in .hybridlint.yaml shape."""
        defaults = LintConfig()
        result: dict[str, Any] = {}
        for f in fields(self):
            if f.name in ("openai_api_key", "azure_api_key"):
                continue
            value = getattr(self, f.name)
            if value != getattr(defaults, f.name):
                result[f.name] = value
        return result


def _normalize_extension(ext: str) -> str:
    ext = ext.strip().lower()
    return ext if ext.startswith(".") else f".{ext}"


def _env_int(environ: Mapping[str, str], key: str, current: int) -> int:
    raw = environ.get(key)
    if not raw:
        return current
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from None


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load the YAML config file. Must contain a mapping at top level."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read {path.name}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path.name} must contain a mapping at top level")
    return data
