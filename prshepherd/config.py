"""
Configuration management for prshepherd.

Loads and validates:
- prshepherd.yml: optional run defaults (user, upstream org, labels, polling)
- the GitHub token, from a token file or the GITHUB_TOKEN environment variable

The resulting ShepherdConfig is immutable and passed explicitly to the
classifier, the transition engine and the worker pool.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

CONFIG_FILENAME = "prshepherd.yml"


@dataclass(frozen=True)
class LabelConfig:
    """Label names used to select PRs and to persist their state."""

    target: str = "dependencies"  # set by the dependency bot
    rebase: str = "needs rebase"
    upstream: str = "upstream pr"


@dataclass(frozen=True)
class MergeabilityPolicy:
    """Polling limits while GitHub computes mergeability."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 8.0
    deadline: float = 15.0  # seconds


@dataclass(frozen=True)
class ShepherdConfig:
    """Complete run configuration."""

    github_user: str = ""
    upstream_org: str = "prometheus"
    dry_run: bool = False
    recreate_on_missing: bool = False
    concurrency: int = 4
    labels: LabelConfig = field(default_factory=LabelConfig)
    mergeability: MergeabilityPolicy = field(default_factory=MergeabilityPolicy)
    update_script: str | None = None
    recreate_command: str = "@dependabot recreate"
    pr_deadline: float | None = 120.0

    def with_overrides(self, **overrides: Any) -> "ShepherdConfig":
        """Return a copy with every non-None override applied."""
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)

    def validate(self) -> "ShepherdConfig":
        if not self.github_user:
            raise ConfigError("github.user is mandatory")
        if not self.upstream_org:
            raise ConfigError("github.upstream_org is mandatory")
        if self.concurrency < 1:
            raise ConfigError(f"concurrency must be at least 1, got {self.concurrency}")
        names = [self.labels.target, self.labels.rebase, self.labels.upstream]
        if any(not name for name in names):
            raise ConfigError("label names must not be empty")
        if len(set(names)) != len(names):
            raise ConfigError(f"target, rebase and upstream labels must differ: {names}")
        if self.mergeability.max_attempts < 1:
            raise ConfigError("mergeability.max_attempts must be at least 1")
        if self.pr_deadline is not None and self.pr_deadline <= 0:
            raise ConfigError("pr_deadline must be positive")
        return self

    @classmethod
    def load(cls, root: Path, path: Path | None = None) -> "ShepherdConfig":
        """Load configuration from `path`, or prshepherd.yml under `root`."""
        config_path = path or root / CONFIG_FILENAME
        if not config_path.exists():
            if path is not None:
                raise ConfigError(f"Config file not found: {config_path}")
            return cls()
        try:
            with open(config_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError(f"{config_path} must contain a mapping")
        return cls._parse(data)

    @classmethod
    def _parse(cls, data: dict[str, Any]) -> "ShepherdConfig":
        defaults = cls()
        github = data.get("github", {}) or {}

        label_data = data.get("labels", {}) or {}
        labels = LabelConfig(
            target=label_data.get("target", defaults.labels.target),
            rebase=label_data.get("rebase", defaults.labels.rebase),
            upstream=label_data.get("upstream", defaults.labels.upstream),
        )

        poll = data.get("mergeability", {}) or {}
        policy = MergeabilityPolicy(
            max_attempts=int(poll.get("max_attempts", defaults.mergeability.max_attempts)),
            initial_delay=float(poll.get("initial_delay", defaults.mergeability.initial_delay)),
            multiplier=float(poll.get("multiplier", defaults.mergeability.multiplier)),
            max_delay=float(poll.get("max_delay", defaults.mergeability.max_delay)),
            deadline=float(poll.get("deadline", defaults.mergeability.deadline)),
        )

        pr_deadline = data.get("pr_deadline", defaults.pr_deadline)

        return cls(
            github_user=github.get("user", defaults.github_user),
            upstream_org=github.get("upstream_org", defaults.upstream_org),
            dry_run=bool(data.get("dry_run", defaults.dry_run)),
            recreate_on_missing=bool(data.get("recreate_missing_checks", defaults.recreate_on_missing)),
            concurrency=int(data.get("concurrency", defaults.concurrency)),
            labels=labels,
            mergeability=policy,
            update_script=data.get("script", defaults.update_script),
            recreate_command=data.get("recreate_command", defaults.recreate_command),
            pr_deadline=float(pr_deadline) if pr_deadline is not None else None,
        )


def read_token(path: Path) -> str:
    """Read a GitHub token from a file, stripping surrounding whitespace."""
    try:
        token = Path(path).expanduser().read_text().strip()
    except OSError as e:
        raise ConfigError(f"Cannot read token file {path}: {e}") from e
    if not token:
        raise ConfigError(f"Token file {path} is empty")
    return token


def resolve_token(path: Path | None = None) -> str:
    """Token from `path` if given, otherwise from GITHUB_TOKEN."""
    if path is not None:
        return read_token(path)
    token = os.environ.get("GITHUB_TOKEN", "").strip()
    if not token:
        raise ConfigError("github.token is mandatory (or set GITHUB_TOKEN)")
    return token


def get_repo_root() -> Path:
    """Find the repository root (directory containing .git)."""
    current = Path.cwd()
    while current != current.parent:
        if (current / ".git").exists():
            return current
        current = current.parent
    return Path.cwd()
