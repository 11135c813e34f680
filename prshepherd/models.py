"""
Data model for pull requests flowing through a run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Status(str, Enum):
    """Lifecycle status of a managed pull request, recomputed every run."""

    WAITING_FOR_UPSTREAM = "waiting-for-upstream"
    NOT_MERGEABLE = "not-mergeable"
    MERGEABLE = "mergeable"
    MISSING_CHECKS = "missing-checks"
    FAILED_CHECKS = "failed-checks"
    PENDING_CHECKS = "pending-checks"
    CHECKS_OK = "checks-ok"
    UNKNOWN = "unknown"

    def __str__(self) -> str:
        return self.value


class Action(str, Enum):
    """What the transition engine did, or would do under dry-run."""

    NONE = "none"
    REQUEST_RECREATE = "request-recreate"
    CLEAR_REBASE_MARKER = "clear-rebase-marker"
    RUN_UPDATE_SCRIPT = "run-update-script"
    SUBMIT_UPSTREAM = "submit-upstream"
    REPORT_ONLY = "report-only"

    def __str__(self) -> str:
        return self.value


@dataclass
class PullRequestHandle:
    """A managed PR on a fork. Owned by the worker processing it."""

    owner: str
    repo: str
    number: int
    head_ref: str
    head_sha: str
    head_label: str  # "owner:branch", used to find the upstream copy
    base_ref: str
    upstream_repo: str  # full name of the fork's parent, like "prometheus/node_exporter"
    title: str = ""
    body: str | None = None
    labels: list[str] = field(default_factory=list)
    mergeable: bool | None = None  # None while GitHub is still computing it
    dry_run: bool = False
    url: str = ""
    updated_once: bool = False  # update script already run for this handle

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.full_name}#{self.number} @ {self.head_ref}"

    @classmethod
    def from_api(cls, data: dict[str, Any], upstream_repo: str, dry_run: bool = False) -> "PullRequestHandle":
        """Build a handle from a GitHub pull request payload."""
        head = data.get("head") or {}
        base = data.get("base") or {}
        head_repo = head.get("repo") or {}
        head_user = head.get("user") or {}
        owner = head_user.get("login") or (head_repo.get("owner") or {}).get("login", "")
        ref = head.get("ref", "")
        return cls(
            owner=owner,
            repo=head_repo.get("name", ""),
            number=data.get("number", 0),
            head_ref=ref,
            head_sha=head.get("sha", ""),
            head_label=head.get("label") or f"{owner}:{ref}",
            base_ref=base.get("ref", ""),
            upstream_repo=upstream_repo,
            title=data.get("title", ""),
            body=data.get("body"),
            labels=[label.get("name", "") for label in data.get("labels", []) if label.get("name")],
            mergeable=data.get("mergeable"),
            dry_run=dry_run,
            url=data.get("html_url", ""),
        )


@dataclass(frozen=True)
class UpstreamMatch:
    """An equivalent PR already opened or merged upstream."""

    url: str | None = None
    merged: bool = False
    open_count: int = 0

    @property
    def forwarded(self) -> bool:
        """True once the update has reached upstream and needs nothing more."""
        return self.merged or self.open_count == 1


@dataclass(frozen=True)
class Classification:
    status: Status
    upstream: UpstreamMatch = field(default_factory=UpstreamMatch)


@dataclass
class Outcome:
    """Result of processing one PR, reported once per PR per run."""

    pr: PullRequestHandle
    status: Status = Status.UNKNOWN
    action: Action = Action.NONE
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
