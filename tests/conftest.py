from __future__ import annotations

import threading
from typing import Any

import pytest

from prshepherd.config import LabelConfig, ShepherdConfig
from prshepherd.github import CombinedStatus

MUTATING = {"create_comment", "replace_labels", "create_pull"}


class FakeClock:
    """Clock whose sleep advances time instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeGitHub:
    """In-memory stand-in for GitHubClient recording every call."""

    def __init__(self):
        self.user_repos: dict[str, list[dict[str, Any]]] = {}
        self.repos: dict[str, dict[str, Any]] = {}
        self.pulls: dict[str, list[dict[str, Any]]] = {}
        self.mergeable: dict[tuple[str, int], list[bool | None]] = {}
        self.statuses: dict[str, CombinedStatus] = {}
        self.errors: dict[str, Exception] = {}
        self.calls: list[tuple[str, tuple]] = []
        self._lock = threading.Lock()

    def _record(self, method: str, *args: Any) -> None:
        with self._lock:
            self.calls.append((method, args))
        if method in self.errors:
            raise self.errors[method]

    @property
    def mutations(self) -> list[tuple[str, tuple]]:
        return [call for call in self.calls if call[0] in MUTATING]

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def find_pull(self, full_name: str, number: int) -> dict[str, Any]:
        for pr in self.pulls.get(full_name, []):
            if pr["number"] == number:
                return pr
        raise KeyError((full_name, number))

    def list_user_repos(self, user: str) -> list[dict[str, Any]]:
        self._record("list_user_repos", user)
        return list(self.user_repos.get(user, []))

    def get_repo(self, owner: str, name: str) -> dict[str, Any]:
        self._record("get_repo", owner, name)
        return self.repos[f"{owner}/{name}"]

    def list_pulls(self, owner: str, repo: str, state: str = "open", head: str | None = None):
        self._record("list_pulls", owner, repo, state, head)
        result = []
        for pr in self.pulls.get(f"{owner}/{repo}", []):
            if state != "all" and pr.get("state", "open") != state:
                continue
            if head and pr["head"]["label"] != head:
                continue
            result.append(pr)
        return result

    def get_pull(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        self._record("get_pull", owner, repo, number)
        data = dict(self.find_pull(f"{owner}/{repo}", number))
        sequence = self.mergeable.get((f"{owner}/{repo}", number))
        if sequence:
            data["mergeable"] = sequence.pop(0) if len(sequence) > 1 else sequence[0]
        return data

    def get_combined_status(self, owner: str, repo: str, ref: str) -> CombinedStatus:
        self._record("get_combined_status", owner, repo, ref)
        return self.statuses.get(ref, CombinedStatus(state="pending", total_count=0))

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        self._record("create_comment", owner, repo, number, body)
        return {"body": body}

    def replace_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[str]:
        self._record("replace_labels", owner, repo, number, list(labels))
        pr = self.find_pull(f"{owner}/{repo}", number)
        pr["labels"] = [{"name": name} for name in labels]
        return list(labels)

    def create_pull(self, owner, repo, title, head, base, body=None) -> dict[str, Any]:
        self._record("create_pull", owner, repo, title, head, base)
        number = len(self.pulls.get(f"{owner}/{repo}", [])) + 1000
        url = f"https://github.com/{owner}/{repo}/pull/{number}"
        self.pulls.setdefault(f"{owner}/{repo}", []).append({
            "number": number,
            "state": "open",
            "head": {"label": head},
            "html_url": url,
            "merged_at": None,
        })
        return {"number": number, "html_url": url}


def make_pull(
    number: int = 42,
    owner: str = "alice",
    repo: str = "foo",
    sha: str = "abc123",
    ref: str = "dependabot/go_modules/github.com/pkg/errors-0.9.1",
    labels: tuple[str, ...] = ("managed-dependency",),
    mergeable: bool | None = None,
) -> dict[str, Any]:
    """A fork pull request as returned by the GitHub API."""
    return {
        "number": number,
        "state": "open",
        "title": f"Bump dependency in #{number}",
        "body": "Bumps a dependency.",
        "html_url": f"https://github.com/{owner}/{repo}/pull/{number}",
        "labels": [{"name": name} for name in labels],
        "mergeable": mergeable,
        "head": {
            "ref": ref,
            "sha": sha,
            "label": f"{owner}:{ref}",
            "user": {"login": owner},
            "repo": {"name": repo, "owner": {"login": owner}},
        },
        "base": {"ref": "master"},
    }


def upstream_pull(label: str, state: str = "open", merged: bool = False, number: int = 1) -> dict[str, Any]:
    return {
        "number": number,
        "state": state,
        "head": {"label": label},
        "html_url": f"https://github.com/prometheus/foo/pull/{number}",
        "merged_at": "2024-01-02T00:00:00Z" if merged else None,
    }


@pytest.fixture
def fake() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ShepherdConfig:
    return ShepherdConfig(
        github_user="alice",
        upstream_org="prometheus",
        labels=LabelConfig(target="managed-dependency"),
        update_script="/usr/local/bin/update-deps",
    )
