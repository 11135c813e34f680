"""
Label persistence helpers.

The rebase and upstream markers are the only state prshepherd keeps
between runs. Every change is written back immediately, unless the PR is
processed in dry-run mode, in which case only the local copy changes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .models import PullRequestHandle
from .runtime import CancelToken

if TYPE_CHECKING:
    from .github import GitHubClient

logger = logging.getLogger(__name__)


def has_label(pr: PullRequestHandle, name: str) -> bool:
    return name in pr.labels


def add_label(pr: PullRequestHandle, name: str, client: "GitHubClient", token: CancelToken) -> bool:
    """Add `name` to the PR. Returns False if it was already present."""
    if has_label(pr, name):
        return False
    _write_labels(pr, pr.labels + [name], client, token)
    return True


def remove_label(pr: PullRequestHandle, name: str, client: "GitHubClient", token: CancelToken) -> bool:
    """Remove `name` from the PR. Returns False if it was absent."""
    if not has_label(pr, name):
        return False
    _write_labels(pr, [label for label in pr.labels if label != name], client, token)
    return True


def _write_labels(
    pr: PullRequestHandle,
    labels: list[str],
    client: "GitHubClient",
    token: CancelToken,
) -> None:
    if pr.dry_run:
        logger.info("[DRY-RUN] %s: would set labels %s", pr, labels)
        pr.labels = labels
        return
    token.raise_if_cancelled()
    client.replace_labels(pr.owner, pr.repo, pr.number, labels)
    # Only update the local copy once GitHub accepted the new set.
    pr.labels = labels
    logger.debug("%s: labels set to %s", pr, labels)
