"""
Status classification for managed pull requests.

Signals are checked in strict priority order and the first match wins:

1. An upstream copy exists (merged, or exactly one open) -> waiting-for-upstream
2. Mergeability, polled until GitHub has computed it -> not-mergeable, or
   mergeable when a pending rebase has just completed
3. Combined CI status of the head commit -> missing/failed/pending/checks-ok

A forwarded PR is never processed further, and a PR with conflicts is never
checked for CI.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .config import ShepherdConfig
from .errors import ClassificationError, MergeabilityUnknownError
from .labels import has_label
from .models import Classification, PullRequestHandle, Status, UpstreamMatch
from .runtime import Backoff, CancelToken, Clock, SystemClock

if TYPE_CHECKING:
    from .github import GitHubClient

logger = logging.getLogger(__name__)

FAILED_STATES = {"failure", "error"}


def classify(
    pr: PullRequestHandle,
    client: "GitHubClient",
    config: ShepherdConfig,
    clock: Clock | None = None,
    token: CancelToken | None = None,
) -> Classification:
    """Compute the current status of `pr` from scratch."""
    clock = clock or SystemClock()
    token = token or CancelToken()

    upstream = find_upstream(pr, client, token)
    if upstream.forwarded:
        logger.debug("%s: upstream copy at %s", pr, upstream.url)
        return Classification(Status.WAITING_FOR_UPSTREAM, upstream)

    if not resolve_mergeability(pr, client, config, clock, token):
        return Classification(Status.NOT_MERGEABLE, upstream)
    if has_label(pr, config.labels.rebase):
        return Classification(Status.MERGEABLE, upstream)

    return Classification(check_status(pr, client, token), upstream)


def find_upstream(pr: PullRequestHandle, client: "GitHubClient", token: CancelToken) -> UpstreamMatch:
    """Look for a PR from the same head label in the upstream repository."""
    owner, repo = pr.upstream_repo.split("/", 1)

    token.raise_if_cancelled()
    for closed in client.list_pulls(owner, repo, state="closed", head=pr.head_label):
        if closed.get("merged_at"):
            return UpstreamMatch(url=closed.get("html_url"), merged=True)

    token.raise_if_cancelled()
    opened = client.list_pulls(owner, repo, state="open", head=pr.head_label)
    if len(opened) == 1:
        return UpstreamMatch(url=opened[0].get("html_url"), open_count=1)
    if len(opened) > 1:
        logger.warning("%s: %d open upstream PRs share head %s", pr, len(opened), pr.head_label)
    return UpstreamMatch(open_count=len(opened))


def resolve_mergeability(
    pr: PullRequestHandle,
    client: "GitHubClient",
    config: ShepherdConfig,
    clock: Clock,
    token: CancelToken,
) -> bool:
    """
    Return whether the PR merges cleanly, polling while GitHub computes it.

    GitHub reports `mergeable: null` until a background job has run, so the
    PR is re-fetched with exponential backoff until the value settles.
    """
    if pr.mergeable is not None:
        return pr.mergeable

    attempts = 0
    delays = Backoff(config.mergeability, clock).delays()
    while True:
        token.raise_if_cancelled()
        data = client.get_pull(pr.owner, pr.repo, pr.number)
        attempts += 1
        pr.mergeable = data.get("mergeable")
        if pr.mergeable is not None:
            return pr.mergeable
        delay = next(delays, None)
        if delay is None:
            raise MergeabilityUnknownError(str(pr), attempts)
        logger.debug("%s: mergeability pending, retrying in %.1fs", pr, delay)
        clock.sleep(delay)


def check_status(pr: PullRequestHandle, client: "GitHubClient", token: CancelToken) -> Status:
    """Map the combined CI status of the head commit to a Status."""
    token.raise_if_cancelled()
    combined = client.get_combined_status(pr.owner, pr.repo, pr.head_sha)
    if combined.total_count == 0:
        return Status.MISSING_CHECKS
    if combined.state in FAILED_STATES:
        return Status.FAILED_CHECKS
    if combined.state == "pending":
        return Status.PENDING_CHECKS
    if combined.state == "success":
        return Status.CHECKS_OK
    raise ClassificationError(f"unknown check status {combined.state!r}")
