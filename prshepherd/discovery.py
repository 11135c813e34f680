"""
Fork enumeration and PR harvesting.

Forks are verified concurrently, one lightweight lookup per candidate, and
joined before any pull request is harvested.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterator

from .config import ShepherdConfig
from .errors import DiscoveryError, ShepherdError
from .models import PullRequestHandle
from .runtime import CancelToken

if TYPE_CHECKING:
    from .github import GitHubClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Fork:
    owner: str
    name: str
    upstream: str  # full name of the source repository

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


def upstream_of(repo: dict[str, Any], upstream_org: str) -> str | None:
    """Full name of the repo's upstream if it belongs to `upstream_org`."""
    for key in ("source", "parent"):
        origin = repo.get(key) or {}
        owner = (origin.get("owner") or {}).get("login", "")
        if owner.lower() == upstream_org.lower() and origin.get("full_name"):
            return origin["full_name"]
    return None


async def enumerate_forks(
    client: "GitHubClient",
    config: ShepherdConfig,
    token: CancelToken,
) -> list[Fork]:
    """
    Forks of `config.upstream_org` projects owned by `config.github_user`.

    Raises:
        DiscoveryError: the user's repositories could not be listed
    """
    token.raise_if_cancelled()
    try:
        repos = await asyncio.to_thread(client.list_user_repos, config.github_user)
    except ShepherdError as e:
        raise DiscoveryError(f"failed to list repositories for {config.github_user}: {e}") from e

    candidates = [repo for repo in repos if repo.get("fork")]
    logger.debug("%d of %d repositories are forks", len(candidates), len(repos))

    async def verify(repo: dict[str, Any]) -> Fork | None:
        token.raise_if_cancelled()
        name = repo.get("name", "")
        try:
            full = await asyncio.to_thread(client.get_repo, config.github_user, name)
        except ShepherdError as e:
            logger.error("failed to get repository %s: %s", name, e)
            return None
        upstream = upstream_of(full, config.upstream_org)
        if upstream is None:
            return None
        return Fork(owner=config.github_user, name=name, upstream=upstream)

    results = await asyncio.gather(*(verify(repo) for repo in candidates))
    return sorted((fork for fork in results if fork is not None), key=lambda f: f.name)


def harvest(
    client: "GitHubClient",
    forks: list[Fork],
    config: ShepherdConfig,
    token: CancelToken,
) -> Iterator[PullRequestHandle]:
    """Yield a fresh handle for each open PR carrying the target label."""
    for fork in forks:
        if token.cancelled:
            return
        try:
            pulls = client.list_pulls(fork.owner, fork.name, state="open")
        except ShepherdError as e:
            logger.error("failed to list pull requests from %s: %s", fork.full_name, e)
            continue
        for data in pulls:
            names = {label.get("name") for label in data.get("labels", [])}
            if config.labels.target not in names:
                continue
            yield PullRequestHandle.from_api(data, upstream_repo=fork.upstream, dry_run=config.dry_run)
