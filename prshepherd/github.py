"""
GitHub REST API client for prshepherd.

Covers only what the shepherd needs: repository and fork lookup, pull
request listing and creation, combined commit status, issue comments and
label replacement.

Supports:
- Link-header pagination
- Retry with linear delay on network errors
- Waiting out primary and secondary rate limits (403/429)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterator

import requests

from . import __version__
from .errors import RateLimitError, TransientAPIError
from .runtime import Clock, SystemClock

logger = logging.getLogger(__name__)

GITHUB_API_BASE = "https://api.github.com"
DEFAULT_PER_PAGE = 100
MAX_RETRIES = 3
RETRY_DELAY = 1.0
REQUEST_TIMEOUT = 30

RATE_LIMIT_BUFFER_SECONDS = 5
RATE_LIMIT_MAX_WAIT_SECONDS = 900
SECONDARY_RATE_LIMIT_WAIT_SECONDS = 60


@dataclass
class CombinedStatus:
    """Aggregate CI result for a commit."""

    state: str  # failure, pending, success
    total_count: int
    contexts: list[str] = field(default_factory=list)


def rate_limit_wait(response: requests.Response, now: float | None = None) -> int | None:
    """
    Seconds to wait before retrying a rate-limited response.

    Returns None when the response is not a rate-limit rejection. A 403
    without rate-limit headers or message is a plain permission error.
    """
    if response.status_code not in (403, 429):
        return None

    now = time.time() if now is None else now
    headers = response.headers

    retry_after = headers.get("Retry-After")
    if retry_after:
        try:
            return min(int(retry_after), RATE_LIMIT_MAX_WAIT_SECONDS)
        except ValueError:
            pass

    if headers.get("X-RateLimit-Remaining") == "0":
        try:
            reset = int(headers.get("X-RateLimit-Reset", 0))
        except ValueError:
            reset = 0
        wait = max(0, int(reset - now)) + RATE_LIMIT_BUFFER_SECONDS
        return min(wait, RATE_LIMIT_MAX_WAIT_SECONDS)

    text = (response.text or "").lower()
    if "secondary rate limit" in text or "rate limit exceeded" in text:
        return SECONDARY_RATE_LIMIT_WAIT_SECONDS
    if response.status_code == 429:
        return SECONDARY_RATE_LIMIT_WAIT_SECONDS
    return None


class GitHubClient:
    """GitHub REST API client with pagination and rate limit handling."""

    def __init__(
        self,
        token: str | None = None,
        clock: Clock | None = None,
        base_url: str = GITHUB_API_BASE,
    ):
        self.token = token
        self.clock = clock or SystemClock()
        self.base_url = base_url.rstrip("/")
        self.session = requests.Session()

        if self.token:
            self.session.headers["Authorization"] = f"token {self.token}"

        self.session.headers["Accept"] = "application/vnd.github.v3+json"
        self.session.headers["User-Agent"] = f"prshepherd/{__version__}"

    def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> requests.Response:
        """Make an API request with retry and rate limit handling."""
        url = endpoint if endpoint.startswith("http") else f"{self.base_url}{endpoint}"

        for attempt in range(MAX_RETRIES):
            try:
                response = self.session.request(
                    method, url, params=params, timeout=REQUEST_TIMEOUT, **kwargs
                )
            except requests.RequestException as e:
                if attempt < MAX_RETRIES - 1:
                    self.clock.sleep(RETRY_DELAY * (attempt + 1))
                    continue
                raise TransientAPIError(f"Request failed: {method} {url}: {e}") from e

            wait = rate_limit_wait(response)
            if wait is not None:
                if attempt < MAX_RETRIES - 1:
                    logger.warning(
                        "Rate limited on %s %s, waiting %ss (attempt %d/%d)",
                        method, endpoint, wait, attempt + 1, MAX_RETRIES,
                    )
                    self.clock.sleep(wait)
                    continue
                reset = response.headers.get("X-RateLimit-Reset")
                raise RateLimitError(
                    int(reset) if reset and reset.isdigit() else None,
                    response.status_code,
                )

            if response.status_code >= 400:
                raise TransientAPIError(
                    f"GitHub API error: {method} {endpoint}: {response.status_code} - {response.text}",
                    response.status_code,
                )

            return response

        raise TransientAPIError("Max retries exceeded")

    def _paginate(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Iterate through paginated API results following the Link header."""
        params = dict(params or {})
        params.setdefault("per_page", DEFAULT_PER_PAGE)
        url: str | None = endpoint

        while url:
            response = self._request("GET", url, params=params)
            items = response.json()
            if not items:
                break
            yield from items
            # The next link already carries the query string.
            url = response.links.get("next", {}).get("url")
            params = None

    def list_user_repos(self, user: str) -> list[dict[str, Any]]:
        """Repositories owned by `user`."""
        return list(self._paginate(f"/users/{user}/repos", {"type": "owner"}))

    def get_repo(self, owner: str, name: str) -> dict[str, Any]:
        """Full repository payload, including `parent` and `source` for forks."""
        return self._request("GET", f"/repos/{owner}/{name}").json()

    def list_pulls(
        self,
        owner: str,
        repo: str,
        state: str = "open",
        head: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        List pull requests for a repository.

        Args:
            owner: Repository owner
            repo: Repository name
            state: open, closed or all
            head: Filter by head label ("user:branch")
        """
        params: dict[str, Any] = {"state": state}
        if head:
            params["head"] = head
        return list(self._paginate(f"/repos/{owner}/{repo}/pulls", params))

    def get_pull(self, owner: str, repo: str, number: int) -> dict[str, Any]:
        """Get a specific pull request, including its `mergeable` flag."""
        return self._request("GET", f"/repos/{owner}/{repo}/pulls/{number}").json()

    def get_combined_status(self, owner: str, repo: str, ref: str) -> CombinedStatus:
        """Combined CI status of a commit."""
        data = self._request("GET", f"/repos/{owner}/{repo}/commits/{ref}/status").json()
        return CombinedStatus(
            state=data.get("state", ""),
            total_count=data.get("total_count", 0),
            contexts=[s.get("context", "") for s in data.get("statuses", [])],
        )

    def create_comment(self, owner: str, repo: str, number: int, body: str) -> dict[str, Any]:
        endpoint = f"/repos/{owner}/{repo}/issues/{number}/comments"
        return self._request("POST", endpoint, json={"body": body}).json()

    def replace_labels(self, owner: str, repo: str, number: int, labels: list[str]) -> list[str]:
        """Replace the whole label set of an issue or pull request."""
        endpoint = f"/repos/{owner}/{repo}/issues/{number}/labels"
        data = self._request("PUT", endpoint, json={"labels": labels}).json()
        return [label.get("name", "") for label in data]

    def create_pull(
        self,
        owner: str,
        repo: str,
        title: str,
        head: str,
        base: str,
        body: str | None = None,
    ) -> dict[str, Any]:
        payload = {"title": title, "head": head, "base": base, "body": body or ""}
        return self._request("POST", f"/repos/{owner}/{repo}/pulls", json=payload).json()
