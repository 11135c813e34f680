"""
prshepherd CLI - Sanitize and publish dependabot PRs from forks.

Commands:
    run       - Process every managed PR on the user's forks
    classify  - Show the status of a single PR without changing it
"""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

from . import __version__
from .classifier import classify as classify_pr
from .config import ShepherdConfig, get_repo_root, resolve_token
from .discovery import enumerate_forks, harvest, upstream_of
from .errors import Cancelled, ConfigError, DiscoveryError, ShepherdError
from .github import GitHubClient
from .models import Outcome, PullRequestHandle
from .pool import Dispatcher
from .runtime import CancelToken


def _setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _load_config(config_path: Path | None, **overrides) -> ShepherdConfig:
    config = ShepherdConfig.load(get_repo_root(), config_path)
    return config.with_overrides(**overrides).validate()


def format_outcome(outcome: Outcome) -> str:
    if outcome.ok:
        return f"✔ {outcome.pr}: {outcome.status} ({outcome.action})"
    return f"✗ {outcome.pr}: {outcome.status}: {outcome.error}"


@click.group()
@click.version_option(version=__version__)
def main():
    """prshepherd - Sanitize and publish dependabot PRs from forks."""
    load_dotenv()
    load_dotenv(Path.cwd() / ".env")


@main.command()
@click.option("--github.user", "github_user", default=None, help="Your GitHub user")
@click.option("--github.token", "token_path", type=click.Path(path_type=Path), default=None,
              help="Path to your GitHub token (default: $GITHUB_TOKEN)")
@click.option("--github.upstream-org", "upstream_org", default=None, help="The upstream organization")
@click.option("--dry-run", is_flag=True, help="Compute actions without executing them")
@click.option("--recreate-missing-checks", "recreate_on_missing", is_flag=True,
              help="Recreate the pull request when checks are missing")
@click.option("--script", "update_script", default=None, help="Script to run on PRs with failed checks")
@click.option("--concurrency", type=int, default=None, help="Number of concurrent workers")
@click.option("--pr-deadline", type=float, default=None, help="Seconds allowed per pull request")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None,
              help="Config file (default: prshepherd.yml at the repo root)")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def run(
    github_user: str | None,
    token_path: Path | None,
    upstream_org: str | None,
    dry_run: bool,
    recreate_on_missing: bool,
    update_script: str | None,
    concurrency: int | None,
    pr_deadline: float | None,
    config_path: Path | None,
    verbose: bool,
):
    """Process every managed PR on the user's forks.

    Examples:

        prshepherd run --github.user me --github.token ~/.gh-token

        prshepherd run --dry-run --recreate-missing-checks
    """
    _setup_logging(verbose)
    try:
        config = _load_config(
            config_path,
            github_user=github_user,
            upstream_org=upstream_org,
            dry_run=dry_run or None,
            recreate_on_missing=recreate_on_missing or None,
            update_script=update_script,
            concurrency=concurrency,
            pr_deadline=pr_deadline,
        )
        client = GitHubClient(token=resolve_token(token_path))
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    if config.dry_run:
        click.echo("Dry-run mode: no labels, comments or pull requests will be written")

    token = CancelToken()

    async def _run() -> list[Outcome]:
        try:
            asyncio.get_running_loop().add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
        except NotImplementedError:
            pass
        click.echo(f"Retrieving {config.upstream_org!r} organization's forks for the {config.github_user!r} user")
        forks = await enumerate_forks(client, config, token)
        click.echo(f"✔ Found {len(forks)} forks")
        dispatcher = Dispatcher(
            client, config, token=token,
            report=lambda outcome: click.echo(format_outcome(outcome)),
        )
        return await dispatcher.run(harvest(client, forks, config, token))

    try:
        asyncio.run(_run())
    except DiscoveryError as e:
        click.echo(f"✗ {e}", err=True)
        sys.exit(1)
    except Cancelled:
        pass
    if token.cancelled:
        click.echo("Interrupted: remaining pull requests were not processed", err=True)


@main.command()
@click.argument("repo")
@click.argument("number", type=int)
@click.option("--github.token", "token_path", type=click.Path(path_type=Path), default=None,
              help="Path to your GitHub token (default: $GITHUB_TOKEN)")
@click.option("--github.upstream-org", "upstream_org", default=None, help="The upstream organization")
@click.option("--config", "config_path", type=click.Path(path_type=Path), default=None)
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
def classify(
    repo: str,
    number: int,
    token_path: Path | None,
    upstream_org: str | None,
    config_path: Path | None,
    verbose: bool,
):
    """Show the status of one PR (REPO is owner/name). Never writes."""
    _setup_logging(verbose)
    if "/" not in repo:
        click.echo(f"Error: expected owner/name, got {repo!r}", err=True)
        sys.exit(1)
    owner, name = repo.split("/", 1)
    try:
        config = _load_config(config_path, github_user=owner, upstream_org=upstream_org, dry_run=True)
        client = GitHubClient(token=resolve_token(token_path))
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(1)

    try:
        upstream = upstream_of(client.get_repo(owner, name), config.upstream_org)
        if upstream is None:
            click.echo(f"✗ {repo} is not a fork of a {config.upstream_org} repository", err=True)
            sys.exit(1)
        pr = PullRequestHandle.from_api(client.get_pull(owner, name, number), upstream, dry_run=True)
        result = classify_pr(pr, client, config)
    except ShepherdError as e:
        click.echo(f"✗ {repo}#{number}: {e}", err=True)
        sys.exit(1)

    click.echo(f"{pr}: {result.status}")
    if result.upstream.url:
        click.echo(f"  upstream: {result.upstream.url}")


if __name__ == "__main__":
    main()
