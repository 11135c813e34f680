"""
Transition engine: maps a classified status to at most one action.

| Status               | Action                                         |
|----------------------|------------------------------------------------|
| waiting-for-upstream | none                                           |
| not-mergeable        | ask the bot to recreate, set the rebase marker |
| mergeable            | clear the rebase marker                        |
| missing-checks       | recreate if enabled, otherwise report only     |
| failed-checks        | run the update script                          |
| pending-checks       | none                                           |
| checks-ok            | submit upstream, set the upstream marker       |
| unknown              | none                                           |

Under dry-run the action is decided and logged but nothing is written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

from .config import ShepherdConfig
from .labels import add_label, has_label, remove_label
from .models import Action, Classification, PullRequestHandle, Status
from .runtime import CancelToken
from .script import run_update_script

if TYPE_CHECKING:
    from .github import GitHubClient

logger = logging.getLogger(__name__)

ScriptRunner = Callable[[PullRequestHandle, "str | None", bool], bool]


@dataclass
class Transition:
    """Everything a status handler needs for one PR."""

    pr: PullRequestHandle
    classification: Classification
    client: "GitHubClient"
    config: ShepherdConfig
    token: CancelToken
    runner: ScriptRunner


def apply(
    pr: PullRequestHandle,
    classification: Classification,
    client: "GitHubClient",
    config: ShepherdConfig,
    token: CancelToken | None = None,
    runner: ScriptRunner = run_update_script,
) -> Action:
    """Carry out the action for `classification.status` on `pr`."""
    step = Transition(pr, classification, client, config, token or CancelToken(), runner)
    action = HANDLERS[classification.status](step)
    if action is not Action.NONE:
        prefix = "[DRY-RUN] " if pr.dry_run else ""
        logger.info("%s%s: %s -> %s", prefix, pr, classification.status, action)
    return action


def _no_action(step: Transition) -> Action:
    return Action.NONE


def _request_recreate(step: Transition) -> Action:
    pr, rebase = step.pr, step.config.labels.rebase
    if has_label(pr, rebase):
        # Already asked in a previous run, still waiting for the bot.
        return Action.NONE
    if pr.dry_run:
        logger.info("[DRY-RUN] %s: would comment %r", pr, step.config.recreate_command)
    else:
        step.token.raise_if_cancelled()
        step.client.create_comment(pr.owner, pr.repo, pr.number, step.config.recreate_command)
    add_label(pr, rebase, step.client, step.token)
    return Action.REQUEST_RECREATE


def _clear_rebase_marker(step: Transition) -> Action:
    if remove_label(step.pr, step.config.labels.rebase, step.client, step.token):
        return Action.CLEAR_REBASE_MARKER
    return Action.NONE


def _missing_checks(step: Transition) -> Action:
    if step.config.recreate_on_missing:
        return _request_recreate(step)
    logger.warning("%s: no checks reported for %s", step.pr, step.pr.head_sha)
    return Action.REPORT_ONLY


def _run_update_script(step: Transition) -> Action:
    pr = step.pr
    if pr.updated_once:
        return Action.NONE
    pr.updated_once = True
    step.token.raise_if_cancelled()
    step.runner(pr, step.config.update_script, pr.dry_run)
    return Action.RUN_UPDATE_SCRIPT


def _submit_upstream(step: Transition) -> Action:
    pr = step.pr
    owner, repo = pr.upstream_repo.split("/", 1)

    # Classification already listed the open upstream copies.
    if step.classification.upstream.open_count:
        logger.info("%s: reusing %d open upstream PR(s)", pr, step.classification.upstream.open_count)
    elif pr.dry_run:
        logger.info("[DRY-RUN] %s: would open PR on %s from %s", pr, pr.upstream_repo, pr.head_label)
    else:
        step.token.raise_if_cancelled()
        created = step.client.create_pull(
            owner, repo, title=pr.title, head=pr.head_label, base=pr.base_ref, body=pr.body
        )
        logger.info("%s: opened upstream PR %s", pr, created.get("html_url"))

    add_label(pr, step.config.labels.upstream, step.client, step.token)
    return Action.SUBMIT_UPSTREAM


HANDLERS: dict[Status, Callable[[Transition], Action]] = {
    Status.WAITING_FOR_UPSTREAM: _no_action,
    Status.NOT_MERGEABLE: _request_recreate,
    Status.MERGEABLE: _clear_rebase_marker,
    Status.MISSING_CHECKS: _missing_checks,
    Status.FAILED_CHECKS: _run_update_script,
    Status.PENDING_CHECKS: _no_action,
    Status.CHECKS_OK: _submit_upstream,
    Status.UNKNOWN: _no_action,
}

_unhandled = set(Status) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"No transition for statuses: {sorted(s.value for s in _unhandled)}")
