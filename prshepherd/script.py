"""
Runs the user-supplied update script against a PR whose checks failed.

The script receives the PR's location through the environment:
GITHUB_OWNER, GITHUB_REPOSITORY and GITHUB_BRANCH.
"""

from __future__ import annotations

import logging
import os
import subprocess

from .errors import ScriptExecutionError
from .models import PullRequestHandle

logger = logging.getLogger(__name__)


def script_env(pr: PullRequestHandle) -> dict[str, str]:
    env = dict(os.environ)
    env.update({
        "GITHUB_OWNER": pr.owner,
        "GITHUB_REPOSITORY": pr.repo,
        "GITHUB_BRANCH": pr.head_ref,
    })
    return env


def run_update_script(pr: PullRequestHandle, script: str | None, dry_run: bool = False) -> bool:
    """
    Run `script` for `pr`. Returns True if the script actually ran.

    Raises:
        ScriptExecutionError: the script could not start or exited non-zero
    """
    if not script:
        logger.info("%s: no update script configured, skipping", pr)
        return False
    if dry_run:
        logger.info("[DRY-RUN] %s: would run %s", pr, script)
        return False

    logger.info("%s: running %s", pr, script)
    try:
        result = subprocess.run(
            [script],
            env=script_env(pr),
            capture_output=True,
            text=True,
        )
    except OSError as e:
        raise ScriptExecutionError(script, -1, "", str(e)) from e

    if result.returncode != 0:
        raise ScriptExecutionError(script, result.returncode, result.stdout, result.stderr)
    logger.debug("%s: %s output:\n%s", pr, script, result.stdout)
    return True
