"""
Error types raised while shepherding pull requests.

Run-level errors (configuration, discovery) abort the run. Everything else
is scoped to a single pull request and is caught by the worker handling it.
"""

from __future__ import annotations


class ShepherdError(Exception):
    """Base class for prshepherd errors."""


class ConfigError(ShepherdError):
    """Invalid or incomplete run configuration."""


class DiscoveryError(ShepherdError):
    """Forks could not be enumerated; nothing can be processed."""


class Cancelled(ShepherdError):
    """The run, or the pull request's deadline, was cancelled."""


class TransientAPIError(ShepherdError):
    """A GitHub API call failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(TransientAPIError):
    """Rate limit still exceeded after waiting for it to reset."""

    def __init__(self, reset_time: int | None = None, status_code: int | None = 429):
        super().__init__("GitHub API rate limit exceeded", status_code)
        self.reset_time = reset_time


class MergeabilityUnknownError(ShepherdError):
    """GitHub did not compute mergeability within the polling limits."""

    def __init__(self, pr: str, attempts: int):
        super().__init__(f"mergeability still unknown after {attempts} attempts")
        self.pr = pr
        self.attempts = attempts


class ScriptExecutionError(ShepherdError):
    """The update script exited with a non-zero status."""

    def __init__(self, script: str, returncode: int, stdout: str = "", stderr: str = ""):
        super().__init__(
            f"{script} exited with status {returncode}\nstdout: {stdout}\nstderr: {stderr}"
        )
        self.script = script
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ClassificationError(ShepherdError):
    """A signal had a value the classifier does not understand."""
