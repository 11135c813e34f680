"""
Worker pool that drains managed PRs through classify -> apply.

Pipeline: harvester -> bounded queue -> `concurrency` workers -> join.
Each PR is owned by exactly one worker. Errors are contained per PR and
reported as failed outcomes; only discovery failures abort the run.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Callable, Iterator

from .classifier import classify
from .config import ShepherdConfig
from .discovery import enumerate_forks, harvest
from .engine import ScriptRunner, apply
from .errors import Cancelled, ShepherdError
from .models import Outcome, PullRequestHandle
from .runtime import CancelToken, Clock, SystemClock
from .script import run_update_script

if TYPE_CHECKING:
    from .github import GitHubClient

logger = logging.getLogger(__name__)

Reporter = Callable[[Outcome], None]

_DONE = object()


def process(
    pr: PullRequestHandle,
    client: "GitHubClient",
    config: ShepherdConfig,
    clock: Clock,
    token: CancelToken,
    runner: ScriptRunner = run_update_script,
) -> Outcome:
    """Classify then apply for one PR. Never raises ShepherdError."""
    outcome = Outcome(pr)
    try:
        classification = classify(pr, client, config, clock, token)
        outcome.status = classification.status
        outcome.action = apply(pr, classification, client, config, token, runner)
    except ShepherdError as e:
        outcome.error = e
    return outcome


class Dispatcher:
    """Runs PR handles through a fixed number of workers."""

    def __init__(
        self,
        client: "GitHubClient",
        config: ShepherdConfig,
        clock: Clock | None = None,
        token: CancelToken | None = None,
        report: Reporter | None = None,
        runner: ScriptRunner = run_update_script,
    ):
        self.client = client
        self.config = config
        self.clock = clock or SystemClock()
        self.token = token or CancelToken()
        self.report = report
        self.runner = runner
        self.outcomes: list[Outcome] = []

    async def run(self, handles: Iterator[PullRequestHandle]) -> list[Outcome]:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.config.concurrency)
        workers = [
            asyncio.create_task(self._worker(queue))
            for _ in range(self.config.concurrency)
        ]
        try:
            produced = await self._produce(queue, handles)
            logger.debug("queued %d pull requests", produced)
        finally:
            # Close the queue: one sentinel per worker.
            for _ in workers:
                await queue.put(_DONE)
        await asyncio.gather(*workers)
        return self.outcomes

    async def _produce(self, queue: asyncio.Queue, handles: Iterator[PullRequestHandle]) -> int:
        count = 0
        while not self.token.cancelled:
            # The harvester issues blocking API calls.
            pr = await asyncio.to_thread(next, handles, None)
            if pr is None:
                break
            await queue.put(pr)
            count += 1
        return count

    async def _worker(self, queue: asyncio.Queue) -> None:
        while True:
            item = await queue.get()
            try:
                if item is _DONE:
                    return
                if self.token.cancelled:
                    continue
                outcome = await self._process(item)
                self._record(outcome)
            finally:
                queue.task_done()

    async def _process(self, pr: PullRequestHandle) -> Outcome:
        pr_token = self.token.child()
        call = asyncio.to_thread(self._process_guarded, pr, pr_token)
        if self.config.pr_deadline is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.config.pr_deadline)
        except asyncio.TimeoutError:
            reason = f"deadline of {self.config.pr_deadline}s exceeded"
            # Stops the worker thread at its next API call.
            pr_token.cancel(reason)
            return Outcome(pr, error=Cancelled(reason))

    def _process_guarded(self, pr: PullRequestHandle, token: CancelToken) -> Outcome:
        try:
            return process(pr, self.client, self.config, self.clock, token, self.runner)
        except Exception as e:
            logger.exception("%s: unexpected error", pr)
            return Outcome(pr, error=e)

    def _record(self, outcome: Outcome) -> None:
        self.outcomes.append(outcome)
        if outcome.ok:
            logger.info("%s: %s (%s)", outcome.pr, outcome.status, outcome.action)
        else:
            logger.error("%s: failed: %s", outcome.pr, outcome.error)
        if self.report is None:
            return
        try:
            self.report(outcome)
        except Exception:
            logger.exception("%s: reporting the outcome failed", outcome.pr)


async def run(
    client: "GitHubClient",
    config: ShepherdConfig,
    clock: Clock | None = None,
    token: CancelToken | None = None,
    report: Reporter | None = None,
    runner: ScriptRunner = run_update_script,
) -> list[Outcome]:
    """
    One complete shepherd run: discover forks, harvest PRs, process them.

    Raises:
        DiscoveryError: forks could not be enumerated
    """
    token = token or CancelToken()
    forks = await enumerate_forks(client, config, token)
    logger.info("found %d forks of %s", len(forks), config.upstream_org)
    dispatcher = Dispatcher(client, config, clock=clock, token=token, report=report, runner=runner)
    return await dispatcher.run(harvest(client, forks, config, token))
