from __future__ import annotations

from dataclasses import replace

import pytest

from prshepherd.engine import HANDLERS, apply
from prshepherd.errors import ScriptExecutionError
from prshepherd.github import CombinedStatus
from prshepherd.models import Action, Classification, PullRequestHandle, Status
from prshepherd.pool import process
from prshepherd.runtime import CancelToken

from conftest import make_pull, upstream_pull


class RecordingRunner:
    def __init__(self, error: Exception | None = None):
        self.calls: list[tuple[str, str | None, bool]] = []
        self.error = error

    def __call__(self, pr, script, dry_run):
        self.calls.append((str(pr), script, dry_run))
        if self.error:
            raise self.error
        return not dry_run


def _store(fake, **kwargs) -> dict:
    data = make_pull(**kwargs)
    fake.pulls.setdefault("alice/foo", []).append(data)
    return data


def _run_once(fake, config, clock, number=42, runner=None):
    """One scheduled run for a single PR, starting from its stored labels."""
    data = fake.find_pull("alice/foo", number)
    pr = PullRequestHandle.from_api(data, upstream_repo="prometheus/foo", dry_run=config.dry_run)
    return process(pr, fake, config, clock, CancelToken(), runner or RecordingRunner())


def _labels(fake, number=42) -> list[str]:
    return [label["name"] for label in fake.find_pull("alice/foo", number)["labels"]]


def test_every_status_has_a_transition():
    assert set(HANDLERS) == set(Status)


def test_waiting_for_upstream_mutates_nothing(fake, config, clock):
    data = _store(fake)
    fake.pulls["prometheus/foo"] = [upstream_pull(data["head"]["label"], state="closed", merged=True)]

    outcome = _run_once(fake, config, clock)

    assert outcome.status is Status.WAITING_FOR_UPSTREAM
    assert outcome.action is Action.NONE
    assert fake.mutations == []


def test_not_mergeable_requests_recreate_exactly_once(fake, config, clock):
    _store(fake, number=7)
    fake.mergeable[("alice/foo", 7)] = [False]

    first = _run_once(fake, config, clock, number=7)

    assert first.status is Status.NOT_MERGEABLE
    assert first.action is Action.REQUEST_RECREATE
    assert fake.count("create_comment") == 1
    assert ("create_comment", ("alice", "foo", 7, "@dependabot recreate")) in fake.calls
    assert _labels(fake, 7) == ["managed-dependency", "needs rebase"]

    second = _run_once(fake, config, clock, number=7)

    assert second.status is Status.NOT_MERGEABLE
    assert second.action is Action.NONE
    assert fake.count("create_comment") == 1
    assert fake.count("replace_labels") == 1
    assert _labels(fake, 7) == ["managed-dependency", "needs rebase"]


def test_comment_is_posted_before_marker(fake, config, clock):
    _store(fake, number=7)
    fake.mergeable[("alice/foo", 7)] = [False]

    _run_once(fake, config, clock, number=7)

    names = [name for name, _ in fake.mutations]
    assert names == ["create_comment", "replace_labels"]


def test_mergeable_again_clears_rebase_marker_only(fake, config, clock):
    _store(fake)
    fake.mergeable[("alice/foo", 42)] = [False]
    _run_once(fake, config, clock)
    before = len(fake.mutations)

    fake.mergeable[("alice/foo", 42)] = [True]
    outcome = _run_once(fake, config, clock)

    assert outcome.status is Status.MERGEABLE
    assert outcome.action is Action.CLEAR_REBASE_MARKER
    assert [name for name, _ in fake.mutations[before:]] == ["replace_labels"]
    assert _labels(fake) == ["managed-dependency"]


def test_failure_pending_success_sequence(fake, config, clock):
    _store(fake)
    fake.mergeable[("alice/foo", 42)] = [True]
    runner = RecordingRunner()

    fake.statuses["abc123"] = CombinedStatus(state="failure", total_count=2)
    run1 = _run_once(fake, config, clock, runner=runner)
    assert run1.action is Action.RUN_UPDATE_SCRIPT
    assert len(runner.calls) == 1
    assert fake.mutations == []

    fake.statuses["abc123"] = CombinedStatus(state="pending", total_count=2)
    run2 = _run_once(fake, config, clock, runner=runner)
    assert run2.action is Action.NONE
    assert len(runner.calls) == 1
    assert fake.mutations == []

    fake.statuses["abc123"] = CombinedStatus(state="success", total_count=2)
    run3 = _run_once(fake, config, clock, runner=runner)
    assert run3.action is Action.SUBMIT_UPSTREAM
    assert fake.count("create_pull") == 1
    assert _labels(fake) == ["managed-dependency", "upstream pr"]
    assert len(runner.calls) == 1


def test_checks_ok_submits_upstream(fake, config, clock):
    data = _store(fake, number=42, sha="abc123", mergeable=True)
    fake.statuses["abc123"] = CombinedStatus(state="success", total_count=1)

    outcome = _run_once(fake, config, clock)

    assert outcome.status is Status.CHECKS_OK
    assert outcome.action is Action.SUBMIT_UPSTREAM
    assert (
        "create_pull",
        ("prometheus", "foo", data["title"], data["head"]["label"], "master"),
    ) in fake.calls
    assert _labels(fake) == ["managed-dependency", "upstream pr"]


def test_next_run_after_submission_is_waiting(fake, config, clock):
    _store(fake, mergeable=True)
    fake.statuses["abc123"] = CombinedStatus(state="success", total_count=1)
    _run_once(fake, config, clock)
    before = len(fake.mutations)

    outcome = _run_once(fake, config, clock)

    assert outcome.status is Status.WAITING_FOR_UPSTREAM
    assert len(fake.mutations) == before


def test_checks_ok_reuses_existing_upstream_pr(fake, config, clock):
    data = _store(fake, mergeable=True)
    label = data["head"]["label"]
    # Two open copies: not considered forwarded, but nothing new is opened.
    fake.pulls["prometheus/foo"] = [upstream_pull(label, number=1), upstream_pull(label, number=2)]
    fake.statuses["abc123"] = CombinedStatus(state="success", total_count=1)

    outcome = _run_once(fake, config, clock)

    assert outcome.action is Action.SUBMIT_UPSTREAM
    assert fake.count("create_pull") == 0
    assert fake.count("list_pulls") == 2
    assert _labels(fake) == ["managed-dependency", "upstream pr"]


def test_missing_checks_reports_only_by_default(fake, config, clock):
    _store(fake, mergeable=True)

    outcome = _run_once(fake, config, clock)

    assert outcome.status is Status.MISSING_CHECKS
    assert outcome.action is Action.REPORT_ONLY
    assert fake.mutations == []


def test_missing_checks_recreates_when_enabled(fake, config, clock):
    config = replace(config, recreate_on_missing=True)
    _store(fake, mergeable=True)

    outcome = _run_once(fake, config, clock)

    assert outcome.action is Action.REQUEST_RECREATE
    assert fake.count("create_comment") == 1
    assert _labels(fake) == ["managed-dependency", "needs rebase"]


def test_update_script_runs_once_per_handle(fake, config):
    pr = PullRequestHandle.from_api(make_pull(), upstream_repo="prometheus/foo")
    runner = RecordingRunner()
    failed = Classification(Status.FAILED_CHECKS)

    assert apply(pr, failed, fake, config, runner=runner) is Action.RUN_UPDATE_SCRIPT
    assert apply(pr, failed, fake, config, runner=runner) is Action.NONE
    assert runner.calls == [(str(pr), "/usr/local/bin/update-deps", False)]


def test_script_failure_propagates(fake, config):
    pr = PullRequestHandle.from_api(make_pull(), upstream_repo="prometheus/foo")
    runner = RecordingRunner(error=ScriptExecutionError("update-deps", 2, "", "boom"))

    with pytest.raises(ScriptExecutionError) as exc_info:
        apply(pr, Classification(Status.FAILED_CHECKS), fake, config, runner=runner)
    assert exc_info.value.stderr == "boom"


@pytest.mark.parametrize("status", list(Status))
@pytest.mark.parametrize("recreate_on_missing", [False, True])
def test_dry_run_never_mutates(fake, config, status, recreate_on_missing):
    config = replace(config, dry_run=True, recreate_on_missing=recreate_on_missing)
    labels = ("managed-dependency", "needs rebase") if status is Status.MERGEABLE else ("managed-dependency",)
    data = _store(fake, labels=labels)
    pr = PullRequestHandle.from_api(data, upstream_repo="prometheus/foo", dry_run=True)
    runner = RecordingRunner()

    apply(pr, Classification(status), fake, config, runner=runner)

    assert fake.mutations == []
    assert all(dry_run for _, _, dry_run in runner.calls)


def test_dry_run_still_reports_intended_action(fake, config):
    config = replace(config, dry_run=True)
    pr = PullRequestHandle.from_api(make_pull(number=7), upstream_repo="prometheus/foo", dry_run=True)

    action = apply(pr, Classification(Status.NOT_MERGEABLE), fake, config)

    assert action is Action.REQUEST_RECREATE
    assert pr.labels == ["managed-dependency", "needs rebase"]
    assert fake.mutations == []
