"""Tests for concurrent dispatch and the state sweep."""

import threading
from unittest.mock import MagicMock

from prloop_core.config import DEFAULT_CONFIG
from prloop_core.dispatcher import EventDispatcher
from prloop_core.gh.platform import GitHubPlatform
from prloop_core.models import PRKey
from prloop_core.orchestrator import EventOutcome, Orchestrator
from prloop_core.state import PRStateStore

KEY = PRKey("octo", "repo", 7)


def _approval(review_id, pr_number=7):
    return {
        "action": "submitted",
        "review": {"id": review_id, "body": "LGTM", "user": {"login": "codex[bot]", "type": "Bot"}},
        "pull_request": {"number": pr_number},
        "repository": {"full_name": "octo/repo"},
    }


def test_submit_returns_outcome_future():
    orchestrator = MagicMock()
    orchestrator.handle_event.return_value = EventOutcome(key=KEY, result="ignored")
    with EventDispatcher(orchestrator, PRStateStore(), max_workers=2) as dispatcher:
        outcome = dispatcher.submit("ping", {}).result(timeout=5)
    assert outcome.result == "ignored"
    orchestrator.handle_event.assert_called_once_with("ping", {})


def test_from_config():
    config = {**DEFAULT_CONFIG, "max_workers": 2, "state_retention_hours": 6, "cleanup_interval_minutes": 1}
    dispatcher = EventDispatcher.from_config(MagicMock(), PRStateStore(), config)
    try:
        assert dispatcher.retention_hours == 6
        assert dispatcher.cleanup_interval == 60
    finally:
        dispatcher.shutdown()


def test_sweep_uses_retention():
    store = MagicMock()
    store.cleanup.return_value = [KEY]
    dispatcher = EventDispatcher(MagicMock(), store, retention_hours=12)
    try:
        assert dispatcher.sweep() == 1
        store.cleanup.assert_called_once_with(12)
    finally:
        dispatcher.shutdown()


def test_cleanup_sweep_runs_on_schedule():
    swept = threading.Event()
    store = MagicMock()
    store.cleanup.side_effect = lambda hours: swept.set() or []
    dispatcher = EventDispatcher(MagicMock(), store, cleanup_interval_minutes=0.001)
    dispatcher.start_cleanup_sweep()
    try:
        assert swept.wait(timeout=5)
    finally:
        dispatcher.shutdown()
    assert dispatcher._sweeper is None


def test_sweep_errors_do_not_stop_the_loop():
    calls = []
    swept_twice = threading.Event()

    def cleanup(hours):
        calls.append(hours)
        if len(calls) >= 2:
            swept_twice.set()
        raise RuntimeError("boom")

    store = MagicMock()
    store.cleanup.side_effect = cleanup
    dispatcher = EventDispatcher(MagicMock(), store, cleanup_interval_minutes=0.001)
    dispatcher.start_cleanup_sweep()
    try:
        assert swept_twice.wait(timeout=5)
    finally:
        dispatcher.shutdown()


def test_concurrent_duplicate_approvals_merge_once():
    store = PRStateStore()
    store.start_monitoring(KEY, branch="feature", base_branch="main")
    platform = MagicMock(spec=GitHubPlatform)
    orchestrator = Orchestrator(platform=platform, fix_generator=MagicMock(), store=store, config={**DEFAULT_CONFIG})

    with EventDispatcher(orchestrator, store, max_workers=8) as dispatcher:
        futures = [dispatcher.submit("pull_request_review", _approval(1)) for _ in range(8)]
        results = [f.result(timeout=5).result for f in futures]

    assert results.count("merged") == 1
    assert platform.merge.call_count == 1


def test_different_prs_are_independent():
    store = PRStateStore()
    other = PRKey("octo", "repo", 8)
    store.start_monitoring(KEY)
    store.start_monitoring(other)
    platform = MagicMock(spec=GitHubPlatform)
    orchestrator = Orchestrator(platform=platform, fix_generator=MagicMock(), store=store, config={**DEFAULT_CONFIG})

    with EventDispatcher(orchestrator, store, max_workers=2) as dispatcher:
        first = dispatcher.submit("pull_request_review", _approval(1, pr_number=7))
        second = dispatcher.submit("pull_request_review", _approval(1, pr_number=8))
        assert first.result(timeout=5).result == "merged"
        assert second.result(timeout=5).result == "merged"

    assert platform.merge.call_count == 2
