"""In-memory per-PR automation state.

One ``PRAutomationState`` per ``PRKey``. The store is created once at
startup and handed to the Orchestrator; nothing here is process-global.

Concurrency: webhook deliveries for the same PR may be handled on different
threads at once. ``lock(key)`` hands out a re-entrant lock per key, and the
Orchestrator holds it across the dedup check and every state mutation that
follows. Individual methods also take the key lock, so each call is atomic
on its own. Different keys never contend.

State is lost on restart; see DESIGN.md.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta

from prloop_core.models import (
    STATUS_ACTIVE,
    STATUS_APPROVED,
    STATUS_STOPPED,
    STATUS_WAITING_REVIEW,
    STATUSES,
    FixAttempt,
    ParsedReview,
    PRAutomationState,
    PRKey,
    utcnow,
)

logger = logging.getLogger(__name__)

# Allowed status moves; anything may move to "stopped".
_TRANSITIONS = {
    STATUS_ACTIVE: {STATUS_WAITING_REVIEW, STATUS_APPROVED},
    STATUS_WAITING_REVIEW: {STATUS_ACTIVE, STATUS_APPROVED},
    STATUS_APPROVED: set(),
    STATUS_STOPPED: set(),
}


class PRStateStore:
    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._clock = clock
        self._states: dict[PRKey, PRAutomationState] = {}
        self._locks: dict[PRKey, threading.RLock] = {}
        self._fixes_in_flight: set[PRKey] = set()
        self._command_claims: dict[PRKey, dict[object, datetime]] = {}
        # Guards the dicts above; never held while a key lock is awaited.
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Locking                                                              #
    # ------------------------------------------------------------------ #

    def _key_lock(self, key: PRKey) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    @contextmanager
    def lock(self, key: PRKey) -> Iterator[None]:
        """Serialize all work on one PR."""
        with self._key_lock(key):
            yield

    # ------------------------------------------------------------------ #
    # Lifecycle                                                            #
    # ------------------------------------------------------------------ #

    def start_monitoring(
        self, key: PRKey, branch: str | None = None, base_branch: str | None = None
    ) -> PRAutomationState:
        """Create fresh state for ``key``, discarding any previous history."""
        with self.lock(key):
            state = PRAutomationState(branch=branch, base_branch=base_branch, started_at=self._clock())
            with self._registry_lock:
                self._states[key] = state
        logger.info("Started monitoring PR %s (branch=%s, base=%s)", key, branch, base_branch)
        return state

    def stop_monitoring(self, key: PRKey) -> PRAutomationState | None:
        with self.lock(key):
            state = self._states.get(key)
            if state is None:
                return None
            state.monitored = False
            state.status = STATUS_STOPPED
            state.stopped_at = self._clock()
        logger.info("Stopped monitoring PR %s", key)
        return state

    def get_state(self, key: PRKey) -> PRAutomationState | None:
        return self._states.get(key)

    def is_monitored(self, key: PRKey) -> bool:
        state = self._states.get(key)
        return state is not None and state.monitored

    def all_monitored(self) -> dict[PRKey, PRAutomationState]:
        with self._registry_lock:
            items = list(self._states.items())
        return {key: state for key, state in items if state.monitored}

    # ------------------------------------------------------------------ #
    # Event dedup                                                          #
    # ------------------------------------------------------------------ #

    def is_comment_processed(self, key: PRKey, comment_id) -> bool:
        state = self._states.get(key)
        return state is not None and comment_id in state.processed_comment_ids

    def mark_comment_processed(self, key: PRKey, comment_id) -> None:
        with self.lock(key):
            state = self._states.get(key)
            if state is None or not state.monitored:
                logger.debug("Not marking comment %s on unmonitored PR %s", comment_id, key)
                return
            state.processed_comment_ids.add(comment_id)
        logger.debug("Marked comment %s as processed for %s", comment_id, key)

    def claim_comment(self, key: PRKey, comment_id) -> bool:
        """Atomically check-then-mark. False means someone already handled it."""
        with self.lock(key):
            state = self._states.get(key)
            if state is None or not state.monitored:
                return False
            if comment_id in state.processed_comment_ids:
                logger.debug("Comment %s already processed for %s", comment_id, key)
                return False
            state.processed_comment_ids.add(comment_id)
            return True

    def claim_command(self, key: PRKey, comment_id) -> bool:
        """``claim_comment`` for command comments, which also arrive on unmonitored PRs.

        Without monitoring state the id goes into a side table that the
        cleanup sweep ages out with the same retention.
        """
        with self.lock(key):
            if self.is_monitored(key):
                return self.claim_comment(key, comment_id)
            with self._registry_lock:
                claimed = self._command_claims.setdefault(key, {})
                if comment_id in claimed:
                    logger.debug("Command comment %s already handled for %s", comment_id, key)
                    return False
                claimed[comment_id] = self._clock()
            return True

    # ------------------------------------------------------------------ #
    # Mutation                                                             #
    # ------------------------------------------------------------------ #

    def record_fix_attempt(
        self,
        key: PRKey,
        issue_count: int = 0,
        fix_count: int = 0,
        success: bool = False,
        error: str | None = None,
    ) -> FixAttempt | None:
        with self.lock(key):
            state = self._states.get(key)
            if state is None:
                logger.warning("Attempted to record fix attempt for unknown PR %s", key)
                return None
            attempt = FixAttempt(
                timestamp=self._clock(),
                issue_count=issue_count,
                fix_count=fix_count,
                success=success,
                error=error,
            )
            state.fix_attempts.append(attempt)
        logger.info(
            "Recorded fix attempt for %s: success=%s issues=%d fixes=%d", key, success, issue_count, fix_count
        )
        return attempt

    def record_reviewer_event(self, key: PRKey, review: ParsedReview) -> None:
        with self.lock(key):
            state = self._states.get(key)
            if state is None or not state.monitored:
                return
            state.last_reviewer_event = replace(review, issues=list(review.issues))
            state.last_reviewer_event_at = self._clock()

    def update_state(self, key: PRKey, **updates) -> PRAutomationState | None:
        """Merge ``updates`` into the state for ``key``.

        Unknown or unmonitored keys and illegal status moves are logged and
        ignored; the caller gets None back.
        """
        with self.lock(key):
            state = self._states.get(key)
            if state is None or not state.monitored:
                logger.warning("Attempted to update unmonitored PR state: %s", key)
                return None

            new_status = updates.get("status")
            if new_status is not None and new_status != state.status:
                if new_status not in STATUSES:
                    logger.warning("Rejected unknown status %r for %s", new_status, key)
                    return None
                if new_status != STATUS_STOPPED and new_status not in _TRANSITIONS[state.status]:
                    logger.warning("Rejected status transition %s -> %s for %s", state.status, new_status, key)
                    return None

            for name, value in updates.items():
                if not hasattr(state, name):
                    logger.warning("Ignoring unknown state field %r for %s", name, key)
                    continue
                setattr(state, name, value)

            if state.status == STATUS_STOPPED:
                state.monitored = False
                state.stopped_at = state.stopped_at or self._clock()
        logger.debug("Updated PR state %s: %s", key, updates)
        return state

    # ------------------------------------------------------------------ #
    # Fix guard                                                            #
    # ------------------------------------------------------------------ #

    def begin_fix(self, key: PRKey) -> bool:
        """Reserve the fix slot for ``key``. False if a fix is already running."""
        with self._registry_lock:
            if key in self._fixes_in_flight:
                return False
            self._fixes_in_flight.add(key)
            return True

    def end_fix(self, key: PRKey) -> None:
        with self._registry_lock:
            self._fixes_in_flight.discard(key)

    def fix_in_flight(self, key: PRKey) -> bool:
        return key in self._fixes_in_flight

    # ------------------------------------------------------------------ #
    # Housekeeping                                                         #
    # ------------------------------------------------------------------ #

    def cleanup(self, max_age_hours: float = 24) -> list[PRKey]:
        """Evict unmonitored state older than ``max_age_hours`` (by start time).

        Command claims on unmonitored PRs older than the cutoff go too; they
        are not counted in the returned keys.
        """
        cutoff = self._clock() - timedelta(hours=max_age_hours)
        with self._registry_lock:
            candidates = [k for k, s in self._states.items() if not s.monitored and s.started_at < cutoff]
            for key, claimed in list(self._command_claims.items()):
                fresh = {comment_id: at for comment_id, at in claimed.items() if at >= cutoff}
                if fresh:
                    self._command_claims[key] = fresh
                else:
                    del self._command_claims[key]

        evicted = []
        for key in candidates:
            with self.lock(key):
                state = self._states.get(key)
                # Re-check: a takeover may have replaced it since the scan.
                if state is None or state.monitored or state.started_at >= cutoff:
                    continue
                with self._registry_lock:
                    del self._states[key]
            evicted.append(key)
            logger.debug("Cleaned up old PR state: %s", key)
        return evicted
