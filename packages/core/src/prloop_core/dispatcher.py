"""Concurrent event dispatch and the periodic state sweep.

Events are handed to a thread pool so deliveries for different PRs run in
parallel. Work on the same PR is serialized by the state store's per-key
lock inside the Orchestrator, not here.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor

from prloop_core.orchestrator import EventOutcome, Orchestrator
from prloop_core.state import PRStateStore

logger = logging.getLogger(__name__)


class EventDispatcher:
    def __init__(
        self,
        orchestrator: Orchestrator,
        store: PRStateStore,
        max_workers: int = 4,
        retention_hours: float = 24,
        cleanup_interval_minutes: float = 60,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.retention_hours = retention_hours
        self.cleanup_interval = cleanup_interval_minutes * 60
        self._pool = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="prloop-event")
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    @classmethod
    def from_config(cls, orchestrator: Orchestrator, store: PRStateStore, config: dict) -> EventDispatcher:
        return cls(
            orchestrator,
            store,
            max_workers=config.get("max_workers", 4),
            retention_hours=config.get("state_retention_hours", 24),
            cleanup_interval_minutes=config.get("cleanup_interval_minutes", 60),
        )

    def submit(self, event_name: str, payload: dict) -> Future[EventOutcome]:
        logger.debug("Queued %s event", event_name)
        return self._pool.submit(self.orchestrator.handle_event, event_name, payload)

    def sweep(self) -> int:
        evicted = self.store.cleanup(self.retention_hours)
        if evicted:
            logger.info("Evicted %d stale PR state(s)", len(evicted))
        return len(evicted)

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.cleanup_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("State sweep failed")

    def start_cleanup_sweep(self) -> None:
        if self._sweeper is not None:
            return
        self._sweeper = threading.Thread(target=self._sweep_loop, name="prloop-sweep", daemon=True)
        self._sweeper.start()

    def shutdown(self, wait: bool = True) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> EventDispatcher:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
