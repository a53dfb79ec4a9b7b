"""Abstract journal interface.

The CLI depends on BaseStore, not on a concrete backend, so backends are
swappable without touching CLI code.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from prloop_store.models import AttemptRecord


class BaseStore(ABC):
    """Pluggable persistence for fix and merge attempts."""

    @abstractmethod
    def save(self, record: AttemptRecord) -> None:
        """Persist one attempt."""

    @abstractmethod
    def list_attempts(self, repo: str, pr_number: int | None = None) -> list[AttemptRecord]:
        """Return attempts for a repo, oldest first, optionally filtered by PR.

        Returns an empty list when nothing was recorded; never raises for a
        missing repo.
        """

    def close(self) -> None:
        """Release held resources. Safe to call on every backend."""
