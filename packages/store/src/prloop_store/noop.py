"""No-op journal, the default when no store is configured."""

from __future__ import annotations

from typing import TYPE_CHECKING

from prloop_store.base import BaseStore

if TYPE_CHECKING:
    from prloop_store.models import AttemptRecord


class NoOpStore(BaseStore):
    """Discards every record so callers can always call save()."""

    def save(self, record: AttemptRecord) -> None:
        pass

    def list_attempts(self, repo: str, pr_number: int | None = None) -> list[AttemptRecord]:
        return []
