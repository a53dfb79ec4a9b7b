"""Attempt journal data model.

Decoupled from prloop_core so the journal can be read without loading the
orchestration code, and prloop_core has no knowledge of persistence.
"""

from __future__ import annotations

from dataclasses import dataclass

KIND_FIX = "fix"
KIND_MERGE = "merge"


@dataclass
class AttemptRecord:
    """One fix attempt or merge, as written to the journal.

    Created by the CLI from the EventOutcome the Orchestrator returns.
    """

    repo: str
    pr_number: int
    kind: str  # "fix" | "merge"
    success: bool
    recorded_at: str  # ISO-8601 UTC timestamp
    issue_count: int = 0
    fix_count: int = 0
    error: str | None = None
