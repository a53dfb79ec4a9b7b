"""Data model shared by the classifier, history pass, state store and orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

ISSUE_CATEGORIES = ("security", "performance", "bug", "style", "testing", "documentation", "general")

COMMENT_KINDS = ("review", "review_inline", "issue_comment")

ACTIONS = ("takeover", "fix", "review", "stop", "status", "help")

STATUS_ACTIVE = "active"
STATUS_WAITING_REVIEW = "waiting_review"
STATUS_APPROVED = "approved"
STATUS_STOPPED = "stopped"
STATUSES = (STATUS_ACTIVE, STATUS_WAITING_REVIEW, STATUS_APPROVED, STATUS_STOPPED)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: Any) -> datetime | None:
    """Accept a datetime (PyGithub) or an ISO-8601 string (webhook JSON)."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Location:
    path: str | None = None
    line: int | None = None
    start_line: int | None = None
    end_line: int | None = None

    def to_dict(self) -> dict:
        return {"file": self.path, "line": self.line, "startLine": self.start_line, "endLine": self.end_line}


@dataclass(frozen=True)
class Comment:
    """A review, inline review comment or PR conversation comment, as fetched."""

    id: int
    author: str
    author_is_bot: bool
    body: str
    created_at: datetime | None
    kind: str = "issue_comment"
    location: Location | None = None

    @property
    def sort_key(self) -> datetime:
        return self.created_at or _EPOCH

    @classmethod
    def from_github(cls, data: dict, kind: str) -> Comment:
        """Build a Comment from a webhook or REST payload dict."""
        user = data.get("user") or {}
        location = None
        if kind == "review_inline":
            line = data.get("line") or data.get("original_line")
            location = Location(
                path=data.get("path"),
                line=line,
                start_line=data.get("start_line"),
                end_line=data.get("line"),
            )
        return cls(
            id=data.get("id"),
            author=user.get("login") or "",
            author_is_bot=user.get("type") == "Bot",
            body=data.get("body") or "",
            created_at=parse_timestamp(data.get("submitted_at") or data.get("created_at")),
            kind=kind,
            location=location,
        )


@dataclass
class Issue:
    text: str
    category: str = "general"
    raw_match: str = ""
    location: Location | None = None

    @property
    def key(self) -> str:
        """Identity used for dedup and loop detection."""
        return self.text.strip().lower()

    def to_payload(self) -> dict:
        return {
            "text": self.text,
            "type": self.category,
            "location": self.location.to_dict() if self.location else None,
        }


@dataclass
class ParsedReview:
    is_from_reviewer: bool
    is_approval: bool = False
    issues: list[Issue] = field(default_factory=list)
    summary: str | None = None
    timestamp: datetime | None = None


@dataclass
class ReviewCommentIssues:
    """A reviewer-authored inline comment together with the issues found in it."""

    id: int
    body: str
    location: Location
    issues: list[Issue]
    created_at: datetime | None


@dataclass(frozen=True)
class Occurrence:
    comment_id: int
    created_at: datetime | None


@dataclass
class LoopRecord:
    normalized_issue_text: str
    occurrences: list[Occurrence] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.occurrences)


@dataclass
class LoopReport:
    has_loops: bool
    loops: list[LoopRecord] = field(default_factory=list)


@dataclass
class HistoryReport:
    """Outcome of reconciling a PR's reviewer comments against its commits."""

    is_approved: bool
    unresolved_issues: list[str] = field(default_factory=list)
    loops: LoopReport = field(default_factory=lambda: LoopReport(has_loops=False))

    @property
    def has_unresolved(self) -> bool:
        return bool(self.unresolved_issues)


@dataclass
class Command:
    action: str
    target: str | None = None
    params: dict[str, str | bool] = field(default_factory=dict)


@dataclass(frozen=True)
class PRKey:
    owner: str
    repo: str
    pr_number: int

    @classmethod
    def from_full_name(cls, full_name: str, pr_number: int) -> PRKey:
        owner, _, repo = full_name.partition("/")
        return cls(owner=owner, repo=repo, pr_number=int(pr_number))

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.pr_number}"


@dataclass(frozen=True)
class FixAttempt:
    timestamp: datetime
    issue_count: int
    fix_count: int
    success: bool
    error: str | None = None


@dataclass
class PRAutomationState:
    branch: str | None
    base_branch: str | None
    started_at: datetime
    monitored: bool = True
    status: str = STATUS_ACTIVE
    stopped_at: datetime | None = None
    processed_comment_ids: set = field(default_factory=set)
    fix_attempts: list[FixAttempt] = field(default_factory=list)
    last_reviewer_event: ParsedReview | None = None
    last_reviewer_event_at: datetime | None = None


@dataclass
class PullInfo:
    """The subset of a pull request the fix workflow needs."""

    number: int
    title: str
    body: str
    branch: str
    base_branch: str
    head_full_name: str | None = None
