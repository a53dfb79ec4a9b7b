"""Reconcile a PR's full reviewer history against its commits.

Catches feedback that was posted before automation was switched on for the
PR, and detects findings that keep coming back review after review.

This is a textual heuristic. Code diffs are never inspected, so an empty
``unresolved_issues`` list means "no objection found", not "fix verified".
"""

from __future__ import annotations

import logging
import re

from prloop_core.classifier import CommentClassifier
from prloop_core.extraction import extract_issue_titles
from prloop_core.models import Comment, HistoryReport, Issue, LoopRecord, LoopReport, Occurrence

logger = logging.getLogger(__name__)

LOOP_THRESHOLD = 3

_FIX_VERB_RE = re.compile(r"\b(fix|resolve|address|correct)\b")
_MIN_KEYWORD_LENGTH = 3


def reviewer_comments(comments: list[Comment], classifier: CommentClassifier) -> list[Comment]:
    """Reviewer-authored comments in chronological order."""
    return sorted((c for c in comments if classifier.is_from_reviewer(c)), key=lambda c: c.sort_key)


def latest_reviewer_comment(comments: list[Comment], classifier: CommentClassifier) -> Comment | None:
    ordered = reviewer_comments(comments, classifier)
    return ordered[-1] if ordered else None


def is_resolved(issue_text: str, commit_messages: list[str]) -> bool:
    """True if some commit claims a fix and mentions the issue.

    A commit counts when its message has a fix verb and contains at least
    one word longer than three characters taken from the issue text.
    """
    keywords = [w for w in issue_text.lower().split() if len(w) > _MIN_KEYWORD_LENGTH]
    for message in commit_messages:
        lowered = (message or "").lower()
        if _FIX_VERB_RE.search(lowered) and any(k in lowered for k in keywords):
            return True
    return False


def extract_unresolved_issues(
    comments: list[Comment],
    commit_messages: list[str],
    classifier: CommentClassifier,
) -> list[str]:
    """Issues from the latest reviewer comment that no commit addresses.

    If that latest comment is an approval the answer is always empty,
    whatever earlier comments said.
    """
    latest = latest_reviewer_comment(comments, classifier)
    if latest is None or classifier.is_approval(latest.body):
        return []
    issues = extract_issue_titles(latest.body)
    return [issue for issue in issues if not is_resolved(issue, commit_messages)]


def detect_loops(comments: list[Comment], threshold: int = LOOP_THRESHOLD) -> LoopReport:
    """Flag findings whose normalized title appears in ``threshold`` or more comments.

    ``comments`` should already be restricted to the reviewer.
    """
    buckets: dict[str, list[Occurrence]] = {}
    for comment in sorted(comments, key=lambda c: c.sort_key):
        for title in extract_issue_titles(comment.body):
            normalized = title.lower().strip()
            buckets.setdefault(normalized, []).append(Occurrence(comment_id=comment.id, created_at=comment.created_at))

    loops = [
        LoopRecord(normalized_issue_text=text, occurrences=occurrences)
        for text, occurrences in buckets.items()
        if len(occurrences) >= threshold
    ]
    return LoopReport(has_loops=bool(loops), loops=loops)


def current_loops(report: LoopReport, body: str | None, issues: list[Issue] | None = None) -> LoopReport:
    """Keep only the loops whose finding is raised again in ``body`` or ``issues``.

    A finding that looped in the past but is no longer reported has been
    dealt with and must not halt work on new findings.
    """
    current = {title.lower().strip() for title in extract_issue_titles(body)}
    current.update(issue.key for issue in issues or [])
    loops = [loop for loop in report.loops if loop.normalized_issue_text in current]
    return LoopReport(has_loops=bool(loops), loops=loops)


def reconcile(
    comments: list[Comment],
    commit_messages: list[str],
    classifier: CommentClassifier,
    loop_threshold: int = LOOP_THRESHOLD,
) -> HistoryReport:
    ordered = reviewer_comments(comments, classifier)
    if not ordered:
        logger.info("No reviewer comments found in history")
        return HistoryReport(is_approved=False)

    is_approved = classifier.is_approval(ordered[-1].body)
    unresolved = [] if is_approved else extract_unresolved_issues(ordered, commit_messages, classifier)
    loops = detect_loops(ordered, threshold=loop_threshold)

    logger.info(
        "History reconciled: approved=%s unresolved=%d loops=%d",
        is_approved,
        len(unresolved),
        len(loops.loops),
    )
    return HistoryReport(is_approved=is_approved, unresolved_issues=unresolved, loops=loops)
