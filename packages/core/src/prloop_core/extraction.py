"""Pattern-based extraction of issues from reviewer prose.

Two extractors live here:

* ``parse_issues``: the classifier's extractor. Looks for explicitly
  prefixed lines ("Issue: ...", "Fix: ...", marker emoji) and falls back to
  plain list items when the reviewer wrote no prefixed lines at all.
* ``extract_issue_titles``: the history extractor. Looks only for bold
  list titles and keyword lines, which is how the reviewer formats the
  headline of each finding. Used for unresolved-issue reconciliation and
  loop detection, where stable short titles matter more than recall.

Both are pure functions of the body text.
"""

from __future__ import annotations

import re

from prloop_core.models import Issue

# Text this short is almost always a stray fragment ("Fix: typo").
_MIN_ISSUE_LENGTH = 10

# Tried in order; every pattern scans the whole body.
_PREFIXED_PATTERNS = [
    re.compile(r"(?:issue|problem|error|warning|concern):\s*(.+)", re.IGNORECASE),
    re.compile(r"(?:fix|change|update|modify):\s*(.+)", re.IGNORECASE),
    re.compile(r"❌\s*(.+)"),
    re.compile(r"⚠️\s*(.+)"),
    re.compile(r"🔴\s*(.+)"),
]

_LIST_ITEM_RE = re.compile(r"^(?:[-*•]|\d+\.)\s+(.+)")

# First match wins, so the order is the category priority.
_CATEGORY_PATTERNS = [
    ("security", re.compile(r"security|vulnerability|exploit|injection")),
    ("performance", re.compile(r"performance|slow|optimize|inefficient")),
    ("bug", re.compile(r"bug|error|crash|fail")),
    ("style", re.compile(r"style|format|convention|lint")),
    ("testing", re.compile(r"test|coverage|spec")),
    ("documentation", re.compile(r"documentation|comment|doc")),
]

_TITLE_PATTERNS = [
    re.compile(r"^\d+\.\s*\*\*(.+?)\*\*", re.MULTILINE),  # 1. **Title**
    re.compile(r"^[-*]\s*\*\*(.+?)\*\*", re.MULTILINE),  # - **Title**
    re.compile(r"(?:issue|problem|error|warning|bug):\s*(.+?)(?=\n|$)", re.IGNORECASE),
]


def categorize_issue(text: str) -> str:
    lowered = text.lower()
    for category, pattern in _CATEGORY_PATTERNS:
        if pattern.search(lowered):
            return category
    return "general"


def parse_issues(body: str | None) -> list[Issue]:
    """Extract structured issues from a comment body.

    Prefixed lines take priority; list items are only considered when no
    prefixed line yields an issue. Issues are deduplicated by ``Issue.key``
    so a line caught by two patterns ("❌ Issue: ...") is reported once.
    """
    if not body:
        return []

    issues: list[Issue] = []
    seen: set[str] = set()

    def _add(text: str, raw: str) -> None:
        issue = Issue(text=text, category=categorize_issue(text), raw_match=raw)
        if issue.key in seen:
            return
        seen.add(issue.key)
        issues.append(issue)

    for pattern in _PREFIXED_PATTERNS:
        for match in pattern.finditer(body):
            text = match.group(1).strip()
            if len(text) > _MIN_ISSUE_LENGTH:
                _add(text, match.group(0))

    if not issues:
        for line in body.splitlines():
            trimmed = line.strip()
            match = _LIST_ITEM_RE.match(trimmed)
            if match and len(match.group(1)) > _MIN_ISSUE_LENGTH:
                _add(match.group(1), trimmed)

    return issues


def extract_issue_titles(body: str | None) -> list[str]:
    """Return the finding titles in a reviewer comment, duplicates removed.

    Union of numbered bold items, bulleted bold items and keyword lines.
    Order is first-seen; equality is exact trimmed text.
    """
    if not body:
        return []

    titles: list[str] = []
    for pattern in _TITLE_PATTERNS:
        for match in pattern.finditer(body):
            title = match.group(1).strip()
            if title and title not in titles:
                titles.append(title)
    return titles
