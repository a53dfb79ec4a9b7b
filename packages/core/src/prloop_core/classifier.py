"""Reviewer comment classification."""

from __future__ import annotations

import logging
import re

from prloop_core.extraction import parse_issues
from prloop_core.models import Comment, Location, ParsedReview, ReviewCommentIssues

logger = logging.getLogger(__name__)

APPROVAL_PATTERNS = [
    re.compile(r"no major issues found", re.IGNORECASE),
    re.compile(r"looks good to me", re.IGNORECASE),
    re.compile(r"lgtm", re.IGNORECASE),
    re.compile(r"approved", re.IGNORECASE),
    re.compile(r"no issues", re.IGNORECASE),
    re.compile(r"ready to merge", re.IGNORECASE),
    re.compile(r"all clear", re.IGNORECASE),
]

APPROVAL_MARKERS = ("👍", ":thumbsup:", ":+1:")


class CommentClassifier:
    """Decides who wrote a comment and what it says.

    ``reviewer_aliases`` are matched as case-insensitive substrings of the
    author login. ``bot_pattern`` is an additional regex that only applies
    to bot accounts, so "codex-helper[bot]" is recognised even when it is
    not listed as an alias.
    """

    def __init__(self, reviewer_aliases: list[str], bot_pattern: str = "codex"):
        self.reviewer_aliases = [a.lower() for a in reviewer_aliases if a]
        self._bot_re = re.compile(bot_pattern, re.IGNORECASE) if bot_pattern else None

    def is_from_reviewer(self, comment: Comment | None) -> bool:
        if comment is None or not comment.author:
            return False

        login = comment.author.lower()
        matches_alias = any(alias in login for alias in self.reviewer_aliases)
        matches_bot = comment.author_is_bot and self._bot_re is not None and bool(self._bot_re.search(login))

        if matches_alias or matches_bot:
            logger.debug("Comment %s is from reviewer %s", comment.id, comment.author)
            return True
        return False

    def is_approval(self, body: str | None) -> bool:
        if not body:
            return False
        lowered = body.lower()
        if any(p.search(lowered) for p in APPROVAL_PATTERNS):
            return True
        return any(marker in lowered for marker in APPROVAL_MARKERS)

    def parse_issues(self, body: str | None):
        issues = parse_issues(body)
        logger.debug("Parsed %d issue(s) from comment body", len(issues))
        return issues

    @staticmethod
    def extract_location(comment: Comment) -> Location:
        return comment.location or Location()

    def parse_review(self, comment: Comment) -> ParsedReview:
        """Classify a review or comment.

        A comment that is not from the reviewer is never scanned: its body
        cannot approve the PR or contribute issues.
        """
        if not self.is_from_reviewer(comment):
            return ParsedReview(is_from_reviewer=False, timestamp=comment.created_at)

        return ParsedReview(
            is_from_reviewer=True,
            is_approval=self.is_approval(comment.body),
            issues=self.parse_issues(comment.body),
            summary=comment.body or None,
            timestamp=comment.created_at,
        )

    def parse_review_comments(self, comments: list[Comment]) -> list[ReviewCommentIssues]:
        """Map reviewer-authored inline comments to their issues.

        Each issue is tagged with the location of the comment it came from.
        """
        results = []
        for comment in comments:
            if not self.is_from_reviewer(comment):
                continue
            location = self.extract_location(comment)
            issues = self.parse_issues(comment.body)
            for issue in issues:
                issue.location = location
            results.append(
                ReviewCommentIssues(
                    id=comment.id,
                    body=comment.body,
                    location=location,
                    issues=issues,
                    created_at=comment.created_at,
                )
            )
        return results


def build_classifier(config: dict, aliases: list[str] | None = None) -> CommentClassifier:
    return CommentClassifier(
        reviewer_aliases=aliases if aliases is not None else config.get("reviewer_aliases", []),
        bot_pattern=config.get("reviewer_bot_pattern", "codex"),
    )
