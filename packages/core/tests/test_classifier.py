"""Tests for reviewer comment classification."""

from datetime import datetime, timezone

from prloop_core.classifier import CommentClassifier, build_classifier
from prloop_core.models import Comment, Location

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def _comment(body="", author="codex-bot", is_bot=True, kind="review", location=None, comment_id=1):
    return Comment(
        id=comment_id,
        author=author,
        author_is_bot=is_bot,
        body=body,
        created_at=T0,
        kind=kind,
        location=location,
    )


def _classifier():
    return CommentClassifier(["codex", "codex-bot", "codex-reviewer"], bot_pattern="codex")


class TestIsFromReviewer:
    def test_alias_substring_matches(self):
        assert _classifier().is_from_reviewer(_comment(author="chatgpt-codex-connector[bot]"))

    def test_alias_match_is_case_insensitive(self):
        assert _classifier().is_from_reviewer(_comment(author="CodeX-Reviewer", is_bot=False))

    def test_unrelated_human(self):
        assert not _classifier().is_from_reviewer(_comment(author="alice", is_bot=False))

    def test_bot_pattern_applies_only_to_bots(self):
        classifier = CommentClassifier(["reviewbot"], bot_pattern="codex")
        assert classifier.is_from_reviewer(_comment(author="codex-helper[bot]", is_bot=True))
        assert not classifier.is_from_reviewer(_comment(author="codex-fan", is_bot=False))

    def test_none_comment(self):
        assert not _classifier().is_from_reviewer(None)

    def test_missing_author(self):
        assert not _classifier().is_from_reviewer(_comment(author=""))


class TestIsApproval:
    def test_phrases(self):
        classifier = _classifier()
        for body in ("LGTM!", "Looks good to me", "No major issues found.", "Ready to merge", "All clear"):
            assert classifier.is_approval(body), body

    def test_thumbs_up_markers(self):
        classifier = _classifier()
        assert classifier.is_approval("👍")
        assert classifier.is_approval("nice :+1:")
        assert classifier.is_approval(":thumbsup:")

    def test_issue_list_is_not_approval(self):
        assert not _classifier().is_approval("Issue: Missing null check in parser")

    def test_empty_body(self):
        assert not _classifier().is_approval("")
        assert not _classifier().is_approval(None)


class TestParseReview:
    def test_non_reviewer_is_never_scanned(self):
        review = _classifier().parse_review(_comment(body="LGTM", author="alice", is_bot=False))
        assert review.is_from_reviewer is False
        assert review.is_approval is False
        assert review.issues == []
        assert review.timestamp == T0

    def test_reviewer_issues(self):
        body = "Issue: Missing null check in parser\nIssue: Unbounded retry in client"
        review = _classifier().parse_review(_comment(body=body))
        assert review.is_from_reviewer
        assert not review.is_approval
        assert len(review.issues) == 2
        assert review.summary == body

    def test_reviewer_approval(self):
        review = _classifier().parse_review(_comment(body="No major issues found"))
        assert review.is_approval
        assert review.issues == []


class TestParseReviewComments:
    def test_location_attached_to_each_issue(self):
        location = Location(path="src/app.py", line=42, start_line=40, end_line=42)
        comments = [
            _comment(body="Issue: Unchecked return value here", kind="review_inline", location=location),
            _comment(body="Issue: Human opinion on naming", author="alice", is_bot=False, comment_id=2),
        ]
        results = _classifier().parse_review_comments(comments)
        assert len(results) == 1
        assert results[0].location == location
        assert results[0].issues[0].location == location
        assert results[0].issues[0].location.to_dict() == {
            "file": "src/app.py",
            "line": 42,
            "startLine": 40,
            "endLine": 42,
        }

    def test_missing_location_is_empty(self):
        results = _classifier().parse_review_comments([_comment(body="Issue: Unchecked return value here")])
        assert results[0].location == Location()


def test_build_classifier_uses_config_aliases():
    classifier = build_classifier({"reviewer_aliases": ["auditor"], "reviewer_bot_pattern": ""})
    assert classifier.reviewer_aliases == ["auditor"]
    assert not classifier.is_from_reviewer(_comment(author="codex[bot]"))


def test_build_classifier_alias_override():
    classifier = build_classifier({"reviewer_aliases": ["codex"]}, aliases=["gemini"])
    assert classifier.reviewer_aliases == ["gemini"]
