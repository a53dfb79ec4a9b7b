"""Conversions from PyGithub objects to prloop models."""

from __future__ import annotations

from prloop_core.models import Comment, Location, PullInfo, parse_timestamp


def _author(obj) -> tuple[str, bool]:
    user = getattr(obj, "user", None)
    if user is None:
        return "", False
    return user.login or "", getattr(user, "type", None) == "Bot"


def review_to_comment(review) -> Comment:
    login, is_bot = _author(review)
    return Comment(
        id=review.id,
        author=login,
        author_is_bot=is_bot,
        body=review.body or "",
        created_at=parse_timestamp(review.submitted_at),
        kind="review",
    )


def review_comment_to_comment(comment) -> Comment:
    """Inline comment on a diff line; line falls back to original_line after a force-push."""
    login, is_bot = _author(comment)
    line = comment.line if comment.line is not None else getattr(comment, "original_line", None)
    return Comment(
        id=comment.id,
        author=login,
        author_is_bot=is_bot,
        body=comment.body or "",
        created_at=parse_timestamp(comment.created_at),
        kind="review_inline",
        location=Location(
            path=comment.path,
            line=line,
            start_line=getattr(comment, "start_line", None),
            end_line=comment.line,
        ),
    )


def issue_comment_to_comment(comment) -> Comment:
    login, is_bot = _author(comment)
    return Comment(
        id=comment.id,
        author=login,
        author_is_bot=is_bot,
        body=comment.body or "",
        created_at=parse_timestamp(comment.created_at),
        kind="issue_comment",
    )


def pull_to_info(pr) -> PullInfo:
    head_repo = getattr(pr.head, "repo", None)
    return PullInfo(
        number=pr.number,
        title=pr.title or "",
        body=pr.body or "",
        branch=pr.head.ref,
        base_branch=pr.base.ref,
        head_full_name=head_repo.full_name if head_repo is not None else None,
    )
