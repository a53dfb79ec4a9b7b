"""Hosting-platform collaborator backed by PyGithub.

Every method talks to GitHub and may raise ``github.GithubException``; the
Orchestrator turns those into step failures. Repositories are cached per
full name so one event does not re-fetch the same repo object.
"""

from __future__ import annotations

import logging

from github import Auth, Github

from prloop_core.errors import MergeError
from prloop_core.gh.pull_request import (
    issue_comment_to_comment,
    pull_to_info,
    review_comment_to_comment,
    review_to_comment,
)
from prloop_core.git.workspace import authenticated_clone_url
from prloop_core.models import Comment, PRKey, PullInfo

logger = logging.getLogger(__name__)


class GitHubPlatform:
    def __init__(self, token: str | None, client: Github | None = None):
        self.token = token
        self._gh = client or Github(auth=Auth.Token(token) if token else None)
        self._repos: dict[str, object] = {}

    def _repo(self, full_name: str):
        repo = self._repos.get(full_name)
        if repo is None:
            repo = self._repos[full_name] = self._gh.get_repo(full_name)
        return repo

    def _pull(self, key: PRKey):
        return self._repo(key.full_name).get_pull(key.pr_number)

    def get_pull_info(self, key: PRKey) -> PullInfo:
        return pull_to_info(self._pull(key))

    def list_reviews(self, key: PRKey) -> list[Comment]:
        return [review_to_comment(r) for r in self._pull(key).get_reviews()]

    def list_review_comments(self, key: PRKey) -> list[Comment]:
        return [review_comment_to_comment(c) for c in self._pull(key).get_review_comments()]

    def list_issue_comments(self, key: PRKey) -> list[Comment]:
        return [issue_comment_to_comment(c) for c in self._pull(key).get_issue_comments()]

    def list_history(self, key: PRKey) -> list[Comment]:
        """Conversation comments and review bodies, the history the reviewer writes into."""
        return self.list_issue_comments(key) + self.list_reviews(key)

    def list_commit_messages(self, key: PRKey) -> list[str]:
        return [c.commit.message or "" for c in self._pull(key).get_commits()]

    def post_comment(self, key: PRKey, body: str) -> None:
        self._pull(key).create_issue_comment(body)
        logger.debug("Posted comment on %s", key)

    def merge(self, key: PRKey, merge_method: str = "squash") -> None:
        status = self._pull(key).merge(
            commit_title=f"Auto-merge: PR #{key.pr_number} approved by reviewer",
            commit_message="Automatically merged after reviewer approval via prloop",
            merge_method=merge_method,
        )
        if not status.merged:
            raise MergeError(status.message or "GitHub refused to merge the pull request")
        logger.info("Merged PR %s (%s)", key, merge_method)

    def clone_url(self, pull: PullInfo, key: PRKey) -> str:
        return authenticated_clone_url(pull.head_full_name or key.full_name, self.token)
