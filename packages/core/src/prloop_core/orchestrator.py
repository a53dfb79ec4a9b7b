"""Event routing and the fix/merge workflows.

One call to ``Orchestrator.handle_event`` is one independent unit of work.
It never raises: collaborator failures become a failed ``StepResult``, a
recorded fix attempt and a comment on the pull request, and anything else
is caught at the event boundary and reported the same way.

Per-PR state machine::

    active --(approval)--> approved --(merge ok)--> stopped
    active --(issues)--> [fix] --(pushed)--> waiting_review
    waiting_review --(approval)--> approved
    waiting_review --(issues)--> [fix] --(pushed)--> waiting_review
    * --(stop / review loop)--> stopped
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from prloop_core.classifier import CommentClassifier, build_classifier
from prloop_core.commands import CommandParser, Matched
from prloop_core.git.workspace import GitWorkspace
from prloop_core.history import current_loops, detect_loops, reconcile, reviewer_comments
from prloop_core.models import (
    STATUS_APPROVED,
    STATUS_WAITING_REVIEW,
    Comment,
    Command,
    FixAttempt,
    Issue,
    LoopReport,
    ParsedReview,
    PRKey,
    PullInfo,
)
from prloop_core.providers.anthropic import AnthropicFixGenerator
from prloop_core.providers.http import HTTPFixGenerator
from prloop_core.providers.openai import OpenAIFixGenerator
from prloop_core.state import PRStateStore

logger = logging.getLogger(__name__)

_EVENT_COMMENT_KINDS = {
    "pull_request_review": ("review", "review"),
    "pull_request_review_comment": ("comment", "review_inline"),
    "issue_comment": ("comment", "issue_comment"),
}

_STATUS_EMOJI = {"active": "🟢", "waiting_review": "🟡", "approved": "✅", "stopped": "🔴"}

DEFAULT_COMMIT_MESSAGE = "fix: Apply reviewer fixes\n\nAuto-generated fixes by prloop"


@dataclass
class StepResult:
    """Outcome of one fallible collaborator call."""

    ok: bool
    value: Any = None
    error: str | None = None


@dataclass
class EventOutcome:
    """What handling one event did. Returned to the transport layer and the CLI."""

    key: PRKey | None
    result: str
    detail: str | None = None
    fix_attempt: FixAttempt | None = None


def _get_fix_generator(config: dict):
    provider = config.get("fix_provider", "http")
    timeout = config.get("fix_timeout", 60)
    if provider == "http":
        return HTTPFixGenerator(config["fix_api_url"], config.get("fix_api_key"), timeout=timeout)
    if provider == "anthropic":
        return AnthropicFixGenerator(api_key=config["anthropic_api_key"], timeout=timeout)
    if provider == "openai":
        return OpenAIFixGenerator(api_key=config["openai_api_key"], timeout=timeout)
    raise ValueError(f"Unknown fix provider: {provider!r}. Choose 'http', 'anthropic' or 'openai'.")


class Orchestrator:
    def __init__(
        self,
        platform,
        fix_generator,
        store: PRStateStore,
        config: dict,
        classifier: CommentClassifier | None = None,
        parser: CommandParser | None = None,
        workspace_factory: Callable[[str], GitWorkspace] | None = None,
    ):
        self.platform = platform
        self.fix_generator = fix_generator
        self.store = store
        self.config = config
        self.classifier = classifier or build_classifier(config)
        self.parser = parser or CommandParser(config.get("bot_name", "prloop"))
        self.workspace_factory = workspace_factory or self._default_workspace

    def _default_workspace(self, clone_url: str) -> GitWorkspace:
        return GitWorkspace(
            clone_url,
            user_name=self.config.get("git_user_name", "prloop[bot]"),
            user_email=self.config.get("git_user_email", "bot@prloop.dev"),
        )

    # ------------------------------------------------------------------ #
    # Entry point                                                          #
    # ------------------------------------------------------------------ #

    def handle_event(self, event_name: str, payload: dict) -> EventOutcome:
        key = route_key(payload)
        if key is None:
            return EventOutcome(key=None, result="ignored", detail="not a pull request event")

        comment = event_comment(event_name, payload)
        try:
            if comment is not None and self._is_command(comment):
                logger.info("Processing @%s mention on %s (%s)", self.parser.bot_name, key, event_name)
                return self._handle_command(key, comment)
            return self._handle_reviewer_event(key, event_name, payload.get("action"), comment)
        except Exception as e:
            logger.exception("Unhandled error while handling %s on %s", event_name, key)
            self._report_error(key, e)
            return EventOutcome(key=key, result="error", detail=str(e))

    def _is_own(self, comment: Comment) -> bool:
        return comment.author_is_bot and self.parser.bot_name.lower() in comment.author.lower()

    def _is_command(self, comment: Comment) -> bool:
        """A bot mention by someone else.

        The reviewer often thanks the bot in passing ("LGTM, thanks @prloop");
        its mentions only count when they spell out a known command.
        """
        if self._is_own(comment) or not self.parser.mentions_bot(comment.body):
            return False
        if self.classifier.is_from_reviewer(comment):
            return isinstance(self.parser.match(comment.body), Matched)
        return True

    # ------------------------------------------------------------------ #
    # Steps                                                                #
    # ------------------------------------------------------------------ #

    @staticmethod
    def _step(name: str, fn: Callable, *args, **kwargs) -> StepResult:
        try:
            return StepResult(ok=True, value=fn(*args, **kwargs))
        except Exception as e:
            logger.warning("Step %r failed: %s", name, e)
            return StepResult(ok=False, error=f"{name} failed: {e}")

    def _post(self, key: PRKey, body: str) -> StepResult:
        return self._step("post comment", self.platform.post_comment, key, body)

    def _report_error(self, key: PRKey, error) -> None:
        message = str(error)
        result = self._post(key, f"❌ **Error occurred**\n\n```\n{message}\n```\n\nPlease check the logs.")
        if not result.ok:
            logger.error("Failed to post error comment on %s: %s", key, result.error)

    # ------------------------------------------------------------------ #
    # Commands                                                             #
    # ------------------------------------------------------------------ #

    def _handle_command(self, key: PRKey, comment: Comment) -> EventOutcome:
        command = self.parser.parse(comment.body)
        validation = self.parser.validate(command)
        if not validation.valid:
            errors = "\n".join(f"- {e}" for e in validation.errors)
            self._post(key, f"⚠️ **Invalid command**\n\n{errors}\n\nUse `@{self.parser.bot_name} help` for usage.")
            return EventOutcome(key=key, result="invalid_command", detail="; ".join(validation.errors))

        if not self.store.claim_command(key, comment.id):
            return EventOutcome(key=key, result="duplicate", detail=f"comment {comment.id}")

        handlers = {
            "takeover": self._cmd_takeover,
            "fix": self._cmd_fix,
            "review": self._cmd_review,
            "stop": self._cmd_stop,
            "status": self._cmd_status,
            "help": self._cmd_help,
        }
        return handlers.get(command.action, self._cmd_help)(key, command, comment)

    def _cmd_takeover(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        pull = self._step("fetch pull request", self.platform.get_pull_info, key)
        if not pull.ok:
            self._report_error(key, pull.error)
            return EventOutcome(key=key, result="error", detail=pull.error)

        with self.store.lock(key):
            self.store.start_monitoring(key, branch=pull.value.branch, base_branch=pull.value.base_branch)
            self.store.mark_comment_processed(key, comment.id)

        body = (
            f"🤖 **{self.parser.bot_name} activated!**\n\n"
            "I'm now monitoring this PR for reviewer feedback. Here's what I'll do:\n\n"
            "✅ Detect reviewer comments\n"
            "✅ Parse and analyze identified issues\n"
            "✅ Apply fixes and request re-review\n"
            "✅ Auto-merge when approved\n\n"
            f"You can stop me anytime with `@{self.parser.bot_name} stop`."
        )
        report = self._step("reconcile history", self.history_report, key)
        if report.ok and report.value.has_unresolved:
            issues = "\n".join(f"- {i}" for i in report.value.unresolved_issues)
            body += (
                f"\n\n**Unresolved issues from earlier reviews ({len(report.value.unresolved_issues)}):**\n{issues}\n\n"
                f"Run `@{self.parser.bot_name} fix` to address them."
            )
        else:
            body += "\n\n*Waiting for reviewer feedback...*"
        self._post(key, body)
        logger.info("Took over PR %s", key)
        return EventOutcome(key=key, result="monitoring")

    def _cmd_fix(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        classifier = self.classifier
        if command.target:
            classifier = build_classifier(self.config, aliases=[command.target])
        if not command.params.get("force"):
            loops = self._check_loops(key, classifier)
            if loops.has_loops:
                return self._halt_on_loop(key, loops)
        return self.run_fix(key, classifier=classifier, params=command.params)

    def _cmd_review(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        reviewer = (command.target or self._default_reviewer()).lstrip("@")
        result = self._post(key, f"@{reviewer} Please review the latest changes.")
        if not result.ok:
            self._report_error(key, result.error)
            return EventOutcome(key=key, result="error", detail=result.error)
        logger.info("Requested review from @%s on %s", reviewer, key)
        return EventOutcome(key=key, result="review_requested", detail=reviewer)

    def _cmd_stop(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        self.store.stop_monitoring(key)
        self._post(
            key,
            f"🛑 **{self.parser.bot_name} deactivated**\n\n"
            f"Automation stopped for this PR. Reactivate with `@{self.parser.bot_name} takeover`.",
        )
        return EventOutcome(key=key, result="stopped")

    def _cmd_status(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        self._post(key, self.status_text(key))
        return EventOutcome(key=key, result="status")

    def _cmd_help(self, key: PRKey, command: Command, comment: Comment) -> EventOutcome:
        self._post(key, self.parser.help_text())
        return EventOutcome(key=key, result="help")

    def status_text(self, key: PRKey) -> str:
        state = self.store.get_state(key)
        bot = self.parser.bot_name
        if state is None or not state.monitored:
            return (
                "ℹ️ **Status: Not monitoring**\n\n"
                f"This PR is not under automation. Use `@{bot} takeover` to start."
            )

        last_review = "None"
        if state.last_reviewer_event_at:
            last_review = state.last_reviewer_event_at.strftime("%Y-%m-%d %H:%M UTC")
        return (
            f"{_STATUS_EMOJI.get(state.status, 'ℹ️')} **Status: {state.status}**\n\n"
            f"**Started:** {state.started_at.strftime('%Y-%m-%d %H:%M UTC')}\n"
            f"**Fix attempts:** {len(state.fix_attempts)}\n"
            f"**Processed comments:** {len(state.processed_comment_ids)}\n"
            f"**Last reviewer event:** {last_review}\n\n"
            f"Use `@{bot} stop` to deactivate."
        )

    def _default_reviewer(self) -> str:
        aliases = self.classifier.reviewer_aliases
        return aliases[0] if aliases else "codex"

    # ------------------------------------------------------------------ #
    # Reviewer events                                                      #
    # ------------------------------------------------------------------ #

    def _handle_reviewer_event(
        self, key: PRKey, event_name: str, action: str | None, comment: Comment | None
    ) -> EventOutcome:
        if comment is None or event_name not in ("pull_request_review", "issue_comment"):
            return EventOutcome(key=key, result="ignored", detail=f"unhandled event {event_name}")
        if event_name == "pull_request_review" and action not in (None, "submitted"):
            return EventOutcome(key=key, result="ignored", detail=f"review {action}")
        if event_name == "issue_comment" and action != "created":
            return EventOutcome(key=key, result="ignored", detail=f"comment {action}")
        if not self.store.is_monitored(key):
            return EventOutcome(key=key, result="ignored", detail="not monitored")
        if not self.classifier.is_from_reviewer(comment):
            logger.debug("Comment from %s on %s is not from the reviewer", comment.author, key)
            return EventOutcome(key=key, result="ignored", detail="not from reviewer")

        with self.store.lock(key):
            if not self.store.claim_comment(key, comment.id):
                return EventOutcome(key=key, result="duplicate", detail=f"comment {comment.id}")

            parsed = self.classifier.parse_review(comment)
            self.store.record_reviewer_event(key, parsed)

            if parsed.is_approval:
                state = self.store.get_state(key)
                if state.status == STATUS_APPROVED:
                    return EventOutcome(key=key, result="already_approved")
                if self.store.update_state(key, status=STATUS_APPROVED) is None:
                    return EventOutcome(key=key, result="ignored", detail="state changed")
                logger.info("Reviewer approved %s - triggering auto-merge", key)
            elif not parsed.issues:
                return EventOutcome(key=key, result="no_issues")

        if parsed.is_approval:
            return self.merge(key)

        logger.info("Found %d issue(s) in reviewer %s on %s", len(parsed.issues), comment.kind, key)
        loops = self._check_loops(key, self.classifier, trigger=comment)
        if loops.has_loops:
            return self._halt_on_loop(key, loops)
        return self.run_fix(key, source=parsed)

    # ------------------------------------------------------------------ #
    # History                                                              #
    # ------------------------------------------------------------------ #

    def history_report(self, key: PRKey, classifier: CommentClassifier | None = None):
        classifier = classifier or self.classifier
        comments = self.platform.list_history(key)
        commits = self.platform.list_commit_messages(key)
        return reconcile(comments, commits, classifier, loop_threshold=self.config.get("loop_threshold", 3))

    def _check_loops(
        self, key: PRKey, classifier: CommentClassifier, trigger: Comment | None = None
    ) -> LoopReport:
        """Loops among the findings of ``trigger`` (default: the latest reviewer comment)."""
        history = self._step("fetch review history", self.platform.list_history, key)
        if not history.ok:
            logger.warning("Skipping loop detection for %s: %s", key, history.error)
            return LoopReport(has_loops=False)
        ordered = reviewer_comments(history.value, classifier)
        if trigger is None and ordered:
            trigger = ordered[-1]
        if trigger is None:
            return LoopReport(has_loops=False)
        report = detect_loops(ordered, threshold=self.config.get("loop_threshold", 3))
        return current_loops(report, trigger.body, classifier.parse_issues(trigger.body))

    def _halt_on_loop(self, key: PRKey, loops: LoopReport) -> EventOutcome:
        self.store.stop_monitoring(key)
        lines = "\n".join(f"- {loop.normalized_issue_text} (raised {loop.count} times)" for loop in loops.loops)
        self._post(
            key,
            "🔁 **Review loop detected**\n\n"
            f"These issues keep coming back after automated fixes:\n{lines}\n\n"
            "Automation is stopped for this PR. Please resolve them manually. "
            f"`@{self.parser.bot_name} takeover` resumes automation for new findings; "
            f"`@{self.parser.bot_name} fix --force` retries these ones anyway.",
        )
        logger.warning("Review loop detected on %s; automation stopped", key)
        return EventOutcome(key=key, result="loop_detected", detail=f"{len(loops.loops)} looping issue(s)")

    # ------------------------------------------------------------------ #
    # Merge                                                                #
    # ------------------------------------------------------------------ #

    def merge(self, key: PRKey) -> EventOutcome:
        """Merge an approved PR.

        A failed merge is reported but the state stays ``approved``; merging
        again is left to a human so a broken merge is never retried in a loop.
        """
        self._post(key, "✅ **Reviewer approved!**\n\nAll issues resolved. Auto-merging now...")
        result = self._step("merge", self.platform.merge, key, self.config.get("merge_method", "squash"))
        if not result.ok:
            self._post(
                key,
                f"⚠️ **Auto-merge failed**\n\nError: {result.error}\n\nPlease merge manually or check PR settings.",
            )
            return EventOutcome(key=key, result="merge_failed", detail=result.error)

        self.store.stop_monitoring(key)
        logger.info("Auto-merged PR %s", key)
        return EventOutcome(key=key, result="merged")

    # ------------------------------------------------------------------ #
    # Fix workflow                                                         #
    # ------------------------------------------------------------------ #

    def gather_issues(
        self, key: PRKey, source: ParsedReview | None, classifier: CommentClassifier
    ) -> tuple[list[Issue], list]:
        """Union of the triggering review's issues and all reviewer inline comments.

        Without a triggering review (the ``fix`` command) the latest reviewer
        review or comment stands in for it.
        """
        if source is None:
            latest = reviewer_comments(self.platform.list_history(key), classifier)
            source = classifier.parse_review(latest[-1]) if latest else ParsedReview(is_from_reviewer=False)

        inline = classifier.parse_review_comments(self.platform.list_review_comments(key))

        issues: list[Issue] = []
        seen: set[str] = set()
        for issue in list(source.issues) + [i for c in inline for i in c.issues]:
            if issue.key not in seen:
                seen.add(issue.key)
                issues.append(issue)
        return issues, inline

    def _apply_fixes(self, key: PRKey, pull: PullInfo, fixes: list[dict], message: str) -> bool:
        with self.workspace_factory(self.platform.clone_url(pull, key)) as workspace:
            workspace.clone(pull.branch)
            workspace.apply_changes(fixes)
            return workspace.commit_and_push(message, pull.branch)

    def run_fix(
        self,
        key: PRKey,
        source: ParsedReview | None = None,
        classifier: CommentClassifier | None = None,
        params: dict | None = None,
    ) -> EventOutcome:
        """One fix attempt. Never overlaps another attempt for the same PR."""
        classifier = classifier or self.classifier
        params = params or {}

        if not self.store.begin_fix(key):
            self._post(key, "⏳ A fix is already in progress for this PR. Try again once it finishes.")
            return EventOutcome(key=key, result="fix_in_progress")
        try:
            return self._run_fix(key, source, classifier, params)
        finally:
            self.store.end_fix(key)

    def _run_fix(
        self, key: PRKey, source: ParsedReview | None, classifier: CommentClassifier, params: dict
    ) -> EventOutcome:
        gathered = self._step("collect review issues", self.gather_issues, key, source, classifier)
        if not gathered.ok:
            return self._fix_failed(key, 0, gathered.error)

        issues, inline = gathered.value
        if not issues:
            logger.info("No issues to fix on %s", key)
            return EventOutcome(key=key, result="no_issues")

        if params.get("dry-run"):
            listing = "\n".join(f"- [{i.category}] {i.text}" for i in issues)
            self._post(key, f"🔍 **Dry run**\n\nWould fix {len(issues)} issue(s):\n{listing}")
            return EventOutcome(key=key, result="dry_run", detail=f"{len(issues)} issue(s)")

        self._post(
            key,
            f"🔧 **Applying fixes...**\n\nFound {len(issues)} issue(s) from the review. Working on fixes now...",
        )

        pull = self._step("fetch pull request", self.platform.get_pull_info, key)
        if not pull.ok:
            return self._fix_failed(key, len(issues), pull.error)

        fixes = self._step("generate fixes", self.fix_generator.generate, pull.value, issues, inline)
        if not fixes.ok:
            return self._fix_failed(key, len(issues), fixes.error)

        message = params.get("message") if isinstance(params.get("message"), str) else DEFAULT_COMMIT_MESSAGE
        pushed = self._step("apply fixes", self._apply_fixes, key, pull.value, fixes.value, message)
        if not pushed.ok:
            return self._fix_failed(key, len(issues), pushed.error, fix_count=len(fixes.value))
        if not pushed.value:
            return self._fix_failed(key, len(issues), "Generated fixes produced no changes to commit", len(fixes.value))

        attempt = self.store.record_fix_attempt(
            key, issue_count=len(issues), fix_count=len(fixes.value), success=True
        )
        self.store.update_state(key, status=STATUS_WAITING_REVIEW)
        self._post(
            key,
            f"✅ **Fixes applied!**\n\nApplied {len(fixes.value)} fix(es) addressing {len(issues)} issue(s).\n\n"
            f"@{self._default_reviewer()} Please review the changes.",
        )
        return EventOutcome(key=key, result="fix_applied", detail=f"{len(fixes.value)} fix(es)", fix_attempt=attempt)

    def _fix_failed(self, key: PRKey, issue_count: int, error: str, fix_count: int = 0) -> EventOutcome:
        logger.error("Fix attempt failed for %s: %s", key, error)
        attempt = self.store.record_fix_attempt(
            key, issue_count=issue_count, fix_count=fix_count, success=False, error=error
        )
        self._report_error(key, error)
        return EventOutcome(key=key, result="fix_failed", detail=error, fix_attempt=attempt)


# ---------------------------------------------------------------------- #
# Payload helpers                                                          #
# ---------------------------------------------------------------------- #


def route_key(payload: dict) -> PRKey | None:
    """``(repository.full_name, PR number)``; None for non-PR events.

    ``issue_comment`` payloads carry the PR as an issue with a
    ``pull_request`` link instead of a ``pull_request`` object.
    """
    repository = payload.get("repository") or {}
    full_name = repository.get("full_name")
    number = (payload.get("pull_request") or {}).get("number")
    if number is None:
        issue = payload.get("issue") or {}
        if issue.get("pull_request"):
            number = issue.get("number")
    if not full_name or number is None:
        return None
    return PRKey.from_full_name(full_name, number)


def event_comment(event_name: str, payload: dict) -> Comment | None:
    field_name, kind = _EVENT_COMMENT_KINDS.get(event_name, (None, None))
    data = payload.get(field_name) if field_name else None
    if not data:
        return None
    return Comment.from_github(data, kind)


def build_orchestrator(config: dict, store: PRStateStore | None = None, platform=None) -> Orchestrator:
    """Wire the production collaborators from configuration."""
    from prloop_core.gh.platform import GitHubPlatform

    return Orchestrator(
        platform=platform or GitHubPlatform(config.get("github_token")),
        fix_generator=_get_fix_generator(config),
        store=store or PRStateStore(),
        config=config,
    )
