"""Mention-command grammar.

A command is a PR comment of the form::

    @<bot> <action> [target] [--flag[=value]]*

The grammar is an ordered table of ``(action, pattern)`` pairs tried in
declared order; the first pattern that matches anywhere in the body wins.
Flags are parsed in a separate pass over the whole body.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from prloop_core.models import ACTIONS, Command

logger = logging.getLogger(__name__)

# (action, pattern template, description). "{bot}" is substituted with the
# escaped bot name. The optional target refuses to start with "--" so a flag
# right after the action is never taken for a target.
COMMAND_TABLE = [
    ("takeover", r"@{bot}\s+takeover\b", "Take full control of PR automation"),
    ("fix", r"@{bot}\s+fix\b(?:\s+(?!--)([\w@-]+))?", "Apply fixes from reviewer comments"),
    ("review", r"@{bot}\s+review\b(?:\s+(?!--)([\w@-]+))?", "Request re-review from specific reviewer"),
    ("stop", r"@{bot}\s+stop\b", "Stop all automation for this PR"),
    ("status", r"@{bot}\s+status\b", "Show current automation status"),
    ("help", r"@{bot}\s+help\b", "Show available commands"),
]

_FLAG_RE = re.compile(r"--(\w[\w-]*)(?:=(\w+))?")
_QUOTED_FLAG_RE = re.compile(r'--(\w[\w-]*)="([^"]+)"')
_TARGET_RE = re.compile(r"^[a-zA-Z0-9_-]+$")


@dataclass(frozen=True)
class Matched:
    action: str
    target: str | None = None


@dataclass(frozen=True)
class Unmatched:
    pass


@dataclass
class ValidationResult:
    valid: bool
    errors: list[str] = field(default_factory=list)


class CommandParser:
    def __init__(self, bot_name: str = "prloop"):
        self.bot_name = bot_name
        self._table = [
            (action, re.compile(pattern.format(bot=re.escape(bot_name)), re.IGNORECASE), description)
            for action, pattern, description in COMMAND_TABLE
        ]
        self._mention_re = re.compile(rf"@{re.escape(bot_name)}\b", re.IGNORECASE)

    def mentions_bot(self, body: str | None) -> bool:
        return bool(body) and bool(self._mention_re.search(body))

    def match(self, body: str) -> Matched | Unmatched:
        for action, pattern, _ in self._table:
            m = pattern.search(body or "")
            if m:
                target = m.group(1) if pattern.groups else None
                return Matched(action=action, target=target or None)
        return Unmatched()

    def parse(self, body: str) -> Command:
        """Parse a mention body. Anything unrecognised is a ``help`` command."""
        result = self.match(body)
        if isinstance(result, Unmatched):
            command = Command(action="help", params=self.extract_params(body))
        else:
            command = Command(action=result.action, target=result.target, params=self.extract_params(body))
        logger.debug("Parsed command: %s", command)
        return command

    @staticmethod
    def extract_params(body: str) -> dict[str, str | bool]:
        params: dict[str, str | bool] = {}
        for m in _FLAG_RE.finditer(body or ""):
            params[m.group(1)] = m.group(2) or True
        for m in _QUOTED_FLAG_RE.finditer(body or ""):
            params[m.group(1)] = m.group(2)
        return params

    @staticmethod
    def validate(command: Command) -> ValidationResult:
        errors = []

        if command.action not in ACTIONS:
            errors.append(f"Invalid action: {command.action}")

        if command.action == "fix" and command.target and not _TARGET_RE.match(command.target):
            errors.append(f"Invalid reviewer name: {command.target}")

        if "force" in command.params and command.action != "fix":
            errors.append("--force flag only valid with fix command")

        return ValidationResult(valid=not errors, errors=errors)

    def help_text(self) -> str:
        bot = f"@{self.bot_name}"
        lines = [f"## 🤖 {self.bot_name} commands", "", "**Basic Commands:**"]
        for action, _, description in COMMAND_TABLE:
            usage = f"{bot} {action} [reviewer]" if action in ("fix", "review") else f"{bot} {action}"
            lines.append(f"- `{usage}` - {description}")
        lines += [
            "",
            "**Examples:**",
            f"- `{bot} takeover` - Start full automation",
            f"- `{bot} fix codex` - Fix Codex review comments",
            f"- `{bot} review @john-doe` - Request re-review from John",
            f"- `{bot} stop` - Disable automation",
            "",
            "**Flags:**",
            "- `--force` - Force operation even if risky (fix only)",
            "- `--dry-run` - Show what would be done without executing",
            '- `--message="text"` - Custom commit message',
        ]
        return "\n".join(lines)
