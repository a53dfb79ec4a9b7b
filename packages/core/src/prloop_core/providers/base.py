"""Base fix generator implementing the Template Method pattern.

All generators share the same algorithm:
    generate() → build_fix_request()
               → _call_with_retry() → _request_fixes()   ← only this differs
               → _validate()

``HTTPFixGenerator`` posts the request to an external fix service.
``LLMFixGenerator`` renders it into a prompt for a chat model; its
subclasses implement only ``_make_client`` and ``_call_api``.

``timeout`` bounds the whole ``generate`` call, retries and backoff
included: each attempt gets whatever is left of the budget.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod

from prloop_core.errors import FixGenerationError
from prloop_core.models import Issue, PullInfo, ReviewCommentIssues

logger = logging.getLogger(__name__)

_MAX_RETRIES = 1
_MAX_TOKENS = 8192


def build_fix_request(pull: PullInfo, issues: list[Issue], review_comments: list[ReviewCommentIssues]) -> dict:
    """Request payload understood by the fix service."""
    return {
        "prTitle": pull.title,
        "prDescription": pull.body,
        "branch": pull.branch,
        "baseBranch": pull.base_branch,
        "issues": [issue.to_payload() for issue in issues],
        "reviewComments": [{"body": c.body, "location": c.location.to_dict()} for c in review_comments],
    }


class BaseFixGenerator(ABC):
    MAX_RETRIES: int = _MAX_RETRIES

    def __init__(self, timeout: float = 60):
        self.timeout = timeout

    def generate(
        self,
        pull: PullInfo,
        issues: list[Issue],
        review_comments: list[ReviewCommentIssues],
    ) -> list[dict]:
        """Return ``[{"path", "content"}, ...]`` for the given issues.

        Raises FixGenerationError when every attempt fails or when the
        generator answers with no fixes at all.
        """
        payload = build_fix_request(pull, issues, review_comments)
        logger.info("%s: generating fixes for %d issue(s)", self.__class__.__name__, len(issues))
        fixes = self._validate(self._call_with_retry(payload))
        if not fixes:
            raise FixGenerationError("Fix generator produced no fixes")
        return fixes

    @abstractmethod
    def _request_fixes(self, payload: dict, timeout: float) -> list[dict]:
        """Make a single request within ``timeout`` seconds and return the raw list of fixes.

        Should raise on failure; _call_with_retry handles retries and logging.
        """

    def _call_with_retry(self, payload: dict) -> list[dict]:
        deadline = time.monotonic() + self.timeout
        for attempt in range(self.MAX_RETRIES):
            try:
                return self._request_fixes(payload, max(deadline - time.monotonic(), 0.0))
            except Exception as e:
                delay = 2**attempt
                out_of_budget = deadline - time.monotonic() <= delay
                if attempt == self.MAX_RETRIES - 1 or out_of_budget:
                    logger.error(
                        "%s failed after %d attempt(s): %s",
                        self.__class__.__name__,
                        attempt + 1,
                        e,
                    )
                    raise FixGenerationError(f"Failed to generate fixes: {e}") from e
                logger.warning(
                    "%s error (attempt %d/%d): %s. Retrying in %ds...",
                    self.__class__.__name__,
                    attempt + 1,
                    self.MAX_RETRIES,
                    e,
                    delay,
                )
                time.sleep(delay)
        return []

    @staticmethod
    def _validate(fixes) -> list[dict]:
        """Keep only well-formed ``{"path": str, "content": str}`` entries."""
        if not isinstance(fixes, list):
            return []
        valid = []
        for fix in fixes:
            if isinstance(fix, dict) and isinstance(fix.get("path"), str) and isinstance(fix.get("content"), str):
                valid.append({"path": fix["path"], "content": fix["content"]})
            else:
                logger.warning("Dropping malformed fix entry: %r", fix)
        return valid


def missing_sdk(package: str) -> ImportError:
    return ImportError(
        f"The '{package}' package is required for this provider. Install it with: pip install 'prloop[{package}]'"
    )


class LLMFixGenerator(BaseFixGenerator):
    """Generates fixes by prompting a chat model for full file contents.

    The SDK client is built once by ``_make_client`` with its own retries
    switched off, so the only retries are the budgeted ones above.
    """

    MODEL: str = ""
    # Code edits want the most deterministic output the model gives.
    TEMPERATURE: float = 0.0
    MAX_RETRIES: int = 2
    MAX_TOKENS: int = _MAX_TOKENS

    def __init__(self, api_key: str | None = None, timeout: float = 60, model: str | None = None, client=None):
        super().__init__(timeout=timeout)
        self.model = model or self.MODEL
        self.client = client if client is not None else self._make_client(api_key)

    def _make_client(self, api_key: str | None):
        raise NotImplementedError(f"{self.__class__.__name__} needs an explicit client")

    def _request_fixes(self, payload: dict, timeout: float) -> list[dict]:
        raw = self._call_api(self._build_system_prompt(), self._build_user_prompt(payload), timeout)
        return self._parse(raw)

    @abstractmethod
    def _call_api(self, system_prompt: str, user_prompt: str, timeout: float) -> str:
        """Make a single API call bounded by ``timeout`` and return the raw text response."""

    def _build_system_prompt(self) -> str:
        return """You are a careful senior engineer applying code review feedback.
You receive a pull request description and the issues a reviewer raised.
Fix every issue with the smallest change that resolves it.

Rules:
- Only touch files that the issues refer to.
- Return the complete new content of each file you change, not a diff.
- Do not reformat unrelated code."""

    def _build_user_prompt(self, payload: dict) -> str:
        issues = "\n".join(
            f"- [{i['type']}] {i['text']}"
            + (f" ({i['location']['file']}:{i['location']['line']})" if i.get("location") else "")
            for i in payload["issues"]
        )
        return f"""## Pull request
{payload['prTitle']}

{payload['prDescription'] or ''}

Branch `{payload['branch']}` into `{payload['baseBranch']}`.

## Issues to fix
{issues}

### Output Format:
Respond with **only** a valid JSON list:

[
  {{"path": "<file path relative to the repository root>", "content": "<full new file content>"}},
  ...
]

If nothing can be fixed, return: []
Do not return any text outside the JSON block."""

    def _parse(self, raw: str) -> list[dict]:
        cleaned = re.sub(r"^```(?:json)?\s*", "", raw.strip())
        cleaned = re.sub(r"\s*```$", "", cleaned.strip())
        try:
            data = json.loads(cleaned)
        except json.JSONDecodeError:
            logger.warning("%s: failed to parse response as JSON: %s", self.__class__.__name__, raw[:200])
            return []
        if isinstance(data, dict):
            data = data.get("fixes", [])
        return data
