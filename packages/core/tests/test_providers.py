"""Tests for fix generator implementations.

Shared behaviour (generate, _call_with_retry, _validate, _parse and the
prompts) lives in the base classes and is tested once through lightweight
stubs. Provider tests cover only what differs: client setup and the call.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from prloop_core.errors import FixGenerationError
from prloop_core.models import Issue, Location, PullInfo, ReviewCommentIssues
from prloop_core.providers.anthropic import AnthropicFixGenerator
from prloop_core.providers.base import BaseFixGenerator, LLMFixGenerator, build_fix_request
from prloop_core.providers.http import HTTPFixGenerator
from prloop_core.providers.openai import OpenAIFixGenerator

PULL = PullInfo(number=7, title="Add upload retries", body="Retries flaky uploads.", branch="feature", base_branch="main")
LOCATION = Location(path="src/upload.py", line=12)
ISSUES = [
    Issue(text="Missing null check in parser", category="bug"),
    Issue(text="Unbounded retry in upload", category="general", location=LOCATION),
]
INLINE = [ReviewCommentIssues(id=5, body="Issue: Unbounded retry in upload", location=LOCATION, issues=[], created_at=None)]
VALID_FIXES = [{"path": "src/upload.py", "content": "print('fixed')\n"}]


class _StubGenerator(BaseFixGenerator):
    def __init__(self, result=None, error=None):
        super().__init__()
        self.result = VALID_FIXES if result is None else result
        self.error = error
        self.calls = 0

    def _request_fixes(self, payload, timeout):
        self.calls += 1
        if self.error:
            raise self.error
        return self.result


class _StubLLM(LLMFixGenerator):
    def __init__(self, raw):
        super().__init__(client=MagicMock())
        self.raw = raw

    def _call_api(self, system_prompt, user_prompt, timeout):
        return self.raw


# ---------------------------------------------------------------------------
# Request payload
# ---------------------------------------------------------------------------


def test_build_fix_request_shape():
    payload = build_fix_request(PULL, ISSUES, INLINE)
    assert payload["prTitle"] == "Add upload retries"
    assert payload["prDescription"] == "Retries flaky uploads."
    assert payload["branch"] == "feature"
    assert payload["baseBranch"] == "main"
    assert payload["issues"][0] == {"text": "Missing null check in parser", "type": "bug", "location": None}
    assert payload["issues"][1]["location"] == {"file": "src/upload.py", "line": 12, "startLine": None, "endLine": None}
    assert payload["reviewComments"] == [
        {
            "body": "Issue: Unbounded retry in upload",
            "location": {"file": "src/upload.py", "line": 12, "startLine": None, "endLine": None},
        }
    ]


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_returns_valid_fixes(self):
        assert _StubGenerator().generate(PULL, ISSUES, []) == VALID_FIXES

    def test_empty_result_is_a_failure(self):
        with pytest.raises(FixGenerationError, match="no fixes"):
            _StubGenerator(result=[]).generate(PULL, ISSUES, [])

    def test_malformed_entries_dropped(self):
        generator = _StubGenerator(result=[{"path": "a.py"}, "junk", {"path": "b.py", "content": "x"}])
        assert generator.generate(PULL, ISSUES, []) == [{"path": "b.py", "content": "x"}]

    def test_request_error_becomes_fix_generation_error(self):
        generator = _StubGenerator(error=requests.Timeout("read timed out"))
        with pytest.raises(FixGenerationError, match="read timed out"):
            generator.generate(PULL, ISSUES, [])
        assert generator.calls == 1


class TestRetry:
    def test_llm_generators_retry_transient_failures(self):
        calls = 0

        class _FailOnce(LLMFixGenerator):
            def _call_api(self, system_prompt, user_prompt, timeout):
                nonlocal calls
                calls += 1
                if calls == 1:
                    raise RuntimeError("transient")
                return json.dumps(VALID_FIXES)

        with patch("prloop_core.providers.base.time.sleep"):
            result = _FailOnce(client=MagicMock()).generate(PULL, ISSUES, [])
        assert result == VALID_FIXES
        assert calls == 2

    def test_gives_up_after_max_retries(self):
        class _AlwaysFail(LLMFixGenerator):
            def _call_api(self, system_prompt, user_prompt, timeout):
                raise RuntimeError("network error")

        with patch("prloop_core.providers.base.time.sleep"):
            with pytest.raises(FixGenerationError, match="network error"):
                _AlwaysFail(client=MagicMock()).generate(PULL, ISSUES, [])

    def test_no_retry_once_timeout_budget_is_spent(self):
        calls = 0

        class _AlwaysFail(LLMFixGenerator):
            def _call_api(self, system_prompt, user_prompt, timeout):
                nonlocal calls
                calls += 1
                raise RuntimeError("read timed out")

        with patch("prloop_core.providers.base.time.sleep") as sleep:
            with pytest.raises(FixGenerationError, match="read timed out"):
                _AlwaysFail(client=MagicMock(), timeout=0.5).generate(PULL, ISSUES, [])
        assert calls == 1
        sleep.assert_not_called()

    def test_each_attempt_gets_the_remaining_budget(self):
        budgets = []

        class _FailOnce(LLMFixGenerator):
            def _call_api(self, system_prompt, user_prompt, timeout):
                budgets.append(timeout)
                if len(budgets) == 1:
                    raise RuntimeError("transient")
                return json.dumps(VALID_FIXES)

        with patch("prloop_core.providers.base.time.sleep"):
            _FailOnce(client=MagicMock(), timeout=20).generate(PULL, ISSUES, [])
        assert all(0 < b <= 20 for b in budgets)
        assert budgets[1] <= budgets[0]


class TestLLMParse:
    def test_parses_json_list(self):
        assert _StubLLM("")._parse(json.dumps(VALID_FIXES)) == VALID_FIXES

    def test_strips_markdown_fences(self):
        raw = f"```json\n{json.dumps(VALID_FIXES)}\n```"
        assert _StubLLM("")._parse(raw) == VALID_FIXES

    def test_accepts_fixes_object(self):
        assert _StubLLM("")._parse(json.dumps({"fixes": VALID_FIXES})) == VALID_FIXES

    def test_invalid_json_is_empty(self):
        assert _StubLLM("")._parse("I could not fix this.") == []

    def test_unparseable_answer_fails_generation(self):
        with pytest.raises(FixGenerationError):
            _StubLLM("sorry").generate(PULL, ISSUES, [])


class TestLLMPrompts:
    def test_user_prompt_lists_issues_with_location(self):
        prompt = _StubLLM("")._build_user_prompt(build_fix_request(PULL, ISSUES, []))
        assert "- [bug] Missing null check in parser" in prompt
        assert "(src/upload.py:12)" in prompt
        assert "Add upload retries" in prompt
        assert "`feature` into `main`" in prompt

    def test_system_prompt_asks_for_full_files(self):
        assert "complete new content" in _StubLLM("")._build_system_prompt()


# ---------------------------------------------------------------------------
# Provider-specific
# ---------------------------------------------------------------------------


class TestHTTPFixGenerator:
    def _generator(self, response_json=None, status_error=None):
        session = MagicMock()
        session.headers = {}
        response = session.post.return_value
        response.json.return_value = response_json
        if status_error:
            response.raise_for_status.side_effect = status_error
        return HTTPFixGenerator("https://fixes.example.com/", "secret", timeout=30, session=session), session

    def test_posts_to_generate_fixes_with_bearer(self):
        generator, session = self._generator({"fixes": VALID_FIXES})
        assert generator.generate(PULL, ISSUES, []) == VALID_FIXES

        url = session.post.call_args.args[0]
        assert url == "https://fixes.example.com/generate-fixes"
        assert 0 < session.post.call_args.kwargs["timeout"] <= 30
        assert session.post.call_args.kwargs["json"]["prTitle"] == "Add upload retries"
        assert session.headers["Authorization"] == "Bearer secret"

    def test_no_auth_header_without_key(self):
        session = MagicMock()
        session.headers = {}
        HTTPFixGenerator("https://fixes.example.com", None, session=session)
        assert "Authorization" not in session.headers

    def test_http_error_is_fix_generation_error(self):
        generator, _ = self._generator(status_error=requests.HTTPError("502 Bad Gateway"))
        with pytest.raises(FixGenerationError, match="502"):
            generator.generate(PULL, ISSUES, [])

    def test_missing_fixes_key_is_failure(self):
        generator, _ = self._generator({"message": "nothing to do"})
        with pytest.raises(FixGenerationError):
            generator.generate(PULL, ISSUES, [])


class TestAnthropicFixGenerator:
    def test_raises_import_error_without_sdk(self):
        with patch.dict("sys.modules", {"anthropic": None}):
            with pytest.raises(ImportError, match="prloop\\[anthropic\\]"):
                AnthropicFixGenerator(api_key="key")

    def test_model_is_claude(self):
        assert "claude" in AnthropicFixGenerator.MODEL

    def test_temperature_is_deterministic(self):
        assert AnthropicFixGenerator.TEMPERATURE == 0.0

    def test_call_api_joins_text_blocks(self):
        client = MagicMock()
        client.messages.create.return_value.content = [
            MagicMock(type="thinking", text="ignored"),
            MagicMock(type="text", text=json.dumps(VALID_FIXES)),
        ]
        generator = AnthropicFixGenerator(client=client, timeout=10)
        assert generator.generate(PULL, ISSUES, []) == VALID_FIXES

        kwargs = client.messages.create.call_args.kwargs
        assert kwargs["model"] == AnthropicFixGenerator.MODEL
        assert kwargs["temperature"] == 0.0
        assert 0 < kwargs["timeout"] <= 10

    def test_model_override(self):
        generator = AnthropicFixGenerator(client=MagicMock(), model="claude-haiku")
        assert generator.model == "claude-haiku"


class TestOpenAIFixGenerator:
    def test_raises_import_error_without_sdk(self):
        import prloop_core.providers.openai as openai_mod

        real_openai = openai_mod._OpenAI
        openai_mod._OpenAI = None
        try:
            with pytest.raises(ImportError):
                OpenAIFixGenerator(api_key="key")
        finally:
            openai_mod._OpenAI = real_openai

    def test_call_api_uses_chat_completions(self, mocker):
        fake_client_cls = MagicMock()
        mocker.patch("prloop_core.providers.openai._OpenAI", fake_client_cls)
        client = fake_client_cls.return_value
        client.chat.completions.create.return_value.choices = [
            MagicMock(message=MagicMock(content=json.dumps(VALID_FIXES)))
        ]

        generator = OpenAIFixGenerator(api_key="key", timeout=15)
        assert generator.generate(PULL, ISSUES, []) == VALID_FIXES

        fake_client_cls.assert_called_once_with(api_key="key", timeout=15, max_retries=0)
        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-4o"
        assert kwargs["messages"][0]["role"] == "system"

    def test_model_is_gpt(self):
        assert "gpt" in OpenAIFixGenerator.MODEL
