from __future__ import annotations

from prloop_core.providers.base import LLMFixGenerator, missing_sdk


class AnthropicFixGenerator(LLMFixGenerator):
    MODEL = "claude-sonnet-4-20250514"

    def _make_client(self, api_key: str | None):
        try:
            from anthropic import Anthropic
        except ImportError as e:
            raise missing_sdk("anthropic") from e
        return Anthropic(api_key=api_key, timeout=self.timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str, timeout: float) -> str:
        response = self.client.messages.create(
            model=self.model,
            system=system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            timeout=timeout,
        )
        # Tool-use and thinking blocks carry no text.
        return "".join(getattr(block, "text", "") for block in response.content if block.type == "text").strip()
