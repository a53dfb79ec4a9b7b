from __future__ import annotations

try:
    from openai import OpenAI as _OpenAI
except ImportError:
    _OpenAI = None  # type: ignore[assignment,misc]

from prloop_core.providers.base import LLMFixGenerator, missing_sdk


class OpenAIFixGenerator(LLMFixGenerator):
    MODEL = "gpt-4o"

    def _make_client(self, api_key: str | None):
        if _OpenAI is None:
            raise missing_sdk("openai")
        return _OpenAI(api_key=api_key, timeout=self.timeout, max_retries=0)

    def _call_api(self, system_prompt: str, user_prompt: str, timeout: float) -> str:
        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.TEMPERATURE,
            max_tokens=self.MAX_TOKENS,
            timeout=timeout,
        )
        return response.choices[0].message.content or ""
