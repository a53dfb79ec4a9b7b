from __future__ import annotations

import requests

from prloop_core.providers.base import BaseFixGenerator


class HTTPFixGenerator(BaseFixGenerator):
    """Posts the fix request to ``<base_url>/generate-fixes``.

    The service answers ``{"fixes": [{"path", "content"}, ...]}``. A single
    attempt per fix cycle; the request is bounded by ``timeout`` seconds.
    """

    ENDPOINT = "/generate-fixes"

    def __init__(self, base_url: str, api_key: str | None, timeout: float = 60, session=None):
        super().__init__(timeout=timeout)
        self.url = base_url.rstrip("/") + self.ENDPOINT
        self.session = session or requests.Session()
        self.session.headers.update({"Content-Type": "application/json"})
        if api_key:
            self.session.headers.update({"Authorization": f"Bearer {api_key}"})

    def _request_fixes(self, payload: dict, timeout: float) -> list[dict]:
        response = self.session.post(self.url, json=payload, timeout=timeout)
        response.raise_for_status()
        data = response.json() or {}
        return data.get("fixes") or []
