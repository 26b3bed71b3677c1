"""
Anthropic Messages API adapter.

No structured-output parameter exists, so every call carries the JSON-only
instruction in the system field and the capability fallback never fires.
"""

from __future__ import annotations

from typing import Any, Mapping

from quizcore.providers.adapters.base import ProviderAdapter
from quizcore.providers.catalog import ProviderFamily

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicAdapter(ProviderAdapter):
    family = ProviderFamily.ANTHROPIC

    @property
    def supports_structured_output(self) -> bool:
        return False

    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        structured: bool,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        headers = {
            "Content-Type": "application/json",
            "x-api-key": self._api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }
        headers.update(self.descriptor.extra_headers)
        body = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "system": system_prompt,
            "messages": [{"role": "user", "content": user_prompt}],
        }
        return f"{self.descriptor.base_url.rstrip('/')}/messages", headers, body

    def extract_text(self, data: Mapping[str, Any]) -> str:
        return "".join(
            block.get("text", "")
            for block in data["content"]
            if block.get("type", "text") == "text"
        )
