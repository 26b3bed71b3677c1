"""
Google Gemini generateContent adapter.

The key travels in the x-goog-api-key header, never in the query string.
Structured output is requested with generationConfig.responseMimeType.
"""

from __future__ import annotations

from typing import Any, Mapping

from quizcore.providers.adapters.base import ProviderAdapter
from quizcore.providers.catalog import ProviderFamily


class GeminiAdapter(ProviderAdapter):
    family = ProviderFamily.GEMINI

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
            "x-goog-api-key": self._api_key,
        }
        headers.update(self.descriptor.extra_headers)

        generation_config: dict[str, Any] = {
            "temperature": temperature,
            "maxOutputTokens": max_tokens,
        }
        if structured:
            generation_config["responseMimeType"] = "application/json"

        body = {
            "systemInstruction": {"parts": [{"text": system_prompt}]},
            "contents": [{"role": "user", "parts": [{"text": user_prompt}]}],
            "generationConfig": generation_config,
        }
        url = f"{self.descriptor.base_url.rstrip('/')}/models/{self.model}:generateContent"
        return url, headers, body

    def extract_text(self, data: Mapping[str, Any]) -> str:
        parts = data["candidates"][0]["content"]["parts"]
        return "".join(part.get("text", "") for part in parts)
