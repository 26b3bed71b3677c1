"""
Chat-completions adapters: OpenAI, Mistral and generic compatible endpoints.

All three speak POST {base_url}/chat/completions with bearer auth. The
generic adapter additionally carries operator-supplied extra headers and
a structured-output flag, and is used for Groq, OpenRouter, Together,
Fireworks and custom providers.
"""

from __future__ import annotations

from typing import Any, Mapping

from quizcore.providers.adapters.base import ProviderAdapter
from quizcore.providers.catalog import ProviderFamily


class OpenAICompatibleAdapter(ProviderAdapter):
    """Generic HTTP adapter for any OpenAI-compatible chat endpoint."""

    family = ProviderFamily.OPENAI_COMPAT

    @property
    def endpoint(self) -> str:
        return f"{self.descriptor.base_url.rstrip('/')}/chat/completions"

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
            "Authorization": f"Bearer {self._api_key}",
        }
        headers.update(self.descriptor.extra_headers)

        body: dict[str, Any] = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if structured:
            body["response_format"] = {"type": "json_object"}
        return self.endpoint, headers, body

    def extract_text(self, data: Mapping[str, Any]) -> str:
        message = data["choices"][0]["message"]
        content = message.get("content") or ""
        if isinstance(content, list):
            # Some gateways return content parts instead of a string
            return "".join(
                part.get("text", "") for part in content if isinstance(part, Mapping)
            )
        return content


class OpenAIAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.OPENAI


class MistralAdapter(OpenAICompatibleAdapter):
    family = ProviderFamily.MISTRAL
