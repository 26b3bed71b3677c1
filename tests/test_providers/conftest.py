"""
Shared fixtures for provider tests.

HTTP traffic is faked with httpx.MockTransport; handlers dispatch on the
request host so one client can stand in for several vendors at once.
"""

from __future__ import annotations

import copy
import json
from typing import Any, Callable

import httpx
import pytest

from quizcore.observability.logging_config import clear_cycle_id
from quizcore.providers.models import GeneratedItem
from quizcore.security.crypto import SecretCipher
from quizcore.storage.row_store import InMemoryRowStore

HOSTS = {
    "openai": "api.openai.com",
    "gemini": "generativelanguage.googleapis.com",
    "anthropic": "api.anthropic.com",
    "mistral": "api.mistral.ai",
    "groq": "api.groq.com",
}

RAW_QUESTION: dict[str, Any] = {
    "question_sv": "Vad är Sveriges huvudstad?",
    "question_en": "What is the capital of Sweden?",
    "options_sv": ["Stockholm", "Göteborg", "Malmö", "Uppsala"],
    "options_en": ["Stockholm", "Gothenburg", "Malmö", "Uppsala"],
    "correctOption": 0,
    "explanation_sv": "Stockholm har varit huvudstad sedan 1600-talet.",
    "explanation_en": "Stockholm has been the capital since the 17th century.",
    "background_sv": "Stockholm ligger där Mälaren möter Östersjön.",
    "background_en": "Stockholm lies where Lake Mälaren meets the Baltic Sea.",
    "emoji": "🏙️",
    "targetAudience": "swedish",
    "timeSensitive": False,
    "bestBeforeDate": None,
}


def completion_body(host: str, text: str) -> dict[str, Any]:
    """A 2xx body in the wire shape of the vendor behind `host`."""
    if host == HOSTS["anthropic"]:
        return {"content": [{"type": "text", "text": text}]}
    if host == HOSTS["gemini"]:
        return {"candidates": [{"content": {"parts": [{"text": text}]}}]}
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


def json_reply(request: httpx.Request, payload: dict[str, Any]) -> httpx.Response:
    """Answer `request` with `payload` serialized as the model's text."""
    text = json.dumps(payload, ensure_ascii=False)
    return httpx.Response(200, json=completion_body(request.url.host, text))


@pytest.fixture(autouse=True)
def _cleanup_cycle_id():
    yield
    clear_cycle_id()


@pytest.fixture
def raw_question() -> dict[str, Any]:
    return copy.deepcopy(RAW_QUESTION)


@pytest.fixture
def generated_item() -> GeneratedItem:
    return GeneratedItem(
        question_sv=RAW_QUESTION["question_sv"],
        question_en=RAW_QUESTION["question_en"],
        options_sv=list(RAW_QUESTION["options_sv"]),
        options_en=list(RAW_QUESTION["options_en"]),
        correct_option=0,
        background_sv=RAW_QUESTION["background_sv"],
        background_en=RAW_QUESTION["background_en"],
        category="Geografi",
        difficulty="medium",
        target_audience="swedish",
        age_groups=["adults"],
        provider="openai",
        model="gpt-4o-mini",
    )


@pytest.fixture
def hosts() -> dict[str, str]:
    return dict(HOSTS)


@pytest.fixture
def reply() -> Callable[[httpx.Request, dict[str, Any]], httpx.Response]:
    return json_reply


@pytest.fixture
def question_payload() -> Callable[[int], dict[str, Any]]:
    """Generation payload with `n` valid questions."""

    def _payload(n: int) -> dict[str, Any]:
        questions = []
        for i in range(n):
            q = copy.deepcopy(RAW_QUESTION)
            q["question_sv"] = f"Fråga {i}?"
            q["question_en"] = f"Question {i}?"
            questions.append(q)
        return {"questions": questions}

    return _payload


@pytest.fixture
def mock_client() -> Callable[[Callable], httpx.AsyncClient]:
    """Build an AsyncClient whose requests go to `handler`."""

    def _client(handler: Callable) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _client


@pytest.fixture
def cipher() -> SecretCipher:
    return SecretCipher("test-deployment-secret")


@pytest.fixture
def rows() -> InMemoryRowStore:
    return InMemoryRowStore()
