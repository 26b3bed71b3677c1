"""
Tests for the vendor family adapters.

All HTTP traffic goes through httpx.MockTransport; no network access.

Covers:
- Wire shape per family (URL, auth header, structured-output parameter)
- Generation batching and the acceptance filter
- Structured-output downgrade: exactly one retry, second failure surfaces
- Error classification, connection failures, timeouts, parse failures
- Validation, ambiguity, edit proposals and illustration
- Liveness probes never raise
"""

from __future__ import annotations

import asyncio
import json
import re

import httpx
import pytest

from quizcore.exceptions import (
    MissingCredentialError,
    ProviderHTTPError,
    ProviderParseError,
    ProviderTimeoutError,
    UnsupportedCapabilityError,
)
from quizcore.providers.adapters import (
    ADAPTER_TABLE,
    AnthropicAdapter,
    GeminiAdapter,
    MistralAdapter,
    OpenAIAdapter,
    OpenAICompatibleAdapter,
)
from quizcore.providers.catalog import BUILTIN_DESCRIPTORS, ProviderDescriptor, ProviderFamily
from quizcore.providers.errors import RULES_VERSION
from quizcore.providers.models import GenerationRequest
from quizcore.providers.prompts import JSON_ONLY_INSTRUCTION
from quizcore.providers.resilience import CallRecord, CallState

UNSUPPORTED_BODY = {"error": {"message": "'response_format' is not supported with this model."}}


def _body(request: httpx.Request) -> dict:
    return json.loads(request.content)


def _user_prompt(request: httpx.Request) -> str:
    return _body(request)["messages"][-1]["content"]


# ─── Construction ─────────────────────────────────────────────────────


class TestConstruction:

    def test_empty_key_rejected(self):
        with pytest.raises(MissingCredentialError) as exc_info:
            OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "  ")
        assert exc_info.value.provider_id == "openai"

    def test_adapter_table_covers_every_family(self):
        assert set(ADAPTER_TABLE) == set(ProviderFamily)
        assert ADAPTER_TABLE[ProviderFamily.MISTRAL] is MistralAdapter

    def test_describe(self):
        info = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g-key").describe().to_dict()
        assert info["id"] == "gemini"
        assert info["supportedLanguages"] == ["sv", "en"]
        assert set(info["capabilities"]) == {"generation", "validation", "illustration", "migration"}
        assert info["maxBatchSize"] == 3
        assert info["structuredOutput"] is True

    def test_repr_hides_key(self):
        adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk-secret-value")
        assert "sk-secret-value" not in repr(adapter)


# ─── Wire Shapes ──────────────────────────────────────────────────────


class TestWireShapes:

    def test_openai_request(self):
        adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk-test")
        url, headers, body = adapter.build_request(
            "SYS", "USER", temperature=0.7, max_tokens=100, structured=True,
        )
        assert url == "https://api.openai.com/v1/chat/completions"
        assert headers["Authorization"] == "Bearer sk-test"
        assert body["response_format"] == {"type": "json_object"}
        assert body["messages"][0] == {"role": "system", "content": "SYS"}
        assert body["model"] == "gpt-4o-mini"

    def test_openai_unstructured_request(self):
        adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk-test")
        _, _, body = adapter.build_request("S", "U", temperature=0, max_tokens=1, structured=False)
        assert "response_format" not in body

    def test_anthropic_request(self):
        adapter = AnthropicAdapter(BUILTIN_DESCRIPTORS["anthropic"], "ak-test")
        url, headers, body = adapter.build_request(
            "SYS", "USER", temperature=0.3, max_tokens=100, structured=True,
        )
        assert url == "https://api.anthropic.com/v1/messages"
        assert headers["x-api-key"] == "ak-test"
        assert headers["anthropic-version"] == "2023-06-01"
        assert body["system"] == "SYS"
        assert "response_format" not in body
        assert adapter.supports_structured_output is False

    def test_gemini_request(self):
        adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g-key")
        url, headers, body = adapter.build_request(
            "SYS", "USER", temperature=0.3, max_tokens=100, structured=True,
        )
        assert url.endswith("/models/gemini-2.0-flash:generateContent")
        assert "key=" not in url
        assert headers["x-goog-api-key"] == "g-key"
        assert body["generationConfig"]["responseMimeType"] == "application/json"
        assert body["systemInstruction"]["parts"][0]["text"] == "SYS"

    def test_generic_extra_headers(self):
        descriptor = ProviderDescriptor(
            id="my-proxy",
            label="Proxy",
            family=ProviderFamily.OPENAI_COMPAT,
            model="llama",
            base_url="https://proxy.local/v1/",
            extra_headers={"HTTP-Referer": "https://quiz.example"},
            is_custom=True,
        )
        adapter = OpenAICompatibleAdapter(descriptor, "k")
        url, headers, _ = adapter.build_request("S", "U", temperature=0, max_tokens=1, structured=False)
        assert url == "https://proxy.local/v1/chat/completions"
        assert headers["HTTP-Referer"] == "https://quiz.example"

    def test_content_parts_joined(self):
        adapter = OpenAICompatibleAdapter(BUILTIN_DESCRIPTORS["groq"], "k")
        data = {"choices": [{"message": {"content": [{"text": '{"a":'}, {"text": " 1}"}]}}]}
        assert adapter.extract_text(data) == '{"a": 1}'


# ─── Generation ───────────────────────────────────────────────────────


class TestGenerate:

    @pytest.mark.asyncio
    async def test_batches_sequentially(self, mock_client, reply, question_payload):
        sizes = []

        def handler(request):
            n = int(re.search(r"Write (\d+) quiz", _user_prompt(request)).group(1))
            sizes.append(n)
            return reply(request, question_payload(n))

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            items = await adapter.generate(GenerationRequest(category="Historia", quantity=5))

        assert sizes == [3, 2]
        assert len(items) == 5
        assert all(item.provider == "openai" and item.model == "gpt-4o-mini" for item in items)
        assert all(item.category == "Historia" for item in items)

    @pytest.mark.asyncio
    async def test_invalid_items_dropped(self, mock_client, reply, question_payload):
        def handler(request):
            payload = question_payload(3)
            payload["questions"][1]["correctOption"] = 9
            return reply(request, payload)

        async with mock_client(handler) as client:
            adapter = MistralAdapter(BUILTIN_DESCRIPTORS["mistral"], "m", client=client)
            items = await adapter.generate(GenerationRequest(category="Sport", quantity=3))

        assert len(items) == 2

    @pytest.mark.asyncio
    async def test_anthropic_gets_json_instruction(self, mock_client, reply, question_payload):
        systems = []

        def handler(request):
            systems.append(_body(request)["system"])
            return reply(request, question_payload(1))

        async with mock_client(handler) as client:
            adapter = AnthropicAdapter(BUILTIN_DESCRIPTORS["anthropic"], "ak", client=client)
            items = await adapter.generate(GenerationRequest(category="Musik", quantity=1))

        assert len(items) == 1
        assert len(systems) == 1
        assert systems[0].endswith(JSON_ONLY_INSTRUCTION)

    @pytest.mark.asyncio
    async def test_gemini_round_trip(self, mock_client, reply, question_payload):
        async with mock_client(lambda r: reply(r, question_payload(2))) as client:
            adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g", client=client)
            items = await adapter.generate(GenerationRequest(category="Natur", quantity=2))
        assert [i.question_en for i in items] == ["Question 0?", "Question 1?"]

    @pytest.mark.asyncio
    async def test_unparseable_text(self, mock_client):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {"content": "Sorry, no."}}]})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderParseError):
                await adapter.generate(GenerationRequest(category="x", quantity=1))

    @pytest.mark.asyncio
    async def test_missing_answer_text(self, mock_client):
        async with mock_client(lambda r: httpx.Response(200, json={"choices": []})) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderParseError):
                await adapter.generate(GenerationRequest(category="x", quantity=1))

    @pytest.mark.asyncio
    async def test_non_json_body(self, mock_client):
        async with mock_client(lambda r: httpx.Response(200, text="<html>")) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderParseError):
                await adapter.generate(GenerationRequest(category="x", quantity=1))


# ─── Structured Output Fallback ───────────────────────────────────────


class TestStructuredOutputFallback:

    @pytest.mark.asyncio
    async def test_retries_once_without_parameter(self, mock_client, reply, question_payload):
        bodies = []

        def handler(request):
            body = _body(request)
            bodies.append(body)
            if "response_format" in body:
                return httpx.Response(400, json=UNSUPPORTED_BODY)
            return reply(request, question_payload(1))

        call_log: list[CallRecord] = []
        async with mock_client(handler) as client:
            adapter = OpenAICompatibleAdapter(
                BUILTIN_DESCRIPTORS["groq"], "k", client=client, call_log=call_log,
            )
            items = await adapter.generate(GenerationRequest(category="x", quantity=1))

        assert len(items) == 1
        assert len(bodies) == 2
        assert "response_format" in bodies[0]
        assert "response_format" not in bodies[1]
        assert bodies[1]["messages"][0]["content"].endswith(JSON_ONLY_INSTRUCTION)
        assert call_log[0].attempts == 2
        assert call_log[0].state is CallState.SUCCESS

    @pytest.mark.asyncio
    async def test_second_failure_surfaces(self, mock_client):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(400, json=UNSUPPORTED_BODY)

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderHTTPError) as exc_info:
                await adapter.validate({"question_sv": "?", "correctOption": 0})

        assert len(requests) == 2
        assert not isinstance(exc_info.value, UnsupportedCapabilityError)
        assert exc_info.value.status_code == 400

    @pytest.mark.asyncio
    async def test_gemini_mime_type_downgrade(self, mock_client, reply):
        bodies = []

        def handler(request):
            body = _body(request)
            bodies.append(body)
            if "responseMimeType" in body["generationConfig"]:
                return httpx.Response(
                    400, text='Invalid JSON payload received. Unknown name "responseMimeType"',
                )
            return reply(request, {"isValid": True, "confidence": 80})

        async with mock_client(handler) as client:
            adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g", client=client)
            result = await adapter.validate({"question_sv": "?", "correctOption": 0})

        assert result.is_valid is True
        assert len(bodies) == 2

    @pytest.mark.asyncio
    async def test_ordinary_400_not_retried(self, mock_client):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(400, json={"error": {"message": "max_tokens too large"}})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderHTTPError):
                await adapter.validate({"question_sv": "?", "correctOption": 0})
        assert len(requests) == 1


# ─── Failures ─────────────────────────────────────────────────────────


class TestFailures:

    @pytest.mark.asyncio
    async def test_http_error_classified(self, mock_client):
        body = {"error": {"code": "insufficient_quota", "message": "You exceeded your current quota"}}
        async with mock_client(lambda r: httpx.Response(429, json=body)) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            with pytest.raises(ProviderHTTPError) as exc_info:
                await adapter.validate({"question_sv": "?"})

        err = exc_info.value
        assert err.kind == "insufficient_credits"
        assert err.status_code == 429
        assert err.purpose == "validation"
        assert err.details["rules_version"] == RULES_VERSION

    @pytest.mark.asyncio
    async def test_connection_error(self, mock_client):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            adapter = MistralAdapter(BUILTIN_DESCRIPTORS["mistral"], "m", client=client)
            with pytest.raises(ProviderHTTPError) as exc_info:
                await adapter.validate({"question_sv": "?"})
        assert exc_info.value.kind == "connection_error"
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    async def test_timeout_is_not_http_error(self, mock_client, reply):
        async def handler(request):
            await asyncio.sleep(1)
            return reply(request, {"isValid": True})

        call_log: list[CallRecord] = []
        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client, call_log=call_log)
            with pytest.raises(ProviderTimeoutError) as exc_info:
                await adapter.validate({"question_sv": "?"}, timeout=0.05)

        assert not isinstance(exc_info.value, ProviderHTTPError)
        assert call_log[0].state is CallState.TIMED_OUT


# ─── Validation & Friends ─────────────────────────────────────────────


class TestValidationFamily:

    @pytest.mark.asyncio
    async def test_validate(self, mock_client, reply, generated_item):
        prompts = []

        def handler(request):
            prompts.append(_user_prompt(request))
            return reply(request, {
                "isValid": False,
                "confidence": 70,
                "issues": ["Uppsala was once the seat of power"],
                "multipleCorrectOptions": True,
                "alternativeCorrectOptions": [3],
            })

        async with mock_client(handler) as client:
            adapter = MistralAdapter(BUILTIN_DESCRIPTORS["mistral"], "m", client=client)
            result = await adapter.validate(generated_item, ["Historically accurate"])

        assert "- Historically accurate" in prompts[0]
        assert result.provider == "mistral"
        assert result.is_valid is False
        assert result.alternative_correct_options == [3]
        assert result.suggestions

    @pytest.mark.asyncio
    async def test_validation_temperature(self, mock_client, reply):
        temperatures = []

        def handler(request):
            temperatures.append(_body(request)["temperature"])
            return reply(request, {"isValid": True})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(
                BUILTIN_DESCRIPTORS["openai"], "sk", client=client, validation_temperature=0.25,
            )
            await adapter.validate({"question_sv": "?"})
        assert temperatures == [0.25]

    @pytest.mark.asyncio
    async def test_check_ambiguity(self, mock_client, reply, raw_question):
        temperatures = []

        def handler(request):
            temperatures.append(_body(request)["temperature"])
            return reply(request, {"multipleCorrectOptions": False, "reason": "Clear"})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            result = await adapter.check_ambiguity(raw_question)

        assert result.multiple_correct_options is False
        assert result.reason == "Clear"
        assert temperatures == [0.1]

    @pytest.mark.asyncio
    async def test_propose_edits(self, mock_client, reply, raw_question):
        def handler(request):
            return reply(request, {
                "proposedEdits": {
                    "options_sv": ["Göteborg", "Stockholm", "Malmö", "Uppsala"],
                    "options_en": ["Gothenburg", "Stockholm", "Malmö", "Uppsala"],
                },
                "reason": "Shuffle",
            })

        async with mock_client(handler) as client:
            adapter = AnthropicAdapter(BUILTIN_DESCRIPTORS["anthropic"], "ak", client=client)
            proposal = await adapter.propose_edits(raw_question, ["Answer always first"])

        assert proposal.proposed_edits["correctOption"] == 1
        assert proposal.provider == "anthropic"

    @pytest.mark.asyncio
    async def test_generate_illustration(self, mock_client, reply, generated_item):
        async with mock_client(lambda r: reply(r, {"emoji": " 🏰 "})) as client:
            adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g", client=client)
            result = await adapter.generate_illustration(generated_item)
        assert result.emoji == "🏰"
        assert result.to_dict()["provider"] == "gemini"

    @pytest.mark.asyncio
    async def test_illustration_without_emoji(self, mock_client, reply, generated_item):
        async with mock_client(lambda r: reply(r, {"emoji": ""})) as client:
            adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g", client=client)
            with pytest.raises(ProviderParseError):
                await adapter.generate_illustration(generated_item)


# ─── Liveness ─────────────────────────────────────────────────────────


class TestLiveness:

    @pytest.mark.asyncio
    async def test_active(self, mock_client):
        bodies = []

        def handler(request):
            bodies.append(_body(request))
            return httpx.Response(200, json={"choices": [{"message": {"content": "not even json"}}]})

        async with mock_client(handler) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            result = await adapter.check_liveness()

        assert result.available is True
        assert result.status == "active"
        assert result.error is None
        assert bodies[0]["max_tokens"] == 16
        assert "response_format" not in bodies[0]
        assert "error" not in result.to_dict()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status, body, expected_status, expected_error", [
        (401, {"error": {"message": "Incorrect API key"}}, "auth_error", "auth_error"),
        (429, {"error": {"code": "insufficient_quota"}}, "no_credits", "insufficient_credits"),
        (429, {"error": {"message": "Too many requests"}}, "rate_limited", "rate_limit"),
        (500, {"error": {"message": "boom"}}, "error", "api_error"),
    ])
    async def test_classified_failures(
        self, mock_client, status, body, expected_status, expected_error,
    ):
        async with mock_client(lambda r: httpx.Response(status, json=body)) as client:
            adapter = OpenAIAdapter(BUILTIN_DESCRIPTORS["openai"], "sk", client=client)
            result = await adapter.check_liveness()

        assert result.available is False
        assert result.status == expected_status
        assert result.error == expected_error

    @pytest.mark.asyncio
    async def test_connection_failure(self, mock_client):
        def handler(request):
            raise httpx.ConnectTimeout("slow", request=request)

        async with mock_client(handler) as client:
            adapter = AnthropicAdapter(BUILTIN_DESCRIPTORS["anthropic"], "ak", client=client)
            result = await adapter.check_liveness()

        assert result.available is False
        assert result.error == "connection_error"
        assert result.status == "error"

    @pytest.mark.asyncio
    async def test_deadline(self, mock_client):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={})

        async with mock_client(handler) as client:
            adapter = GeminiAdapter(BUILTIN_DESCRIPTORS["gemini"], "g", client=client)
            result = await adapter.check_liveness(timeout=0.05)

        assert result.available is False
        assert result.error == "connection_error"
