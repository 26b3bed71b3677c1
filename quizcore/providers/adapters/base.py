"""
ProviderAdapter — the capability contract every vendor family implements.

The base class owns prompts, batching, parsing, error classification and
the resilience wrapper. A family subclass only describes its wire shape:
how a (system, user) pair becomes an HTTP request and where the answer
text sits in the response.

Usage:
    adapter = OpenAIAdapter(descriptor, api_key="sk-...")
    items = await adapter.generate(GenerationRequest(category="Geografi"))
    verdict = await adapter.validate(items[0], criteria=["Facts are correct"])
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

import httpx

from quizcore.config.settings import TimeoutConfig
from quizcore.exceptions import (
    MissingCredentialError,
    ProviderCallError,
    ProviderHTTPError,
    ProviderParseError,
    UnsupportedCapabilityError,
)
from quizcore.providers import errors as error_rules
from quizcore.providers import prompts
from quizcore.providers.catalog import PURPOSES, ProviderDescriptor, Purpose
from quizcore.providers.freshness import FreshnessPolicy
from quizcore.providers.models import (
    LANGUAGES,
    AmbiguityResult,
    EditProposal,
    GeneratedItem,
    GenerationRequest,
    IllustrationResult,
    LivenessResult,
    ProviderInfo,
    ValidationResult,
    item_to_dict,
)
from quizcore.providers.parsing import (
    accept_items,
    extract_json,
    normalize_ambiguity,
    normalize_edit_proposal,
    normalize_validation,
)
from quizcore.providers.resilience import (
    CallRecord,
    call_with_capability_fallback,
    run_tracked,
)

logger = logging.getLogger(__name__)

Item = Union[GeneratedItem, Mapping[str, Any]]

AMBIGUITY_TEMPERATURE = 0.1
EDIT_TEMPERATURE = 0.2
ILLUSTRATION_TEMPERATURE = 0.5

# Transport backstop; per-purpose deadlines are enforced above httpx.
HTTP_TIMEOUT_SECONDS = 120.0


class ProviderAdapter(ABC):
    """
    Base class for one provider bound to one credential.

    Adapters hold only immutable configuration; every call is independent
    so a single adapter can serve concurrent fan-out.
    """

    max_tokens = {
        "generation": 4096,
        "validation": 2048,
        "ambiguity": 1024,
        "edits": 2048,
        "illustration": 64,
        "liveness": 16,
    }

    def __init__(
        self,
        descriptor: ProviderDescriptor,
        api_key: Optional[str],
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeouts: Optional[TimeoutConfig] = None,
        generation_temperature: float = 0.7,
        validation_temperature: float = 0.3,
        freshness: Optional[FreshnessPolicy] = None,
        call_log: Optional[list[CallRecord]] = None,
    ):
        if not api_key or not api_key.strip():
            raise MissingCredentialError(
                f"No API key configured for provider '{descriptor.id}'",
                provider_id=descriptor.id,
            )
        self.descriptor = descriptor
        self._api_key = api_key.strip()
        self._client = client
        self._timeouts = timeouts or TimeoutConfig()
        self._generation_temperature = generation_temperature
        self._validation_temperature = validation_temperature
        self._freshness = freshness or FreshnessPolicy()
        self._call_log = call_log

    # --- Identity ---

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def model(self) -> str:
        return self.descriptor.model

    @property
    def label(self) -> str:
        return self.descriptor.label

    @property
    def max_batch_size(self) -> int:
        return max(1, self.descriptor.max_batch_size)

    @property
    def supports_structured_output(self) -> bool:
        return self.descriptor.supports_structured_output

    @property
    def vendor(self) -> str:
        """Family name used by the error classification rules."""
        return self.descriptor.family.value

    def describe(self) -> ProviderInfo:
        return ProviderInfo(
            id=self.id,
            label=self.label,
            model=self.model,
            capabilities=list(PURPOSES),
            supported_languages=list(LANGUAGES),
            max_batch_size=self.max_batch_size,
            structured_output=self.supports_structured_output,
        )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.descriptor.display_name}>"

    # --- Wire shape (per family) ---

    @abstractmethod
    def build_request(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        structured: bool,
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        """Return (url, headers, json body) for one completion call."""

    @abstractmethod
    def extract_text(self, data: Mapping[str, Any]) -> str:
        """Pull the answer text out of a 2xx response body."""

    # --- Transport ---

    async def _send(self, url: str, headers: dict[str, str], body: dict[str, Any]) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(url, headers=headers, json=body)
        async with httpx.AsyncClient(timeout=HTTP_TIMEOUT_SECONDS) as client:
            return await client.post(url, headers=headers, json=body)

    async def _post(
        self,
        url: str,
        headers: dict[str, str],
        body: dict[str, Any],
        *,
        purpose: str,
        structured: bool,
    ) -> dict[str, Any]:
        """
        POST one request and return the decoded JSON body.

        Raises:
            UnsupportedCapabilityError: Structured output was rejected.
            ProviderHTTPError: Non-2xx status or transport failure.
            ProviderParseError: 2xx with a non-JSON body.
        """
        try:
            response = await self._send(url, headers, body)
        except httpx.HTTPError as e:
            raise ProviderHTTPError(
                f"{self.id} connection failed: {type(e).__name__}",
                provider_id=self.id,
                purpose=purpose,
                kind="connection_error",
            ) from e

        if response.status_code >= 400:
            text = response.text
            if structured and error_rules.is_unsupported_structured_output(response.status_code, text):
                raise UnsupportedCapabilityError(
                    f"{self.id} rejected structured output ({response.status_code})",
                    provider_id=self.id,
                    purpose=purpose,
                    status_code=response.status_code,
                    body=text[:500],
                )
            kind = error_rules.classify_error(self.vendor, response.status_code, text)
            raise ProviderHTTPError(
                f"{self.id} API error ({response.status_code})",
                provider_id=self.id,
                purpose=purpose,
                status_code=response.status_code,
                body=text[:500],
                kind=kind.value,
                details={"rules_version": error_rules.RULES_VERSION},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ProviderParseError(
                f"{self.id} returned a non-JSON body",
                provider_id=self.id,
                purpose=purpose,
            ) from e
        if not isinstance(data, dict):
            raise ProviderParseError(
                f"{self.id} returned an unexpected body shape",
                provider_id=self.id,
                purpose=purpose,
            )
        return data

    async def _complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        purpose: str,
        temperature: float,
        max_tokens: int,
        timeout: Optional[float] = None,
    ) -> dict[str, Any]:
        """One tracked completion call whose answer must be a JSON object."""

        async def send(structured: bool) -> dict[str, Any]:
            system = system_prompt if structured else prompts.with_json_instruction(system_prompt)
            url, headers, body = self.build_request(
                system,
                user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                structured=structured,
            )
            data = await self._post(url, headers, body, purpose=purpose, structured=structured)
            try:
                text = self.extract_text(data)
            except (KeyError, IndexError, TypeError) as e:
                raise ProviderParseError(
                    f"{self.id} response is missing the answer text",
                    provider_id=self.id,
                    purpose=purpose,
                ) from e
            return extract_json(text, provider_id=self.id, purpose=purpose)

        record = CallRecord(provider_id=self.id, purpose=purpose)
        if self._call_log is not None:
            self._call_log.append(record)

        return await run_tracked(
            lambda: call_with_capability_fallback(
                send,
                structured=self.supports_structured_output,
                provider_id=self.id,
                purpose=purpose,
                record=record,
            ),
            provider_id=self.id,
            purpose=purpose,
            timeout=self._resolve_timeout(purpose, timeout),
            record=record,
        )

    def _resolve_timeout(self, purpose: str, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self._timeouts.for_purpose(purpose)

    # --- Capabilities ---

    async def generate(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None,
    ) -> list[GeneratedItem]:
        """
        Generate questions, split into sequential batches of max_batch_size.

        Items failing the acceptance filter are dropped and logged.
        """
        batches = _split(request.quantity, self.max_batch_size)
        items: list[GeneratedItem] = []
        start = time.monotonic()

        for size in batches:
            payload = await self._complete_json(
                prompts.GENERATION_SYSTEM_PROMPT,
                prompts.build_generation_prompt(request, size),
                purpose=Purpose.GENERATION.value,
                temperature=self._generation_temperature,
                max_tokens=self.max_tokens["generation"],
                timeout=timeout,
            )
            items.extend(accept_items(
                payload, request, provider_id=self.id, model=self.model,
            ))

        logger.info(
            "questions_generated",
            extra={
                "provider_id": self.id,
                "model": self.model,
                "requested": request.quantity,
                "accepted": len(items),
                "batches": len(batches),
                "duration_ms": round((time.monotonic() - start) * 1000, 1),
            },
        )
        return items

    async def validate(
        self,
        item: Item,
        criteria: Iterable[str] = (),
        timeout: Optional[float] = None,
    ) -> ValidationResult:
        question = item_to_dict(item)
        data = await self._complete_json(
            prompts.VALIDATION_SYSTEM_PROMPT,
            prompts.build_validation_prompt(question, criteria),
            purpose=Purpose.VALIDATION.value,
            temperature=self._validation_temperature,
            max_tokens=self.max_tokens["validation"],
            timeout=timeout,
        )
        return normalize_validation(
            data, question,
            provider_id=self.id, model=self.model, policy=self._freshness,
        )

    async def check_ambiguity(
        self,
        item: Item,
        timeout: Optional[float] = None,
    ) -> AmbiguityResult:
        """Narrow low-temperature probe for multiple correct options."""
        question = item_to_dict(item)
        data = await self._complete_json(
            prompts.AMBIGUITY_SYSTEM_PROMPT,
            prompts.build_ambiguity_prompt(question),
            purpose=Purpose.VALIDATION.value,
            temperature=AMBIGUITY_TEMPERATURE,
            max_tokens=self.max_tokens["ambiguity"],
            timeout=timeout,
        )
        return normalize_ambiguity(data, question, provider_id=self.id, model=self.model)

    async def propose_edits(
        self,
        item: Item,
        issues: Sequence[str],
        analysis: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> EditProposal:
        question = item_to_dict(item)
        data = await self._complete_json(
            prompts.EDIT_SYSTEM_PROMPT,
            prompts.build_edit_prompt(question, issues, analysis),
            purpose=Purpose.MIGRATION.value,
            temperature=EDIT_TEMPERATURE,
            max_tokens=self.max_tokens["edits"],
            timeout=timeout,
        )
        return normalize_edit_proposal(data, question, provider_id=self.id, model=self.model)

    async def generate_illustration(
        self,
        item: Item,
        timeout: Optional[float] = None,
    ) -> IllustrationResult:
        question = item_to_dict(item)
        data = await self._complete_json(
            prompts.ILLUSTRATION_SYSTEM_PROMPT,
            prompts.build_illustration_prompt(question),
            purpose=Purpose.ILLUSTRATION.value,
            temperature=ILLUSTRATION_TEMPERATURE,
            max_tokens=self.max_tokens["illustration"],
            timeout=timeout,
        )
        emoji = str(data.get("emoji") or "").strip()
        if not emoji:
            raise ProviderParseError(
                f"{self.id} returned no emoji",
                provider_id=self.id,
                purpose=Purpose.ILLUSTRATION.value,
            )
        return IllustrationResult(provider=self.id, model=self.model, emoji=emoji)

    async def check_liveness(self, timeout: Optional[float] = None) -> LivenessResult:
        """
        Minimal probe of credential and quota. Never raises.

        Any 2xx answer counts as available; the body is not parsed.
        """
        start = time.monotonic()
        url, headers, body = self.build_request(
            prompts.JSON_ONLY_INSTRUCTION,
            prompts.LIVENESS_PROMPT,
            temperature=0.0,
            max_tokens=self.max_tokens["liveness"],
            structured=False,
        )
        try:
            await run_tracked(
                lambda: self._post(url, headers, body, purpose="liveness", structured=False),
                provider_id=self.id,
                purpose="liveness",
                timeout=self._resolve_timeout("liveness", timeout),
            )
        except ProviderCallError as e:
            return self._liveness_failure(e, (time.monotonic() - start) * 1000)

        return LivenessResult(
            provider=self.id,
            model=self.model,
            available=True,
            status=error_rules.ProviderStatus.ACTIVE.value,
            message="Provider is working",
            latency_ms=(time.monotonic() - start) * 1000,
        )

    def _liveness_failure(self, error: ProviderCallError, latency_ms: float) -> LivenessResult:
        status_code = getattr(error, "status_code", None)
        if error.kind in ("timeout", "connection_error") or (
            isinstance(error, ProviderHTTPError) and status_code is None
        ):
            code, status = "connection_error", error_rules.ProviderStatus.ERROR
        else:
            try:
                kind = error_rules.ErrorKind(error.kind)
            except ValueError:
                kind = error_rules.ErrorKind.UNKNOWN
            code = error_rules.LIVENESS_ERROR_FOR_KIND[kind]
            status = error_rules.status_for(kind)

        return LivenessResult(
            provider=self.id,
            model=self.model,
            available=False,
            status=status.value,
            error=code,
            message=str(error)[:200],
            latency_ms=latency_ms,
        )


def _split(quantity: int, batch_size: int) -> list[int]:
    """Batch sizes covering `quantity`, none larger than `batch_size`."""
    count = math.ceil(quantity / batch_size)
    return [min(batch_size, quantity - i * batch_size) for i in range(count)]
