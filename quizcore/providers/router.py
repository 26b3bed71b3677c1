"""
Purpose Router — picks providers per purpose and runs validation fan-out.

Selection policies:
- generation:   uniform random among generation-eligible providers
- validation:   every validation-eligible provider except the generator,
                called concurrently with a deadline per call
- migration:    exactly one provider; the trusted provider when eligible,
                otherwise the first eligible in catalogue order
- illustration: uniform random among illustration-eligible providers

Adapters that fail to construct shrink the candidate set and never abort
selection. When no provider is enabled for a purpose the router raises
NoProvidersConfiguredError. When some are enabled but none has a usable
credential, adapter or answer it raises NoProvidersAvailableError.

Usage:
    registry = ProviderRegistry.open(store, settings=settings)
    router = PurposeRouter(registry)

    items = await router.generate(GenerationRequest(category="Historia"))
    outcome = await router.validate(items[0], generator_id=items[0].provider)
    outcome.is_valid, outcome.failed_count
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence, Union

from quizcore.exceptions import (
    NoProvidersAvailableError,
    NoProvidersConfiguredError,
    ProviderCallError,
)
from quizcore.providers.adapters import ProviderAdapter
from quizcore.providers.catalog import Purpose, normalize_provider_id
from quizcore.providers.models import (
    AmbiguityResult,
    EditProposal,
    GeneratedItem,
    GenerationRequest,
    IllustrationResult,
    LivenessResult,
    ValidationResult,
)
from quizcore.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

Item = Union[GeneratedItem, Mapping[str, Any]]


# ---------------------------------------------------------------------------
# Result Types
# ---------------------------------------------------------------------------

@dataclass
class ValidationOutcome:
    """Partial-tolerant result of one validation fan-out."""

    results: list[ValidationResult] = field(default_factory=list)
    failures: list[dict[str, Any]] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    duration_ms: float = 0.0

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.is_valid)

    @property
    def invalid_count(self) -> int:
        return sum(1 for r in self.results if not r.is_valid)

    @property
    def failed_count(self) -> int:
        return len(self.failures)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    @property
    def is_valid(self) -> bool:
        """Majority consensus: strictly more valid than invalid verdicts."""
        return self.valid_count > self.invalid_count

    @property
    def providers(self) -> list[str]:
        return [r.provider for r in self.results]

    def attributed_issues(self) -> list[dict[str, str]]:
        return [
            {"provider": r.provider, "issue": issue}
            for r in self.results
            for issue in r.issues
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "isValid": self.is_valid,
            "validCount": self.valid_count,
            "invalidCount": self.invalid_count,
            "failedCount": self.failed_count,
            "skippedCount": self.skipped_count,
            "providers": self.providers,
            "results": [r.to_dict() for r in self.results],
            "issues": self.attributed_issues(),
            "failures": list(self.failures),
            "skipped": list(self.skipped),
            "durationMs": round(self.duration_ms, 1),
        }


@dataclass
class LivenessReport:
    results: list[LivenessResult] = field(default_factory=list)
    unconfigured: list[str] = field(default_factory=list)

    @property
    def summary(self) -> dict[str, int]:
        active = sum(1 for r in self.results if r.available)
        return {
            "total": len(self.results),
            "active": active,
            "inactive": len(self.results) - active,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "providers": [r.to_dict() for r in self.results],
            "unconfigured": list(self.unconfigured),
            "summary": self.summary,
        }


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------

class PurposeRouter:
    """Applies purpose selection policies over one registry."""

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        rng: Optional[random.Random] = None,
    ):
        self.registry = registry
        self._rng = rng or random.Random()

    # --- Selection ---

    def _eligible(self, purpose: str, exclude: Iterable[str] = ()) -> list[str]:
        excluded = {normalize_provider_id(p) for p in exclude if p}
        candidates = [
            pid for pid in self.registry.list_available(purpose)
            if pid not in excluded
        ]
        if candidates:
            return candidates

        configured = [
            pid for pid in self.registry.configured_for(purpose)
            if pid not in excluded
        ]
        if configured:
            raise NoProvidersAvailableError(
                f"No usable provider for {purpose}",
                purpose=purpose,
                failures=[self._credential_failure(pid, purpose) for pid in configured],
                details={"configured": configured, "excluded": sorted(excluded)},
            )
        raise NoProvidersConfiguredError(
            f"No providers configured for {purpose}",
            purpose=purpose,
            details={"excluded": sorted(excluded)},
        )

    def _credential_failure(self, provider_id: str, purpose: str) -> dict[str, Any]:
        config = self.registry.snapshot.get(provider_id)
        kind = "credential_error" if config and config.credential_error else "missing_credential"
        return {"provider": provider_id, "purpose": purpose, "kind": kind}

    def _first_constructible(self, purpose: str, ordered: Sequence[str]) -> ProviderAdapter:
        skipped: list[str] = []
        for provider_id in ordered:
            adapter = self.registry.try_get_adapter(provider_id)
            if adapter is not None:
                logger.info(
                    "provider_selected",
                    extra={
                        "purpose": purpose,
                        "provider_id": adapter.id,
                        "model": adapter.model,
                        "skipped": skipped,
                    },
                )
                return adapter
            skipped.append(provider_id)
        raise NoProvidersAvailableError(
            f"No provider could be used for {purpose}",
            purpose=purpose,
            failures=[{"provider": pid, "kind": "missing_credential"} for pid in skipped],
        )

    def select(self, purpose: Union[str, Purpose], *, exclude: Iterable[str] = ()) -> ProviderAdapter:
        """One adapter for a single-call purpose."""
        purpose = Purpose(purpose).value
        candidates = self._eligible(purpose, exclude)

        if purpose == Purpose.MIGRATION.value:
            trusted = self.registry.trusted_migration_provider
            ordered = ([trusted] if trusted in candidates else []) + [
                pid for pid in candidates if pid != trusted
            ]
        else:
            ordered = list(candidates)
            self._rng.shuffle(ordered)

        return self._first_constructible(purpose, ordered)

    def validators_for(
        self,
        generator_id: Optional[str] = None,
    ) -> tuple[list[ProviderAdapter], list[str]]:
        """Validation adapters excluding the generator, plus skipped ids."""
        candidates = self._eligible(Purpose.VALIDATION.value, exclude=[generator_id or ""])
        adapters: list[ProviderAdapter] = []
        skipped: list[str] = []
        for provider_id in candidates:
            adapter = self.registry.try_get_adapter(provider_id)
            if adapter is None:
                skipped.append(provider_id)
            else:
                adapters.append(adapter)
        return adapters, skipped

    # --- Operations ---

    async def generate(
        self,
        request: GenerationRequest,
        *,
        provider_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> list[GeneratedItem]:
        """Generate with a random eligible provider, or a named eligible one."""
        if provider_id:
            purpose = Purpose.GENERATION.value
            normalized = normalize_provider_id(provider_id)
            if normalized not in self._eligible(purpose):
                if normalized in self.registry.configured_for(purpose):
                    raise NoProvidersAvailableError(
                        f"Provider '{normalized}' has no usable credential",
                        purpose=purpose,
                        failures=[self._credential_failure(normalized, purpose)],
                    )
                raise NoProvidersConfiguredError(
                    f"Provider '{normalized}' is not enabled for {purpose}",
                    purpose=purpose,
                )
            adapter = self._first_constructible(purpose, [normalized])
        else:
            adapter = self.select(Purpose.GENERATION)
        return await adapter.generate(request, timeout=timeout)

    async def validate(
        self,
        item: Item,
        criteria: Iterable[str] = (),
        *,
        generator_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ValidationOutcome:
        """
        Fan the item out to every validator except its generator.

        Calls run concurrently, each under its own deadline, so the wall
        clock tracks the slowest surviving call. Failed calls are counted,
        not raised, unless every call failed.
        """
        if generator_id is None and isinstance(item, GeneratedItem):
            generator_id = item.provider
        adapters, skipped = self.validators_for(generator_id)
        if not adapters:
            raise NoProvidersAvailableError(
                "No validator could be constructed",
                purpose=Purpose.VALIDATION.value,
                failures=[{"provider": pid, "kind": "missing_credential"} for pid in skipped],
            )

        criteria = list(criteria)
        start = time.monotonic()
        answers = await asyncio.gather(
            *(a.validate(item, criteria, timeout=timeout) for a in adapters),
            return_exceptions=True,
        )

        outcome = ValidationOutcome(skipped=skipped)
        for adapter, answer in zip(adapters, answers):
            if isinstance(answer, ProviderCallError):
                outcome.failures.append(answer.to_dict())
            elif isinstance(answer, BaseException):
                raise answer
            else:
                outcome.results.append(answer)
        outcome.duration_ms = (time.monotonic() - start) * 1000

        logger.info(
            "validation_fanout_completed",
            extra={
                "purpose": Purpose.VALIDATION.value,
                "generator": generator_id,
                "succeeded": len(outcome.results),
                "failed": outcome.failed_count,
                "skipped_providers": outcome.skipped_count,
                "consensus": outcome.is_valid,
                "duration_ms": round(outcome.duration_ms, 1),
            },
        )

        if not outcome.results:
            raise NoProvidersAvailableError(
                "Every validator call failed",
                purpose=Purpose.VALIDATION.value,
                failures=outcome.failures,
            )
        return outcome

    async def check_ambiguity(
        self,
        item: Item,
        *,
        generator_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> AmbiguityResult:
        if generator_id is None and isinstance(item, GeneratedItem):
            generator_id = item.provider
        adapter = self.select(Purpose.VALIDATION, exclude=[generator_id or ""])
        return await adapter.check_ambiguity(item, timeout=timeout)

    async def propose_edits(
        self,
        item: Item,
        issues: Sequence[str],
        analysis: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
    ) -> EditProposal:
        """Edit proposals mutate stored content, so they go to the migration provider."""
        adapter = self.select(Purpose.MIGRATION)
        return await adapter.propose_edits(item, issues, analysis, timeout=timeout)

    async def illustrate(
        self,
        item: Item,
        *,
        timeout: Optional[float] = None,
    ) -> IllustrationResult:
        adapter = self.select(Purpose.ILLUSTRATION)
        return await adapter.generate_illustration(item, timeout=timeout)

    async def liveness_report(self, timeout: Optional[float] = None) -> LivenessReport:
        """Probe every credentialed provider concurrently. Never short-circuits."""
        report = LivenessReport()
        adapters: list[ProviderAdapter] = []
        for provider_id in self.registry.snapshot.ids:
            config = self.registry.snapshot.get(provider_id)
            if config is None or not config.has_credential:
                report.unconfigured.append(provider_id)
                continue
            adapter = self.registry.try_get_adapter(provider_id)
            if adapter is None:
                report.unconfigured.append(provider_id)
            else:
                adapters.append(adapter)

        report.results = list(await asyncio.gather(
            *(a.check_liveness(timeout=timeout) for a in adapters)
        ))
        logger.info("liveness_report_completed", extra=report.summary)
        return report

    def available_providers(self) -> dict[str, Any]:
        """JSON surface: eligible providers per purpose plus their descriptions."""
        purposes = {p.value: self.registry.list_available(p.value) for p in Purpose}
        described: list[dict[str, Any]] = []
        for provider_id in self.registry.list_available():
            adapter = self.registry.try_get_adapter(provider_id)
            if adapter is None:
                continue
            info = adapter.describe().to_dict()
            info["purposes"] = [p for p, ids in purposes.items() if provider_id in ids]
            described.append(info)
        return {"providers": described, "purposes": purposes}
