"""
Provider Registry — adapters for one orchestration cycle.

A registry is opened from a decrypted settings snapshot at the start of a
cycle and discarded at its end; decrypted keys live only as long as the
registry. Each cycle gets its own `cycle_id`, stamped onto every log line
emitted while the cycle runs.

Usage:
    registry = ProviderRegistry.open(store, settings=settings)
    registry.list_available("validation")    # ["openai", "gemini"]
    adapter = registry.get_adapter("gemini")
"""

from __future__ import annotations

import logging
import uuid
from typing import Mapping, Optional

import httpx

from quizcore.config.settings import OrchestratorSettings
from quizcore.exceptions import (
    MissingCredentialError,
    QuizCoreError,
    UnknownProviderError,
)
from quizcore.observability.logging_config import set_cycle_id
from quizcore.providers.adapters import ADAPTER_TABLE, OpenAICompatibleAdapter, ProviderAdapter
from quizcore.providers.catalog import normalize_provider_id
from quizcore.providers.freshness import FreshnessPolicy
from quizcore.providers.resilience import CallRecord
from quizcore.providers.settings_store import (
    ProviderConfig,
    ProviderSettingsStore,
    SettingsSnapshot,
)

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Builds and caches adapters from one settings snapshot."""

    def __init__(
        self,
        snapshot: SettingsSnapshot,
        *,
        settings: Optional[OrchestratorSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        freshness: Optional[FreshnessPolicy] = None,
        cycle_id: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.settings = settings or OrchestratorSettings()
        if snapshot.is_empty:
            snapshot = SettingsSnapshot.builtin_fallback(
                environ, self.settings.trusted_migration_provider,
            )
        self.snapshot = snapshot
        self.cycle_id = cycle_id or uuid.uuid4().hex[:12]
        self.call_log: list[CallRecord] = []
        self._client = client
        self._freshness = freshness
        self._adapters: dict[str, ProviderAdapter] = {}
        set_cycle_id(self.cycle_id)

    @classmethod
    def open(
        cls,
        store: ProviderSettingsStore,
        *,
        settings: Optional[OrchestratorSettings] = None,
        client: Optional[httpx.AsyncClient] = None,
        freshness: Optional[FreshnessPolicy] = None,
    ) -> "ProviderRegistry":
        """Start a cycle: load a decrypted snapshot and wrap it."""
        registry = cls(
            store.load_snapshot(decrypt_secrets=True),
            settings=settings,
            client=client,
            freshness=freshness,
        )
        logger.info(
            "provider_registry_opened",
            extra={
                "providers": len(registry.snapshot.providers),
                "credentialed": len(registry.snapshot.eligible()),
            },
        )
        return registry

    # --- Lookup ---

    def config_for(self, provider_id: str) -> ProviderConfig:
        config = self.snapshot.get(provider_id)
        if config is None:
            raise UnknownProviderError(
                f"Unknown provider '{provider_id}'",
                provider_id=normalize_provider_id(provider_id),
            )
        return config

    def get_adapter(self, provider_id: str) -> ProviderAdapter:
        """
        Adapter for a provider, built once per registry.

        Raises:
            UnknownProviderError: The snapshot has no such provider.
            MissingCredentialError: The provider has no usable key.
        """
        config = self.config_for(provider_id)
        cached = self._adapters.get(config.id)
        if cached is not None:
            return cached

        if not config.has_credential:
            raise MissingCredentialError(
                f"Provider '{config.id}' has no usable API key",
                provider_id=config.id,
                details={"credential_error": config.credential_error},
            )

        descriptor = config.descriptor
        adapter_cls = (
            OpenAICompatibleAdapter
            if descriptor.is_generic
            else ADAPTER_TABLE.get(descriptor.family, OpenAICompatibleAdapter)
        )
        adapter = adapter_cls(
            descriptor,
            config.api_key,
            client=self._client,
            timeouts=self.settings.timeouts,
            generation_temperature=self.settings.generation_temperature,
            validation_temperature=self.settings.validation_temperature,
            freshness=self._freshness,
            call_log=self.call_log,
        )
        self._adapters[config.id] = adapter
        logger.debug(
            "provider_adapter_built",
            extra={"provider_id": config.id, "model": descriptor.model},
        )
        return adapter

    def try_get_adapter(self, provider_id: str) -> Optional[ProviderAdapter]:
        """Like get_adapter, but logs and returns None on failure."""
        try:
            return self.get_adapter(provider_id)
        except QuizCoreError as e:
            logger.warning(
                "provider_adapter_unavailable",
                extra={
                    "provider_id": provider_id,
                    "error_kind": getattr(e, "kind", type(e).__name__),
                    "error": str(e),
                },
            )
            return None

    # --- Eligibility ---

    def list_available(self, purpose: Optional[str] = None) -> list[str]:
        """
        Credentialed, enabled, available providers, optionally for one purpose.

        A registry opened on an empty snapshot lists the built-ins that have
        an environment credential.
        """
        return self.snapshot.eligible(purpose)

    def configured_for(self, purpose: str) -> list[str]:
        return self.snapshot.configured_for(purpose)

    @property
    def trusted_migration_provider(self) -> str:
        return self.snapshot.trusted_migration_provider
