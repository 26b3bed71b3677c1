"""
Provider Settings — persisted per-provider configuration and credentials.

Each provider has one row in the row store holding its enablement per
purpose, model, HTTP metadata (custom providers) and an encrypted API key
plus a short hint. `load_snapshot()` merges rows with the built-in
catalogue and resolves credentials; `save_snapshot()` applies an admin
payload.

Security model:
    - Cleartext keys are accepted on save, encrypted immediately and never
      returned; only `api_key_hint` is ever re-emitted
    - A stored key always wins over the process environment fallback
    - A stored key that fails to decrypt disables that provider only

Usage:
    from quizcore.providers.settings_store import ProviderSettingsStore

    store = ProviderSettingsStore(rows, cipher)
    store.save_snapshot({
        "purposes": {"generation": {"openai": True}},
        "providers": {"openai": {"apiKey": "sk-..."}},
    })
    snapshot = store.load_snapshot(decrypt_secrets=True)
    snapshot.eligible("generation")   # ["openai", ...]
"""

from __future__ import annotations

import json
import logging
import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from quizcore.config.settings import OrchestratorSettings
from quizcore.exceptions import (
    ConfigurationError,
    CredentialDecryptionError,
    ProviderConfigurationError,
)
from quizcore.providers.catalog import (
    BUILTIN_DESCRIPTORS,
    BUILTIN_IDS,
    DEFAULT_MAX_QUESTIONS_PER_REQUEST,
    DEFAULT_TRUSTED_MIGRATION_PROVIDER,
    PURPOSES,
    ProviderDescriptor,
    ProviderFamily,
    default_purposes,
    fallback_credential,
    is_builtin,
    normalize_provider_id,
)
from quizcore.security.crypto import SecretCipher, key_hint
from quizcore.storage.row_store import RowStore

logger = logging.getLogger(__name__)

BUILTIN_PROVIDER_TYPE = "builtin"
CUSTOM_PROVIDER_TYPE = ProviderFamily.OPENAI_COMPAT.value


# ---------------------------------------------------------------------------
# Admin Payload
# ---------------------------------------------------------------------------

class ProviderPayload(BaseModel):
    """One provider entry in an admin save payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    model: Optional[str] = None
    api_key: Optional[str] = Field(None, alias="apiKey")
    display_name: Optional[str] = Field(None, alias="displayName")
    base_url: Optional[str] = Field(None, alias="baseUrl")
    extra_headers: Union[dict[str, str], str, None] = Field(None, alias="extraHeaders")
    supports_response_format: Optional[bool] = Field(None, alias="supportsResponseFormat")
    max_questions_per_request: Optional[int] = Field(None, ge=1, alias="maxQuestionsPerRequest")
    provider_type: Optional[str] = Field(None, alias="providerType")
    is_custom: Optional[bool] = Field(None, alias="isCustom")
    is_available: Optional[bool] = Field(None, alias="isAvailable")


class SettingsPayload(BaseModel):
    """Full admin save payload."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    purposes: dict[str, dict[str, Any]] = Field(default_factory=dict)
    providers: dict[str, ProviderPayload] = Field(default_factory=dict)
    custom_providers: Optional[list[str]] = Field(None, alias="customProviders")


# ---------------------------------------------------------------------------
# Snapshot Types
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderConfig:
    """Everything known about one provider for one orchestration cycle."""

    descriptor: ProviderDescriptor
    purposes: Mapping[str, bool]
    is_enabled: bool = True
    is_available: bool = True
    api_key: Optional[str] = field(default=None, repr=False)
    key_source: Optional[str] = None      # "stored" | "env" | None
    key_hint: Optional[str] = None
    has_stored_key: bool = False
    credential_error: bool = False
    provider_type: str = BUILTIN_PROVIDER_TYPE

    @property
    def id(self) -> str:
        return self.descriptor.id

    @property
    def is_custom(self) -> bool:
        return self.descriptor.is_custom

    @property
    def has_credential(self) -> bool:
        return bool(self.api_key)

    @property
    def has_key(self) -> bool:
        """A key is configured, decrypted or not."""
        return self.has_credential or self.has_stored_key or self.key_source == "env"

    def purpose_enabled(self, purpose: str) -> bool:
        return bool(self.purposes.get(str(purpose), False))

    def is_eligible(self, purpose: Optional[str] = None) -> bool:
        if not (self.has_credential and self.is_enabled and self.is_available):
            return False
        return purpose is None or self.purpose_enabled(purpose)

    def to_public_dict(self) -> dict[str, Any]:
        d = self.descriptor
        return {
            "model": d.model,
            "displayName": d.label,
            "hasKey": self.has_key,
            "keyHint": self.key_hint,
            "keySource": self.key_source,
            "credentialError": self.credential_error,
            "baseUrl": d.base_url if d.is_custom else None,
            "extraHeaders": dict(d.extra_headers),
            "supportsResponseFormat": d.supports_structured_output,
            "maxQuestionsPerRequest": d.max_batch_size,
            "providerType": self.provider_type,
            "isCustom": d.is_custom,
            "isEnabled": self.is_enabled,
            "isAvailable": self.is_available,
        }


@dataclass(frozen=True)
class SettingsSnapshot:
    """Immutable view of every provider, in catalogue order then customs."""

    providers: Mapping[str, ProviderConfig]
    trusted_migration_provider: str = DEFAULT_TRUSTED_MIGRATION_PROVIDER
    loaded_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def builtin_fallback(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        trusted_migration_provider: str = DEFAULT_TRUSTED_MIGRATION_PROVIDER,
    ) -> "SettingsSnapshot":
        """Snapshot of the built-ins with environment credentials only."""
        providers = {}
        for provider_id, descriptor in BUILTIN_DESCRIPTORS.items():
            api_key = fallback_credential(provider_id, environ)
            providers[provider_id] = ProviderConfig(
                descriptor=descriptor,
                purposes=default_purposes(provider_id, False, trusted_migration_provider),
                api_key=api_key,
                key_source="env" if api_key else None,
                key_hint="env" if api_key else None,
            )
        return cls(providers=providers, trusted_migration_provider=trusted_migration_provider)

    @property
    def ids(self) -> list[str]:
        return list(self.providers)

    @property
    def is_empty(self) -> bool:
        return not self.providers

    def get(self, provider_id: str) -> Optional[ProviderConfig]:
        return self.providers.get(normalize_provider_id(provider_id) or "")

    def eligible(self, purpose: Optional[str] = None) -> list[str]:
        return [pid for pid, cfg in self.providers.items() if cfg.is_eligible(purpose)]

    def configured_for(self, purpose: str) -> list[str]:
        return [
            pid for pid, cfg in self.providers.items()
            if cfg.is_enabled and cfg.is_available and cfg.purpose_enabled(purpose)
        ]

    def to_public_dict(self) -> dict[str, Any]:
        """Admin JSON: purpose matrix plus provider map. Never contains a secret."""
        return {
            "purposes": {
                purpose: {pid: cfg.purpose_enabled(purpose) for pid, cfg in self.providers.items()}
                for purpose in PURPOSES
            },
            "providers": {pid: cfg.to_public_dict() for pid, cfg in self.providers.items()},
            "trustedMigrationProvider": self.trusted_migration_provider,
        }


# ---------------------------------------------------------------------------
# Row helpers
# ---------------------------------------------------------------------------

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _flag(value: Any, default: bool = True) -> bool:
    if value is None:
        return default
    if isinstance(value, str):
        return value.strip().lower() not in ("0", "false", "")
    return bool(value)


def parse_headers(value: Any) -> dict[str, str]:
    """Extra headers from a dict or a JSON object string."""
    if not value:
        return {}
    if isinstance(value, Mapping):
        return {str(k): str(v) for k, v in value.items()}
    try:
        parsed = json.loads(str(value))
    except (TypeError, ValueError):
        logger.warning("provider_extra_headers_invalid", extra={"value_preview": str(value)[:40]})
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


def parse_purposes(
    value: Any,
    provider_id: str,
    is_custom: bool,
    trusted_migration_provider: str,
) -> dict[str, bool]:
    """Stored purpose settings merged over the defaults."""
    purposes = default_purposes(provider_id, is_custom, trusted_migration_provider)
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            value = None
    if isinstance(value, Mapping):
        for purpose in PURPOSES:
            if isinstance(value.get(purpose), bool):
                purposes[purpose] = value[purpose]
    return purposes


def _positive_int(value: Any) -> Optional[int]:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class ProviderSettingsStore:
    """
    Load and save provider settings against a RowStore.

    Saves are serialised by a store-level lock; every provider row is
    written with a single merging upsert.
    """

    def __init__(
        self,
        rows: RowStore,
        cipher: Optional[SecretCipher] = None,
        *,
        trusted_migration_provider: str = DEFAULT_TRUSTED_MIGRATION_PROVIDER,
        endpoint_overrides: Optional[Mapping[str, str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.rows = rows
        self.cipher = cipher
        self.trusted_migration_provider = trusted_migration_provider
        self.endpoint_overrides = dict(endpoint_overrides or {})
        self._environ = environ
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: OrchestratorSettings,
        rows: RowStore,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ProviderSettingsStore":
        """Build a store whose cipher reads the configured secret variable, if set."""
        env = os.environ if environ is None else environ
        cipher = None
        if (env.get(settings.encryption_key_env) or "").strip():
            cipher = SecretCipher.from_env(settings.encryption_key_env, env)
        return cls(
            rows,
            cipher,
            trusted_migration_provider=settings.trusted_migration_provider,
            endpoint_overrides=settings.endpoint_overrides,
            environ=environ,
        )

    # --- Seeding ---

    def _seed_row(self, descriptor: ProviderDescriptor) -> dict[str, Any]:
        return {
            "is_enabled": True,
            "is_available": True,
            "purpose_settings": default_purposes(
                descriptor.id, False, self.trusted_migration_provider,
            ),
            "model": descriptor.model,
            "display_name": descriptor.label,
            "provider_type": BUILTIN_PROVIDER_TYPE,
            "is_custom": False,
            "supports_response_format": descriptor.supports_structured_output,
            "updated_at": _now_iso(),
        }

    def seed_builtin_rows(self) -> list[str]:
        """Insert a default row for every missing built-in. Idempotent."""
        inserted: list[str] = []
        with self._lock:
            for provider_id, descriptor in BUILTIN_DESCRIPTORS.items():
                if self.rows.get_row(provider_id) is None:
                    self.rows.upsert_row(provider_id, self._seed_row(descriptor))
                    inserted.append(provider_id)
        if inserted:
            logger.info("builtin_providers_seeded", extra={"providers": inserted})
        return inserted

    # --- Loading ---

    def load_snapshot(self, decrypt_secrets: bool = False) -> SettingsSnapshot:
        """
        Merge stored rows with the built-in catalogue.

        With `decrypt_secrets`, credentials are resolved per precedence
        (stored > environment > absent) into the returned snapshot only.
        """
        self.seed_builtin_rows()

        row_map: dict[str, dict[str, Any]] = {}
        for row in self.rows.list_rows():
            provider_id = normalize_provider_id(row.get("provider_id"))
            if provider_id:
                row_map[provider_id] = row

        ordered = list(BUILTIN_IDS) + sorted(pid for pid in row_map if not is_builtin(pid))
        providers = {
            pid: self._build_config(pid, row_map.get(pid), decrypt_secrets)
            for pid in ordered
        }
        return SettingsSnapshot(
            providers=providers,
            trusted_migration_provider=self.trusted_migration_provider,
        )

    def _build_config(
        self,
        provider_id: str,
        row: Optional[dict[str, Any]],
        decrypt_secrets: bool,
    ) -> ProviderConfig:
        row = row or {}
        builtin = BUILTIN_DESCRIPTORS.get(provider_id)
        is_custom = builtin is None or _flag(row.get("is_custom"), default=False)
        descriptor = self._build_descriptor(provider_id, row, builtin, is_custom)

        api_key, key_source, credential_error = self._resolve_credential(
            provider_id, row, decrypt_secrets, is_custom,
        )
        hint = row.get("api_key_hint") or ("env" if key_source == "env" else None)

        return ProviderConfig(
            descriptor=descriptor,
            purposes=parse_purposes(
                row.get("purpose_settings"), provider_id, is_custom,
                self.trusted_migration_provider,
            ),
            is_enabled=_flag(row.get("is_enabled")),
            is_available=_flag(row.get("is_available")),
            api_key=api_key,
            key_source=key_source,
            key_hint=hint,
            has_stored_key=bool(row.get("encrypted_api_key")),
            credential_error=credential_error,
            provider_type=row.get("provider_type") or (
                CUSTOM_PROVIDER_TYPE if is_custom else BUILTIN_PROVIDER_TYPE
            ),
        )

    def _build_descriptor(
        self,
        provider_id: str,
        row: dict[str, Any],
        builtin: Optional[ProviderDescriptor],
        is_custom: bool,
    ) -> ProviderDescriptor:
        model = (row.get("model") or "").strip()
        label = (row.get("display_name") or "").strip()
        batch = _positive_int(row.get("max_questions_per_request"))
        headers = parse_headers(row.get("extra_headers"))
        structured = _flag(row.get("supports_response_format"))

        if builtin is not None and not is_custom:
            return builtin.with_overrides(
                model=model or builtin.model,
                label=label or builtin.label,
                base_url=self.endpoint_overrides.get(provider_id, builtin.base_url),
                extra_headers=headers,
                supports_structured_output=builtin.supports_structured_output and structured,
                max_batch_size=batch or builtin.max_batch_size,
            )

        try:
            family = ProviderFamily(row.get("provider_type") or CUSTOM_PROVIDER_TYPE)
        except ValueError:
            family = ProviderFamily.OPENAI_COMPAT
        return ProviderDescriptor(
            id=provider_id,
            label=label or provider_id,
            family=family,
            model=model,
            base_url=(row.get("base_url") or "").strip().rstrip("/"),
            extra_headers=headers,
            supports_structured_output=structured,
            max_batch_size=batch or DEFAULT_MAX_QUESTIONS_PER_REQUEST,
            is_custom=True,
        )

    def _resolve_credential(
        self,
        provider_id: str,
        row: dict[str, Any],
        decrypt_secrets: bool,
        is_custom: bool,
    ) -> tuple[Optional[str], Optional[str], bool]:
        """Return (api_key, key_source, credential_error)."""
        blob = row.get("encrypted_api_key")
        if blob:
            if not decrypt_secrets:
                return None, "stored", False
            try:
                if self.cipher is None:
                    raise CredentialDecryptionError(
                        "No encryption secret configured", provider_id=provider_id,
                    )
                return self.cipher.decrypt(blob, provider_id=provider_id), "stored", False
            except CredentialDecryptionError as e:
                logger.warning(
                    "provider_secret_decrypt_failed",
                    extra={"provider_id": provider_id, "error": str(e)},
                )
                return None, "stored", True

        env_key = None if is_custom else fallback_credential(provider_id, self._environ)
        if env_key:
            return (env_key if decrypt_secrets else None), "env", False
        return None, None, False

    # --- Saving ---

    def save_snapshot(self, payload: Union[SettingsPayload, Mapping[str, Any]]) -> SettingsSnapshot:
        """
        Apply an admin payload and return the resulting public snapshot.

        Raises:
            ProviderConfigurationError: Invalid payload or a custom provider
                without a base URL. Nothing is written in that case.
            ConfigurationError: A key was supplied but no encryption secret
                is configured.
        """
        if not isinstance(payload, SettingsPayload):
            try:
                payload = SettingsPayload.model_validate(dict(payload))
            except ValidationError as e:
                raise ProviderConfigurationError(
                    "Invalid provider settings payload",
                    details={"errors": e.errors(include_url=False)},
                ) from e

        self.seed_builtin_rows()

        with self._lock:
            writes = self._plan_writes(payload)
            for provider_id, fields in writes.items():
                self.rows.upsert_row(provider_id, fields)
            removed = self._reconcile_custom(payload, writes)

        logger.info(
            "provider_settings_saved",
            extra={
                "providers": len(writes),
                "keys_updated": sum(1 for f in writes.values() if "encrypted_api_key" in f),
                "custom_removed": removed,
            },
        )
        return self.load_snapshot(decrypt_secrets=False)

    def _plan_writes(self, payload: SettingsPayload) -> dict[str, dict[str, Any]]:
        purposes_payload = {
            purpose: {
                normalize_provider_id(k): v
                for k, v in (payload.purposes.get(purpose) or {}).items()
                if normalize_provider_id(k)
            }
            for purpose in PURPOSES
        }
        providers_payload = {
            normalize_provider_id(k): v
            for k, v in payload.providers.items()
            if normalize_provider_id(k)
        }

        provider_ids = list(BUILTIN_IDS) + [
            pid for pid in providers_payload if not is_builtin(pid)
        ]
        writes: dict[str, dict[str, Any]] = {}
        for provider_id in provider_ids:
            writes[provider_id] = self._row_fields(
                provider_id,
                providers_payload.get(provider_id) or ProviderPayload(),
                {p: purposes_payload[p].get(provider_id) for p in PURPOSES},
            )
        return writes

    def _row_fields(
        self,
        provider_id: str,
        config: ProviderPayload,
        purpose_values: Mapping[str, Any],
    ) -> dict[str, Any]:
        existing = self.rows.get_row(provider_id) or {}
        builtin = BUILTIN_DESCRIPTORS.get(provider_id)
        is_custom = builtin is None or config.is_custom is True

        stored = parse_purposes(
            existing.get("purpose_settings"), provider_id, is_custom,
            self.trusted_migration_provider,
        )
        purposes = {
            purpose: value if isinstance(value, bool) else stored[purpose]
            for purpose, value in purpose_values.items()
        }

        base_url = (config.base_url or existing.get("base_url") or "").strip()
        if is_custom and not base_url:
            raise ProviderConfigurationError(
                f"Custom provider '{provider_id}' has no baseUrl",
                provider_id=provider_id,
            )

        model = (config.model or "").strip() or existing.get("model") or (
            builtin.model if builtin else ""
        )
        display_name = (config.display_name or "").strip() or existing.get("display_name") or (
            builtin.label if builtin else provider_id
        )

        if isinstance(config.extra_headers, Mapping):
            extra_headers: Optional[str] = json.dumps(config.extra_headers)
        elif config.extra_headers is not None:
            extra_headers = config.extra_headers.strip() or None
        else:
            extra_headers = existing.get("extra_headers")

        fields: dict[str, Any] = {
            "is_enabled": any(purposes.values()),
            "purpose_settings": purposes,
            "model": model,
            "display_name": display_name,
            "base_url": base_url or None,
            "extra_headers": extra_headers,
            "supports_response_format": (
                config.supports_response_format
                if config.supports_response_format is not None
                else _flag(existing.get("supports_response_format"))
            ),
            "max_questions_per_request": (
                config.max_questions_per_request
                or existing.get("max_questions_per_request")
            ),
            "provider_type": (config.provider_type or "").strip() or existing.get("provider_type") or (
                CUSTOM_PROVIDER_TYPE if is_custom else BUILTIN_PROVIDER_TYPE
            ),
            "is_custom": is_custom,
            "updated_at": _now_iso(),
        }
        if config.is_available is not None:
            fields["is_available"] = config.is_available
        elif "is_available" not in existing:
            fields["is_available"] = True

        api_key = (config.api_key or "").strip()
        if api_key:
            if self.cipher is None:
                raise ConfigurationError(
                    "Cannot store a provider key without an encryption secret"
                )
            fields["encrypted_api_key"] = self.cipher.encrypt(api_key)
            fields["api_key_hint"] = key_hint(api_key)
        return fields

    def _reconcile_custom(
        self,
        payload: SettingsPayload,
        writes: Mapping[str, Any],
    ) -> list[str]:
        """Delete custom rows absent from an explicit customProviders list."""
        if payload.custom_providers is None:
            return []
        keep = {normalize_provider_id(pid) for pid in payload.custom_providers}
        keep.update(pid for pid in writes if not is_builtin(pid))
        removed: list[str] = []
        for row in self.rows.list_rows():
            provider_id = normalize_provider_id(row.get("provider_id"))
            if not provider_id or is_builtin(provider_id):
                continue
            if _flag(row.get("is_custom"), default=True) and provider_id not in keep:
                self.rows.delete_row(provider_id)
                removed.append(provider_id)
        return removed

    # --- Deleting ---

    def delete_custom_provider(self, provider_id: str) -> bool:
        """
        Remove a custom provider row.

        Raises:
            ProviderConfigurationError: For built-in providers, which can
                only be disabled.
        """
        normalized = normalize_provider_id(provider_id)
        if not normalized:
            raise ProviderConfigurationError("Provider id is empty")
        if is_builtin(normalized):
            raise ProviderConfigurationError(
                f"Built-in provider '{normalized}' cannot be deleted; disable it instead",
                provider_id=normalized,
            )
        with self._lock:
            deleted = self.rows.delete_row(normalized)
        logger.info(
            "custom_provider_deleted",
            extra={"provider_id": normalized, "deleted": deleted},
        )
        return deleted
