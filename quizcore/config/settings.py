"""
Pydantic settings schema for the orchestration core.

One OrchestratorSettings instance describes a deployment: how long each
purpose may wait on a backend, which provider is trusted for migration,
where provider rows live, and which environment variable carries the
credential encryption secret.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class RowStoreKind(str, Enum):
    MEMORY = "memory"
    SUPABASE = "supabase"


class TimeoutConfig(BaseModel):
    """Per-purpose call deadlines, in seconds. None disables the deadline."""
    generation: Optional[float] = Field(90.0, gt=0)
    validation: Optional[float] = Field(60.0, gt=0)
    illustration: Optional[float] = Field(45.0, gt=0)
    migration: Optional[float] = Field(60.0, gt=0)
    liveness: Optional[float] = Field(15.0, gt=0)

    def for_purpose(self, purpose: str) -> Optional[float]:
        return getattr(self, str(purpose), None)


class OrchestratorSettings(BaseModel):
    """Deployment-level configuration."""
    environment: str = "development"
    encryption_key_env: str = Field(
        "PROVIDER_SETTINGS_ENCRYPTION_KEY",
        description="Env var holding the deployment secret for credential encryption",
    )
    trusted_migration_provider: str = Field(
        "anthropic",
        description="Provider enabled for migration by default",
    )
    row_store: RowStoreKind = RowStoreKind.MEMORY
    supabase_table: str = "provider_settings"
    timeouts: TimeoutConfig = Field(default_factory=TimeoutConfig)
    generation_temperature: float = Field(0.7, ge=0.0, le=2.0)
    validation_temperature: float = Field(0.3, ge=0.0, le=2.0)
    endpoint_overrides: dict[str, str] = Field(
        default_factory=dict,
        description="Base URL overrides for built-in providers (e.g. a proxy)",
    )

    @field_validator("trusted_migration_provider")
    @classmethod
    def normalize_provider_id(cls, v: str) -> str:
        value = v.strip().lower()
        if not value:
            raise ValueError("trusted_migration_provider must not be empty")
        return value

    @field_validator("endpoint_overrides")
    @classmethod
    def normalize_override_keys(cls, v: dict[str, str]) -> dict[str, str]:
        return {
            key.strip().lower(): url.strip().rstrip("/")
            for key, url in v.items()
            if key and url and url.strip()
        }

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"
