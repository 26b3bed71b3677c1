"""
Provider catalogue — purposes, vendor families and built-in descriptors.

Defines which providers exist out of the box, what protocol family each
one speaks, and how per-purpose enablement defaults are derived. Custom
providers declared by an operator reuse the generic OpenAI-compatible
family with their own endpoint and headers.

Usage:
    from quizcore.providers.catalog import BUILTIN_DESCRIPTORS, Purpose

    BUILTIN_DESCRIPTORS["gemini"].model
    # → "gemini-2.0-flash"

    default_purposes("anthropic", is_custom=False)
    # → {"generation": True, "validation": True, "illustration": True, "migration": True}
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Mapping, Optional


# ---------------------------------------------------------------------------
# Purposes & Families
# ---------------------------------------------------------------------------

class Purpose(str, Enum):
    """Independent axes of provider enablement."""

    GENERATION = "generation"      # Writing new questions
    VALIDATION = "validation"      # Cross-checking another provider's questions
    ILLUSTRATION = "illustration"  # Emoji / illustration for a question
    MIGRATION = "migration"        # Rewriting persisted content


PURPOSES: tuple[str, ...] = tuple(p.value for p in Purpose)


class ProviderFamily(str, Enum):
    """Wire protocol a provider speaks."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GEMINI = "gemini"
    MISTRAL = "mistral"
    OPENAI_COMPAT = "openai_compat"  # Generic HTTP chat-completions endpoint


DEFAULT_MAX_QUESTIONS_PER_REQUEST = 3
DEFAULT_TRUSTED_MIGRATION_PROVIDER = "anthropic"


# ---------------------------------------------------------------------------
# Provider Descriptor
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProviderDescriptor:
    """Static identity and capabilities of one provider."""

    id: str                     # unique lowercase id, e.g. "openai"
    label: str                  # display name, e.g. "OpenAI"
    family: ProviderFamily
    model: str
    base_url: str
    extra_headers: Mapping[str, str] = field(default_factory=dict)
    supports_structured_output: bool = True
    max_batch_size: int = DEFAULT_MAX_QUESTIONS_PER_REQUEST
    is_custom: bool = False

    @property
    def is_generic(self) -> bool:
        return self.family == ProviderFamily.OPENAI_COMPAT

    @property
    def display_name(self) -> str:
        return f"{self.id}/{self.model}"

    def with_overrides(self, **changes: Any) -> "ProviderDescriptor":
        return replace(self, **changes)


# ---------------------------------------------------------------------------
# Built-in Providers
# ---------------------------------------------------------------------------

OPENAI = ProviderDescriptor(
    id="openai",
    label="OpenAI",
    family=ProviderFamily.OPENAI,
    model="gpt-4o-mini",
    base_url="https://api.openai.com/v1",
)

GEMINI = ProviderDescriptor(
    id="gemini",
    label="Gemini",
    family=ProviderFamily.GEMINI,
    model="gemini-2.0-flash",
    base_url="https://generativelanguage.googleapis.com/v1beta",
)

ANTHROPIC = ProviderDescriptor(
    id="anthropic",
    label="Claude",
    family=ProviderFamily.ANTHROPIC,
    model="claude-3-5-sonnet-20241022",
    base_url="https://api.anthropic.com/v1",
    supports_structured_output=False,
)

MISTRAL = ProviderDescriptor(
    id="mistral",
    label="Mistral",
    family=ProviderFamily.MISTRAL,
    model="mistral-small-latest",
    base_url="https://api.mistral.ai/v1",
)

GROQ = ProviderDescriptor(
    id="groq",
    label="Groq",
    family=ProviderFamily.OPENAI_COMPAT,
    model="llama-3.1-8b-instant",
    base_url="https://api.groq.com/openai/v1",
)

OPENROUTER = ProviderDescriptor(
    id="openrouter",
    label="OpenRouter",
    family=ProviderFamily.OPENAI_COMPAT,
    model="openai/gpt-4o-mini",
    base_url="https://openrouter.ai/api/v1",
)

TOGETHER = ProviderDescriptor(
    id="together",
    label="Together AI",
    family=ProviderFamily.OPENAI_COMPAT,
    model="meta-llama/Meta-Llama-3.1-8B-Instruct-Turbo",
    base_url="https://api.together.xyz/v1",
)

FIREWORKS = ProviderDescriptor(
    id="fireworks",
    label="Fireworks AI",
    family=ProviderFamily.OPENAI_COMPAT,
    model="accounts/fireworks/models/llama-v3p1-8b-instruct",
    base_url="https://api.fireworks.ai/inference/v1",
)

# Order is the catalogue order used for deterministic fallbacks.
BUILTIN_DESCRIPTORS: dict[str, ProviderDescriptor] = {
    d.id: d
    for d in (OPENAI, GEMINI, ANTHROPIC, MISTRAL, GROQ, OPENROUTER, TOGETHER, FIREWORKS)
}

BUILTIN_IDS: tuple[str, ...] = tuple(BUILTIN_DESCRIPTORS)

# Process-level fallback credentials, built-ins only.
FALLBACK_ENV_VARS: dict[str, str] = {
    "openai": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "groq": "GROQ_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "together": "TOGETHER_API_KEY",
    "fireworks": "FIREWORKS_API_KEY",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def normalize_provider_id(value: Any) -> Optional[str]:
    """Trim and lowercase a provider id; None for blank input."""
    if value is None:
        return None
    normalized = str(value).strip().lower()
    return normalized or None


def is_builtin(provider_id: str) -> bool:
    return provider_id in BUILTIN_DESCRIPTORS


def default_purposes(
    provider_id: str,
    is_custom: bool = False,
    trusted_migration_provider: str = DEFAULT_TRUSTED_MIGRATION_PROVIDER,
) -> dict[str, bool]:
    """
    Default per-purpose enablement for a provider.

    Generation and validation are on for everyone, illustration is off for
    custom providers, and migration is on only for the trusted provider.
    """
    return {
        Purpose.GENERATION.value: True,
        Purpose.VALIDATION.value: True,
        Purpose.ILLUSTRATION.value: not is_custom,
        Purpose.MIGRATION.value: (
            not is_custom and provider_id == trusted_migration_provider
        ),
    }


def fallback_credential(
    provider_id: str,
    environ: Optional[Mapping[str, str]] = None,
) -> Optional[str]:
    """Look up the process-level credential for a built-in provider."""
    env_var = FALLBACK_ENV_VARS.get(provider_id)
    if env_var is None:
        return None
    env = os.environ if environ is None else environ
    value = (env.get(env_var) or "").strip()
    return value or None


def list_catalogue() -> list[dict[str, Any]]:
    """Summary of the built-in providers."""
    return [
        {
            "id": d.id,
            "label": d.label,
            "family": d.family.value,
            "model": d.model,
            "structured_output": d.supports_structured_output,
            "env_var": FALLBACK_ENV_VARS.get(d.id),
        }
        for d in BUILTIN_DESCRIPTORS.values()
    ]
