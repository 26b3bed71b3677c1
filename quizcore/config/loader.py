"""
Configuration loader for the orchestration core.

Reads an optional YAML file, applies QUIZCORE_* environment overrides,
validates the result against OrchestratorSettings and caches it.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml
from pydantic import ValidationError

from quizcore.config.settings import OrchestratorSettings
from quizcore.exceptions import ConfigurationError

CONFIG_PATH_ENV = "QUIZCORE_CONFIG"

# Env var -> dotted settings path
ENV_OVERRIDES: dict[str, str] = {
    "QUIZCORE_ENV": "environment",
    "QUIZCORE_ENCRYPTION_KEY_ENV": "encryption_key_env",
    "QUIZCORE_TRUSTED_MIGRATION_PROVIDER": "trusted_migration_provider",
    "QUIZCORE_ROW_STORE": "row_store",
    "QUIZCORE_SUPABASE_TABLE": "supabase_table",
    "QUIZCORE_GENERATION_TIMEOUT": "timeouts.generation",
    "QUIZCORE_VALIDATION_TIMEOUT": "timeouts.validation",
    "QUIZCORE_LIVENESS_TIMEOUT": "timeouts.liveness",
}

_loaded: Optional[OrchestratorSettings] = None


def _apply_override(raw: dict[str, Any], dotted: str, value: str) -> None:
    parts = dotted.split(".")
    target = raw
    for part in parts[:-1]:
        existing = target.get(part)
        if not isinstance(existing, dict):
            existing = {}
            target[part] = existing
        target = existing
    target[parts[-1]] = value


def load_settings(
    config_path: Optional[str | Path] = None,
    environ: Optional[Mapping[str, str]] = None,
    *,
    use_cache: bool = True,
) -> OrchestratorSettings:
    """
    Load and validate orchestrator settings.

    Args:
        config_path: Optional YAML file. Defaults to $QUIZCORE_CONFIG;
                     when neither is set only env overrides and defaults apply.
        environ: Environment mapping (defaults to os.environ).
        use_cache: Return the previously loaded settings if present.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    global _loaded
    if use_cache and _loaded is not None and config_path is None and environ is None:
        return _loaded

    env = os.environ if environ is None else environ
    path_value = config_path or env.get(CONFIG_PATH_ENV)

    raw: dict[str, Any] = {}
    if path_value:
        path = Path(path_value)
        if not path.exists():
            raise ConfigurationError(
                f"Config not found: {path}", config_path=str(path)
            )
        with open(path, "r") as f:
            try:
                loaded = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(
                    f"Config is not valid YAML: {path}", config_path=str(path)
                ) from e
        if loaded is not None and not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Config root must be a mapping: {path}", config_path=str(path)
            )
        raw = loaded or {}

    for env_var, dotted in ENV_OVERRIDES.items():
        value = env.get(env_var)
        if value is not None and value.strip():
            _apply_override(raw, dotted, value.strip())

    try:
        settings = OrchestratorSettings(**raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid orchestrator settings:\n{e}",
            config_path=str(path_value) if path_value else None,
        ) from e

    if config_path is None and environ is None:
        _loaded = settings
    return settings


def clear_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    global _loaded
    _loaded = None
