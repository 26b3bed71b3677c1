"""
Custom exception hierarchy for the quiz provider orchestration core.

Structured error handling with clear categories:
- Configuration errors (bad settings, custom provider without endpoint)
- Credential errors (missing or undecryptable provider secrets)
- Provider call errors (timeout, HTTP failure, unparseable output)
- Selection errors (no provider configured / available for a purpose)

Usage:
    from quizcore.exceptions import ProviderCallError, NoProvidersError

    try:
        items = await router.generate(request)
    except NoProvidersError as e:
        return {"error": "no_providers", "purpose": e.purpose}
    except ProviderCallError as e:
        return e.to_dict()
"""

from __future__ import annotations

from typing import Any, Optional


class QuizCoreError(Exception):
    """
    Base exception for all orchestration errors.

    All custom exceptions inherit from this, so you can catch
    `QuizCoreError` to handle any platform-specific error.
    """

    def __init__(self, message: str, *, details: Optional[dict] = None):
        super().__init__(message)
        self.details = details or {}


# ── Configuration Errors ──────────────────────────────────────────


class ConfigurationError(QuizCoreError):
    """
    Raised when orchestrator settings (YAML or environment) are invalid.
    """

    def __init__(
        self,
        message: str,
        *,
        config_path: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.config_path = config_path


class ProviderConfigurationError(QuizCoreError):
    """
    Raised when a provider row cannot be saved or removed.

    Examples:
    - Custom provider declared without a base URL
    - Attempt to delete a built-in provider
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider_id = provider_id


class UnknownProviderError(ProviderConfigurationError):
    """Raised when an adapter is requested for an id the snapshot doesn't know."""


# ── Credential Errors ─────────────────────────────────────────────


class CredentialDecryptionError(QuizCoreError):
    """
    Raised when a stored credential blob cannot be decrypted.

    Usually means the deployment secret was rotated or the blob is corrupt.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider_id = provider_id


class MissingCredentialError(QuizCoreError):
    """
    Raised at adapter construction when a provider has no usable secret.

    Only that provider drops out of the eligible set.
    """

    def __init__(
        self,
        message: str,
        *,
        provider_id: str,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider_id = provider_id
        self.kind = "missing_credential"


# ── Provider Call Errors ──────────────────────────────────────────


class ProviderCallError(QuizCoreError):
    """
    Raised when an outbound call to a provider fails.

    Carries the provider id, the purpose of the call and a classified
    kind so callers can report failures without vendor stack traces.
    """

    default_kind = "error"

    def __init__(
        self,
        message: str,
        *,
        provider_id: str,
        purpose: Optional[str] = None,
        kind: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.provider_id = provider_id
        self.purpose = purpose
        self.kind = kind or self.default_kind

    def to_dict(self) -> dict[str, Any]:
        """Caller-facing error shape."""
        return {
            "provider": self.provider_id,
            "purpose": self.purpose,
            "kind": self.kind,
            "message": str(self),
        }


class ProviderTimeoutError(ProviderCallError):
    """The per-call deadline expired and the request was cancelled."""

    default_kind = "timeout"

    def __init__(
        self,
        message: str,
        *,
        provider_id: str,
        purpose: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            provider_id=provider_id,
            purpose=purpose,
            details=details,
        )
        self.timeout_seconds = timeout_seconds


class ProviderHTTPError(ProviderCallError):
    """
    The backend answered with a non-2xx status or the connection failed.

    `kind` holds the classified taxonomy entry (insufficient_credits,
    rate_limit, authentication, unknown). `status_code` is None for
    transport-level failures.
    """

    default_kind = "http_error"

    def __init__(
        self,
        message: str,
        *,
        provider_id: str,
        purpose: Optional[str] = None,
        status_code: Optional[int] = None,
        body: str = "",
        kind: Optional[str] = None,
        unsupported_structured_output: bool = False,
        details: Optional[dict] = None,
    ):
        super().__init__(
            message,
            provider_id=provider_id,
            purpose=purpose,
            kind=kind,
            details=details,
        )
        self.status_code = status_code
        self.body = body
        self.unsupported_structured_output = unsupported_structured_output

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class ProviderParseError(ProviderCallError):
    """The backend answered 2xx but the payload was not the expected JSON."""

    default_kind = "parse_error"


class UnsupportedCapabilityError(ProviderHTTPError):
    """
    The backend rejected a capability parameter (structured JSON output).

    Handled inside the resilience wrapper by a single downgrade retry;
    never surfaced to callers on its own.
    """

    default_kind = "unsupported_capability"

    def __init__(self, message: str, **kwargs: Any):
        kwargs.setdefault("unsupported_structured_output", True)
        super().__init__(message, **kwargs)


# ── Selection Errors ──────────────────────────────────────────────


class NoProvidersError(QuizCoreError):
    """Base for purpose-level selection failures."""

    def __init__(
        self,
        message: str,
        *,
        purpose: str,
        details: Optional[dict] = None,
    ):
        super().__init__(message, details=details)
        self.purpose = purpose


class NoProvidersConfiguredError(NoProvidersError):
    """No provider is enabled for the purpose, credentialed or not."""


class NoProvidersAvailableError(NoProvidersError):
    """
    Providers are enabled for the purpose but none could be used: none
    has a usable credential, every adapter failed to construct, or every
    call failed.
    """

    def __init__(
        self,
        message: str,
        *,
        purpose: str,
        failures: Optional[list[dict[str, Any]]] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message, purpose=purpose, details=details)
        self.failures = failures or []
