"""
Vendor error classification.

Maps (vendor, HTTP status, body text) to an ErrorKind through an ordered
rules table. The first matching rule wins and vendor-specific rules sit
before the generic ones. Bump RULES_VERSION whenever a rule changes so
logged classifications can be traced back to the table that produced
them.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional


RULES_VERSION = "2024.11.1"


class ErrorKind(str, Enum):
    INSUFFICIENT_CREDITS = "insufficient_credits"
    RATE_LIMIT = "rate_limit"
    AUTHENTICATION = "authentication"
    UNKNOWN = "unknown"


class ProviderStatus(str, Enum):
    """Caller-facing provider state."""

    ACTIVE = "active"
    NO_CREDITS = "no_credits"
    RATE_LIMITED = "rate_limited"
    AUTH_ERROR = "auth_error"
    ERROR = "error"


STATUS_FOR_KIND: dict[ErrorKind, ProviderStatus] = {
    ErrorKind.INSUFFICIENT_CREDITS: ProviderStatus.NO_CREDITS,
    ErrorKind.RATE_LIMIT: ProviderStatus.RATE_LIMITED,
    ErrorKind.AUTHENTICATION: ProviderStatus.AUTH_ERROR,
    ErrorKind.UNKNOWN: ProviderStatus.ERROR,
}

# Liveness error codes reported on LivenessResult.error.
LIVENESS_ERROR_FOR_KIND: dict[ErrorKind, str] = {
    ErrorKind.INSUFFICIENT_CREDITS: "insufficient_credits",
    ErrorKind.RATE_LIMIT: "rate_limit",
    ErrorKind.AUTHENTICATION: "auth_error",
    ErrorKind.UNKNOWN: "api_error",
}


@dataclass(frozen=True)
class ErrorRule:
    kind: ErrorKind
    vendor: Optional[str] = None       # None matches any vendor family
    status: Optional[int] = None       # None matches any status
    pattern: Optional[str] = None      # case-insensitive regex on the body

    def matches(self, vendor: str, status: Optional[int], body: str) -> bool:
        if self.vendor is not None and self.vendor != vendor:
            return False
        if self.status is not None and self.status != status:
            return False
        if self.pattern is not None and not re.search(self.pattern, body, re.IGNORECASE):
            return False
        return True


ERROR_RULES: tuple[ErrorRule, ...] = (
    # Vendor-specific
    ErrorRule(ErrorKind.INSUFFICIENT_CREDITS, vendor="anthropic", status=400,
              pattern=r"credit balance is too low"),
    ErrorRule(ErrorKind.INSUFFICIENT_CREDITS, vendor="openai", status=429,
              pattern=r"insufficient_quota|exceeded your current quota"),
    ErrorRule(ErrorKind.INSUFFICIENT_CREDITS, vendor="mistral", pattern=r"quota|insufficient"),
    ErrorRule(ErrorKind.RATE_LIMIT, vendor="mistral", pattern=r"rate_limit"),
    # Generic
    ErrorRule(ErrorKind.INSUFFICIENT_CREDITS, status=402),
    ErrorRule(ErrorKind.INSUFFICIENT_CREDITS, pattern=r"credit|balance"),
    ErrorRule(ErrorKind.RATE_LIMIT, status=429),
    ErrorRule(ErrorKind.RATE_LIMIT, pattern=r"rate[ _]limit"),
    ErrorRule(ErrorKind.AUTHENTICATION, status=401),
    ErrorRule(ErrorKind.AUTHENTICATION, status=403),
    ErrorRule(ErrorKind.AUTHENTICATION, pattern=r"authentication|api key|invalid_api_key"),
)


def classify_error(
    vendor: str,
    status: Optional[int],
    body: str = "",
    rules: tuple[ErrorRule, ...] = ERROR_RULES,
) -> ErrorKind:
    """Classify a vendor failure. Unmatched failures are UNKNOWN."""
    body = body or ""
    for rule in rules:
        if rule.matches(vendor, status, body):
            return rule.kind
    return ErrorKind.UNKNOWN


def status_for(kind: ErrorKind) -> ProviderStatus:
    return STATUS_FOR_KIND[kind]


# ---------------------------------------------------------------------------
# Unsupported structured output
# ---------------------------------------------------------------------------

STRUCTURED_OUTPUT_PARAMS = ("response_format", "responsemimetype", "response_mime_type")

UNSUPPORTED_MARKERS = (
    "not supported",
    "unsupported",
    "unknown parameter",
    "unknown name",
    "unrecognized",
    "extra inputs are not permitted",
    "invalid parameter",
)


def is_unsupported_structured_output(status: Optional[int], body: str) -> bool:
    """
    True when a backend rejected the structured-output parameter itself.

    Requires a 400/422 status, a body that names the parameter, and an
    "unsupported" style marker.
    """
    if status not in (400, 422):
        return False
    lowered = (body or "").lower()
    return (
        any(param in lowered for param in STRUCTURED_OUTPUT_PARAMS)
        and any(marker in lowered for marker in UNSUPPORTED_MARKERS)
    )
