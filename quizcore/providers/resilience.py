"""
Per-call resilience: deadlines, capability downgrade and call records.

Every outbound provider call goes through `run_tracked`, which owns one
CallRecord walking idle → in_flight → a terminal state. A timeout cancels
the in-flight request and surfaces as ProviderTimeoutError, never as an
HTTP error.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from quizcore.exceptions import (
    ProviderCallError,
    ProviderParseError,
    ProviderTimeoutError,
    UnsupportedCapabilityError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CallState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    HTTP_ERROR = "http_error"
    PARSE_ERROR = "parse_error"


TERMINAL_STATES = frozenset({
    CallState.SUCCESS,
    CallState.TIMED_OUT,
    CallState.HTTP_ERROR,
    CallState.PARSE_ERROR,
})


@dataclass
class CallRecord:
    """Lifecycle of one logical provider call (retries included)."""

    provider_id: str
    purpose: str
    state: CallState = CallState.IDLE
    attempts: int = 0
    error_kind: Optional[str] = None
    duration_ms: float = 0.0
    _started: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def start(self) -> None:
        if self.state is not CallState.IDLE:
            raise RuntimeError(f"Call already started (state={self.state.value})")
        self.state = CallState.IN_FLIGHT
        self._started = time.monotonic()

    def finish(self, state: CallState, error_kind: Optional[str] = None) -> None:
        if self.state is not CallState.IN_FLIGHT:
            raise RuntimeError(f"Call not in flight (state={self.state.value})")
        if state not in TERMINAL_STATES:
            raise ValueError(f"{state.value} is not a terminal state")
        self.state = state
        self.error_kind = error_kind
        if self._started is not None:
            self.duration_ms = (time.monotonic() - self._started) * 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "provider": self.provider_id,
            "purpose": self.purpose,
            "state": self.state.value,
            "attempts": self.attempts,
            "error_kind": self.error_kind,
            "duration_ms": round(self.duration_ms, 1),
        }


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    *,
    provider_id: str,
    purpose: Optional[str] = None,
) -> T:
    """
    Await with a deadline. On expiry the inner request is cancelled.

    Raises:
        ProviderTimeoutError: If `timeout` seconds elapse first.
    """
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError as e:
        raise ProviderTimeoutError(
            f"{provider_id} did not answer within {timeout:g}s",
            provider_id=provider_id,
            purpose=purpose,
            timeout_seconds=timeout,
        ) from e


async def call_with_capability_fallback(
    send: Callable[[bool], Awaitable[T]],
    *,
    structured: bool,
    provider_id: str,
    purpose: Optional[str] = None,
    record: Optional[CallRecord] = None,
) -> T:
    """
    Call `send(structured)`, downgrading once if structured output is refused.

    Only an UnsupportedCapabilityError on a structured attempt triggers the
    single retry without the parameter; any failure of the retry surfaces.
    """
    if record is not None:
        record.attempts += 1
    try:
        return await send(structured)
    except UnsupportedCapabilityError:
        if not structured:
            raise
        logger.warning(
            "structured_output_unsupported_retrying",
            extra={"provider_id": provider_id, "purpose": purpose},
        )

    if record is not None:
        record.attempts += 1
    return await send(False)


async def run_tracked(
    operation: Callable[[], Awaitable[T]],
    *,
    provider_id: str,
    purpose: str,
    timeout: Optional[float],
    record: Optional[CallRecord] = None,
) -> T:
    """Run one provider operation under a deadline, recording its outcome."""
    record = record or CallRecord(provider_id=provider_id, purpose=purpose)
    record.start()
    try:
        result = await with_timeout(
            operation(), timeout, provider_id=provider_id, purpose=purpose,
        )
    except ProviderTimeoutError as e:
        record.finish(CallState.TIMED_OUT, e.kind)
        _log_failure(record, e)
        raise
    except ProviderParseError as e:
        record.finish(CallState.PARSE_ERROR, e.kind)
        _log_failure(record, e)
        raise
    except ProviderCallError as e:
        record.finish(CallState.HTTP_ERROR, e.kind)
        _log_failure(record, e)
        raise

    record.finish(CallState.SUCCESS)
    logger.info(
        "provider_call_succeeded",
        extra={
            "provider_id": provider_id,
            "purpose": purpose,
            "duration_ms": round(record.duration_ms, 1),
            "attempt": record.attempts,
        },
    )
    return result


def _log_failure(record: CallRecord, error: ProviderCallError) -> None:
    logger.warning(
        "provider_call_failed",
        extra={
            "provider_id": record.provider_id,
            "purpose": record.purpose,
            "status": record.state.value,
            "error_kind": record.error_kind,
            "duration_ms": round(record.duration_ms, 1),
            "error": str(error)[:200],
        },
    )
