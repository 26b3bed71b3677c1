"""
Freshness policy for time-sensitive questions.

Questions built on trends, news or current children's programmes go
stale. Providers are asked to flag such questions and propose a
best-before date; this module normalises whatever they answer into
`time_sensitive` / `best_before_date` within the configured shelf-life
bounds.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Optional

DEFAULT_FRESHNESS_GUIDANCE = (
    "Mark questions as time-sensitive when they rely on trends, news, "
    "current children's programmes or events bound to a period of time, "
    "and give a reasonable best-before date (YYYY-MM-DD)."
)


@dataclass(frozen=True)
class FreshnessPolicy:
    enabled: bool = True
    default_shelf_life_days: int = 365
    min_shelf_life_days: int = 30
    max_shelf_life_days: int = 1825
    guidance: str = DEFAULT_FRESHNESS_GUIDANCE
    auto_time_sensitive_age_groups: tuple[str, ...] = ("youth",)


@dataclass(frozen=True)
class FreshnessFields:
    time_sensitive: bool
    best_before_at: Optional[datetime]

    @property
    def best_before_date(self) -> Optional[str]:
        return self.best_before_at.date().isoformat() if self.best_before_at else None


def parse_date_value(value: Any) -> Optional[datetime]:
    """
    Parse the many shapes a provider uses for a date.

    Accepts datetimes, dates, epoch milliseconds (int/float or numeric
    string) and ISO-8601 strings. Returns an aware UTC datetime or None.
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    text = str(value).strip()
    try:
        return datetime.fromtimestamp(float(text) / 1000, tz=timezone.utc)
    except ValueError:
        pass
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _clamp(
    best_before_at: datetime,
    policy: FreshnessPolicy,
    now: datetime,
) -> datetime:
    resolved = best_before_at
    if policy.min_shelf_life_days > 0:
        min_at = now + timedelta(days=policy.min_shelf_life_days)
        if resolved < min_at:
            resolved = min_at
    if policy.max_shelf_life_days > 0:
        max_at = now + timedelta(days=policy.max_shelf_life_days)
        if resolved > max_at:
            resolved = max_at
    return resolved


def _truthy_flag(value: Any) -> bool:
    return value is True or value == 1 or str(value).strip().lower() == "true"


def resolve_freshness(
    time_sensitive: Any = None,
    best_before: Any = None,
    age_groups: Iterable[str] = (),
    policy: Optional[FreshnessPolicy] = None,
    now: Optional[datetime] = None,
) -> FreshnessFields:
    """
    Resolve time-sensitivity and best-before date for one question.

    A best-before date implies time-sensitivity; configured age groups are
    time-sensitive automatically; a time-sensitive question without a date
    gets the default shelf life; the date is clamped into
    [now + min, now + max].
    """
    if policy is not None and not policy.enabled:
        return FreshnessFields(time_sensitive=False, best_before_at=None)

    now = now or datetime.now(timezone.utc)
    flagged = _truthy_flag(time_sensitive)
    best_before_at = parse_date_value(best_before)

    if not flagged and best_before_at is not None:
        flagged = True

    if not flagged and policy is not None and policy.auto_time_sensitive_age_groups:
        auto = {g.lower() for g in policy.auto_time_sensitive_age_groups}
        if any(str(g).lower() in auto for g in age_groups):
            flagged = True

    if flagged and best_before_at is None and policy is not None and policy.default_shelf_life_days:
        best_before_at = now + timedelta(days=policy.default_shelf_life_days)

    if best_before_at is not None and policy is not None:
        best_before_at = _clamp(best_before_at, policy, now)

    return FreshnessFields(time_sensitive=flagged, best_before_at=best_before_at)


def is_expired(best_before_at: Any, now: Optional[datetime] = None) -> bool:
    """True when the best-before moment has passed."""
    parsed = parse_date_value(best_before_at)
    if parsed is None:
        return False
    return parsed <= (now or datetime.now(timezone.utc))
