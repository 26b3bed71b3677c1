"""
Tests for freshness resolution of time-sensitive questions.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from quizcore.providers.freshness import (
    FreshnessPolicy,
    is_expired,
    parse_date_value,
    resolve_freshness,
)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


class TestParseDateValue:

    def test_iso_date(self):
        assert parse_date_value("2025-06-01") == datetime(2025, 6, 1, tzinfo=timezone.utc)

    def test_iso_with_z(self):
        parsed = parse_date_value("2025-06-01T12:00:00Z")
        assert parsed == datetime(2025, 6, 1, 12, tzinfo=timezone.utc)

    def test_epoch_millis(self):
        assert parse_date_value(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
        assert parse_date_value("86400000") == datetime(1970, 1, 2, tzinfo=timezone.utc)

    def test_date_object(self):
        assert parse_date_value(date(2025, 3, 4)) == datetime(2025, 3, 4, tzinfo=timezone.utc)

    def test_garbage_is_none(self):
        assert parse_date_value("next summer") is None
        assert parse_date_value("") is None
        assert parse_date_value(None) is None
        assert parse_date_value(True) is None


class TestResolveFreshness:

    def test_plain_question_is_not_time_sensitive(self):
        fields = resolve_freshness(policy=FreshnessPolicy(), now=NOW)
        assert fields.time_sensitive is False
        assert fields.best_before_date is None

    def test_date_implies_time_sensitive(self):
        fields = resolve_freshness(best_before="2025-12-31", policy=FreshnessPolicy(), now=NOW)
        assert fields.time_sensitive is True
        assert fields.best_before_date == "2025-12-31"

    def test_flag_without_date_gets_default_shelf_life(self):
        fields = resolve_freshness(time_sensitive="true", policy=FreshnessPolicy(), now=NOW)
        assert fields.best_before_at == NOW + timedelta(days=365)

    def test_youth_is_time_sensitive_automatically(self):
        fields = resolve_freshness(age_groups=["youth"], policy=FreshnessPolicy(), now=NOW)
        assert fields.time_sensitive is True

    def test_date_clamped_to_minimum(self):
        fields = resolve_freshness(best_before="2025-01-02", policy=FreshnessPolicy(), now=NOW)
        assert fields.best_before_at == NOW + timedelta(days=30)

    def test_date_clamped_to_maximum(self):
        fields = resolve_freshness(best_before="2099-01-01", policy=FreshnessPolicy(), now=NOW)
        assert fields.best_before_at == NOW + timedelta(days=1825)

    def test_disabled_policy_clears_everything(self):
        fields = resolve_freshness(
            time_sensitive=True,
            best_before="2025-06-01",
            policy=FreshnessPolicy(enabled=False),
            now=NOW,
        )
        assert fields.time_sensitive is False
        assert fields.best_before_at is None


class TestIsExpired:

    def test_past_date_expired(self):
        assert is_expired("2024-12-31", now=NOW) is True

    def test_future_date_not_expired(self):
        assert is_expired("2025-01-02", now=NOW) is False

    def test_missing_date_never_expires(self):
        assert is_expired(None, now=NOW) is False
