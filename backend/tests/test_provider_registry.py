"""Tests for provider selection, quota accounting and provider persistence."""

from datetime import timedelta

import pytest

from alert_engine.errors import InvalidRecipientError, NoEligibleProviderError, QuotaExceededError
from alert_engine.providers.credentials import decrypt_value
from alert_engine.providers.service import (
    ProviderRegistry,
    create_provider,
    get_provider_by_id,
    list_providers,
    update_provider,
    usage,
)

from conftest import NOW, FrozenClock


def _provider(db, name, priority=100, quota=100, used=0, active=True, started=NOW):
    provider = create_provider(
        db, name, "+15550000000", "user", "key", daily_quota=quota, priority=priority, is_active=active
    )
    provider.used_today = used
    provider.quota_window_started_at = started
    db.commit()
    return provider


class TestSelectProvider:
    def test_priority_order(self, db_session):
        _provider(db_session, "Backup", priority=20)
        first = _provider(db_session, "Main", priority=10)
        assert ProviderRegistry(db_session, FrozenClock()).select_provider().id == first.id

    def test_preferred_when_eligible(self, db_session):
        _provider(db_session, "Main", priority=10)
        preferred = _provider(db_session, "Preferred", priority=50)
        registry = ProviderRegistry(db_session, FrozenClock())
        assert registry.select_provider(preferred.id).id == preferred.id
        assert registry.select_provider(str(preferred.id)).id == preferred.id

    def test_preferred_at_quota_falls_back(self, db_session):
        main = _provider(db_session, "Main", priority=10)
        preferred = _provider(db_session, "Preferred", priority=50, quota=5, used=5)
        assert ProviderRegistry(db_session, FrozenClock()).select_provider(preferred.id).id == main.id

    def test_inactive_skipped(self, db_session):
        _provider(db_session, "Off", priority=1, active=False)
        on = _provider(db_session, "On", priority=2)
        assert ProviderRegistry(db_session, FrozenClock()).select_provider().id == on.id

    def test_exclude(self, db_session):
        main = _provider(db_session, "Main", priority=10)
        backup = _provider(db_session, "Backup", priority=20)
        assert ProviderRegistry(db_session, FrozenClock()).select_provider(exclude={main.id}).id == backup.id

    def test_none_eligible(self, db_session):
        _provider(db_session, "Full", quota=3, used=3)
        _provider(db_session, "Off", active=False)
        with pytest.raises(NoEligibleProviderError):
            ProviderRegistry(db_session, FrozenClock()).select_provider()

    def test_no_providers(self, db_session):
        with pytest.raises(NoEligibleProviderError):
            ProviderRegistry(db_session, FrozenClock()).select_provider()


class TestQuota:
    def test_last_unit_then_fallback(self, db_session):
        main = _provider(db_session, "Main", priority=10, quota=5, used=4)
        backup = _provider(db_session, "Backup", priority=20)
        registry = ProviderRegistry(db_session, FrozenClock())

        chosen = registry.select_provider()
        assert chosen.id == main.id
        registry.reserve(chosen)
        assert chosen.used_today == 5

        assert registry.select_provider().id == backup.id

    def test_last_unit_then_none(self, db_session):
        main = _provider(db_session, "Main", quota=1, used=0)
        registry = ProviderRegistry(db_session, FrozenClock())
        registry.reserve(registry.select_provider())
        assert main.used_today == 1
        with pytest.raises(NoEligibleProviderError):
            registry.select_provider()

    def test_reserve_refuses_past_quota(self, db_session):
        full = _provider(db_session, "Full", quota=2, used=2)
        with pytest.raises(QuotaExceededError):
            ProviderRegistry(db_session, FrozenClock()).reserve(full)
        db_session.refresh(full)
        assert full.used_today == 2

    def test_reserve_sees_concurrent_usage(self, db_session, session_factory):
        provider = _provider(db_session, "Main", quota=1, used=0)
        other = session_factory()
        try:
            ProviderRegistry(other, FrozenClock()).reserve(other.get(type(provider), provider.id))
            other.commit()
        finally:
            other.close()
        with pytest.raises(QuotaExceededError):
            ProviderRegistry(db_session, FrozenClock()).reserve(provider)

    def test_rolling_window_resets(self, db_session):
        provider = _provider(db_session, "Main", quota=2, used=2, started=NOW - timedelta(hours=24))
        registry = ProviderRegistry(db_session, FrozenClock())
        assert registry.select_provider().id == provider.id
        assert provider.used_today == 0
        assert provider.quota_window_started_at == NOW

    def test_window_not_yet_elapsed(self, db_session):
        _provider(db_session, "Main", quota=2, used=2, started=NOW - timedelta(hours=23, minutes=59))
        with pytest.raises(NoEligibleProviderError):
            ProviderRegistry(db_session, FrozenClock()).select_provider()


class TestUsage:
    def test_percentage_and_reset(self, db_session):
        provider = _provider(db_session, "Main", quota=200, used=50)
        data = usage(provider, NOW)
        assert data["used"] == 50
        assert data["limit"] == 200
        assert data["percentage"] == 25.0
        assert data["resets_at"] == (NOW + timedelta(hours=24)).isoformat()

    def test_expired_window_reports_zero(self, db_session):
        provider = _provider(db_session, "Main", used=80, started=NOW - timedelta(days=2))
        assert usage(provider, NOW)["used"] == 0


class TestProviderPersistence:
    def test_credentials_encrypted(self, db_session):
        provider = create_provider(db_session, "Main", "ACME", "user", "super-secret")
        assert provider.credentials != "super-secret"
        assert decrypt_value(provider.credentials) == "super-secret"

    def test_test_numbers_normalized(self, db_session):
        provider = create_provider(
            db_session, "Sandbox", "ACME", "user", "key", is_test_mode=True, test_numbers=["(202) 555-0123"]
        )
        assert provider.test_numbers == ["+12025550123"]

    def test_test_numbers_invalid(self, db_session):
        with pytest.raises(InvalidRecipientError):
            create_provider(db_session, "Sandbox", "ACME", "user", "key", test_numbers=["12"])

    def test_update_reencrypts_key_and_skips_none(self, db_session):
        provider = create_provider(db_session, "Main", "ACME", "user", "old")
        update_provider(db_session, provider, api_key="new", name=None, daily_quota=10)
        assert decrypt_value(provider.credentials) == "new"
        assert provider.name == "Main"
        assert provider.daily_quota == 10

    def test_get_and_list(self, db_session):
        a = _provider(db_session, "B-provider", priority=5)
        _provider(db_session, "A-provider", priority=5, active=False)
        assert get_provider_by_id(db_session, str(a.id)).name == "B-provider"
        assert get_provider_by_id(db_session, "junk") is None
        assert [p.name for p in list_providers(db_session)] == ["A-provider", "B-provider"]
        assert [p.name for p in list_providers(db_session, active_only=True)] == ["B-provider"]
