"""Provider registry: account CRUD, selection and quota accounting.

Quota is a rolling 24h window per account. ``reserve`` bumps ``used_today``
with a conditional UPDATE before the network call, so two sessions can never
push an account past its quota, and a reservation is never given back once a
send has been attempted.
"""

import logging
from collections.abc import Callable, Collection
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy.orm import Session

from ..database.base import to_uuid
from ..errors import NoEligibleProviderError, QuotaExceededError
from ..phone import normalize_number
from ..timeutils import ensure_utc, utcnow
from .credentials import encrypt_value
from .models import ProviderAccount

logger = logging.getLogger(__name__)

QUOTA_WINDOW = timedelta(hours=24)


def _check_quota_reset(provider: ProviderAccount, now: datetime) -> None:
    """Start a new quota window once 24h have passed since the current one began."""
    started = ensure_utc(provider.quota_window_started_at)
    if started is None or now - started >= QUOTA_WINDOW:
        provider.used_today = 0
        provider.quota_window_started_at = now


def has_quota(provider: ProviderAccount) -> bool:
    return (provider.used_today or 0) < (provider.daily_quota or 0)


class ProviderRegistry:
    """Selects provider accounts and reserves quota on them."""

    def __init__(self, db: Session, clock: Callable[[], datetime] = utcnow) -> None:
        self.db = db
        self._clock = clock

    def _eligible(self, provider: ProviderAccount | None, exclude: Collection[UUID]) -> bool:
        if provider is None or not provider.is_active or provider.id in exclude:
            return False
        _check_quota_reset(provider, self._clock())
        return has_quota(provider)

    def select_provider(
        self,
        preferred_id: str | UUID | None = None,
        exclude: Collection[UUID] = (),
    ) -> ProviderAccount:
        """Preferred account if usable, else the first active account by priority with quota left."""
        preferred_uid = to_uuid(preferred_id)
        if preferred_uid is not None:
            preferred = self.db.get(ProviderAccount, preferred_uid)
            if self._eligible(preferred, exclude):
                return preferred
            logger.info("Preferred provider %s not usable, falling back to priority order", preferred_uid)

        candidates = (
            self.db.query(ProviderAccount)
            .filter(ProviderAccount.is_active == True)  # noqa: E712
            .order_by(ProviderAccount.priority.asc(), ProviderAccount.name.asc())
            .all()
        )
        for provider in candidates:
            if self._eligible(provider, exclude):
                return provider

        self.db.flush()
        raise NoEligibleProviderError("No active SMS provider with remaining daily quota")

    def require_provider(self, provider_id: str | UUID) -> ProviderAccount:
        """Exactly this account, with no fallback. Used for test and ad-hoc sends."""
        provider = self.db.get(ProviderAccount, to_uuid(provider_id)) if to_uuid(provider_id) else None
        if not self._eligible(provider, ()):
            raise NoEligibleProviderError(f"Provider {provider_id} is unknown, inactive or out of quota")
        return provider

    def reserve(self, provider: ProviderAccount) -> None:
        """Consume one unit of quota ahead of a network attempt."""
        _check_quota_reset(provider, self._clock())
        self.db.flush()
        updated = (
            self.db.query(ProviderAccount)
            .filter(
                ProviderAccount.id == provider.id,
                ProviderAccount.used_today < ProviderAccount.daily_quota,
            )
            .update(
                {ProviderAccount.used_today: ProviderAccount.used_today + 1},
                synchronize_session=False,
            )
        )
        self.db.refresh(provider)
        if not updated:
            raise QuotaExceededError(f"Provider {provider.name} reached its daily quota of {provider.daily_quota}")
        logger.debug("Quota reserved on %s: %d/%d", provider.name, provider.used_today, provider.daily_quota)


def usage(provider: ProviderAccount, now: datetime | None = None) -> dict:
    """Daily usage snapshot for display."""
    now = now or utcnow()
    started = ensure_utc(provider.quota_window_started_at)
    expired = started is None or now - started >= QUOTA_WINDOW
    used = 0 if expired else int(provider.used_today or 0)
    limit = int(provider.daily_quota or 0)
    return {
        "used": used,
        "limit": limit,
        "percentage": round(used / limit * 100, 1) if limit else 0.0,
        "resets_at": None if expired else (started + QUOTA_WINDOW).isoformat(),
    }


# ── Persistence ────────────────────────────────────────────────────────


def _normalize_test_numbers(numbers: list[str] | None) -> list[str]:
    return [normalize_number(n) for n in numbers or []]


def create_provider(
    db: Session,
    name: str,
    sender_id: str,
    username: str,
    api_key: str,
    daily_quota: int = 100,
    priority: int = 100,
    is_test_mode: bool = False,
    test_numbers: list[str] | None = None,
    is_active: bool = True,
) -> ProviderAccount:
    provider = ProviderAccount(
        name=name,
        sender_id=sender_id,
        username=username,
        credentials=encrypt_value(api_key),
        daily_quota=daily_quota,
        used_today=0,
        priority=priority,
        is_test_mode=is_test_mode,
        test_numbers=_normalize_test_numbers(test_numbers),
        is_active=is_active,
    )
    db.add(provider)
    db.flush()
    logger.info("Provider created: %s (sender=%s, quota=%d, test_mode=%s)", name, sender_id, daily_quota, is_test_mode)
    return provider


def update_provider(db: Session, provider: ProviderAccount, **changes) -> ProviderAccount:
    """Apply non-None field changes. ``api_key`` is re-encrypted, ``test_numbers`` normalized."""
    for field, value in changes.items():
        if value is None:
            continue
        if field == "api_key":
            provider.credentials = encrypt_value(value)
        elif field == "test_numbers":
            provider.test_numbers = _normalize_test_numbers(value)
        else:
            setattr(provider, field, value)
    db.flush()
    return provider


def get_provider_by_id(db: Session, provider_id: str | UUID | None) -> ProviderAccount | None:
    uid = to_uuid(provider_id)
    if uid is None:
        return None
    return db.get(ProviderAccount, uid)


def list_providers(db: Session, active_only: bool = False) -> list[ProviderAccount]:
    query = db.query(ProviderAccount)
    if active_only:
        query = query.filter(ProviderAccount.is_active == True)  # noqa: E712
    return query.order_by(ProviderAccount.priority.asc(), ProviderAccount.name.asc()).all()
