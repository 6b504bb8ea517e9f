"""Shared test fixtures."""

import json
import uuid
from datetime import UTC, date, datetime, timedelta

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from alert_engine.audit.models import AuditLog
from alert_engine.candidates.source import CandidateEntity, StaticCandidateSource
from alert_engine.database.base import Base
from alert_engine.integrations.locks import InProcessLockManager
from alert_engine.ledger.models import DeliveryRecord
from alert_engine.providers.client import SmsDeliveryClient
from alert_engine.providers.models import ProviderAccount
from alert_engine.providers.service import create_provider
from alert_engine.schedules.models import AlertSchedule, AlertType
from alert_engine.schedules.runner import ScheduleRunner
from alert_engine.schedules.service import create_schedule
from alert_engine.sms_templates.models import MessageTemplate, TemplateCategory
from alert_engine.sms_templates.service import create_template

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [AuditLog, DeliveryRecord, ProviderAccount, AlertSchedule, MessageTemplate]

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)

LICENSE_BODY = "{license_name} at {station} expires on {expiry_date} ({days_remaining} days). Please renew."


class FrozenClock:
    """Injectable clock for deterministic runs."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakeGateway:
    """httpx MockTransport handler imitating the SMS REST API.

    Queue raw ``httpx.Response`` objects or exceptions in ``responses``;
    when the queue is empty every send succeeds.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.responses: list = []
        self._counter = 0

    @property
    def sent_bodies(self) -> list[dict]:
        return [json.loads(r.content)["messages"][0] for r in self.requests if r.url.path.endswith("/sms/send")]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.responses:
            queued = self.responses.pop(0)
            if isinstance(queued, Exception):
                raise queued
            return queued
        if request.url.path.endswith("/account"):
            return httpx.Response(200, json={"data": {"balance": "12.50", "_currency": {"currency_name_short": "USD"}}})
        if "/sms/history/" in request.url.path:
            message_id = request.url.path.rsplit("/", 1)[-1]
            return httpx.Response(200, json={"data": {"message_id": message_id, "status": "Delivered"}})
        self._counter += 1
        return success_response(f"msg-{self._counter}")


def success_response(message_id: str = "msg-1", price: str = "0.0770") -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "http_code": 200,
            "response_code": "SUCCESS",
            "data": {"messages": [{"status": "SUCCESS", "message_id": message_id, "message_price": price}]},
        },
    )


def message_status_response(status: str) -> httpx.Response:
    return httpx.Response(200, json={"data": {"messages": [{"status": status}]}})


def make_entity(
    entity_id: str = "lic-1",
    days: int = 15,
    station: str = "MOBIL",
    numbers: tuple[str, ...] = ("+12025550123",),
    today: date | None = None,
    **attributes,
) -> CandidateEntity:
    today = today or NOW.date()
    attrs = {"license_name": "Business License", "license_number": "BL-1", "category": "Business"}
    attrs.update(attributes)
    return CandidateEntity(
        id=entity_id,
        expiry_or_threshold_date=today + timedelta(days=days),
        station=station,
        contact_numbers=numbers,
        attributes=attrs,
    )


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every session of a test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Create an in-memory SQLite database for testing.

    Note: SQLite doesn't support all PostgreSQL features (UUID, enums),
    but works for service logic testing.
    """
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def delivery_client(gateway):
    http_client = httpx.Client(transport=httpx.MockTransport(gateway), base_url="https://gateway.test/v3")
    client = SmsDeliveryClient(base_url="https://gateway.test/v3", timeout=5.0, http_client=http_client)
    yield client
    client.close()


@pytest.fixture
def candidates():
    return StaticCandidateSource()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def runner(session_factory, candidates, delivery_client, clock, sleeps):
    return ScheduleRunner(
        session_factory=session_factory,
        candidate_source=candidates,
        delivery_client=delivery_client,
        lock_manager=InProcessLockManager(ttl_seconds=60),
        clock=clock,
        sleep=sleeps.append,
        retry_backoff_seconds=0.5,
    )


@pytest.fixture
def license_template(db_session):
    template = create_template(db_session, "License expiry", TemplateCategory.LICENSE_EXPIRY, LICENSE_BODY)
    db_session.commit()
    return template


@pytest.fixture
def provider(db_session):
    provider = create_provider(db_session, "Primary", "+15550000000", "ops@example.com", "api-key-1", daily_quota=100)
    db_session.commit()
    return provider


@pytest.fixture
def schedule(db_session, license_template, provider):
    """Weekly MOBIL license schedule, 30 day window."""
    schedule = create_schedule(
        db_session,
        "MOBIL licenses",
        AlertType.LICENSE_EXPIRY,
        license_template.id,
        trigger_window_days=30,
        frequency_days=7,
        station_filter="MOBIL",
        now=NOW - timedelta(days=7),
    )
    db_session.commit()
    return schedule


@pytest.fixture
def random_id():
    return uuid.uuid4()
