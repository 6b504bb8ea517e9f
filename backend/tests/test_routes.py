"""Tests for HTTP routes using FastAPI TestClient."""

from contextlib import asynccontextmanager
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from alert_engine.schedules.models import AlertType

from conftest import LICENSE_BODY, make_entity

API = "/api/v1"


@pytest.fixture
def app_client(session_factory, runner):
    """TestClient with patched lifespan: no migrations, no scheduler thread, SQLite sessions."""
    from alert_engine.database.base import get_db
    from alert_engine.main import create_app

    @asynccontextmanager
    async def _test_lifespan(app):
        app.state.runner = runner
        app.state.delivery_client = runner.delivery_client
        yield

    def _test_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    with patch("alert_engine.main.lifespan", _test_lifespan), patch("alert_engine.main.settings") as mock_settings:
        mock_settings.trusted_hosts_list = ["*"]
        mock_settings.cors_origins_list = ["*"]
        mock_settings.cors_allow_credentials = False
        app = create_app()
        app.dependency_overrides[get_db] = _test_db
        with TestClient(app, raise_server_exceptions=False) as client:
            yield client


def _create_template(client, body=LICENSE_BODY) -> dict:
    response = client.post(f"{API}/templates", json={"name": "License", "category": "License Expiry", "body": body})
    assert response.status_code == 201
    return response.json()["template"]


def _create_provider(client, **overrides) -> dict:
    payload = {"name": "Primary", "sender_id": "+15550000000", "username": "ops@example.com", "api_key": "secret-key"}
    payload.update(overrides)
    response = client.post(f"{API}/providers", json=payload)
    assert response.status_code == 201
    return response.json()["provider"]


def _create_schedule(client, template_id, **overrides) -> dict:
    payload = {
        "name": "MOBIL licenses",
        "alert_type": "LicenseExpiry",
        "template_id": template_id,
        "trigger_window_days": 30,
        "frequency_days": 7,
        "station_filter": "MOBIL",
    }
    payload.update(overrides)
    response = client.post(f"{API}/schedules", json=payload)
    assert response.status_code == 201, response.text
    return response.json()["schedule"]


class TestHealthEndpoint:
    def test_health_returns_ok(self, app_client):
        response = app_client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["db"] == "ok"
        assert data["scheduler"] == {"running": False}

    def test_security_headers(self, app_client):
        response = app_client.get("/health")
        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"


class TestTemplateRoutes:
    def test_create_and_get(self, app_client):
        template = _create_template(app_client)
        assert template["segment_count"] == 1

        response = app_client.get(f"{API}/templates/{template['id']}")
        assert response.status_code == 200
        assert response.json()["body"] == LICENSE_BODY

    def test_unknown_placeholder_rejected(self, app_client):
        response = app_client.post(
            f"{API}/templates",
            json={"name": "Bad", "category": "License Expiry", "body": "Hi {first_name}"},
        )
        assert response.status_code == 400
        assert response.json()["unknown"] == ["first_name"]

    def test_preview(self, app_client):
        response = app_client.post(
            f"{API}/templates/preview",
            json={"category": "Inventory Alert", "body": "{product_name} low at {station}"},
        )
        assert response.status_code == 200
        assert response.json()["body"] == "Regular Gas low at MOBIL"

    def test_placeholders(self, app_client):
        response = app_client.get(f"{API}/templates/placeholders")
        assert "renewal_url" in response.json()["License Expiry"]

    def test_missing_template(self, app_client):
        assert app_client.get(f"{API}/templates/not-a-uuid").status_code == 404

    def test_malformed_braces_rejected(self, app_client):
        response = app_client.post(
            f"{API}/templates",
            json={"name": "Typo", "category": "License Expiry", "body": "Renew {license name} at {station}"},
        )
        assert response.status_code == 400
        assert response.json()["unknown"] == ["{license name}"]

    def test_category_change_blocked_by_schedule(self, app_client):
        template = _create_template(app_client)
        _create_schedule(app_client, template["id"])

        response = app_client.put(
            f"{API}/templates/{template['id']}",
            json={"category": "Inventory Alert", "body": "{station} stock check"},
        )

        assert response.status_code == 409
        assert response.json()["schedules"] == ["MOBIL licenses"]
        assert app_client.get(f"{API}/templates/{template['id']}").json()["category"] == "License Expiry"


class TestProviderRoutes:
    def test_credentials_never_returned(self, app_client):
        provider = _create_provider(app_client)
        listed = app_client.get(f"{API}/providers").json()["providers"]

        for data in (provider, listed[0]):
            assert "api_key" not in data
            assert "encrypted_api_key" not in data
            assert "secret-key" not in str(data)

    def test_invalid_test_number_rejected(self, app_client):
        response = app_client.post(
            f"{API}/providers",
            json={
                "name": "Test",
                "sender_id": "ALERTS",
                "username": "u",
                "api_key": "k",
                "is_test_mode": True,
                "test_numbers": ["not a number"],
            },
        )
        assert response.status_code == 400

    def test_usage(self, app_client):
        provider = _create_provider(app_client, daily_quota=50)
        usage = app_client.get(f"{API}/providers/{provider['id']}/usage").json()
        assert usage["used"] == 0
        assert usage["limit"] == 50

    def test_check_account(self, app_client):
        provider = _create_provider(app_client)
        response = app_client.post(f"{API}/providers/{provider['id']}/check")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "balance": 12.5, "currency": "USD"}

    def test_check_account_bad_credentials(self, app_client, gateway):
        provider = _create_provider(app_client)
        gateway.responses.append(httpx.Response(401, json={"response_msg": "Invalid credentials"}))
        response = app_client.post(f"{API}/providers/{provider['id']}/check")
        assert response.status_code == 502
        assert response.json()["kind"] == "authentication"

    def test_send_test_message(self, app_client, gateway):
        provider = _create_provider(app_client)

        response = app_client.post(f"{API}/providers/{provider['id']}/test", json={"to": "+12025550123"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is True
        assert data["record"]["entity_id"] == "provider_test"
        assert data["record"]["provider_id"] == provider["id"]
        assert "Primary" in gateway.sent_bodies[0]["body"]
        logs = app_client.get(f"{API}/audit", params={"action": "provider_test"}).json()["logs"]
        assert len(logs) == 1

    def test_test_message_to_disabled_country_fails_without_sending(self, app_client, gateway):
        provider = _create_provider(app_client)
        response = app_client.post(f"{API}/providers/{provider['id']}/test", json={"to": "+8613800138000"})
        assert response.status_code == 200
        assert response.json()["ok"] is False
        assert response.json()["record"]["error_kind"] == "country_not_enabled"
        assert gateway.requests == []

    def test_test_message_inactive_provider(self, app_client):
        provider = _create_provider(app_client, is_active=False)
        response = app_client.post(f"{API}/providers/{provider['id']}/test", json={"to": "+12025550123"})
        assert response.status_code == 400
        assert response.json()["kind"] == "no_eligible_provider"

    def test_test_message_unknown_provider(self, app_client, random_id):
        response = app_client.post(f"{API}/providers/{random_id}/test", json={"to": "+12025550123"})
        assert response.status_code == 404


class TestScheduleRoutes:
    def test_create_list_and_status(self, app_client):
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        assert schedule["status"] == "Active"
        assert schedule["last_run"] is None

        listed = app_client.get(f"{API}/schedules").json()["schedules"]
        assert [s["id"] for s in listed] == [schedule["id"]]

        status = app_client.get(f"{API}/schedules/{schedule['id']}/status").json()
        assert status["status"] == "Active"

    def test_incompatible_template_rejected(self, app_client):
        template = _create_template(app_client)
        response = app_client.post(
            f"{API}/schedules",
            json={"name": "Stock", "alert_type": "InventoryLow", "template_id": template["id"]},
        )
        assert response.status_code == 400
        assert "cannot be used" in response.json()["error"]

    def test_zero_frequency_rejected(self, app_client):
        template = _create_template(app_client)
        response = app_client.post(
            f"{API}/schedules",
            json={"name": "Bad", "template_id": template["id"], "frequency_days": 0},
        )
        assert response.status_code == 400

    def test_toggle_pauses(self, app_client):
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        toggled = app_client.post(f"{API}/schedules/{schedule['id']}/toggle").json()["schedule"]
        assert toggled["is_active"] is False
        assert toggled["status"] == "Paused"

    def test_update(self, app_client):
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        response = app_client.put(f"{API}/schedules/{schedule['id']}", json={"station_filter": "AMOCO"})
        assert response.status_code == 200
        assert response.json()["schedule"]["station_filter"] == "AMOCO"

    def test_unknown_schedule_status_404(self, app_client, random_id):
        response = app_client.get(f"{API}/schedules/{random_id}/status")
        assert response.status_code == 404

    def test_manual_run_sends_and_records(self, app_client, candidates, gateway):
        _create_provider(app_client)
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        candidates.add(AlertType.LICENSE_EXPIRY, make_entity("lic-1", days=15))

        response = app_client.post(f"{API}/schedules/{schedule['id']}/run")

        assert response.status_code == 200
        summary = response.json()
        assert summary["due_count"] == 1
        assert summary["sent"] == 1
        assert summary["coalesced"] is False
        assert len(gateway.sent_bodies) == 1

        detail = app_client.get(f"{API}/schedules/{schedule['id']}").json()
        assert detail["history"]["Sent"] == 1
        assert detail["last_run"] is not None

        history = app_client.get(f"{API}/history", params={"schedule_id": schedule["id"]}).json()["records"]
        assert [r["status"] for r in history] == ["Sent"]
        assert history[0]["recipient"] == "+12025550123"

        logs = app_client.get(f"{API}/audit", params={"action": "schedule_run"}).json()["logs"]
        assert len(logs) == 1

    def test_manual_run_unknown_schedule(self, app_client, random_id):
        response = app_client.post(f"{API}/schedules/{random_id}/run")
        assert response.status_code == 404

    def test_immediate_entity_alert(self, app_client, candidates, gateway):
        _create_provider(app_client)
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        candidates.add(AlertType.LICENSE_EXPIRY, make_entity("lic-9", days=60))

        response = app_client.post(f"{API}/schedules/{schedule['id']}/entities/lic-9/run")

        assert response.status_code == 200
        assert response.json()["sent"] == 1
        assert len(gateway.sent_bodies) == 1
        assert app_client.get(f"{API}/schedules/{schedule['id']}").json()["last_run"] is None
        logs = app_client.get(f"{API}/audit", params={"action": "entity_alert"}).json()["logs"]
        assert len(logs) == 1

    def test_immediate_alert_unknown_entity(self, app_client):
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        response = app_client.post(f"{API}/schedules/{schedule['id']}/entities/missing/run")
        assert response.status_code == 404

    def test_delete_with_history_disables(self, app_client, candidates):
        _create_provider(app_client)
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        candidates.add(AlertType.LICENSE_EXPIRY, make_entity("lic-1"))
        app_client.post(f"{API}/schedules/{schedule['id']}/run")

        response = app_client.delete(f"{API}/schedules/{schedule['id']}")

        assert response.json() == {"ok": True, "deleted": False, "disabled": True}
        assert app_client.get(f"{API}/schedules/{schedule['id']}").json()["is_active"] is False

    def test_delete_without_history(self, app_client):
        template = _create_template(app_client)
        schedule = _create_schedule(app_client, template["id"])
        response = app_client.delete(f"{API}/schedules/{schedule['id']}")
        assert response.json()["deleted"] is True
        assert app_client.get(f"{API}/schedules/{schedule['id']}").status_code == 404


class TestHistoryRoutes:
    def test_invalid_schedule_id(self, app_client):
        response = app_client.get(f"{API}/history", params={"schedule_id": "nope"})
        assert response.status_code == 400

    def test_empty_summary(self, app_client):
        summary = app_client.get(f"{API}/history/summary").json()
        assert summary == {"Sent": 0, "Failed": 0, "Skipped": 0, "total": 0, "total_cost": 0.0}

    def test_custom_message_then_delivery_status(self, app_client, gateway):
        _create_provider(app_client)

        response = app_client.post(f"{API}/messages", json={"to": "+12025550123", "body": "Tank 2 refilled"})

        assert response.status_code == 200
        record = response.json()["record"]
        assert response.json()["ok"] is True
        assert record["schedule_id"] is None
        assert gateway.sent_bodies[0]["body"] == "Tank 2 refilled"

        status = app_client.get(f"{API}/history/{record['id']}/delivery-status").json()
        assert status == {"record_id": record["id"], "message_id": "msg-1", "status": "Delivered", "delivered": True}

        history = app_client.get(f"{API}/history", params={"entity_id": "custom"}).json()["records"]
        assert [r["id"] for r in history] == [record["id"]]
        logs = app_client.get(f"{API}/audit", params={"action": "message_send"}).json()["logs"]
        assert len(logs) == 1

    def test_delivery_status_needs_sent_record(self, app_client):
        _create_provider(app_client)
        record = app_client.post(f"{API}/messages", json={"to": "garbage", "body": "hello"}).json()["record"]
        assert record["status"] == "Failed"

        response = app_client.get(f"{API}/history/{record['id']}/delivery-status")
        assert response.status_code == 400

    def test_delivery_status_unknown_record(self, app_client, random_id):
        assert app_client.get(f"{API}/history/{random_id}/delivery-status").status_code == 404

    def test_message_invalid_provider_id(self, app_client):
        response = app_client.post(f"{API}/messages", json={"to": "+12025550123", "body": "x", "provider_id": "nope"})
        assert response.status_code == 400
