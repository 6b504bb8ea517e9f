"""Tests for candidate entity sources."""

from datetime import date

import httpx
import pytest

from alert_engine.candidates.source import HttpCandidateSource, StaticCandidateSource, station_matches
from alert_engine.errors import CandidateSourceError
from alert_engine.schedules.models import AlertType

from conftest import make_entity

UNTIL = date(2026, 3, 31)

CONTACTS = [
    {"station": "MOBIL", "mobile_number": "+12025550100"},
    {"station": "ALL", "mobile_number": "+12025550999"},
    {"station": "AMOCO", "mobile_number": "+12025550200"},
    {"station": "MOBIL", "mobile_number": ""},
]

LICENSES = [
    {"id": 1, "license_name": "Fire Permit", "station": "MOBIL", "expiry_date": "2026-03-10", "status": "active"},
    {"id": 2, "license_name": "Old Permit", "station": "MOBIL", "expiry_date": "2026-03-05", "status": "renewed"},
    {"id": 3, "license_name": "Broken", "station": "MOBIL", "expiry_date": "soon"},
    {"id": 4, "license_name": "Far", "station": "MOBIL", "expiry_date": "2026-09-01"},
    {"license_name": "No id", "station": "MOBIL", "expiry_date": "2026-03-10"},
    {"id": 5, "license_name": "Amoco", "station": "AMOCO", "expiry_date": "2026-03-12T00:00:00"},
]


def _source(handler) -> HttpCandidateSource:
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://records.test/api")
    return HttpCandidateSource("https://records.test/api", http_client=client)


def _store(contacts=CONTACTS, licenses=LICENSES, seen=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        if request.url.path.endswith("/contacts"):
            return httpx.Response(200, json={"items": contacts})
        if request.url.path.endswith("/licenses"):
            return httpx.Response(200, json=licenses)
        return httpx.Response(404)

    return handler


class TestStationMatches:
    def test_all_matches_everything(self):
        assert station_matches("ALL", "MOBIL")

    def test_exact_match_only(self):
        assert station_matches("MOBIL", "MOBIL")
        assert not station_matches("MOBIL", "mobil")


class TestStaticCandidateSource:
    def test_filters_by_type_station_and_horizon(self):
        source = StaticCandidateSource({AlertType.LICENSE_EXPIRY: [make_entity("a", days=5)]})
        source.add(AlertType.LICENSE_EXPIRY, make_entity("b", days=60))
        source.add(AlertType.LICENSE_EXPIRY, make_entity("c", days=5, station="AMOCO"))
        source.add(AlertType.INVENTORY_LOW, make_entity("d", days=5))

        found = source.fetch(AlertType.LICENSE_EXPIRY, "MOBIL", UNTIL)

        assert [e.id for e in found] == ["a"]


class TestHttpCandidateSource:
    def test_fetch_station_licenses(self):
        seen = []
        entities = _source(_store(seen=seen)).fetch(AlertType.LICENSE_EXPIRY, "MOBIL", UNTIL)

        assert [e.id for e in entities] == ["1"]
        entity = entities[0]
        assert entity.expiry_or_threshold_date == date(2026, 3, 10)
        assert entity.contact_numbers == ("+12025550999", "+12025550100")
        assert entity.attributes["license_name"] == "Fire Permit"
        assert "expiry_date" not in entity.attributes

        licenses_request = seen[-1]
        assert licenses_request.url.params["station"] == "MOBIL"
        assert licenses_request.url.params["until"] == "2026-03-31"

    def test_all_stations(self):
        entities = _source(_store()).fetch(AlertType.LICENSE_EXPIRY, "ALL", UNTIL)
        by_id = {e.id: e for e in entities}
        assert set(by_id) == {"1", "5"}
        assert by_id["5"].contact_numbers == ("+12025550999", "+12025550200")

    def test_http_error_raises(self):
        def handler(request):
            return httpx.Response(500, json={"detail": "down"})

        with pytest.raises(CandidateSourceError, match="failed"):
            _source(handler).fetch(AlertType.LICENSE_EXPIRY, "ALL", UNTIL)

    def test_transport_error_raises(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        with pytest.raises(CandidateSourceError):
            _source(handler).fetch(AlertType.LICENSE_EXPIRY, "ALL", UNTIL)

    def test_invalid_json_raises(self):
        def handler(request):
            return httpx.Response(200, content=b"<html>")

        with pytest.raises(CandidateSourceError, match="invalid JSON"):
            _source(handler).fetch(AlertType.LICENSE_EXPIRY, "ALL", UNTIL)

    def test_unexpected_payload_raises(self):
        with pytest.raises(CandidateSourceError, match="Unexpected"):
            _source(_store(contacts={"items": "nope"})).fetch(AlertType.LICENSE_EXPIRY, "ALL", UNTIL)
