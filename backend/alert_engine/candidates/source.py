"""Candidate entity sources with Protocol pattern for dependency injection.

Provides HttpCandidateSource (reads the external record store) and
StaticCandidateSource (in-memory, for tests and local runs). The engine never
writes candidate entities.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import Protocol

import httpx

from ..config import settings
from ..errors import CandidateSourceError
from ..schedules.models import ALL_STATIONS, AlertType
from ..timeutils import as_date

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CandidateEntity:
    """Read-only snapshot of a license, product or notice."""

    id: str
    expiry_or_threshold_date: date
    station: str
    contact_numbers: tuple[str, ...] = ()
    attributes: dict[str, object] = field(default_factory=dict, compare=False, hash=False)


def station_matches(station_filter: str, station: str) -> bool:
    return station_filter == ALL_STATIONS or station == station_filter


class CandidateSource(Protocol):
    """Record store read interface."""

    def fetch(self, alert_type: AlertType, station_filter: str, until: date) -> list[CandidateEntity]: ...


class StaticCandidateSource:
    """In-memory candidates keyed by alert type."""

    def __init__(self, entities: dict[AlertType, Iterable[CandidateEntity]] | None = None) -> None:
        self._entities: dict[AlertType, list[CandidateEntity]] = {
            AlertType(k): list(v) for k, v in (entities or {}).items()
        }

    def add(self, alert_type: AlertType, entity: CandidateEntity) -> None:
        self._entities.setdefault(AlertType(alert_type), []).append(entity)

    def fetch(self, alert_type: AlertType, station_filter: str, until: date) -> list[CandidateEntity]:
        return [
            e
            for e in self._entities.get(AlertType(alert_type), [])
            if station_matches(station_filter, e.station) and e.expiry_or_threshold_date <= until
        ]


# Record store resource and date field per alert type
_RESOURCES: dict[AlertType, tuple[str, str]] = {
    AlertType.LICENSE_EXPIRY: ("licenses", "expiry_date"),
    AlertType.INVENTORY_LOW: ("products", "reorder_date"),
    AlertType.SYSTEM_NOTICE: ("notices", "notice_date"),
}

# Statuses that take an entity out of alerting entirely
_INACTIVE_STATUSES = {"inactive", "cancelled", "archived", "renewed"}


class HttpCandidateSource:
    """Reads entities and station contacts from the record store REST API.

    Contacts are attached by station: a contact whose station is ``ALL``
    receives alerts for every station.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        timeout: float | None = None,
        http_client: httpx.Client | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._http = http_client or httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout if timeout is not None else settings.record_store_timeout_seconds,
        )

    def close(self) -> None:
        self._http.close()

    def _get_items(self, path: str, params: dict) -> list[dict]:
        try:
            response = self._http.get(path, params=params)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise CandidateSourceError(f"Record store request {path} failed: {exc}") from exc
        except ValueError as exc:
            raise CandidateSourceError(f"Record store returned invalid JSON for {path}") from exc
        items = payload.get("items") if isinstance(payload, dict) else payload
        if not isinstance(items, list):
            raise CandidateSourceError(f"Unexpected record store payload for {path}")
        return items

    def _contacts_by_station(self) -> dict[str, list[str]]:
        contacts: dict[str, list[str]] = {}
        for c in self._get_items("/contacts", {"is_active": "true"}):
            number = (c.get("mobile_number") or "").strip()
            if number:
                contacts.setdefault(str(c.get("station") or ALL_STATIONS), []).append(number)
        return contacts

    def fetch(self, alert_type: AlertType, station_filter: str, until: date) -> list[CandidateEntity]:
        resource, date_field = _RESOURCES[AlertType(alert_type)]
        params = {"until": until.isoformat()}
        if station_filter != ALL_STATIONS:
            params["station"] = station_filter

        contacts = self._contacts_by_station()
        broadcast = contacts.get(ALL_STATIONS, [])

        entities: list[CandidateEntity] = []
        for item in self._get_items(f"/{resource}", params):
            if str(item.get("status", "")).lower() in _INACTIVE_STATUSES:
                continue
            raw_date = item.get(date_field)
            station = str(item.get("station") or "")
            if item.get("id") is None or raw_date is None or not station_matches(station_filter, station):
                continue
            try:
                when = as_date(raw_date)
            except (TypeError, ValueError):
                logger.warning("Skipping %s %s: unparseable %s=%r", resource, item.get("id"), date_field, raw_date)
                continue
            if when > until:
                continue
            numbers = tuple(dict.fromkeys(broadcast + contacts.get(station, [])))
            attributes = {k: v for k, v in item.items() if k not in ("id", date_field) and v is not None}
            entities.append(
                CandidateEntity(
                    id=str(item["id"]),
                    expiry_or_threshold_date=when,
                    station=station,
                    contact_numbers=numbers,
                    attributes=attributes,
                )
            )
        logger.info("Fetched %d %s candidates (station=%s, until=%s)", len(entities), resource, station_filter, until)
        return entities


def create_candidate_source() -> CandidateSource:
    """Factory: HTTP source when a record store is configured, else an empty in-memory one."""
    if not settings.record_store_url:
        logger.warning("RECORD_STORE_URL not set: schedules will find no candidates")
        return StaticCandidateSource()
    return HttpCandidateSource(settings.record_store_url, settings.record_store_api_key)
