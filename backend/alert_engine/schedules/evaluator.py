"""Trigger evaluation: which candidates are due under a schedule right now."""

from datetime import date, datetime, timedelta

from ..candidates.source import CandidateEntity, station_matches
from ..ledger.service import HistoryLedger
from .models import AlertSchedule


def days_until(target: date, now: datetime) -> int:
    return (target - now.date()).days


def horizon(schedule: AlertSchedule, now: datetime) -> date:
    """Latest date an entity may carry and still fall inside the trigger window."""
    return now.date() + timedelta(days=schedule.trigger_window_days)


def dedup_since(schedule: AlertSchedule, now: datetime) -> datetime:
    return now - timedelta(days=schedule.frequency_days)


def in_window(schedule: AlertSchedule, entity: CandidateEntity, now: datetime) -> bool:
    """Station matches and the date is within the window.

    Already-expired entities (negative days) stay in the window so they keep
    getting reminded until someone remediates them.
    """
    if not station_matches(schedule.station_filter, entity.station):
        return False
    return days_until(entity.expiry_or_threshold_date, now) <= schedule.trigger_window_days


def evaluate(
    schedule: AlertSchedule,
    candidates: list[CandidateEntity],
    now: datetime,
    ledger: HistoryLedger,
) -> list[CandidateEntity]:
    """Due subset of ``candidates``, ordered by date (most urgent first)."""
    since = dedup_since(schedule, now)
    due = [
        entity
        for entity in candidates
        if in_window(schedule, entity, now) and not ledger.already_alerted(schedule.id, entity.id, since)
    ]
    return sorted(due, key=lambda e: (e.expiry_or_threshold_date, e.id))
