"""Schedule runner: one evaluation-and-delivery pass per schedule.

A run holds the schedule's lock, evaluates candidates, then handles due
entities one at a time: ledger re-check, render, provider selection,
recipient checks, quota reservation, send, record. Whatever happens, the
schedule clock advances from the run's ``now`` before the lock is released.

The same delivery path also serves immediate single-entity alerts and
ad-hoc messages typed by an operator.
"""

import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from uuid import UUID

from sqlalchemy.orm import Session
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed

from ..candidates.source import CandidateEntity, CandidateSource
from ..config import settings
from ..errors import (
    AlertEngineError,
    EntityNotFoundError,
    ProviderUnavailableError,
    QuotaExceededError,
    TemplateRenderError,
)
from ..integrations.locks import Lease, ScheduleLockManager, hold
from ..ledger.models import DeliveryStatus
from ..ledger.service import HistoryLedger, record_to_dict
from ..providers.client import DeliveryResult, SmsDeliveryClient
from ..providers.models import ProviderAccount
from ..providers.service import ProviderRegistry
from ..sms_templates.models import MessageTemplate
from ..sms_templates.service import RenderedMessage, entity_context, render, segment_count
from ..timeutils import utcnow
from .evaluator import dedup_since, evaluate, horizon
from .models import AlertSchedule
from .service import advance_clock, due_schedule_ids, is_due, require_schedule

logger = logging.getLogger(__name__)

MAX_SEND_ATTEMPTS = 2  # first try plus one retry on ProviderUnavailableError

ABORTED = "run_aborted"
ALREADY_ALERTED = "already_alerted"
INTERNAL_ERROR = "internal_error"
LOCK_LOST = "lock_lost"
NO_RECIPIENTS = "no_recipients"
TEMPLATE_UNAVAILABLE = "template_unavailable"


@dataclass
class RunSummary:
    """Outcome of one ``run_schedule`` call.

    ``due_count`` counts entities; ``sent``/``failed``/``skipped`` count
    ledger records, one per recipient.
    """

    schedule_id: str
    due_count: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0
    coalesced: bool = False
    paused: bool = False
    not_due: bool = False
    aborted: bool = False
    abort_reason: str | None = None
    errors: list[dict] = field(default_factory=list)
    ran_at: datetime | None = None
    next_run: datetime | None = None

    def add_error(self, exc: AlertEngineError, entity_id: str = "", recipient: str = "") -> None:
        self.errors.append({"entity_id": entity_id, "recipient": recipient, "kind": exc.kind, "message": exc.message})

    def abort(self, reason: str) -> None:
        self.aborted = True
        self.abort_reason = reason

    def to_dict(self) -> dict:
        data = asdict(self)
        data["ran_at"] = self.ran_at.isoformat() if self.ran_at else None
        data["next_run"] = self.next_run.isoformat() if self.next_run else None
        return data


@dataclass
class _Attempts:
    """Network attempts made for one recipient; each one consumed quota."""

    count: int = 0


def _log_retry(provider: ProviderAccount) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception()
        logger.warning(
            "Provider %s unavailable (%s), retrying in %.1fs",
            provider.name, getattr(exc, "message", exc), retry_state.next_action.sleep,
        )

    return before_sleep


class ScheduleRunner:
    """Runs schedules with explicitly injected collaborators."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        candidate_source: CandidateSource,
        delivery_client: SmsDeliveryClient,
        lock_manager: ScheduleLockManager,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], None] = time.sleep,
        retry_backoff_seconds: float | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.candidate_source = candidate_source
        self.delivery_client = delivery_client
        self.lock_manager = lock_manager
        self._clock = clock
        self._sleep = sleep
        self.retry_backoff_seconds = (
            settings.provider_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
        )

    # ── Entry points ───────────────────────────────────────────────────

    def run_schedule(self, schedule_id: str | UUID, force: bool = True) -> RunSummary:
        """Run one schedule now. ``force=False`` only runs it if it is Due.

        Raises ScheduleNotFoundError for unknown ids. A trigger arriving while
        the same schedule is already running is coalesced and returns at once.
        """
        with hold(self.lock_manager, f"schedule:{schedule_id}") as lease:
            if not lease.acquired:
                logger.info("Schedule %s already running, trigger coalesced", schedule_id)
                return RunSummary(schedule_id=str(schedule_id), coalesced=True)

            db = self.session_factory()
            try:
                return self._run_locked(db, schedule_id, force, lease)
            finally:
                db.close()

    def run_due(self) -> list[RunSummary]:
        """Timer entry point: run every active schedule whose next_run has passed."""
        db = self.session_factory()
        try:
            schedule_ids = due_schedule_ids(db, self._clock())
        finally:
            db.close()

        summaries = []
        for schedule_id in schedule_ids:
            try:
                summaries.append(self.run_schedule(schedule_id, force=False))
            except AlertEngineError as exc:
                logger.warning("Skipping schedule %s: %s", schedule_id, exc.message)
            except Exception:
                logger.exception("Schedule %s run failed", schedule_id)
        return summaries

    def run_entity(self, schedule_id: str | UUID, entity_id: str) -> RunSummary:
        """Alert one entity right now using the schedule's template, filter and provider.

        The trigger window is ignored but the dedup check still applies, and
        the schedule clock is left alone. Raises ScheduleNotFoundError or
        EntityNotFoundError.
        """
        with hold(self.lock_manager, f"schedule:{schedule_id}") as lease:
            if not lease.acquired:
                logger.info("Schedule %s already running, immediate alert for %s coalesced", schedule_id, entity_id)
                return RunSummary(schedule_id=str(schedule_id), coalesced=True)

            db = self.session_factory()
            try:
                return self._run_entity_locked(db, schedule_id, str(entity_id))
            finally:
                db.close()

    def send_message(
        self,
        recipient: str,
        body: str,
        provider_id: str | UUID | None = None,
        label: str = "custom",
    ) -> dict:
        """Send an operator-written message outside any schedule and record it.

        With ``provider_id`` exactly that account is used, otherwise the
        usual priority selection applies. Delivery errors are recorded and
        returned, never raised; NoEligibleProviderError is raised as is.
        """
        db = self.session_factory()
        try:
            registry = ProviderRegistry(db, clock=self._clock)
            if provider_id is not None:
                provider = registry.require_provider(provider_id)
            else:
                provider = registry.select_provider()
            now = self._clock()
            rendered = RenderedMessage(body=body, segment_count=segment_count(body))
            ledger = HistoryLedger(db)
            attempts = _Attempts()
            number = recipient
            try:
                number = self.delivery_client.prepare_recipient(provider, recipient)
                result = self._send(db, registry, provider, number, body, attempts)
            except AlertEngineError as exc:
                logger.warning("Ad-hoc message to %s failed: %s", number, exc.message)
                entry = ledger.record(
                    None, label, DeliveryStatus.FAILED,
                    recipient=number, rendered_body=body, segment_count=rendered.segment_count,
                    provider_id=provider.id, error_kind=exc.kind, error_detail=exc.message,
                    attempts=attempts.count, created_at=now,
                )
            else:
                entry = ledger.record(
                    None, label, DeliveryStatus.SENT,
                    recipient=number, rendered_body=body, segment_count=rendered.segment_count,
                    provider_id=provider.id, provider_message_id=result.message_id, cost=result.cost,
                    attempts=attempts.count, created_at=now,
                )
            db.commit()
            return record_to_dict(entry)
        finally:
            db.close()

    # ── Run ────────────────────────────────────────────────────────────

    def _run_locked(self, db: Session, schedule_id: str | UUID, force: bool, lease: Lease) -> RunSummary:
        schedule = require_schedule(db, schedule_id)
        now = self._clock()
        summary = RunSummary(schedule_id=str(schedule.id), ran_at=now)

        if not schedule.is_active:
            summary.paused = True
            return summary
        if not force and not is_due(schedule, now):
            # another trigger ran it between selection and lock acquisition
            summary.not_due = True
            return summary

        try:
            self._run_entities(db, schedule, now, summary, lease)
        except Exception:
            db.rollback()
            logger.exception("Schedule %s run stopped by an unexpected error", schedule.id)
            raise
        finally:
            advance_clock(schedule, now)
            summary.next_run = schedule.next_run
            db.commit()

        logger.info(
            "Schedule %s (%s) ran: due=%d sent=%d failed=%d skipped=%d%s",
            schedule.name, schedule.id, summary.due_count, summary.sent, summary.failed, summary.skipped,
            f" aborted={summary.abort_reason}" if summary.aborted else "",
        )
        return summary

    def _run_entities(
        self, db: Session, schedule: AlertSchedule, now: datetime, summary: RunSummary, lease: Lease
    ) -> None:
        ledger = HistoryLedger(db)
        due = self._evaluate(schedule, now, ledger, summary)
        summary.due_count = len(due)
        template = self._template(db, schedule, summary) if due else None

        registry = ProviderRegistry(db, clock=self._clock)
        excluded: set[UUID] = set()
        for entity in due:
            if not summary.aborted and not lease.renew():
                logger.warning("Lost the lock on schedule %s, skipping the rest of the run", schedule.id)
                summary.abort(LOCK_LOST)
            if summary.aborted:
                self._skip(ledger, schedule, entity, now, summary, entity.contact_numbers or ("",))
                continue
            self._process_entity(db, ledger, registry, schedule, template, entity, now, excluded, summary)

    def _run_entity_locked(self, db: Session, schedule_id: str | UUID, entity_id: str) -> RunSummary:
        schedule = require_schedule(db, schedule_id)
        now = self._clock()
        summary = RunSummary(schedule_id=str(schedule.id), ran_at=now, next_run=schedule.next_run)
        if not schedule.is_active:
            summary.paused = True
            return summary

        try:
            candidates = self.candidate_source.fetch(schedule.alert_type, schedule.station_filter, date.max)
        except AlertEngineError as exc:
            logger.error("Candidate fetch failed for immediate alert on %s: %s", schedule.id, exc.message)
            summary.abort(exc.kind)
            summary.add_error(exc)
            return summary

        entity = next((c for c in candidates if c.id == entity_id), None)
        if entity is None:
            raise EntityNotFoundError(
                f"{entity_id} is not a {schedule.alert_type} candidate for {schedule.station_filter}"
            )

        summary.due_count = 1
        ledger = HistoryLedger(db)
        template = self._template(db, schedule, summary)
        if summary.aborted:
            self._skip(ledger, schedule, entity, now, summary, entity.contact_numbers or ("",))
        else:
            registry = ProviderRegistry(db, clock=self._clock)
            self._process_entity(db, ledger, registry, schedule, template, entity, now, set(), summary)
        logger.info(
            "Immediate alert for %s on schedule %s: sent=%d failed=%d skipped=%d",
            entity_id, schedule.id, summary.sent, summary.failed, summary.skipped,
        )
        return summary

    @staticmethod
    def _template(db: Session, schedule: AlertSchedule, summary: RunSummary) -> MessageTemplate | None:
        template = db.get(MessageTemplate, schedule.template_id)
        if template is None or not template.is_active:
            summary.abort(TEMPLATE_UNAVAILABLE)
            summary.errors.append(
                {"entity_id": "", "recipient": "", "kind": TEMPLATE_UNAVAILABLE,
                 "message": f"Template {schedule.template_id} is missing or inactive"}
            )
        return template

    def _evaluate(
        self, schedule: AlertSchedule, now: datetime, ledger: HistoryLedger, summary: RunSummary
    ) -> list[CandidateEntity]:
        try:
            candidates = self.candidate_source.fetch(schedule.alert_type, schedule.station_filter, horizon(schedule, now))
        except AlertEngineError as exc:
            logger.error("Candidate fetch failed for schedule %s: %s", schedule.id, exc.message)
            summary.abort(exc.kind)
            summary.add_error(exc)
            return []
        return evaluate(schedule, candidates, now, ledger)

    def _process_entity(
        self,
        db: Session,
        ledger: HistoryLedger,
        registry: ProviderRegistry,
        schedule: AlertSchedule,
        template: MessageTemplate,
        entity: CandidateEntity,
        now: datetime,
        excluded: set[UUID],
        summary: RunSummary,
    ) -> None:
        # Overlapping runs may have alerted this entity since evaluation
        if ledger.already_alerted(schedule.id, entity.id, dedup_since(schedule, now)):
            self._record(ledger, schedule, entity, now, summary, DeliveryStatus.SKIPPED, error_kind=ALREADY_ALERTED)
            db.commit()
            return

        if not entity.contact_numbers:
            self._record(ledger, schedule, entity, now, summary, DeliveryStatus.SKIPPED, error_kind=NO_RECIPIENTS)
            db.commit()
            return

        try:
            rendered = render(template, entity_context(entity, now))
        except TemplateRenderError as exc:
            summary.add_error(exc, entity.id)
            self._record(
                ledger, schedule, entity, now, summary, DeliveryStatus.FAILED,
                error_kind=exc.kind, error_detail=exc.message,
            )
            db.commit()
            return

        for index, raw in enumerate(entity.contact_numbers):
            if summary.aborted:
                self._skip(ledger, schedule, entity, now, summary, entity.contact_numbers[index:])
                break
            self._deliver(db, ledger, registry, schedule, entity, raw, rendered, now, excluded, summary)

    def _deliver(
        self,
        db: Session,
        ledger: HistoryLedger,
        registry: ProviderRegistry,
        schedule: AlertSchedule,
        entity: CandidateEntity,
        raw_recipient: str,
        rendered: RenderedMessage,
        now: datetime,
        excluded: set[UUID],
        summary: RunSummary,
    ) -> None:
        provider = None
        recipient = raw_recipient
        attempts = _Attempts()
        try:
            provider = registry.select_provider(schedule.provider_id, exclude=excluded)
            recipient = self.delivery_client.prepare_recipient(provider, raw_recipient)
            result = self._send(db, registry, provider, recipient, rendered.body, attempts)
        except AlertEngineError as exc:
            if isinstance(exc, QuotaExceededError) and provider is not None:
                excluded.add(provider.id)
            if exc.run_scoped:
                logger.error("Aborting schedule %s run: %s", schedule.id, exc.message)
                summary.abort(exc.kind)
            summary.add_error(exc, entity.id, recipient)
            self._record(
                ledger, schedule, entity, now, summary, DeliveryStatus.FAILED,
                recipient=recipient, rendered=rendered, provider_id=provider.id if provider else None,
                error_kind=exc.kind, error_detail=exc.message, attempts=attempts.count,
            )
            db.commit()
            return
        except Exception as exc:
            logger.exception("Unexpected error sending to %s for schedule %s", recipient, schedule.id)
            db.rollback()
            summary.abort(INTERNAL_ERROR)
            summary.errors.append(
                {"entity_id": entity.id, "recipient": recipient, "kind": INTERNAL_ERROR, "message": str(exc)}
            )
            self._record(
                ledger, schedule, entity, now, summary, DeliveryStatus.FAILED,
                recipient=recipient, rendered=rendered, provider_id=provider.id if provider else None,
                error_kind=INTERNAL_ERROR, error_detail=str(exc), attempts=attempts.count,
            )
            db.commit()
            return

        self._record(
            ledger, schedule, entity, now, summary, DeliveryStatus.SENT,
            recipient=recipient, rendered=rendered, provider_id=provider.id,
            provider_message_id=result.message_id, cost=result.cost, attempts=attempts.count,
        )
        db.commit()

    def _send(
        self,
        db: Session,
        registry: ProviderRegistry,
        provider: ProviderAccount,
        recipient: str,
        body: str,
        attempts: _Attempts,
    ) -> DeliveryResult:
        """Reserve quota and send, retrying once on ProviderUnavailableError."""

        def attempt() -> DeliveryResult:
            registry.reserve(provider)
            db.commit()
            attempts.count += 1
            return self.delivery_client.send(provider, recipient, body)

        retrying = Retrying(
            retry=retry_if_exception_type(ProviderUnavailableError),
            stop=stop_after_attempt(MAX_SEND_ATTEMPTS),
            wait=wait_fixed(self.retry_backoff_seconds),
            sleep=self._sleep,
            before_sleep=_log_retry(provider),
            reraise=True,
        )
        return retrying(attempt)

    # ── Ledger helpers ─────────────────────────────────────────────────

    def _skip(
        self,
        ledger: HistoryLedger,
        schedule: AlertSchedule,
        entity: CandidateEntity,
        now: datetime,
        summary: RunSummary,
        recipients,
    ) -> None:
        for recipient in recipients:
            self._record(
                ledger, schedule, entity, now, summary, DeliveryStatus.SKIPPED,
                recipient=recipient, error_kind=ABORTED, error_detail=summary.abort_reason or "",
            )
        ledger.db.commit()

    @staticmethod
    def _record(
        ledger: HistoryLedger,
        schedule: AlertSchedule,
        entity: CandidateEntity,
        now: datetime,
        summary: RunSummary,
        status: DeliveryStatus,
        recipient: str = "",
        rendered: RenderedMessage | None = None,
        **fields,
    ) -> None:
        ledger.record(
            schedule.id,
            entity.id,
            status,
            recipient=recipient,
            rendered_body=rendered.body if rendered else "",
            segment_count=rendered.segment_count if rendered else 0,
            created_at=now,
            **fields,
        )
        if status is DeliveryStatus.SENT:
            summary.sent += 1
        elif status is DeliveryStatus.FAILED:
            summary.failed += 1
        else:
            summary.skipped += 1
