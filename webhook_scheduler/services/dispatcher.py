"""
Execution dispatcher: one pass ("tick") over due schedules.

Per tick:
1. select active rows with next_execution_at <= now and no live claim,
   oldest-due first
2. claim each row with a conditional UPDATE (compare-and-set on
   next_execution_at); losing the race is a silent skip
3. materialize the payload and deliver it, concurrently up to max_workers
4. finalize: count the attempt, reschedule or deactivate, release the claim
   and record the execution, in one transaction

A failed delivery is counted and rescheduled exactly like a successful one.
Missed occurrences are not retried within the cycle; the schedule waits for
its next natural fire.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from cryptography.fernet import InvalidToken
from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from webhook_scheduler.config import settings
from webhook_scheduler.connectors.base import (
    BaseDeliveryConnector,
    DeliveryAttachment,
    DeliveryResult,
)
from webhook_scheduler.constants.execution_outcomes import (
    ExecutionOutcome,
    TerminationReason,
    explain_reason,
)
from webhook_scheduler.database import SessionLocal, utc_now
from webhook_scheduler.models.saved_webhook import SavedWebhook
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.models.schedule_execution import ScheduleExecution
from webhook_scheduler.services.attachment_storage import AttachmentError, AttachmentStorage, stored_files
from webhook_scheduler.services.payload_serializer import build_payload, hydrate
from webhook_scheduler.services.recurrence import (
    CronValidationError,
    RecurrencePattern,
    compute_next,
)
from webhook_scheduler.utils.encrypt import decrypt_data

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """State a schedule moves to after an attempt."""
    outcome: ExecutionOutcome
    is_active: bool
    next_execution_at: Optional[datetime]
    reason: Optional[TerminationReason] = None
    detail: Optional[str] = None


@dataclass
class ExecutionReport:
    schedule_id: str
    name: str
    success: bool
    outcome: ExecutionOutcome
    execution_count: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    next_execution_at: Optional[datetime] = None

    @property
    def continues(self) -> bool:
        return self.outcome == ExecutionOutcome.RESCHEDULED


@dataclass
class TickResult:
    started_at: datetime
    due: int = 0
    claimed: int = 0
    skipped: int = 0
    errors: int = 0
    reports: List[ExecutionReport] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.reports)


def plan_transition(schedule: Schedule, execution_count: int, now: datetime) -> Transition:
    """
    Decide where a schedule goes after its execution_count-th attempt.

    Pure: reads the schedule's cadence fields, never touches the session.
    """
    pattern = schedule.recurrence_pattern or RecurrencePattern.ONCE.value

    if not schedule.is_recurring or pattern == RecurrencePattern.ONCE.value:
        return Transition(ExecutionOutcome.EXHAUSTED, False, None, TerminationReason.ONE_TIME)

    if schedule.max_executions is not None and execution_count >= schedule.max_executions:
        return Transition(
            ExecutionOutcome.EXHAUSTED, False, None, TerminationReason.MAX_EXECUTIONS_REACHED,
            explain_reason(TerminationReason.MAX_EXECUTIONS_REACHED, {"max_executions": schedule.max_executions}),
        )

    try:
        result = compute_next(pattern, schedule.recurrence_config, now)
    except CronValidationError as e:
        return Transition(
            ExecutionOutcome.FAILED_TERMINAL, False, None, TerminationReason.INVALID_RECURRENCE,
            explain_reason(TerminationReason.INVALID_RECURRENCE, {"detail": str(e)}),
        )

    if result.is_terminal:
        cron = (schedule.recurrence_config or {}).get("cronExpression", "")
        return Transition(
            ExecutionOutcome.EXHAUSTED, False, None, result.reason,
            explain_reason(result.reason, {"cron": cron}),
        )

    return Transition(ExecutionOutcome.RESCHEDULED, True, result.next_at)


class ScheduleDispatcher:
    """
    Finds due schedules and delivers them.

    Safe to run from several processes at once: every row is claimed with an
    atomic conditional update before delivery, and finalized only by the
    holder of the claim token.
    """

    def __init__(
        self,
        connector: BaseDeliveryConnector,
        session_factory: Callable[[], Session] = SessionLocal,
        storage: Optional[AttachmentStorage] = None,
        max_workers: Optional[int] = None,
        batch_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.connector = connector
        self.session_factory = session_factory
        self.storage = storage or AttachmentStorage()
        self.max_workers = max(1, max_workers or settings.dispatcher_max_workers)
        self.batch_size = batch_size or settings.dispatcher_batch_size
        self.lease = timedelta(seconds=lease_seconds or settings.dispatcher_claim_lease_seconds)
        # leases run on wall-clock time even when a tick is given an explicit `now`
        self.clock = clock

    async def run_tick(self, now: Optional[datetime] = None) -> TickResult:
        """
        One dispatcher pass. `now` overrides the due-time clock for testing and
        manual triggers; claim leases are always measured on the real clock.
        """
        now = now or self.clock()
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        tick = TickResult(started_at=now)

        db = self.session_factory()
        try:
            due = self.find_due(db, now)
        finally:
            db.close()

        tick.due = len(due)
        if not due:
            log.debug(f"[{now.isoformat()}] No schedules due")
            return tick

        log.info(f"[{now.isoformat()}] Found {len(due)} schedule(s) due for execution")

        semaphore = asyncio.Semaphore(self.max_workers)

        async def run_one(schedule_id: str, expected_next: datetime):
            async with semaphore:
                return await self._process(schedule_id, expected_next, now)

        outcomes = await asyncio.gather(*(run_one(schedule_id, expected) for schedule_id, expected in due))

        for outcome in outcomes:
            if outcome is None:
                tick.skipped += 1
            elif outcome is False:
                tick.errors += 1
            else:
                tick.claimed += 1
                tick.reports.append(outcome)

        succeeded = sum(1 for report in tick.reports if report.success)
        log.info(
            f"Tick complete: due={tick.due} processed={tick.processed} succeeded={succeeded} "
            f"skipped={tick.skipped} errors={tick.errors}"
        )
        return tick

    def find_due(self, db: Session, now: datetime) -> List[Tuple[str, datetime]]:
        """(id, next_execution_at) of due, unclaimed schedules, oldest-due first."""
        rows = (
            db.query(Schedule.id, Schedule.next_execution_at)
            .filter(
                Schedule.is_active == True,  # noqa: E712
                Schedule.next_execution_at.isnot(None),
                Schedule.next_execution_at <= now,
                or_(Schedule.claimed_until.is_(None), Schedule.claimed_until < self.clock()),
            )
            .order_by(Schedule.next_execution_at.asc(), Schedule.id.asc())
            .limit(self.batch_size)
            .all()
        )
        return [(row.id, row.next_execution_at) for row in rows]

    def claim(self, db: Session, schedule_id: str, expected_next: datetime, now: datetime) -> Optional[str]:
        """
        Atomically claim a due schedule. Returns the claim token, or None if
        another pass got there first or the row changed since it was read.
        """
        token = str(uuid.uuid4())
        wall = self.clock()
        result = db.execute(
            update(Schedule)
            .where(
                Schedule.id == schedule_id,
                Schedule.is_active == True,  # noqa: E712
                Schedule.next_execution_at == expected_next,
                or_(Schedule.claimed_until.is_(None), Schedule.claimed_until < wall),
            )
            .values(claim_token=token, claimed_until=wall + self.lease)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        if result.rowcount != 1:
            return None
        return token

    async def _process(self, schedule_id: str, expected_next: datetime, now: datetime):
        """Claim, deliver, finalize. None = claim lost, False = unexpected error."""
        db = self.session_factory()
        try:
            token = self.claim(db, schedule_id, expected_next, now)
            if token is None:
                log.debug(f"Schedule {schedule_id} already claimed by another pass; skipping")
                return None

            schedule = db.get(Schedule, schedule_id)
            if schedule is None:
                return None

            if schedule.max_executions is not None and schedule.execution_count >= schedule.max_executions:
                return self._retire(db, schedule, token, now)

            log.info(f"Processing schedule: {schedule.id} ({schedule.name})")
            result = await self._deliver(db, schedule)
            return self.finalize(db, schedule, token, result, now)
        except Exception as e:
            db.rollback()
            log.error(f"Error executing schedule {schedule_id}: {e}", exc_info=True)
            return False
        finally:
            db.close()

    async def _deliver(self, db: Session, schedule: Schedule) -> DeliveryResult:
        try:
            url = decrypt_data(schedule.target_url)
        except InvalidToken:
            log.error(f"Schedule {schedule.id}: stored webhook URL cannot be decrypted")
            return DeliveryResult.rejected("Stored webhook URL cannot be decrypted")

        try:
            payload, attachments = self.materialize(db, schedule)
        except AttachmentError as e:
            log.error(f"Schedule {schedule.id}: {e}")
            return DeliveryResult.rejected(str(e))

        result = await self.connector.deliver(url, payload, attachments or None)
        log.info(
            f"Webhook {'sent successfully' if result.success else 'failed'} for schedule {schedule.id}"
            + (f" (HTTP {result.status_code})" if result.status_code else "")
        )
        return result

    def materialize(self, db: Session, schedule: Schedule) -> Tuple[dict, List[DeliveryAttachment]]:
        """
        Wire payload and attachments for a schedule.

        Source precedence: embedded snapshot, then the referenced saved
        webhook, then the legacy materialized message_data.
        """
        source = schedule.builder_state
        if not source and schedule.saved_webhook_id:
            saved = db.get(SavedWebhook, schedule.saved_webhook_id)
            source = saved.builder_state if saved is not None else None
        if not source and schedule.message_data:
            source = schedule.message_data

        snapshot = hydrate(source)
        if not snapshot.files and schedule.files:
            snapshot.files = stored_files(schedule.files)

        attachments = [
            DeliveryAttachment(
                filename=file.name,
                content=self.storage.read(file.storage_path),
                content_type=file.mime_type,
            )
            for file in sorted(
                snapshot.files,
                key=lambda f: f.original_index if f.original_index is not None else 0,
            )
        ]
        return build_payload(snapshot), attachments

    def finalize(
        self,
        db: Session,
        schedule: Schedule,
        token: str,
        result: DeliveryResult,
        now: datetime,
    ) -> ExecutionReport:
        """
        Count the attempt, apply the transition and release the claim.

        The row is re-read first so edits made during delivery (max_executions,
        cadence) are honored. If an edit re-timed the row and took the claim
        away, the attempt is still counted but the edited next_execution_at
        is kept.
        """
        schedule_id, name, previous_count = schedule.id, schedule.name, schedule.execution_count
        db.expire_all()
        current = db.get(Schedule, schedule_id)
        if current is None:
            log.warning(f"Schedule {schedule_id} was deleted during execution")
            return ExecutionReport(
                schedule_id=schedule_id,
                name=name,
                success=result.success,
                outcome=ExecutionOutcome.SUPERSEDED,
                execution_count=previous_count,
                status_code=result.status_code,
                error=result.error,
            )

        name = current.name
        execution_count = current.execution_count + 1
        transition = plan_transition(current, execution_count, now)

        applied = db.execute(
            update(Schedule)
            .where(Schedule.id == schedule_id, Schedule.claim_token == token)
            .values(
                execution_count=Schedule.execution_count + 1,
                last_executed_at=now,
                next_execution_at=transition.next_execution_at,
                is_active=transition.is_active,
                claim_token=None,
                claimed_until=None,
            )
            .execution_options(synchronize_session=False)
        ).rowcount == 1

        outcome = transition.outcome
        next_execution_at = transition.next_execution_at
        if not applied:
            log.warning(f"Schedule {schedule_id} was re-timed during execution; keeping the edited schedule")
            outcome = ExecutionOutcome.SUPERSEDED
            next_execution_at = None
            counted = dict(execution_count=Schedule.execution_count + 1, last_executed_at=now)
            if current.max_executions is not None and execution_count >= current.max_executions:
                counted.update(is_active=False, next_execution_at=None)
                log.info(f"Schedule {schedule_id} marked as inactive ({TerminationReason.MAX_EXECUTIONS_REACHED.value})")
            db.execute(
                update(Schedule)
                .where(Schedule.id == schedule_id)
                .values(**counted)
                .execution_options(synchronize_session=False)
            )
        elif transition.is_active:
            log.info(f"Next execution for schedule {schedule_id} scheduled for: {next_execution_at.isoformat()}")
        else:
            log.info(f"Schedule {schedule_id} marked as inactive ({transition.reason.value})")

        error = result.error
        if applied and transition.detail and outcome != ExecutionOutcome.RESCHEDULED:
            error = f"{error}; {transition.detail}" if error else transition.detail

        db.add(ScheduleExecution(
            schedule_id=schedule_id,
            execution_number=execution_count,
            started_at=now,
            finished_at=datetime.now(timezone.utc),
            success=result.success,
            status_code=result.status_code,
            error_message=error,
            outcome=outcome.value,
            next_execution_at=next_execution_at,
        ))
        db.commit()

        return ExecutionReport(
            schedule_id=schedule_id,
            name=name,
            success=result.success,
            outcome=outcome,
            execution_count=execution_count,
            status_code=result.status_code,
            error=result.error,
            next_execution_at=next_execution_at,
        )

    def _retire(self, db: Session, schedule: Schedule, token: str, now: datetime) -> ExecutionReport:
        """Deactivate a schedule whose execution budget was already spent, without delivering."""
        db.execute(
            update(Schedule)
            .where(Schedule.id == schedule.id, Schedule.claim_token == token)
            .values(is_active=False, next_execution_at=None, claim_token=None, claimed_until=None)
            .execution_options(synchronize_session=False)
        )
        db.commit()
        log.info(f"Schedule {schedule.id} already reached {schedule.max_executions} executions; marked as inactive")
        return ExecutionReport(
            schedule_id=schedule.id,
            name=schedule.name,
            success=False,
            outcome=ExecutionOutcome.EXHAUSTED,
            execution_count=schedule.execution_count,
            error=explain_reason(TerminationReason.MAX_EXECUTIONS_REACHED, {"max_executions": schedule.max_executions}),
        )
