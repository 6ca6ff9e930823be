"""
Schedule lifecycle: create, edit, run-now and delete.

Everything the dispatcher relies on is checked here, before a row is written:
target URL, payload, cadence and quota. Edits release any pending claim, so a
dispatcher pass that is mid-delivery finalizes as superseded and the edit wins.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple

from cryptography.fernet import InvalidToken
from sqlalchemy.orm import Session

from webhook_scheduler.config import settings
from webhook_scheduler.connectors.discord_connector import is_allowed_webhook_url
from webhook_scheduler.database import utc_now
from webhook_scheduler.exceptions import NotFoundError, QuotaExceededError, ScheduleValidationError
from webhook_scheduler.models.saved_webhook import SavedWebhook
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.models.schedule_execution import ScheduleExecution
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.schemas.builder import BuilderState
from webhook_scheduler.schemas.schedule import ScheduleCreate, ScheduleUpdate
from webhook_scheduler.services.attachment_storage import AttachmentStorage, dropped_files
from webhook_scheduler.services.payload_serializer import (
    PayloadValidationError,
    build_payload,
    hydrate,
    validate_snapshot,
)
from webhook_scheduler.services.recurrence import (
    CronValidationError,
    RecurrencePattern,
    first_fire_at_or_after,
    normalize_recurrence,
)
from webhook_scheduler.utils.encrypt import decrypt_data, encrypt_data

log = logging.getLogger(__name__)

# Client clocks drift; a one-time schedule this far in the past still counts as "now".
ONE_TIME_GRACE = timedelta(seconds=60)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def webhook_url_errors(url: Optional[str]) -> List[str]:
    if not url or not url.strip():
        return ["Webhook URL is required"]
    if not is_allowed_webhook_url(url.strip()):
        return ["Webhook URL must be a Discord webhook URL"]
    return []


def count_active_schedules(db: Session, owner_id: str, exclude_id: Optional[str] = None) -> int:
    query = db.query(Schedule).filter(Schedule.owner_id == owner_id, Schedule.is_active == True)  # noqa: E712
    if exclude_id:
        query = query.filter(Schedule.id != exclude_id)
    return query.count()


def check_schedule_quota(db: Session, owner: Owner, exclude_id: Optional[str] = None) -> None:
    limit = settings.schedule_quota_for(owner.tier)
    if count_active_schedules(db, owner.id, exclude_id) >= limit:
        raise QuotaExceededError(
            f"Active schedule limit reached: the {owner.tier} plan allows {limit} active schedule(s)"
        )


def plan_first_fire(
    pattern: str,
    config: dict,
    requested_at: Optional[datetime],
    now: datetime,
) -> Tuple[datetime, datetime]:
    """
    (scheduled_at, next_execution_at) for a new or re-timed schedule.

    One-time: the requested instant, which must not be in the past.
    Cron: the first occurrence at or after the requested start (now when
    absent or already past).
    """
    if pattern == RecurrencePattern.ONCE.value:
        if requested_at is None:
            raise ScheduleValidationError(["One-time schedules require scheduled_at"])
        requested_at = _as_utc(requested_at)
        if requested_at < now - ONE_TIME_GRACE:
            raise ScheduleValidationError(["Scheduled time must be in the future"])
        return requested_at, requested_at

    start = now if requested_at is None else max(_as_utc(requested_at), now)
    try:
        first = first_fire_at_or_after(pattern, config, start)
    except CronValidationError as e:
        raise ScheduleValidationError([str(e)])
    if first.is_terminal:
        raise ScheduleValidationError(["Cron expression has no upcoming occurrence"])
    return first.next_at, first.next_at


def _apply_payload(
    db: Session,
    schedule: Schedule,
    owner_id: str,
    builder_state: Optional[BuilderState],
    saved_webhook_id: Optional[str],
) -> List[str]:
    """Point the schedule at its payload source. Returns validation errors."""
    if builder_state is not None:
        try:
            validate_snapshot(builder_state)
        except PayloadValidationError as e:
            return e.errors
        schedule.builder_state = builder_state.to_storage()
        schedule.message_data = build_payload(builder_state)
        schedule.files = [file.model_dump(by_alias=True) for file in builder_state.files]
        schedule.saved_webhook_id = None
        return []

    saved = (
        db.query(SavedWebhook)
        .filter(SavedWebhook.id == saved_webhook_id, SavedWebhook.owner_id == owner_id)
        .first()
    )
    if saved is None:
        return ["Saved webhook not found"]
    try:
        validate_snapshot(hydrate(saved.builder_state))
    except PayloadValidationError as e:
        return e.errors
    schedule.saved_webhook_id = saved.id
    schedule.builder_state = None
    schedule.message_data = saved.message_data
    schedule.files = None
    return []


def create_schedule(db: Session, owner: Owner, data: ScheduleCreate, now: Optional[datetime] = None) -> Schedule:
    now = now or utc_now()
    schedule = Schedule(owner_id=owner.id, name=data.name, execution_count=0, is_active=True)

    errors = webhook_url_errors(data.webhook_url)
    errors += _apply_payload(db, schedule, owner.id, data.builder_state, data.saved_webhook_id)
    try:
        scheduled_at, next_execution_at = plan_first_fire(
            data.recurrence_pattern, data.recurrence_config, data.scheduled_at, now
        )
    except ScheduleValidationError as e:
        errors += e.errors
    if errors:
        raise ScheduleValidationError(errors)

    check_schedule_quota(db, owner)

    schedule.target_url = encrypt_data(data.webhook_url.strip())
    schedule.scheduled_at = scheduled_at
    schedule.next_execution_at = next_execution_at
    schedule.is_recurring = data.is_recurring
    schedule.recurrence_pattern = data.recurrence_pattern
    schedule.recurrence_config = data.recurrence_config
    schedule.max_executions = data.max_executions

    db.add(schedule)
    db.commit()
    db.refresh(schedule)
    log.info(
        f"Created schedule {schedule.id} ({schedule.recurrence_pattern}) for owner {owner.id}, "
        f"first execution at {schedule.next_execution_at.isoformat()}"
    )
    return schedule


def get_schedule(db: Session, owner_id: str, schedule_id: str) -> Schedule:
    schedule = db.query(Schedule).filter(Schedule.id == schedule_id, Schedule.owner_id == owner_id).first()
    if schedule is None:
        raise NotFoundError("Schedule", schedule_id)
    return schedule


def list_schedules(
    db: Session,
    owner_id: str,
    is_active: Optional[bool] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Schedule]:
    query = db.query(Schedule).filter(Schedule.owner_id == owner_id)
    if is_active is not None:
        query = query.filter(Schedule.is_active == is_active)
    return query.order_by(Schedule.created_at.desc()).offset(skip).limit(limit).all()


def update_schedule(
    db: Session,
    owner: Owner,
    schedule_id: str,
    data: ScheduleUpdate,
    now: Optional[datetime] = None,
    storage: Optional[AttachmentStorage] = None,
) -> Schedule:
    now = now or utc_now()
    schedule = get_schedule(db, owner.id, schedule_id)
    fields = data.model_fields_set
    errors: List[str] = []
    previous_files = schedule.files
    previous_timing = (schedule.next_execution_at, schedule.is_active)

    if data.name is not None:
        if data.name.strip():
            schedule.name = data.name.strip()
        else:
            errors.append("Schedule name is required")

    if 'webhook_url' in fields:
        url_errors = webhook_url_errors(data.webhook_url)
        if url_errors:
            errors += url_errors
        else:
            schedule.target_url = encrypt_data(data.webhook_url.strip())

    if data.builder_state is not None or data.saved_webhook_id is not None:
        errors += _apply_payload(db, schedule, owner.id, data.builder_state, data.saved_webhook_id)

    if 'max_executions' in fields:
        schedule.max_executions = data.max_executions

    reactivating = data.is_active is True and not schedule.is_active

    if data.changes_cadence:
        try:
            pattern, config = normalize_recurrence(
                data.recurrence_pattern or schedule.recurrence_pattern,
                data.recurrence_config if data.recurrence_config is not None else schedule.recurrence_config,
            )
            requested_at = data.scheduled_at
            if requested_at is None and pattern == RecurrencePattern.ONCE.value:
                requested_at = schedule.scheduled_at
            scheduled_at, next_execution_at = plan_first_fire(pattern, config, requested_at, now)
        except CronValidationError as e:
            errors.append(str(e))
        except ScheduleValidationError as e:
            errors += e.errors
        else:
            schedule.recurrence_pattern = pattern
            schedule.recurrence_config = config
            schedule.is_recurring = pattern != RecurrencePattern.ONCE.value
            schedule.scheduled_at = scheduled_at
            if schedule.is_active or reactivating:
                schedule.next_execution_at = next_execution_at
    elif reactivating:
        try:
            _, schedule.next_execution_at = plan_first_fire(
                schedule.recurrence_pattern,
                schedule.recurrence_config,
                schedule.scheduled_at if schedule.recurrence_pattern == RecurrencePattern.ONCE.value else None,
                now,
            )
        except ScheduleValidationError as e:
            errors += e.errors

    if errors:
        db.rollback()
        raise ScheduleValidationError(errors)

    if reactivating:
        try:
            check_schedule_quota(db, owner, exclude_id=schedule.id)
        except QuotaExceededError:
            db.rollback()
            raise
        schedule.is_active = True
    elif data.is_active is False:
        schedule.is_active = False
        schedule.next_execution_at = None

    if data.next_execution_at is not None:
        schedule.next_execution_at = _as_utc(data.next_execution_at)

    if schedule.max_executions is not None and schedule.execution_count >= schedule.max_executions:
        schedule.is_active = False
        schedule.next_execution_at = None

    # a re-timed row takes the claim away from any in-flight delivery
    if data.changes_cadence or (schedule.next_execution_at, schedule.is_active) != previous_timing:
        schedule.claim_token = None
        schedule.claimed_until = None

    db.commit()
    db.refresh(schedule)

    released = dropped_files(previous_files, schedule.files)
    if released:
        (storage or AttachmentStorage()).remove(released)

    log.info(
        f"Updated schedule {schedule.id}: active={schedule.is_active}, "
        f"next={schedule.next_execution_at.isoformat() if schedule.next_execution_at else None}"
    )
    return schedule


def run_schedule_now(db: Session, owner: Owner, schedule_id: str, now: Optional[datetime] = None) -> Schedule:
    """Make a schedule due immediately. An ordinary update of next_execution_at."""
    now = now or utc_now()
    return update_schedule(db, owner, schedule_id, ScheduleUpdate(next_execution_at=now), now=now)


def delete_schedule(
    db: Session,
    owner_id: str,
    schedule_id: str,
    storage: Optional[AttachmentStorage] = None,
) -> None:
    schedule = get_schedule(db, owner_id, schedule_id)
    files = dropped_files(schedule.files, None)
    db.delete(schedule)
    db.commit()
    if files:
        (storage or AttachmentStorage()).remove(files)
    log.info(f"Deleted schedule {schedule_id} and released {len(files)} attachment(s)")


def list_executions(
    db: Session,
    owner_id: str,
    schedule_id: str,
    skip: int = 0,
    limit: int = 50,
) -> List[ScheduleExecution]:
    get_schedule(db, owner_id, schedule_id)
    return (
        db.query(ScheduleExecution)
        .filter(ScheduleExecution.schedule_id == schedule_id)
        .order_by(ScheduleExecution.id.desc())
        .offset(skip)
        .limit(limit)
        .all()
    )


def reveal_webhook_url(schedule: Schedule) -> Optional[str]:
    """Decrypted target URL, or None if the stored value cannot be decrypted."""
    try:
        return decrypt_data(schedule.target_url)
    except InvalidToken:
        log.warning(f"Schedule {schedule.id}: stored webhook URL cannot be decrypted")
        return None
