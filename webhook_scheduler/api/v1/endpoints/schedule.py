"""Schedule endpoints: CRUD, run-now and execution history."""

from typing import Annotated, List, Optional
from datetime import datetime
import logging

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from webhook_scheduler.auth import get_current_owner
from webhook_scheduler.database import get_db, utc_now
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.schemas.schedule import (
    ScheduleCreate,
    ScheduleExecutionResponse,
    ScheduleResponse,
    ScheduleUpdate,
)
from webhook_scheduler.services import schedule_service
from webhook_scheduler.services.execution_cleanup import get_execution_stats
from webhook_scheduler.services.recurrence import RecurrencePattern, upcoming_fire_times
from webhook_scheduler.utils.audit_logger import create_audit_log
from webhook_scheduler.utils.encrypt import mask_webhook_url

log = logging.getLogger(__name__)
router = APIRouter()


def compute_next_runs(schedule: Schedule, count: int = 3) -> List[datetime]:
    """Preview of upcoming fires, starting with the stored next execution."""
    if not schedule.is_active or schedule.next_execution_at is None:
        return []
    runs = [schedule.next_execution_at]
    if schedule.recurrence_pattern == RecurrencePattern.CRON.value:
        runs += upcoming_fire_times(
            schedule.recurrence_pattern,
            schedule.recurrence_config,
            max(schedule.next_execution_at, utc_now()),
            count=count - 1,
        )
    return runs


def schedule_to_response(schedule: Schedule) -> ScheduleResponse:
    return ScheduleResponse(
        id=schedule.id,
        name=schedule.name,
        webhook_url=mask_webhook_url(schedule_service.reveal_webhook_url(schedule)),
        saved_webhook_id=schedule.saved_webhook_id,
        builder_state=schedule.builder_state,
        files=schedule.files or [],
        scheduled_at=schedule.scheduled_at,
        is_recurring=schedule.is_recurring,
        recurrence_pattern=schedule.recurrence_pattern,
        recurrence_config=schedule.recurrence_config or {},
        max_executions=schedule.max_executions,
        execution_count=schedule.execution_count,
        next_execution_at=schedule.next_execution_at,
        last_executed_at=schedule.last_executed_at,
        is_active=schedule.is_active,
        next_runs=compute_next_runs(schedule),
        created_at=schedule.created_at,
        updated_at=schedule.updated_at,
    )


@router.post("/", response_model=ScheduleResponse, status_code=status.HTTP_201_CREATED)
async def create_schedule(
    http_request: Request,
    payload: ScheduleCreate,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    """Create a one-time or recurring schedule."""
    schedule = schedule_service.create_schedule(db, owner, payload)
    create_audit_log(
        db=db,
        request=http_request,
        action="schedule_created",
        entity_type="schedule",
        entity_id=schedule.id,
        owner_id=owner.id,
        details={"recurrence_pattern": schedule.recurrence_pattern, "max_executions": schedule.max_executions},
    )
    return schedule_to_response(schedule)


@router.get("/", response_model=List[ScheduleResponse])
async def list_schedules(
    owner: Annotated[Owner, Depends(get_current_owner)],
    is_active: Optional[bool] = Query(None, description="Filter by active state"),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
):
    schedules = schedule_service.list_schedules(db, owner.id, is_active=is_active, skip=skip, limit=limit)
    return [schedule_to_response(schedule) for schedule in schedules]


@router.get("/{schedule_id}", response_model=ScheduleResponse)
async def get_schedule(
    schedule_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    return schedule_to_response(schedule_service.get_schedule(db, owner.id, schedule_id))


@router.put("/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    http_request: Request,
    schedule_id: str,
    update: ScheduleUpdate,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    """Apply the fields present in the request; cadence changes re-derive the next fire."""
    schedule = schedule_service.update_schedule(db, owner, schedule_id, update)
    create_audit_log(
        db=db,
        request=http_request,
        action="schedule_updated",
        entity_type="schedule",
        entity_id=schedule.id,
        owner_id=owner.id,
        details={"fields": sorted(update.model_fields_set - {"webhook_url"})},
    )
    return schedule_to_response(schedule)


@router.post("/{schedule_id}/run-now", response_model=ScheduleResponse)
async def run_schedule_now(
    http_request: Request,
    schedule_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    """Make the schedule due now; the next dispatcher tick delivers it."""
    schedule = schedule_service.run_schedule_now(db, owner, schedule_id)
    create_audit_log(
        db=db,
        request=http_request,
        action="schedule_run_now",
        entity_type="schedule",
        entity_id=schedule.id,
        owner_id=owner.id,
    )
    return schedule_to_response(schedule)


@router.delete("/{schedule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_schedule(
    http_request: Request,
    schedule_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    schedule_service.delete_schedule(db, owner.id, schedule_id)
    create_audit_log(
        db=db,
        request=http_request,
        action="schedule_deleted",
        entity_type="schedule",
        entity_id=schedule_id,
        owner_id=owner.id,
    )


@router.get("/{schedule_id}/executions", response_model=List[ScheduleExecutionResponse])
async def list_executions(
    schedule_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Execution history, newest first."""
    return schedule_service.list_executions(db, owner.id, schedule_id, skip=skip, limit=limit)


@router.get("/{schedule_id}/executions/stats")
async def execution_stats(
    schedule_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    schedule_service.get_schedule(db, owner.id, schedule_id)
    return get_execution_stats(db, schedule_id)
