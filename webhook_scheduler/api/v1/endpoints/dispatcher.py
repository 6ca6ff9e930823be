"""Trigger interface for an external periodic timer."""

from datetime import datetime
from typing import Optional
import logging

from fastapi import APIRouter, Depends, Query

from webhook_scheduler.auth import verify_trigger_token
from webhook_scheduler.scheduler import get_dispatcher
from webhook_scheduler.schemas.dispatcher import ExecutionReportResponse, TickResponse
from webhook_scheduler.services.dispatcher import ScheduleDispatcher

log = logging.getLogger(__name__)
router = APIRouter()


@router.post("/tick", response_model=TickResponse, dependencies=[Depends(verify_trigger_token)])
async def run_tick(
    now: Optional[datetime] = Query(None, description="Evaluate due-ness at this instant instead of the clock"),
    dispatcher: ScheduleDispatcher = Depends(get_dispatcher),
):
    """Run one dispatcher pass and report what it did."""
    log.info(f"Dispatcher tick triggered via API{f' (now={now.isoformat()})' if now else ''}")
    result = await dispatcher.run_tick(now=now)
    return TickResponse(
        started_at=result.started_at,
        due=result.due,
        processed=result.processed,
        skipped=result.skipped,
        errors=result.errors,
        reports=[
            ExecutionReportResponse(
                schedule_id=report.schedule_id,
                name=report.name,
                success=report.success,
                outcome=report.outcome.value,
                execution_count=report.execution_count,
                status_code=report.status_code,
                error=report.error,
                next_execution_at=report.next_execution_at,
                continues=report.continues,
            )
            for report in result.reports
        ],
    )
