"""Retention for execution history and audit logs."""

from datetime import datetime, timedelta
from typing import Optional
from sqlalchemy.orm import Session
import logging

from webhook_scheduler.config import settings
from webhook_scheduler.database import utc_now
from webhook_scheduler.models.audit_log import AuditLog
from webhook_scheduler.models.schedule_execution import ScheduleExecution

log = logging.getLogger(__name__)


def cleanup_old_executions(db: Session, days_to_keep: Optional[int] = None, now: Optional[datetime] = None) -> int:
    """
    Delete execution rows and audit entries older than the retention window.

    Schedules themselves are never touched; their execution_count keeps the
    full total even after the history rows are gone.

    Returns:
        Number of execution rows deleted
    """
    days_to_keep = days_to_keep or settings.execution_history_days
    cutoff_date = (now or utc_now()) - timedelta(days=days_to_keep)

    deleted = db.query(ScheduleExecution).filter(
        ScheduleExecution.created_at < cutoff_date
    ).delete(synchronize_session=False)

    audit_deleted = db.query(AuditLog).filter(
        AuditLog.created_at < cutoff_date
    ).delete(synchronize_session=False)

    db.commit()

    log.info(
        f"History cleanup: deleted {deleted} execution(s) and {audit_deleted} audit entries "
        f"older than {days_to_keep} days (cutoff: {cutoff_date.isoformat()})"
    )
    return deleted


def get_execution_stats(db: Session, schedule_id: str) -> dict:
    """Success/failure counts and the most recent attempt for one schedule."""
    query = db.query(ScheduleExecution).filter(ScheduleExecution.schedule_id == schedule_id)
    total = query.count()
    succeeded = query.filter(ScheduleExecution.success == True).count()  # noqa: E712
    latest = query.order_by(ScheduleExecution.id.desc()).first()

    return {
        "total": total,
        "succeeded": succeeded,
        "failed": total - succeeded,
        "last_started_at": latest.started_at.isoformat() if latest else None,
        "last_outcome": latest.outcome if latest else None,
    }
