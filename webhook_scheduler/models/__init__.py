"""Database models."""

from webhook_scheduler.models.saved_webhook import SavedWebhook
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.models.schedule_execution import ScheduleExecution
from webhook_scheduler.models.audit_log import AuditLog

__all__ = [
    "SavedWebhook",
    "Schedule",
    "ScheduleExecution",
    "AuditLog",
]
