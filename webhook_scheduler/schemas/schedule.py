"""Schedule schemas for API requests and responses."""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from webhook_scheduler.schemas.builder import BuilderState
from webhook_scheduler.services.recurrence import (
    CronValidationError,
    EDITOR_PATTERNS,
    RecurrencePattern,
    normalize_recurrence,
)

RECURRENCE_PATTERNS = (RecurrencePattern.ONCE.value, RecurrencePattern.CRON.value) + EDITOR_PATTERNS


def _check_pattern(v: Optional[str]) -> Optional[str]:
    if v is not None and v not in RECURRENCE_PATTERNS:
        raise ValueError(f"Recurrence pattern must be one of: {', '.join(RECURRENCE_PATTERNS)}")
    return v


class ScheduleCreate(BaseModel):
    """
    New schedule.

    The payload comes either from an embedded builder snapshot or from a saved
    webhook referenced by id. Editor patterns (daily, weekly, monthly, custom)
    are collapsed to 'cron' here, so the service only ever sees 'once' or 'cron'.
    """

    name: str = Field(..., min_length=1, max_length=100)
    webhook_url: str = Field(..., min_length=1, description="Delivery target, stored encrypted")
    builder_state: Optional[BuilderState] = Field(None, description="Embedded message snapshot")
    saved_webhook_id: Optional[str] = Field(None, description="Saved webhook to deliver instead of a snapshot")
    scheduled_at: Optional[datetime] = Field(None, description="First fire; required for one-time schedules")
    recurrence_pattern: str = Field(default="once", description="once, cron, daily, weekly, monthly or custom")
    recurrence_config: Dict[str, Any] = Field(default_factory=dict)
    max_executions: Optional[int] = Field(None, ge=1, description="Stop after this many attempts")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('Schedule name is required')
        return v.strip()

    @field_validator('recurrence_pattern')
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        return _check_pattern(v)

    @model_validator(mode='after')
    def normalize_cadence(self):
        try:
            self.recurrence_pattern, self.recurrence_config = normalize_recurrence(
                self.recurrence_pattern, self.recurrence_config
            )
        except CronValidationError as e:
            raise ValueError(str(e))
        if self.recurrence_pattern == RecurrencePattern.ONCE.value and self.scheduled_at is None:
            raise ValueError('One-time schedules require scheduled_at')
        if self.builder_state is None and not self.saved_webhook_id:
            raise ValueError('Provide builder_state or saved_webhook_id')
        return self

    @property
    def is_recurring(self) -> bool:
        return self.recurrence_pattern != RecurrencePattern.ONCE.value


class ScheduleUpdate(BaseModel):
    """
    Schedule update - all fields optional.

    Only fields present in the request are applied; max_executions may be
    explicitly set to null to lift the limit. next_execution_at overrides the
    derived next fire (the run-now path).
    """

    name: Optional[str] = Field(None, min_length=1, max_length=100)
    webhook_url: Optional[str] = None
    builder_state: Optional[BuilderState] = None
    saved_webhook_id: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    recurrence_pattern: Optional[str] = None
    recurrence_config: Optional[Dict[str, Any]] = None
    max_executions: Optional[int] = Field(None, ge=1)
    is_active: Optional[bool] = None
    next_execution_at: Optional[datetime] = None

    @field_validator('recurrence_pattern')
    @classmethod
    def validate_pattern(cls, v: Optional[str]) -> Optional[str]:
        return _check_pattern(v)

    @property
    def changes_cadence(self) -> bool:
        return bool({'scheduled_at', 'recurrence_pattern', 'recurrence_config'} & self.model_fields_set)


class ScheduleResponse(BaseModel):
    """Schedule with the webhook URL masked and a preview of upcoming fires."""

    id: str
    name: str
    webhook_url: Optional[str] = None
    saved_webhook_id: Optional[str] = None
    builder_state: Optional[Dict[str, Any]] = None
    files: List[Dict[str, Any]] = Field(default_factory=list)
    scheduled_at: datetime
    is_recurring: bool
    recurrence_pattern: str
    recurrence_config: Dict[str, Any] = Field(default_factory=dict)
    max_executions: Optional[int] = None
    execution_count: int
    next_execution_at: Optional[datetime] = None
    last_executed_at: Optional[datetime] = None
    is_active: bool
    next_runs: List[datetime] = Field(default_factory=list, description="Next 3 run times")
    created_at: datetime
    updated_at: datetime


class ScheduleExecutionResponse(BaseModel):
    id: int
    schedule_id: str
    execution_number: int
    started_at: datetime
    finished_at: Optional[datetime] = None
    success: bool
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    outcome: str
    next_execution_at: Optional[datetime] = None

    class Config:
        from_attributes = True
