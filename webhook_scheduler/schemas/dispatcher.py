from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class ExecutionReportResponse(BaseModel):
    schedule_id: str
    name: str
    success: bool
    outcome: str
    execution_count: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    next_execution_at: Optional[datetime] = None
    continues: bool


class TickResponse(BaseModel):
    """Summary of one dispatcher pass."""
    started_at: datetime
    due: int
    processed: int
    skipped: int = Field(0, description="Due rows claimed by a concurrent pass")
    errors: int = 0
    reports: List[ExecutionReportResponse] = Field(default_factory=list)
