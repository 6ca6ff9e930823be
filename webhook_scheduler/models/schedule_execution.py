"""Execution history for schedule firings."""

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from webhook_scheduler.database import Base, UTCDateTime, utc_now


class ScheduleExecution(Base):
    """One firing attempt of a schedule, successful or not."""

    __tablename__ = "schedule_executions"

    id = Column(Integer, primary_key=True, index=True)
    schedule_id = Column(String(36), ForeignKey("schedules.id", ondelete="CASCADE"), nullable=False, index=True)

    # Execution details
    execution_number = Column(Integer, nullable=False)
    started_at = Column(UTCDateTime, nullable=False)
    finished_at = Column(UTCDateTime, nullable=True)
    success = Column(Boolean, default=False, nullable=False)
    status_code = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)

    # Resulting schedule state
    outcome = Column(String(30), nullable=False)  # 'rescheduled', 'exhausted', 'failed_terminal', 'superseded'
    next_execution_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utc_now, nullable=False)

    schedule = relationship("Schedule", back_populates="executions")

    __table_args__ = (
        Index('idx_schedule_executions_created_at', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<ScheduleExecution(id={self.id}, schedule='{self.schedule_id}', "
            f"success={self.success}, outcome='{self.outcome}')>"
        )
