"""Schedule model: one persisted delivery commitment."""

import uuid

from sqlalchemy import Column, Integer, String, Boolean, Text, ForeignKey, Index
from sqlalchemy.orm import relationship

from webhook_scheduler.database import Base, JSONType, UTCDateTime, utc_now


class Schedule(Base):
    """Scheduled or recurring webhook delivery."""

    __tablename__ = "schedules"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    target_url = Column(Text, nullable=False)  # Encrypted

    # Payload source: embedded snapshot or reference to a saved webhook
    saved_webhook_id = Column(String(36), ForeignKey("saved_webhooks.id", ondelete="CASCADE"), nullable=True, index=True)
    builder_state = Column(JSONType, nullable=True)
    message_data = Column(JSONType, nullable=True)  # Wire payload materialized at save time
    files = Column(JSONType, nullable=True)

    # Cadence
    scheduled_at = Column(UTCDateTime, nullable=False)
    is_recurring = Column(Boolean, default=False, nullable=False)
    recurrence_pattern = Column(String(20), default="once", nullable=False)  # 'once' | 'cron'
    recurrence_config = Column(JSONType, nullable=True)
    max_executions = Column(Integer, nullable=True)

    # Execution state
    execution_count = Column(Integer, default=0, nullable=False)
    next_execution_at = Column(UTCDateTime, nullable=True)
    last_executed_at = Column(UTCDateTime, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    claim_token = Column(String(36), nullable=True)
    claimed_until = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    saved_webhook = relationship("SavedWebhook", back_populates="schedules")
    executions = relationship(
        "ScheduleExecution",
        back_populates="schedule",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ScheduleExecution.id",
    )

    __table_args__ = (
        Index('idx_schedules_due', 'is_active', 'next_execution_at'),
    )

    def __repr__(self):
        return (
            f"<Schedule(id={self.id}, pattern='{self.recurrence_pattern}', active={self.is_active}, "
            f"next={self.next_execution_at}, count={self.execution_count})>"
        )
