"""Audit log model for owner actions."""

from sqlalchemy import Column, Integer, String, Index

from webhook_scheduler.database import Base, JSONType, UTCDateTime, utc_now


class AuditLog(Base):
    """Audit trail for schedule and saved webhook changes."""

    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)

    # Action details
    action = Column(String(100), nullable=False)  # 'schedule_created', 'schedule_run_now', ...
    entity_type = Column(String(50), nullable=True)  # 'schedule', 'saved_webhook'
    entity_id = Column(String(36), nullable=True)

    # Owner and context
    owner_id = Column(String(64), nullable=True, index=True)
    details = Column(JSONType, nullable=True)
    ip_address = Column(String(45), nullable=True)  # Supports IPv6
    user_agent = Column(String, nullable=True)

    created_at = Column(UTCDateTime, default=utc_now, nullable=False, index=True)

    __table_args__ = (
        Index('idx_audit_logs_action', 'action'),
    )

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity='{self.entity_type}')>"
