"""Saved webhook model: reusable message snapshots."""

import uuid

from sqlalchemy import Column, String
from sqlalchemy.orm import relationship

from webhook_scheduler.database import Base, JSONType, UTCDateTime, utc_now


class SavedWebhook(Base):
    """Reusable builder snapshot that schedules can reference."""

    __tablename__ = "saved_webhooks"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    owner_id = Column(String(64), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    builder_state = Column(JSONType, nullable=True)
    message_data = Column(JSONType, nullable=True)
    files = Column(JSONType, nullable=True)
    created_at = Column(UTCDateTime, default=utc_now, nullable=False)
    updated_at = Column(UTCDateTime, default=utc_now, onupdate=utc_now, nullable=False)

    schedules = relationship(
        "Schedule",
        back_populates="saved_webhook",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<SavedWebhook(id={self.id}, name='{self.name}')>"
