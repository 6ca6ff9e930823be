"""Saved webhooks: reusable message snapshots that schedules can reference."""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from webhook_scheduler.config import settings
from webhook_scheduler.exceptions import NotFoundError, QuotaExceededError, ScheduleValidationError
from webhook_scheduler.models.saved_webhook import SavedWebhook
from webhook_scheduler.models.schedule import Schedule
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.schemas.builder import BuilderState
from webhook_scheduler.schemas.saved_webhook import SavedWebhookCreate, SavedWebhookUpdate
from webhook_scheduler.services.attachment_storage import AttachmentStorage, dropped_files
from webhook_scheduler.services.payload_serializer import (
    PayloadValidationError,
    build_payload,
    validate_snapshot,
)

log = logging.getLogger(__name__)


def _apply_snapshot(saved: SavedWebhook, snapshot: BuilderState) -> None:
    try:
        validate_snapshot(snapshot)
    except PayloadValidationError as e:
        raise ScheduleValidationError(e.errors)
    saved.builder_state = snapshot.to_storage()
    saved.message_data = build_payload(snapshot)
    saved.files = [file.model_dump(by_alias=True) for file in snapshot.files]


def count_saved_webhooks(db: Session, owner_id: str) -> int:
    return db.query(SavedWebhook).filter(SavedWebhook.owner_id == owner_id).count()


def create_saved_webhook(db: Session, owner: Owner, data: SavedWebhookCreate) -> SavedWebhook:
    if count_saved_webhooks(db, owner.id) >= settings.max_saved_webhooks:
        raise QuotaExceededError(f"You can save at most {settings.max_saved_webhooks} webhooks")

    saved = SavedWebhook(owner_id=owner.id, name=data.name)
    _apply_snapshot(saved, data.builder_state)
    db.add(saved)
    db.commit()
    db.refresh(saved)
    log.info(f"Saved webhook {saved.id} created for owner {owner.id}")
    return saved


def get_saved_webhook(db: Session, owner_id: str, saved_webhook_id: str) -> SavedWebhook:
    saved = (
        db.query(SavedWebhook)
        .filter(SavedWebhook.id == saved_webhook_id, SavedWebhook.owner_id == owner_id)
        .first()
    )
    if saved is None:
        raise NotFoundError("Saved webhook", saved_webhook_id)
    return saved


def list_saved_webhooks(db: Session, owner_id: str) -> List[SavedWebhook]:
    return (
        db.query(SavedWebhook)
        .filter(SavedWebhook.owner_id == owner_id)
        .order_by(SavedWebhook.updated_at.desc())
        .all()
    )


def update_saved_webhook(
    db: Session,
    owner: Owner,
    saved_webhook_id: str,
    data: SavedWebhookUpdate,
    storage: Optional[AttachmentStorage] = None,
) -> SavedWebhook:
    """Schedules referencing this webhook pick up the new snapshot at their next fire."""
    saved = get_saved_webhook(db, owner.id, saved_webhook_id)
    previous_files = saved.files

    if data.name is not None:
        if not data.name.strip():
            raise ScheduleValidationError(["Name is required"])
        saved.name = data.name.strip()
    if data.builder_state is not None:
        try:
            _apply_snapshot(saved, data.builder_state)
        except ScheduleValidationError:
            db.rollback()
            raise

    db.commit()
    db.refresh(saved)

    released = dropped_files(previous_files, saved.files)
    if released:
        (storage or AttachmentStorage()).remove(released)
    return saved


def delete_saved_webhook(
    db: Session,
    owner_id: str,
    saved_webhook_id: str,
    storage: Optional[AttachmentStorage] = None,
) -> int:
    """Delete a saved webhook and every schedule that references it. Returns the schedule count."""
    saved = get_saved_webhook(db, owner_id, saved_webhook_id)
    schedules = db.query(Schedule).filter(Schedule.saved_webhook_id == saved.id).all()

    files = dropped_files(saved.files, None)
    for schedule in schedules:
        files += dropped_files(schedule.files, None)

    db.delete(saved)
    db.commit()

    if files:
        (storage or AttachmentStorage()).remove(files)
    log.info(f"Deleted saved webhook {saved_webhook_id} with {len(schedules)} referencing schedule(s)")
    return len(schedules)
