from typing import Annotated, List

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from webhook_scheduler.auth import get_current_owner
from webhook_scheduler.database import get_db
from webhook_scheduler.schemas.auth import Owner
from webhook_scheduler.schemas.saved_webhook import (
    SavedWebhookCreate,
    SavedWebhookResponse,
    SavedWebhookUpdate,
)
from webhook_scheduler.services import saved_webhook_service
from webhook_scheduler.utils.audit_logger import create_audit_log

router = APIRouter()


@router.post("/", response_model=SavedWebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_saved_webhook(
    http_request: Request,
    payload: SavedWebhookCreate,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    saved = saved_webhook_service.create_saved_webhook(db, owner, payload)
    create_audit_log(
        db=db,
        request=http_request,
        action="saved_webhook_created",
        entity_type="saved_webhook",
        entity_id=saved.id,
        owner_id=owner.id,
    )
    return saved


@router.get("/", response_model=List[SavedWebhookResponse])
async def list_saved_webhooks(
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    return saved_webhook_service.list_saved_webhooks(db, owner.id)


@router.get("/{saved_webhook_id}", response_model=SavedWebhookResponse)
async def get_saved_webhook(
    saved_webhook_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    return saved_webhook_service.get_saved_webhook(db, owner.id, saved_webhook_id)


@router.put("/{saved_webhook_id}", response_model=SavedWebhookResponse)
async def update_saved_webhook(
    http_request: Request,
    saved_webhook_id: str,
    update: SavedWebhookUpdate,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    saved = saved_webhook_service.update_saved_webhook(db, owner, saved_webhook_id, update)
    create_audit_log(
        db=db,
        request=http_request,
        action="saved_webhook_updated",
        entity_type="saved_webhook",
        entity_id=saved.id,
        owner_id=owner.id,
    )
    return saved


@router.delete("/{saved_webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_saved_webhook(
    http_request: Request,
    saved_webhook_id: str,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db),
):
    """Deleting a saved webhook also deletes the schedules that use it."""
    removed = saved_webhook_service.delete_saved_webhook(db, owner.id, saved_webhook_id)
    create_audit_log(
        db=db,
        request=http_request,
        action="saved_webhook_deleted",
        entity_type="saved_webhook",
        entity_id=saved_webhook_id,
        owner_id=owner.id,
        details={"schedules_deleted": removed},
    )
