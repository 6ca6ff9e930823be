from datetime import datetime
from typing import List, Annotated, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.orm import Session

from webhook_scheduler.auth import get_current_owner
from webhook_scheduler.database import get_db
from webhook_scheduler.models.audit_log import AuditLog
from webhook_scheduler.schemas.audit import AuditLogInDB
from webhook_scheduler.schemas.auth import Owner

router = APIRouter()


@router.get("/", response_model=List[AuditLogInDB])
async def read_audit_logs(
    owner: Annotated[Owner, Depends(get_current_owner)],
    skip: int = 0,
    limit: int = 100,
    action: Optional[str] = Query(None, description="Filter by specific action"),
    entity_type: Optional[str] = Query(None, description="Filter by entity type: 'schedule' or 'saved_webhook'"),
    entity_id: Optional[str] = Query(None, description="Filter by entity id"),
    start_date: Optional[str] = Query(None, description="Filter created_at >= YYYY-MM-DD"),
    end_date: Optional[str] = Query(None, description="Filter created_at <= YYYY-MM-DD"),
    db: Session = Depends(get_db)
):
    """The caller's own audit trail, newest first."""
    query = db.query(AuditLog).filter(AuditLog.owner_id == owner.id).order_by(AuditLog.created_at.desc())

    if action:
        query = query.filter(AuditLog.action == action)
    if entity_type:
        query = query.filter(AuditLog.entity_type == entity_type)
    if entity_id:
        query = query.filter(AuditLog.entity_id == entity_id)
    if start_date:
        query = query.filter(AuditLog.created_at >= datetime.fromisoformat(f"{start_date}T00:00:00"))
    if end_date:
        query = query.filter(AuditLog.created_at <= datetime.fromisoformat(f"{end_date}T23:59:59"))

    return query.offset(skip).limit(limit).all()


@router.get("/{log_id}", response_model=AuditLogInDB)
async def read_audit_log(
    log_id: int,
    owner: Annotated[Owner, Depends(get_current_owner)],
    db: Session = Depends(get_db)
):
    db_log = db.query(AuditLog).filter(AuditLog.id == log_id, AuditLog.owner_id == owner.id).first()
    if db_log is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Audit log not found")
    return db_log
