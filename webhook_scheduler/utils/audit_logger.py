"""Audit logging helper for consistent audit trail creation."""

from typing import Optional, Dict, Any
from fastapi import Request
from sqlalchemy.orm import Session

from webhook_scheduler.models.audit_log import AuditLog
from webhook_scheduler.utils.ip_extractor import get_client_ip, get_user_agent


def create_audit_log(
    db: Session,
    request: Optional[Request],
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    owner_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> AuditLog:
    """
    Create audit log entry with automatic IP and user agent extraction.

    Args:
        db: Database session
        request: Incoming request, or None for actions taken by operator scripts
        action: Action being performed (e.g., 'schedule_created', 'schedule_run_now')
        entity_type: 'schedule' or 'saved_webhook'
        entity_id: ID of affected entity
        owner_id: Owner performing the action
        details: Additional context as JSON

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        owner_id=owner_id,
        details=details,
        ip_address=get_client_ip(request) if request is not None else None,
        user_agent=get_user_agent(request) if request is not None else None,
    )

    db.add(audit_log)
    db.commit()
    db.refresh(audit_log)

    return audit_log
