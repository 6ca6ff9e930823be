from fastapi import APIRouter

from webhook_scheduler.api.v1.endpoints import audit_logs, dispatcher, saved_webhooks, schedule

api_router = APIRouter()
api_router.include_router(schedule.router, prefix="/schedules", tags=["schedules"])
api_router.include_router(saved_webhooks.router, prefix="/saved-webhooks", tags=["saved-webhooks"])
api_router.include_router(dispatcher.router, prefix="/dispatcher", tags=["dispatcher"])
api_router.include_router(audit_logs.router, prefix="/audit-logs", tags=["audit-logs"])
