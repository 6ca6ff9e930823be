"""Main FastAPI application."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from webhook_scheduler import __version__
from webhook_scheduler.api.v1.api import api_router
from webhook_scheduler.config import settings
from webhook_scheduler.exceptions import NotFoundError, QuotaExceededError, ScheduleValidationError
from webhook_scheduler.scheduler import shutdown_scheduler, start_scheduler
from webhook_scheduler.utils.log_config import configure_logging

configure_logging(settings.log_level)

log = logging.getLogger(__name__)

app = FastAPI(
    title="Webhook Scheduler",
    description="Scheduled and recurring webhook message delivery",
    version=__version__
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/api/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": __version__,
        "scheduler_enabled": settings.scheduler_enabled,
    }


@app.get("/")
async def root():
    """Root endpoint - points at the docs."""
    return {
        "message": "Webhook Scheduler API",
        "version": __version__,
        "docs": "/docs"
    }


app.include_router(api_router, prefix=settings.api_v1_str)


@app.exception_handler(ScheduleValidationError)
async def validation_exception_handler(request: Request, exc: ScheduleValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": exc.errors}
    )


@app.exception_handler(QuotaExceededError)
async def quota_exception_handler(request: Request, exc: QuotaExceededError):
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"detail": str(exc)}
    )


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return JSONResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        content={"detail": str(exc)}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    log.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )


@app.on_event("startup")
async def startup_event():
    if settings.scheduler_enabled:
        start_scheduler()
    else:
        log.info("Scheduler disabled; expecting an external trigger on /dispatcher/tick")


@app.on_event("shutdown")
async def shutdown_event():
    await shutdown_scheduler()


if __name__ == "__main__":
    import uvicorn

    uvicorn_level = "debug" if settings.log_level.upper() == "VERBOSE" else settings.log_level.lower()
    uvicorn.run(app, host="0.0.0.0", port=8000, log_level=uvicorn_level)
