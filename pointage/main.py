import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pointage.errors import ApiError, error_response
from pointage.logging_utils import setup_json_logging
from pointage.routers import attendance
from pointage.scheduler import SchedulerContext
from pointage.services.broadcast import get_broadcast_hub
from pointage.services.email import EmailChannel
from pointage.settings import get_cors_origins, get_settings

settings = get_settings()
setup_json_logging(settings.log_level.upper())
logger = logging.getLogger("pointage.request")
scheduler_logger = logging.getLogger("pointage.scheduler")

app = FastAPI(title=settings.app_name, version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "worker_id": getattr(request.state, "worker_id", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(attendance.router)


@app.on_event("startup")
async def start_scheduler() -> None:
    if not settings.scheduler_enabled:
        scheduler_logger.info("scheduler_disabled")
        return
    if getattr(app.state, "scheduler", None) is not None:
        return

    scheduler = SchedulerContext(hub=get_broadcast_hub())
    app.state.scheduler = scheduler
    await scheduler.start()

    email_status = EmailChannel().config_status()
    if email_status["enabled"] and email_status["missing_fields"]:
        scheduler_logger.warning(
            "email_channel_not_configured",
            extra={"missing_fields": email_status["missing_fields"]},
        )


@app.on_event("shutdown")
async def stop_scheduler() -> None:
    scheduler: SchedulerContext | None = getattr(app.state, "scheduler", None)
    if scheduler is not None:
        await scheduler.shutdown()
    app.state.scheduler = None


@app.get("/health")
def health() -> dict[str, Any]:
    scheduler: SchedulerContext | None = getattr(app.state, "scheduler", None)
    return {
        "status": "ok",
        "scheduler": scheduler.status() if scheduler is not None else {"running": False},
        "event_subscribers": get_broadcast_hub().subscriber_count,
        "email_channel": EmailChannel().config_status(),
    }
