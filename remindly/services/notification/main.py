"""Notification engine HTTP surface and reminder scheduler lifecycle."""

from contextlib import asynccontextmanager
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from remindly.common.config import settings
from remindly.common.db import Base, SessionLocal, engine
from remindly.common.errors import MissingField, PersistenceUnavailable
from remindly.common.logging import configure_logging, logger, trace_id_ctx
from remindly.common.metrics import http_request_duration_seconds, http_requests_total, metrics_response
from remindly.common.startup import log_startup_config
from remindly.common.tracing import instrument_app, setup_tracing
from remindly.services.notification.appointments import HttpAppointmentStore
from remindly.services.notification.schemas import (
    DeliveryAttemptView,
    DeliveryOutcome,
    NotificationRequest,
    ScanReport,
    UsageSnapshot,
)
from remindly.services.notification.service import NotificationEngine
from remindly.services.provider_adapter.service import build_channels

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings,
    [
        "SERVICE_NAME",
        "DATABASE_URL",
        "APPOINTMENTS_API_URL",
        "TWILIO_ACCOUNT_SID",
        "TEXTBELT_API_KEY",
        "BREVO_API_KEY",
    ],
)
notifications = NotificationEngine(
    SessionLocal,
    build_channels(settings),
    HttpAppointmentStore.from_settings(settings),
    settings=settings,
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Create tables, then run the reminder scheduler for the app's lifetime."""

    Base.metadata.create_all(bind=engine)
    notifications.start()
    yield
    await notifications.stop()


app = FastAPI(title="Remindly Notification Engine", lifespan=lifespan)
instrument_app(app)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """Bind the caller's trace id and record request count and latency."""

    trace_id_ctx.set(request.headers.get("x-trace-id") or str(uuid4()))
    start = perf_counter()
    route = request.url.path
    method = request.method
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        route_obj = request.scope.get("route")
        if route_obj is not None and getattr(route_obj, "path", None):
            route = route_obj.path
        return response
    finally:
        http_request_duration_seconds.labels(
            service=settings.service_name,
            route=route,
            method=method,
        ).observe(max(0.0, perf_counter() - start))
        http_requests_total.labels(
            service=settings.service_name,
            route=route,
            method=method,
            status_code=str(status_code),
        ).inc()


@app.exception_handler(MissingField)
async def missing_field_handler(_: Request, exc: MissingField):
    return JSONResponse(status_code=422, content={"detail": str(exc), "missing": exc.fields})


@app.exception_handler(PersistenceUnavailable)
async def persistence_unavailable_handler(_: Request, exc: PersistenceUnavailable):
    logger.error("persistence unavailable: %s", exc)
    return JSONResponse(status_code=503, content={"detail": "delivery store unavailable"})


@app.post("/notifications", response_model=DeliveryOutcome)
async def send_notification(req: NotificationRequest):
    """Deliver one notification now.

    A failed delivery is reported in the body with status FAILED; the
    business event that triggered it is not rolled back.
    """

    return await notifications.notify_now(req)


@app.get("/usage", response_model=list[UsageSnapshot])
def usage_all():
    return notifications.usage_all()


@app.get("/usage/{channel}", response_model=UsageSnapshot)
def usage(channel: str):
    try:
        return notifications.usage(channel)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"unknown channel: {channel}")


@app.get("/deliveries", response_model=list[DeliveryAttemptView])
def recent_deliveries(limit: int = Query(default=50, ge=1, le=500), channel: str | None = None):
    return notifications.recent_attempts(limit=limit, channel=channel)


@app.get("/deliveries/{dedup_key}", response_model=list[DeliveryAttemptView])
def deliveries(dedup_key: str):
    attempts = notifications.attempts(dedup_key)
    if not attempts:
        raise HTTPException(status_code=404, detail="no delivery attempts for dedup key")
    return attempts


@app.post("/reminders/scan", response_model=ScanReport)
async def scan_reminders():
    """Run one reminder scan outside the regular schedule."""

    report = await notifications.scan_now()
    if report is None:
        raise HTTPException(status_code=502, detail="reminder scan failed; see logs")
    return report


@app.get("/health")
def health():
    """Container health probe endpoint."""

    return {"ok": True, "scheduler_running": notifications.scheduler.is_running}


@app.get("/metrics")
def metrics():
    """Prometheus scrape endpoint."""

    return metrics_response()
