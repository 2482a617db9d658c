"""FastAPI application exposing the monitor to the view layer."""

import logging
from contextlib import asynccontextmanager
from typing import List

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest
from pydantic import BaseModel, Field
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address

from .client import RelayClient
from .config import settings
from .models import MonitorPhase, MonitorSnapshot
from .monitor import TransactionMonitor


logger = logging.getLogger(__name__)

# Prometheus counter to track API requests by method, endpoint and status code
REQUEST_COUNTER = Counter(
    "api_requests_total",
    "Total API requests",
    ["method", "endpoint", "status"],
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.monitor = TransactionMonitor(RelayClient())
    try:
        yield
    finally:
        app.state.monitor.stop()


limiter = Limiter(key_func=get_remote_address)
app = FastAPI(title=settings.api_title, lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log incoming requests and their outcomes while updating metrics."""
    logger.info("request %s %s", request.method, request.url.path)
    try:
        response = await call_next(request)
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status=str(response.status_code),
        ).inc()
        logger.info(
            "response %s %s status %s",
            request.method,
            request.url.path,
            response.status_code,
        )
        return response
    except Exception:
        REQUEST_COUNTER.labels(
            method=request.method,
            endpoint=request.url.path,
            status="500",
        ).inc()
        logger.exception(
            "error handling %s %s", request.method, request.url.path
        )
        raise


def get_monitor(request: Request) -> TransactionMonitor:
    return request.app.state.monitor


class StartRequest(BaseModel):
    """Request body for starting a monitoring session."""

    input: str = Field(..., min_length=1, description="Transaction hash or explorer URL")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/metrics")
def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/chains", response_model=List[str])
def list_chains(monitor: TransactionMonitor = Depends(get_monitor)):
    """Return the display names of chains accepting deposits."""

    return monitor.directory.supported_display_names()


@app.get("/monitor", response_model=MonitorSnapshot)
async def get_monitor_state(monitor: TransactionMonitor = Depends(get_monitor)):
    """Return the current monitoring state."""

    return monitor.snapshot()


@app.post("/monitor", response_model=MonitorSnapshot)
@limiter.limit(settings.start_rate_limit)
async def start_monitoring(
    request: Request,
    payload: StartRequest,
    monitor: TransactionMonitor = Depends(get_monitor),
):
    """Re-index a transaction and start watching its status."""

    snapshot = await monitor.start(payload.input)
    if snapshot.phase == MonitorPhase.FAILED:
        raise HTTPException(status_code=400, detail=snapshot.error)
    return snapshot


@app.post("/monitor/refresh", response_model=MonitorSnapshot)
async def refresh_monitoring(monitor: TransactionMonitor = Depends(get_monitor)):
    """Check the status once without waiting for the next poll."""

    snapshot = await monitor.manual_refresh()
    if snapshot is None:
        raise HTTPException(status_code=404, detail="No transaction is being monitored")
    return snapshot


@app.delete("/monitor", response_model=MonitorSnapshot)
async def stop_monitoring(monitor: TransactionMonitor = Depends(get_monitor)):
    """Stop watching the current transaction."""

    return monitor.stop()
