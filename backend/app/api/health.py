############################################################
#
# switchyard - Messages API Translation Gateway
#
# health.py: Health check, routing status and Prometheus metrics endpoints
#
# Luke Sheneman
# Research Computing and Data Services (RCDS)
# Institute for Interdisciplinary Data Sciences (IIDS)
# University of Idaho
# sheneman@uidaho.edu
#
############################################################

"""Health check, routing status and metrics endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

from backend.app.core.routing import DEFAULT_MODEL, DEFAULT_PROVIDER

router = APIRouter(tags=["health"])

# Prometheus metrics
REQUEST_COUNT = Counter(
    "switchyard_requests_total",
    "Total number of /v1/messages requests",
    ["provider", "outcome"],  # completed, error, disconnected, rejected
)
STREAM_EVENTS = Counter(
    "switchyard_stream_events_total",
    "Canonical stream events relayed downstream",
    ["provider", "type"],
)


def _active(request: Request):
    dispatcher = getattr(request.app.state, "dispatcher", None)
    return dispatcher.active() if dispatcher is not None else None


@router.get("/healthz")
async def liveness_probe(request: Request) -> Dict[str, Any]:
    """
    Liveness probe - checks if the gateway is running.

    Also reports the sticky provider/model; before the first routed request
    the default provider with an "auto" model is shown.
    """
    active = _active(request)
    return {
        "ok": True,
        "status": "alive",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "active": active.as_status() if active else {"provider": DEFAULT_PROVIDER.value, "model": "auto"},
    }


@router.get("/_status")
async def routing_status(request: Request) -> Dict[str, str]:
    """Provider/model the next unprefixed request will be routed to."""
    active = _active(request)
    if active is None:
        return {"provider": DEFAULT_PROVIDER.value, "model": DEFAULT_MODEL}
    return active.as_status()


@router.get("/metrics")
async def prometheus_metrics(request: Request) -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    settings = getattr(request.app.state, "settings", None)
    if settings is not None and not settings.metrics_enabled:
        return Response(status_code=404)

    metrics = generate_latest()
    return Response(content=metrics, media_type=CONTENT_TYPE_LATEST)
