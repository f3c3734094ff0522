"""Inbound transport events and operational endpoints."""

from __future__ import annotations

import logging
import secrets

from fastapi import APIRouter, Header, HTTPException, Request, status

from ..__version__ import __build_date__, __commit_sha__, __version__
from ..bot import Relay
from ..core.limits import events_rate_limit, limiter
from ..schemas import EventAccepted, HealthResponse, InboundEvent, SyncResponse

router = APIRouter(tags=["relay"])

logger = logging.getLogger(__name__)


def _relay(request: Request) -> Relay:
    relay = getattr(request.app.state, "relay", None)
    if relay is None:
        raise HTTPException(status_code=503, detail="Relay is not running")
    return relay


def _verify_token(relay: Relay, token: str | None) -> None:
    expected = relay.settings.events_token
    if not expected:
        return
    if not token or not secrets.compare_digest(token, expected):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


@router.post(
    "/api/events",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=EventAccepted,
)
@limiter.limit(events_rate_limit)
async def receive_event(
    request: Request,
    payload: InboundEvent,
    x_relay_token: str | None = Header(default=None),
) -> EventAccepted:
    """Accept one transport event and hand it to the worker pool."""
    relay = _relay(request)
    _verify_token(relay, x_relay_token)
    relay.dispatch(payload.to_event())
    logger.debug("accepted %s event %s", payload.type, payload.event_id)
    return EventAccepted(event_id=payload.event_id)


@router.post("/api/sync", response_model=SyncResponse)
async def trigger_sync(
    request: Request,
    x_relay_token: str | None = Header(default=None),
) -> SyncResponse:
    """Start a reconciliation pass unless one is already running."""
    relay = _relay(request)
    _verify_token(relay, x_relay_token)
    if not relay.tracker.enabled:
        return SyncResponse(started=False, running=False)
    if relay.synchronizer.running:
        return SyncResponse(started=False, running=True)
    relay.sync_in_background()
    return SyncResponse(started=True, running=True)


@router.get("/api/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Liveness probe with version information."""
    return HealthResponse(
        status="ok",
        version=__version__,
        build_date=__build_date__,
        commit_sha=__commit_sha__,
    )
