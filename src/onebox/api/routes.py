"""
API routes for the OneBox service.

Thin surface over the sync engine: health, per-account connection status,
on-demand sync and the live event feed.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException, Query, Request, WebSocket, WebSocketDisconnect, status
from loguru import logger
from pydantic import BaseModel, Field

from onebox.application.sync.manager import SyncManager
from onebox.domain.errors import AccountNotFoundError
from onebox.domain.models import AccountStatus, ConnectionState
from onebox.infrastructure import get_settings
from onebox.infrastructure.event_bus import EventBus

router = APIRouter()


# ============================================================================
# Request/Response Models
# ============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    accounts: int = 0


class ReadinessResponse(BaseModel):
    """Readiness check response with service status."""

    status: str
    timestamp: str
    services: dict[str, str]


class SyncResponse(BaseModel):
    """Outcome of an on-demand sync request."""

    account_id: str
    accepted: bool = Field(..., description="False when the account has no live connection right now")
    state: ConnectionState


# ============================================================================
# Helpers
# ============================================================================


def _manager(request: Request) -> SyncManager:
    return request.app.state.manager


def _not_found(account_id: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Account not found: {account_id}")


# ============================================================================
# Health Endpoints
# ============================================================================


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(request: Request) -> HealthResponse:
    """Basic health check endpoint."""
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=settings.app_version,
        accounts=len(_manager(request).account_ids),
    )


@router.get("/health/ready", response_model=ReadinessResponse, tags=["health"])
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness check with service connectivity status."""
    services: dict[str, str] = {}
    backing = getattr(request.app.state, "services", None)

    if backing is not None:
        services["milvus"] = backing.milvus.health_check().get("status", "unknown")
        services["postgres"] = backing.postgres.health_check().get("status", "unknown")

    accounts = _manager(request).statuses()
    services["accounts"] = f"{sum(1 for s in accounts if s.connected)}/{len(accounts)} connected"

    critical_healthy = all(services.get(s) == "healthy" for s in ("milvus", "postgres") if s in services)
    return ReadinessResponse(
        status="ready" if critical_healthy else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        services=services,
    )


# ============================================================================
# Account Sync Endpoints
# ============================================================================


@router.get("/accounts/{account_id}/status", response_model=AccountStatus, tags=["accounts"])
async def account_status(account_id: str, request: Request) -> AccountStatus:
    """Connection state, strategy and last sync result of one account."""
    try:
        return _manager(request).status(account_id)
    except AccountNotFoundError:
        raise _not_found(account_id)


@router.post(
    "/accounts/{account_id}/sync",
    response_model=SyncResponse,
    status_code=status.HTTP_202_ACCEPTED,
    tags=["accounts"],
)
async def request_sync(account_id: str, request: Request) -> SyncResponse:
    """Ask for a sync run; coalesced with any run already in flight."""
    manager = _manager(request)
    try:
        accepted = manager.request_sync(account_id)
        current = manager.status(account_id)
    except AccountNotFoundError:
        raise _not_found(account_id)
    logger.info(f"[{account_id}] Sync requested via API (accepted={accepted})")
    return SyncResponse(account_id=account_id, accepted=accepted, state=current.state)


# ============================================================================
# Live Events
# ============================================================================


@router.websocket("/ws/events")
async def event_feed(websocket: WebSocket, account_id: str | None = Query(None)) -> None:
    """Push domain events as JSON; only events published after subscribing are sent."""
    events: EventBus = websocket.app.state.events
    await websocket.accept()
    subscription = events.subscribe(account_id)
    try:
        await websocket.send_json({"type": "subscribed", "account_id": account_id})
        async for event in subscription:
            await websocket.send_json(event.model_dump(mode="json"))
    except WebSocketDisconnect:
        logger.debug("Event feed client disconnected")
    finally:
        subscription.close()
