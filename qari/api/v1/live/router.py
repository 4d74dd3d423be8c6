"""
WebSocket endpoints streaming live view snapshots.

Clients authenticate with ?token=<access token>. Every frame is JSON:
{"type": "snapshot", "data": ...} or {"type": "error", "detail": ...}.
An error frame is followed by closing the socket; a client disconnect closes
the view stream and releases its subscriptions.
"""

import asyncio
import logging
from datetime import date
from typing import AsyncIterator, Optional, Tuple

from fastapi import APIRouter, Query, WebSocket, status
from fastapi.encoders import jsonable_encoder

from qari.auth import services as auth_service
from qari.auth.dependencies import load_account_or_sign_out
from qari.auth.rbac import AWAITING_APPROVAL_MESSAGE
from qari.core.enums import AccountRole
from qari.core.exceptions import ServiceError
from qari.core.models import Account
from qari.db.session import get_change_feed, get_session_factory

from . import views

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/live", tags=["live"])


async def _send_error(websocket: WebSocket, detail: str, code: int) -> None:
    await websocket.send_json({"type": "error", "detail": detail})
    await websocket.close(code=code)


async def _authenticate(
    websocket: WebSocket,
    token: str,
    roles: Tuple[AccountRole, ...] = (),
    require_approval: bool = True,
) -> Optional[Account]:
    """Resolve the token to an account allowed on this endpoint; otherwise send an error frame and close."""
    async with get_session_factory(websocket)() as db:
        identity = await auth_service.current_identity(db, token)
        if identity is None:
            await _send_error(websocket, "Could not validate credentials", status.WS_1008_POLICY_VIOLATION)
            return None
        try:
            account = await load_account_or_sign_out(db, identity)
        except ServiceError as e:
            await _send_error(websocket, e.message, status.WS_1008_POLICY_VIOLATION)
            return None
    if require_approval and not account.approved:
        await _send_error(websocket, AWAITING_APPROVAL_MESSAGE, status.WS_1008_POLICY_VIOLATION)
        return None
    if roles and account.role not in {r.value for r in roles}:
        await _send_error(websocket, "Insufficient permissions", status.WS_1008_POLICY_VIOLATION)
        return None
    return account


async def _forward(websocket: WebSocket, stream: AsyncIterator) -> int:
    """Send each snapshot; on a stream error send an error frame. Returns the close code."""
    try:
        async for snapshot in stream:
            await websocket.send_json({"type": "snapshot", "data": jsonable_encoder(snapshot)})
    except ServiceError as e:
        await websocket.send_json({"type": "error", "detail": e.message})
        if e.status_code == status.HTTP_403_FORBIDDEN:
            return status.WS_1008_POLICY_VIOLATION
        return status.WS_1011_INTERNAL_ERROR
    except Exception:
        logger.error("Live view stream failed", exc_info=True)
        await websocket.send_json({"type": "error", "detail": "Internal server error"})
        return status.WS_1011_INTERNAL_ERROR
    return status.WS_1000_NORMAL_CLOSURE


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # Client frames carry no meaning; only the disconnect matters
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def serve_stream(websocket: WebSocket, stream: AsyncIterator) -> None:
    """Pump `stream` into the socket until it ends, fails, or the client goes away."""
    forward = asyncio.create_task(_forward(websocket, stream))
    disconnect = asyncio.create_task(_wait_for_disconnect(websocket))
    try:
        done, _ = await asyncio.wait({forward, disconnect}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in (forward, disconnect):
            task.cancel()
        await asyncio.gather(forward, disconnect, return_exceptions=True)
        await stream.aclose()
    if forward in done and not forward.cancelled() and forward.exception() is None:
        await websocket.close(code=forward.result())


@router.websocket("/account")
async def live_account(websocket: WebSocket, token: str = Query(...)):
    """Approval state of the caller's account; usable while pending or rejected."""
    await websocket.accept()
    account = await _authenticate(websocket, token, require_approval=False)
    if account is None:
        return
    stream = views.account_status_stream(get_session_factory(websocket), get_change_feed(websocket), account.id)
    await serve_stream(websocket, stream)


@router.websocket("/auth-state")
async def live_auth_state(websocket: WebSocket, token: str = Query(...)):
    await websocket.accept()
    account = await _authenticate(websocket, token, require_approval=False)
    if account is None:
        return
    stream = auth_service.auth_state_changes(
        get_session_factory(websocket), get_change_feed(websocket), account.id
    )
    await serve_stream(websocket, stream)


@router.websocket("/roster-today")
async def live_roster_today(websocket: WebSocket, token: str = Query(...), mine: bool = Query(False)):
    """Teacher: students with today's record."""
    await websocket.accept()
    account = await _authenticate(websocket, token, roles=(AccountRole.TEACHER,))
    if account is None:
        return
    stream = views.roster_today_stream(
        get_session_factory(websocket),
        get_change_feed(websocket),
        date.today(),
        teacher_id=account.id if mine else None,
    )
    await serve_stream(websocket, stream)


@router.websocket("/children-today")
async def live_children_today(websocket: WebSocket, token: str = Query(...)):
    """Parent: each child with today's record."""
    await websocket.accept()
    account = await _authenticate(websocket, token, roles=(AccountRole.PARENT,))
    if account is None:
        return
    stream = views.children_today_stream(
        get_session_factory(websocket), get_change_feed(websocket), account.id, date.today()
    )
    await serve_stream(websocket, stream)


@router.websocket("/conversations")
async def live_conversations(websocket: WebSocket, token: str = Query(...)):
    await websocket.accept()
    account = await _authenticate(websocket, token)
    if account is None:
        return
    stream = views.conversations_stream(get_session_factory(websocket), get_change_feed(websocket), account.id)
    await serve_stream(websocket, stream)


@router.websocket("/stats")
async def live_stats(websocket: WebSocket, token: str = Query(...)):
    """Teacher dashboard counters for today."""
    await websocket.accept()
    account = await _authenticate(websocket, token, roles=(AccountRole.TEACHER,))
    if account is None:
        return
    stream = views.dashboard_stats_stream(get_session_factory(websocket), get_change_feed(websocket), date.today())
    await serve_stream(websocket, stream)
