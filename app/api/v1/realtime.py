"""
WebSocket endpoints for the push channels.

Broker callbacks run in whichever thread committed the write, so each socket
gets a ``ChannelBridge`` that hops events onto the socket's event loop with
``call_soon_threadsafe``. Subscriptions live exactly as long as the socket.
"""
import asyncio
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status
from starlette.concurrency import run_in_threadpool

from app.api.deps import user_from_token
from app.db.session import session_scope
from app.services.messaging import subscribe_to_conversation
from app.services.notifications import subscribe_notifications
from app.services.realtime import broker
from app.services.venues import LiveVenueFeed, VenueFilter, VenueListResult

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ws", tags=["WebSocket"])


class ChannelBridge:
    """Thread-safe handoff from broker callbacks to one socket's queue."""

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self.loop = loop
        self.queue: "asyncio.Queue[Dict[str, Any]]" = asyncio.Queue()

    def push(self, payload: Dict[str, Any]) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.queue.put_nowait, payload)


def _resolve_user_id(token: Optional[str]) -> Optional[UUID]:
    with session_scope() as db:
        user = user_from_token(db, token)
        return user.id if user else None


async def _authenticate(websocket: WebSocket, token: Optional[str]) -> Optional[UUID]:
    user_id = await run_in_threadpool(_resolve_user_id, token)
    if user_id is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
    return user_id


async def _serve(websocket: WebSocket, bridge: ChannelBridge) -> None:
    """Forward queued events until the client goes away; answers "ping" with a pong."""

    async def forward():
        while True:
            payload = await bridge.queue.get()
            await websocket.send_json(payload)

    sender = asyncio.create_task(forward())
    try:
        while True:
            text = await websocket.receive_text()
            if text == "ping":
                bridge.queue.put_nowait({"type": "pong"})
    except WebSocketDisconnect:
        pass
    finally:
        sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
        except Exception:
            logger.warning("Push forwarding stopped with an error", exc_info=True)


@router.websocket("/notifications")
async def notifications_socket(websocket: WebSocket, token: Optional[str] = Query(None)):
    user_id = await _authenticate(websocket, token)
    if user_id is None:
        return
    await websocket.accept()
    bridge = ChannelBridge(asyncio.get_running_loop())
    subscription = subscribe_notifications(broker, user_id, lambda event: bridge.push(event.as_payload()))
    logger.debug("Notification socket opened for %s", user_id)
    try:
        await _serve(websocket, bridge)
    finally:
        subscription.unsubscribe()


@router.websocket("/messages/{contact_id}")
async def conversation_socket(websocket: WebSocket, contact_id: UUID, token: Optional[str] = Query(None)):
    user_id = await _authenticate(websocket, token)
    if user_id is None:
        return
    await websocket.accept()
    bridge = ChannelBridge(asyncio.get_running_loop())

    def on_message(row: Dict[str, Any]) -> None:
        bridge.push({"table": "messages", "type": "INSERT", "new": row})

    subscription = subscribe_to_conversation(broker, session_scope, user_id, contact_id, on_message)
    try:
        await _serve(websocket, bridge)
    finally:
        subscription.unsubscribe()


@router.websocket("/venues")
async def venues_socket(
    websocket: WebSocket,
    city_id: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
):
    """Full venue list on connect and again after every venue change."""
    await websocket.accept()
    bridge = ChannelBridge(asyncio.get_running_loop())

    def on_result(result: VenueListResult) -> None:
        bridge.push({
            "table": "venues",
            "total": result.total_count,
            "data": [venue.model_dump(mode="json") for venue in result.venues],
        })

    def on_error(exc: Exception) -> None:
        bridge.push({"error": "backend_unavailable", "message": str(exc)})

    feed = LiveVenueFeed(on_result, VenueFilter(city_id=city_id, type=type), on_error=on_error)
    try:
        await run_in_threadpool(feed.refresh)
        await _serve(websocket, bridge)
    finally:
        feed.close()
