"""Chat router providing the WebSocket endpoint and read-only HTTP views.

This module provides:
    - WebSocket /ws/chat: Real-time chat for one room
    - GET /ws/chat: Plain HTTP hit on the socket path (rejected)
    - GET /chat/history: Current retained history
    - GET /chat/presence: Current live roster

The router is a thin adapter: it validates the caller identity, wraps the
accepted socket in a WebSocketChannel and forwards events to the room
coordinator stored on ``app.state.coordinator``.

Protocol Flow:
    1. Client connects with ?userId=...&username=...
       → Server sends: {type: "history", messages: [...]}
       → Server broadcasts: {type: "join", ...} (the client sees its own)
       → Server sends: {type: "presence", users: [...]}
    2. Client sends: {type: "message", content}
       → Server broadcasts: {type: "message", id, userId, username, content, timestamp}
    3. On disconnect → Server broadcasts: {type: "leave", ...}
"""
import logging
from typing import Optional

from fastapi import APIRouter, Query, WebSocket
from fastapi.responses import JSONResponse
from starlette.requests import HTTPConnection, Request

from .channel import WebSocketChannel
from .coordinator import RoomCoordinator
from .errors import InvalidRequest, UnsupportedProtocol
from .schemas import CallerIdentity

logger = logging.getLogger(__name__)

router = APIRouter()

# WebSocket close code for policy violations (RFC 6455)
POLICY_VIOLATION = 1008


def get_coordinator(connection: HTTPConnection) -> RoomCoordinator:
    """Return the room coordinator created during application startup."""
    return connection.app.state.coordinator


@router.get("/ws/chat")
async def websocket_upgrade_required(
    userId: Optional[str] = Query(None, description="Caller's user ID"),
    username: Optional[str] = Query(None, description="Caller's display name"),
) -> JSONResponse:
    """Reject plain HTTP requests to the socket path.

    Identity is checked first, so a request missing it gets 400 rather
    than 426.

    Raises:
        InvalidRequest: If userId or username is missing (400).
        UnsupportedProtocol: Always, otherwise (426).
    """
    CallerIdentity.from_params(userId, username)
    raise UnsupportedProtocol()


@router.get("/chat/history")
async def get_message_history(request: Request) -> JSONResponse:
    """Get the retained message history, oldest first.

    Returns:
        JSON with messages array and count.
    """
    messages = get_coordinator(request).history()
    return JSONResponse({
        "messages": [msg.to_wire() for msg in messages],
        "count": len(messages),
    })


@router.get("/chat/presence")
async def get_presence(request: Request) -> JSONResponse:
    """Get the live roster, one entry per connected session."""
    payload = get_coordinator(request).presence_payload()
    return JSONResponse(payload.model_dump())


@router.websocket("/ws/chat")
async def websocket_chat_endpoint(
    websocket: WebSocket,
    userId: Optional[str] = Query(None, description="Caller's user ID"),
    username: Optional[str] = Query(None, description="Caller's display name"),
) -> None:
    """WebSocket endpoint for real-time chat.

    Caller identity is taken from the query string and is not authenticated.
    A connection without it is refused during the handshake.

    Args:
        websocket: The WebSocket connection.
        userId: Caller's user ID.
        username: Caller's display name.
    """
    try:
        identity = CallerIdentity.from_params(userId, username)
    except InvalidRequest as e:
        logger.warning(f"[WS] Refusing connection: {e.message}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    coordinator = get_coordinator(websocket)
    await websocket.accept()
    channel = WebSocketChannel(websocket, max_queue=coordinator.settings.send_queue_max)
    channel.start()

    try:
        session_id = await coordinator.admit(identity, channel)
    except Exception as e:
        logger.error(f"[WS] Admission failed for user {identity.user_id}: {e}")
        channel.close()
        await channel.wait_closed()
        raise

    logger.info(f"[WS] User {identity.user_id} connected as session {session_id}")

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            text = message.get("text")
            if text is None:
                logger.debug(f"[WS] Binary frame from session {session_id} ignored")
                continue
            await coordinator.on_inbound_frame(session_id, text)
    finally:
        await coordinator.on_channel_closed(session_id)
        await channel.wait_closed()
        logger.info(f"[WS] Session {session_id} disconnected")
