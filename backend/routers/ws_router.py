"""
WebSocket Hub — the push channel from the change feed to each browser.

URL: /ws/{room_id}?clientId={client_identity}

Connection flow:
  1. Resolve the client's SessionCoordinator; re-attach it to the room
     (the identity must already be a player there).
  2. Accept and register the socket.
  3. Send a private "room_updated" snapshot.
  4. Message loop (ping / heartbeat / refresh).
  5. On disconnect: fire the best-effort departure (when enabled). A
     reconnect of the same client settles that departure first: cancelled if
     it has not started, awaited if it has (the session is then re-attached,
     or the socket is closed with 4404 when the player is gone).

Presence: an open socket marks its client connected, and the host's "prune
disconnected players" never removes a connected client. A client without a
socket is judged by its last "heartbeat" message (or its join time), so
HTTP-only clients must send heartbeats to stay in the room.

Server → client message types:
  room_updated   — the whole room as this client may see it
  room_removed   — the room was deleted
  kicked         — this client is no longer a player in the room
  left           — this client left the room (from any tab or its departure)
  error          — { message, code }
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query

from config import settings
from agents.session_coordinator import SessionCoordinator, SessionRegistry, SessionState
from models.room import Room
from services.presence import get_presence

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


# ── Connection Manager ─────────────────────────────────────────────────────────

class ConnectionManager:
    """
    Tracks one active WebSocket per client identity.
    Safe for asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {client_identity: WebSocket}
        self._sockets: Dict[str, WebSocket] = {}

    async def connect(self, client_identity: str, ws: WebSocket) -> None:
        await ws.accept()
        previous = self._sockets.get(client_identity)
        self._sockets[client_identity] = ws
        get_presence().mark_connected(client_identity)
        if previous is not None and previous is not ws:
            # A newer tab for the same identity replaces the older one
            try:
                await previous.close(code=4409, reason="Replaced by a newer connection")
            except Exception as exc:
                logger.debug("closing replaced socket for %s failed: %s", client_identity, exc)
        logger.debug("%s connected (%d total)", client_identity, self.count())

    def disconnect(self, client_identity: str, ws: Optional[WebSocket] = None) -> None:
        current = self._sockets.get(client_identity)
        if current is not None and (ws is None or current is ws):
            self._sockets.pop(client_identity, None)
            get_presence().mark_disconnected(client_identity)

    def count(self) -> int:
        return len(self._sockets)

    def is_connected(self, client_identity: str) -> bool:
        return client_identity in self._sockets

    async def send_to(self, client_identity: str, message: Dict[str, Any]) -> None:
        ws = self._sockets.get(client_identity)
        if ws:
            try:
                await ws.send_json(message)
            except Exception as exc:
                logger.warning("send_to %s failed: %s", client_identity, exc)
                self.disconnect(client_identity, ws)

    async def push_room(self, coordinator: SessionCoordinator, room: Optional[Room]) -> None:
        """Registry listener: translate a coordinator's room change into a message."""
        ctx = coordinator.context
        if room is not None:
            await self.send_to(ctx.client_identity, {
                "type": "room_updated",
                **room.view_for(ctx.client_identity),
            })
        elif ctx.state == SessionState.KICKED:
            await self.send_to(ctx.client_identity, {
                "type": "kicked",
                "message": "You were removed from the room.",
            })
        elif ctx.state == SessionState.ROOM_DELETED:
            await self.send_to(ctx.client_identity, {
                "type": "room_removed",
                "message": "The room was deleted.",
            })
        elif ctx.state == SessionState.NO_ROOM:
            await self.send_to(ctx.client_identity, {
                "type": "left",
                "message": "You left the room.",
            })


# Module-level singletons, imported by room_router
manager = ConnectionManager()
sessions = SessionRegistry(listener=manager.push_room)


# ── WebSocket endpoint ─────────────────────────────────────────────────────────

@router.websocket("/ws/{room_id}")
async def websocket_endpoint(
    ws: WebSocket,
    room_id: str,
    clientId: str = Query(..., min_length=1, description="Durable client identity"),
):
    coordinator = sessions.get(clientId)
    await coordinator.settle_departure()

    # ── Attach the session to this room ────────────────────────────────────────
    if coordinator.context.room_id != room_id.strip().upper():
        outcome = await coordinator.resume(room_id)
        if not outcome.ok:
            close_code = 4404 if outcome.code == "not_found" else 4403
            await ws.close(code=close_code, reason=outcome.message[:120])
            return

    # ── Accept and register ────────────────────────────────────────────────────
    await manager.connect(clientId, ws)
    if coordinator.room is not None:
        await manager.send_to(clientId, {
            "type": "room_updated",
            **coordinator.room.view_for(clientId),
        })

    # ── Message loop ───────────────────────────────────────────────────────────
    try:
        while True:
            raw = await ws.receive_text()
            try:
                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("message must be a JSON object")
            except ValueError:
                await manager.send_to(clientId, {
                    "type": "error",
                    "message": "Invalid JSON",
                    "code": "PARSE_ERROR",
                })
                continue
            await _handle_message(coordinator, data.get("type", ""))

    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(clientId, ws)
        if settings.leave_on_disconnect and not manager.is_connected(clientId):
            # Fire-and-forget; never awaited, the room also reconciles lazily
            coordinator.depart()


# ── Message dispatcher ─────────────────────────────────────────────────────────

async def _handle_message(coordinator: SessionCoordinator, msg_type: str) -> None:
    client_identity = coordinator.context.client_identity
    try:
        await _dispatch_message(coordinator, msg_type)
    except WebSocketDisconnect:
        raise
    except Exception:
        logger.exception("[%s] Unhandled error in _handle_message (type=%s)",
                         coordinator.context.room_id, msg_type)
        await manager.send_to(client_identity, {
            "type": "error", "message": "Internal server error", "code": "SERVER_ERROR"
        })


async def _dispatch_message(coordinator: SessionCoordinator, msg_type: str) -> None:
    client_identity = coordinator.context.client_identity

    if msg_type == "ping":
        await manager.send_to(client_identity, {"type": "pong"})

    elif msg_type in ("heartbeat", "refresh"):
        if msg_type == "heartbeat":
            outcome = await coordinator.heartbeat()
        else:
            outcome = await coordinator.refresh()
        if not outcome.ok:
            await manager.send_to(client_identity, {
                "type": "error", "message": outcome.message, "code": outcome.code,
            })

    else:
        await manager.send_to(client_identity, {
            "type": "error",
            "message": f"Unknown message type: '{msg_type}'",
            "code": "UNKNOWN_TYPE",
        })
