"""
Room HTTP endpoints. The acting client passes its durable identity as
`clientId`; every mutation goes through that client's SessionCoordinator.

Routes:
  GET    /api/roles                                      — Role catalog + gem categories
  POST   /api/rooms                                      — Create room, caller becomes host
  GET    /api/rooms/{room_id}                            — Room as the caller may see it
  POST   /api/rooms/{room_id}/join                       — Join (or re-join with a new name)
  POST   /api/rooms/{room_id}/leave                      — Leave; host passes to players[0]
  POST   /api/rooms/{room_id}/kick                       — Host removes a player
  POST   /api/rooms/{room_id}/rename                     — Host renames the room
  POST   /api/rooms/{room_id}/roles/{role_name}/count    — ±1 a role count (clamped at 0)
  POST   /api/rooms/{room_id}/roles/{role_name}/toggle   — Enable/disable a role
  POST   /api/rooms/{room_id}/categories/{category}      — Add gem category
  DELETE /api/rooms/{room_id}/categories/{category}      — Remove gem category
  POST   /api/rooms/{room_id}/categories/{category}/count — ±1 a category count
  PUT    /api/rooms/{room_id}/deal-mode                  — roles | gems
  POST   /api/rooms/{room_id}/deal                       — Host deals roles
  POST   /api/rooms/{room_id}/reset                      — Host returns the room to the lobby
  POST   /api/rooms/{room_id}/heartbeat                  — Refresh caller's last_seen
  POST   /api/rooms/{room_id}/prune                      — Host removes idle players
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Query

from agents.session_coordinator import SessionCoordinator
from models.outcome import Outcome
from models.roles import GEM_CATEGORIES, ROLE_TEMPLATES
from models.room import (
    CountChangeRequest, CreateRoomRequest, DealModeRequest, DealRequest,
    JoinRoomRequest, KickRequest, PruneRequest, RenameRoomRequest,
)
from routers.ws_router import sessions
from utils.codes import normalize_room_code

logger = logging.getLogger(__name__)

router = APIRouter(tags=["rooms"])

_STATUS_BY_CODE: Dict[str, int] = {
    "not_found": 404,
    "unauthorized": 403,
    "stale_local_state": 403,
    "cannot_kick_self": 409,
    "already_dealt": 409,
    "category_exists": 409,
    "role_locked": 409,
    "insufficient_roles": 409,
    "already_exists": 409,
    "invalid": 400,
    "store_unavailable": 503,
    "timed_out": 504,
}

ClientId = Query(..., min_length=1, description="Durable client identity")


def _respond(outcome: Outcome, client_id: str) -> Dict[str, Any]:
    if not outcome.ok:
        raise HTTPException(
            status_code=_STATUS_BY_CODE.get(outcome.code, 400),
            detail={"code": outcome.code, "message": outcome.message, **outcome.data},
        )
    body: Dict[str, Any] = {"ok": True, "message": outcome.message, **outcome.data}
    if outcome.room is not None:
        body.update(outcome.room.view_for(client_id))
    return body


async def _session_in(room_id: str, client_id: str) -> SessionCoordinator:
    """The caller's coordinator, re-attached to `room_id` if the process lost track of it."""
    coordinator = sessions.get(client_id)
    if coordinator.context.room_id != normalize_room_code(room_id):
        outcome = await coordinator.resume(room_id)
        if not outcome.ok:
            _respond(outcome, client_id)
    return coordinator


# ── Catalog ───────────────────────────────────────────────────────────────────

@router.get("/roles")
async def list_roles():
    return {
        "roles": [r.model_dump() for r in ROLE_TEMPLATES],
        "gem_categories": [g.model_dump() for g in GEM_CATEGORIES.values()],
    }


# ── Membership ────────────────────────────────────────────────────────────────

@router.post("/rooms", status_code=201)
async def create_room(body: CreateRoomRequest, clientId: str = ClientId):
    """Create a new room and register the caller as host and sole player."""
    coordinator = sessions.get(clientId)
    outcome = await coordinator.create_room(body.room_name, body.display_name)
    return _respond(outcome, clientId)


@router.get("/rooms/{room_id}")
async def get_room(room_id: str, clientId: str = ClientId):
    """Room state as the caller may see it. Other players' cards are never included."""
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.refresh(), clientId)


@router.post("/rooms/{room_id}/join")
async def join_room(room_id: str, body: JoinRoomRequest, clientId: str = ClientId):
    coordinator = sessions.get(clientId)
    outcome = await coordinator.join_room(room_id, body.display_name)
    return _respond(outcome, clientId)


@router.post("/rooms/{room_id}/leave")
async def leave_room(room_id: str, clientId: str = ClientId):
    coordinator = sessions.get(clientId)
    if coordinator.context.room_id != normalize_room_code(room_id):
        # Not attached here; re-attach so the leave acts on the right room
        resumed = await coordinator.resume(room_id)
        if not resumed.ok:
            return {"ok": True, "message": "Room not found or already left.", "room_deleted": False}
    return _respond(await coordinator.leave_room(), clientId)


@router.post("/rooms/{room_id}/kick")
async def kick_player(room_id: str, body: KickRequest, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.kick_player(body.target_display_id), clientId)


@router.post("/rooms/{room_id}/rename")
async def rename_room(room_id: str, body: RenameRoomRequest, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.rename_room(body.name), clientId)


# ── Role pool ─────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/roles/{role_name}/count")
async def change_role_count(
    room_id: str, role_name: str, body: CountChangeRequest, clientId: str = ClientId
):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.set_role_count(role_name, body.delta), clientId)


@router.post("/rooms/{room_id}/roles/{role_name}/toggle")
async def toggle_role(room_id: str, role_name: str, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.toggle_role_disabled(role_name), clientId)


@router.post("/rooms/{room_id}/categories/{category}")
async def add_category(room_id: str, category: str, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.add_category(category), clientId)


@router.delete("/rooms/{room_id}/categories/{category}")
async def remove_category(room_id: str, category: str, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.remove_category(category), clientId)


@router.post("/rooms/{room_id}/categories/{category}/count")
async def change_category_count(
    room_id: str, category: str, body: CountChangeRequest, clientId: str = ClientId
):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.set_category_count(category, body.delta), clientId)


@router.put("/rooms/{room_id}/deal-mode")
async def set_deal_mode(room_id: str, body: DealModeRequest, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.set_deal_mode(body.mode), clientId)


# ── Dealing ───────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/deal")
async def deal(room_id: str, body: DealRequest = DealRequest(), clientId: str = ClientId):
    """
    Host deals the role pool. Rejected with 409 when roles are already dealt
    unless `redeal` is set, and with 409 + shortfall when the pool is too small.
    """
    coordinator = await _session_in(room_id, clientId)
    outcome = await coordinator.deal(redeal=body.redeal)
    if outcome.ok:
        logger.info("[%s] Deal triggered over HTTP by %s", room_id, coordinator.context.display_id)
    return _respond(outcome, clientId)


@router.post("/rooms/{room_id}/reset")
async def reset_room(room_id: str, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.reset_to_lobby(), clientId)


# ── Presence ──────────────────────────────────────────────────────────────────

@router.post("/rooms/{room_id}/heartbeat")
async def heartbeat(room_id: str, clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.heartbeat(), clientId)


@router.post("/rooms/{room_id}/prune")
async def prune_players(room_id: str, body: PruneRequest = PruneRequest(), clientId: str = ClientId):
    coordinator = await _session_in(room_id, clientId)
    return _respond(await coordinator.prune_stale_players(body.max_idle_seconds), clientId)
