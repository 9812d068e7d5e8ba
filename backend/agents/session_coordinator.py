"""
Session Coordinator — one client's view of "which room am I in".

States: NO_ROOM → JOINING → IN_ROOM → (LEAVING | KICKED | ROOM_DELETED) → NO_ROOM

Every mutation follows the same shape: fetch the latest document, apply the
change, replace the whole document. Two clients doing this at once is a
lost update and is accepted (last writer wins at document granularity).

The cached room is authoritative only until the next Updated event, which
replaces it wholesale. After each Updated event the coordinator checks that
its own client identity is still in `players`; if not, it was removed by
someone else and drops to KICKED. That check is the only removal signal the
store gives.

Public operations return an Outcome and never raise a LobbyError. A failed
write leaves the cached room untouched.
"""
import asyncio
import inspect
import logging
import random
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Union

from pydantic import BaseModel

from config import settings
from agents.dealer import Dealer
from agents.role_pool import RolePoolConfigurator, role_pool
from models.errors import (
    InvalidRequest, LobbyError, PlayerNotFound, RoomAlreadyExists, RoomNotFound,
    StaleLocalState, StoreUnavailable, Unauthorized, CannotKickSelf,
)
from models.outcome import Outcome
from models.roles import ROOM_BACKGROUNDS, build_role_image_map
from models.room import DealMode, Player, Room, RoomConfig
from services.change_feed import EventKind, RoomEvent, SubscriptionHandle
from services.presence import PresenceTracker, get_presence
from services.room_store import RoomStore, get_room_store
from utils.codes import generate_short_code, normalize_room_code

logger = logging.getLogger(__name__)

RoomListener = Callable[[Optional[Room]], Union[None, Awaitable[None]]]

# Strong refs for fire-and-forget tasks so they aren't garbage-collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionState(str, Enum):
    NO_ROOM = "no_room"
    JOINING = "joining"
    IN_ROOM = "in_room"
    LEAVING = "leaving"
    KICKED = "kicked"
    ROOM_DELETED = "room_deleted"


# States from which a new create/join may start
_IDLE_STATES = {SessionState.NO_ROOM, SessionState.KICKED, SessionState.ROOM_DELETED}


class SessionContext(BaseModel):
    client_identity: str
    display_id: str
    display_name: str = ""
    room_id: Optional[str] = None
    room: Optional[Room] = None
    state: SessionState = SessionState.NO_ROOM
    subscription: Optional[SubscriptionHandle] = None


def remove_player(room: Room, client_identity: str) -> Optional[Room]:
    """
    Drop one player. If the host is gone, players[0] becomes host in the same
    document, so no observer ever sees host_id pointing at a removed player.
    Returns None when nobody is left (the room should be deleted).
    """
    remaining = [p for p in room.players if p.client_identity != client_identity]
    if len(remaining) == len(room.players):
        raise PlayerNotFound(room.id, client_identity)
    room.players = remaining
    if not remaining:
        return None
    if room.host_id not in {p.client_identity for p in remaining}:
        room.host_id = remaining[0].client_identity
        logger.info("[%s] Host left. New host: %s", room.id, remaining[0].display_id)
    return room


class SessionCoordinator:
    """
    Owns one SessionContext. Instantiate one per client identity; the UI layer
    receives every change through `on_room_changed(Room | None)`.
    """

    def __init__(
        self,
        client_identity: str,
        display_name: str = "",
        store: Optional[RoomStore] = None,
        dealer: Optional[Dealer] = None,
        configurator: Optional[RolePoolConfigurator] = None,
        rng: Optional[random.Random] = None,
        on_room_changed: Optional[RoomListener] = None,
        presence: Optional[PresenceTracker] = None,
    ):
        self.store = store if store is not None else get_room_store()
        self.rng = rng if rng is not None else random.SystemRandom()
        self.dealer = dealer if dealer is not None else Dealer(self.rng)
        self.configurator = configurator if configurator is not None else role_pool
        self.presence = presence if presence is not None else get_presence()
        self.on_room_changed = on_room_changed
        self._departure: Optional[asyncio.Task] = None
        self.context = SessionContext(
            client_identity=client_identity,
            display_id=generate_short_code(self.rng, 6),
            display_name=display_name.strip(),
        )

    # ── Read-only views ───────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self.context.state

    @property
    def room(self) -> Optional[Room]:
        return self.context.room

    @property
    def is_host(self) -> bool:
        room = self.context.room
        return room is not None and room.is_host(self.context.client_identity)

    # ── UI boundary ───────────────────────────────────────────────────────────

    async def _boundary(self, operation: str, coro: Awaitable[Outcome]) -> Outcome:
        ctx = self.context
        try:
            return await coro
        except StaleLocalState as exc:
            logger.info("[%s] %s: no longer a player here", ctx.room_id, operation)
            await self._teardown(SessionState.KICKED)
            return Outcome.failure(exc)
        except RoomNotFound as exc:
            if ctx.state == SessionState.IN_ROOM and exc.room_id == ctx.room_id:
                await self._teardown(SessionState.ROOM_DELETED)
            logger.warning("[%s] %s: room not found", exc.room_id, operation)
            return Outcome.failure(exc)
        except LobbyError as exc:
            logger.warning(
                "[%s] %s failed (%s): %s", ctx.room_id or "-", operation, exc.code, exc.message
            )
            return Outcome.failure(exc)

    async def _notify(self, room: Optional[Room]) -> None:
        if self.on_room_changed is None:
            return
        try:
            result = self.on_room_changed(room)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("[%s] on_room_changed listener failed", self.context.room_id)

    def _cache(self, room: Room) -> bool:
        """
        Replace the cached document unless `room` is older than what we hold.
        Returns False when nothing changed (stale, or the same document again).
        """
        cached = self.context.room
        if cached is not None and cached.id == room.id:
            if room.revision < cached.revision:
                logger.debug(
                    "[%s] dropping stale revision %d (have %d)", room.id, room.revision, cached.revision
                )
                return False
            if room == cached:
                return False
        self.context.room = room
        me = room.find_player(self.context.client_identity)
        if me is not None:
            self.context.display_id = me.display_id
        return True

    async def _enter(self, room: Room) -> None:
        ctx = self.context
        if ctx.subscription is None or ctx.subscription.room_id != room.id:
            self._unsubscribe()
            ctx.subscription = self.store.feed.subscribe(room.id, self.handle_event)
        ctx.room_id = room.id
        ctx.state = SessionState.IN_ROOM
        self._cache(room)
        await self._notify(ctx.room)

    def _unsubscribe(self) -> None:
        if self.context.subscription is not None:
            self.store.feed.unsubscribe(self.context.subscription)
            self.context.subscription = None

    async def _teardown(self, state: SessionState) -> None:
        self._unsubscribe()
        ctx = self.context
        ctx.room_id = None
        ctx.room = None
        ctx.state = state
        await self._notify(None)

    # ── Change feed ───────────────────────────────────────────────────────────

    async def handle_event(self, event: RoomEvent) -> None:
        ctx = self.context
        if ctx.state != SessionState.IN_ROOM or event.room_id != ctx.room_id:
            return
        if event.kind == EventKind.REMOVED:
            logger.info("[%s] Room was deleted.", event.room_id)
            await self._teardown(SessionState.ROOM_DELETED)
            return
        room = event.room
        if room is None or not self._cache(room):
            return
        if room.find_player(ctx.client_identity) is None:
            logger.info("[%s] %s was removed from the room.", room.id, ctx.display_id)
            await self._teardown(SessionState.KICKED)
            return
        await self._notify(room)

    # ── Membership ────────────────────────────────────────────────────────────

    def _new_player(self, room: Optional[Room] = None) -> Player:
        ctx = self.context
        display_id = ctx.display_id
        # Another client already shows this short id; pick a fresh one for the lobby
        while room is not None and room.find_by_display_id(display_id) is not None:
            display_id = generate_short_code(self.rng, 6)
        return Player(
            client_identity=ctx.client_identity,
            display_id=display_id,
            display_name=ctx.display_name,
            last_seen=_utcnow(),
        )

    def _require_name(self, display_name: Optional[str]) -> None:
        if display_name is not None and display_name.strip():
            self.context.display_name = display_name.strip()
        if not self.context.display_name:
            raise InvalidRequest("Please set your name first.")

    async def create_room(
        self, room_name: Optional[str] = None, display_name: Optional[str] = None
    ) -> Outcome:
        return await self._boundary("create_room", self._create_room(room_name, display_name))

    async def _create_room(self, room_name: Optional[str], display_name: Optional[str]) -> Outcome:
        ctx = self.context
        if ctx.state not in _IDLE_STATES:
            raise InvalidRequest("Leave your current room first.")
        self._require_name(display_name)
        name = (room_name or "").strip() or f"{ctx.display_name}'s Room"

        attempts = settings.room_code_max_attempts
        for attempt in range(1, attempts + 1):
            room = Room(
                id=generate_short_code(self.rng, settings.room_code_length),
                name=name,
                host_id=ctx.client_identity,
                players=[self._new_player()],
                config=RoomConfig(
                    role_image_map=build_role_image_map(self.rng),
                    background_image_url=self.rng.choice(ROOM_BACKGROUNDS),
                ),
            )
            try:
                stored = await self.store.insert(room)
            except RoomAlreadyExists:
                logger.info("Room code %s taken (attempt %d/%d)", room.id, attempt, attempts)
                continue
            await self._enter(stored)
            logger.info("[%s] Room created by %s (%s)", stored.id, ctx.display_id, ctx.display_name)
            return Outcome.success(
                f'Room "{stored.name}" created with ID: {stored.id}', room=stored, room_id=stored.id
            )
        raise StoreUnavailable(
            f"Could not allocate a unique room code after {attempts} attempts. Please retry."
        )

    async def join_room(self, room_id: str, display_name: Optional[str] = None) -> Outcome:
        return await self._boundary("join_room", self._join_room(room_id, display_name))

    async def _join_room(self, room_id: str, display_name: Optional[str]) -> Outcome:
        ctx = self.context
        room_id = normalize_room_code(room_id or "")
        if not room_id:
            raise InvalidRequest("Please enter a Room ID.")
        if ctx.state not in _IDLE_STATES and ctx.room_id != room_id:
            raise InvalidRequest("Leave your current room first.")
        self._require_name(display_name)

        def apply(room: Room) -> Room:
            existing = room.find_player(ctx.client_identity)
            if existing is not None:
                # Same browser re-joining (e.g. after reload): rename in place
                existing.display_name = ctx.display_name
                existing.last_seen = _utcnow()
            else:
                room.players.append(self._new_player(room))
            return room

        previous = ctx.state
        ctx.state = SessionState.JOINING
        try:
            room = await self.store.read_modify_write(room_id, apply)
        except LobbyError:
            ctx.state = previous
            raise
        await self._enter(room)
        logger.info("[%s] %s (%s) joined", room.id, ctx.display_id, ctx.display_name)
        return Outcome.success(f"Joined room: {room.name}", room=room, room_id=room.id)

    async def resume(self, room_id: str) -> Outcome:
        """Re-attach to a room this identity is already in (reload, reconnect)."""
        return await self._boundary("resume", self._resume(room_id))

    async def _resume(self, room_id: str) -> Outcome:
        room_id = normalize_room_code(room_id or "")
        room = await self.store.get(room_id)
        if room.find_player(self.context.client_identity) is None:
            raise PlayerNotFound(room_id, self.context.client_identity)
        await self._enter(room)
        return Outcome.success(room=room, room_id=room.id)

    async def leave_room(self) -> Outcome:
        return await self._boundary("leave_room", self._leave_room())

    async def _leave_room(self) -> Outcome:
        ctx = self.context
        room_id = ctx.room_id
        if room_id is None:
            return Outcome.success("Not in a room.")
        room_name = ctx.room.name if ctx.room else room_id
        previous = ctx.state
        # Our own Updated/Removed events must not read as "kicked" while we leave
        ctx.state = SessionState.LEAVING
        deleted = False
        try:
            result = await self.store.read_modify_write(
                room_id, lambda room: remove_player(room, ctx.client_identity)
            )
            deleted = result is None
        except (RoomNotFound, PlayerNotFound):
            logger.info("[%s] %s had already left", room_id, ctx.display_id)
        except LobbyError:
            ctx.state = previous
            raise
        await self._teardown(SessionState.NO_ROOM)
        if deleted:
            logger.info("[%s] Last player left; room deleted.", room_id)
            return Outcome.success("Room deleted as no players remained.", room_deleted=True)
        return Outcome.success(f"Left room: {room_name}", room_deleted=False)

    async def kick_player(self, target_display_id: str) -> Outcome:
        return await self._boundary("kick_player", self._kick_player(target_display_id))

    async def _kick_player(self, target_display_id: str) -> Outcome:
        identity = self.context.client_identity

        def apply(room: Room) -> Optional[Room]:
            if not room.is_host(identity):
                raise Unauthorized("Only the host can kick players.")
            me = room.find_player(identity)
            target = room.find_by_display_id(target_display_id)
            if target_display_id == me.display_id or (target and target.client_identity == identity):
                raise CannotKickSelf()
            if target is None:
                raise PlayerNotFound(room.id, target_display_id)
            return remove_player(room, target.client_identity)

        room = await self._mutate(apply)
        logger.info("[%s] %s kicked by host", room.id, target_display_id)
        return Outcome.success(f"Player {target_display_id} has been kicked.", room=room)

    def depart(self) -> Optional[asyncio.Task]:
        """
        Best-effort departure when the client goes away (page unload, socket
        close). Not awaited, not retried; stale players are otherwise pruned
        by the host or kicked manually.
        """
        if self.context.room_id is None or self.context.state != SessionState.IN_ROOM:
            return None
        if self._departure is not None and not self._departure.done():
            return self._departure
        task = asyncio.create_task(self._depart())
        _background_tasks.add(task)
        task.add_done_callback(_background_tasks.discard)
        self._departure = task
        return task

    async def settle_departure(self) -> None:
        """
        Called when the client comes back (e.g. page reload reconnects).
        A departure that has not started yet is cancelled; one already
        writing is awaited so the caller sees where the session ended up.
        """
        task, self._departure = self._departure, None
        if task is None or task.done():
            return
        # _leave_room enters LEAVING before its first await, so IN_ROOM means not started
        if self.context.state == SessionState.IN_ROOM:
            task.cancel()
            logger.info("[%s] %s reconnected; departure cancelled",
                        self.context.room_id, self.context.display_id)
        await asyncio.gather(task, return_exceptions=True)

    async def _depart(self) -> None:
        room_id = self.context.room_id
        try:
            outcome = await self.leave_room()
        except Exception as exc:
            logger.debug("[%s] departure signal failed: %s", room_id, exc)
            return
        if not outcome.ok:
            logger.debug("[%s] departure signal not applied: %s", room_id, outcome.message)

    # ── Shared-document mutations ─────────────────────────────────────────────

    async def _mutate(self, apply: Callable[[Room], Optional[Room]]) -> Room:
        ctx = self.context
        if ctx.state != SessionState.IN_ROOM or ctx.room_id is None:
            raise InvalidRequest("Not in a room.")

        def checked(room: Room) -> Optional[Room]:
            if room.find_player(ctx.client_identity) is None:
                raise StaleLocalState(room.id)
            return apply(room)

        room = await self.store.read_modify_write(ctx.room_id, checked)
        if room is not None and ctx.state == SessionState.IN_ROOM and self._cache(room):
            await self._notify(room)
        return room

    def _on_config(self, change: Callable[[RoomConfig], object]) -> Callable[[Room], Room]:
        def apply(room: Room) -> Room:
            change(room.config)
            return room
        return apply

    async def rename_room(self, new_name: str) -> Outcome:
        return await self._boundary("rename_room", self._rename_room(new_name))

    async def _rename_room(self, new_name: str) -> Outcome:
        trimmed = (new_name or "").strip()
        if not trimmed:
            raise InvalidRequest("Room name cannot be empty.")
        identity = self.context.client_identity

        def apply(room: Room) -> Room:
            if not room.is_host(identity):
                raise Unauthorized("Only the host can rename the room.")
            room.name = trimmed
            return room

        room = await self._mutate(apply)
        return Outcome.success(f'Room renamed to: "{trimmed}"', room=room)

    async def set_role_count(self, role_name: str, delta: int) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.set_role_count(config, role_name, delta)
            ))
            setting = room.config.role_setting(role_name)
            return Outcome.success(room=room, role=role_name, count=setting.count)
        return await self._boundary("set_role_count", run())

    async def toggle_role_disabled(self, role_name: str) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.toggle_role_disabled(config, role_name)
            ))
            setting = room.config.role_setting(role_name)
            return Outcome.success(room=room, role=role_name, is_disabled=setting.is_disabled)
        return await self._boundary("toggle_role_disabled", run())

    async def add_category(self, category_name: str) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.add_category(config, category_name)
            ))
            return Outcome.success(f'Gem category "{category_name}" added.', room=room)
        return await self._boundary("add_category", run())

    async def remove_category(self, category_name: str) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.remove_category(config, category_name)
            ))
            return Outcome.success(f'Gem category "{category_name}" removed.', room=room)
        return await self._boundary("remove_category", run())

    async def set_category_count(self, category_name: str, delta: int) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.set_category_count(config, category_name, delta)
            ))
            setting = room.config.category(category_name)
            return Outcome.success(room=room, category=category_name, count=setting.count)
        return await self._boundary("set_category_count", run())

    async def set_deal_mode(self, mode: DealMode) -> Outcome:
        async def run() -> Outcome:
            room = await self._mutate(self._on_config(
                lambda config: self.configurator.set_deal_mode(config, mode)
            ))
            return Outcome.success(room=room, deal_mode=room.config.deal_mode.value)
        return await self._boundary("set_deal_mode", run())

    # ── Dealing ───────────────────────────────────────────────────────────────

    async def deal(self, redeal: bool = False) -> Outcome:
        async def run() -> Outcome:
            identity = self.context.client_identity
            room = await self._mutate(lambda r: self.dealer.apply_deal(r, identity, redeal))
            return Outcome.success(
                "Game started! Roles have been assigned.",
                room=room,
                center_pool_size=len(room.config.center_pool),
            )
        return await self._boundary("deal", run())

    async def reset_to_lobby(self) -> Outcome:
        async def run() -> Outcome:
            identity = self.context.client_identity
            room = await self._mutate(lambda r: self.dealer.apply_reset(r, identity))
            return Outcome.success("Back to the lobby.", room=room)
        return await self._boundary("reset_to_lobby", run())

    # ── Presence & reconciliation ─────────────────────────────────────────────

    async def heartbeat(self) -> Outcome:
        """Record that this client is alive. Presence only; the room document is not written."""
        async def run() -> Outcome:
            ctx = self.context
            if ctx.state != SessionState.IN_ROOM or ctx.room_id is None:
                raise InvalidRequest("Not in a room.")
            seen = self.presence.touch(ctx.client_identity)
            return Outcome.success(room=ctx.room, last_seen=seen.isoformat())
        return await self._boundary("heartbeat", run())

    def _idle_since(self, player: Player) -> Optional[datetime]:
        """When `player` was last heard from, or None while it is connected."""
        if self.presence.is_connected(player.client_identity):
            return None
        heard = self.presence.last_seen(player.client_identity)
        return max(player.last_seen, heard) if heard is not None else player.last_seen

    async def prune_stale_players(self, max_idle_seconds: Optional[int] = None) -> Outcome:
        """Host-triggered cleanup for players whose departure signal never arrived."""
        async def run() -> Outcome:
            identity = self.context.client_identity
            idle = settings.stale_player_seconds if max_idle_seconds is None else max_idle_seconds
            cutoff = _utcnow() - timedelta(seconds=idle)
            removed: List[str] = []

            def apply(room: Room) -> Room:
                if not room.is_host(identity):
                    raise Unauthorized("Only the host can remove disconnected players.")
                removed.clear()
                for p in list(room.players):
                    since = self._idle_since(p)
                    if p.client_identity != identity and since is not None and since < cutoff:
                        remove_player(room, p.client_identity)
                        removed.append(p.display_id)
                return room

            room = await self._mutate(apply)
            if removed:
                logger.info("[%s] Pruned %d stale players: %s", room.id, len(removed), removed)
            return Outcome.success(
                f"Removed {len(removed)} disconnected players.", room=room, removed=list(removed)
            )
        return await self._boundary("prune_stale_players", run())

    async def refresh(self) -> Outcome:
        """Re-read the document, e.g. after a StoreUnavailable failure."""
        async def run() -> Outcome:
            ctx = self.context
            if ctx.room_id is None:
                raise InvalidRequest("Not in a room.")
            room = await self.store.get(ctx.room_id)
            if room.find_player(ctx.client_identity) is None:
                raise StaleLocalState(room.id)
            if self._cache(room):
                await self._notify(room)
            return Outcome.success(room=ctx.room)
        return await self._boundary("refresh", run())


class SessionRegistry:
    """
    One coordinator per durable client identity, for the lifetime of the
    process. `listener(coordinator, room)` receives every room change.
    """

    def __init__(
        self,
        listener: Optional[Callable[["SessionCoordinator", Optional[Room]], Union[None, Awaitable[None]]]] = None,
    ):
        self._sessions: Dict[str, SessionCoordinator] = {}
        self.listener = listener

    def get(self, client_identity: str) -> SessionCoordinator:
        coordinator = self._sessions.get(client_identity)
        if coordinator is None:
            coordinator = SessionCoordinator(client_identity)
            if self.listener is not None:
                listener = self.listener
                coordinator.on_room_changed = lambda room, c=coordinator: listener(c, room)
            self._sessions[client_identity] = coordinator
        return coordinator

    def discard(self, client_identity: str) -> None:
        coordinator = self._sessions.pop(client_identity, None)
        if coordinator is not None:
            coordinator._unsubscribe()

    def clear(self) -> None:
        for client_identity in list(self._sessions):
            self.discard(client_identity)

    def __len__(self) -> int:
        return len(self._sessions)
