"""
Room Document Store — the canonical record for one session, read and written
as a whole document.

Contract:
  get(room_id)            -> Room            (RoomNotFound)
  insert(room)            -> Room            (RoomAlreadyExists)
  replace(room_id, room)  -> Room            (RoomNotFound)
  delete(room_id)         -> None            (idempotent)

No partial-field update is exposed. Callers fetch the latest document, apply
their change and replace the whole thing; the last writer wins.
Every call is bounded by settings.request_timeout_seconds (TimedOut), and any
backend failure surfaces as StoreUnavailable so the caller may retry.
"""
import asyncio
import copy
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Optional

from config import settings
from models.errors import (
    LobbyError, RoomAlreadyExists, RoomNotFound, StoreUnavailable, TimedOut,
)
from models.room import Room
from services.change_feed import ChangeFeed, FirestoreChangeFeed, RoomEvent

logger = logging.getLogger(__name__)


class RoomStore:
    """Base class: timeout + error translation around the backend primitives."""

    feed: ChangeFeed
    # True when the backend has no watch of its own and writes are fanned out here
    publishes_writes: bool = False

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = settings.request_timeout_seconds if timeout is None else timeout

    async def _guard(self, operation: str, room_id: str, coro: Awaitable[Any]) -> Any:
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except LobbyError:
            raise
        except asyncio.TimeoutError:
            logger.warning("[%s] %s timed out after %.1fs", room_id, operation, self.timeout)
            raise TimedOut(operation, self.timeout)
        except Exception as exc:
            logger.error("[%s] %s failed: %s", room_id, operation, exc)
            raise StoreUnavailable(f"Database connection error: {exc}") from exc

    # ── Public contract ───────────────────────────────────────────────────────

    async def get(self, room_id: str) -> Room:
        return await self._guard("get", room_id, self._get(room_id))

    async def exists(self, room_id: str) -> bool:
        try:
            await self.get(room_id)
        except RoomNotFound:
            return False
        return True

    async def insert(self, room: Room) -> Room:
        stored = await self._guard("insert", room.id, self._insert(room))
        await self._published(RoomEvent.updated(stored))
        return stored

    async def replace(self, room_id: str, room: Room) -> Room:
        if room.id != room_id:
            raise ValueError(f"Document id {room.id} does not match {room_id}")
        stored = await self._guard("replace", room_id, self._replace(room_id, room))
        await self._published(RoomEvent.updated(stored))
        return stored

    async def delete(self, room_id: str) -> None:
        existed = await self._guard("delete", room_id, self._delete(room_id))
        if existed:
            await self._published(RoomEvent.removed(room_id))

    async def _published(self, event: RoomEvent) -> None:
        """
        Fan a committed write out to local subscribers. Runs outside the
        timeout: the write has already happened, so a slow subscriber must
        neither turn it into a failure nor cut off the subscribers after it.
        """
        if self.publishes_writes:
            await self.feed.publish(event)

    async def read_modify_write(
        self, room_id: str, apply: Callable[[Room], Optional[Room]]
    ) -> Optional[Room]:
        """
        Fetch-latest, apply-change, whole-document-replace.

        `apply` mutates the fetched copy and returns it; returning None deletes
        the room instead. If `apply` raises, nothing is written. Concurrent
        cycles are not serialized: the later replace overwrites the earlier one.
        """
        room = await self.get(room_id)
        base_revision = room.revision
        updated = apply(room)
        if updated is None:
            await self.delete(room_id)
            return None
        updated.revision = base_revision + 1
        return await self.replace(room_id, updated)

    # ── Backend primitives ────────────────────────────────────────────────────

    async def _get(self, room_id: str) -> Room:
        raise NotImplementedError

    async def _insert(self, room: Room) -> Room:
        raise NotImplementedError

    async def _replace(self, room_id: str, room: Room) -> Room:
        raise NotImplementedError

    async def _delete(self, room_id: str) -> bool:
        """Returns whether a document was removed."""
        raise NotImplementedError


class InMemoryRoomStore(RoomStore):
    """
    Process-local store. Documents are kept serialized so no caller ever holds
    a live reference to the stored copy. Each single write is atomic; nothing
    spans a read and a later write.
    """

    publishes_writes = True

    def __init__(self, feed: Optional[ChangeFeed] = None, timeout: Optional[float] = None):
        super().__init__(timeout)
        self.feed = feed if feed is not None else ChangeFeed()
        self._docs: Dict[str, Dict[str, Any]] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._docs)

    async def _get(self, room_id: str) -> Room:
        doc = self._docs.get(room_id)
        if doc is None:
            raise RoomNotFound(room_id)
        return Room.from_document(copy.deepcopy(doc))

    async def _insert(self, room: Room) -> Room:
        async with self._lock:
            if room.id in self._docs:
                raise RoomAlreadyExists(room.id)
            self._docs[room.id] = room.to_document()
            return Room.from_document(copy.deepcopy(self._docs[room.id]))

    async def _replace(self, room_id: str, room: Room) -> Room:
        async with self._lock:
            if room_id not in self._docs:
                raise RoomNotFound(room_id)
            self._docs[room_id] = room.to_document()
            return Room.from_document(copy.deepcopy(self._docs[room_id]))

    async def _delete(self, room_id: str) -> bool:
        async with self._lock:
            return self._docs.pop(room_id, None) is not None


class FirestoreRoomStore(RoomStore):
    """
    Async-friendly Firestore wrapper using run_in_executor to avoid
    blocking the event loop. One document per room.
    """

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        if settings.firestore_emulator_host:
            os.environ["FIRESTORE_EMULATOR_HOST"] = settings.firestore_emulator_host
        # Lazy import so the service can be instantiated before GCP creds exist
        from google.cloud import firestore
        self.db = firestore.Client(project=settings.google_cloud_project or None)
        self.feed = FirestoreChangeFeed(self._room_ref)

    def _run(self, fn):
        """Run a sync Firestore call in the default thread pool."""
        loop = asyncio.get_running_loop()
        return loop.run_in_executor(None, fn)

    def _room_ref(self, room_id: str):
        return self.db.collection(settings.firestore_collection).document(room_id)

    async def _get(self, room_id: str) -> Room:
        doc = await self._run(lambda: self._room_ref(room_id).get())
        if not doc.exists:
            raise RoomNotFound(room_id)
        return Room.from_document(doc.to_dict())

    async def _insert(self, room: Room) -> Room:
        from google.api_core.exceptions import AlreadyExists, Conflict

        data = room.to_document()
        try:
            await self._run(lambda: self._room_ref(room.id).create(data))
        except (AlreadyExists, Conflict):
            raise RoomAlreadyExists(room.id)
        return room

    async def _replace(self, room_id: str, room: Room) -> Room:
        from google.api_core.exceptions import NotFound

        # Every top-level field is supplied, so update() replaces the whole
        # document while the exists precondition keeps deleted rooms deleted.
        data = room.to_document()
        option = self.db.write_option(exists=True)
        try:
            await self._run(lambda: self._room_ref(room_id).update(data, option=option))
        except NotFound:
            raise RoomNotFound(room_id)
        return room

    async def _delete(self, room_id: str) -> bool:
        # The watch reports the removal; Firestore deletes are idempotent
        await self._run(lambda: self._room_ref(room_id).delete())
        return True


_room_store: Optional[RoomStore] = None


def get_room_store() -> RoomStore:
    """Lazy singleton — initialised on first call, not at import time.
    This prevents credential errors from crashing the app before FastAPI boots.
    Use as a FastAPI dependency: Depends(get_room_store)
    """
    global _room_store
    if _room_store is None:
        if settings.store_backend == "firestore":
            _room_store = FirestoreRoomStore()
        else:
            _room_store = InMemoryRoomStore()
        logger.info("Room store initialised (%s)", settings.store_backend)
    return _room_store


def set_room_store(store: Optional[RoomStore]) -> None:
    """Swap the process-wide store (tests, alternate backends)."""
    global _room_store
    _room_store = store
