"""
Change Feed — "document changed" / "document removed" notifications per room.

Delivery is at-least-once with no ordering guarantee between writes from
different clients. Subscribers must treat every Updated event as the whole,
authoritative document and replace their cached copy with it.
"""
import asyncio
import inspect
import itertools
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, Union

from pydantic import BaseModel

from models.room import Room

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    UPDATED = "updated"
    REMOVED = "removed"


class RoomEvent(BaseModel):
    kind: EventKind
    room_id: str
    room: Optional[Room] = None

    @classmethod
    def updated(cls, room: Room) -> "RoomEvent":
        return cls(kind=EventKind.UPDATED, room_id=room.id, room=room)

    @classmethod
    def removed(cls, room_id: str) -> "RoomEvent":
        return cls(kind=EventKind.REMOVED, room_id=room_id)


EventHandler = Callable[[RoomEvent], Union[None, Awaitable[None]]]


class SubscriptionHandle(BaseModel):
    id: int
    room_id: str


class ChangeFeed:
    """
    In-process fan-out keyed by room id.
    Safe for the asyncio single-threaded event loop (no extra locking needed).
    """

    def __init__(self):
        # {room_id: {subscription_id: handler}}
        self._subscribers: Dict[str, Dict[int, EventHandler]] = {}
        self._ids = itertools.count(1)

    def subscribe(self, room_id: str, on_event: EventHandler) -> SubscriptionHandle:
        handle = SubscriptionHandle(id=next(self._ids), room_id=room_id)
        room_subs = self._subscribers.setdefault(room_id, {})
        first = not room_subs
        room_subs[handle.id] = on_event
        if first:
            self._on_first_subscriber(room_id)
        logger.debug("[%s] subscription %d added (%d total)", room_id, handle.id, self.count(room_id))
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> None:
        room_subs = self._subscribers.get(handle.room_id)
        if not room_subs or room_subs.pop(handle.id, None) is None:
            return
        if not room_subs:
            self._subscribers.pop(handle.room_id, None)
            self._on_last_unsubscribe(handle.room_id)
        logger.debug("[%s] subscription %d removed", handle.room_id, handle.id)

    def count(self, room_id: str) -> int:
        return len(self._subscribers.get(room_id, {}))

    async def publish(self, event: RoomEvent) -> None:
        """Deliver to every subscriber of the room; one failing handler never blocks the rest."""
        for sub_id, handler in list(self._subscribers.get(event.room_id, {}).items()):
            # Each subscriber gets its own copy so a handler can't mutate another's view
            delivered = event.model_copy(deep=True)
            try:
                result = handler(delivered)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception(
                    "[%s] change-feed handler %d failed on %s", event.room_id, sub_id, event.kind.value
                )

    # ── Hooks for backends that watch a remote document ───────────────────────

    def _on_first_subscriber(self, room_id: str) -> None:
        pass

    def _on_last_unsubscribe(self, room_id: str) -> None:
        pass


class FirestoreChangeFeed(ChangeFeed):
    """
    Bridges Firestore `on_snapshot` document watches onto the event loop.
    Snapshot callbacks run on a Firestore background thread, so events are
    handed to the loop with run_coroutine_threadsafe.
    """

    def __init__(self, document_ref: Callable[[str], object]):
        super().__init__()
        self._document_ref = document_ref
        self._watches: Dict[str, object] = {}
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def _on_first_subscriber(self, room_id: str) -> None:
        self._loop = asyncio.get_running_loop()
        loop = self._loop

        def _on_snapshot(docs, changes, read_time):
            for doc in docs:
                if doc.exists:
                    event = RoomEvent.updated(Room.from_document(doc.to_dict()))
                else:
                    event = RoomEvent.removed(room_id)
                asyncio.run_coroutine_threadsafe(self.publish(event), loop)

        self._watches[room_id] = self._document_ref(room_id).on_snapshot(_on_snapshot)
        logger.info("[%s] Firestore watch started", room_id)

    def _on_last_unsubscribe(self, room_id: str) -> None:
        watch = self._watches.pop(room_id, None)
        if watch is not None:
            watch.unsubscribe()
            logger.info("[%s] Firestore watch stopped", room_id)
