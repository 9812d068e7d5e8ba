"""
Presence — who is connected and when each client was last heard from.

Kept in-process and out of the Room document: heartbeats arrive on a timer,
and a whole-document write per heartbeat would race with (and could erase)
human-paced writes such as a deal. `Player.last_seen` in the document is set
on join; this tracker refines it for the lifetime of the process.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Optional, Set

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PresenceTracker:
    """Safe for asyncio single-threaded event loop (no extra locking needed)."""

    def __init__(self):
        # {client_identity: last heartbeat}
        self._seen: Dict[str, datetime] = {}
        self._connected: Set[str] = set()

    def touch(self, client_identity: str) -> datetime:
        now = _utcnow()
        self._seen[client_identity] = now
        return now

    def last_seen(self, client_identity: str) -> Optional[datetime]:
        return self._seen.get(client_identity)

    def mark_connected(self, client_identity: str) -> None:
        self._connected.add(client_identity)
        self.touch(client_identity)

    def mark_disconnected(self, client_identity: str) -> None:
        self._connected.discard(client_identity)
        self.touch(client_identity)

    def is_connected(self, client_identity: str) -> bool:
        return client_identity in self._connected

    def forget(self, client_identity: str) -> None:
        self._seen.pop(client_identity, None)
        self._connected.discard(client_identity)


_presence: Optional[PresenceTracker] = None


def get_presence() -> PresenceTracker:
    global _presence
    if _presence is None:
        _presence = PresenceTracker()
    return _presence


def set_presence(tracker: Optional[PresenceTracker]) -> None:
    global _presence
    _presence = tracker
