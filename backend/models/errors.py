"""
Lobby error taxonomy.

Internal layers (store, change feed, dealer, configurator) raise these.
The SessionCoordinator catches them at the UI boundary and turns them into
an Outcome; the HTTP layer maps Outcome.code onto a status code.
"""
from typing import Any, Dict, Optional


class LobbyError(Exception):
    code: str = "error"

    def __init__(self, message: str = "", **details: Any):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details: Dict[str, Any] = details


class RoomNotFound(LobbyError):
    code = "not_found"

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} not found", room_id=room_id)
        self.room_id = room_id


class PlayerNotFound(LobbyError):
    code = "not_found"

    def __init__(self, room_id: str, player_ref: str):
        super().__init__(f"Player {player_ref} is not in room {room_id}", player=player_ref)


class RoomAlreadyExists(LobbyError):
    code = "already_exists"

    def __init__(self, room_id: str):
        super().__init__(f"Room {room_id} already exists", room_id=room_id)


class Unauthorized(LobbyError):
    code = "unauthorized"


class CannotKickSelf(LobbyError):
    code = "cannot_kick_self"

    def __init__(self):
        super().__init__("You cannot kick yourself.")


class InsufficientRoles(LobbyError):
    code = "insufficient_roles"

    def __init__(self, needed: int, available: int):
        super().__init__(
            f"Not enough roles for all {needed} players. "
            f"Need {needed - available} more roles.",
            needed=needed,
            available=available,
        )
        self.needed = needed
        self.available = available


class AlreadyDealt(LobbyError):
    code = "already_dealt"

    def __init__(self, room_id: str):
        super().__init__(
            f"Roles in room {room_id} are already dealt. Reset to lobby first.",
            room_id=room_id,
        )


class RoleLocked(LobbyError):
    code = "role_locked"

    def __init__(self, role_name: str):
        super().__init__(f"{role_name} is permanently disabled.", role=role_name)


class CategoryExists(LobbyError):
    code = "category_exists"

    def __init__(self, category_name: str):
        super().__init__(
            f'Gem category "{category_name}" is already added.', category=category_name
        )


class InvalidRequest(LobbyError):
    code = "invalid"


class StoreUnavailable(LobbyError):
    code = "store_unavailable"


class TimedOut(LobbyError):
    code = "timed_out"

    def __init__(self, operation: str, timeout: Optional[float] = None):
        super().__init__(
            f"{operation} did not complete in time. Please retry.",
            operation=operation,
            timeout=timeout,
        )


class StaleLocalState(LobbyError):
    """Raised when this client no longer appears in the room's player list."""
    code = "stale_local_state"

    def __init__(self, room_id: str):
        super().__init__(f"You are no longer in room {room_id}.", room_id=room_id)
