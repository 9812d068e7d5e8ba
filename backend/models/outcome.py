from typing import Any, Dict, Optional

from pydantic import BaseModel

from models.errors import LobbyError
from models.room import Room


class Outcome(BaseModel):
    """Result of every coordinator mutation; nothing is raised across the UI boundary."""
    ok: bool
    code: str = "ok"
    message: str = ""
    room: Optional[Room] = None
    data: Dict[str, Any] = {}

    @classmethod
    def success(cls, message: str = "", room: Optional[Room] = None, **data: Any) -> "Outcome":
        return cls(ok=True, message=message, room=room, data=data)

    @classmethod
    def failure(cls, exc: LobbyError) -> "Outcome":
        return cls(ok=False, code=exc.code, message=exc.message, data=dict(exc.details))
