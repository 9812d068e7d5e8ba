from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List, Literal


class Settings(BaseSettings):
    # "memory" keeps rooms in-process; "firestore" uses one document per room
    store_backend: Literal["memory", "firestore"] = "memory"
    google_cloud_project: str = ""
    firestore_emulator_host: Optional[str] = None
    firestore_collection: str = "rooms"

    room_code_length: int = 6
    room_code_max_attempts: int = 5
    # Applied to every store read/write; exceeded calls surface as TimedOut
    request_timeout_seconds: float = 10.0
    # Idle threshold used by the host's "prune disconnected players"
    stale_player_seconds: int = 120
    # Fire the best-effort leave when a client's WebSocket closes
    leave_on_disconnect: bool = True

    # CORS origins; set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin; appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
