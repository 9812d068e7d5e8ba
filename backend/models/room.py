from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import Optional, List, Dict, Any
from enum import Enum
from datetime import datetime, timezone

from models.roles import ROLE_TEMPLATES, RoleTemplate, get_role_template


ROOM_SCHEMA_VERSION = 1


def _utcnow() -> datetime:
    """Timezone-aware UTC datetime (replaces deprecated datetime.utcnow)."""
    return datetime.now(timezone.utc)


def _rename(data: Dict[str, Any], mapping: Dict[str, str]) -> Dict[str, Any]:
    """Copy `data`, moving legacy keys onto their current names when absent."""
    out = dict(data)
    for old, new in mapping.items():
        if old in out:
            value = out.pop(old)
            out.setdefault(new, value)
    return out


class PlayerStatus(str, Enum):
    ALIVE = "Alive"
    DEAD = "Dead"


class GameState(str, Enum):
    LOBBY = "lobby"   # configuring; roles not dealt
    NIGHT = "night"   # dealt; first phase after a deal
    DAY = "day"


class DealMode(str, Enum):
    ROLES = "roles"   # pool sized by per-role counts
    GEMS = "gems"     # pool sized by per-category counts


class RoleInstance(BaseModel):
    """A dealt card: frozen copy of the role template plus its resolved art."""
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    gem: str = "None"
    rough_gem: str = "Townfolks"
    image_url: str = ""

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _rename(data, {"chosen-image-url": "image_url", "rough-gem": "rough_gem"})
        return data

    @classmethod
    def from_template(cls, template: RoleTemplate, image_url: str) -> "RoleInstance":
        return cls(
            name=template.name,
            description=template.description,
            gem=template.gem,
            rough_gem=template.rough_gem,
            image_url=image_url,
        )


class Player(BaseModel):
    client_identity: str          # durable per-browser id; never shown to others
    display_id: str               # short id shown in the lobby
    display_name: str
    status: PlayerStatus = PlayerStatus.ALIVE
    assigned_roles: List[RoleInstance] = []
    last_seen: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _rename(data, {
                "local-id": "client_identity",
                "uid": "display_id",
                "player_id": "display_id",
                "name": "display_name",
                "roles": "assigned_roles",
            })
        return data

    def to_public(self) -> Dict[str, Any]:
        """Lobby representation — omits the durable identity and dealt roles."""
        return {
            "display_id": self.display_id,
            "display_name": self.display_name,
            "status": self.status.value,
            "has_roles": bool(self.assigned_roles),
        }


class RoleSetting(BaseModel):
    role_name: str
    count: int = Field(0, ge=0)
    is_disabled: bool = False

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _rename(data, {"role": "role_name", "amount": "count", "isDisabled": "is_disabled"})
            if isinstance(data.get("count"), int) and data["count"] < 0:
                data["count"] = 0
        return data

    @property
    def enabled_count(self) -> int:
        return 0 if self.is_disabled else self.count


class GemCategorySetting(BaseModel):
    category_name: str
    count: int = Field(0, ge=0)

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = _rename(data, {"gem": "category_name"})
            if isinstance(data.get("count"), int) and data["count"] < 0:
                data["count"] = 0
        return data


def default_role_settings() -> List[RoleSetting]:
    return [
        RoleSetting(role_name=r.name, count=r.default_count, is_disabled=r.always_disabled)
        for r in ROLE_TEMPLATES
    ]


class RoomConfig(BaseModel):
    schema_version: int = ROOM_SCHEMA_VERSION
    role_settings: List[RoleSetting] = Field(default_factory=default_role_settings)
    gem_categories: List[GemCategorySetting] = []
    role_image_map: Dict[str, str] = {}
    center_pool: List[RoleInstance] = []
    game_state: GameState = GameState.LOBBY
    deal_mode: DealMode = DealMode.ROLES
    current_day: int = 0
    background_image_url: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_keys(cls, data: Any) -> Any:
        if isinstance(data, dict):
            return _rename(data, {
                "gem_included_settings": "gem_categories",
                "center_role_pool": "center_pool",
            })
        return data

    @model_validator(mode="after")
    def _normalize(self) -> "RoomConfig":
        # Roles added to the catalog after the room was created get their defaults;
        # permanently disabled roles stay disabled whatever the document says.
        known = {s.role_name for s in self.role_settings}
        for template in ROLE_TEMPLATES:
            if template.name not in known:
                self.role_settings.append(RoleSetting(
                    role_name=template.name,
                    count=template.default_count,
                    is_disabled=template.always_disabled,
                ))
        for setting in self.role_settings:
            template = get_role_template(setting.role_name)
            if template and template.always_disabled:
                setting.is_disabled = True
        self.schema_version = ROOM_SCHEMA_VERSION
        return self

    def role_setting(self, role_name: str) -> Optional[RoleSetting]:
        for s in self.role_settings:
            if s.role_name == role_name:
                return s
        return None

    def category(self, category_name: str) -> Optional[GemCategorySetting]:
        for g in self.gem_categories:
            if g.category_name == category_name:
                return g
        return None


class Room(BaseModel):
    id: str
    name: str
    host_id: str
    players: List[Player] = []
    config: RoomConfig = Field(default_factory=RoomConfig)
    # Bumped on every read-modify-write; lets a client drop deliveries older than its cache
    revision: int = 0
    created_at: datetime = Field(default_factory=_utcnow)

    @model_validator(mode="before")
    @classmethod
    def _legacy_document(cls, data: Any) -> Any:
        # Documents written by the original lobby keep everything under game_data
        if isinstance(data, dict) and "game_data" in data and "config" not in data:
            data = dict(data)
            game_data = dict(data.pop("game_data") or {})
            data.setdefault("name", game_data.pop("roomName", "") or data.get("id", ""))
            data["config"] = game_data
        if isinstance(data, dict) and data.get("players") is None:
            data = {**data, "players": []}
        return data

    # ── Lookups ───────────────────────────────────────────────────────────────

    def find_player(self, client_identity: str) -> Optional[Player]:
        for p in self.players:
            if p.client_identity == client_identity:
                return p
        return None

    def find_by_display_id(self, display_id: str) -> Optional[Player]:
        for p in self.players:
            if p.display_id == display_id:
                return p
        return None

    def is_host(self, client_identity: str) -> bool:
        return self.host_id == client_identity

    @property
    def is_dealt(self) -> bool:
        return self.config.game_state != GameState.LOBBY

    # ── Serialization ─────────────────────────────────────────────────────────

    def to_document(self) -> Dict[str, Any]:
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: Dict[str, Any]) -> "Room":
        """Normalize-on-load: every optional field gets its default here."""
        return cls.model_validate(data)

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "host_display_id": next(
                (p.display_id for p in self.players if p.client_identity == self.host_id), None
            ),
            "players": [p.to_public() for p in self.players],
            "game_state": self.config.game_state.value,
            "deal_mode": self.config.deal_mode.value,
            "current_day": self.config.current_day,
            "center_pool_size": len(self.config.center_pool),
            "background_image_url": self.config.background_image_url,
        }

    def view_for(self, client_identity: str) -> Dict[str, Any]:
        """What one client is shown: the lobby, the shared config and its own cards only."""
        me = self.find_player(client_identity)
        return {
            "room": self.to_public(),
            "revision": self.revision,
            "config": {
                "role_settings": [s.model_dump() for s in self.config.role_settings],
                "gem_categories": [g.model_dump() for g in self.config.gem_categories],
                "role_image_map": dict(self.config.role_image_map),
            },
            "me": {
                "display_id": me.display_id,
                "display_name": me.display_name,
                "is_host": self.is_host(client_identity),
                "assigned_roles": [r.model_dump() for r in me.assigned_roles],
            } if me else None,
        }


# ── HTTP request/response models ──────────────────────────────────────────────

class CreateRoomRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=40)
    room_name: Optional[str] = Field(None, max_length=60)


class JoinRoomRequest(BaseModel):
    display_name: str = Field(..., min_length=1, max_length=40)


class KickRequest(BaseModel):
    target_display_id: str


class RenameRoomRequest(BaseModel):
    name: str = Field(..., max_length=60)


class CountChangeRequest(BaseModel):
    delta: int = Field(..., ge=-1, le=1)


class DealRequest(BaseModel):
    redeal: bool = False


class DealModeRequest(BaseModel):
    mode: DealMode


class PruneRequest(BaseModel):
    max_idle_seconds: Optional[int] = Field(None, ge=0)
