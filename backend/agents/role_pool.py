"""
Role Pool Configurator — edits the role counts and gem categories of a room.

Every method mutates the RoomConfig of a freshly fetched document; the caller
runs it inside RoomStore.read_modify_write so the whole config is written
back in one replace. Any client in the room may configure; only counts are
validated here.
"""
import logging

from models.errors import CategoryExists, InvalidRequest, RoleLocked
from models.roles import dealable_categories, get_role_template
from models.room import DealMode, GemCategorySetting, RoleSetting, RoomConfig

logger = logging.getLogger(__name__)


class RolePoolConfigurator:

    def set_role_count(self, config: RoomConfig, role_name: str, delta: int) -> RoleSetting:
        """Clamp at zero rather than erroring; the UI only steps by ±1."""
        setting = config.role_setting(role_name)
        if setting is None:
            raise InvalidRequest(f"Unknown role: {role_name}", role=role_name)
        setting.count = max(0, setting.count + delta)
        self.check(config)
        return setting

    def toggle_role_disabled(self, config: RoomConfig, role_name: str) -> RoleSetting:
        setting = config.role_setting(role_name)
        template = get_role_template(role_name)
        if setting is None or template is None:
            raise InvalidRequest(f"Unknown role: {role_name}", role=role_name)
        if template.always_disabled:
            raise RoleLocked(role_name)
        setting.is_disabled = not setting.is_disabled
        self.check(config)
        return setting

    def add_category(self, config: RoomConfig, category_name: str) -> GemCategorySetting:
        if category_name not in dealable_categories():
            raise InvalidRequest(f"Unknown gem category: {category_name}", category=category_name)
        if config.category(category_name) is not None:
            raise CategoryExists(category_name)
        setting = GemCategorySetting(category_name=category_name, count=0)
        config.gem_categories.append(setting)
        self.check(config)
        return setting

    def remove_category(self, config: RoomConfig, category_name: str) -> None:
        if config.category(category_name) is None:
            raise InvalidRequest(
                f'Gem category "{category_name}" is not added.', category=category_name
            )
        config.gem_categories = [
            g for g in config.gem_categories if g.category_name != category_name
        ]
        self.check(config)

    def set_category_count(
        self, config: RoomConfig, category_name: str, delta: int
    ) -> GemCategorySetting:
        setting = config.category(category_name)
        if setting is None:
            raise InvalidRequest(
                f'Gem category "{category_name}" is not added.', category=category_name
            )
        setting.count = max(0, setting.count + delta)
        self.check(config)
        return setting

    def set_deal_mode(self, config: RoomConfig, mode: DealMode) -> None:
        config.deal_mode = mode

    def check(self, config: RoomConfig) -> None:
        """Invariants that must hold before any config write."""
        for s in config.role_settings:
            if s.count < 0:
                raise InvalidRequest(f"Negative count for {s.role_name}")
        seen = set()
        for g in config.gem_categories:
            if g.count < 0:
                raise InvalidRequest(f"Negative count for {g.category_name}")
            if g.category_name in seen:
                raise CategoryExists(g.category_name)
            seen.add(g.category_name)


# Module-level singleton
role_pool = RolePoolConfigurator()
