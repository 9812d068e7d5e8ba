import pytest

from agents.role_pool import RolePoolConfigurator
from models.errors import CategoryExists, InvalidRequest, RoleLocked
from models.room import DealMode, GemCategorySetting, RoomConfig


@pytest.fixture
def pool():
    return RolePoolConfigurator()


@pytest.fixture
def config():
    return RoomConfig()


def test_count_steps_and_clamps_at_zero(pool, config):
    assert pool.set_role_count(config, "Seer", 1).count == 1
    assert pool.set_role_count(config, "Seer", -1).count == 0
    assert pool.set_role_count(config, "Seer", -1).count == 0
    assert config.role_setting("Seer").count == 0


def test_unknown_role_is_rejected(pool, config):
    with pytest.raises(InvalidRequest):
        pool.set_role_count(config, "Dragon", 1)


def test_toggle_flips_disabled(pool, config):
    assert pool.toggle_role_disabled(config, "Werewolf").is_disabled is True
    assert config.role_setting("Werewolf").enabled_count == 0
    assert pool.toggle_role_disabled(config, "Werewolf").is_disabled is False
    assert config.role_setting("Werewolf").enabled_count == 2


def test_locked_role_cannot_be_toggled(pool, config):
    with pytest.raises(RoleLocked):
        pool.toggle_role_disabled(config, "Nobody")
    assert config.role_setting("Nobody").is_disabled


def test_add_category_once(pool, config):
    pool.add_category(config, "Werewolfs")
    with pytest.raises(CategoryExists):
        pool.add_category(config, "Werewolfs")
    assert [g.category_name for g in config.gem_categories] == ["Werewolfs"]


@pytest.mark.parametrize("name", ["None", "Dragons"])
def test_only_dealable_categories_can_be_added(pool, config, name):
    with pytest.raises(InvalidRequest):
        pool.add_category(config, name)


def test_category_count_and_removal(pool, config):
    pool.add_category(config, "Townfolks")
    assert pool.set_category_count(config, "Townfolks", 1).count == 1
    assert pool.set_category_count(config, "Townfolks", -1).count == 0
    assert pool.set_category_count(config, "Townfolks", -1).count == 0
    pool.remove_category(config, "Townfolks")
    assert config.gem_categories == []
    with pytest.raises(InvalidRequest):
        pool.remove_category(config, "Townfolks")
    with pytest.raises(InvalidRequest):
        pool.set_category_count(config, "Townfolks", 1)


def test_check_rejects_duplicate_categories(pool, config):
    config.gem_categories = [
        GemCategorySetting(category_name="Specials"),
        GemCategorySetting(category_name="Specials"),
    ]
    with pytest.raises(CategoryExists):
        pool.check(config)


def test_set_deal_mode(pool, config):
    pool.set_deal_mode(config, DealMode.GEMS)
    assert config.deal_mode == DealMode.GEMS
