from models.roles import (
    NOBODY_IMAGE_PATH, ROLE_TEMPLATES, get_role_template, resolve_role_image, role_image_path,
)
from models.room import (
    DealMode, GameState, Player, RoleInstance, RoleSetting, Room, RoomConfig,
)


def test_new_config_covers_whole_catalog():
    config = RoomConfig()
    assert {s.role_name for s in config.role_settings} == {r.name for r in ROLE_TEMPLATES}
    assert config.role_setting("Werewolf").count == 2
    assert config.role_setting("Nobody").is_disabled
    assert config.deal_mode == DealMode.ROLES
    assert config.game_state == GameState.LOBBY


def test_negative_counts_are_clamped_on_load():
    setting = RoleSetting.model_validate({"role": "Seer", "amount": -3})
    assert setting.role_name == "Seer"
    assert setting.count == 0


def test_locked_roles_cannot_be_enabled_by_a_document():
    config = RoomConfig.model_validate({
        "role_settings": [{"role_name": "Mason", "count": 3, "is_disabled": False}],
    })
    mason = config.role_setting("Mason")
    assert mason.is_disabled
    assert mason.enabled_count == 0


def test_legacy_document_is_normalized():
    legacy = {
        "id": "ABC123",
        "host_id": "local-1",
        "players": [
            {"local-id": "local-1", "uid": "P1", "name": "Ann"},
            {"local-id": "local-2", "uid": "P2", "name": "Ben", "roles": [
                {"name": "Seer", "gem": "Townfolks", "rough-gem": "Townfolks",
                 "chosen-image-url": "/images/roles/seer-v-1.jpeg"},
            ]},
        ],
        "game_data": {
            "roomName": "Old Room",
            "role_settings": [{"role": "Villager", "amount": 4, "isDisabled": False}],
            "gem_included_settings": [{"gem": "Werewolfs", "count": 1}],
            "center_role_pool": [],
            "game_state": "night",
        },
    }
    room = Room.from_document(legacy)

    assert room.name == "Old Room"
    assert room.revision == 0
    assert [p.display_name for p in room.players] == ["Ann", "Ben"]
    assert room.find_player("local-2").assigned_roles[0].image_url.endswith("seer-v-1.jpeg")
    assert room.config.role_setting("Villager").count == 4
    assert room.config.role_setting("Werewolf").count == 2
    assert room.config.category("Werewolfs").count == 1
    assert room.is_dealt


def test_missing_players_field_loads_as_empty():
    room = Room.from_document({"id": "X", "name": "n", "host_id": "h", "players": None})
    assert room.players == []


def test_document_round_trip_keeps_revision():
    room = Room(id="R1", name="Room", host_id="a", players=[
        Player(client_identity="a", display_id="AAAAAA", display_name="A"),
    ], revision=7)
    again = Room.from_document(room.to_document())
    assert again == room


def test_view_hides_other_players_cards_and_identities():
    seer = get_role_template("Seer")
    wolf = get_role_template("Werewolf")
    room = Room(id="R1", name="Room", host_id="a", players=[
        Player(client_identity="a", display_id="AAAAAA", display_name="A",
               assigned_roles=[RoleInstance.from_template(seer, "/s.jpeg")]),
        Player(client_identity="b", display_id="BBBBBB", display_name="B",
               assigned_roles=[RoleInstance.from_template(wolf, "/w.jpeg")]),
    ])
    view = room.view_for("b")

    assert view["me"]["is_host"] is False
    assert [r["name"] for r in view["me"]["assigned_roles"]] == ["Werewolf"]
    assert view["room"]["host_display_id"] == "AAAAAA"
    for p in view["room"]["players"]:
        assert "client_identity" not in p
        assert "assigned_roles" not in p
    assert "Seer" not in str(view["room"])


def test_view_for_stranger_has_no_me():
    room = Room(id="R1", name="Room", host_id="a")
    assert room.view_for("nobody")["me"] is None


def test_role_image_resolution_falls_back():
    assert resolve_role_image("Seer", {"Seer": "/custom.jpeg"}) == "/custom.jpeg"
    assert resolve_role_image("Seer", {}) == role_image_path("Seer", 1)
    assert resolve_role_image("Not A Role", {}) == NOBODY_IMAGE_PATH
    assert role_image_path("Aura Seer", 2) == "/images/roles/aura-seer-v-2.jpeg"
