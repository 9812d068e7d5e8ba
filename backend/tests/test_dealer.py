import random
from collections import Counter

import pytest

from agents.dealer import Dealer
from models.errors import AlreadyDealt, InsufficientRoles, InvalidRequest, Unauthorized
from models.roles import roles_in_category
from models.room import DealMode, GameState, GemCategorySetting, Player, Room, RoomConfig


def _room(n_players: int, **counts) -> Room:
    players = [
        Player(client_identity=f"c{i}", display_id=f"P{i:05d}", display_name=f"Player {i}")
        for i in range(n_players)
    ]
    room = Room(id="DEAL01", name="Deal", host_id="c0", players=players, config=RoomConfig())
    for role_name, count in counts.items():
        room.config.role_setting(role_name.replace("_", " ")).count = count
    return room


def _dealt_names(room: Room):
    return [r.name for p in room.players for r in p.assigned_roles]


@pytest.fixture
def dealer():
    return Dealer(random.Random(42))


def test_every_player_gets_exactly_one_role(dealer):
    room = _room(5, Villager=3, Seer=1)
    dealer.apply_deal(room, "c0")
    assert all(len(p.assigned_roles) == 1 for p in room.players)
    assert room.config.game_state == GameState.NIGHT
    assert room.config.current_day == 1


def test_pool_is_conserved_between_players_and_center(dealer):
    room = _room(4, Villager=3, Seer=1, Bodyguard=1)
    expected = Counter(t.name for t in dealer.build_pool(room))
    dealer.apply_deal(room, "c0")
    dealt = Counter(_dealt_names(room)) + Counter(r.name for r in room.config.center_pool)
    assert dealt == expected
    assert len(room.config.center_pool) == sum(expected.values()) - 4


def test_exact_pool_leaves_empty_center(dealer):
    room = _room(2)
    dealer.apply_deal(room, "c0")
    assert sorted(_dealt_names(room)) == ["Werewolf", "Werewolf"]
    assert room.config.center_pool == []


def test_disabled_roles_are_not_dealt(dealer):
    room = _room(2, Seer=2)
    room.config.role_setting("Werewolf").is_disabled = True
    dealer.apply_deal(room, "c0")
    assert sorted(_dealt_names(room)) == ["Seer", "Seer"]


def test_too_few_roles_raises_and_leaves_room_untouched(dealer):
    room = _room(5, Villager=1)
    before = room.model_copy(deep=True)
    with pytest.raises(InsufficientRoles) as info:
        dealer.apply_deal(room, "c0")
    assert info.value.needed == 5
    assert info.value.available == 3
    assert "Need 2 more roles" in info.value.message
    assert room == before


def test_only_host_deals(dealer):
    room = _room(2)
    with pytest.raises(Unauthorized):
        dealer.apply_deal(room, "c1")


def test_empty_room_cannot_deal(dealer):
    room = _room(0)
    room.host_id = "ghost"
    with pytest.raises(InvalidRequest):
        dealer.apply_deal(room, "ghost")


def test_second_deal_needs_redeal(dealer):
    room = _room(3, Villager=1, Seer=1)
    dealer.apply_deal(room, "c0")
    with pytest.raises(AlreadyDealt):
        dealer.apply_deal(room, "c0")
    dealer.apply_deal(room, "c0", redeal=True)
    assert all(len(p.assigned_roles) == 1 for p in room.players)
    assert len(room.config.center_pool) == 1


def test_deal_keeps_join_order(dealer):
    room = _room(4, Villager=2)
    order = [p.client_identity for p in room.players]
    dealer.apply_deal(room, "c0")
    assert [p.client_identity for p in room.players] == order
    assert room.host_id == "c0"


def test_dealt_cards_carry_room_art(dealer):
    room = _room(2)
    room.config.role_image_map = {"Werewolf": "/images/roles/werewolf-v-1.jpeg"}
    dealer.apply_deal(room, "c0")
    for p in room.players:
        assert p.assigned_roles[0].image_url == "/images/roles/werewolf-v-1.jpeg"
        assert p.assigned_roles[0].gem == "Werewolfs"


def test_reset_clears_assignments(dealer):
    room = _room(3, Villager=2)
    dealer.apply_deal(room, "c0")
    dealer.apply_reset(room, "c0")
    assert _dealt_names(room) == []
    assert room.config.center_pool == []
    assert room.config.game_state == GameState.LOBBY
    with pytest.raises(Unauthorized):
        dealer.apply_reset(room, "c1")


def test_gem_mode_draws_distinct_roles_per_category(dealer):
    room = _room(3)
    room.config.deal_mode = DealMode.GEMS
    room.config.gem_categories = [
        GemCategorySetting(category_name="Townfolks", count=2),
        GemCategorySetting(category_name="Werewolfs", count=1),
    ]
    pool = dealer.build_pool(room)
    gems = Counter(t.gem for t in pool)
    assert gems == {"Townfolks": 2, "Werewolfs": 1}
    townfolk = [t.name for t in pool if t.gem == "Townfolks"]
    assert len(set(townfolk)) == 2
    assert all(not t.always_disabled for t in pool)


def test_gem_mode_category_capped_by_eligible_roles(dealer):
    room = _room(1)
    room.config.deal_mode = DealMode.GEMS
    room.config.gem_categories = [GemCategorySetting(category_name="Zombies", count=2)]
    # Every Zombies role is locked, so the category contributes nothing
    assert [t for t in roles_in_category("Zombies") if not t.always_disabled] == []
    with pytest.raises(InsufficientRoles):
        dealer.apply_deal(room, "c0")


def test_seat_assignment_is_roughly_uniform():
    """Over many deals each seat should see the lone Seer about equally often."""
    rng = random.Random(7)
    dealer = Dealer(rng)
    hits = Counter()
    trials = 3000
    for _ in range(trials):
        room = _room(3, Villager=1, Seer=1)
        room.config.role_setting("Werewolf").count = 1
        dealer.apply_deal(room, "c0")
        for p in room.players:
            if p.assigned_roles[0].name == "Seer":
                hits[p.client_identity] += 1
    for seat in ("c0", "c1", "c2"):
        assert abs(hits[seat] / trials - 1 / 3) < 0.05
