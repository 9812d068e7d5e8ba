import random

import pytest

from agents.dealer import Dealer
from agents.session_coordinator import SessionCoordinator
from services.presence import PresenceTracker, set_presence
from services.room_store import InMemoryRoomStore, set_room_store


@pytest.fixture
def store():
    s = InMemoryRoomStore()
    set_room_store(s)
    yield s
    set_room_store(None)


@pytest.fixture(autouse=True)
def presence():
    tracker = PresenceTracker()
    set_presence(tracker)
    yield tracker
    set_presence(None)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def make_client(store):
    """Factory for coordinators sharing one store, each with its own seeded rng."""
    seeds = iter(range(100, 10_000))

    def _make(identity: str, name: str = "", **kwargs) -> SessionCoordinator:
        rng = random.Random(next(seeds))
        return SessionCoordinator(
            identity,
            display_name=name or identity.title(),
            store=store,
            dealer=Dealer(rng),
            rng=rng,
            **kwargs,
        )

    return _make


@pytest.fixture
async def lobby(make_client):
    """A room hosted by alice with bob and carol joined, in join order."""
    alice = make_client("alice")
    bob = make_client("bob")
    carol = make_client("carol")
    created = await alice.create_room("Friday Night")
    assert created.ok
    room_id = created.data["room_id"]
    assert (await bob.join_room(room_id)).ok
    assert (await carol.join_room(room_id)).ok
    return alice, bob, carol
