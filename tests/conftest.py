import random
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from src.tradesim.core.config import BalanceConfig
from src.tradesim.core.ids import ActorId
from src.tradesim.core.sim import build_simulation
from src.tradesim.world.load import build_world
from src.tradesim.world.model import LocationKind, LocationRef

DATA_PATH = Path(__file__).parent.parent / "data"
T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
DAY = timedelta(days=1)

KING = ActorId("king")
BARON = ActorId("baron")
MERCHANT = ActorId("merchant")
TRAVELER = ActorId("traveler")

TOWN_A = LocationRef(LocationKind.TOWN, "t1") # in barony b1
TOWN_B = LocationRef(LocationKind.TOWN, "t2") # in barony b2
VILLAGE_A = LocationRef(LocationKind.VILLAGE, "v1")
BARONY_A = LocationRef(LocationKind.BARONY, "b1")
BARONY_B = LocationRef(LocationKind.BARONY, "b2")
KINGDOM = LocationRef(LocationKind.KINGDOM, "k1")


class ScriptedRandom(random.Random):
    """
    random() hands out queued values first, then `default`. Integer draws
    stay on the seeded generator.
    """
    getrandbits = random.Random.getrandbits

    def __init__(self, values=(), default=0.99, seed=0):
        super().__init__(seed)
        self.queue = list(values)
        self.default = default

    def random(self):
        if self.queue:
            return self.queue.pop(0)
        return self.default

    def push(self, *values):
        self.queue.extend(values)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta):
        self.now += delta


def world_data():
    return {
        "seed": 7,
        "kingdoms": [{"id": "k1", "name": "Eldoria", "ruler_id": "king", "x": 0, "y": 0}],
        "baronies": [
            {"id": "b1", "name": "Ashford", "kingdom_id": "k1", "ruler_id": "baron", "x": 10, "y": 0},
            {"id": "b2", "name": "Brightwater", "kingdom_id": "k1", "x": 120, "y": 40},
        ],
        "villages": [
            {"id": "v1", "name": "Millbrook", "barony_id": "b1", "x": 20, "y": 10},
            {"id": "v2", "name": "Oakridge", "barony_id": "b2", "x": 130, "y": 50},
        ],
        "towns": [
            {"id": "t1", "name": "Ashford Market", "barony_id": "b1", "x": 15, "y": 5},
            {"id": "t2", "name": "Brightwater Port", "barony_id": "b2", "x": 160, "y": 60},
        ],
        "items": [
            {"id": "grain", "name": "Grain", "base_price": 5},
            {"id": "iron", "name": "Iron Ingot", "base_price": 20},
            {"id": "crown_jewel", "name": "Crown Jewel", "base_price": 5000, "is_tradeable": False},
        ],
        "actors": [
            {"id": "king", "name": "Aldric", "location": "kingdom:k1", "gold": 10000},
            {"id": "baron", "name": "Beatrix", "location": "barony:b1", "gold": 5000},
            {
                "id": "merchant", "name": "Corin", "location": "town:t1", "gold": 5000,
                "inventory": {"grain": 200, "iron": 50, "crown_jewel": 1},
            },
            {"id": "traveler", "name": "Dara", "location": "village:v1", "gold": 100, "energy": 100},
        ],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return BalanceConfig()


@pytest.fixture
def rng():
    return ScriptedRandom()


@pytest.fixture
def state(config, clock):
    return build_world(world_data(), config=config, clock=clock)


@pytest.fixture
def sim(state, rng):
    return build_simulation(state, rng=rng)


@pytest.fixture
def safe_route(sim):
    # Ashford Market -> Brightwater Port: distance 155, three days
    return sim.routes.create_route(BARON, "Coast Road", TOWN_A, TOWN_B, "safe", now=T0)


@pytest.fixture
def loaded_caravan(sim):
    caravan = sim.caravans.create(MERCHANT, "Spice Wagon", 0, TOWN_A, now=T0)
    sim.caravans.load_goods(MERCHANT, caravan.id, "grain", 50, now=T0)
    return caravan


@pytest.fixture
def traveling_caravan(sim, loaded_caravan, safe_route):
    return sim.caravans.dispatch(MERCHANT, loaded_caravan.id, safe_route.id, now=T0)
