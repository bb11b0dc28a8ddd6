import pytest

from src.tradesim.core.config import BalanceConfig, CaravanConfig
from src.tradesim.core.errors import (
    AuthorizationError,
    CapacityError,
    InsufficientFundsError,
    InsufficientInventoryError,
    NotFoundError,
    StateError,
    ValidationError,
)
from src.tradesim.core.sim import build_simulation
from src.tradesim.events.model import EventType
from src.tradesim.logistics.caravan import CaravanStatus
from src.tradesim.world.load import build_world
from src.tradesim.world.model import LocationKind, LocationRef

from conftest import (
    BARON, DAY, MERCHANT, T0, TOWN_A, TOWN_B, TRAVELER, VILLAGE_A, FakeClock, ScriptedRandom, world_data,
)


def _small_world(**caravan_overrides):
    config = BalanceConfig(caravan=CaravanConfig(**caravan_overrides))
    state = build_world(world_data(), config=config, clock=FakeClock())
    return build_simulation(state, rng=ScriptedRandom())


def test_create_with_exact_gold_leaves_owner_at_zero():
    sim = _small_world(base_cost=100, guard_cost=10)
    sim.state.treasury.debit(MERCHANT, sim.state.gold_of(MERCHANT) - 100)

    caravan = sim.caravans.create(MERCHANT, "Mule Train", 0, TOWN_A, now=T0)

    assert sim.state.gold_of(MERCHANT) == 0
    assert caravan.status == CaravanStatus.PREPARING
    assert caravan.owner_id == MERCHANT
    assert caravan.current_location == TOWN_A
    assert caravan.created_at == T0


def test_create_charges_for_guards(sim, state):
    before = state.gold_of(MERCHANT)
    caravan = sim.caravans.create(MERCHANT, "Armed Convoy", 4, TOWN_A, now=T0)
    assert caravan.guards == 4
    assert state.gold_of(MERCHANT) == before - (1000 + 4 * 50)
    assert sim.caravans.creation_cost(4) == 1200


def test_create_without_gold_fails_and_leaves_nothing(sim, state):
    with pytest.raises(InsufficientFundsError):
        sim.caravans.create(TRAVELER, "Handcart", 0, VILLAGE_A, now=T0)
    assert state.caravans == {}
    assert state.gold_of(TRAVELER) == 100
    assert not state.audit.of_type("caravan.")


@pytest.mark.parametrize("name, guards", [
    ("", 0),
    ("   ", 0),
    ("x" * 101, 0),
    ("Wagon", -1),
    ("Wagon", 21),
    ("Wagon", True),
])
def test_create_rejects_bad_input(sim, name, guards):
    with pytest.raises(ValidationError):
        sim.caravans.create(MERCHANT, name, guards, TOWN_A, now=T0)


def test_create_at_unknown_location(sim):
    with pytest.raises(NotFoundError):
        sim.caravans.create(MERCHANT, "Lost", 0, LocationRef(LocationKind.TOWN, "nowhere"), now=T0)


def test_load_beyond_capacity_keeps_existing_cargo():
    sim = _small_world(base_capacity=10)
    caravan = sim.caravans.create(MERCHANT, "Small Cart", 0, TOWN_A, now=T0)
    sim.caravans.load_goods(MERCHANT, caravan.id, "grain", 5, now=T0)

    with pytest.raises(CapacityError):
        sim.caravans.load_goods(MERCHANT, caravan.id, "grain", 6, now=T0)

    assert caravan.quantity_of("grain") == 5
    assert caravan.total_goods == 5
    assert sim.state.inventory.get(MERCHANT, "grain") == 195


def test_load_moves_goods_from_owner_inventory(sim, state, loaded_caravan):
    assert loaded_caravan.quantity_of("grain") == 50
    assert state.inventory.get(MERCHANT, "grain") == 150
    line = loaded_caravan.goods_line("grain")
    assert line.purchase_price == 5
    assert line.origin == TOWN_A
    assert loaded_caravan.goods_value == 250


def test_load_merges_lines_with_weighted_average_price(sim, loaded_caravan):
    sim.state.items.get("grain").base_price = 8
    sim.caravans.load_goods(MERCHANT, loaded_caravan.id, "grain", 25, now=T0)
    line = loaded_caravan.goods_line("grain")
    assert line.quantity == 75
    # (50 * 5 + 25 * 8) / 75 = 6
    assert line.purchase_price == 6
    assert len(loaded_caravan.goods) == 1


def test_load_untradeable_item_is_rejected(sim, loaded_caravan):
    with pytest.raises(ValidationError):
        sim.caravans.load_goods(MERCHANT, loaded_caravan.id, "crown_jewel", 1, now=T0)
    assert sim.state.inventory.get(MERCHANT, "crown_jewel") == 1


def test_load_more_than_owner_holds(sim, loaded_caravan):
    with pytest.raises(InsufficientInventoryError):
        sim.caravans.load_goods(MERCHANT, loaded_caravan.id, "iron", 51, now=T0)
    assert loaded_caravan.quantity_of("iron") == 0
    assert sim.state.inventory.get(MERCHANT, "iron") == 50


@pytest.mark.parametrize("quantity", [0, -3, 2.5, "4"])
def test_load_requires_positive_whole_quantity(sim, loaded_caravan, quantity):
    with pytest.raises(ValidationError):
        sim.caravans.load_goods(MERCHANT, loaded_caravan.id, "grain", quantity, now=T0)


def test_remove_goods_returns_them_to_owner(sim, state, loaded_caravan):
    sim.caravans.remove_goods(MERCHANT, loaded_caravan.id, "grain", 20, now=T0)
    assert loaded_caravan.quantity_of("grain") == 30
    assert state.inventory.get(MERCHANT, "grain") == 170

    with pytest.raises(ValidationError):
        sim.caravans.remove_goods(MERCHANT, loaded_caravan.id, "grain", 31, now=T0)


def test_load_gold(sim, state, loaded_caravan):
    before = state.gold_of(MERCHANT)
    sim.caravans.load_gold(MERCHANT, loaded_caravan.id, 300, now=T0)
    assert loaded_caravan.gold_carried == 300
    assert state.gold_of(MERCHANT) == before - 300

    with pytest.raises(InsufficientFundsError):
        sim.caravans.load_gold(MERCHANT, loaded_caravan.id, 10 ** 6, now=T0)
    assert loaded_caravan.gold_carried == 300


def test_only_the_owner_may_touch_a_caravan(sim, loaded_caravan, safe_route):
    with pytest.raises(AuthorizationError):
        sim.caravans.load_goods(BARON, loaded_caravan.id, "grain", 1, now=T0)
    with pytest.raises(AuthorizationError):
        sim.caravans.dispatch(BARON, loaded_caravan.id, safe_route.id, now=T0)
    with pytest.raises(AuthorizationError):
        sim.caravans.disband(BARON, loaded_caravan.id, now=T0)
    with pytest.raises(AuthorizationError):
        sim.caravans.detail(BARON, loaded_caravan.id)


def test_dispatch_sets_travel_fields(sim, traveling_caravan, safe_route):
    assert traveling_caravan.status == CaravanStatus.TRAVELING
    assert traveling_caravan.destination == TOWN_B
    assert traveling_caravan.trade_route_id == safe_route.id
    assert traveling_caravan.travel_total == 3
    assert traveling_caravan.travel_progress == 0
    assert traveling_caravan.departed_at == T0
    assert traveling_caravan.events[-1].event_type == EventType.DEPARTURE
    assert sim.caravans.in_transit() == [traveling_caravan.id]


def test_dispatch_requires_cargo_by_default(sim, safe_route):
    caravan = sim.caravans.create(MERCHANT, "Empty Wagon", 0, TOWN_A, now=T0)
    with pytest.raises(ValidationError):
        sim.caravans.dispatch(MERCHANT, caravan.id, safe_route.id, now=T0)
    assert caravan.status == CaravanStatus.PREPARING


def test_dispatch_empty_caravan_when_policy_allows():
    sim = _small_world(require_cargo_to_dispatch=False)
    route = sim.routes.create_route(BARON, "Coast Road", TOWN_A, TOWN_B, "safe", now=T0)
    caravan = sim.caravans.create(MERCHANT, "Empty Wagon", 0, TOWN_A, now=T0)
    sim.caravans.dispatch(MERCHANT, caravan.id, route.id, now=T0)
    assert caravan.status == CaravanStatus.TRAVELING


def test_dispatch_from_wrong_origin(sim, state):
    route = sim.routes.create_route(BARON, "Back Lane", VILLAGE_A, TOWN_B, "safe", now=T0)
    caravan = sim.caravans.create(MERCHANT, "Wagon", 0, TOWN_A, now=T0)
    sim.caravans.load_goods(MERCHANT, caravan.id, "grain", 1, now=T0)
    with pytest.raises(ValidationError):
        sim.caravans.dispatch(MERCHANT, caravan.id, route.id, now=T0)


def test_dispatch_twice_is_a_state_error(sim, traveling_caravan, safe_route):
    with pytest.raises(StateError):
        sim.caravans.dispatch(MERCHANT, traveling_caravan.id, safe_route.id, now=T0)


def test_cannot_load_while_traveling(sim, traveling_caravan):
    with pytest.raises(StateError):
        sim.caravans.load_goods(MERCHANT, traveling_caravan.id, "grain", 1, now=T0)
    with pytest.raises(StateError):
        sim.caravans.disband(MERCHANT, traveling_caravan.id, now=T0)


def test_disband_refunds_goods_and_gold(sim, state, loaded_caravan):
    sim.caravans.load_gold(MERCHANT, loaded_caravan.id, 200, now=T0)
    gold_before = state.gold_of(MERCHANT)

    refund = sim.caravans.disband(MERCHANT, loaded_caravan.id, now=T0 + DAY)

    assert refund == {"gold": 200, "goods": {"grain": 50}}
    assert state.gold_of(MERCHANT) == gold_before + 200
    assert state.inventory.get(MERCHANT, "grain") == 200
    assert loaded_caravan.status == CaravanStatus.DISBANDED
    assert loaded_caravan.closed_at == T0 + DAY
    assert loaded_caravan.goods == []

    with pytest.raises(StateError):
        sim.caravans.disband(MERCHANT, loaded_caravan.id, now=T0 + DAY)


def test_failed_operation_rolls_back_every_mutation(sim, state, monkeypatch):
    gold_before = state.gold_of(MERCHANT)
    entries_before = len(state.audit.entries)

    def boom(kind):
        raise RuntimeError("id allocation failed")

    monkeypatch.setattr(state, "next_id", boom)
    with pytest.raises(RuntimeError):
        sim.caravans.create(MERCHANT, "Doomed", 2, TOWN_A, now=T0)

    assert state.gold_of(MERCHANT) == gold_before
    assert state.caravans == {}
    assert len(state.audit.entries) == entries_before


def test_capacity_invariant_holds_across_operations(sim, loaded_caravan):
    for quantity in (30, 15, 10, 5):
        try:
            sim.caravans.load_goods(MERCHANT, loaded_caravan.id, "iron", quantity, now=T0)
        except CapacityError:
            pass
        assert 0 <= loaded_caravan.total_goods <= loaded_caravan.capacity
    assert loaded_caravan.total_goods == 100


def test_list_for_owner_groups_caravans(sim, traveling_caravan):
    idle = sim.caravans.create(MERCHANT, "Spare Cart", 0, TOWN_A, now=T0)
    gone = sim.caravans.create(MERCHANT, "Old Cart", 0, TOWN_A, now=T0)
    sim.caravans.disband(MERCHANT, gone.id, now=T0 + DAY)

    listing = sim.caravans.list_for_owner(MERCHANT)

    assert {c["id"] for c in listing["active"]} == {traveling_caravan.id, idle.id}
    assert listing["arrived"] == []
    assert [c["id"] for c in listing["completed"]] == [gone.id]
    assert sim.caravans.list_for_owner(BARON) == {"active": [], "arrived": [], "completed": []}


def test_completed_history_is_limited_and_newest_first():
    sim = _small_world(completed_history_limit=2)
    ids = []
    for n in range(3):
        caravan = sim.caravans.create(MERCHANT, f"Cart {n}", 0, TOWN_A, now=T0)
        sim.caravans.disband(MERCHANT, caravan.id, now=T0 + n * DAY)
        ids.append(caravan.id)

    completed = sim.caravans.list_for_owner(MERCHANT)["completed"]
    assert [c["id"] for c in completed] == [ids[2], ids[1]]


def test_detail_lists_goods_and_events_newest_first(sim, traveling_caravan):
    detail = sim.caravans.detail(MERCHANT, traveling_caravan.id)
    assert detail["status"] == "traveling"
    assert detail["current_location_name"] == "Ashford Market"
    assert detail["destination_name"] == "Brightwater Port"
    assert detail["goods"] == [
        {"item_id": "grain", "quantity": 50, "purchase_price": 5, "total_cost": 250},
    ]
    assert detail["events"][0]["event_type"] == "departure"


def test_unknown_caravan(sim):
    with pytest.raises(NotFoundError):
        sim.caravans.load_gold(MERCHANT, "caravan-404", 10, now=T0)
