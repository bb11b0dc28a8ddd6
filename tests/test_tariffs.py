import logging
import threading

import pytest

from src.tradesim.core.errors import AuthorizationError, NotFoundError, StateError, ValidationError

from conftest import BARON, BARONY_A, BARONY_B, DAY, KING, KINGDOM, MERCHANT, T0, TOWN_A, TOWN_B


@pytest.fixture
def arrived_caravan(sim, traveling_caravan):
    sim.caravans.tick(traveling_caravan.id, now=T0 + 3 * DAY)
    return traveling_caravan


@pytest.fixture
def realm_tariffs(sim):
    barony = sim.tariffs.set_tariff(KING, BARONY_B, None, 10, now=T0)
    kingdom = sim.tariffs.set_tariff(KING, KINGDOM, "grain", 5, now=T0)
    return barony, kingdom


def test_rate_above_maximum_is_rejected_and_nothing_recorded(sim, state):
    with pytest.raises(ValidationError):
        sim.tariffs.set_tariff(BARON, BARONY_A, None, 110, now=T0)
    assert state.tariffs == {}
    assert not state.audit.of_type("tariff.")


@pytest.mark.parametrize("rate", [-1, 51, 2.5, "10", True, None])
def test_rate_must_be_a_whole_percentage_in_bounds(sim, rate):
    with pytest.raises(ValidationError):
        sim.tariffs.set_tariff(BARON, BARONY_A, None, rate, now=T0)


@pytest.mark.parametrize("rate", [0, 50])
def test_rate_bounds_are_inclusive(sim, rate):
    assert sim.tariffs.set_tariff(BARON, BARONY_A, None, rate, now=T0).rate == rate


def test_ruler_and_king_hold_authority(sim):
    assert sim.tariffs.set_tariff(BARON, BARONY_A, "iron", 12, now=T0).set_by == BARON
    assert sim.tariffs.set_tariff(KING, BARONY_A, "grain", 3, now=T0).set_by == KING
    assert sim.tariffs.set_tariff(KING, KINGDOM, None, 1, now=T0).territory == KINGDOM


def test_others_have_no_authority(sim, state):
    with pytest.raises(AuthorizationError):
        sim.tariffs.set_tariff(BARON, BARONY_B, None, 10, now=T0)
    with pytest.raises(AuthorizationError):
        sim.tariffs.set_tariff(MERCHANT, BARONY_A, None, 10, now=T0)
    with pytest.raises(AuthorizationError):
        sim.tariffs.set_tariff(BARON, KINGDOM, None, 10, now=T0)
    assert state.tariffs == {}


def test_only_territories_levy_tariffs(sim):
    with pytest.raises(ValidationError):
        sim.tariffs.set_tariff(KING, TOWN_A, None, 10, now=T0)


def test_unknown_item(sim):
    with pytest.raises(NotFoundError):
        sim.tariffs.set_tariff(BARON, BARONY_A, "spice", 10, now=T0)


def test_setting_again_updates_the_same_tariff(sim, state):
    first = sim.tariffs.set_tariff(BARON, BARONY_A, "grain", 10, now=T0)
    sim.tariffs.update_tariff(BARON, first.id, is_active=False, now=T0)
    second = sim.tariffs.set_tariff(KING, BARONY_A, "grain", 20, now=T0 + DAY)

    assert second is first
    assert len(state.tariffs) == 1
    assert first.rate == 20
    assert first.is_active
    assert first.set_by == KING


def test_update_tariff(sim, realm_tariffs):
    barony, _ = realm_tariffs
    sim.tariffs.update_tariff(KING, barony.id, rate=25, now=T0)
    assert barony.rate == 25
    sim.tariffs.update_tariff(KING, barony.id, is_active=False, now=T0)
    assert not barony.is_active
    assert barony.rate == 25

    with pytest.raises(ValidationError):
        sim.tariffs.update_tariff(KING, barony.id, rate=60, now=T0)
    with pytest.raises(AuthorizationError):
        sim.tariffs.update_tariff(BARON, barony.id, rate=5, now=T0)
    with pytest.raises(NotFoundError):
        sim.tariffs.update_tariff(KING, "tariff-99", rate=5, now=T0)
    assert barony.rate == 25


def test_applicable_walks_up_to_the_kingdom(sim, realm_tariffs):
    barony, kingdom = realm_tariffs
    assert sim.tariffs.applicable(TOWN_B) == [barony, kingdom]
    assert sim.tariffs.applicable(TOWN_A) == [kingdom]

    sim.tariffs.update_tariff(KING, barony.id, is_active=False, now=T0)
    assert sim.tariffs.applicable(TOWN_B) == [kingdom]


def test_sale_pays_every_applicable_tariff(sim, state, realm_tariffs, arrived_caravan):
    barony, kingdom = realm_tariffs
    gold_before = state.gold_of(MERCHANT)

    sale = sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 10, 8, now=T0 + 3 * DAY)

    assert sale == {"quantity": 10, "revenue": 80, "tariff": 12, "proceeds": 68, "profit": 18}
    assert state.gold_of(MERCHANT) == gold_before + 68
    assert state.treasury.balance("barony:b2") == 8
    assert state.treasury.balance("kingdom:k1") == 4
    assert barony.total_collected == 8
    assert kingdom.total_collected == 4
    assert barony.collections[0].caravan_id == arrived_caravan.id
    assert arrived_caravan.quantity_of("grain") == 40


def test_tariff_never_exceeds_sale_value(sim, realm_tariffs, arrived_caravan):
    sim.tariffs.update_tariff(KING, realm_tariffs[0].id, rate=50, now=T0)
    sim.tariffs.update_tariff(KING, realm_tariffs[1].id, rate=50, now=T0)
    sale = sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 3, 7, now=T0 + 3 * DAY)
    assert 0 <= sale["tariff"] <= sale["revenue"]
    assert sale["proceeds"] >= 0


def test_failed_ledger_credit_waives_that_tariff(sim, state, realm_tariffs, arrived_caravan, monkeypatch, caplog):
    barony, kingdom = realm_tariffs
    credit = state.treasury.credit

    def flaky_credit(account_id, amount):
        if account_id == "barony:b2":
            raise RuntimeError("ledger offline")
        return credit(account_id, amount)

    monkeypatch.setattr(state.treasury, "credit", flaky_credit)
    with caplog.at_level(logging.ERROR):
        sale = sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 10, 8, now=T0 + 3 * DAY)

    assert sale["tariff"] == 4
    assert sale["proceeds"] == 76
    assert barony.total_collected == 0
    assert kingdom.total_collected == 4
    assert "waiving" in caplog.text


def test_unload_requires_arrival(sim, traveling_caravan):
    with pytest.raises(StateError):
        sim.caravans.unload_goods(MERCHANT, traveling_caravan.id, "grain", 1, 5, now=T0)


def test_unload_validation(sim, state, arrived_caravan):
    with pytest.raises(ValidationError):
        sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 51, 5, now=T0 + 3 * DAY)
    with pytest.raises(ValidationError):
        sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 5, -1, now=T0 + 3 * DAY)
    with pytest.raises(AuthorizationError):
        sim.caravans.unload_goods(BARON, arrived_caravan.id, "grain", 5, 5, now=T0 + 3 * DAY)
    assert arrived_caravan.quantity_of("grain") == 50


def test_list_tariffs_names_the_goods(sim, realm_tariffs):
    listing = sim.tariffs.list_tariffs(KINGDOM)
    assert listing == [{
        "id": realm_tariffs[1].id,
        "territory": "kingdom:k1",
        "item_id": "grain",
        "item_name": "Grain",
        "rate": 5,
        "is_active": True,
        "total_collected": 0,
    }]
    assert sim.tariffs.list_tariffs(BARONY_B)[0]["item_name"] == "All Goods"
    assert sim.tariffs.list_tariffs(BARONY_A) == []


def test_revenue_summary_windows(sim, realm_tariffs, arrived_caravan):
    sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 10, 8, now=T0 + 3 * DAY)

    assert sim.tariffs.revenue_summary(BARONY_B, now=T0 + 4 * DAY) == {"this_week": 8, "this_month": 8, "total": 8}
    assert sim.tariffs.revenue_summary(BARONY_B, now=T0 + 20 * DAY) == {"this_week": 0, "this_month": 8, "total": 8}
    assert sim.tariffs.revenue_summary(BARONY_B, now=T0 + 60 * DAY) == {"this_week": 0, "this_month": 0, "total": 8}
    assert sim.tariffs.revenue_summary(BARONY_A, now=T0 + 4 * DAY) == {"this_week": 0, "this_month": 0, "total": 0}


def test_stacked_tariffs_stop_at_the_sale_value(sim, state, arrived_caravan):
    barony_all = sim.tariffs.set_tariff(KING, BARONY_B, None, 50, now=T0)
    barony_grain = sim.tariffs.set_tariff(KING, BARONY_B, "grain", 50, now=T0)
    kingdom_all = sim.tariffs.set_tariff(KING, KINGDOM, None, 50, now=T0)

    sale = sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 10, 7, now=T0 + 3 * DAY)

    assert sale == {"quantity": 10, "revenue": 70, "tariff": 70, "proceeds": 0, "profit": -50}
    assert barony_all.total_collected == 35
    assert barony_grain.total_collected == 35
    assert kingdom_all.total_collected == 0
    assert kingdom_all.collections == []
    assert state.treasury.balance("barony:b2") == 70
    assert state.treasury.balance("kingdom:k1") == 0
    assert arrived_caravan.quantity_of("grain") == 40


def test_update_tariff_wants_a_real_boolean(sim, realm_tariffs):
    barony, _ = realm_tariffs
    with pytest.raises(ValidationError):
        sim.tariffs.update_tariff(KING, barony.id, is_active="false", now=T0)
    assert barony.is_active


def _second_arrival(sim, state, route):
    state.inventory.credit(BARON, "grain", 50)
    rival = sim.caravans.create(BARON, "Rival Wagon", 0, TOWN_A, now=T0)
    sim.caravans.load_goods(BARON, rival.id, "grain", 50, now=T0)
    sim.caravans.dispatch(BARON, rival.id, route.id, now=T0)
    sim.caravans.tick(rival.id, now=T0 + 3 * DAY)
    return rival


def _stall_charges_for(sim, monkeypatch, caravan_id, fail=False):
    """Holds the sale of `caravan_id` inside the tariff charge until released."""
    charging, release = threading.Event(), threading.Event()
    charge = sim.tariffs.charge

    def stalled(txn, charged_id, goods_values, location):
        total = charge(txn, charged_id, goods_values, location)
        if charged_id == caravan_id:
            charging.set()
            release.wait(5)
            if fail:
                raise RuntimeError("buyer walked away")
        return total

    monkeypatch.setattr(sim.tariffs, "charge", stalled)
    return charging, release


def test_failed_sale_keeps_other_caravans_collections(sim, state, realm_tariffs, safe_route, arrived_caravan, monkeypatch):
    barony, kingdom = realm_tariffs
    rival = _second_arrival(sim, state, safe_route)
    charging, release = _stall_charges_for(sim, monkeypatch, arrived_caravan.id, fail=True)
    errors = []

    def failing_sale():
        try:
            sim.caravans.unload_goods(MERCHANT, arrived_caravan.id, "grain", 10, 8, now=T0 + 3 * DAY)
        except RuntimeError as exc:
            errors.append(exc)

    first = threading.Thread(target=failing_sale)
    second = threading.Thread(
        target=sim.caravans.unload_goods, args=(BARON, rival.id, "grain", 10, 10), kwargs={"now": T0 + 3 * DAY},
    )
    first.start()
    assert charging.wait(5)
    second.start()
    second.join(0.2)
    assert second.is_alive() # waits on the territory ledgers
    release.set()
    first.join(5)
    second.join(5)

    assert len(errors) == 1
    assert barony.total_collected == 10
    assert [c.caravan_id for c in barony.collections] == [rival.id]
    assert kingdom.total_collected == 5
    assert state.treasury.balance("barony:b2") == 10
    assert state.treasury.balance("kingdom:k1") == 5
    assert arrived_caravan.quantity_of("grain") == 50
    assert rival.quantity_of("grain") == 40


def test_sale_and_npc_arrival_in_one_territory_both_get_recorded(sim, state, realm_tariffs, safe_route, arrived_caravan, monkeypatch):
    barony, kingdom = realm_tariffs
    npc = sim.caravans.create_npc(safe_route.id, now=T0)
    charging, release = _stall_charges_for(sim, monkeypatch, arrived_caravan.id)

    sale = threading.Thread(
        target=sim.caravans.unload_goods, args=(MERCHANT, arrived_caravan.id, "grain", 10, 8), kwargs={"now": T0 + 3 * DAY},
    )
    arrival = threading.Thread(target=sim.caravans.tick, args=(npc.id,), kwargs={"now": T0 + 3 * DAY})
    sale.start()
    assert charging.wait(5)
    arrival.start()
    arrival.join(0.2)
    assert arrival.is_alive()
    release.set()
    sale.join(5)
    arrival.join(5)

    assert npc.status.value == "disbanded"
    assert {c.caravan_id for c in barony.collections} == {arrived_caravan.id, npc.id}
    for tariff in (barony, kingdom):
        assert tariff.total_collected == sum(c.amount for c in tariff.collections)
    assert state.treasury.balance("barony:b2") == barony.total_collected
    assert state.treasury.balance("kingdom:k1") == kingdom.total_collected


def test_unload_waits_for_a_tick_on_the_same_caravan(sim, state, arrived_caravan, monkeypatch):
    charging, release = _stall_charges_for(sim, monkeypatch, arrived_caravan.id)
    sale = threading.Thread(
        target=sim.caravans.unload_goods, args=(MERCHANT, arrived_caravan.id, "grain", 10, 8), kwargs={"now": T0 + 3 * DAY},
    )
    results = []
    tick = threading.Thread(target=lambda: results.append(sim.caravans.tick(arrived_caravan.id, now=T0 + 4 * DAY)))

    sale.start()
    assert charging.wait(5)
    tick.start()
    tick.join(0.2)
    assert tick.is_alive()
    release.set()
    sale.join(5)
    tick.join(5)

    assert results == [[]]
    assert arrived_caravan.quantity_of("grain") == 40
    assert len(state.audit.of_type("caravan.sold")) == 1


def test_routes_through_lists_routes_touching_the_territory(sim, safe_route):
    listing = sim.tariffs.routes_through(BARONY_B)
    assert listing == [{
        "id": safe_route.id,
        "name": "Coast Road",
        "origin_name": "Ashford Market",
        "destination_name": "Brightwater Port",
        "danger_level": "safe",
    }]
    assert sim.tariffs.routes_through(KINGDOM) == listing

    safe_route.is_active = False
    assert sim.tariffs.routes_through(BARONY_B) == []
