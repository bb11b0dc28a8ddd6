from __future__ import annotations
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Optional

from ..logistics.caravan import Caravan, CaravanStatus
from .model import CaravanEvent, EventClass, EventType
from .risk import POSITIVE, REPELLED, SPOILAGE, RiskOutcome

if TYPE_CHECKING:
    from ..core.ids import ItemId


def _strip_goods(caravan: Caravan, quantity: int) -> Dict[ItemId, int]:
    """Removes up to `quantity` units, emptying the largest lines first."""
    lost: Dict[ItemId, int] = {}
    for line in sorted(caravan.goods, key=lambda g: (-g.quantity, g.item_id)):
        if quantity <= 0:
            break
        taken = min(line.quantity, quantity)
        caravan.take_goods(line.item_id, taken)
        lost[line.item_id] = taken
        quantity -= taken
    return lost


def wreck(caravan: Caravan) -> Dict[ItemId, int]:
    """Zeroes cargo, purse and guards and marks the caravan destroyed. Returns the goods lost."""
    lost = {line.item_id: line.quantity for line in caravan.goods}
    caravan.goods = []
    caravan.gold_carried = 0
    caravan.guards = 0
    caravan.status = CaravanStatus.DESTROYED
    return lost


def destruction_event(
    caravan: Caravan,
    now: datetime,
    day: int,
    description: str,
    tier: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> CaravanEvent:
    """Wrecks the caravan and returns the event recording everything it lost."""
    gold_lost = caravan.gold_carried
    guards_lost = caravan.guards
    goods_lost = wreck(caravan)
    metadata = dict(metadata or {})
    metadata["goods"] = goods_lost
    return CaravanEvent(
        caravan_id=caravan.id,
        event_type=EventType.CARAVAN_DESTROYED,
        classification=EventClass.NEGATIVE,
        description=description,
        day=day,
        occurred_at=now,
        tier=tier,
        gold_lost=gold_lost,
        goods_lost=sum(goods_lost.values()),
        guards_lost=guards_lost,
        metadata=metadata,
    )


def apply_outcome(caravan: Caravan, outcome: RiskOutcome, now: datetime) -> CaravanEvent:
    """Applies one risk outcome to the caravan and returns the event describing it."""
    kind = outcome.kind
    metadata = {"chance": round(outcome.chance, 4)}

    if kind == "minor":
        gold_lost = int(caravan.gold_carried * outcome.fraction)
        caravan.gold_carried -= gold_lost
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.BANDIT_ATTACK,
            classification=EventClass.NEGATIVE,
            description=f"Bandits ambushed the caravan and made off with {gold_lost} gold.",
            day=outcome.day,
            occurred_at=now,
            tier=kind,
            gold_lost=gold_lost,
            metadata=metadata,
        )

    if kind == "moderate":
        goods_lost = _strip_goods(caravan, int(caravan.total_goods * outcome.fraction))
        guards_lost = min(outcome.guards_lost, caravan.guards)
        caravan.guards -= guards_lost
        metadata["goods"] = dict(goods_lost)
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.BANDIT_RAID,
            classification=EventClass.NEGATIVE,
            description=f"Raiders seized {sum(goods_lost.values())} goods; {guards_lost} guards fell defending the wagons.",
            day=outcome.day,
            occurred_at=now,
            tier=kind,
            goods_lost=sum(goods_lost.values()),
            guards_lost=guards_lost,
            metadata=metadata,
        )

    if kind == REPELLED:
        guards_lost = min(outcome.guards_lost, caravan.guards)
        caravan.guards -= guards_lost
        if guards_lost:
            description = f"Bandits attacked but the guards drove them off. {guards_lost} guards fell in the fight."
        else:
            description = "Bandits attacked but the guards drove them off without a loss."
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.BANDITS_REPELLED,
            classification=EventClass.NEGATIVE if guards_lost else EventClass.NEUTRAL,
            description=description,
            day=outcome.day,
            occurred_at=now,
            guards_lost=guards_lost,
            metadata=metadata,
        )

    if kind == SPOILAGE:
        goods_lost = _strip_goods(caravan, int(caravan.total_goods * outcome.fraction))
        metadata["goods"] = dict(goods_lost)
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.GOODS_SPOILED,
            classification=EventClass.NEGATIVE,
            description=f"Damp and heat spoiled {sum(goods_lost.values())} goods in the wagons.",
            day=outcome.day,
            occurred_at=now,
            goods_lost=sum(goods_lost.values()),
            metadata=metadata,
        )

    if kind == "severe":
        caravan.travel_total += outcome.days_delayed
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.WEATHER_DELAY,
            classification=EventClass.NEGATIVE,
            description=f"Storms washed out the road. The journey is delayed by {outcome.days_delayed} days.",
            day=outcome.day,
            occurred_at=now,
            tier=kind,
            days_delayed=outcome.days_delayed,
            metadata=metadata,
        )

    if kind == "catastrophic":
        return destruction_event(
            caravan, now, outcome.day, "The caravan was overrun and burned. Nothing was recovered.",
            tier=kind, metadata=metadata,
        )

    if kind == POSITIVE:
        caravan.gold_carried += outcome.gold_gained
        return CaravanEvent(
            caravan_id=caravan.id,
            event_type=EventType.MERCHANT_OPPORTUNITY,
            classification=EventClass.POSITIVE,
            description=f"A passing merchant paid {outcome.gold_gained} gold for news from the road.",
            day=outcome.day,
            occurred_at=now,
            gold_gained=outcome.gold_gained,
            metadata=metadata,
        )

    raise ValueError(f"Unknown risk outcome '{kind}'.")


def departure_event(caravan: Caravan, now: datetime) -> CaravanEvent:
    return CaravanEvent(
        caravan_id=caravan.id,
        event_type=EventType.DEPARTURE,
        classification=EventClass.NEUTRAL,
        description=f"Set out carrying {caravan.total_goods} goods, {caravan.gold_carried} gold and {caravan.guards} guards.",
        day=0,
        occurred_at=now,
        metadata={"route_id": caravan.trade_route_id, "travel_total": caravan.travel_total},
    )


def arrival_event(caravan: Caravan, now: datetime) -> CaravanEvent:
    return CaravanEvent(
        caravan_id=caravan.id,
        event_type=EventType.SAFE_ARRIVAL,
        classification=EventClass.NEUTRAL,
        description=f"Arrived after {caravan.travel_total} days on the road.",
        day=caravan.travel_total,
        occurred_at=now,
        metadata={"goods": caravan.total_goods, "gold": caravan.gold_carried},
    )
