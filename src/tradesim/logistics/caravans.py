"""
Caravan lifecycle: create, load, dispatch, tick in transit, unload, disband.

Player-facing operations take the acting actor and check ownership. Each one
runs inside a WorldState transaction holding the caravan's lock (and the
owner's, when gold or goods move, and the tariff ledgers of the market on a
sale), so a player unload can never interleave with a scheduler tick on the
same caravan and a failure leaves nothing half-applied. NPC merchant caravans
have no owner: they are spawned onto a route and settle on arrival.
"""
from __future__ import annotations
import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import AuthorizationError, CapacityError, StateError, ValidationError
from ..core.ids import ActorId, CaravanId, ItemId, RouteId
from ..core.progress import days_elapsed, progress
from ..events.effects import apply_outcome, arrival_event, departure_event, destruction_event
from ..events.model import CaravanEvent
from ..events.risk import RouteRiskEngine
from ..economy.tariffs import TariffEngine
from ..world.model import LocationRef
from .caravan import Caravan, CaravanStatus

if TYPE_CHECKING:
    from ..core.state import WorldState

logger = logging.getLogger(__name__)

MERCHANT_FIRST_NAMES = [
    "Aldous", "Bertram", "Cedric", "Edmund", "Geoffrey", "Harald", "Jasper",
    "Lothar", "Magnus", "Otto", "Percival", "Roland", "Sigmund", "Ulric",
]
MERCHANT_LAST_NAMES = [
    "Goldweaver", "Silktrader", "Ironmonger", "Coinsworth", "Fairprice",
    "Goodbargain", "Richcart", "Prosperby",
]


def _lock_keys(caravan_id: CaravanId, owner_id: Optional[ActorId] = None) -> List[str]:
    keys = [f"caravan:{caravan_id}"]
    if owner_id is not None:
        keys.append(f"actor:{owner_id}")
    return keys


def _positive_int(value: Any, label: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{label} must be a positive whole number.")
    return value


class CaravanService:
    def __init__(self, state: WorldState, risk: RouteRiskEngine, tariffs: TariffEngine):
        self.state = state
        self.risk = risk
        self.tariffs = tariffs
        self.rng = risk.rng

    @property
    def config(self):
        return self.state.config.caravan

    # --- Guards ---

    def _owned(self, actor_id: ActorId, caravan_id: CaravanId) -> Caravan:
        caravan = self.state.caravan(caravan_id)
        if caravan.owner_id != actor_id:
            raise AuthorizationError("You do not own this caravan.")
        return caravan

    def _require_status(self, caravan: Caravan, *statuses: CaravanStatus, action: str):
        if caravan.status not in statuses:
            allowed = " or ".join(s.value for s in statuses)
            raise StateError(f"Cannot {action} a caravan that is {caravan.status.value}; it must be {allowed}.")

    # --- Creation and loading ---

    def creation_cost(self, guards: int) -> int:
        return self.config.base_cost + guards * self.config.guard_cost

    def create(
        self,
        owner_id: ActorId,
        name: str,
        guards: int,
        location: LocationRef,
        now: Optional[datetime] = None,
    ) -> Caravan:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Caravan name is required.")
        if len(name) > self.config.max_name_length:
            raise ValidationError(f"Caravan name must be at most {self.config.max_name_length} characters.")
        if isinstance(guards, bool) or not isinstance(guards, int) or not 0 <= guards <= self.config.max_guards:
            raise ValidationError(f"Guards must be between 0 and {self.config.max_guards}.")
        here = self.state.directory.resolve(location)
        cost = self.creation_cost(guards)

        with self.state.transaction(f"actor:{owner_id}", now=now) as txn:
            self.state.actor(owner_id)
            txn.debit_gold(owner_id, cost)
            caravan = Caravan(
                id=CaravanId(self.state.next_id("caravan")),
                name=name,
                owner_id=owner_id,
                current_location=location,
                capacity=self.config.base_capacity,
                guards=guards,
                created_at=txn.now,
            )
            txn.put(self.state.caravans, caravan.id, caravan)
            txn.log.add_entry(
                "caravan.created",
                txn.now,
                actor_id=owner_id,
                caravan_id=caravan.id,
                delta=-cost,
                reason=f"'{name}' formed at {here.name} with {guards} guards for {cost} gold.",
            )
        logger.info("Caravan %s created by %s at %s", caravan.id, owner_id, location)
        return caravan

    def load_goods(
        self,
        actor_id: ActorId,
        caravan_id: CaravanId,
        item_id: ItemId,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> Caravan:
        quantity = _positive_int(quantity, "Quantity")
        with self.state.transaction(*_lock_keys(caravan_id, actor_id), now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.PREPARING, action="load")
            item = self.state.items.get(item_id)
            if not item.is_tradeable:
                raise ValidationError(f"{item.name} cannot be traded.")
            if caravan.total_goods + quantity > caravan.capacity:
                raise CapacityError(
                    f"Not enough capacity: {caravan.remaining_capacity} free, {quantity} requested."
                )
            txn.debit_items(actor_id, item_id, quantity)
            txn.snapshot(caravan)
            caravan.add_goods(item_id, quantity, item.base_price, caravan.current_location)
            txn.log.add_entry(
                "caravan.loaded",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                delta=quantity,
                reason=f"Loaded {quantity} {item.name} at {item.base_price} gold each.",
            )
        return caravan

    def remove_goods(
        self,
        actor_id: ActorId,
        caravan_id: CaravanId,
        item_id: ItemId,
        quantity: int,
        now: Optional[datetime] = None,
    ) -> Caravan:
        quantity = _positive_int(quantity, "Quantity")
        with self.state.transaction(*_lock_keys(caravan_id, actor_id), now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.PREPARING, action="unload cargo from")
            held = caravan.quantity_of(item_id)
            if quantity > held:
                raise ValidationError(f"The caravan only holds {held} of {item_id}.")
            txn.snapshot(caravan)
            caravan.take_goods(item_id, quantity)
            txn.credit_items(actor_id, item_id, quantity)
            txn.log.add_entry(
                "caravan.unloaded",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                delta=-quantity,
                reason=f"Removed {quantity} {item_id} before departure.",
            )
        return caravan

    def load_gold(
        self,
        actor_id: ActorId,
        caravan_id: CaravanId,
        amount: int,
        now: Optional[datetime] = None,
    ) -> Caravan:
        amount = _positive_int(amount, "Gold amount")
        with self.state.transaction(*_lock_keys(caravan_id, actor_id), now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.PREPARING, action="load gold into")
            txn.debit_gold(actor_id, amount)
            txn.snapshot(caravan)
            caravan.gold_carried += amount
            txn.log.add_entry(
                "caravan.gold_loaded",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                delta=amount,
                reason=f"Entrusted {amount} gold to the caravan.",
            )
        return caravan

    # --- Transit ---

    def dispatch(
        self,
        actor_id: ActorId,
        caravan_id: CaravanId,
        route_id: RouteId,
        now: Optional[datetime] = None,
    ) -> Caravan:
        route = self.state.route(route_id)
        with self.state.transaction(*_lock_keys(caravan_id), now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.PREPARING, action="dispatch")
            if not route.is_active:
                raise ValidationError(f"Route '{route.name}' is closed.")
            if route.origin != caravan.current_location:
                raise ValidationError("The caravan is not at this route's origin.")
            if self.config.require_cargo_to_dispatch and caravan.total_goods == 0:
                raise ValidationError("The caravan has no goods to carry.")

            txn.snapshot(caravan)
            caravan.status = CaravanStatus.TRAVELING
            caravan.destination = route.destination
            caravan.trade_route_id = route.id
            caravan.travel_total = route.base_travel_days
            caravan.travel_progress = 0
            caravan.last_processed_day = 0
            caravan.departed_at = txn.now
            caravan.arrived_at = None
            caravan.record(departure_event(caravan, txn.now))
            txn.log.add_entry(
                "caravan.dispatched",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                reason=f"'{caravan.name}' departed along {route.name} ({route.base_travel_days} days, {route.danger_level}).",
                details={"route_id": route.id},
            )
        logger.info("Caravan %s dispatched on route %s", caravan.id, route.id)
        return caravan

    def in_transit(self) -> List[CaravanId]:
        return [c.id for c in self.state.caravans.values() if c.status == CaravanStatus.TRAVELING]

    def tick(self, caravan_id: CaravanId, now: Optional[datetime] = None) -> List[CaravanEvent]:
        """
        Advances one caravan to `now`. Scheduler-driven.

        Each day boundary crossed since departure is rolled for risk exactly
        once, tracked by `last_processed_day`; calling again with the same or
        an earlier `now` changes nothing. Returns the events this call added.
        """
        keys = _lock_keys(caravan_id)
        peeked = self.state.caravan(caravan_id)
        if peeked.is_npc and peeked.destination is not None:
            # NPC merchants pay tariffs on arrival
            keys += self.tariffs.lock_keys(peeked.destination)

        with self.state.transaction(*keys, now=now) as txn:
            caravan = self.state.caravan(caravan_id)
            if caravan.status != CaravanStatus.TRAVELING:
                return []
            if caravan.departed_at is None:
                raise StateError(f"Caravan {caravan.id} is traveling without a departure time.")

            txn.snapshot(caravan)
            route = self.state.routes.get(caravan.trade_route_id)
            day_length = self.config.day_length_seconds
            crossed = days_elapsed(caravan.departed_at, txn.now, day_length)
            new_events = []

            while caravan.status == CaravanStatus.TRAVELING and caravan.last_processed_day < min(crossed, caravan.travel_total):
                day = caravan.last_processed_day + 1
                for outcome in self.risk.roll_day(caravan, route, day):
                    if caravan.status != CaravanStatus.TRAVELING:
                        break
                    event = apply_outcome(caravan, outcome, txn.now)
                    caravan.record(event)
                    new_events.append(event)
                    txn.log.add_entry(
                        f"caravan.event.{event.event_type.value}",
                        txn.now,
                        actor_id=caravan.owner_id,
                        caravan_id=caravan.id,
                        delta=event.gold_gained - event.gold_lost,
                        reason=f"Day {day}: {event.description}",
                        details={"classification": event.classification.value, "tier": event.tier},
                    )
                caravan.last_processed_day = day
                caravan.travel_progress = min(day, caravan.travel_total)

            if caravan.status == CaravanStatus.DESTROYED:
                self._close_destroyed(txn, caravan, new_events[-1])
                return new_events

            journey = timedelta(seconds=caravan.travel_total * day_length)
            if progress(caravan.departed_at, journey, txn.now).has_arrived and caravan.last_processed_day >= caravan.travel_total:
                caravan.status = CaravanStatus.ARRIVED
                caravan.arrived_at = txn.now
                caravan.current_location = caravan.destination
                caravan.travel_progress = caravan.travel_total
                event = arrival_event(caravan, txn.now)
                caravan.record(event)
                new_events.append(event)
                txn.log.add_entry(
                    "caravan.arrived",
                    txn.now,
                    actor_id=caravan.owner_id,
                    caravan_id=caravan.id,
                    reason=f"'{caravan.name}' reached {self.state.directory.name_of(caravan.destination)}.",
                )
                if caravan.is_npc:
                    self._settle_npc(txn, caravan)
        return new_events

    def _close_destroyed(self, txn, caravan: Caravan, event: CaravanEvent):
        caravan.closed_at = txn.now
        txn.log.add_entry(
            "caravan.destroyed",
            txn.now,
            actor_id=caravan.owner_id,
            caravan_id=caravan.id,
            delta=-event.gold_lost,
            reason=event.description,
            details={"goods_lost": dict(event.metadata.get("goods", {}))},
        )
        logger.info("Caravan %s destroyed on the road", caravan.id)

    def destroy(self, caravan_id: CaravanId, reason: str, now: Optional[datetime] = None) -> Caravan:
        """Internal: wipes out a caravan in transit with no refund."""
        with self.state.transaction(*_lock_keys(caravan_id), now=now) as txn:
            caravan = self.state.caravan(caravan_id)
            self._require_status(caravan, CaravanStatus.TRAVELING, action="destroy")
            txn.snapshot(caravan)
            event = destruction_event(caravan, txn.now, caravan.last_processed_day, reason)
            caravan.record(event)
            self._close_destroyed(txn, caravan, event)
        return caravan

    def _settle_npc(self, txn, caravan: Caravan):
        """An NPC merchant sells its whole cargo on arrival, pays the local tariffs and leaves."""
        declared = {line.item_id: line.total_cost for line in caravan.goods}
        paid = self.tariffs.charge(txn, caravan.id, declared, caravan.current_location)
        sold = caravan.total_goods
        caravan.goods = []
        caravan.status = CaravanStatus.DISBANDED
        caravan.closed_at = txn.now
        txn.log.add_entry(
            "caravan.npc_settled",
            txn.now,
            caravan_id=caravan.id,
            delta=paid,
            reason=f"{caravan.npc_merchant_name} sold {sum(declared.values())} gold of goods ({sold} units) and paid {paid} in tariffs.",
        )

    # --- NPC merchants ---

    def create_npc(self, route_id: RouteId, now: Optional[datetime] = None) -> Caravan:
        """
        Puts an NPC merchant caravan on the road along `route_id`.

        Capacity, guards and cargo are rolled from the balance ranges; the
        cargo is one tradeable good bought at base price, so no actor's
        inventory or gold moves. The caravan departs at once.
        """
        route = self.state.route(route_id)
        if not route.is_active:
            raise ValidationError(f"Route '{route.name}' is closed.")
        tradeable = [item for item in self.state.items.all_items() if item.is_tradeable]
        merchant = f"{self.rng.choice(MERCHANT_FIRST_NAMES)} {self.rng.choice(MERCHANT_LAST_NAMES)}"
        capacity = self.rng.randint(*self.config.npc_capacity)
        guards = self.rng.randint(*self.config.npc_guards)

        caravan_id = CaravanId(self.state.next_id("caravan"))
        with self.state.transaction(*_lock_keys(caravan_id), now=now) as txn:
            caravan = Caravan(
                id=caravan_id,
                name=f"{merchant}'s Caravan",
                owner_id=None,
                current_location=route.origin,
                capacity=capacity,
                guards=guards,
                created_at=txn.now,
                is_npc=True,
                npc_merchant_name=merchant,
            )
            if tradeable:
                item = self.rng.choice(tradeable)
                low, high = self.config.npc_cargo_share
                quantity = max(1, int(capacity * self.rng.uniform(low, high)))
                caravan.add_goods(item.id, min(quantity, capacity), item.base_price, route.origin)

            caravan.status = CaravanStatus.TRAVELING
            caravan.destination = route.destination
            caravan.trade_route_id = route.id
            caravan.travel_total = route.base_travel_days
            caravan.departed_at = txn.now
            caravan.record(departure_event(caravan, txn.now))
            txn.put(self.state.caravans, caravan.id, caravan)
            txn.log.add_entry(
                "caravan.npc_departed",
                txn.now,
                caravan_id=caravan.id,
                reason=f"{merchant} set out along {route.name} with {caravan.total_goods} goods and {guards} guards.",
                details={"route_id": route.id},
            )
        return caravan

    def spawn_npc_caravans(self, count: int = 3, now: Optional[datetime] = None) -> List[Caravan]:
        """Sends NPC merchants down up to `count` distinct active routes chosen at random."""
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError("NPC caravan count must be a non-negative whole number.")
        routes = [route.id for route in self.state.routes.values() if route.is_active]
        chosen = self.rng.sample(routes, min(count, len(routes)))
        spawned = [self.create_npc(route_id, now=now) for route_id in chosen]
        if spawned:
            logger.info("Spawned %d NPC caravans", len(spawned))
        return spawned

    # --- Settlement ---

    def unload_goods(
        self,
        actor_id: ActorId,
        caravan_id: CaravanId,
        item_id: ItemId,
        quantity: int,
        sale_price: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Sells goods at the destination. Tariffs on the sale value are taken
        before the owner is paid.
        """
        quantity = _positive_int(quantity, "Quantity")
        if isinstance(sale_price, bool) or not isinstance(sale_price, int) or sale_price < 0:
            raise ValidationError("Sale price must be a non-negative whole number.")

        # Tariff ledgers are shared with every other caravan selling in the same territories
        market = self.state.caravan(caravan_id).current_location
        keys = _lock_keys(caravan_id, actor_id) + self.tariffs.lock_keys(market)

        with self.state.transaction(*keys, now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.ARRIVED, action="sell goods from")
            if caravan.current_location != market:
                raise StateError("The caravan moved while the sale was being prepared; try again.")
            held = caravan.quantity_of(item_id)
            if quantity > held:
                raise ValidationError(f"The caravan only holds {held} of {item_id}.")

            txn.snapshot(caravan)
            sold = caravan.take_goods(item_id, quantity)
            revenue = quantity * sale_price
            tariff = self.tariffs.charge(txn, caravan.id, {item_id: revenue}, caravan.current_location)
            proceeds = revenue - tariff
            txn.credit_gold(actor_id, proceeds)
            profit = proceeds - sold.total_cost
            txn.log.add_entry(
                "caravan.sold",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                delta=proceeds,
                reason=f"Sold {quantity} {item_id} for {revenue} gold ({tariff} in tariffs, profit {profit}).",
            )
        return {"quantity": quantity, "revenue": revenue, "tariff": tariff, "proceeds": proceeds, "profit": profit}

    def disband(self, actor_id: ActorId, caravan_id: CaravanId, now: Optional[datetime] = None) -> Dict[str, Any]:
        with self.state.transaction(*_lock_keys(caravan_id, actor_id), now=now) as txn:
            caravan = self._owned(actor_id, caravan_id)
            self._require_status(caravan, CaravanStatus.PREPARING, CaravanStatus.ARRIVED, action="disband")

            txn.snapshot(caravan)
            returned_goods = {line.item_id: line.quantity for line in caravan.goods}
            for item_id, qty in returned_goods.items():
                txn.credit_items(actor_id, item_id, qty)
            returned_gold = caravan.gold_carried
            if returned_gold > 0:
                txn.credit_gold(actor_id, returned_gold)

            caravan.goods = []
            caravan.gold_carried = 0
            caravan.status = CaravanStatus.DISBANDED
            caravan.closed_at = txn.now
            txn.log.add_entry(
                "caravan.disbanded",
                txn.now,
                actor_id=actor_id,
                caravan_id=caravan.id,
                delta=returned_gold,
                reason=f"'{caravan.name}' disbanded; {returned_gold} gold and {sum(returned_goods.values())} goods returned.",
            )
        return {"gold": returned_gold, "goods": returned_goods}

    # --- Read projections ---

    def summary(self, caravan: Caravan) -> Dict[str, Any]:
        directory = self.state.directory
        return {
            "id": caravan.id,
            "name": caravan.name,
            "is_npc": caravan.is_npc,
            "status": caravan.status.value,
            "guards": caravan.guards,
            "gold_carried": caravan.gold_carried,
            "capacity": caravan.capacity,
            "total_goods": caravan.total_goods,
            "remaining_capacity": caravan.remaining_capacity,
            "goods_value": caravan.goods_value,
            "current_location": str(caravan.current_location),
            "current_location_name": directory.name_of(caravan.current_location),
            "destination": str(caravan.destination) if caravan.destination else None,
            "destination_name": directory.name_of(caravan.destination) if caravan.destination else None,
            "trade_route_id": caravan.trade_route_id,
            "travel_progress": caravan.travel_progress,
            "travel_total": caravan.travel_total,
            "travel_progress_percent": caravan.travel_progress_percent,
            "departed_at": caravan.departed_at.isoformat() if caravan.departed_at else None,
            "arrived_at": caravan.arrived_at.isoformat() if caravan.arrived_at else None,
        }

    def list_for_owner(self, owner_id: ActorId) -> Dict[str, List[Dict[str, Any]]]:
        owned = [c for c in self.state.caravans.values() if c.owner_id == owner_id]
        completed = sorted(
            (c for c in owned if c.is_terminal),
            key=lambda c: c.closed_at or c.created_at,
            reverse=True,
        )
        return {
            "active": [self.summary(c) for c in owned if c.is_active],
            "arrived": [self.summary(c) for c in owned if c.status == CaravanStatus.ARRIVED],
            "completed": [self.summary(c) for c in completed[:self.config.completed_history_limit]],
        }

    def detail(self, actor_id: ActorId, caravan_id: CaravanId) -> Dict[str, Any]:
        caravan = self._owned(actor_id, caravan_id)
        data = self.summary(caravan)
        data["goods"] = [
            {
                "item_id": line.item_id,
                "quantity": line.quantity,
                "purchase_price": line.purchase_price,
                "total_cost": line.total_cost,
            }
            for line in caravan.goods
        ]
        data["events"] = [event.to_dict() for event in reversed(caravan.events)]
        return data
