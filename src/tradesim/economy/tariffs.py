from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from ..core.errors import AuthorizationError, ValidationError
from ..core.ids import ActorId, CaravanId, ItemId, TariffId
from ..world.model import LocationRef

if TYPE_CHECKING:
    from ..core.state import Transaction, WorldState

logger = logging.getLogger(__name__)


@dataclass
class TariffCollection:
    amount: int
    caravan_id: Optional[CaravanId]
    collected_at: datetime


@dataclass
class Tariff:
    id: TariffId
    territory: LocationRef
    item_id: Optional[ItemId] # None taxes all goods
    rate: int # percent
    set_by: ActorId
    is_active: bool = True
    total_collected: int = 0
    created_at: Optional[datetime] = None
    collections: List[TariffCollection] = field(default_factory=list)

    def applies_to(self, item_id: ItemId) -> bool:
        return self.item_id is None or self.item_id == item_id

    def calculate(self, value: int) -> int:
        return int(value * self.rate / 100)

    def record(self, amount: int, caravan_id: Optional[CaravanId], at: datetime) -> TariffCollection:
        if amount < 0:
            raise ValueError("Collected amount cannot be negative.")
        collection = TariffCollection(amount, caravan_id, at)
        self.total_collected += amount
        self.collections.append(collection)
        return collection

    def revoke(self, collection: TariffCollection):
        """Takes back one recorded collection; every other one stays."""
        self.total_collected -= collection.amount
        self.collections.remove(collection)


class TariffEngine:
    def __init__(self, state: WorldState):
        self.state = state

    @property
    def bounds(self) -> Tuple[int, int]:
        return self.state.config.tariff.min_rate, self.state.config.tariff.max_rate

    def _validate_rate(self, rate: Any) -> int:
        if isinstance(rate, bool) or not isinstance(rate, int):
            raise ValidationError("Tariff rate must be a whole percentage.")
        min_rate, max_rate = self.bounds
        if not min_rate <= rate <= max_rate:
            raise ValidationError(f"Tariff rate must be between {min_rate}% and {max_rate}%.")
        return rate

    def _require_authority(self, actor_id: ActorId, territory: LocationRef):
        if not territory.is_territory:
            raise ValidationError(f"'{territory}' is not a barony or kingdom.")
        resolved = self.state.directory.resolve(territory)
        if not self.state.authority.is_authority(actor_id, territory):
            raise AuthorizationError(f"You do not rule {resolved.name}.")

    def find(self, territory: LocationRef, item_id: Optional[ItemId]) -> Optional[Tariff]:
        for tariff in self.state.tariffs.values():
            if tariff.territory == territory and tariff.item_id == item_id:
                return tariff
        return None

    def set_tariff(
        self,
        actor_id: ActorId,
        territory: LocationRef,
        item_id: Optional[ItemId],
        rate: int,
        now: Optional[datetime] = None,
    ) -> Tariff:
        """Creates the (territory, item) tariff, or re-rates and re-activates the existing one."""
        self._require_authority(actor_id, territory)
        rate = self._validate_rate(rate)
        if item_id is not None:
            self.state.items.get(item_id)

        with self.state.transaction(f"tariffs:{territory}", now=now) as txn:
            tariff = self.find(territory, item_id)
            if tariff is None:
                tariff = Tariff(
                    id=TariffId(self.state.next_id("tariff")),
                    territory=territory,
                    item_id=item_id,
                    rate=rate,
                    set_by=actor_id,
                    created_at=txn.now,
                )
                txn.put(self.state.tariffs, tariff.id, tariff)
            else:
                txn.snapshot(tariff)
                tariff.rate = rate
                tariff.is_active = True
                tariff.set_by = actor_id
            txn.log.add_entry(
                "tariff.set",
                txn.now,
                actor_id=actor_id,
                reason=f"{territory} levies {rate}% on {item_id or 'all goods'}.",
                details={"tariff_id": tariff.id, "rate": rate},
            )
        return tariff

    def update_tariff(
        self,
        actor_id: ActorId,
        tariff_id: TariffId,
        rate: Optional[int] = None,
        is_active: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> Tariff:
        tariff = self.state.tariff(tariff_id)
        self._require_authority(actor_id, tariff.territory)
        if rate is not None:
            rate = self._validate_rate(rate)
        if is_active is not None and not isinstance(is_active, bool):
            raise ValidationError("is_active must be true or false.")

        with self.state.transaction(f"tariffs:{tariff.territory}", now=now) as txn:
            txn.snapshot(tariff)
            if rate is not None:
                tariff.rate = rate
            if is_active is not None:
                tariff.is_active = is_active
            tariff.set_by = actor_id
            txn.log.add_entry(
                "tariff.updated",
                txn.now,
                actor_id=actor_id,
                reason=f"Tariff {tariff.id} now {tariff.rate}% ({'active' if tariff.is_active else 'inactive'}).",
                details={"tariff_id": tariff.id, "rate": tariff.rate, "is_active": tariff.is_active},
            )
        return tariff

    def lock_keys(self, location: LocationRef) -> List[str]:
        """Locks guarding the ledgers of every territory that taxes sales at `location`."""
        resolved = self.state.directory.find(location)
        if resolved is None:
            return []
        return [f"tariffs:{territory}" for territory in self.state.directory.territory_chain(resolved.territory)]

    def applicable(self, location: LocationRef) -> List[Tariff]:
        """Active tariffs levied by the location's territory and every territory above it."""
        resolved = self.state.directory.find(location)
        if resolved is None:
            return []
        chain = self.state.directory.territory_chain(resolved.territory)
        return [
            tariff for territory in chain
            for tariff in self.state.tariffs.values()
            if tariff.is_active and tariff.territory == territory
        ]

    def assess(self, location: LocationRef, goods_values: Dict[ItemId, int]) -> List[Tuple[Tariff, int]]:
        """Per-tariff amounts owed on the declared values, without collecting anything."""
        owed = []
        for tariff in self.applicable(location):
            amount = sum(
                tariff.calculate(value)
                for item_id, value in goods_values.items()
                if tariff.applies_to(item_id)
            )
            if amount > 0:
                owed.append((tariff, amount))
        return owed

    def charge(
        self,
        txn: Transaction,
        caravan_id: CaravanId,
        goods_values: Dict[ItemId, int],
        location: LocationRef,
    ) -> int:
        """
        Collects tariffs on a sale inside the caller's transaction.

        The caller must hold `lock_keys(location)`. Returns the total to deduct
        from proceeds, never more than the declared value: tariffs are taken
        barony first and each one only from what is still uncollected. A tariff
        whose treasury credit fails is logged and waived so the sale still goes
        through.
        """
        uncollected = sum(goods_values.values())
        total = 0
        for tariff, owed in self.assess(location, goods_values):
            amount = min(owed, uncollected)
            if amount <= 0:
                break
            try:
                txn.credit_gold(str(tariff.territory), amount)
            except Exception:
                logger.exception("Could not credit %s with tariff %s; waiving %d gold.", tariff.territory, tariff.id, amount)
                continue
            collection = tariff.record(amount, caravan_id, txn.now)
            txn.on_rollback(tariff.revoke, collection)
            total += amount
            uncollected -= amount
            txn.log.add_entry(
                "tariff.collected",
                txn.now,
                caravan_id=caravan_id,
                delta=amount,
                reason=f"{tariff.territory} collected {amount} gold ({tariff.rate}%).",
                details={"tariff_id": tariff.id},
            )
        return total

    def list_tariffs(self, territory: LocationRef) -> List[Dict[str, Any]]:
        tariffs = []
        for tariff in self.state.tariffs.values():
            if tariff.territory != territory:
                continue
            item_name = "All Goods"
            if tariff.item_id is not None and tariff.item_id in self.state.items:
                item_name = self.state.items.get(tariff.item_id).name
            tariffs.append({
                "id": tariff.id,
                "territory": str(tariff.territory),
                "item_id": tariff.item_id,
                "item_name": item_name,
                "rate": tariff.rate,
                "is_active": tariff.is_active,
                "total_collected": tariff.total_collected,
            })
        return tariffs

    def routes_through(self, territory: LocationRef) -> List[Dict[str, Any]]:
        """Active trade routes with an endpoint inside the territory, so caravans on them pay its tariffs."""
        directory = self.state.directory

        def inside(location: LocationRef) -> bool:
            resolved = directory.find(location)
            return resolved is not None and territory in directory.territory_chain(resolved.territory)

        return [
            {
                "id": route.id,
                "name": route.name,
                "origin_name": directory.name_of(route.origin),
                "destination_name": directory.name_of(route.destination),
                "danger_level": route.danger_level,
            }
            for route in self.state.routes.values()
            if route.is_active and (inside(route.origin) or inside(route.destination))
        ]

    def revenue_summary(self, territory: LocationRef, now: Optional[datetime] = None) -> Dict[str, int]:
        now = now or self.state.now()
        week_start = now - timedelta(days=7)
        month_start = now - timedelta(days=30)
        this_week = this_month = total = 0
        for tariff in self.state.tariffs.values():
            if tariff.territory != territory:
                continue
            for collection in tariff.collections:
                total += collection.amount
                if collection.collected_at >= month_start:
                    this_month += collection.amount
                if collection.collected_at >= week_start:
                    this_week += collection.amount
        return {"this_week": this_week, "this_month": this_month, "total": total}
