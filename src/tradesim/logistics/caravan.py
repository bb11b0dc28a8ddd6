from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from ..core.ids import ActorId, CaravanId, ItemId, RouteId
from ..events.model import CaravanEvent
from ..world.model import LocationRef


class CaravanStatus(str, Enum):
    PREPARING = "preparing"
    TRAVELING = "traveling"
    ARRIVED = "arrived"
    RETURNING = "returning"
    DISBANDED = "disbanded"
    DESTROYED = "destroyed"


ACTIVE_STATUSES = (CaravanStatus.PREPARING, CaravanStatus.TRAVELING, CaravanStatus.RETURNING)
TERMINAL_STATUSES = (CaravanStatus.DISBANDED, CaravanStatus.DESTROYED)


@dataclass
class CaravanGoods:
    item_id: ItemId
    quantity: int
    purchase_price: int # per unit, fixed when loaded
    origin: Optional[LocationRef] = None

    @property
    def total_cost(self) -> int:
        return self.quantity * self.purchase_price


@dataclass
class Caravan:
    id: CaravanId
    name: str
    owner_id: Optional[ActorId] # None for NPC merchants
    current_location: LocationRef
    capacity: int
    guards: int = 0
    gold_carried: int = 0
    status: CaravanStatus = CaravanStatus.PREPARING
    destination: Optional[LocationRef] = None
    trade_route_id: Optional[RouteId] = None
    travel_progress: int = 0
    travel_total: int = 0
    last_processed_day: int = 0 # highest day boundary already rolled for risk
    created_at: Optional[datetime] = None
    departed_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None # set when disbanded or destroyed
    is_npc: bool = False
    npc_merchant_name: Optional[str] = None
    goods: List[CaravanGoods] = field(default_factory=list)
    events: List[CaravanEvent] = field(default_factory=list)

    @property
    def total_goods(self) -> int:
        return sum(line.quantity for line in self.goods)

    @property
    def remaining_capacity(self) -> int:
        return max(0, self.capacity - self.total_goods)

    @property
    def goods_value(self) -> int:
        return sum(line.total_cost for line in self.goods)

    @property
    def travel_progress_percent(self) -> int:
        if self.travel_total <= 0:
            return 0
        return min(100, int(self.travel_progress / self.travel_total * 100))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def goods_line(self, item_id: ItemId) -> Optional[CaravanGoods]:
        for line in self.goods:
            if line.item_id == item_id:
                return line
        return None

    def quantity_of(self, item_id: ItemId) -> int:
        line = self.goods_line(item_id)
        return line.quantity if line else 0

    def add_goods(self, item_id: ItemId, quantity: int, unit_price: int, origin: Optional[LocationRef] = None):
        """Merges into an existing line, keeping the quantity-weighted average purchase price."""
        line = self.goods_line(item_id)
        if line is None:
            self.goods.append(CaravanGoods(item_id, quantity, unit_price, origin))
            return
        total_qty = line.quantity + quantity
        line.purchase_price = round((line.total_cost + quantity * unit_price) / total_qty)
        line.quantity = total_qty

    def take_goods(self, item_id: ItemId, quantity: int) -> CaravanGoods:
        """Removes quantity from a line (dropping it when empty); returns what was taken."""
        line = self.goods_line(item_id)
        if line is None or line.quantity < quantity:
            raise ValueError(f"Caravan {self.id} holds fewer than {quantity} of {item_id}.")
        line.quantity -= quantity
        if line.quantity == 0:
            self.goods.remove(line)
        return CaravanGoods(item_id, quantity, line.purchase_price, line.origin)

    def record(self, event: CaravanEvent):
        self.events.append(event)
