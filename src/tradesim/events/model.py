from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from ..core.ids import CaravanId


class EventClass(str, Enum):
    NEGATIVE = "negative"
    POSITIVE = "positive"
    NEUTRAL = "neutral"


class EventType(str, Enum):
    DEPARTURE = "departure"
    BANDIT_ATTACK = "bandit_attack"
    BANDIT_RAID = "bandit_raid"
    BANDITS_REPELLED = "bandits_repelled"
    GOODS_SPOILED = "goods_spoiled"
    WEATHER_DELAY = "weather_delay"
    CARAVAN_DESTROYED = "caravan_destroyed"
    MERCHANT_OPPORTUNITY = "merchant_opportunity"
    SAFE_ARRIVAL = "safe_arrival"


def _freeze(value: Any) -> Any:
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, list):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


@dataclass(frozen=True)
class CaravanEvent:
    """A single entry in a caravan's travel journal. Never modified once written."""
    caravan_id: CaravanId
    event_type: EventType
    classification: EventClass
    description: str
    day: int
    occurred_at: datetime
    tier: Optional[str] = None # severity tier for negative events
    gold_lost: int = 0
    gold_gained: int = 0
    goods_lost: int = 0
    guards_lost: int = 0
    days_delayed: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", _freeze(self.metadata))

    def __deepcopy__(self, memo):
        return self

    def to_dict(self) -> Dict[str, Any]:
        return {
            "caravan_id": self.caravan_id,
            "event_type": self.event_type.value,
            "classification": self.classification.value,
            "description": self.description,
            "day": self.day,
            "occurred_at": self.occurred_at.isoformat(),
            "tier": self.tier,
            "gold_lost": self.gold_lost,
            "gold_gained": self.gold_gained,
            "goods_lost": self.goods_lost,
            "guards_lost": self.guards_lost,
            "days_delayed": self.days_delayed,
            "metadata": _thaw(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CaravanEvent":
        return cls(
            caravan_id=CaravanId(data["caravan_id"]),
            event_type=EventType(data["event_type"]),
            classification=EventClass(data["classification"]),
            description=data["description"],
            day=data["day"],
            occurred_at=datetime.fromisoformat(data["occurred_at"]),
            tier=data.get("tier"),
            gold_lost=data.get("gold_lost", 0),
            gold_gained=data.get("gold_gained", 0),
            goods_lost=data.get("goods_lost", 0),
            guards_lost=data.get("guards_lost", 0),
            days_delayed=data.get("days_delayed", 0),
            metadata=data.get("metadata", {}),
        )
