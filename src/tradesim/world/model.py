from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple, ClassVar, Union

from ..core.ids import ActorId, LocationId


class LocationKind(str, Enum):
    VILLAGE = "village"
    TOWN = "town"
    BARONY = "barony"
    KINGDOM = "kingdom"


# Kinds that can levy tariffs and own trade routes
TERRITORY_KINDS = (LocationKind.BARONY, LocationKind.KINGDOM)


@dataclass(frozen=True)
class LocationRef:
    kind: LocationKind
    id: LocationId

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"

    @classmethod
    def parse(cls, text: str) -> "LocationRef":
        """Parses the 'kind:id' form used in payloads and save files."""
        kind, sep, loc_id = text.partition(":")
        if not sep or not loc_id:
            raise ValueError(f"Malformed location reference '{text}'.")
        return cls(LocationKind(kind), LocationId(loc_id))

    @property
    def is_territory(self) -> bool:
        return self.kind in TERRITORY_KINDS


@dataclass
class Kingdom:
    kind: ClassVar[LocationKind] = LocationKind.KINGDOM
    id: LocationId
    name: str
    ruler_id: Optional[ActorId] = None
    x: float = 0.0
    y: float = 0.0


@dataclass
class Barony:
    kind: ClassVar[LocationKind] = LocationKind.BARONY
    id: LocationId
    name: str
    kingdom_id: LocationId
    ruler_id: Optional[ActorId] = None
    x: float = 0.0
    y: float = 0.0


@dataclass
class Village:
    kind: ClassVar[LocationKind] = LocationKind.VILLAGE
    id: LocationId
    name: str
    barony_id: LocationId
    x: float = 0.0
    y: float = 0.0


@dataclass
class Town:
    kind: ClassVar[LocationKind] = LocationKind.TOWN
    id: LocationId
    name: str
    barony_id: LocationId
    x: float = 0.0
    y: float = 0.0


Location = Union[Kingdom, Barony, Village, Town]


def ref_of(location: Location) -> LocationRef:
    return LocationRef(location.kind, location.id)


@dataclass(frozen=True)
class ResolvedLocation:
    ref: LocationRef
    name: str
    territory: LocationRef # the barony or kingdom that governs this location
    coordinates: Tuple[float, float]


@dataclass
class Actor:
    id: ActorId
    name: str
    location: LocationRef
    energy: int = 100
    max_energy: int = 100

    def has_energy(self, amount: int) -> bool:
        return self.energy >= amount
