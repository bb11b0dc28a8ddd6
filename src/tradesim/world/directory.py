import math
import logging
import numpy as np
from scipy.spatial import cKDTree
from typing import Callable, Dict, List, Optional, Tuple

from ..core.errors import NotFoundError
from ..core.ids import ActorId, LocationId
from .model import (
    Barony,
    Kingdom,
    Location,
    LocationKind,
    LocationRef,
    ResolvedLocation,
    Town,
    Village,
    ref_of,
)

logger = logging.getLogger(__name__)


def euclidean_distance(p1: Tuple[float, float], p2: Tuple[float, float]) -> float:
    """Calculates the Euclidean distance between two 2D points."""
    return math.sqrt((p1[0] - p2[0])**2 + (p1[1] - p2[1])**2)


class LocationDirectory:
    """
    Read-only view of the flat world seed data.

    Each location kind has its own table and its own resolver; callers only
    ever see ResolvedLocation records (name, governing territory, coordinates).
    """

    def __init__(self):
        self.kingdoms: Dict[LocationId, Kingdom] = {}
        self.baronies: Dict[LocationId, Barony] = {}
        self.villages: Dict[LocationId, Village] = {}
        self.towns: Dict[LocationId, Town] = {}
        self._resolvers: Dict[LocationKind, Callable[[LocationId], Optional[ResolvedLocation]]] = {
            LocationKind.KINGDOM: self._resolve_kingdom,
            LocationKind.BARONY: self._resolve_barony,
            LocationKind.VILLAGE: self._resolve_village,
            LocationKind.TOWN: self._resolve_town,
        }
        # Spatial index, rebuilt lazily after the tables change
        self._tree: Optional[cKDTree] = None
        self._tree_refs: List[LocationRef] = []

    def add(self, location: Location):
        table = self._table_for(location.kind)
        table[location.id] = location
        self._tree = None

    def _table_for(self, kind: LocationKind) -> Dict[LocationId, Location]:
        return {
            LocationKind.KINGDOM: self.kingdoms,
            LocationKind.BARONY: self.baronies,
            LocationKind.VILLAGE: self.villages,
            LocationKind.TOWN: self.towns,
        }[kind]

    def all_locations(self) -> List[Location]:
        return [*self.villages.values(), *self.towns.values(), *self.baronies.values(), *self.kingdoms.values()]

    # --- Resolvers, one per variant ---

    def _resolve_kingdom(self, loc_id: LocationId) -> Optional[ResolvedLocation]:
        kingdom = self.kingdoms.get(loc_id)
        if kingdom is None:
            return None
        ref = ref_of(kingdom)
        return ResolvedLocation(ref=ref, name=kingdom.name, territory=ref, coordinates=(kingdom.x, kingdom.y))

    def _resolve_barony(self, loc_id: LocationId) -> Optional[ResolvedLocation]:
        barony = self.baronies.get(loc_id)
        if barony is None:
            return None
        ref = ref_of(barony)
        return ResolvedLocation(ref=ref, name=barony.name, territory=ref, coordinates=(barony.x, barony.y))

    def _resolve_village(self, loc_id: LocationId) -> Optional[ResolvedLocation]:
        village = self.villages.get(loc_id)
        if village is None:
            return None
        return ResolvedLocation(
            ref=ref_of(village),
            name=village.name,
            territory=LocationRef(LocationKind.BARONY, village.barony_id),
            coordinates=(village.x, village.y),
        )

    def _resolve_town(self, loc_id: LocationId) -> Optional[ResolvedLocation]:
        town = self.towns.get(loc_id)
        if town is None:
            return None
        return ResolvedLocation(
            ref=ref_of(town),
            name=town.name,
            territory=LocationRef(LocationKind.BARONY, town.barony_id),
            coordinates=(town.x, town.y),
        )

    def find(self, ref: LocationRef) -> Optional[ResolvedLocation]:
        return self._resolvers[ref.kind](ref.id)

    def resolve(self, ref: LocationRef) -> ResolvedLocation:
        resolved = self.find(ref)
        if resolved is None:
            raise NotFoundError(f"Location '{ref}' not found.")
        return resolved

    def name_of(self, ref: Optional[LocationRef]) -> str:
        if ref is None:
            return "Unknown"
        resolved = self.find(ref)
        return resolved.name if resolved else "Unknown"

    # --- Territory hierarchy ---

    def territory_chain(self, territory: LocationRef) -> List[LocationRef]:
        """
        Returns the territory followed by every territory above it
        (a barony and its kingdom; a kingdom alone).
        """
        chain = [territory]
        if territory.kind == LocationKind.BARONY:
            barony = self.baronies.get(territory.id)
            if barony and barony.kingdom_id in self.kingdoms:
                chain.append(LocationRef(LocationKind.KINGDOM, barony.kingdom_id))
        return chain

    def ruler_of(self, territory: LocationRef) -> Optional[ActorId]:
        if territory.kind == LocationKind.BARONY:
            barony = self.baronies.get(territory.id)
            return barony.ruler_id if barony else None
        if territory.kind == LocationKind.KINGDOM:
            kingdom = self.kingdoms.get(territory.id)
            return kingdom.ruler_id if kingdom else None
        return None

    def territories_ruled_by(self, actor_id: ActorId) -> List[LocationRef]:
        ruled = [ref_of(b) for b in self.baronies.values() if b.ruler_id == actor_id]
        ruled.extend(ref_of(k) for k in self.kingdoms.values() if k.ruler_id == actor_id)
        return ruled

    # --- Spatial queries ---

    def _ensure_tree(self):
        if self._tree is not None:
            return
        # Travel destinations are settlements and seats of power alike
        self._tree_refs = [ref_of(location) for location in self.all_locations()]
        if not self._tree_refs:
            self._tree = None
            return
        coords = np.array([self.resolve(ref).coordinates for ref in self._tree_refs], dtype=float)
        self._tree = cKDTree(coords)
        logger.debug("Rebuilt location index with %d entries", len(self._tree_refs))

    def within(self, point: Tuple[float, float], radius: float) -> List[Tuple[ResolvedLocation, float]]:
        """Every location within `radius` of `point`, closest first."""
        self._ensure_tree()
        if self._tree is None:
            return []
        indices = self._tree.query_ball_point(np.array(point, dtype=float), r=radius)
        results = []
        for idx in indices:
            resolved = self.resolve(self._tree_refs[idx])
            results.append((resolved, euclidean_distance(point, resolved.coordinates)))
        results.sort(key=lambda item: (item[1], str(item[0].ref)))
        return results

    def distance_between(self, a: LocationRef, b: LocationRef) -> float:
        return euclidean_distance(self.resolve(a).coordinates, self.resolve(b).coordinates)
