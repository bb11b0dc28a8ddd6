from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import AuthorizationError, ValidationError
from ..core.ids import ActorId, RouteId
from ..world.model import LocationRef

if TYPE_CHECKING:
    from ..core.state import WorldState

logger = logging.getLogger(__name__)

# Fixed bandit encounter probability per danger level; not tunable per route
BANDIT_CHANCE: Dict[str, float] = {
    "safe": 0.05,
    "moderate": 0.15,
    "dangerous": 0.30,
    "perilous": 0.50,
}
DANGER_LEVELS = tuple(BANDIT_CHANCE)
MAX_ROUTE_NAME_LENGTH = 100


@dataclass(frozen=True)
class TradeRoute:
    id: RouteId
    name: str
    origin: LocationRef
    destination: LocationRef
    distance: int
    danger_level: str
    base_travel_days: int
    created_by: ActorId
    is_active: bool = True
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def bandit_chance(self) -> float:
        return BANDIT_CHANCE[self.danger_level]


class TradeRouteGraph:
    """Directed, named edges between locations, owned by the origin's territory."""

    def __init__(self, state: WorldState):
        self.state = state

    def create_route(
        self,
        actor_id: ActorId,
        name: str,
        origin: LocationRef,
        destination: LocationRef,
        danger_level: str,
        notes: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TradeRoute:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Route name is required.")
        if len(name) > MAX_ROUTE_NAME_LENGTH:
            raise ValidationError(f"Route name must be at most {MAX_ROUTE_NAME_LENGTH} characters.")
        if danger_level not in BANDIT_CHANCE:
            raise ValidationError(f"Unknown danger level '{danger_level}'.")
        if origin == destination:
            raise ValidationError("Origin and destination must be different.")

        directory = self.state.directory
        origin_loc = directory.resolve(origin)
        directory.resolve(destination)

        if not self.state.authority.controls_location(actor_id, origin):
            raise AuthorizationError(f"You do not control {origin_loc.name}'s territory.")

        distance = max(1, round(directory.distance_between(origin, destination)))
        travel_days = max(1, round(distance / self.state.config.travel.route_speed))

        with self.state.transaction("routes", now=now) as txn:
            route = TradeRoute(
                id=RouteId(self.state.next_id("route")),
                name=name,
                origin=origin,
                destination=destination,
                distance=distance,
                danger_level=danger_level,
                base_travel_days=travel_days,
                created_by=actor_id,
                notes=notes,
                created_at=txn.now,
            )
            txn.put(self.state.routes, route.id, route)
            txn.log.add_entry(
                "route.created",
                txn.now,
                actor_id=actor_id,
                reason=f"Route '{name}' opened from {origin_loc.name} to {directory.name_of(destination)} ({danger_level}, {travel_days} days).",
                details={"route_id": route.id, "distance": distance},
            )
        logger.info("Route %s created by %s: %s -> %s", route.id, actor_id, origin, destination)
        return route

    def get(self, route_id: RouteId) -> TradeRoute:
        return self.state.route(route_id)

    def list_routes_from(self, location: LocationRef) -> List[TradeRoute]:
        return [
            route for route in self.state.routes.values()
            if route.is_active and route.origin == location
        ]

    def active_caravan_count(self, route_id: RouteId) -> int:
        return sum(
            1 for caravan in self.state.caravans.values()
            if caravan.trade_route_id == route_id and caravan.is_active
        )

    def list_routes(self) -> List[Dict[str, Any]]:
        """Every active route with names resolved and its count of active caravans."""
        directory = self.state.directory
        summaries = []
        for route in self.state.routes.values():
            if not route.is_active:
                continue
            summaries.append({
                "id": route.id,
                "name": route.name,
                "origin": str(route.origin),
                "origin_name": directory.name_of(route.origin),
                "destination": str(route.destination),
                "destination_name": directory.name_of(route.destination),
                "distance": route.distance,
                "danger_level": route.danger_level,
                "bandit_chance": route.bandit_chance,
                "base_travel_days": route.base_travel_days,
                "notes": route.notes,
                "active_caravans": self.active_caravan_count(route.id),
            })
        return summaries
