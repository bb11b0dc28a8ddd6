from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..core.errors import AuthorizationError, InsufficientEnergyError, StateError, ValidationError
from ..core.ids import ActorId
from ..core.progress import progress
from ..world.model import Actor, LocationRef

if TYPE_CHECKING:
    from ..core.state import WorldState

logger = logging.getLogger(__name__)


@dataclass
class TravelSession:
    actor_id: ActorId
    origin: LocationRef
    destination: LocationRef
    started_at: datetime
    arrives_at: datetime # fixed when the session starts
    energy_spent: int = 0

    @property
    def duration(self) -> timedelta:
        return self.arrives_at - self.started_at


class TravelStateMachine:
    """
    Player travel between locations: Idle (no session) or Traveling (one session).

    All transitions for an actor run under that actor's lock, so a double
    start or double arrive cannot interleave.
    """

    def __init__(self, state: WorldState):
        self.state = state

    @property
    def config(self):
        return self.state.config.travel

    def travel_seconds(self, distance: float) -> int:
        return max(self.config.min_travel_seconds, round(distance / self.config.distance_divisor * 60))

    def is_traveling(self, actor_id: ActorId) -> bool:
        return actor_id in self.state.sessions

    def start(
        self,
        actor_id: ActorId,
        destination: LocationRef,
        energy_cost: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> TravelSession:
        cost = self.config.energy_cost if energy_cost is None else energy_cost
        if cost < 0:
            raise ValidationError("Energy cost cannot be negative.")

        with self.state.transaction(f"actor:{actor_id}", now=now) as txn:
            actor = self.state.actor(actor_id)
            if self.is_traveling(actor_id):
                raise StateError("You are already traveling.")

            target = self.state.directory.find(destination)
            if target is None:
                raise ValidationError(f"Unknown destination '{destination}'.")
            if destination == actor.location:
                raise ValidationError("You are already there.")
            distance = self.state.directory.distance_between(actor.location, destination)
            if distance > self.config.max_travel_distance:
                raise ValidationError(f"{target.name} is too far to reach in one journey.")

            if not actor.has_energy(cost):
                raise InsufficientEnergyError(f"Not enough energy. Travel requires {cost} energy.")

            txn.snapshot(actor)
            actor.energy -= cost

            session = TravelSession(
                actor_id=actor_id,
                origin=actor.location,
                destination=destination,
                started_at=txn.now,
                arrives_at=txn.now + timedelta(seconds=self.travel_seconds(distance)),
                energy_spent=cost,
            )
            txn.put(self.state.sessions, actor_id, session)
            txn.log.add_entry(
                "travel.started",
                txn.now,
                actor_id=actor_id,
                delta=-cost,
                reason=f"{actor.name} set out for {target.name}.",
                details={"destination": str(destination), "arrives_at": session.arrives_at.isoformat()},
            )
        return session

    def _require_session(self, actor_id: ActorId) -> TravelSession:
        session = self.state.sessions.get(actor_id)
        if session is None:
            raise StateError("You are not currently traveling.")
        return session

    def cancel(self, actor_id: ActorId, now: Optional[datetime] = None) -> Actor:
        """Abandons the journey. The actor stays at the origin and spent energy is not refunded."""
        with self.state.transaction(f"actor:{actor_id}", now=now) as txn:
            actor = self.state.actor(actor_id)
            session = self._require_session(actor_id)
            txn.remove(self.state.sessions, actor_id)
            txn.log.add_entry(
                "travel.cancelled",
                txn.now,
                actor_id=actor_id,
                reason=f"{actor.name} turned back before reaching {self.state.directory.name_of(session.destination)}.",
            )
        return actor

    def _complete(self, txn, actor: Actor, session: TravelSession):
        txn.snapshot(actor)
        actor.location = session.destination
        txn.remove(self.state.sessions, actor.id)
        txn.log.add_entry(
            "travel.arrived",
            txn.now,
            actor_id=actor.id,
            reason=f"{actor.name} arrived at {self.state.directory.name_of(session.destination)}.",
        )

    def arrive(self, actor_id: ActorId, now: Optional[datetime] = None) -> Actor:
        with self.state.transaction(f"actor:{actor_id}", now=now) as txn:
            actor = self.state.actor(actor_id)
            session = self._require_session(actor_id)
            if not progress(session.started_at, session.duration, txn.now).has_arrived:
                raise StateError("You have not arrived yet.")
            self._complete(txn, actor, session)
        return actor

    def dev_skip(self, actor_id: ActorId, now: Optional[datetime] = None) -> Actor:
        if not self.state.config.dev_skip_enabled:
            raise AuthorizationError("Skipping travel is only available in development.")
        with self.state.transaction(f"actor:{actor_id}", now=now) as txn:
            actor = self.state.actor(actor_id)
            session = self._require_session(actor_id)
            txn.snapshot(session)
            session.arrives_at = txn.now
            logger.info("Travel skip used by %s", actor_id)
            self._complete(txn, actor, session)
        return actor

    def status(self, actor_id: ActorId, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        session = self.state.sessions.get(actor_id)
        if session is None:
            return None
        p = progress(session.started_at, session.duration, now or self.state.now())
        return {
            "origin": str(session.origin),
            "destination": str(session.destination),
            "destination_name": self.state.directory.name_of(session.destination),
            "started_at": session.started_at.isoformat(),
            "arrives_at": session.arrives_at.isoformat(),
            "total_seconds": int(session.duration.total_seconds()),
            "elapsed_seconds": p.elapsed_seconds,
            "remaining_seconds": p.remaining_seconds,
            "progress_percent": int(p.percent),
            "has_arrived": p.has_arrived,
        }

    def reachable_destinations(self, actor_id: ActorId) -> List[Dict[str, Any]]:
        actor = self.state.actor(actor_id)
        here = self.state.directory.resolve(actor.location)
        destinations = []
        for resolved, distance in self.state.directory.within(here.coordinates, self.config.max_travel_distance):
            if resolved.ref == actor.location:
                continue
            seconds = self.travel_seconds(distance)
            destinations.append({
                "location": str(resolved.ref),
                "name": resolved.name,
                "kind": resolved.ref.kind.value,
                "distance": round(distance, 1),
                "travel_seconds": seconds,
                "travel_time": max(1, round(seconds / 60)),
                "energy_cost": self.config.energy_cost,
            })
        return destinations
