import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Union

from .ids import CaravanId
from .log import AuditLog
from .rng import resolve_rng
from .state import WorldState
from ..economy.tariffs import TariffEngine
from ..events.risk import RouteRiskEngine
from ..logistics.caravans import CaravanService
from ..logistics.routes import TradeRouteGraph
from ..logistics.travel import TravelStateMachine

logger = logging.getLogger(__name__)


@dataclass
class Simulation:
    state: WorldState
    routes: TradeRouteGraph
    risk: RouteRiskEngine
    tariffs: TariffEngine
    caravans: CaravanService
    travel: TravelStateMachine


@dataclass
class SweepReport:
    at: datetime
    log: AuditLog
    processed: int = 0
    failed: List[CaravanId] = field(default_factory=list)


def build_simulation(state: WorldState, rng: Optional[Union[int, random.Random]] = None) -> Simulation:
    """Wires the engines around one world state. `rng` defaults to the state's seeded source."""
    source = state.rng if rng is None else resolve_rng(rng)
    risk = RouteRiskEngine(state.config.risk, source)
    tariffs = TariffEngine(state)
    return Simulation(
        state=state,
        routes=TradeRouteGraph(state),
        risk=risk,
        tariffs=tariffs,
        caravans=CaravanService(state, risk, tariffs),
        travel=TravelStateMachine(state),
    )


def sweep(sim: Simulation, now: Optional[datetime] = None) -> SweepReport:
    """
    One pass of the external scheduler: ticks every caravan currently in transit.

    A caravan whose tick fails is logged and skipped; the rest of the
    population is still processed.
    """
    now = now or sim.state.now()
    mark = len(sim.state.audit.entries)
    report = SweepReport(at=now, log=AuditLog())

    for caravan_id in sim.caravans.in_transit():
        try:
            sim.caravans.tick(caravan_id, now=now)
        except Exception:
            logger.exception("Tick failed for caravan %s; skipping.", caravan_id)
            report.failed.append(caravan_id)
            report.log.add_entry("sweep.tick_failed", now, caravan_id=caravan_id, reason="Tick raised; caravan skipped.")
            continue
        report.processed += 1

    # Everything the ticks committed during this pass
    report.log.entries[:0] = sim.state.audit.entries[mark:]
    report.log.add_entry(
        "sweep.completed",
        now,
        reason=f"{report.processed} caravans advanced, {len(report.failed)} skipped.",
        details={"processed": report.processed, "failed": list(report.failed)},
    )
    return report
