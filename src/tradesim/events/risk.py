from __future__ import annotations
import logging
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional

from ..core.config import SEVERITY_TIERS, RiskConfig

if TYPE_CHECKING:
    from ..logistics.caravan import Caravan
    from ..logistics.routes import TradeRoute

logger = logging.getLogger(__name__)

POSITIVE = "positive"
SPOILAGE = "spoilage"
REPELLED = "repelled"

# Tiers that are a fight with bandits, so guards get to defend
BANDIT_TIERS = ("minor", "moderate")


@dataclass(frozen=True)
class RiskOutcome:
    """One fired roll for one day. `kind` is a severity tier, "spoilage", "repelled" or "positive"."""
    kind: str
    day: int
    chance: float # the probability the roll was made against
    fraction: float = 0.0 # share of gold or goods lost
    guards_lost: int = 0
    days_delayed: int = 0
    gold_gained: int = 0


class RouteRiskEngine:
    """
    Rolls the hazards of one day on the road.

    One draw decides the day's hazard: below the bandit chance it is an
    attack, in the band just above it perishable cargo spoils. Randomness
    comes only from the injected source, so a scripted source replays
    exactly. A misconfigured route or weight table is logged and treated as
    a quiet day instead of raising.
    """

    def __init__(self, config: RiskConfig, rng: random.Random):
        self.config = config
        self.rng = rng

    def effective_bandit_chance(self, base_chance: float, guards: int) -> float:
        mitigated = base_chance - max(0, guards) * self.config.mitigation_per_guard
        return max(self.config.minimum_bandit_chance, mitigated)

    def repel_chance(self, guards: int) -> float:
        return min(self.config.max_repel_chance, max(0, guards) * self.config.repel_chance_per_guard)

    def roll_day(self, caravan: Caravan, route: Optional[TradeRoute], day: int) -> List[RiskOutcome]:
        outcomes = []

        negative = self._roll_negative(caravan, route, day)
        if negative is not None:
            outcomes.append(negative)

        # Independent of the hazard roll
        positive_chance = self.config.positive_event_chance
        if self.rng.random() < positive_chance:
            low, high = self.config.opportunity_gold
            outcomes.append(RiskOutcome(
                kind=POSITIVE,
                day=day,
                chance=positive_chance,
                gold_gained=self.rng.randint(low, high),
            ))

        return outcomes

    def _severity_weights(self, danger_level: str) -> Optional[List[float]]:
        table = self.config.severity_weights.get(danger_level)
        if not isinstance(table, dict):
            return None
        weights = [table.get(tier, 0) for tier in SEVERITY_TIERS]
        if any(not isinstance(w, (int, float)) or w < 0 for w in weights) or sum(weights) <= 0:
            return None
        return weights

    def _roll_negative(self, caravan: Caravan, route: Optional[TradeRoute], day: int) -> Optional[RiskOutcome]:
        if route is None:
            logger.warning("Caravan %s has no route on day %d; skipping risk roll.", caravan.id, day)
            return None

        try:
            base_chance = route.bandit_chance
        except KeyError:
            logger.warning("Route %s has unknown danger level '%s'; no event.", route.id, route.danger_level)
            return None

        weights = self._severity_weights(route.danger_level)
        if weights is None:
            logger.warning("No valid severity weights for danger level '%s'; no event.", route.danger_level)
            return None

        chance = self.effective_bandit_chance(base_chance, caravan.guards)
        if not 0.0 <= chance <= 1.0:
            logger.warning("Bandit chance %.3f out of range on route %s; no event.", chance, route.id)
            return None

        draw = self.rng.random()
        if draw >= chance:
            if draw < chance + self.config.spoilage_chance and caravan.total_goods > 0:
                low, high = self.config.spoilage_goods_loss
                return RiskOutcome(
                    kind=SPOILAGE, day=day, chance=self.config.spoilage_chance,
                    fraction=self.rng.uniform(low, high),
                )
            return None

        tier = self.rng.choices(SEVERITY_TIERS, weights=weights)[0]

        if tier in BANDIT_TIERS and caravan.guards > 0 and self.rng.random() < self.repel_chance(caravan.guards):
            return RiskOutcome(
                kind=REPELLED, day=day, chance=chance,
                guards_lost=self.rng.randint(0, caravan.guards - 1),
            )

        if tier == "minor":
            low, high = self.config.minor_gold_loss
            return RiskOutcome(kind=tier, day=day, chance=chance, fraction=self.rng.uniform(low, high))
        if tier == "moderate":
            low, high = self.config.moderate_goods_loss
            fraction = self.rng.uniform(low, high)
            guards_lost = self.rng.randint(1, max(1, caravan.guards // 2)) if caravan.guards > 0 else 0
            return RiskOutcome(kind=tier, day=day, chance=chance, fraction=fraction, guards_lost=guards_lost)
        if tier == "severe":
            return RiskOutcome(
                kind=tier, day=day, chance=chance,
                days_delayed=self.rng.randint(1, max(1, self.config.max_delay_days)),
            )
        return RiskOutcome(kind=tier, day=day, chance=chance)
