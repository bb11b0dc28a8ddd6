"""
Game-balance constants.

Everything tunable (costs, guard mitigation, event weighting, tariff bounds,
travel pacing) lives here and is loaded from a single YAML file so that no
component hardcodes its own numbers.
"""
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Dict, Tuple, Any
import logging
import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

SEVERITY_TIERS = ("minor", "moderate", "severe", "catastrophic")


def _default_severity_weights() -> Dict[str, Dict[str, float]]:
    return {
        "safe": {"minor": 70, "moderate": 25, "severe": 5, "catastrophic": 0},
        "moderate": {"minor": 50, "moderate": 35, "severe": 13, "catastrophic": 2},
        "dangerous": {"minor": 35, "moderate": 40, "severe": 20, "catastrophic": 5},
        "perilous": {"minor": 20, "moderate": 40, "severe": 25, "catastrophic": 15},
    }


@dataclass
class CaravanConfig:
    base_cost: int = 1000
    guard_cost: int = 50
    base_capacity: int = 100
    max_guards: int = 20
    max_name_length: int = 100
    day_length_seconds: int = 86400
    require_cargo_to_dispatch: bool = True
    completed_history_limit: int = 10
    npc_capacity: Tuple[int, int] = (50, 150)
    npc_guards: Tuple[int, int] = (1, 5)
    npc_cargo_share: Tuple[float, float] = (0.5, 1.0) # share of capacity an NPC merchant fills


@dataclass
class RiskConfig:
    minimum_bandit_chance: float = 0.01
    mitigation_per_guard: float = 0.02
    positive_event_chance: float = 0.05
    minor_gold_loss: Tuple[float, float] = (0.2, 0.5)
    moderate_goods_loss: Tuple[float, float] = (0.1, 0.3)
    max_delay_days: int = 3
    opportunity_gold: Tuple[int, int] = (10, 50)
    spoilage_chance: float = 0.03
    spoilage_goods_loss: Tuple[float, float] = (0.05, 0.15)
    repel_chance_per_guard: float = 0.1
    max_repel_chance: float = 0.9
    severity_weights: Dict[str, Dict[str, float]] = field(default_factory=_default_severity_weights)


@dataclass
class TariffConfig:
    min_rate: int = 0
    max_rate: int = 50


@dataclass
class TravelConfig:
    energy_cost: int = 5
    distance_divisor: float = 10.0 # distance units per minute of travel
    min_travel_seconds: int = 60
    max_travel_distance: float = 100.0
    route_speed: float = 50.0 # distance units a caravan covers per day


@dataclass
class BalanceConfig:
    caravan: CaravanConfig = field(default_factory=CaravanConfig)
    risk: RiskConfig = field(default_factory=RiskConfig)
    tariff: TariffConfig = field(default_factory=TariffConfig)
    travel: TravelConfig = field(default_factory=TravelConfig)
    environment: str = "production"
    allow_dev_skip: bool = False

    @property
    def dev_skip_enabled(self) -> bool:
        return self.allow_dev_skip and self.environment != "production"


def _build_section(cls, raw: Any, section: str):
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ConfigError(f"Section '{section}' must be a mapping.")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ConfigError(f"Unknown keys in section '{section}': {sorted(unknown)}")
    values = {}
    for key, value in raw.items():
        # YAML has no tuples; ranges arrive as two-element lists
        if isinstance(value, list):
            if len(value) != 2:
                raise ConfigError(f"'{section}.{key}' must be a [low, high] pair.")
            value = tuple(value)
        values[key] = value
    return cls(**values)


def validate_config(config: BalanceConfig):
    caravan = config.caravan
    if caravan.base_cost < 0 or caravan.guard_cost < 0:
        raise ConfigError("Caravan costs must be non-negative.")
    if caravan.base_capacity <= 0:
        raise ConfigError("Caravan base_capacity must be positive.")
    if caravan.day_length_seconds <= 0:
        raise ConfigError("day_length_seconds must be positive.")
    if not 1 <= caravan.npc_capacity[0] <= caravan.npc_capacity[1]:
        raise ConfigError("npc_capacity must be a positive [low, high] range.")
    if not 0 <= caravan.npc_guards[0] <= caravan.npc_guards[1]:
        raise ConfigError("npc_guards must be a non-negative [low, high] range.")

    risk = config.risk
    if not 0.0 <= risk.minimum_bandit_chance <= 1.0:
        raise ConfigError("minimum_bandit_chance must lie in [0, 1].")
    if risk.mitigation_per_guard < 0:
        raise ConfigError("mitigation_per_guard must be non-negative.")
    if not 0.0 <= risk.positive_event_chance <= 1.0:
        raise ConfigError("positive_event_chance must lie in [0, 1].")
    if not 0.0 <= risk.spoilage_chance <= 1.0:
        raise ConfigError("spoilage_chance must lie in [0, 1].")
    if risk.repel_chance_per_guard < 0 or not 0.0 <= risk.max_repel_chance <= 1.0:
        raise ConfigError("Guard repel chances must lie in [0, 1].")

    tariff = config.tariff
    if tariff.min_rate < 0 or tariff.max_rate < tariff.min_rate:
        raise ConfigError(f"Invalid tariff bounds [{tariff.min_rate}, {tariff.max_rate}].")
    if tariff.max_rate > 100:
        raise ConfigError("Tariff max_rate cannot exceed 100%.")

    travel = config.travel
    if travel.distance_divisor <= 0 or travel.route_speed <= 0:
        raise ConfigError("Travel divisors must be positive.")


def load_balance_config(path: Path) -> BalanceConfig:
    with open(path, 'r') as f:
        data = yaml.safe_load(f)

    if data is None:
        raise ConfigError(f"YAML file '{path}' is empty or malformed.")

    config = BalanceConfig(
        caravan=_build_section(CaravanConfig, data.get('caravan'), 'caravan'),
        risk=_build_section(RiskConfig, data.get('risk'), 'risk'),
        tariff=_build_section(TariffConfig, data.get('tariff'), 'tariff'),
        travel=_build_section(TravelConfig, data.get('travel'), 'travel'),
        environment=data.get('environment', 'production'),
        allow_dev_skip=data.get('allow_dev_skip', False),
    )
    validate_config(config)
    logger.info("Loaded balance config from %s (environment=%s)", path, config.environment)
    return config
