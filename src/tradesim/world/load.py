import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
import yaml

from ..core.config import BalanceConfig
from ..core.ids import ActorId, ItemId, LocationId
from ..core.state import WorldState, utc_now
from ..economy.items import Item
from .model import Actor, Barony, Kingdom, LocationRef, Town, Village

logger = logging.getLogger(__name__)


class WorldSchemaError(Exception):
    """Raised when there is a problem with the world seed data."""
    pass


def _check_unique(records: List[Dict[str, Any]], label: str):
    ids = [r['id'] for r in records]
    if len(ids) != len(set(ids)):
        raise WorldSchemaError(f"Duplicate {label} IDs found.")


def build_world(
    data: Dict[str, Any],
    config: Optional[BalanceConfig] = None,
    clock: Callable = utc_now,
) -> WorldState:
    """Builds a WorldState from already-parsed seed data."""
    kingdoms_data = data.get('kingdoms', [])
    baronies_data = data.get('baronies', [])
    villages_data = data.get('villages', [])
    towns_data = data.get('towns', [])
    items_data = data.get('items', [])
    actors_data = data.get('actors', [])

    for records, label in (
        (kingdoms_data, "kingdom"), (baronies_data, "barony"), (villages_data, "village"),
        (towns_data, "town"), (items_data, "item"), (actors_data, "actor"),
    ):
        _check_unique(records, label)

    state = WorldState(seed=data.get('seed', 0), config=config or BalanceConfig(), clock=clock)
    directory = state.directory
    actor_ids = {a['id'] for a in actors_data}

    def ruler(record: Dict[str, Any], label: str) -> Optional[ActorId]:
        ruler_id = record.get('ruler_id')
        if ruler_id is None:
            return None
        if actor_ids and ruler_id not in actor_ids:
            raise WorldSchemaError(f"{label} '{record['id']}' is ruled by unknown actor '{ruler_id}'.")
        return ActorId(ruler_id)

    for k_data in kingdoms_data:
        directory.add(Kingdom(
            id=LocationId(k_data['id']),
            name=k_data['name'],
            ruler_id=ruler(k_data, "Kingdom"),
            x=float(k_data.get('x', 0.0)),
            y=float(k_data.get('y', 0.0)),
        ))

    for b_data in baronies_data:
        if b_data['kingdom_id'] not in directory.kingdoms:
            raise WorldSchemaError(f"Barony '{b_data['id']}' references unknown kingdom '{b_data['kingdom_id']}'.")
        directory.add(Barony(
            id=LocationId(b_data['id']),
            name=b_data['name'],
            kingdom_id=LocationId(b_data['kingdom_id']),
            ruler_id=ruler(b_data, "Barony"),
            x=float(b_data.get('x', 0.0)),
            y=float(b_data.get('y', 0.0)),
        ))

    for records, cls in ((villages_data, Village), (towns_data, Town)):
        for s_data in records:
            if s_data['barony_id'] not in directory.baronies:
                raise WorldSchemaError(f"{cls.__name__} '{s_data['id']}' references unknown barony '{s_data['barony_id']}'.")
            directory.add(cls(
                id=LocationId(s_data['id']),
                name=s_data['name'],
                barony_id=LocationId(s_data['barony_id']),
                x=float(s_data.get('x', 0.0)),
                y=float(s_data.get('y', 0.0)),
            ))

    for i_data in items_data:
        state.items.register(Item(
            id=ItemId(i_data['id']),
            name=i_data['name'],
            base_price=int(i_data['base_price']),
            is_tradeable=i_data.get('is_tradeable', True),
        ))

    for a_data in actors_data:
        try:
            location = LocationRef.parse(a_data['location'])
        except ValueError as e:
            raise WorldSchemaError(f"Actor '{a_data['id']}' has an invalid location: {e}")
        if directory.find(location) is None:
            raise WorldSchemaError(f"Actor '{a_data['id']}' is at unknown location '{location}'.")
        actor = Actor(
            id=ActorId(a_data['id']),
            name=a_data['name'],
            location=location,
            energy=a_data.get('energy', 100),
            max_energy=a_data.get('max_energy', 100),
        )
        state.actors[actor.id] = actor
        state.treasury.credit(actor.id, int(a_data.get('gold', 0)))
        for item_id, qty in a_data.get('inventory', {}).items():
            if item_id not in state.items:
                raise WorldSchemaError(f"Actor '{actor.id}' holds unknown item '{item_id}'.")
            if qty > 0:
                state.inventory.credit(actor.id, ItemId(item_id), int(qty))

    return state


def load_world(path: Path, config: Optional[BalanceConfig] = None, clock: Callable = utc_now) -> WorldState:
    with open(path, 'r') as f:
        data = yaml.safe_load(f)

    if data is None:
        raise WorldSchemaError(f"World file '{path}' is empty or malformed.")

    state = build_world(data, config=config, clock=clock)
    logger.info(
        "Loaded world from %s: %d locations, %d actors, %d items",
        path, len(state.directory.all_locations()), len(state.actors), len(state.items.all_items()),
    )
    return state
