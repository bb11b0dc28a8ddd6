import json
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from ..core.config import BalanceConfig
from ..core.ids import ActorId, CaravanId, ItemId, LocationId, RouteId, TariffId
from ..core.state import WorldState, utc_now
from ..economy.inventory import Inventory
from ..economy.items import Item
from ..economy.tariffs import Tariff, TariffCollection
from ..economy.treasury import Treasury
from ..events.model import CaravanEvent
from ..logistics.caravan import Caravan, CaravanGoods, CaravanStatus
from ..logistics.routes import TradeRoute
from ..logistics.travel import TravelSession
from ..world.model import Actor, Barony, Kingdom, LocationRef, Town, Village


def _time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def _ref(value: Optional[LocationRef]) -> Optional[str]:
    return str(value) if value else None


def _parse_ref(value: Optional[str]) -> Optional[LocationRef]:
    return LocationRef.parse(value) if value else None


def to_dict(state: WorldState) -> Dict[str, Any]:
    """Converts the WorldState to a dictionary for serialization."""
    directory = state.directory
    locations_data = {
        "kingdoms": [
            {"id": k.id, "name": k.name, "ruler_id": k.ruler_id, "x": k.x, "y": k.y}
            for k in directory.kingdoms.values()
        ],
        "baronies": [
            {"id": b.id, "name": b.name, "kingdom_id": b.kingdom_id, "ruler_id": b.ruler_id, "x": b.x, "y": b.y}
            for b in directory.baronies.values()
        ],
        "villages": [
            {"id": v.id, "name": v.name, "barony_id": v.barony_id, "x": v.x, "y": v.y}
            for v in directory.villages.values()
        ],
        "towns": [
            {"id": t.id, "name": t.name, "barony_id": t.barony_id, "x": t.x, "y": t.y}
            for t in directory.towns.values()
        ],
    }

    items_data = [
        {"id": item.id, "name": item.name, "base_price": item.base_price, "is_tradeable": item.is_tradeable}
        for item in state.items.all_items()
    ]

    actors_data = [
        {
            "id": actor.id,
            "name": actor.name,
            "location": str(actor.location),
            "energy": actor.energy,
            "max_energy": actor.max_energy,
        }
        for actor in state.actors.values()
    ]

    routes_data = [
        {
            "id": route.id,
            "name": route.name,
            "origin": str(route.origin),
            "destination": str(route.destination),
            "distance": route.distance,
            "danger_level": route.danger_level,
            "base_travel_days": route.base_travel_days,
            "created_by": route.created_by,
            "is_active": route.is_active,
            "notes": route.notes,
            "created_at": _time(route.created_at),
        }
        for route in state.routes.values()
    ]

    caravans_data = [
        {
            "id": caravan.id,
            "name": caravan.name,
            "owner_id": caravan.owner_id,
            "current_location": str(caravan.current_location),
            "capacity": caravan.capacity,
            "guards": caravan.guards,
            "gold_carried": caravan.gold_carried,
            "status": caravan.status.value,
            "destination": _ref(caravan.destination),
            "trade_route_id": caravan.trade_route_id,
            "travel_progress": caravan.travel_progress,
            "travel_total": caravan.travel_total,
            "last_processed_day": caravan.last_processed_day,
            "created_at": _time(caravan.created_at),
            "departed_at": _time(caravan.departed_at),
            "arrived_at": _time(caravan.arrived_at),
            "closed_at": _time(caravan.closed_at),
            "is_npc": caravan.is_npc,
            "npc_merchant_name": caravan.npc_merchant_name,
            "goods": [
                {
                    "item_id": line.item_id,
                    "quantity": line.quantity,
                    "purchase_price": line.purchase_price,
                    "origin": _ref(line.origin),
                }
                for line in caravan.goods
            ],
            "events": [event.to_dict() for event in caravan.events],
        }
        for caravan in state.caravans.values()
    ]

    sessions_data = [
        {
            "actor_id": session.actor_id,
            "origin": str(session.origin),
            "destination": str(session.destination),
            "started_at": _time(session.started_at),
            "arrives_at": _time(session.arrives_at),
            "energy_spent": session.energy_spent,
        }
        for session in state.sessions.values()
    ]

    tariffs_data = [
        {
            "id": tariff.id,
            "territory": str(tariff.territory),
            "item_id": tariff.item_id,
            "rate": tariff.rate,
            "set_by": tariff.set_by,
            "is_active": tariff.is_active,
            "total_collected": tariff.total_collected,
            "created_at": _time(tariff.created_at),
            "collections": [
                {"amount": c.amount, "caravan_id": c.caravan_id, "collected_at": _time(c.collected_at)}
                for c in tariff.collections
            ],
        }
        for tariff in state.tariffs.values()
    ]

    return {
        "seed": state.seed,
        "counters": dict(state.counters),
        "locations": locations_data,
        "items": items_data,
        "actors": actors_data,
        "treasury": state.treasury.to_dict(),
        "inventory": state.inventory.to_dict(),
        "routes": routes_data,
        "caravans": caravans_data,
        "sessions": sessions_data,
        "tariffs": tariffs_data,
    }


def from_dict(
    data: Dict[str, Any],
    config: Optional[BalanceConfig] = None,
    clock: Callable[[], datetime] = utc_now,
) -> WorldState:
    """Creates a WorldState from a dictionary."""
    state = WorldState(
        seed=data['seed'],
        config=config or BalanceConfig(),
        counters=dict(data.get('counters', {})),
        clock=clock,
    )

    locations = data.get('locations', {})
    for k_data in locations.get('kingdoms', []):
        state.directory.add(Kingdom(
            id=LocationId(k_data['id']), name=k_data['name'],
            ruler_id=ActorId(k_data['ruler_id']) if k_data.get('ruler_id') else None,
            x=k_data['x'], y=k_data['y'],
        ))
    for b_data in locations.get('baronies', []):
        state.directory.add(Barony(
            id=LocationId(b_data['id']), name=b_data['name'], kingdom_id=LocationId(b_data['kingdom_id']),
            ruler_id=ActorId(b_data['ruler_id']) if b_data.get('ruler_id') else None,
            x=b_data['x'], y=b_data['y'],
        ))
    for key, cls in (('villages', Village), ('towns', Town)):
        for s_data in locations.get(key, []):
            state.directory.add(cls(
                id=LocationId(s_data['id']), name=s_data['name'], barony_id=LocationId(s_data['barony_id']),
                x=s_data['x'], y=s_data['y'],
            ))

    for i_data in data.get('items', []):
        state.items.register(Item(
            id=ItemId(i_data['id']), name=i_data['name'],
            base_price=i_data['base_price'], is_tradeable=i_data.get('is_tradeable', True),
        ))

    for a_data in data.get('actors', []):
        actor = Actor(
            id=ActorId(a_data['id']),
            name=a_data['name'],
            location=LocationRef.parse(a_data['location']),
            energy=a_data.get('energy', 100),
            max_energy=a_data.get('max_energy', 100),
        )
        state.actors[actor.id] = actor

    state.treasury = Treasury.from_dict(data.get('treasury', {}))
    state.inventory = Inventory.from_dict(data.get('inventory', {}))

    for r_data in data.get('routes', []):
        route = TradeRoute(
            id=RouteId(r_data['id']),
            name=r_data['name'],
            origin=LocationRef.parse(r_data['origin']),
            destination=LocationRef.parse(r_data['destination']),
            distance=r_data['distance'],
            danger_level=r_data['danger_level'],
            base_travel_days=r_data['base_travel_days'],
            created_by=ActorId(r_data['created_by']),
            is_active=r_data.get('is_active', True),
            notes=r_data.get('notes'),
            created_at=_parse_time(r_data.get('created_at')),
        )
        state.routes[route.id] = route

    for c_data in data.get('caravans', []):
        caravan = Caravan(
            id=CaravanId(c_data['id']),
            name=c_data['name'],
            owner_id=ActorId(c_data['owner_id']) if c_data.get('owner_id') else None,
            current_location=LocationRef.parse(c_data['current_location']),
            capacity=c_data['capacity'],
            guards=c_data.get('guards', 0),
            gold_carried=c_data.get('gold_carried', 0),
            status=CaravanStatus(c_data['status']),
            destination=_parse_ref(c_data.get('destination')),
            trade_route_id=RouteId(c_data['trade_route_id']) if c_data.get('trade_route_id') else None,
            travel_progress=c_data.get('travel_progress', 0),
            travel_total=c_data.get('travel_total', 0),
            last_processed_day=c_data.get('last_processed_day', 0),
            created_at=_parse_time(c_data.get('created_at')),
            departed_at=_parse_time(c_data.get('departed_at')),
            arrived_at=_parse_time(c_data.get('arrived_at')),
            closed_at=_parse_time(c_data.get('closed_at')),
            is_npc=c_data.get('is_npc', False),
            npc_merchant_name=c_data.get('npc_merchant_name'),
            goods=[
                CaravanGoods(
                    item_id=ItemId(g_data['item_id']),
                    quantity=g_data['quantity'],
                    purchase_price=g_data['purchase_price'],
                    origin=_parse_ref(g_data.get('origin')),
                )
                for g_data in c_data.get('goods', [])
            ],
            events=[CaravanEvent.from_dict(e_data) for e_data in c_data.get('events', [])],
        )
        state.caravans[caravan.id] = caravan

    for s_data in data.get('sessions', []):
        session = TravelSession(
            actor_id=ActorId(s_data['actor_id']),
            origin=LocationRef.parse(s_data['origin']),
            destination=LocationRef.parse(s_data['destination']),
            started_at=_parse_time(s_data['started_at']),
            arrives_at=_parse_time(s_data['arrives_at']),
            energy_spent=s_data.get('energy_spent', 0),
        )
        state.sessions[session.actor_id] = session

    for t_data in data.get('tariffs', []):
        tariff = Tariff(
            id=TariffId(t_data['id']),
            territory=LocationRef.parse(t_data['territory']),
            item_id=ItemId(t_data['item_id']) if t_data.get('item_id') else None,
            rate=t_data['rate'],
            set_by=ActorId(t_data['set_by']),
            is_active=t_data.get('is_active', True),
            total_collected=t_data.get('total_collected', 0),
            created_at=_parse_time(t_data.get('created_at')),
            collections=[
                TariffCollection(
                    amount=c['amount'],
                    caravan_id=CaravanId(c['caravan_id']) if c.get('caravan_id') else None,
                    collected_at=_parse_time(c['collected_at']),
                )
                for c in t_data.get('collections', [])
            ],
        )
        state.tariffs[tariff.id] = tariff

    return state


def save_to_json(state: WorldState, path: str):
    """Saves the world state to a JSON file."""
    with open(path, 'w') as f:
        json.dump(to_dict(state), f, indent=2)


def load_from_json(path: str, config: Optional[BalanceConfig] = None) -> WorldState:
    """Loads the world state from a JSON file."""
    with open(path, 'r') as f:
        data = json.load(f)
    return from_dict(data, config=config)
