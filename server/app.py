import sys
import logging
import threading
import time
from collections import deque
from pathlib import Path
from typing import Any, Dict, Optional

# Add the project root to the Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from flask import Flask, jsonify, request

from src.tradesim.core.config import load_balance_config
from src.tradesim.core.errors import (
    AuthorizationError,
    NotFoundError,
    ResourceError,
    StateError,
    TradeSimError,
    ValidationError,
)
from src.tradesim.core.ids import ActorId, CaravanId, ItemId, RouteId, TariffId
from src.tradesim.core.sim import Simulation, build_simulation, sweep
from src.tradesim.reports.gazette import generate_gazette
from src.tradesim.world.load import load_world
from src.tradesim.world.model import LocationRef

logger = logging.getLogger(__name__)

app = Flask(__name__)

DATA_PATH = PROJECT_ROOT / "data"

sim_controller = None


class SchedulerController:
    """
    The external periodic driver: sweeps every in-transit caravan on an
    interval while playing. The engines themselves own no threads.
    """

    def __init__(self, simulation: Simulation, sweep_interval_s: float = 5.0, max_reports: int = 50):
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread = None
        self._running = False
        self._sweep_interval_s = sweep_interval_s
        self._reports = deque(maxlen=max_reports)
        self._sim = simulation
        self._sweep_count = 0

    @property
    def sim(self) -> Simulation:
        return self._sim

    def is_running(self) -> bool:
        with self._lock:
            return self._running

    def sweep_count(self) -> int:
        with self._lock:
            return self._sweep_count

    def latest_gazettes(self, limit: int = 5):
        with self._lock:
            return list(self._reports)[-limit:]

    def play(self):
        with self._lock:
            self._running = True
            if self._thread is None or not self._thread.is_alive():
                self._thread = threading.Thread(target=self._run_loop, daemon=True)
                self._thread.start()

    def pause(self):
        with self._lock:
            self._running = False

    def sweep_once(self):
        with self._lock:
            report = sweep(self._sim)
            self._sweep_count += 1
            self._reports.append(generate_gazette(report.log, report.at))
            return report

    def stop(self):
        self._stop_event.set()

    def _run_loop(self):
        while not self._stop_event.is_set():
            if self.is_running():
                try:
                    self.sweep_once()
                except Exception:
                    logger.exception("Scheduler sweep failed; pausing.")
                    self.pause()
            time.sleep(self._sweep_interval_s)


def _initialize_simulation():
    global sim_controller
    config = load_balance_config(DATA_PATH / "balance.yaml")
    state = load_world(DATA_PATH / "world.yaml", config=config)
    sim_controller = SchedulerController(build_simulation(state))


@app.before_request
def before_first_request():
    if sim_controller is None:
        _initialize_simulation()


@app.errorhandler(TradeSimError)
def handle_domain_error(error: TradeSimError):
    if isinstance(error, ValidationError):
        status = 400
    elif isinstance(error, AuthorizationError):
        status = 403
    elif isinstance(error, NotFoundError):
        status = 404
    elif isinstance(error, (StateError, ResourceError)):
        status = 409
    else:
        status = 400
    return jsonify({"error": error.message, "kind": type(error).__name__}), status


# --- Request helpers ---

def _sim() -> Simulation:
    return sim_controller.sim


def _actor_id() -> ActorId:
    actor_id = request.headers.get("X-Actor-Id")
    if not actor_id:
        raise AuthorizationError("Missing X-Actor-Id header.")
    _sim().state.actor(ActorId(actor_id))
    return ActorId(actor_id)


def _payload() -> Dict[str, Any]:
    return request.get_json(silent=True) or {}


def _required(data: Dict[str, Any], key: str) -> Any:
    if data.get(key) is None:
        raise ValidationError(f"Missing field '{key}'.")
    return data[key]


def _location(value: Any) -> LocationRef:
    try:
        return LocationRef.parse(str(value))
    except ValueError:
        raise ValidationError(f"Invalid location '{value}'; expected 'kind:id'.")


def _optional_int(data: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = data.get(key, default)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Field '{key}' must be a whole number.")


def _caravan_json(caravan_id: CaravanId) -> Dict[str, Any]:
    return _sim().caravans.detail(_actor_id(), caravan_id)


# --- Travel ---

@app.route('/travel/status')
def travel_status():
    actor_id = _actor_id()
    actor = _sim().state.actor(actor_id)
    return jsonify({
        "location": str(actor.location),
        "energy": actor.energy,
        "travel": _sim().travel.status(actor_id),
    })


@app.route('/travel/destinations')
def travel_destinations():
    return jsonify({"destinations": _sim().travel.reachable_destinations(_actor_id())})


@app.route('/travel/start', methods=['POST'])
def travel_start():
    actor_id = _actor_id()
    data = _payload()
    _sim().travel.start(actor_id, _location(_required(data, "destination")))
    return jsonify({"travel": _sim().travel.status(actor_id)})


@app.route('/travel/cancel', methods=['POST'])
def travel_cancel():
    actor = _sim().travel.cancel(_actor_id())
    return jsonify({"status": "cancelled", "location": str(actor.location)})


@app.route('/travel/arrive', methods=['POST'])
def travel_arrive():
    actor = _sim().travel.arrive(_actor_id())
    return jsonify({"status": "arrived", "location": str(actor.location)})


@app.route('/travel/skip', methods=['POST'])
def travel_skip():
    actor = _sim().travel.dev_skip(_actor_id())
    return jsonify({"status": "arrived", "location": str(actor.location)})


# --- Caravans ---

@app.route('/caravans')
def caravans_index():
    actor_id = _actor_id()
    state = _sim().state
    listing = _sim().caravans.list_for_owner(actor_id)
    listing["gold"] = state.gold_of(actor_id)
    listing["creation_cost"] = state.config.caravan.base_cost
    listing["guard_cost"] = state.config.caravan.guard_cost
    listing["inventory"] = state.inventory.holdings(actor_id)
    return jsonify(listing)


@app.route('/caravans/<caravan_id>')
def caravans_show(caravan_id):
    return jsonify(_caravan_json(CaravanId(caravan_id)))


@app.route('/caravans', methods=['POST'])
def caravans_create():
    actor_id = _actor_id()
    data = _payload()
    location = data.get("location")
    location_ref = _location(location) if location else _sim().state.actor(actor_id).location
    caravan = _sim().caravans.create(
        actor_id,
        _required(data, "name"),
        _optional_int(data, "guards", 0),
        location_ref,
    )
    return jsonify(_caravan_json(caravan.id)), 201


@app.route('/caravans/<caravan_id>/load', methods=['POST'])
def caravans_load(caravan_id):
    data = _payload()
    _sim().caravans.load_goods(
        _actor_id(), CaravanId(caravan_id), ItemId(_required(data, "item_id")), _optional_int(data, "quantity"),
    )
    return jsonify(_caravan_json(CaravanId(caravan_id)))


@app.route('/caravans/<caravan_id>/remove', methods=['POST'])
def caravans_remove(caravan_id):
    data = _payload()
    _sim().caravans.remove_goods(
        _actor_id(), CaravanId(caravan_id), ItemId(_required(data, "item_id")), _optional_int(data, "quantity"),
    )
    return jsonify(_caravan_json(CaravanId(caravan_id)))


@app.route('/caravans/<caravan_id>/gold', methods=['POST'])
def caravans_gold(caravan_id):
    data = _payload()
    _sim().caravans.load_gold(_actor_id(), CaravanId(caravan_id), _optional_int(data, "amount"))
    return jsonify(_caravan_json(CaravanId(caravan_id)))


@app.route('/caravans/<caravan_id>/dispatch', methods=['POST'])
def caravans_dispatch(caravan_id):
    data = _payload()
    _sim().caravans.dispatch(_actor_id(), CaravanId(caravan_id), RouteId(_required(data, "route_id")))
    return jsonify(_caravan_json(CaravanId(caravan_id)))


@app.route('/caravans/<caravan_id>/unload', methods=['POST'])
def caravans_unload(caravan_id):
    data = _payload()
    sale = _sim().caravans.unload_goods(
        _actor_id(),
        CaravanId(caravan_id),
        ItemId(_required(data, "item_id")),
        _optional_int(data, "quantity"),
        _optional_int(data, "sale_price"),
    )
    return jsonify({"sale": sale, "caravan": _caravan_json(CaravanId(caravan_id))})


@app.route('/caravans/<caravan_id>/disband', methods=['POST'])
def caravans_disband(caravan_id):
    refund = _sim().caravans.disband(_actor_id(), CaravanId(caravan_id))
    return jsonify({"status": "disbanded", "refund": refund})


# --- Trade routes ---

@app.route('/routes')
def routes_index():
    actor_id = _actor_id()
    return jsonify({
        "routes": _sim().routes.list_routes(),
        "can_create": _sim().state.authority.is_noble(actor_id),
    })


@app.route('/routes', methods=['POST'])
def routes_create():
    actor_id = _actor_id()
    data = _payload()
    route = _sim().routes.create_route(
        actor_id,
        _required(data, "name"),
        _location(_required(data, "origin")),
        _location(_required(data, "destination")),
        _required(data, "danger_level"),
        notes=data.get("notes"),
    )
    return jsonify({"id": route.id, "base_travel_days": route.base_travel_days, "distance": route.distance}), 201


# --- Tariffs ---

@app.route('/tariffs')
def tariffs_index():
    actor_id = _actor_id()
    territory = request.args.get("territory")
    if not territory:
        raise ValidationError("Query parameter 'territory' is required.")
    ref = _location(territory)
    engine = _sim().tariffs
    min_rate, max_rate = engine.bounds
    return jsonify({
        "territory": str(ref),
        "can_manage": _sim().state.authority.is_authority(actor_id, ref),
        "tariffs": engine.list_tariffs(ref),
        "routes": engine.routes_through(ref),
        "revenue": engine.revenue_summary(ref),
        "min_rate": min_rate,
        "max_rate": max_rate,
    })


@app.route('/tariffs', methods=['POST'])
def tariffs_create():
    actor_id = _actor_id()
    data = _payload()
    item_id = data.get("item_id")
    tariff = _sim().tariffs.set_tariff(
        actor_id,
        _location(_required(data, "territory")),
        ItemId(item_id) if item_id else None,
        _optional_int(data, "rate"),
    )
    return jsonify({"id": tariff.id, "rate": tariff.rate}), 201


@app.route('/tariffs/<tariff_id>', methods=['POST'])
def tariffs_update(tariff_id):
    data = _payload()
    tariff = _sim().tariffs.update_tariff(
        _actor_id(),
        TariffId(tariff_id),
        rate=_optional_int(data, "rate"),
        is_active=data.get("is_active"),
    )
    return jsonify({"id": tariff.id, "rate": tariff.rate, "is_active": tariff.is_active})


# --- Scheduler ---

@app.route('/sim/state')
def sim_state():
    return jsonify({
        "meta": {
            "running": sim_controller.is_running(),
            "sweeps": sim_controller.sweep_count(),
            "in_transit": len(_sim().caravans.in_transit()),
        },
        "gazettes": sim_controller.latest_gazettes(),
    })


@app.route('/sim/sweep', methods=['POST'])
def sim_sweep():
    report = sim_controller.sweep_once()
    return jsonify({
        "status": "swept",
        "processed": report.processed,
        "failed": list(report.failed),
        "sweeps": sim_controller.sweep_count(),
    })


@app.route('/sim/spawn', methods=['POST'])
def sim_spawn():
    count = _optional_int(_payload(), "count", 3)
    spawned = _sim().caravans.spawn_npc_caravans(count)
    return jsonify({
        "spawned": [
            {"id": caravan.id, "name": caravan.name, "route_id": caravan.trade_route_id}
            for caravan in spawned
        ],
        "in_transit": len(_sim().caravans.in_transit()),
    }), 201


@app.route('/sim/play', methods=['POST'])
def sim_play():
    sim_controller.play()
    return jsonify({"status": "playing"})


@app.route('/sim/pause', methods=['POST'])
def sim_pause():
    sim_controller.pause()
    return jsonify({"status": "paused"})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True)
