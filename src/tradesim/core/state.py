import copy
import logging
import random
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from .config import BalanceConfig
from .errors import NotFoundError
from .ids import ActorId, CaravanId, ItemId, RouteId, TariffId
from .log import AuditLog
from .rng import get_seeded_rng
from ..economy.inventory import Inventory
from ..economy.items import ItemRegistry
from ..economy.tariffs import Tariff
from ..economy.treasury import Treasury
from ..logistics.caravan import Caravan
from ..logistics.routes import TradeRoute
from ..logistics.travel import TravelSession
from ..world.authority import Authority
from ..world.directory import LocationDirectory
from ..world.model import Actor

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Transaction:
    """
    Undo journal for one mutating operation.

    Every collaborator mutation made through the helpers below registers its
    compensation; `snapshot` saves an object's fields so they can be restored
    in place. Audit entries are buffered and only published on commit.
    """

    def __init__(self, state: "WorldState", now: datetime):
        self.state = state
        self.now = now
        self.log = AuditLog()
        self._undo: List[Tuple[Callable[..., Any], tuple]] = []
        self._snapshotted: set = set()

    def on_rollback(self, fn: Callable[..., Any], *args):
        self._undo.append((fn, args))

    def snapshot(self, obj: Any):
        if id(obj) in self._snapshotted:
            return
        self._snapshotted.add(id(obj))
        saved = copy.deepcopy(vars(obj))
        self.on_rollback(vars(obj).update, saved)

    def debit_gold(self, account_id: str, amount: int):
        self.state.treasury.debit(account_id, amount)
        self.on_rollback(self.state.treasury.credit, account_id, amount)

    def credit_gold(self, account_id: str, amount: int):
        self.state.treasury.credit(account_id, amount)
        self.on_rollback(self.state.treasury.debit, account_id, amount)

    def debit_items(self, owner_id: ActorId, item_id: ItemId, quantity: int):
        self.state.inventory.debit(owner_id, item_id, quantity)
        self.on_rollback(self.state.inventory.credit, owner_id, item_id, quantity)

    def credit_items(self, owner_id: ActorId, item_id: ItemId, quantity: int):
        self.state.inventory.credit(owner_id, item_id, quantity)
        self.on_rollback(self.state.inventory.debit, owner_id, item_id, quantity)

    def put(self, table: Dict, key: Any, value: Any):
        """Inserts into one of the state tables, restoring the previous entry on rollback."""
        if key in table:
            self.on_rollback(table.__setitem__, key, table[key])
        else:
            self.on_rollback(table.pop, key, None)
        table[key] = value

    def remove(self, table: Dict, key: Any):
        if key in table:
            self.on_rollback(table.__setitem__, key, table[key])
            del table[key]

    def rollback(self):
        while self._undo:
            fn, args = self._undo.pop()
            fn(*args)


@dataclass
class WorldState:
    seed: int = 0
    config: BalanceConfig = field(default_factory=BalanceConfig)
    rng: random.Random = field(init=False)
    directory: LocationDirectory = field(default_factory=LocationDirectory)
    items: ItemRegistry = field(default_factory=ItemRegistry)
    actors: Dict[ActorId, Actor] = field(default_factory=dict)
    inventory: Inventory = field(default_factory=Inventory)
    treasury: Treasury = field(default_factory=Treasury)
    routes: Dict[RouteId, TradeRoute] = field(default_factory=dict) # insertion ordered
    caravans: Dict[CaravanId, Caravan] = field(default_factory=dict)
    sessions: Dict[ActorId, TravelSession] = field(default_factory=dict) # one slot per actor
    tariffs: Dict[TariffId, Tariff] = field(default_factory=dict)
    audit: AuditLog = field(default_factory=AuditLog)
    counters: Dict[str, int] = field(default_factory=dict)
    clock: Callable[[], datetime] = field(default=utc_now, repr=False)

    authority: Authority = field(init=False, repr=False)
    _locks: Dict[str, Any] = field(default_factory=dict, init=False, repr=False)
    _locks_guard: Any = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self):
        self.rng = get_seeded_rng(self.seed)
        self.authority = Authority(self.directory)

    def now(self) -> datetime:
        return self.clock()

    def next_id(self, kind: str) -> str:
        with self._locks_guard:
            self.counters[kind] = self.counters.get(kind, 0) + 1
            return f"{kind}-{self.counters[kind]}"

    # --- Lookups ---

    def actor(self, actor_id: ActorId) -> Actor:
        if actor_id not in self.actors:
            raise NotFoundError(f"Actor '{actor_id}' not found.")
        return self.actors[actor_id]

    def caravan(self, caravan_id: CaravanId) -> Caravan:
        if caravan_id not in self.caravans:
            raise NotFoundError(f"Caravan '{caravan_id}' not found.")
        return self.caravans[caravan_id]

    def route(self, route_id: RouteId) -> TradeRoute:
        if route_id not in self.routes:
            raise NotFoundError(f"Trade route '{route_id}' not found.")
        return self.routes[route_id]

    def tariff(self, tariff_id: TariffId) -> Tariff:
        if tariff_id not in self.tariffs:
            raise NotFoundError(f"Tariff '{tariff_id}' not found.")
        return self.tariffs[tariff_id]

    def gold_of(self, actor_id: ActorId) -> int:
        return self.treasury.balance(actor_id)

    # --- Serialization of mutations ---

    def lock_for(self, key: str):
        with self._locks_guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def transaction(self, *lock_keys: str, now: Optional[datetime] = None) -> Iterator[Transaction]:
        """
        Runs a mutating operation as one unit.

        The named locks are taken in sorted order for the duration. If the body
        raises, every registered compensation runs in reverse and the error
        propagates; otherwise buffered audit entries are published.
        """
        locks = [self.lock_for(key) for key in sorted(set(lock_keys))]
        for lock in locks:
            lock.acquire()
        try:
            txn = Transaction(self, now or self.now())
            try:
                yield txn
            except Exception:
                txn.rollback()
                logger.debug("Rolled back transaction on %s", ", ".join(sorted(set(lock_keys))) or "state")
                raise
            self.audit.extend(txn.log)
        finally:
            for lock in reversed(locks):
                lock.release()
