from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any

from .ids import ActorId, CaravanId


@dataclass
class AuditEntry:
    type: str
    at: datetime
    actor_id: Optional[ActorId] = None
    caravan_id: Optional[CaravanId] = None
    delta: int = 0
    reason: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class AuditLog:
    def __init__(self):
        self.entries: List[AuditEntry] = []

    def add_entry(
        self,
        type: str,
        at: datetime,
        actor_id: Optional[ActorId] = None,
        caravan_id: Optional[CaravanId] = None,
        delta: int = 0,
        reason: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        entry = AuditEntry(
            type=type,
            at=at,
            actor_id=actor_id,
            caravan_id=caravan_id,
            delta=delta,
            reason=reason,
            details=details or {},
        )
        self.entries.append(entry)
        return entry

    def extend(self, other: "AuditLog"):
        self.entries.extend(other.entries)

    def of_type(self, prefix: str) -> List[AuditEntry]:
        return [entry for entry in self.entries if entry.type.startswith(prefix)]
