from typing import Dict
from collections import defaultdict

from ..core.errors import InsufficientInventoryError, ValidationError
from ..core.ids import ActorId, ItemId


class Inventory:
    """Per-owner item ledger. Quantities are whole units."""

    def __init__(self):
        self._quantities: Dict[ActorId, Dict[ItemId, int]] = defaultdict(dict)

    def get(self, owner_id: ActorId, item_id: ItemId) -> int:
        """Returns the quantity an owner holds, or zero."""
        return self._quantities.get(owner_id, {}).get(item_id, 0)

    def credit(self, owner_id: ActorId, item_id: ItemId, quantity: int):
        if quantity <= 0:
            raise ValidationError("Quantity to credit must be positive.")
        held = self._quantities[owner_id]
        held[item_id] = held.get(item_id, 0) + quantity

    def debit(self, owner_id: ActorId, item_id: ItemId, quantity: int):
        if quantity <= 0:
            raise ValidationError("Quantity to debit must be positive.")
        current_qty = self.get(owner_id, item_id)
        if current_qty < quantity:
            raise InsufficientInventoryError(
                f"Not enough {item_id}: have {current_qty}, need {quantity}."
            )
        remaining = current_qty - quantity
        if remaining == 0: # Clean up zero entries
            del self._quantities[owner_id][item_id]
        else:
            self._quantities[owner_id][item_id] = remaining

    def holdings(self, owner_id: ActorId) -> Dict[ItemId, int]:
        return dict(self._quantities.get(owner_id, {}))

    def to_dict(self) -> Dict[ActorId, Dict[ItemId, int]]:
        return {owner: dict(items) for owner, items in self._quantities.items() if items}

    @classmethod
    def from_dict(cls, data: Dict[str, Dict[str, int]]) -> "Inventory":
        inventory = cls()
        for owner_id, items in data.items():
            for item_id, qty in items.items():
                if qty > 0:
                    inventory.credit(ActorId(owner_id), ItemId(item_id), int(qty))
        return inventory
