from dataclasses import dataclass
from typing import Dict, List

from ..core.errors import NotFoundError
from ..core.ids import ItemId


@dataclass
class Item:
    id: ItemId
    name: str
    base_price: int
    is_tradeable: bool = True


class ItemRegistry:
    def __init__(self):
        self._items: Dict[ItemId, Item] = {}

    def register(self, item: Item):
        self._items[item.id] = item

    def get(self, item_id: ItemId) -> Item:
        if item_id not in self._items:
            raise NotFoundError(f"Item with ID '{item_id}' not found.")
        return self._items[item_id]

    def __contains__(self, item_id: ItemId) -> bool:
        return item_id in self._items

    def all_items(self) -> List[Item]:
        return list(self._items.values())
