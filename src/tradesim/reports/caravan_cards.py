from __future__ import annotations
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ..core.state import WorldState
    from ..logistics.caravan import Caravan


def generate_caravan_card(caravan: "Caravan", state: "WorldState", max_events: int = 10) -> str:
    """
    Summarizes one caravan: status, cargo ledger and the latest journal entries.
    """
    directory = state.directory
    report = f"--- Caravan Report: {caravan.name} ({caravan.id}) ---\n"
    if caravan.is_npc:
        report += f"Owner: {caravan.npc_merchant_name} (NPC merchant)\n"
    else:
        report += f"Owner: {caravan.owner_id}\n"
    report += f"Status: {caravan.status.value}\n"
    report += f"Location: {directory.name_of(caravan.current_location)}\n"
    if caravan.destination:
        report += (
            f"Destination: {directory.name_of(caravan.destination)} "
            f"(day {caravan.travel_progress}/{caravan.travel_total}, {caravan.travel_progress_percent}%)\n"
        )
    report += f"Guards: {caravan.guards}  Gold: {caravan.gold_carried}\n"
    report += f"Cargo: {caravan.total_goods}/{caravan.capacity} (worth {caravan.goods_value} gold at cost)\n"

    if caravan.goods:
        report += "\n--- Cargo Ledger ---\n"
        for line in caravan.goods:
            name = state.items.get(line.item_id).name if line.item_id in state.items else line.item_id
            report += f"- {name}: {line.quantity} units @ {line.purchase_price} gold\n"

    if caravan.events:
        report += "\n--- Journal ---\n"
        for event in list(reversed(caravan.events))[:max_events]:
            report += f"Day {event.day} [{event.classification.value}] {event.description}\n"

    report += "--- End Report ---\n"
    return report
