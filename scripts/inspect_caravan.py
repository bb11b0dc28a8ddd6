import argparse
import json
import sys
from pathlib import Path

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from src.tradesim.core.ids import CaravanId, RouteId
from src.tradesim.io.save_load import load_from_json
from src.tradesim.logistics.routes import TradeRouteGraph
from src.tradesim.reports.caravan_cards import generate_caravan_card


def main():
    parser = argparse.ArgumentParser(description="Inspect caravans and trade routes in a saved TradeSim state.")
    parser.add_argument(
        "--from-json",
        type=str,
        required=True,
        help="Path to a JSON state file.",
    )
    parser.add_argument("--caravan", type=str, help="ID of the caravan to inspect.")
    parser.add_argument("--route", type=str, help="ID of the trade route to inspect.")
    args = parser.parse_args()

    state = load_from_json(args.from_json)
    print(f"Loaded state from JSON file: {args.from_json}")

    if args.caravan:
        caravan_id = CaravanId(args.caravan)
        if caravan_id not in state.caravans:
            print(f"Error: Caravan '{caravan_id}' not found.")
            sys.exit(1)
        print(generate_caravan_card(state.caravans[caravan_id], state))

    graph = TradeRouteGraph(state)
    if args.route:
        route_id = RouteId(args.route)
        summaries = [r for r in graph.list_routes() if r["id"] == route_id]
        if not summaries:
            print(f"Error: Route '{route_id}' not found.")
            sys.exit(1)
        print(json.dumps(summaries[0], indent=2))
    elif not args.caravan:
        print(f"\n--- Trade Routes ({len(state.routes)}) ---")
        print(json.dumps(graph.list_routes(), indent=2))


if __name__ == "__main__":
    main()
