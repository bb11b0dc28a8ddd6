import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Add the project root to the Python path
sys.path.append(str(Path(__file__).parent.parent))

from src.tradesim.core.config import load_balance_config
from src.tradesim.core.sim import build_simulation, sweep
from src.tradesim.io.save_load import load_from_json, save_to_json
from src.tradesim.reports.gazette import generate_gazette
from src.tradesim.world.load import load_world


def main():
    parser = argparse.ArgumentParser(description="Run scheduler sweeps over every caravan in transit.")
    parser.add_argument(
        "--world",
        type=str,
        default="data/world.yaml",
        help="Path to the world seed YAML file.",
    )
    parser.add_argument(
        "--balance",
        type=str,
        default="data/balance.yaml",
        help="Path to the balance configuration YAML file.",
    )
    parser.add_argument(
        "--from-json", type=str, help="Resume from a JSON state file instead of the world seed."
    )
    parser.add_argument(
        "--sweeps", type=int, default=1, help="Number of sweeps to run."
    )
    parser.add_argument(
        "--hours-per-sweep",
        type=float,
        default=0.0,
        help="Advance the simulated clock by this many hours before each sweep (0 uses the real clock).",
    )
    parser.add_argument(
        "--spawn-npcs", type=int, default=0, help="NPC merchant caravans to send out before each sweep."
    )
    parser.add_argument(
        "--dump-json", type=str, help="Write the final state to this JSON file."
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    args = parser.parse_args()

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)

    config = load_balance_config(Path(args.balance))
    if args.from_json:
        state = load_from_json(args.from_json, config=config)
        print(f"Loaded state from JSON file: {args.from_json}")
    else:
        state = load_world(Path(args.world), config=config)
        print(f"Loaded world from '{args.world}' with seed {state.seed}.")

    sim = build_simulation(state)
    now = datetime.now(timezone.utc)
    for _ in range(args.sweeps):
        if args.hours_per_sweep > 0:
            now += timedelta(hours=args.hours_per_sweep)
        else:
            now = datetime.now(timezone.utc)
        if args.spawn_npcs > 0:
            sim.caravans.spawn_npc_caravans(args.spawn_npcs, now=now)
        report = sweep(sim, now=now)
        print(generate_gazette(report.log, report.at))

    if args.dump_json:
        save_to_json(state, args.dump_json)
        print(f"Final state dumped to {args.dump_json}")


if __name__ == "__main__":
    main()
