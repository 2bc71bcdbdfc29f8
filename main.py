import sys
import json
import logging
import argparse
import asyncio
from pathlib import Path

# Add src to path
current_dir = Path(__file__).parent.resolve()
src_path = current_dir / "src"
sys.path.append(str(src_path))

# Configure logging
# Force UTF-8 for Windows console
if sys.platform == "win32":
    sys.stdout.reconfigure(encoding='utf-8')
    sys.stderr.reconfigure(encoding='utf-8')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout), # Explicitly use reconfigured stdout
        logging.FileHandler("mockbet.log", encoding='utf-8') # Force UTF-8 for file
    ]
)

from mockbet.config import API_HOST, API_PORT, DB_PATH, SETTLEMENT_INTERVAL_MINUTES
from mockbet.storage import Storage


def serve(args):
    from mockbet.api import create_app
    app = create_app(Storage(args.db))
    app.run(host=args.host, port=args.port)


def schedule(args):
    from mockbet.resolver import BetResolver
    from mockbet.scheduler import SettlementScheduler
    scheduler = SettlementScheduler(BetResolver(Storage(args.db)), base_minutes=args.interval)
    asyncio.run(scheduler.run())


def settle(args):
    from mockbet.resolver import BetResolver
    report = asyncio.run(BetResolver(Storage(args.db)).run_settlement_pass())
    print(json.dumps(report.to_dict(), indent=2))


def seed(args):
    from mockbet.seed import seed_demo_data
    profiles, matches = asyncio.run(seed_demo_data(Storage(args.db)))
    for p in profiles:
        print(f"Profile {p.username}: {p.id}")
    for m in matches:
        print(f"Match {m.name}: {m.id}")


def main():
    parser = argparse.ArgumentParser(description="MockBet settlement service")
    parser.add_argument("--db", default=DB_PATH, help="Path to the SQLite database")
    sub = parser.add_subparsers(dest="command", required=True)

    p_serve = sub.add_parser("serve", help="Run the HTTP API")
    p_serve.add_argument("--host", default=API_HOST)
    p_serve.add_argument("--port", type=int, default=API_PORT)
    p_serve.set_defaults(func=serve)

    p_schedule = sub.add_parser("schedule", help="Run the periodic settlement loop")
    p_schedule.add_argument("--interval", type=int, default=SETTLEMENT_INTERVAL_MINUTES, help="Base interval in minutes")
    p_schedule.set_defaults(func=schedule)

    sub.add_parser("settle", help="Run one settlement pass and print the report").set_defaults(func=settle)
    sub.add_parser("seed", help="Insert demo profiles and fixtures").set_defaults(func=seed)

    args = parser.parse_args()
    try:
        args.func(args)
    except KeyboardInterrupt:
        print("\nStopping...")
    except Exception as e:
        logging.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
