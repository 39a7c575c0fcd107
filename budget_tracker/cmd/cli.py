import argparse
import sys

import uvicorn

from budget_tracker.config.logging import logger
from budget_tracker.config.settings import settings
from budget_tracker.core.exceptions import AppError
from budget_tracker.services.container import build_container


def run_server(container):
    """HTTP API plus one background scheduler per configured exchange."""
    from budget_tracker.api.server import create_app

    container.seed_credentials(settings.bootstrap_credentials())
    app = create_app(container, cors_origins=settings.cors_origins)

    container.schedulers.start()
    logger.info(f"Starting server on {settings.HOST}:{settings.PORT}")
    try:
        uvicorn.run(app, host=settings.HOST, port=settings.PORT, log_level=settings.LOG_LEVEL.lower())
    finally:
        logger.info("Shutting down schedulers...")
        container.schedulers.stop(timeout=settings.SYNC_TIMEOUT_SECONDS)


def run_sync(container):
    container.seed_credentials(settings.bootstrap_credentials())
    results = container.schedulers.run_once()
    for exchange, positions in results.items():
        if positions is None:
            logger.info(f"[{exchange}] Not synced (not configured or failed)")
        else:
            logger.info(f"[{exchange}] {len(positions)} positions synced")


def run_balance(container):
    container.seed_credentials(settings.bootstrap_credentials())
    total, balances = container.balance.get_total_balance()
    for item in balances:
        print(f"{item.exchange:<10} {item.balance:>16.2f} USDT")
    print(f"{'TOTAL':<10} {total:>16.2f} USDT")


def main():
    parser = argparse.ArgumentParser(description="Budget Tracker CLI")
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Command: serve (API + schedulers, runs until interrupted)
    subparsers.add_parser("serve", help="Run the HTTP API with background sync")

    # Command: sync (one cycle per exchange)
    sync_parser = subparsers.add_parser("sync", help="Run a single sync cycle and exit")
    sync_parser.add_argument("--exchange", help="Only sync this exchange")

    # Command: balance
    subparsers.add_parser("balance", help="Print the live balance across exchanges")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if settings is None:
        sys.exit(1)

    exchanges = None
    if args.command == "sync" and args.exchange:
        exchanges = [args.exchange.lower()]

    try:
        container = build_container(settings, sync_exchanges=exchanges)
    except AppError as e:
        logger.error(f"Startup failed: {e}")
        sys.exit(1)

    try:
        if args.command == "serve":
            run_server(container)
        elif args.command == "sync":
            run_sync(container)
        elif args.command == "balance":
            run_balance(container)
    finally:
        container.close()


if __name__ == "__main__":
    main()
