"""
Bubuverse Farm - Main Entry Point

Runs the daily check-in, blind-box opening and NFT staking operations over
every wallet in ``config/wallet_sol.json``, one proxy per wallet, saving the
wallet file and the progress ledger after every wallet.

Usage:
    python main.py                          # check-in, unlock, stake in turn
    python main.py --mode checkin           # one operation only
    python main.py --mode unlock --mode stake
    python main.py --visible --mode stake   # show the browser
    python main.py --backend http           # plain HTTP sessions, no browser
    python main.py --stats                  # print box/stake statistics and exit
"""
from dotenv import load_dotenv

# Load environment variables from .env file into os.environ
load_dotenv()

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional

from core.accounts import AccountStore
from core.config import FarmSettings
from core.errors import ConfigError
from core.identity import load_identity_pool, load_user_agents
from core.ledger import ProgressLedger
from core.logging_setup import setup_logging
from core.orchestrator import BatchOrchestrator, RunSummary
from core.registry import OPERATION_ORDER, OPERATION_REGISTRY, get_operation_class
from core.report import print_ledger_stats, print_run_report
from core.session import create_session_provider

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Bubuverse Farm - batch wallet operations")
    parser.add_argument(
        "--mode",
        action="append",
        choices=sorted(OPERATION_REGISTRY),
        help="Operation to run (repeat for a sequence; default: checkin, unlock, stake)",
    )
    parser.add_argument("--visible", action="store_true", help="Show browser")
    parser.add_argument("--backend", choices=["browser", "http"], help="Session backend")
    parser.add_argument("--concurrency", type=int, help="Wallets processed in parallel")
    parser.add_argument(
        "--reset-identities",
        action="store_true",
        help="Forget stored proxy/user-agent bindings before assigning",
    )
    parser.add_argument("--stats", action="store_true", help="Print ledger statistics and exit")
    return parser.parse_args(argv)


def build_settings(args: argparse.Namespace) -> FarmSettings:
    settings = FarmSettings()
    if args.visible:
        settings.headless = False
    if args.backend:
        settings.session_backend = args.backend
    if args.concurrency is not None:
        settings.max_concurrent_accounts = args.concurrency
    return settings


async def run_farm(
    settings: FarmSettings,
    modes: List[str],
    reset_identities: bool = False,
) -> List[RunSummary]:
    """Load state, run each operation in *modes* in order, flush state.

    Raises:
        ConfigError: Missing or invalid wallet file, too few proxies.
    """
    store = AccountStore(settings.accounts_file, settings.state_backups)
    store.load()
    ledger = ProgressLedger(settings.progress_file, settings.state_backups).load()

    if reset_identities:
        store.reset_identities()
    store.preprocess()
    store.save()

    identity_pool = load_identity_pool(settings.proxies_file)
    user_agents = load_user_agents(settings.user_agents_file, settings.user_agent_pool_size)

    provider = create_session_provider(settings)
    orchestrator = BatchOrchestrator(settings, store, ledger, provider)
    summaries: List[RunSummary] = []
    try:
        for mode in modes:
            family = get_operation_class(mode)(settings)
            logger.info("=== %s ===", family.name.upper())
            summary = await orchestrator.run(family, store.accounts, identity_pool, user_agents)
            print_run_report(summary, ledger)
            summaries.append(summary)
    finally:
        await provider.close()
        orchestrator.flush()
        logger.info("Saved %s and %s", settings.accounts_file, settings.progress_file)
    return summaries


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution.

    1. Parses command line arguments.
    2. Sets up logging.
    3. Prints statistics only, or runs the selected operations.
    4. Cancels the run on SIGINT/SIGTERM; state is flushed before exit.

    Returns:
        Process exit status: 0 on completion or interruption, 1 on a
        configuration error.
    """
    args = parse_args(argv)
    settings = build_settings(args)
    setup_logging(settings.log_level)

    if args.stats:
        try:
            ledger = ProgressLedger(settings.progress_file, settings.state_backups).load()
        except ConfigError as exc:
            logger.error("Configuration error: %s", exc)
            return 1
        print_ledger_stats(ledger)
        return 0

    modes = args.mode or list(OPERATION_ORDER)
    task = asyncio.create_task(run_farm(settings, modes, args.reset_identities))

    def handle_stop():
        logger.info("🛑 Received stop signal. Saving state...")
        task.cancel()

    loop = asyncio.get_running_loop()
    stop_signals = (signal.SIGINT, signal.SIGTERM) if sys.platform != "win32" else ()
    for sig in stop_signals:
        loop.add_signal_handler(sig, handle_stop)

    try:
        await task
    except asyncio.CancelledError:
        logger.info("Interrupted. State saved.")
        return 0
    except ConfigError as exc:
        logger.error("Configuration error: %s", exc)
        return 1
    finally:
        for sig in stop_signals:
            loop.remove_signal_handler(sig)
    return 0


def cli() -> None:
    try:
        sys.exit(asyncio.run(main()))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    cli()
