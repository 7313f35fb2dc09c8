"""
Rewardbot - Main Entry Point

Claims time-gated shop rewards for every registered account.  The default
mode launches the browser and runs claim cycles at the scheduled UTC hours;
the maintenance flags work on the ledger or roster without a browser.

Usage:
    python main.py                      # Scheduled daemon (0/6/12/18 UTC)
    python main.py --once               # One claim run for the roster, then exit
    python main.py --single 1234567890  # Manual claim for one account
    python main.py --once --sequential  # Serial run with inter-account delay
    python main.py --visible            # Show the browser window
    python main.py --register 123 alice # Add an account to the roster
    python main.py --cleanup-duplicates # Drop failures superseded same-day
    python main.py --remove-failed      # Drop every failed ledger row
    python main.py --stats --days 7     # Ledger statistics
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

from rich.console import Console
from rich.table import Table

from browser.instance import BrowserManager
from core.config import LOGS_DIR, ClaimerSettings
from core.ledger import ClaimLedger
from core.limiter import ConcurrencyLimiter
from core.logging_setup import setup_logging
from core.notifier import build_notifier
from core.orchestrator import RunScheduler
from core.roster import RegistrationRoster

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Rewardbot - scheduled shop reward claimer")
    parser.add_argument("--once", action="store_true", help="Run one claim cycle and exit")
    parser.add_argument("--single", type=str, metavar="ID", help="Claim for one account id and exit")
    parser.add_argument("--sequential", action="store_true", help="Process accounts one at a time")
    parser.add_argument("--visible", action="store_true", help="Show browser")
    parser.add_argument(
        "--cleanup-duplicates", action="store_true",
        help="Remove failed claims superseded by a same-day success",
    )
    parser.add_argument("--remove-failed", action="store_true", help="Remove every failed claim")
    parser.add_argument("--stats", action="store_true", help="Print ledger statistics")
    parser.add_argument("--days", type=int, default=None, help="Window for --stats (days)")
    parser.add_argument(
        "--register", nargs=2, metavar=("ID", "NAME"), help="Register an account in the roster"
    )
    return parser


def print_stats(ledger: ClaimLedger, console: Console, days: Optional[int]) -> None:
    stats = ledger.claim_stats(days)
    window = f"last {days} day(s)" if days is not None else "all time"
    table = Table(title=f"Claim Ledger ({window})")
    table.add_column("Status", style="cyan")
    table.add_column("Attempts", justify="right")
    table.add_column("Items", justify="right")
    for status in ("success", "failed"):
        table.add_row(status, str(stats[status]["count"]), str(stats[status]["items"]))
    table.add_row("total", str(stats["total_attempts"]), str(stats["total_items"]), style="bold")
    console.print(table)
    console.print(
        f"Accounts: {stats['unique_accounts']}  |  "
        f"Superseded failures pending cleanup: {len(ledger.find_superseded_failures())}"
    )


def run_maintenance(args: argparse.Namespace, settings: ClaimerSettings, console: Console) -> bool:
    """Handle the browser-less flags; return True if any ran."""
    handled = False
    if args.register:
        account_id, name = args.register
        roster = RegistrationRoster(settings.roster_file)
        registration = roster.register(account_id, name)
        console.print(f"Registered {registration.account_id} ({registration.username})")
        handled = True

    if args.cleanup_duplicates or args.remove_failed or args.stats:
        ledger = ClaimLedger(settings.ledger_db_path)
        if args.cleanup_duplicates:
            removed = ledger.delete_superseded_failures()
            console.print(f"Removed {removed} superseded failed claim(s)")
        if args.remove_failed:
            removed = ledger.delete_failed()
            console.print(f"Removed {removed} failed claim(s)")
        if args.stats:
            print_stats(ledger, console, args.days)
        handled = True
    return handled


async def main(argv: Optional[List[str]] = None) -> int:
    """
    Main execution loop.

    1. Parses command line arguments and loads settings.
    2. Runs maintenance flags (no browser) and exits if any were given.
    3. Launches the browser and seeds the roster.
    4. Runs a single claim, one cycle, or the scheduled loop until SIGTERM.
    """
    args = build_parser().parse_args(argv)

    settings = ClaimerSettings()
    if args.visible:
        settings.headless = False
    if args.sequential:
        settings.sequential = True

    setup_logging(settings.log_level, log_file=str(LOGS_DIR / "rewardbot.log"))
    console = Console()

    if run_maintenance(args, settings, console):
        return 0

    ledger = ClaimLedger(settings.ledger_db_path)
    roster = RegistrationRoster(settings.roster_file)
    roster.seed(settings.user_ids)

    browser_manager = BrowserManager(
        headless=settings.headless,
        block_images=settings.block_images,
        timeout=settings.navigation_timeout_ms,
        user_agents=settings.user_agents,
    )
    scheduler = RunScheduler(
        settings,
        browser_manager,
        ledger,
        roster,
        limiter=ConcurrencyLimiter(settings.max_concurrent_sessions),
        notifier=build_notifier(settings, console),
    )

    stop_signal = asyncio.Event()

    def handle_sigterm():
        logger.info("🛑 Received SIGTERM. Initiating graceful shutdown...")
        stop_signal.set()
        scheduler.stop()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGTERM, handle_sigterm)

    exit_code = 0
    try:
        try:
            await browser_manager.launch()
        except Exception as e:
            logger.error(f"❌ Browser launch failed: {e}")
            return 1

        if args.single:
            attempt = await scheduler.claim_for_account(args.single)
            console.print(
                f"{attempt.status.value}: {', '.join(attempt.items_claimed) or 'no items'}"
                + (f" ({attempt.error})" if attempt.error else "")
            )
            exit_code = 0 if attempt.succeeded else 1
        elif args.once:
            summary = await scheduler.run_claim_cycle()
            exit_code = 0 if summary.failed == 0 else 1
        else:
            if roster.count_active() == 0:
                logger.warning("⚠️ No active accounts registered. Use --register or USER_IDS.")
            scheduler_task = asyncio.create_task(scheduler.scheduler_loop())
            stop_task = asyncio.create_task(stop_signal.wait())
            await asyncio.wait({scheduler_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
            stop_task.cancel()
            if not scheduler_task.done():
                scheduler_task.cancel()
                try:
                    await scheduler_task
                except asyncio.CancelledError:
                    pass

    except KeyboardInterrupt:
        logger.info("👋 Stopping Rewardbot (KeyboardInterrupt)...")
    except ValueError as e:
        logger.error(f"❌ {e}")
        exit_code = 2
    finally:
        logger.info("🧹 Cleaning up resources...")
        scheduler.stop()
        await browser_manager.close()
        if sys.platform != "win32":
            loop.remove_signal_handler(signal.SIGTERM)
    return exit_code


def run() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
