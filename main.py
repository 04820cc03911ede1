"""
PulsePnL - Main Entry Point

FIFO profit-and-loss tracking for a single wallet.

Usage:
    # Check configuration
    python main.py --check

    # Initialize database
    python main.py --init-db

    # Import raw transfers (JSON list) into the event log
    python main.py --import transfers.json

    # Print a report, valuing open positions with a price map
    python main.py --report --prices prices.json --rate 0.00004

    # Realized PnL for one day / one week (report timezone)
    python main.py --daily 2025-08-15 --prices prices.json
    python main.py --weekly 2025-08-11 --prices prices.json

    # Recompute periodically from a transfers file
    python main.py --watch transfers.json --prices prices.json
"""

import argparse
import asyncio
import json
import signal
from datetime import date, datetime, time
from decimal import Decimal
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import structlog

from pulsepnl.accounting.normalizer import TransactionNormalizer
from pulsepnl.core.config import pnl_config
from pulsepnl.core.engine import PnLEngine, PortfolioTracker
from pulsepnl.core.models import PortfolioReport
from pulsepnl.reporting.aggregator import ReportAggregator
from pulsepnl.reporting.report import PortfolioReportPrinter
from pulsepnl.storage.database import Database
from pulsepnl.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def load_json(path: str):
    """Load a JSON file, keeping fractional numbers as Decimal."""
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f, parse_float=Decimal)


def load_prices(path: Optional[str]) -> Dict[str, Optional[Decimal]]:
    """Load a token -> quote price map; null marks a missing price."""
    if not path:
        return {}
    raw = load_json(path)
    return {
        token.lower(): (Decimal(str(price)) if price is not None else None)
        for token, price in raw.items()
    }


def build_normalizer() -> TransactionNormalizer:
    """Normalizer for the configured wallet, starting at local midnight of the tracking start date."""
    tracking_start = datetime.combine(
        pnl_config.wallet.tracking_start_date,
        time.min,
        tzinfo=ZoneInfo(pnl_config.report.report_timezone),
    )
    return TransactionNormalizer(
        wallet_address=pnl_config.wallet.wallet_address,
        blacklist=pnl_config.tracking.blacklisted_tokens,
        tracking_start=tracking_start,
        quote_decimals=pnl_config.tracking.quote_decimals,
    )


class PnLTrackerApp:
    """
    Long-running tracker application.

    Re-reads a transfers file and a price file every cycle, feeds them through
    the PortfolioTracker and prints a short line per report.
    """

    def __init__(self, source_path: str, prices_path: Optional[str], rate: Optional[Decimal]):
        self.source_path = source_path
        self.prices_path = prices_path
        self.rate = rate

        self.database: Optional[Database] = None
        self.tracker: Optional[PortfolioTracker] = None
        self._shutdown_event = asyncio.Event()

    async def initialize(self):
        """Initialize database and tracker."""
        self.database = Database()
        await self.database.initialize()
        logger.info("app.database_initialized")

        self.tracker = PortfolioTracker(
            engine=PnLEngine(display_currency=pnl_config.tracking.display_currency),
            event_source=self._read_transfers,
            price_oracle=self._read_prices,
            normalizer=build_normalizer(),
            database=self.database,
            display_rate_source=self._read_rate,
            interval_seconds=pnl_config.tracking.update_interval_seconds,
        )
        self.tracker.subscribe(self._print_cycle)
        logger.info("app.initialized", source=self.source_path)

    async def run(self):
        """Run until SIGINT/SIGTERM."""
        loop = asyncio.get_event_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self._signal_handler)

        try:
            await self.tracker.start()
            await self._shutdown_event.wait()
        except Exception as e:
            logger.error("app.error", error=str(e), exc_info=True)
            raise
        finally:
            await self.shutdown()

    async def shutdown(self):
        logger.info("app.shutting_down")
        if self.tracker:
            await self.tracker.stop()
        if self.database:
            await self.database.close()
        logger.info("app.shutdown_complete")

    def _signal_handler(self):
        logger.info("app.shutdown_signal_received")
        self._shutdown_event.set()

    async def _read_transfers(self) -> List[dict]:
        return load_json(self.source_path)

    async def _read_prices(self, token_ids) -> Dict[str, Optional[Decimal]]:
        prices = load_prices(self.prices_path)
        return {token: prices.get(token) for token in token_ids}

    async def _read_rate(self) -> Optional[Decimal]:
        return self.rate

    def _print_cycle(self, report: PortfolioReport):
        print(
            f"[{report.generated_at.strftime('%Y-%m-%d %H:%M:%S')}] "
            f"total={report.total_pnl:,.4f} {pnl_config.tracking.quote_symbol} "
            f"active={report.active_positions_count} "
            f"unpriced={report.unpriced_positions_count} "
            f"anomalies={report.anomaly_count}"
        )


def print_banner():
    """Print the startup banner."""
    banner = f"""
╔══════════════════════════════════════════════════════════════════╗
║                                                                  ║
║           📈 PULSEPNL v{pnl_config.system.app_version:<8}                                  ║
║                                                                  ║
║     FIFO profit & loss tracking for a single wallet              ║
║                                                                  ║
╚══════════════════════════════════════════════════════════════════╝
"""
    print(banner)


def check_configuration() -> Dict:
    """
    Check if configuration is valid.

    Returns:
        Dictionary with validation results
    """
    validation = pnl_config.validate_configuration()
    warnings = []

    if not pnl_config.tracking.blacklisted_tokens:
        warnings.append("• No blacklisted tokens configured")
    if pnl_config.logging.debug_mode:
        warnings.append("⚠️  Debug logging is enabled")

    return {
        "valid": validation["valid"],
        "issues": validation["issues"],
        "warnings": warnings,
        "wallet": pnl_config.wallet.wallet_address,
        "report_timezone": pnl_config.report.report_timezone,
        "interval_minutes": pnl_config.tracking.update_interval_minutes,
    }


async def import_transfers(db: Database, path: str) -> int:
    """Normalize a JSON list of raw transfers and append them to the log."""
    batch = build_normalizer().normalize_many(load_json(path))
    inserted = await db.append_events(batch.events)

    print(f"\n✓ Normalized {len(batch.events)} events ({batch.rejected_count} rejected)")
    for reason, count in sorted(batch.rejected.items(), key=lambda item: item[0].value):
        print(f"   - {reason.value}: {count}")
    print(f"✓ Stored {inserted} new events")
    return inserted


async def build_report(db: Database, prices_path: Optional[str], rate: Optional[Decimal]) -> PortfolioReport:
    """Compute a report from the stored event log."""
    events = await db.load_events()
    prices = load_prices(prices_path)
    engine = PnLEngine(display_currency=pnl_config.tracking.display_currency)
    return engine.compute_portfolio(events, prices.get, quote_to_display_rate=rate)


async def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="PulsePnL - FIFO profit & loss tracking for a single wallet"
    )

    # Actions
    parser.add_argument(
        "--check", action="store_true", help="Check configuration and exit"
    )
    parser.add_argument(
        "--init-db", action="store_true", help="Initialize database and exit"
    )
    parser.add_argument(
        "--import", dest="import_file", metavar="FILE",
        help="Import a JSON list of raw transfers into the event log",
    )
    parser.add_argument("--report", action="store_true", help="Print the full portfolio report")
    parser.add_argument("--daily", metavar="DATE", help="Print the realized window for one day (YYYY-MM-DD)")
    parser.add_argument("--weekly", metavar="DATE", help="Print the realized window for the week starting DATE")
    parser.add_argument("--watch", metavar="FILE", help="Recompute periodically from a transfers file")

    # Inputs
    parser.add_argument("--prices", metavar="FILE", help="JSON map of token -> quote price (null if unknown)")
    parser.add_argument("--rate", type=Decimal, help="Display-currency value of one quote unit")
    parser.add_argument(
        "--save-snapshot", action="store_true",
        help="Store the daily/weekly report snapshot in the database",
    )

    args = parser.parse_args()

    # Setup logging
    setup_logging()

    if not args.check:
        print_banner()

    config_check = check_configuration()

    # Handle --check
    if args.check:
        print("\n" + "=" * 60)
        print("           CONFIGURATION CHECK")
        print("=" * 60)

        if config_check["valid"]:
            print("\n✓ Configuration is valid")
        else:
            print("\n✗ Configuration errors:")
            for issue in config_check["issues"]:
                print(f"   - {issue}")

        for warning in config_check["warnings"]:
            print(warning)

        print(f"\nWallet: {config_check['wallet'] or 'N/A'}")
        print(f"Report Timezone: {config_check['report_timezone']}")
        print(f"Update Interval: {config_check['interval_minutes']} min")

        print("\n" + "=" * 60)
        return

    # Handle --init-db
    if args.init_db:
        print("\n📦 Initializing database...")
        db = Database()
        await db.initialize()
        print("✓ Database initialized successfully")
        await db.close()
        return

    # Everything below needs a wallet
    if not config_check["valid"]:
        print("\n✗ Configuration errors:")
        for issue in config_check["issues"]:
            print(f"   - {issue}")
        print("\nPlease check your .env file and try again.")
        return

    if args.watch:
        app = PnLTrackerApp(args.watch, args.prices, args.rate)
        await app.initialize()
        await app.run()
        return

    db = Database()
    await db.initialize()
    try:
        if args.import_file:
            await import_transfers(db, args.import_file)

        if not (args.report or args.daily or args.weekly):
            return

        report = await build_report(db, args.prices, args.rate)
        aggregator = ReportAggregator(
            report_timezone=pnl_config.report.report_timezone,
            top_limit=pnl_config.report.top_performers_limit,
        )
        printer = PortfolioReportPrinter(
            report, aggregator, quote_symbol=pnl_config.tracking.quote_symbol
        )

        if args.report:
            printer.print_full_report()

        if args.daily:
            day = date.fromisoformat(args.daily)
            printer.print_window(f"Daily report {day.isoformat()}", aggregator.derive_daily(report, day))
            if args.save_snapshot and pnl_config.report.daily_enabled:
                await db.save_snapshot(report, "daily", day)

        if args.weekly:
            week_start = date.fromisoformat(args.weekly)
            printer.print_window(
                f"Weekly report from {week_start.isoformat()}",
                aggregator.derive_weekly(report, week_start),
            )
            if args.save_snapshot and pnl_config.report.weekly_enabled:
                await db.save_snapshot(report, "weekly", week_start)
    finally:
        await db.close()


def cli():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\n\nShutdown requested by user")
    except Exception as e:
        logger.error("main.fatal_error", error=str(e), exc_info=True)
        raise


if __name__ == "__main__":
    cli()
