"""
PulsePnL Reporting Module.

Usage:
    from pulsepnl.reporting import PortfolioReportPrinter, ReportAggregator

    aggregator = ReportAggregator(report_timezone="Europe/Berlin")
    daily = aggregator.derive_daily(report, date(2025, 8, 15))

    printer = PortfolioReportPrinter(report, aggregator)
    printer.print_full_report()
"""

from pulsepnl.reporting.aggregator import ReportAggregator
from pulsepnl.reporting.report import PortfolioReportPrinter

__all__ = [
    "ReportAggregator",
    "PortfolioReportPrinter",
]
