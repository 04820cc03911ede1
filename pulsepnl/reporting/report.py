"""
Portfolio Report Printer.

Console rendering of a PortfolioReport:
- Portfolio totals
- Per-token position table
- Performance ratios
- Anomalies and unpriced positions

Also exposes a summary dictionary and a pandas DataFrame of positions for
dashboards that want structured data instead of text.
"""

from decimal import Decimal
from typing import Dict, Optional

import pandas as pd

from pulsepnl.core.models import PortfolioReport, WindowedSummary
from pulsepnl.reporting.aggregator import ReportAggregator


def _fmt(value: Decimal, places: int = 4) -> str:
    return f"{value:,.{places}f}"


class PortfolioReportPrinter:
    """Generate console portfolio reports."""

    def __init__(
        self,
        report: PortfolioReport,
        aggregator: Optional[ReportAggregator] = None,
        quote_symbol: str = "PLS",
    ):
        self.report = report
        self.aggregator = aggregator or ReportAggregator()
        self.quote_symbol = quote_symbol

    def print_full_report(self):
        """Print complete portfolio report to console."""
        self._print_header()
        self._print_totals()
        self._print_positions()
        self._print_top_performers()
        self._print_performance()
        self._print_anomalies()
        print("\n" + "=" * 80)

    def print_window(self, title: str, summary: WindowedSummary):
        """Print a daily or weekly window summary."""
        print("\n" + "-" * 80)
        print(title.upper())
        print("-" * 80)

        print(
            f"\n  Window:                {summary.window_start.isoformat()} to {summary.window_end.isoformat()}"
        )
        print(f"  Realized PnL:          {_fmt(summary.realized_pnl)} {self.quote_symbol}")
        print(f"  Trades:                {summary.trade_count} ({summary.buy_count} buys, {summary.sell_count} sells)")
        print(f"  Quote Spent:           {_fmt(summary.quote_spent)} {self.quote_symbol}")
        print(f"  Quote Received:        {_fmt(summary.quote_received)} {self.quote_symbol}")
        print(f"  Tokens Traded:         {summary.tokens_traded}")

    def get_summary_dict(self) -> Dict:
        """Get report summary as dictionary."""
        report = self.report
        stats = self.aggregator.performance(report)
        return {
            "generated_at": report.generated_at.isoformat(),
            "total_realized_pnl": str(report.total_realized_pnl),
            "total_unrealized_pnl": str(report.total_unrealized_pnl),
            "total_pnl": str(report.total_pnl),
            "total_pnl_display": (
                str(report.total_pnl_display) if report.total_pnl_display is not None else None
            ),
            "display_currency": report.display_currency,
            "active_positions": report.active_positions_count,
            "closed_positions": report.closed_positions_count,
            "total_trades": report.total_trade_count,
            "unpriced_positions": report.unpriced_positions_count,
            "anomalies": report.anomaly_count,
            "win_rate": stats.win_rate,
            "profit_factor": stats.profit_factor,
            "sharpe_ratio": stats.sharpe_ratio,
            "max_drawdown": stats.max_drawdown,
        }

    def positions_frame(self) -> pd.DataFrame:
        """Per-token positions as a DataFrame (Decimals kept as objects)."""
        columns = [
            "token_id",
            "token_symbol",
            "is_active",
            "current_balance",
            "total_quote_spent",
            "total_quote_received",
            "realized_pnl",
            "unrealized_pnl",
            "total_pnl",
            "total_pnl_percent",
            "trade_count",
            "price_unavailable",
            "oversold",
        ]
        records = [
            {column: getattr(position, column) for column in columns}
            for position in self.report.positions
        ]
        frame = pd.DataFrame(records, columns=columns)
        frame["hold_time"] = [p.hold_time.total for p in self.report.positions]
        return frame

    def _print_header(self):
        """Print report header."""
        print("\n" + "=" * 80)
        print("PULSEPNL - PORTFOLIO REPORT")
        print("=" * 80)
        print(f"\nGenerated:   {self.report.generated_at.strftime('%Y-%m-%d %H:%M:%S')} UTC")
        print(f"Trades:      {self.report.total_trade_count}")
        print(
            f"Positions:   {self.report.active_positions_count} active, "
            f"{self.report.closed_positions_count} closed"
        )

    def _print_totals(self):
        """Print portfolio totals."""
        report = self.report
        print("\n" + "-" * 80)
        print("PORTFOLIO TOTALS")
        print("-" * 80)

        print(f"\n  Realized PnL:          {_fmt(report.total_realized_pnl)} {self.quote_symbol}")
        print(f"  Unrealized PnL:        {_fmt(report.total_unrealized_pnl)} {self.quote_symbol}")
        print(f"  Total PnL:             {_fmt(report.total_pnl)} {self.quote_symbol}")

        display = report.total_pnl_display
        if display is not None:
            print(f"  Total PnL ({report.display_currency}):       {_fmt(display, 2)}")

        if report.total_pnl > 0:
            print(f"  Status:                🟢 PROFITABLE")
        elif report.total_pnl == 0:
            print(f"  Status:                🟡 FLAT")
        else:
            print(f"  Status:                🔴 LOSS")

    def _print_positions(self):
        """Print per-token breakdown."""
        print("\n" + "-" * 80)
        print("POSITIONS")
        print("-" * 80)

        if not self.report.positions:
            print("\n  No positions")
            return

        print(
            f"\n  {'Token':<14} {'Balance':>18} {'Realized':>16} {'Unrealized':>16} {'Total %':>10} {'Hold':>8}"
        )
        print("  " + "-" * 86)

        for p in self.report.positions:
            label = (p.token_symbol or p.token_id[:12])[:14]
            unrealized = "n/a" if p.price_unavailable else _fmt(p.unrealized_pnl, 2)
            print(
                f"  {label:<14} {_fmt(p.current_balance, 2):>18} {_fmt(p.realized_pnl, 2):>16} "
                f"{unrealized:>16} {p.total_pnl_percent:>+9.2f}% {p.hold_time.total:>8}"
            )

    def _print_top_performers(self):
        """Print best and worst positions."""
        if not self.report.positions:
            return

        print("\n" + "-" * 80)
        print("TOP PERFORMERS")
        print("-" * 80)

        print()
        for p in self.aggregator.top_performers(self.report):
            label = p.token_symbol or p.token_id
            print(f"  • {label:<20} {_fmt(p.total_pnl, 2):>16} {self.quote_symbol}")

        print("\n  Worst:")
        for p in self.aggregator.worst_performers(self.report):
            label = p.token_symbol or p.token_id
            print(f"  • {label:<20} {_fmt(p.total_pnl, 2):>16} {self.quote_symbol}")

    def _print_performance(self):
        """Print performance ratios."""
        stats = self.aggregator.performance(self.report)

        print("\n" + "-" * 80)
        print("PERFORMANCE")
        print("-" * 80)

        print(f"\n  Win Rate:              {stats.win_rate:.1f}%")
        print(f"  Average Win:           {_fmt(stats.average_win, 2)} {self.quote_symbol}")
        print(f"  Average Loss:          {_fmt(stats.average_loss, 2)} {self.quote_symbol}")
        print(f"  Profit Factor:         {stats.profit_factor:.2f}")
        print(f"  Sharpe Ratio (daily):  {stats.sharpe_ratio:.2f}")
        print(f"  Max Drawdown:          {stats.max_drawdown:.2f}%")

        today = self.aggregator.local_date(self.report.generated_at)
        daily = self.aggregator.daily_pnl(self.report)
        if daily:
            print("\n  Recent Days:")
            for day in list(daily)[-7:]:
                marker = " (today)" if day == today else ""
                print(f"    {day.isoformat()}  {_fmt(daily[day], 2):>16}{marker}")

    def _print_anomalies(self):
        """Print over-sold and unpriced positions."""
        report = self.report
        if not report.has_anomalies and report.unpriced_positions_count == 0:
            return

        print("\n" + "-" * 80)
        print("WARNINGS")
        print("-" * 80)
        print()

        for p in report.positions:
            label = p.token_symbol or p.token_id
            if p.oversold:
                print(f"  ⚠️  {label}: sold {_fmt(p.oversold_amount)} more than tracked buys")
            if p.price_unavailable:
                print(f"  ⚠️  {label}: no current price, excluded from unrealized total")
