"""
Report Aggregator.

Derives windowed and statistical views from a PortfolioReport:
- Daily / weekly realized PnL windows in the report timezone
- Per-day realized PnL series
- Hold times
- Performance ratios (win rate, profit factor, Sharpe, drawdown)
- Top / worst performer and most-traded rankings

The aggregator never touches lots or prices; it only reads the immutable
report, so it can run concurrently with the next computation cycle.
"""

from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import Decimal, localcontext
from typing import Dict, List, Optional, Union
from zoneinfo import ZoneInfo

import numpy as np
import structlog

from pulsepnl.core.engine import hold_time_between
from pulsepnl.core.models import (HoldTime, PerformanceStats, Position,
                                  PortfolioReport, PositionSummary,
                                  WindowedSummary, ensure_utc)
from pulsepnl.utils.decimals import ACCOUNTING_CONTEXT, ZERO, quantize

logger = structlog.get_logger(__name__)


class ReportAggregator:
    """Windowed and statistical projections over portfolio reports."""

    def __init__(self, report_timezone: str = "UTC", top_limit: int = 5):
        self.report_timezone = report_timezone
        self.tz = ZoneInfo(report_timezone)
        self.top_limit = top_limit

    # =========================================================================
    # Windows
    # =========================================================================

    def derive_windowed(
        self, report: PortfolioReport, window_start: datetime, window_end: datetime
    ) -> WindowedSummary:
        """Realized PnL and trade activity with timestamps in [start, end)."""
        start = ensure_utc(window_start)
        end = ensure_utc(window_end)
        if end < start:
            raise ValueError(f"Window end {end} is before window start {start}")

        with localcontext(ACCOUNTING_CONTEXT):
            realized = sum(
                (r.realized_pnl for r in report.realizations if start <= r.timestamp < end),
                ZERO,
            )

            events = [e for e in report.events if start <= e.timestamp < end]
            buys = [e for e in events if e.is_buy]
            sells = [e for e in events if not e.is_buy]

            return WindowedSummary(
                window_start=start,
                window_end=end,
                realized_pnl=quantize(realized),
                buy_count=len(buys),
                sell_count=len(sells),
                quote_spent=quantize(sum((e.quote_amount for e in buys), ZERO)),
                quote_received=quantize(sum((e.quote_amount for e in sells), ZERO)),
                tokens_traded=len({e.token_id for e in events}),
            )

    def derive_daily(self, report: PortfolioReport, day: date) -> WindowedSummary:
        """Window covering one calendar day in the report timezone."""
        return self.derive_windowed(
            report, self._local_midnight(day), self._local_midnight(day + timedelta(days=1))
        )

    def derive_weekly(self, report: PortfolioReport, week_start: date) -> WindowedSummary:
        """Window covering seven calendar days from week_start."""
        return self.derive_windowed(
            report,
            self._local_midnight(week_start),
            self._local_midnight(week_start + timedelta(days=7)),
        )

    def daily_pnl(self, report: PortfolioReport) -> Dict[date, Decimal]:
        """Realized PnL bucketed per local calendar day, oldest first."""
        buckets: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        with localcontext(ACCOUNTING_CONTEXT):
            for sale in report.realizations:
                buckets[self.local_date(sale.timestamp)] += sale.realized_pnl
        return {day: quantize(buckets[day]) for day in sorted(buckets)}

    def weekly_pnl(self, report: PortfolioReport) -> Dict[date, Decimal]:
        """Realized PnL bucketed by the Monday starting each local week."""
        buckets: Dict[date, Decimal] = defaultdict(lambda: ZERO)
        with localcontext(ACCOUNTING_CONTEXT):
            for day, pnl in self.daily_pnl(report).items():
                buckets[day - timedelta(days=day.weekday())] += pnl
        return {week: buckets[week] for week in sorted(buckets)}

    def local_date(self, moment: datetime) -> date:
        return ensure_utc(moment).astimezone(self.tz).date()

    def _local_midnight(self, day: date) -> datetime:
        return datetime.combine(day, time.min, tzinfo=self.tz)

    # =========================================================================
    # Positions
    # =========================================================================

    @staticmethod
    def derive_hold_time(item: Union[Position, PositionSummary]) -> HoldTime:
        """Time between a position's first and last trade."""
        return hold_time_between(item.first_trade_at, item.last_trade_at)

    def top_performers(
        self, report: PortfolioReport, limit: Optional[int] = None
    ) -> List[PositionSummary]:
        ranked = sorted(report.positions, key=lambda p: (-p.total_pnl, p.token_id))
        return ranked[: limit or self.top_limit]

    def worst_performers(
        self, report: PortfolioReport, limit: Optional[int] = None
    ) -> List[PositionSummary]:
        ranked = sorted(report.positions, key=lambda p: (p.total_pnl, p.token_id))
        return ranked[: limit or self.top_limit]

    def most_traded(
        self, report: PortfolioReport, limit: Optional[int] = None
    ) -> List[PositionSummary]:
        ranked = sorted(report.positions, key=lambda p: (-p.trade_count, p.token_id))
        return ranked[: limit or self.top_limit]

    # =========================================================================
    # Performance
    # =========================================================================

    def performance(self, report: PortfolioReport) -> PerformanceStats:
        """Trading performance ratios.

        Win rate and average win/loss count closed positions as finished
        trades. Sharpe, volatility and drawdown use the daily realized series.
        """
        closed = [p for p in report.positions if not p.is_active]
        wins = [p.realized_pnl for p in closed if p.realized_pnl > 0]
        losses = [p.realized_pnl for p in closed if p.realized_pnl < 0]

        win_rate = (len(wins) / len(closed) * 100) if closed else 0.0

        with localcontext(ACCOUNTING_CONTEXT):
            average_win = quantize(sum(wins, ZERO) / len(wins)) if wins else ZERO
            average_loss = quantize(sum(losses, ZERO) / len(losses)) if losses else ZERO

            total_gains = sum(wins, ZERO)
            total_losses = abs(sum(losses, ZERO))
        profit_factor = float(total_gains / total_losses) if total_losses > 0 else 0.0

        daily = np.array([float(v) for v in self.daily_pnl(report).values()], dtype=float)

        sharpe = 0.0
        volatility = 0.0
        if len(daily) >= 2:
            volatility = float(np.std(daily, ddof=1))
            if volatility > 0:
                sharpe = float(np.mean(daily) / volatility)

        stats = PerformanceStats(
            win_rate=win_rate,
            average_win=average_win,
            average_loss=average_loss,
            profit_factor=profit_factor,
            sharpe_ratio=sharpe,
            max_drawdown=self._max_drawdown(daily),
            volatility=volatility,
        )
        logger.debug(
            "aggregator.performance",
            closed=len(closed),
            win_rate=stats.win_rate,
            profit_factor=stats.profit_factor,
        )
        return stats

    @staticmethod
    def _max_drawdown(daily: np.ndarray) -> float:
        """Largest percentage fall of cumulative PnL below its running peak."""
        if len(daily) == 0:
            return 0.0
        cumulative = np.cumsum(daily)
        peak = np.maximum.accumulate(cumulative)
        positive = peak > 0
        if not positive.any():
            return 0.0
        drawdown = (cumulative[positive] - peak[positive]) / peak[positive] * 100
        return float(drawdown.min())
