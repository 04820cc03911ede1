"""Unit tests for the report aggregator."""
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from pulsepnl.core.models import PortfolioReport
from pulsepnl.reporting.aggregator import ReportAggregator
from tests.conftest import BASE_TIME, TOKEN_A, TOKEN_B, TOKEN_C


NOW = datetime(2025, 8, 25, tzinfo=timezone.utc)

DAY = 24 * 60


def no_prices(token_id):
    return None


# =============================================================================
# Windows
# =============================================================================

class TestWindows:
    """Test windowed realized PnL."""

    def test_daily_counts_only_in_window_sells(self, engine, aggregator, buy, sell):
        """One sell inside and one outside the day: only the inside one counts."""
        events = [
            buy(20, 20, minutes=-DAY),
            sell(10, 15, minutes=0),        # 2025-08-15, realized 5
            sell(10, 30, minutes=DAY),      # 2025-08-16, realized 20
        ]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        daily = aggregator.derive_daily(report, date(2025, 8, 15))

        assert daily.realized_pnl == Decimal("5")
        assert daily.sell_count == 1
        assert daily.buy_count == 0
        assert daily.quote_received == Decimal("15")

    def test_window_start_inclusive_end_exclusive(self, engine, aggregator, buy, sell):
        """A sale exactly at the window end belongs to the next window."""
        events = [buy(2, 2, minutes=-60), sell(1, 3, minutes=0), sell(1, 5, minutes=60)]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        window = aggregator.derive_windowed(
            report, BASE_TIME, BASE_TIME + timedelta(hours=1)
        )

        assert window.realized_pnl == Decimal("2")
        assert window.sell_count == 1

    def test_weekly_window(self, engine, aggregator, buy, sell):
        """The weekly window covers seven days from its start."""
        events = [
            buy(3, 3, minutes=0),
            sell(1, 2, minutes=DAY),
            sell(1, 3, minutes=6 * DAY),
            sell(1, 4, minutes=7 * DAY),
        ]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        weekly = aggregator.derive_weekly(report, date(2025, 8, 15))

        assert weekly.realized_pnl == Decimal("3")
        assert weekly.trade_count == 3
        assert weekly.quote_spent == Decimal("3")
        assert weekly.tokens_traded == 1

    def test_report_timezone_shifts_days(self, engine, buy, sell):
        """Days are local calendar days in the report timezone."""
        # 2025-08-15 23:30 UTC is already 2025-08-16 in Berlin (UTC+2)
        events = [buy(1, 1, minutes=-60), sell(1, 3, minutes=11 * 60 + 30)]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        berlin = ReportAggregator(report_timezone="Europe/Berlin")

        assert berlin.derive_daily(report, date(2025, 8, 15)).realized_pnl == Decimal("0")
        assert berlin.derive_daily(report, date(2025, 8, 16)).realized_pnl == Decimal("2")

    def test_inverted_window_rejected(self, engine, aggregator):
        """A window ending before it starts is an error."""
        report = engine.compute_portfolio([], no_prices, now=NOW)
        with pytest.raises(ValueError):
            aggregator.derive_windowed(report, BASE_TIME, BASE_TIME - timedelta(seconds=1))

    def test_empty_report_window(self, engine, aggregator):
        """Empty reports give zero-valued windows."""
        report = engine.compute_portfolio([], no_prices, now=NOW)
        summary = aggregator.derive_daily(report, date(2025, 8, 15))
        assert summary.realized_pnl == Decimal("0")
        assert summary.trade_count == 0


# =============================================================================
# Daily Series
# =============================================================================

class TestDailySeries:
    """Test per-day and per-week realized buckets."""

    def test_daily_pnl_buckets(self, engine, aggregator, buy, sell):
        """Realized PnL is summed per calendar day, oldest first."""
        events = [
            buy(10, 10, minutes=0),
            sell(2, 4, minutes=2 * DAY),
            sell(2, 1, minutes=2 * DAY + 60),
            sell(2, 6, minutes=DAY),
        ]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        daily = aggregator.daily_pnl(report)

        assert list(daily) == [date(2025, 8, 16), date(2025, 8, 17)]
        assert daily[date(2025, 8, 16)] == Decimal("4")
        assert daily[date(2025, 8, 17)] == Decimal("1")

    def test_weekly_pnl_buckets_by_monday(self, engine, aggregator, buy, sell):
        """Weeks start on Monday."""
        # 2025-08-15 is a Friday; 2025-08-18 is the next Monday
        events = [buy(3, 3, minutes=0), sell(1, 2, minutes=0), sell(1, 3, minutes=3 * DAY)]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        weekly = aggregator.weekly_pnl(report)

        assert weekly == {date(2025, 8, 11): Decimal("1"), date(2025, 8, 18): Decimal("2")}


# =============================================================================
# Rankings
# =============================================================================

class TestRankings:
    """Test performer rankings."""

    def _report(self, engine, buy, sell) -> PortfolioReport:
        events = [
            buy(10, 10, token_id=TOKEN_A),
            sell(10, 30, token_id=TOKEN_A, minutes=1),      # +20
            buy(10, 10, token_id=TOKEN_B, minutes=2),
            sell(10, 5, token_id=TOKEN_B, minutes=3),       # -5
            buy(10, 10, token_id=TOKEN_C, minutes=4),
            sell(5, 6, token_id=TOKEN_C, minutes=5),
            sell(5, 6, token_id=TOKEN_C, minutes=6),        # +2
        ]
        return engine.compute_portfolio(events, no_prices, now=NOW)

    def test_top_performers(self, engine, aggregator, buy, sell):
        report = self._report(engine, buy, sell)
        assert [p.token_id for p in aggregator.top_performers(report)] == [TOKEN_A, TOKEN_C, TOKEN_B]

    def test_worst_performers_limit(self, engine, aggregator, buy, sell):
        report = self._report(engine, buy, sell)
        assert [p.token_id for p in aggregator.worst_performers(report, limit=1)] == [TOKEN_B]

    def test_most_traded(self, engine, aggregator, buy, sell):
        report = self._report(engine, buy, sell)
        assert aggregator.most_traded(report, limit=1)[0].token_id == TOKEN_C

    def test_hold_time_from_summary(self, engine, aggregator, buy, sell):
        """Hold time is derived from first and last trade."""
        report = self._report(engine, buy, sell)
        hold = aggregator.derive_hold_time(report.get_position(TOKEN_C))
        assert hold.total_seconds == 120


# =============================================================================
# Performance
# =============================================================================

class TestPerformance:
    """Test performance ratios."""

    def test_win_rate_and_profit_factor(self, engine, aggregator, buy, sell):
        """Closed positions are the trades behind win rate and profit factor."""
        events = [
            buy(10, 10, token_id=TOKEN_A),
            sell(10, 30, token_id=TOKEN_A, minutes=1),      # +20
            buy(10, 10, token_id=TOKEN_B, minutes=2),
            sell(10, 5, token_id=TOKEN_B, minutes=3),       # -5
            buy(10, 10, token_id=TOKEN_C, minutes=4),       # still open
        ]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        stats = aggregator.performance(report)

        assert stats.win_rate == pytest.approx(50.0)
        assert stats.average_win == Decimal("20")
        assert stats.average_loss == Decimal("-5")
        assert stats.profit_factor == pytest.approx(4.0)

    def test_no_losses_gives_zero_profit_factor(self, engine, aggregator, buy, sell):
        """Profit factor is zero without any losing trade."""
        report = engine.compute_portfolio([buy(1, 1), sell(1, 2, minutes=1)], no_prices, now=NOW)
        assert aggregator.performance(report).profit_factor == 0.0

    def test_sharpe_and_drawdown(self, engine, aggregator, buy, sell):
        """Sharpe uses daily PnL; drawdown is measured from the cumulative peak."""
        events = [
            buy(4, 8, minutes=0),
            sell(1, 12, minutes=0),          # day 1: +10
            sell(1, 1, minutes=DAY),         # day 2: -1
            sell(1, 7, minutes=2 * DAY),     # day 3: +5
        ]
        report = engine.compute_portfolio(events, no_prices, now=NOW)

        stats = aggregator.performance(report)

        # daily series 10, -1, 5: cumulative 10, 9, 14 -> drawdown -10%
        assert stats.max_drawdown == pytest.approx(-10.0)
        assert stats.volatility > 0
        assert stats.sharpe_ratio == pytest.approx((14 / 3) / stats.volatility)

    def test_single_day_has_zero_sharpe(self, engine, aggregator, buy, sell):
        """Fewer than two days of data give zero Sharpe and volatility."""
        report = engine.compute_portfolio([buy(1, 1), sell(1, 2, minutes=1)], no_prices, now=NOW)
        stats = aggregator.performance(report)
        assert stats.sharpe_ratio == 0.0
        assert stats.volatility == 0.0

    def test_empty_report(self, engine, aggregator):
        """Empty reports give zero-valued stats."""
        stats = aggregator.performance(engine.compute_portfolio([], no_prices, now=NOW))
        assert stats.win_rate == 0.0
        assert stats.max_drawdown == 0.0
        assert stats.average_win == Decimal("0")
