"""Unit tests for PulsePnL data models and decimal helpers."""
import pytest
from datetime import datetime, timezone
from decimal import Decimal

from pydantic import ValidationError

from pulsepnl.core.models import (HoldTime, Lot, Position, PortfolioReport,
                                  RawTransfer, RejectionReason, TradeDirection,
                                  TradeEvent, WindowedSummary, ensure_utc)
from pulsepnl.utils.decimals import (from_base_units, percent, quantize,
                                     safe_div, to_decimal)
from tests.conftest import BASE_TIME, TOKEN_A


# =============================================================================
# Enum Tests
# =============================================================================

class TestEnums:
    """Test enumeration values."""

    def test_trade_direction_values(self):
        assert TradeDirection.BUY.value == "buy"
        assert TradeDirection.SELL.value == "sell"

    def test_rejection_reason_values(self):
        assert RejectionReason.BLACKLISTED.value == "blacklisted"
        assert RejectionReason.NON_POSITIVE_AMOUNT.value == "non_positive_amount"
        assert RejectionReason.SELF_TRANSFER.value == "self_transfer"
        assert RejectionReason.UNRELATED.value == "unrelated"
        assert RejectionReason.MALFORMED.value == "malformed"
        assert RejectionReason.BEFORE_TRACKING_START.value == "before_tracking_start"


# =============================================================================
# TradeEvent Tests
# =============================================================================

class TestTradeEvent:
    """Test the canonical trade event."""

    def _event(self, **overrides):
        fields = dict(
            token_id=TOKEN_A,
            direction=TradeDirection.BUY,
            token_amount=Decimal("4"),
            quote_amount=Decimal("10"),
            timestamp=BASE_TIME,
            external_ref="0xabc:000001",
        )
        fields.update(overrides)
        return TradeEvent(**fields)

    def test_unit_price(self):
        assert self._event().unit_price == Decimal("2.5")

    @pytest.mark.parametrize("field", ["token_amount", "quote_amount"])
    def test_non_positive_amount_invalid(self, field):
        """Zero amounts are a validation error."""
        with pytest.raises(ValidationError):
            self._event(**{field: Decimal("0")})

    def test_events_are_immutable(self):
        event = self._event()
        with pytest.raises(ValidationError):
            event.token_amount = Decimal("5")

    def test_token_id_lowercased(self):
        assert self._event(token_id="0xABCDEF").token_id == "0xabcdef"

    def test_sort_key(self):
        event = self._event()
        assert event.sort_key == (BASE_TIME, "0xabc:000001")
        assert event.is_buy

    def test_naive_timestamp_becomes_utc(self):
        event = self._event(timestamp=datetime(2025, 8, 15, 12, 0))
        assert event.timestamp == BASE_TIME


class TestRawTransfer:
    """Test raw transfer validation."""

    def test_integer_amounts_accepted(self):
        record = RawTransfer(
            token_address=TOKEN_A,
            from_address="0x1",
            to_address="0x2",
            token_amount=10**30,
            quote_amount="5",
            transaction_hash="0xabc",
            block_timestamp=BASE_TIME,
        )
        assert record.token_amount == str(10**30)
        assert record.token_decimals == 18

    def test_missing_hash_invalid(self):
        with pytest.raises(ValidationError):
            RawTransfer(
                token_address=TOKEN_A,
                from_address="0x1",
                to_address="0x2",
                token_amount=1,
                quote_amount=1,
                transaction_hash="",
                block_timestamp=BASE_TIME,
            )


# =============================================================================
# Ledger State Tests
# =============================================================================

class TestPosition:
    """Test Position derived values."""

    def test_empty_position(self):
        position = Position(token_id=TOKEN_A)
        assert not position.is_active
        assert position.average_buy_price == Decimal("0")
        assert position.average_remaining_cost == Decimal("0")
        assert position.remaining_cost_basis == Decimal("0")

    def test_remaining_cost_from_lots(self):
        position = Position(token_id=TOKEN_A, current_balance=Decimal("3"))
        position.lot_queue.append(Lot(Decimal("1"), Decimal("2"), BASE_TIME))
        position.lot_queue.append(Lot(Decimal("2"), Decimal("8"), BASE_TIME))

        assert position.remaining_token_amount == Decimal("3")
        assert position.remaining_cost_basis == Decimal("10")
        assert position.lot_queue[1].unit_cost_quote == Decimal("4")


# =============================================================================
# Report Model Tests
# =============================================================================

class TestReportModels:
    """Test report snapshot models."""

    def test_hold_time_format(self):
        assert HoldTime(days=2, hours=5, total_seconds=190800).total == "2d 5h"

    def test_hold_time_hours_below_a_day(self):
        with pytest.raises(ValidationError):
            HoldTime(days=0, hours=24)

    def test_report_totals(self):
        report = PortfolioReport(
            generated_at=BASE_TIME,
            total_realized_pnl=Decimal("3"),
            total_unrealized_pnl=Decimal("-1"),
        )
        assert report.total_pnl == Decimal("2")
        assert report.total_pnl_display is None
        assert report.get_position(TOKEN_A) is None

    def test_total_pnl_exact_for_large_values(self):
        report = PortfolioReport(
            generated_at=BASE_TIME,
            total_realized_pnl=Decimal("98765432109876.123456789012345678"),
            total_unrealized_pnl=Decimal("1.000000000000000001"),
        )
        assert report.total_pnl == Decimal("98765432109877.123456789012345679")

    def test_windowed_trade_count(self):
        summary = WindowedSummary(
            window_start=BASE_TIME, window_end=BASE_TIME, buy_count=2, sell_count=3
        )
        assert summary.trade_count == 5

    def test_report_json_keeps_decimals_exact(self):
        report = PortfolioReport(
            generated_at=BASE_TIME, total_realized_pnl=Decimal("0.123456789012345678")
        )
        data = report.model_dump(mode="json")
        assert Decimal(data["total_realized_pnl"]) == Decimal("0.123456789012345678")


# =============================================================================
# Decimal Helper Tests
# =============================================================================

class TestDecimalHelpers:
    """Test decimal helpers."""

    def test_from_base_units(self):
        assert from_base_units("1500000000000000000", 18) == Decimal("1.5")
        assert from_base_units(1, 18) == Decimal("1e-18")

    def test_from_base_units_large_value_exact(self):
        raw = "123456789012345678901234567890123456789"
        assert from_base_units(raw, 18) == Decimal("123456789012345678901.234567890123456789")

    def test_from_base_units_rejects_fraction(self):
        with pytest.raises(ValueError):
            from_base_units("1.5", 18)

    def test_safe_div_zero(self):
        assert safe_div(Decimal("5"), Decimal("0")) == Decimal("0")

    def test_percent(self):
        assert percent(Decimal("1"), Decimal("3")) == Decimal("33.3333")
        assert percent(Decimal("1"), Decimal("0")) == Decimal("0")

    def test_quantize_half_even(self):
        assert quantize(Decimal("0.0000000000000000005")) == Decimal("0")
        assert quantize(Decimal("0.0000000000000000015")) == Decimal("0.000000000000000002")

    def test_to_decimal(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert to_decimal("2") == Decimal("2")
        with pytest.raises(ValueError):
            to_decimal("abc")

    def test_ensure_utc(self):
        assert ensure_utc(datetime(2025, 1, 1)).tzinfo == timezone.utc
