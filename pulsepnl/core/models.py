"""Data models for the PulsePnL tracker.

This module defines the data structures shared by the accounting pipeline:
- Raw transfer records as delivered by the indexer/RPC collaborators
- Normalized trade events consumed by the position ledger
- Ledger state (lots and positions)
- Immutable report snapshots handed to dashboards and report writers

All token and quote amounts use Decimal for precision.
All timestamps are timezone-aware UTC datetime objects.
"""

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from enum import Enum
from typing import Deque, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pulsepnl.utils.decimals import (ACCOUNTING_CONTEXT, ZERO, mul, quantize,
                                     safe_div)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalize aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# =============================================================================
# Enums
# =============================================================================

class TradeDirection(str, Enum):
    """Trade direction relative to the tracked wallet."""
    BUY = "buy"                   # Tokens flowed into the wallet
    SELL = "sell"                 # Tokens flowed out of the wallet


class RejectionReason(str, Enum):
    """Why a raw record never became a TradeEvent."""
    BLACKLISTED = "blacklisted"
    NON_POSITIVE_AMOUNT = "non_positive_amount"
    SELF_TRANSFER = "self_transfer"
    UNRELATED = "unrelated"       # Wallet is neither sender nor receiver
    MALFORMED = "malformed"
    BEFORE_TRACKING_START = "before_tracking_start"


# =============================================================================
# Input Models
# =============================================================================

class RawTransfer(BaseModel):
    """Token transfer record as delivered by the indexer.

    Amounts are raw integers in the token's smallest unit, exactly as they
    appear on chain. The quote amount is the native currency exchanged for
    the tokens in the same transaction.

    Attributes:
        token_address: Token contract address
        from_address: Sender address
        to_address: Receiver address
        token_amount: Raw token amount (smallest units)
        token_decimals: Token decimals used to scale token_amount
        quote_amount: Raw native currency amount (smallest units)
        quote_decimals: Native currency decimals (normalizer default when None)
        transaction_hash: Transaction hash
        block_timestamp: Block time (naive values are treated as UTC)
        log_index: Position of the transfer log within the transaction
        block_number: Block height
        token_symbol: Token ticker, when known
        token_name: Token name, when known
    """

    token_address: str = Field(..., description="Token contract address")
    from_address: str = Field(..., description="Sender address")
    to_address: str = Field(..., description="Receiver address")
    token_amount: str = Field(..., description="Raw token amount")
    token_decimals: int = Field(default=18, ge=0, le=77, description="Token decimals")
    quote_amount: str = Field(..., description="Raw quote amount")
    quote_decimals: Optional[int] = Field(default=None, ge=0, le=77, description="Quote decimals")
    transaction_hash: str = Field(..., min_length=1, description="Transaction hash")
    block_timestamp: datetime = Field(..., description="Block time")
    log_index: int = Field(default=0, ge=0, description="Log index within transaction")
    block_number: Optional[int] = Field(default=None, description="Block height")
    token_symbol: Optional[str] = Field(default=None, description="Token ticker")
    token_name: Optional[str] = Field(default=None, description="Token name")

    @field_validator("token_amount", "quote_amount", mode="before")
    @classmethod
    def stringify_amount(cls, v):
        """Accept raw integer amounts as int or str."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("block_timestamp")
    @classmethod
    def block_timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class TradeEvent(BaseModel):
    """Canonical buy/sell event for one token, relative to the tracked wallet.

    Immutable once created. Both amounts must be strictly positive; the
    per-unit trade price is ``quote_amount / token_amount``.
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    token_id: str = Field(..., min_length=1, description="Token contract address")
    direction: TradeDirection = Field(..., description="Buy or sell")
    token_amount: Decimal = Field(..., gt=0, description="Token quantity")
    quote_amount: Decimal = Field(..., gt=0, description="Quote currency exchanged")
    timestamp: datetime = Field(..., description="Event time (UTC)")
    external_ref: str = Field(..., min_length=1, description="Unique event reference")
    block_number: Optional[int] = Field(default=None, description="Block height")
    token_symbol: Optional[str] = Field(default=None, description="Token ticker")

    @field_validator("token_id")
    @classmethod
    def normalize_token_id(cls, v: str) -> str:
        v = v.strip().lower()
        if not v:
            raise ValueError("token_id must not be empty")
        return v

    @field_validator("timestamp")
    @classmethod
    def timestamp_utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)

    @property
    def is_buy(self) -> bool:
        return self.direction == TradeDirection.BUY

    @property
    def unit_price(self) -> Decimal:
        """Quote paid or received per token."""
        return safe_div(self.quote_amount, self.token_amount)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        """Total replay order: time first, then the unique reference."""
        return (self.timestamp, self.external_ref)


# =============================================================================
# Ledger State
# =============================================================================

@dataclass
class Lot:
    """Quantity acquired by one buy, consumed front-first by sells."""

    token_amount_remaining: Decimal
    cost_remaining: Decimal           # Quote cost of the unsold remainder
    acquired_at: datetime
    source_ref: str = ""

    @property
    def unit_cost_quote(self) -> Decimal:
        return safe_div(self.cost_remaining, self.token_amount_remaining)


class RealizedSale(BaseModel):
    """Realized outcome of a single sell event after FIFO matching."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    token_id: str
    external_ref: str
    timestamp: datetime
    token_amount: Decimal
    proceeds: Decimal
    cost_basis: Decimal
    realized_pnl: Decimal
    oversold_amount: Decimal = Field(default=ZERO, description="Amount sold beyond tracked lots")

    @property
    def is_anomalous(self) -> bool:
        return self.oversold_amount > 0


@dataclass
class Position:
    """Complete mutable trading state for one token.

    Owned by the PositionLedger and rebuilt from scratch on every replay.
    A position with zero balance is closed but kept for realized reporting.
    """

    token_id: str
    token_symbol: Optional[str] = None

    # Running token totals
    total_bought: Decimal = ZERO
    total_sold: Decimal = ZERO
    current_balance: Decimal = ZERO

    # Running quote totals
    total_quote_spent: Decimal = ZERO
    total_quote_received: Decimal = ZERO

    # Realized accounting
    realized_pnl: Decimal = ZERO
    cost_basis_sold: Decimal = ZERO
    lot_queue: Deque[Lot] = field(default_factory=deque)
    realizations: List[RealizedSale] = field(default_factory=list)

    # Over-sell anomaly tracking
    oversold: bool = False
    oversold_amount: Decimal = ZERO

    # Activity
    first_trade_at: Optional[datetime] = None
    last_trade_at: Optional[datetime] = None
    trade_count: int = 0
    buy_count: int = 0
    sell_count: int = 0

    @property
    def is_active(self) -> bool:
        return self.current_balance > 0

    @property
    def remaining_token_amount(self) -> Decimal:
        return sum((lot.token_amount_remaining for lot in self.lot_queue), ZERO)

    @property
    def remaining_cost_basis(self) -> Decimal:
        """Quote cost of the tokens still held, from the live lot queue."""
        return sum((lot.cost_remaining for lot in self.lot_queue), ZERO)

    @property
    def average_remaining_cost(self) -> Decimal:
        """Weighted average unit cost of the remaining lots.

        Differs from average_buy_price once any sells have consumed lots.
        """
        return safe_div(self.remaining_cost_basis, self.remaining_token_amount)

    @property
    def average_buy_price(self) -> Decimal:
        """Lifetime average buy price."""
        return safe_div(self.total_quote_spent, self.total_bought)

    @property
    def average_sell_price(self) -> Decimal:
        return safe_div(self.total_quote_received, self.total_sold)


# =============================================================================
# Report Models
# =============================================================================

class HoldTime(BaseModel):
    """Time between first and last trade, in whole units."""
    model_config = ConfigDict(frozen=True)

    days: int = Field(default=0, ge=0)
    hours: int = Field(default=0, ge=0, lt=24, description="Hours beyond whole days")
    total_seconds: int = Field(default=0, ge=0)

    @property
    def total_hours(self) -> int:
        return self.total_seconds // 3600

    @property
    def total(self) -> str:
        """Human readable form, e.g. '3d 4h'."""
        return f"{self.days}d {self.hours}h"


class PositionSummary(BaseModel):
    """Per-token PnL projection of a Position at report time."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    token_id: str
    token_symbol: Optional[str] = None

    # Trading
    total_bought: Decimal
    total_sold: Decimal
    current_balance: Decimal
    total_quote_spent: Decimal
    total_quote_received: Decimal
    trade_count: int
    buy_count: int
    sell_count: int
    is_active: bool

    # Pricing
    average_buy_price: Decimal
    average_sell_price: Decimal
    average_remaining_cost: Decimal
    remaining_cost_basis: Decimal
    current_price: Optional[Decimal] = None
    price_unavailable: bool = False

    # PnL
    realized_pnl: Decimal
    unrealized_pnl: Decimal
    total_pnl: Decimal
    realized_pnl_percent: Decimal
    unrealized_pnl_percent: Decimal
    total_pnl_percent: Decimal

    # Anomalies
    oversold: bool = False
    oversold_amount: Decimal = ZERO

    # Timing
    first_trade_at: Optional[datetime] = None
    last_trade_at: Optional[datetime] = None
    hold_time: HoldTime = Field(default_factory=HoldTime)


class PortfolioReport(BaseModel):
    """Immutable portfolio snapshot produced by one computation cycle.

    Unrealized totals only include positions with an available price;
    positions without one are flagged and counted in
    ``unpriced_positions_count`` instead of being valued at zero.
    """
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    generated_at: datetime

    # Aggregates
    total_realized_pnl: Decimal = ZERO
    total_unrealized_pnl: Decimal = ZERO
    active_positions_count: int = 0
    closed_positions_count: int = 0
    total_trade_count: int = 0
    unpriced_positions_count: int = 0
    anomaly_count: int = 0

    # Breakdown
    positions: Tuple[PositionSummary, ...] = ()
    realizations: Tuple[RealizedSale, ...] = ()
    events: Tuple[TradeEvent, ...] = ()

    # Display currency conversion
    display_currency: str = "USD"
    quote_to_display_rate: Optional[Decimal] = None

    @property
    def total_pnl(self) -> Decimal:
        with localcontext(ACCOUNTING_CONTEXT):
            return quantize(self.total_realized_pnl + self.total_unrealized_pnl)

    @property
    def has_anomalies(self) -> bool:
        return self.anomaly_count > 0

    @property
    def total_pnl_display(self) -> Optional[Decimal]:
        return self.to_display(self.total_pnl)

    def to_display(self, amount: Decimal) -> Optional[Decimal]:
        """Convert a quote amount to the display currency (None without a rate)."""
        if self.quote_to_display_rate is None:
            return None
        return quantize(mul(amount, self.quote_to_display_rate))

    def get_position(self, token_id: str) -> Optional[PositionSummary]:
        token_id = token_id.lower()
        for position in self.positions:
            if position.token_id == token_id:
                return position
        return None


class WindowedSummary(BaseModel):
    """Realized activity inside a [window_start, window_end) interval."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    window_start: datetime
    window_end: datetime
    realized_pnl: Decimal = ZERO
    buy_count: int = 0
    sell_count: int = 0
    quote_spent: Decimal = ZERO
    quote_received: Decimal = ZERO
    tokens_traded: int = 0

    @property
    def trade_count(self) -> int:
        return self.buy_count + self.sell_count


class PerformanceStats(BaseModel):
    """Trading performance ratios derived from a report."""
    model_config = ConfigDict(frozen=True, json_encoders={Decimal: str})

    win_rate: float = 0.0
    average_win: Decimal = ZERO
    average_loss: Decimal = ZERO
    profit_factor: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown: float = 0.0
    volatility: float = 0.0
