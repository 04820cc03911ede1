"""Position ledger with FIFO lot matching.

Buys append a lot to the back of the position's queue; sells consume lots
from the front. Realized PnL for each consumed slice is the sell proceeds for
that slice minus the lot's cost basis.

Selling more than the tracked lots cover (missed buys, airdrops, a tracking
window that starts mid-position) is an over-sell: the excess is booked as
proceeds with zero cost basis and the position is flagged, the balance is
floored at zero.
"""

from decimal import Decimal, localcontext
from typing import Dict, Iterable, List

import structlog

from pulsepnl.core.models import Lot, Position, RealizedSale, TradeEvent
from pulsepnl.utils.decimals import ACCOUNTING_CONTEXT, ZERO, div, mul

logger = structlog.get_logger(__name__)


def _record_activity(position: Position, event: TradeEvent) -> None:
    position.trade_count += 1
    if position.first_trade_at is None:
        position.first_trade_at = event.timestamp
    position.last_trade_at = event.timestamp
    if event.token_symbol and not position.token_symbol:
        position.token_symbol = event.token_symbol


def apply_buy(position: Position, event: TradeEvent) -> Position:
    """Open a new lot for a buy event."""
    position.lot_queue.append(
        Lot(
            token_amount_remaining=event.token_amount,
            cost_remaining=event.quote_amount,
            acquired_at=event.timestamp,
            source_ref=event.external_ref,
        )
    )

    position.total_bought += event.token_amount
    position.total_quote_spent += event.quote_amount
    position.current_balance += event.token_amount
    position.buy_count += 1
    _record_activity(position, event)
    return position


def _take_share(total: Decimal, part: Decimal, whole: Decimal) -> Decimal:
    """Proportional share of total; the whole of it when part covers whole."""
    if part >= whole:
        return total
    # Multiply before dividing to keep full precision
    return div(mul(part, total), whole)


def apply_sell(position: Position, event: TradeEvent) -> Position:
    """Match a sell event against the lot queue, oldest lot first."""
    remaining_to_sell = event.token_amount
    quote_remaining = event.quote_amount
    cost_basis = ZERO
    proceeds = ZERO

    while remaining_to_sell > 0 and position.lot_queue:
        lot = position.lot_queue[0]
        consumed = min(lot.token_amount_remaining, remaining_to_sell)

        slice_cost = _take_share(lot.cost_remaining, consumed, lot.token_amount_remaining)
        slice_proceeds = _take_share(quote_remaining, consumed, remaining_to_sell)
        cost_basis += slice_cost
        proceeds += slice_proceeds

        lot.cost_remaining -= slice_cost
        lot.token_amount_remaining -= consumed
        if lot.token_amount_remaining == 0:
            position.lot_queue.popleft()
        remaining_to_sell -= consumed
        quote_remaining -= slice_proceeds

    oversold_amount = ZERO
    if remaining_to_sell > 0:
        # Zero cost basis for tokens we never saw being bought
        oversold_amount = remaining_to_sell
        proceeds += quote_remaining
        position.oversold = True
        position.oversold_amount += remaining_to_sell
        logger.warning(
            "ledger.oversell",
            token_id=position.token_id,
            external_ref=event.external_ref,
            excess=str(remaining_to_sell),
        )

    realized = proceeds - cost_basis
    position.realized_pnl += realized
    position.cost_basis_sold += cost_basis
    position.realizations.append(
        RealizedSale(
            token_id=position.token_id,
            external_ref=event.external_ref,
            timestamp=event.timestamp,
            token_amount=event.token_amount,
            proceeds=proceeds,
            cost_basis=cost_basis,
            realized_pnl=realized,
            oversold_amount=oversold_amount,
        )
    )

    position.total_sold += event.token_amount
    position.total_quote_received += event.quote_amount
    position.current_balance = max(position.current_balance - event.token_amount, ZERO)
    position.sell_count += 1
    _record_activity(position, event)
    return position


def apply_event(position: Position, event: TradeEvent) -> Position:
    """Apply one event to a single-token position."""
    if event.token_id != position.token_id:
        raise ValueError(
            f"Event for {event.token_id} applied to position {position.token_id}"
        )
    with localcontext(ACCOUNTING_CONTEXT):
        if event.is_buy:
            return apply_buy(position, event)
        return apply_sell(position, event)


class PositionLedger:
    """Per-token positions built by replaying events in order.

    The ledger does not sort; callers hand it events already in replay order.
    """

    def __init__(self):
        self._positions: Dict[str, Position] = {}

    def get_or_create(self, token_id: str) -> Position:
        """Get the position for a token, creating it on first reference."""
        token_id = token_id.lower()
        position = self._positions.get(token_id)
        if position is None:
            position = Position(token_id=token_id)
            self._positions[token_id] = position
        return position

    def apply_event(self, event: TradeEvent) -> Position:
        return apply_event(self.get_or_create(event.token_id), event)

    def replay(self, events: Iterable[TradeEvent]) -> List[Position]:
        """Apply events in the given order and return all positions."""
        for event in events:
            self.apply_event(event)
        return self.positions

    @property
    def positions(self) -> List[Position]:
        """Positions in first-seen order."""
        return list(self._positions.values())

    def __len__(self) -> int:
        return len(self._positions)

    def __contains__(self, token_id: str) -> bool:
        return token_id.lower() in self._positions
