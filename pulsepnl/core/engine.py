"""PnL engine and periodic portfolio tracker.

``PnLEngine.compute_portfolio`` is a pure function of an event snapshot and a
price lookup: every call replays the full event history into a fresh ledger,
so a rebuild from the append-only log always reproduces the same report, no
matter in which order late blocks arrived.

``PortfolioTracker`` drives the engine on a fixed interval with injected
event-source and price-oracle collaborators.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal, localcontext
from typing import (Awaitable, Callable, Dict, Iterable, List, Mapping,
                    Optional, Sequence, Tuple, Union)

import structlog

from pulsepnl.accounting.ledger import PositionLedger
from pulsepnl.accounting.normalizer import TransactionNormalizer
from pulsepnl.core.models import (HoldTime, Position, PortfolioReport,
                                  PositionSummary, RawTransfer, TradeEvent,
                                  ensure_utc)
from pulsepnl.storage.database import Database
from pulsepnl.utils.decimals import (ACCOUNTING_CONTEXT, ZERO, mul, percent,
                                     quantize, to_decimal)

logger = structlog.get_logger(__name__)

PriceLookup = Callable[[str], Optional[Decimal]]
EventSource = Callable[[], Awaitable[Sequence[Union[TradeEvent, RawTransfer, Mapping]]]]
PriceOracle = Callable[[Sequence[str]], Awaitable[Mapping[str, Optional[Decimal]]]]
RateSource = Callable[[], Awaitable[Optional[Decimal]]]


def hold_time_between(first: Optional[datetime], last: Optional[datetime]) -> HoldTime:
    """Whole days/hours between two trade times; zero when either is missing."""
    if first is None or last is None or last <= first:
        return HoldTime()
    total_seconds = int((last - first).total_seconds())
    days, remainder = divmod(total_seconds, 86400)
    return HoldTime(days=days, hours=remainder // 3600, total_seconds=total_seconds)


def _content_key(event: TradeEvent) -> tuple:
    """Replay order, then the remaining fields as a deterministic tie-break."""
    return event.sort_key + (
        event.token_id,
        event.direction.value,
        event.token_amount,
        event.quote_amount,
        event.block_number if event.block_number is not None else -1,
        event.token_symbol or "",
    )


class PnLEngine:
    """
    Computes portfolio PnL from a snapshot of trade events.

    Responsibilities:
    - De-duplicates events by external reference
    - Orders events by (timestamp, external_ref) for deterministic FIFO
    - Replays events into a fresh PositionLedger on every call
    - Values open positions against the supplied price lookup
    - Aggregates per-token summaries into a PortfolioReport

    The engine holds no state between calls.
    """

    def __init__(self, display_currency: str = "USD"):
        self.display_currency = display_currency

    @staticmethod
    def prepare_events(events: Iterable[TradeEvent]) -> Tuple[TradeEvent, ...]:
        """Copy, de-duplicate and sort an event collection into replay order.

        Events are sorted on their full content before de-duplication, so when
        two events share an external_ref the one kept does not depend on the
        input order.
        """
        ordered = sorted(events, key=_content_key)

        unique: Dict[str, TradeEvent] = {}
        duplicates = 0
        for event in ordered:
            kept = unique.get(event.external_ref)
            if kept is None:
                unique[event.external_ref] = event
                continue
            duplicates += 1
            if kept != event:
                logger.warning(
                    "engine.conflicting_duplicate",
                    external_ref=event.external_ref,
                    kept_direction=kept.direction.value,
                    dropped_direction=event.direction.value,
                )

        if duplicates:
            logger.info("engine.duplicates_dropped", count=duplicates)

        return tuple(unique.values())

    def compute_portfolio(
        self,
        events: Iterable[TradeEvent],
        current_price_of: PriceLookup,
        quote_to_display_rate: Optional[Decimal] = None,
        now: Optional[datetime] = None,
    ) -> PortfolioReport:
        """Replay all events and build a portfolio report.

        Args:
            events: Trade events in any order; duplicates are dropped
            current_price_of: Quote price per token, None when unavailable
            quote_to_display_rate: Display-currency value of one quote unit
            now: Report timestamp (defaults to current UTC time)

        Returns:
            Immutable PortfolioReport snapshot
        """
        snapshot = self.prepare_events(events)
        generated_at = ensure_utc(now) if now else datetime.now(timezone.utc)

        ledger = PositionLedger()
        positions = ledger.replay(snapshot)

        with localcontext(ACCOUNTING_CONTEXT):
            summaries: List[PositionSummary] = []
            for position in positions:
                price = self._lookup_price(current_price_of, position) if position.is_active else None
                summaries.append(self.summarize_position(position, price))

            total_realized = sum((s.realized_pnl for s in summaries), ZERO)
            total_unrealized = sum(
                (s.unrealized_pnl for s in summaries if not s.price_unavailable), ZERO
            )

        realizations = sorted(
            (sale for position in positions for sale in position.realizations),
            key=lambda sale: (sale.timestamp, sale.external_ref),
        )

        report = PortfolioReport(
            generated_at=generated_at,
            total_realized_pnl=total_realized,
            total_unrealized_pnl=total_unrealized,
            active_positions_count=sum(1 for s in summaries if s.is_active),
            closed_positions_count=sum(1 for s in summaries if not s.is_active),
            total_trade_count=len(snapshot),
            unpriced_positions_count=sum(1 for s in summaries if s.price_unavailable),
            anomaly_count=sum(1 for s in summaries if s.oversold),
            positions=tuple(summaries),
            realizations=tuple(realizations),
            events=snapshot,
            display_currency=self.display_currency,
            quote_to_display_rate=quote_to_display_rate,
        )

        logger.info(
            "engine.portfolio_computed",
            events=len(snapshot),
            positions=len(summaries),
            active=report.active_positions_count,
            realized=str(report.total_realized_pnl),
            unrealized=str(report.total_unrealized_pnl),
            unpriced=report.unpriced_positions_count,
            anomalies=report.anomaly_count,
        )
        return report

    def summarize_position(
        self, position: Position, current_price: Optional[Decimal]
    ) -> PositionSummary:
        """Project a replayed Position into an immutable PositionSummary.

        Unrealized PnL uses the weighted average cost of the remaining lots,
        not the lifetime average buy price.
        """
        price_unavailable = position.is_active and current_price is None

        unrealized = ZERO
        if position.is_active and current_price is not None:
            unrealized = mul(
                position.current_balance,
                current_price - position.average_remaining_cost,
            )

        realized = position.realized_pnl
        remaining_cost = position.remaining_cost_basis
        total = realized + unrealized

        return PositionSummary(
            token_id=position.token_id,
            token_symbol=position.token_symbol,
            total_bought=quantize(position.total_bought),
            total_sold=quantize(position.total_sold),
            current_balance=quantize(position.current_balance),
            total_quote_spent=quantize(position.total_quote_spent),
            total_quote_received=quantize(position.total_quote_received),
            trade_count=position.trade_count,
            buy_count=position.buy_count,
            sell_count=position.sell_count,
            is_active=position.is_active,
            average_buy_price=quantize(position.average_buy_price),
            average_sell_price=quantize(position.average_sell_price),
            average_remaining_cost=quantize(position.average_remaining_cost),
            remaining_cost_basis=quantize(remaining_cost),
            current_price=current_price,
            price_unavailable=price_unavailable,
            realized_pnl=quantize(realized),
            unrealized_pnl=quantize(unrealized),
            total_pnl=quantize(total),
            realized_pnl_percent=percent(realized, position.cost_basis_sold),
            unrealized_pnl_percent=percent(unrealized, remaining_cost),
            total_pnl_percent=percent(total, position.total_quote_spent),
            oversold=position.oversold,
            oversold_amount=quantize(position.oversold_amount),
            first_trade_at=position.first_trade_at,
            last_trade_at=position.last_trade_at,
            hold_time=hold_time_between(position.first_trade_at, position.last_trade_at),
        )

    @staticmethod
    def _lookup_price(current_price_of: PriceLookup, position: Position) -> Optional[Decimal]:
        """Ask the price lookup for one token, isolating its failures."""
        try:
            price = current_price_of(position.token_id)
        except Exception as e:
            logger.warning(
                "engine.price_lookup_failed",
                token_id=position.token_id,
                error=str(e),
            )
            return None

        if price is None:
            return None

        try:
            price = to_decimal(price)
        except ValueError:
            logger.warning("engine.price_invalid", token_id=position.token_id, price=repr(price))
            return None

        if not price.is_finite():
            logger.warning("engine.price_invalid", token_id=position.token_id, price=str(price))
            return None

        if price < 0:
            logger.warning("engine.price_negative", token_id=position.token_id, price=str(price))
            return None
        return price


class PortfolioTracker:
    """
    Runs PnL computation cycles on a fixed interval.

    Collaborators are injected:
    - event_source: async callable returning raw transfers or TradeEvents
    - price_oracle: async callable mapping token ids to quote prices
    - display_rate_source: async callable returning the quote currency's
      value in the display currency

    Overlapping cycles are skipped rather than queued. Each cycle computes on
    a snapshot copy of the event log and of the prices.
    """

    def __init__(
        self,
        engine: PnLEngine,
        event_source: EventSource,
        price_oracle: PriceOracle,
        normalizer: Optional[TransactionNormalizer] = None,
        database: Optional[Database] = None,
        display_rate_source: Optional[RateSource] = None,
        interval_seconds: float = 180,
    ):
        self.engine = engine
        self.event_source = event_source
        self.price_oracle = price_oracle
        self.normalizer = normalizer
        self.database = database
        self.display_rate_source = display_rate_source
        self.interval_seconds = interval_seconds

        # State
        self.latest_report: Optional[PortfolioReport] = None
        self.subscribers: List[Callable[[PortfolioReport], object]] = []
        self.cycles_completed = 0
        self.cycles_skipped = 0
        self._event_log: Dict[str, TradeEvent] = {}

        # Control
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._main_task: Optional[asyncio.Task] = None

    def subscribe(self, callback: Callable[[PortfolioReport], object]) -> None:
        """Register a consumer notified with each new report."""
        self.subscribers.append(callback)

    @property
    def is_busy(self) -> bool:
        return self._cycle_lock.locked()

    async def run_cycle(self) -> Optional[PortfolioReport]:
        """Run one computation cycle, or skip it if one is already running."""
        if self._cycle_lock.locked():
            self.cycles_skipped += 1
            logger.info("tracker.cycle_skipped")
            return None

        async with self._cycle_lock:
            logger.info("tracker.cycle_started")

            records = await self.event_source()
            await self._ingest(self._to_events(records))
            events = await self._snapshot_events()

            prices = await self._snapshot_prices(sorted({e.token_id for e in events}))
            rate = await self.display_rate_source() if self.display_rate_source else None

            report = self.engine.compute_portfolio(
                events, prices.get, quote_to_display_rate=rate
            )
            self.latest_report = report
            self.cycles_completed += 1

            await self._notify(report)

            logger.info(
                "tracker.cycle_finished",
                events=len(events),
                total_pnl=str(report.total_pnl),
            )
            return report

    async def start(self):
        """Start the periodic loop."""
        if self._running:
            return
        logger.info("tracker.starting", interval_seconds=self.interval_seconds)
        self._running = True
        self._main_task = asyncio.create_task(self._main_loop())

    async def stop(self):
        """Stop the periodic loop gracefully."""
        logger.info("tracker.stopping")
        self._running = False

        if self._main_task:
            self._main_task.cancel()
            try:
                await self._main_task
            except asyncio.CancelledError:
                pass
            self._main_task = None

        logger.info("tracker.stopped")

    async def _main_loop(self):
        while self._running:
            try:
                await self.run_cycle()
            except Exception as e:
                logger.error("tracker.cycle_failed", error=str(e), exc_info=True)
            await asyncio.sleep(self.interval_seconds)

    def _to_events(self, records: Sequence) -> List[TradeEvent]:
        events = [r for r in records if isinstance(r, TradeEvent)]
        raw = [r for r in records if not isinstance(r, TradeEvent)]
        if raw:
            if self.normalizer is None:
                raise ValueError("Raw records received but no normalizer configured")
            events.extend(self.normalizer.normalize_many(raw).events)
        return events

    async def _ingest(self, events: List[TradeEvent]) -> None:
        if self.database is not None:
            inserted = await self.database.append_events(events)
            logger.debug("tracker.events_persisted", inserted=inserted)
            return
        for event in events:
            self._event_log.setdefault(event.external_ref, event)

    async def _snapshot_events(self) -> List[TradeEvent]:
        if self.database is not None:
            return await self.database.load_events()
        return list(self._event_log.values())

    async def _snapshot_prices(self, token_ids: List[str]) -> Dict[str, Optional[Decimal]]:
        if not token_ids:
            return {}
        try:
            return dict(await self.price_oracle(token_ids))
        except Exception as e:
            logger.warning("tracker.price_oracle_failed", tokens=len(token_ids), error=str(e))
            return {}

    async def _notify(self, report: PortfolioReport) -> None:
        for subscriber in self.subscribers:
            try:
                result = subscriber(report)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("tracker.subscriber_failed", error=str(e), exc_info=True)
