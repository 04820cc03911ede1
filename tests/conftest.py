"""Pytest fixtures and utilities for the PulsePnL test suite."""
import itertools

import pytest
import pytest_asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from pulsepnl.accounting.normalizer import TransactionNormalizer
from pulsepnl.core.engine import PnLEngine
from pulsepnl.core.models import TradeDirection, TradeEvent
from pulsepnl.reporting.aggregator import ReportAggregator
from pulsepnl.storage.database import Database


WALLET = "0x" + "a" * 40
COUNTERPARTY = "0x" + "f" * 40
TOKEN_A = "0x" + "1" * 40
TOKEN_B = "0x" + "2" * 40
TOKEN_C = "0x" + "3" * 40
BLACKLISTED = "0x" + "9" * 40

BASE_TIME = datetime(2025, 8, 15, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# Event Fixtures
# =============================================================================

@pytest.fixture
def make_event():
    """Factory for TradeEvents with unique, ordered external refs."""
    counter = itertools.count(1)

    def _make(
        direction: TradeDirection,
        token_amount,
        quote_amount,
        token_id: str = TOKEN_A,
        minutes: float = 0,
        ref: Optional[str] = None,
        token_symbol: Optional[str] = None,
    ) -> TradeEvent:
        n = next(counter)
        return TradeEvent(
            token_id=token_id,
            direction=direction,
            token_amount=Decimal(str(token_amount)),
            quote_amount=Decimal(str(quote_amount)),
            timestamp=BASE_TIME + timedelta(minutes=minutes),
            external_ref=ref or f"0x{n:064x}:000000",
            block_number=1000 + n,
            token_symbol=token_symbol,
        )

    return _make


@pytest.fixture
def buy(make_event):
    """Shortcut factory for buy events."""
    def _buy(token_amount, quote_amount, **kwargs) -> TradeEvent:
        return make_event(TradeDirection.BUY, token_amount, quote_amount, **kwargs)
    return _buy


@pytest.fixture
def sell(make_event):
    """Shortcut factory for sell events."""
    def _sell(token_amount, quote_amount, **kwargs) -> TradeEvent:
        return make_event(TradeDirection.SELL, token_amount, quote_amount, **kwargs)
    return _sell


@pytest.fixture
def raw_transfer():
    """Factory for raw transfer dictionaries as delivered by an indexer."""
    def _make(**overrides) -> dict:
        record = {
            "token_address": TOKEN_A,
            "from_address": COUNTERPARTY,
            "to_address": WALLET,
            "token_amount": 5 * 10**18,
            "token_decimals": 18,
            "quote_amount": 10 * 10**18,
            "quote_decimals": 18,
            "transaction_hash": "0x" + "ab" * 32,
            "block_timestamp": BASE_TIME,
            "log_index": 3,
            "block_number": 123456,
            "token_symbol": "TKA",
        }
        record.update(overrides)
        return record
    return _make


# =============================================================================
# Component Fixtures
# =============================================================================

@pytest.fixture
def normalizer():
    """Normalizer for the test wallet with one blacklisted token."""
    return TransactionNormalizer(WALLET, blacklist=[BLACKLISTED])


@pytest.fixture
def engine():
    """PnL engine with USD display currency."""
    return PnLEngine(display_currency="USD")


@pytest.fixture
def aggregator():
    """Report aggregator in UTC."""
    return ReportAggregator(report_timezone="UTC", top_limit=5)


@pytest.fixture
def no_prices():
    """Price lookup that knows no prices."""
    return lambda token_id: None


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest_asyncio.fixture
async def test_database():
    """Create an in-memory test database."""
    db = Database("sqlite+aiosqlite:///:memory:")
    await db.initialize()
    yield db
    await db.close()
