"""Database storage for the trade event log and report snapshots."""
from typing import Iterable, List, Optional
from datetime import date, datetime, timezone
from decimal import Decimal

import structlog
from sqlalchemy import Column, String, DateTime, Integer, JSON, func, select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import AsyncEngine

from pulsepnl.core.models import PortfolioReport, TradeDirection, TradeEvent, ensure_utc
from pulsepnl.core.config import database_config

logger = structlog.get_logger(__name__)

# Stay well below SQLite's bound-parameter limit in IN (...) lookups
REF_LOOKUP_CHUNK_SIZE = 500

Base = declarative_base()


class TradeEventModel(Base):
    """SQLAlchemy model for normalized trade events (append-only)."""
    __tablename__ = 'trade_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    external_ref = Column(String, nullable=False, unique=True)
    token_id = Column(String, nullable=False, index=True)
    token_symbol = Column(String, nullable=True)
    direction = Column(String, nullable=False)
    # Exact decimal strings; SQLite would round numeric columns through float
    token_amount = Column(String, nullable=False)
    quote_amount = Column(String, nullable=False)
    timestamp = Column(DateTime, nullable=False, index=True)
    block_number = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc))


class PortfolioSnapshotModel(Base):
    """SQLAlchemy model for daily/weekly portfolio snapshots."""
    __tablename__ = 'portfolio_snapshots'

    id = Column(String, primary_key=True)  # period:YYYY-MM-DD
    period = Column(String, nullable=False)
    snapshot_date = Column(String, nullable=False)
    generated_at = Column(DateTime, nullable=False)
    total_realized_pnl = Column(String, nullable=False)
    total_unrealized_pnl = Column(String, nullable=False)
    total_pnl = Column(String, nullable=False)
    quote_to_display_rate = Column(String, nullable=True)
    active_positions = Column(Integer, default=0)
    closed_positions = Column(Integer, default=0)
    trade_count = Column(Integer, default=0)
    unpriced_positions = Column(Integer, default=0)
    anomaly_count = Column(Integer, default=0)
    report_data = Column(JSON, default=dict)


class Database:
    """Async database interface."""

    def __init__(self, database_url: Optional[str] = None):
        # Convert SQLite URL to async version if needed
        db_url = database_url or database_config.database_url
        if db_url.startswith('sqlite:///') and not db_url.startswith('sqlite+aiosqlite:///'):
            db_url = db_url.replace('sqlite:///', 'sqlite+aiosqlite:///')

        self.engine: AsyncEngine = create_async_engine(db_url, echo=False)
        self.session_maker = async_sessionmaker(self.engine, class_=AsyncSession)

    async def initialize(self):
        """Create tables."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        """Close database connection."""
        await self.engine.dispose()

    # Event log operations
    async def append_events(self, events: Iterable[TradeEvent]) -> int:
        """Append events whose external_ref is not stored yet.

        Returns:
            Number of events inserted
        """
        pending = {}
        for event in events:
            pending.setdefault(event.external_ref, event)
        if not pending:
            return 0

        refs = list(pending)
        async with self.session_maker() as session:
            existing = set()
            for start in range(0, len(refs), REF_LOOKUP_CHUNK_SIZE):
                chunk = refs[start:start + REF_LOOKUP_CHUNK_SIZE]
                result = await session.execute(
                    select(TradeEventModel.external_ref).where(
                        TradeEventModel.external_ref.in_(chunk)
                    )
                )
                existing.update(result.scalars().all())

            new_events = [e for ref, e in pending.items() if ref not in existing]
            session.add_all([self._model_from_event(e) for e in new_events])
            await session.commit()

        logger.info(
            "database.events_appended",
            inserted=len(new_events),
            skipped=len(pending) - len(new_events),
        )
        return len(new_events)

    async def load_events(self, since: Optional[datetime] = None) -> List[TradeEvent]:
        """Load stored events in replay order as a fresh list."""
        async with self.session_maker() as session:
            query = select(TradeEventModel).order_by(
                TradeEventModel.timestamp, TradeEventModel.external_ref
            )
            if since is not None:
                query = query.where(TradeEventModel.timestamp >= self._naive_utc(since))

            result = await session.execute(query)
            return [self._event_from_model(m) for m in result.scalars().all()]

    async def count_events(self) -> int:
        async with self.session_maker() as session:
            result = await session.execute(select(func.count()).select_from(TradeEventModel))
            return result.scalar_one()

    # Snapshot operations
    async def save_snapshot(self, report: PortfolioReport, period: str, snapshot_date: date):
        """Save or replace the snapshot for a period and date."""
        snapshot_id = f"{period}:{snapshot_date.isoformat()}"
        report_data = report.model_dump(mode="json", exclude={"events", "realizations"})

        async with self.session_maker() as session:
            db_snapshot = await session.get(PortfolioSnapshotModel, snapshot_id)

            if db_snapshot is None:
                db_snapshot = PortfolioSnapshotModel(
                    id=snapshot_id,
                    period=period,
                    snapshot_date=snapshot_date.isoformat(),
                )
                session.add(db_snapshot)

            db_snapshot.generated_at = self._naive_utc(report.generated_at)
            db_snapshot.total_realized_pnl = str(report.total_realized_pnl)
            db_snapshot.total_unrealized_pnl = str(report.total_unrealized_pnl)
            db_snapshot.total_pnl = str(report.total_pnl)
            db_snapshot.quote_to_display_rate = (
                str(report.quote_to_display_rate)
                if report.quote_to_display_rate is not None else None
            )
            db_snapshot.active_positions = report.active_positions_count
            db_snapshot.closed_positions = report.closed_positions_count
            db_snapshot.trade_count = report.total_trade_count
            db_snapshot.unpriced_positions = report.unpriced_positions_count
            db_snapshot.anomaly_count = report.anomaly_count
            db_snapshot.report_data = report_data

            await session.commit()

        logger.info("database.snapshot_saved", snapshot_id=snapshot_id)

    async def get_snapshot(self, period: str, snapshot_date: date) -> Optional[dict]:
        """Get a stored snapshot as a dictionary."""
        async with self.session_maker() as session:
            db_snapshot = await session.get(
                PortfolioSnapshotModel, f"{period}:{snapshot_date.isoformat()}"
            )

            if db_snapshot is None:
                return None

            return {
                "period": db_snapshot.period,
                "snapshot_date": db_snapshot.snapshot_date,
                "generated_at": ensure_utc(db_snapshot.generated_at),
                "total_realized_pnl": Decimal(db_snapshot.total_realized_pnl),
                "total_unrealized_pnl": Decimal(db_snapshot.total_unrealized_pnl),
                "total_pnl": Decimal(db_snapshot.total_pnl),
                "quote_to_display_rate": (
                    Decimal(db_snapshot.quote_to_display_rate)
                    if db_snapshot.quote_to_display_rate is not None else None
                ),
                "active_positions": db_snapshot.active_positions,
                "closed_positions": db_snapshot.closed_positions,
                "trade_count": db_snapshot.trade_count,
                "unpriced_positions": db_snapshot.unpriced_positions,
                "anomaly_count": db_snapshot.anomaly_count,
                "report_data": db_snapshot.report_data or {},
            }

    # Helpers
    @staticmethod
    def _naive_utc(value: datetime) -> datetime:
        return ensure_utc(value).replace(tzinfo=None)

    def _model_from_event(self, event: TradeEvent) -> TradeEventModel:
        """Convert TradeEvent to DB model."""
        return TradeEventModel(
            external_ref=event.external_ref,
            token_id=event.token_id,
            token_symbol=event.token_symbol,
            direction=event.direction.value,
            token_amount=str(event.token_amount),
            quote_amount=str(event.quote_amount),
            timestamp=self._naive_utc(event.timestamp),
            block_number=event.block_number,
        )

    def _event_from_model(self, model: TradeEventModel) -> TradeEvent:
        """Convert DB model to TradeEvent object."""
        return TradeEvent(
            token_id=model.token_id,
            direction=TradeDirection(model.direction),
            token_amount=Decimal(model.token_amount),
            quote_amount=Decimal(model.quote_amount),
            timestamp=ensure_utc(model.timestamp),
            external_ref=model.external_ref,
            block_number=model.block_number,
            token_symbol=model.token_symbol,
        )
