"""Transaction normalizer.

Turns raw token transfer records into canonical TradeEvents relative to the
tracked wallet. Invalid records are rejected here and never reach the ledger.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Union

import structlog
from pydantic import ValidationError

from pulsepnl.core.models import (RawTransfer, RejectionReason, TradeDirection,
                                  TradeEvent, ensure_utc)
from pulsepnl.utils.decimals import from_base_units

logger = structlog.get_logger(__name__)


class RecordRejected(ValueError):
    """Raised when a raw record cannot become a TradeEvent."""

    def __init__(self, reason: RejectionReason, detail: str = ""):
        self.reason = reason
        self.detail = detail
        message = reason.value if not detail else f"{reason.value}: {detail}"
        super().__init__(message)


@dataclass
class NormalizationBatch:
    """Result of normalizing a batch of raw records."""

    events: List[TradeEvent] = field(default_factory=list)
    rejected: Dict[RejectionReason, int] = field(default_factory=dict)

    @property
    def rejected_count(self) -> int:
        return sum(self.rejected.values())


def make_external_ref(transaction_hash: str, log_index: int) -> str:
    """Unique reference for one transfer log.

    The zero-padded log index keeps transfers of one transaction in log order
    when references are compared as strings.
    """
    return f"{transaction_hash.lower()}:{log_index:06d}"


class TransactionNormalizer:
    """Classifies raw transfers as buys or sells for one wallet.

    Incoming transfers are buys, outgoing transfers are sells. Transfers
    before ``tracking_start`` are dropped. Records that do not carry their own
    quote decimals use ``quote_decimals``. The normalizer holds only its
    configuration, so one instance can be shared freely.
    """

    def __init__(
        self,
        wallet_address: str,
        blacklist: Iterable[str] = (),
        tracking_start: Optional[datetime] = None,
        quote_decimals: int = 18,
    ):
        if not wallet_address:
            raise ValueError("wallet_address is required")
        self.wallet_address = wallet_address.strip().lower()
        self.blacklist = frozenset(t.strip().lower() for t in blacklist)
        self.tracking_start = ensure_utc(tracking_start) if tracking_start else None
        self.quote_decimals = quote_decimals

    def normalize(self, record: Union[RawTransfer, Mapping]) -> TradeEvent:
        """Convert one raw record to a TradeEvent.

        Raises:
            RecordRejected: if the record is malformed, blacklisted, a
                self-transfer, unrelated to the wallet, older than the
                tracking start, or carries a zero or negative amount.
        """
        if not isinstance(record, RawTransfer):
            try:
                record = RawTransfer.model_validate(record)
            except ValidationError as e:
                raise RecordRejected(RejectionReason.MALFORMED, str(e)) from e

        token_id = record.token_address.strip().lower()
        if not token_id:
            raise RecordRejected(RejectionReason.MALFORMED, "missing token address")

        if token_id in self.blacklist:
            raise RecordRejected(RejectionReason.BLACKLISTED, token_id)

        if self.tracking_start is not None and record.block_timestamp < self.tracking_start:
            raise RecordRejected(
                RejectionReason.BEFORE_TRACKING_START, record.block_timestamp.isoformat()
            )

        sender = record.from_address.strip().lower()
        receiver = record.to_address.strip().lower()

        if sender == self.wallet_address and receiver == self.wallet_address:
            raise RecordRejected(RejectionReason.SELF_TRANSFER, record.transaction_hash)

        if receiver == self.wallet_address:
            direction = TradeDirection.BUY
        elif sender == self.wallet_address:
            direction = TradeDirection.SELL
        else:
            raise RecordRejected(RejectionReason.UNRELATED, record.transaction_hash)

        try:
            token_amount = from_base_units(record.token_amount, record.token_decimals)
            quote_decimals = (
                record.quote_decimals if record.quote_decimals is not None else self.quote_decimals
            )
            quote_amount = from_base_units(record.quote_amount, quote_decimals)
        except ValueError as e:
            raise RecordRejected(RejectionReason.MALFORMED, str(e)) from e

        if token_amount <= 0 or quote_amount <= 0:
            raise RecordRejected(
                RejectionReason.NON_POSITIVE_AMOUNT,
                f"token={token_amount} quote={quote_amount}",
            )

        return TradeEvent(
            token_id=token_id,
            direction=direction,
            token_amount=token_amount,
            quote_amount=quote_amount,
            timestamp=record.block_timestamp,
            external_ref=make_external_ref(record.transaction_hash, record.log_index),
            block_number=record.block_number,
            token_symbol=record.token_symbol,
        )

    def normalize_many(self, records: Iterable[Union[RawTransfer, Mapping]]) -> NormalizationBatch:
        """Normalize a batch, counting rejections instead of raising."""
        events: List[TradeEvent] = []
        rejected: Counter = Counter()

        for record in records:
            try:
                events.append(self.normalize(record))
            except RecordRejected as e:
                rejected[e.reason] += 1
                logger.debug(
                    "normalizer.record_rejected",
                    reason=e.reason.value,
                    detail=e.detail,
                )

        if rejected:
            logger.info(
                "normalizer.batch_rejections",
                accepted=len(events),
                rejected={reason.value: count for reason, count in rejected.items()},
            )

        return NormalizationBatch(events=events, rejected=dict(rejected))
