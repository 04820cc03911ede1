"""Accounting pipeline for PulsePnL.

This module turns raw wallet transfers into per-token FIFO positions:
- Transaction normalization (direction, scaling, rejection reasons)
- FIFO lot matching with over-sell detection
"""

from pulsepnl.accounting.ledger import (
    PositionLedger,
    apply_buy,
    apply_event,
    apply_sell,
)
from pulsepnl.accounting.normalizer import (
    NormalizationBatch,
    RecordRejected,
    TransactionNormalizer,
    make_external_ref,
)

__all__ = [
    'PositionLedger',
    'apply_buy',
    'apply_event',
    'apply_sell',
    'NormalizationBatch',
    'RecordRejected',
    'TransactionNormalizer',
    'make_external_ref',
]
