"""PulsePnL - FIFO profit-and-loss tracking for a single on-chain wallet."""

__version__ = "1.0.0"
