"""Configuration, data models and the PnL engine."""
