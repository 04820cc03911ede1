"""Configuration management for the PulsePnL tracker."""

import re
from datetime import date
from typing import Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

WALLET_ADDRESS_PATTERN = re.compile(r"^0x[a-f0-9]{40}$")

# =============================================================================
# System Configuration
# =============================================================================


class SystemConfig(BaseSettings):
    """System-level configuration settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development"
    )
    app_name: str = Field(default="PulsePnL")
    app_version: str = Field(default="1.0.0")
    timezone: str = Field(default="UTC")


# =============================================================================
# Wallet Configuration
# =============================================================================


class WalletConfig(BaseSettings):
    """Tracked wallet and the date tracking starts from."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    wallet_address: Optional[str] = Field(default=None)
    tracking_start_date: date = Field(default=date(2025, 8, 1))

    @field_validator("wallet_address")
    @classmethod
    def validate_wallet_address(cls, v: Optional[str]) -> Optional[str]:
        """Lower-case the address and check it is a 20-byte hex address."""
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if not WALLET_ADDRESS_PATTERN.match(v):
            raise ValueError("Invalid wallet address format, expected 0x followed by 40 hex characters")
        return v


# =============================================================================
# Tracking Configuration
# =============================================================================


class TrackingConfig(BaseSettings):
    """Polling cadence, token blacklist and currencies."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Minutes between computation cycles
    update_interval_minutes: int = Field(default=3, validation_alias="UPDATE_INTERVAL")

    # Stored as comma-separated string, parsed to a set
    blacklisted_tokens_str: str = Field(default="", validation_alias="BLACKLISTED_TOKENS")

    display_currency: str = Field(default="USD", validation_alias="DISPLAY_CURRENCY")
    quote_symbol: str = Field(default="PLS", validation_alias="QUOTE_SYMBOL")
    quote_decimals: int = Field(default=18, ge=0, le=36, validation_alias="QUOTE_DECIMALS")

    @property
    def blacklisted_tokens(self) -> frozenset:
        """Parse blacklisted_tokens string into a lower-cased set."""
        return frozenset(
            s.strip().lower() for s in self.blacklisted_tokens_str.split(",") if s.strip()
        )

    @property
    def update_interval_seconds(self) -> int:
        return self.update_interval_minutes * 60


# =============================================================================
# Report Configuration
# =============================================================================


class ReportConfig(BaseSettings):
    """Daily/weekly snapshot settings."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    report_timezone: str = Field(default="UTC", validation_alias="REPORT_TIMEZONE")
    daily_enabled: bool = Field(default=True, validation_alias="REPORT_DAILY_ENABLED")
    weekly_enabled: bool = Field(default=True, validation_alias="REPORT_WEEKLY_ENABLED")
    top_performers_limit: int = Field(default=5, ge=1, validation_alias="REPORT_TOP_LIMIT")


# =============================================================================
# Database Configuration
# =============================================================================


class DatabaseConfig(BaseSettings):
    """Database configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore"
    )

    database_url: str = Field(default="sqlite:///./data/pulsepnl.db")


# =============================================================================
# Logging Configuration
# =============================================================================


class LoggingConfig(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )

    # Log level
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    debug_mode: bool = Field(default=False, validation_alias="DEBUG_MODE")

    # Log settings
    log_file: str = Field(default="logs/pnl-tracker.log", validation_alias="LOG_FILE_PATH")
    log_file_max_size_mb: int = Field(default=100, validation_alias="LOG_FILE_MAX_SIZE_MB")
    log_file_backup_count: int = Field(default=10, validation_alias="LOG_FILE_BACKUP_COUNT")


# =============================================================================
# Global Configuration Container
# =============================================================================


class PulsePnLConfig:
    """
    Container for all PulsePnL configurations.

    Usage:
        from pulsepnl.core.config import pnl_config

        wallet = pnl_config.wallet.wallet_address
        blacklist = pnl_config.tracking.blacklisted_tokens
    """

    def __init__(self):
        self.system = SystemConfig()
        self.wallet = WalletConfig()
        self.tracking = TrackingConfig()
        self.report = ReportConfig()
        self.database = DatabaseConfig()
        self.logging = LoggingConfig()

    def validate_configuration(self) -> dict:
        """
        Validate the complete configuration and return any issues.

        Returns:
            Dictionary with 'valid' boolean and 'issues' list
        """
        issues = []

        if not self.wallet.wallet_address:
            issues.append("WALLET_ADDRESS is not configured")

        if self.tracking.update_interval_minutes <= 0:
            issues.append(
                f"Update interval ({self.tracking.update_interval_minutes}) must be positive"
            )

        for name in (self.system.timezone, self.report.report_timezone):
            try:
                ZoneInfo(name)
            except (ZoneInfoNotFoundError, ValueError):
                issues.append(f"Unknown timezone: {name}")

        return {"valid": len(issues) == 0, "issues": issues}


# =============================================================================
# Global Configuration Instances
# =============================================================================

wallet_config = WalletConfig()
tracking_config = TrackingConfig()
report_config = ReportConfig()
database_config = DatabaseConfig()
logging_config = LoggingConfig()

pnl_config = PulsePnLConfig()


__all__ = [
    "PulsePnLConfig",
    "pnl_config",
    "wallet_config",
    "tracking_config",
    "report_config",
    "database_config",
    "logging_config",
    "SystemConfig",
    "WalletConfig",
    "TrackingConfig",
    "ReportConfig",
    "DatabaseConfig",
    "LoggingConfig",
]
