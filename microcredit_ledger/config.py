"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from decimal import Decimal
from pydantic_settings import BaseSettings
from typing import List, Optional


class LedgerConfig(BaseSettings):
    """Microcredit ledger engine configuration"""

    # Database configuration
    database_url: str = "sqlite:///microcredit.db"  # or memory:// for tests

    # Calendar configuration
    timezone: str = "Africa/Maputo"  # Penalty days are counted in this zone
    currency: str = "MZN"

    # Business rules configuration (decimal strings, never floats)
    profit_rate: str = "0.20"          # Flat profit margin on principal
    penalty_rate: str = "0.05"         # Daily late penalty, share of principal
    settlement_tolerance: str = "0.01"
    reminder_days: List[int] = [10, 5]

    # Notification configuration
    notification_sink: str = "storage"  # storage, log or webhook
    notification_webhook_url: str = ""
    notification_timeout: float = 2.0

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # Feature flags
    enable_audit_logging: bool = True

    class Config:
        env_prefix = "MICROCREDIT_"
        env_file = ".env"
        case_sensitive = False

    @property
    def profit_rate_decimal(self) -> Decimal:
        return Decimal(self.profit_rate)

    @property
    def penalty_rate_decimal(self) -> Decimal:
        return Decimal(self.penalty_rate)

    @property
    def tolerance_decimal(self) -> Decimal:
        return Decimal(self.settlement_tolerance)


# Global configuration instance
config = LedgerConfig()


def get_config() -> LedgerConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> LedgerConfig:
    """Reload configuration from environment"""
    global config
    config = LedgerConfig()
    return config
