"""
Configuration Management Module

Provides centralized configuration using pydantic-settings for environment-based configuration.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class MicroloanConfig(BaseSettings):
    """Microloan engine configuration"""

    # Storage configuration
    database_url: str = "memory://"  # memory:// or sqlite:///path/to/file.db

    # Loan term limits
    default_currency: str = "INR"
    min_principal: str = "0"  # Principal must be strictly greater than this
    max_principal: str = "10000000"
    max_interest_rate: str = "1000"  # Annual percentage
    max_tenure_months: int = 360
    low_rate_warning_threshold: str = "0.1"  # Annual percentage
    max_payment_amount: str = "100000000"  # Largest single payment accepted

    # Workflow rules
    loan_number_prefix: str = "ML"
    single_active_loan_per_borrower: bool = True

    # Audit configuration
    enable_audit_logging: bool = True

    # Logging configuration
    log_level: str = "INFO"
    log_format: str = "json"  # json or text
    log_file: Optional[str] = None  # If None, logs to stdout

    # API configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8090

    class Config:
        env_prefix = "MICROLOAN_"
        env_file = ".env"
        case_sensitive = False


# Global configuration instance
config = MicroloanConfig()


def get_config() -> MicroloanConfig:
    """Get global configuration instance"""
    return config


def reload_config() -> MicroloanConfig:
    """Reload configuration from environment"""
    global config
    config = MicroloanConfig()
    return config
