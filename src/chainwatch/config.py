"""
Chainwatch configuration management using pydantic-settings.

Every detection threshold can be set through the environment
(CHAINWATCH_ prefix) or a .env file.
"""

from typing import Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from chainwatch.laundering.alerting import AlertConfig
from chainwatch.laundering.flow import FlowAnalysisConfig
from chainwatch.laundering.types import AlertSeverity


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHAINWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Settings
    log_level: str = Field(default="INFO", description="Logging level")

    # Ledger API
    ledger_api_url: Optional[str] = Field(
        default=None,
        description="Base URL of the ledger/profile HTTP API",
    )
    ledger_api_timeout: float = Field(
        default=30.0, description="Ledger API request timeout in seconds"
    )

    # Flow analysis
    min_flow_value: int = Field(
        default=0, description="Transfers below this amount are ignored"
    )
    max_hops: int = Field(default=5, description="Maximum path length in hops")
    time_window_days: int = Field(
        default=30, description="Lookback when only an end time is given"
    )
    min_pattern_confidence: float = Field(
        default=0.8, description="Patterns scoring below this are discarded"
    )
    excluded_addresses: list[str] = Field(
        default_factory=list,
        description="Addresses never included in flow graphs (exchanges, routers)",
    )

    # Alerting
    min_severity_score: float = Field(
        default=0.7, description="Minimum composite risk for any alert"
    )
    max_alerts_per_address: int = Field(
        default=10, description="Live alert cap per address"
    )
    deduplication_window_ms: int = Field(
        default=24 * 60 * 60 * 1000,
        description="Window for alert deduplication and rate limiting",
    )
    threshold_low: float = Field(default=0.7, description="Risk needed for low alerts")
    threshold_medium: float = Field(default=0.8, description="Risk needed for medium alerts")
    threshold_high: float = Field(default=0.9, description="Risk needed for high alerts")
    threshold_critical: float = Field(
        default=0.95, description="Risk needed for critical alerts"
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("max_hops", "max_alerts_per_address")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @field_validator("min_flow_value", "deduplication_window_ms", "time_window_days")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must not be negative")
        return v

    @field_validator(
        "min_pattern_confidence",
        "min_severity_score",
        "threshold_low",
        "threshold_medium",
        "threshold_high",
        "threshold_critical",
    )
    @classmethod
    def validate_unit_interval(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("must be between 0 and 1")
        return v

    @model_validator(mode="after")
    def validate_threshold_order(self) -> "Settings":
        """Higher severities must not be easier to notify than lower ones."""
        ordered = [
            self.threshold_low,
            self.threshold_medium,
            self.threshold_high,
            self.threshold_critical,
        ]
        if ordered != sorted(ordered):
            raise ValueError("Notification thresholds must increase with severity")
        return self

    def flow_config(self) -> FlowAnalysisConfig:
        return FlowAnalysisConfig(
            min_flow_value=self.min_flow_value,
            max_hops=self.max_hops,
            time_window_days=self.time_window_days,
            min_pattern_confidence=self.min_pattern_confidence,
            excluded_addresses=frozenset(self.excluded_addresses),
        )

    def alert_config(self) -> AlertConfig:
        return AlertConfig(
            min_severity_score=self.min_severity_score,
            max_alerts_per_address=self.max_alerts_per_address,
            deduplication_window=self.deduplication_window_ms,
            notification_threshold={
                AlertSeverity.LOW: self.threshold_low,
                AlertSeverity.MEDIUM: self.threshold_medium,
                AlertSeverity.HIGH: self.threshold_high,
                AlertSeverity.CRITICAL: self.threshold_critical,
            },
        )


# Global settings instance
settings = Settings()
