"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Tunable thresholds without code changes
"""

import logging
import os
from functools import lru_cache
from typing import Literal, cast

import structlog
from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

# Load environment variables from .env file
load_dotenv()


class SnapshotConfig(BaseModel):
    """Parameters used when deriving a health snapshot."""

    hydration_l_per_kg: float = Field(
        default=0.033, gt=0.0, description="Daily water target in liters per kg of body weight"
    )
    hydration_fallback_l: float = Field(
        default=2.5, gt=0.0, description="Daily water target when weight is unknown"
    )


class AdvisoryConfig(BaseModel):
    """Thresholds for the rule-based advisory engine."""

    max_advisories: int = Field(default=6, gt=0, description="Advisories kept after sorting")
    daily_calorie_goal_kcal: float = Field(
        default=300.0, gt=0.0, description="Daily calorie burn goal"
    )
    ideal_intake_kcal: float = Field(default=2200.0, gt=0.0, description="Ideal daily intake")
    glass_volume_ml: float = Field(default=250.0, gt=0.0, description="Volume of one glass")


class DeliveryConfig(BaseModel):
    """Timing of the staged advisory reveal."""

    initial_delay_ms: int = Field(default=500, ge=0, description="Delay before the first reveal")
    inter_delay_ms: int = Field(default=800, gt=0, description="Delay between reveals")
    jitter_ms: int = Field(default=0, ge=0, description="Upper bound of random extra delay")
    jitter_seed: int | None = Field(default=None, description="Seed for the jitter source")

    @model_validator(mode="after")
    def jitter_below_interval(self) -> "DeliveryConfig":
        """Jitter must stay below the interval so reveals keep their order."""
        if self.jitter_ms >= self.inter_delay_ms:
            raise ValueError("jitter_ms must be smaller than inter_delay_ms")
        return self


class TrendConfig(BaseModel):
    """Chart aggregation settings."""

    monthly_span_days: int = Field(
        default=30, ge=7, description="Trailing span covered by the monthly window"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    snapshot: SnapshotConfig = Field(default_factory=SnapshotConfig)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    trend: TrendConfig = Field(default_factory=TrendConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @model_validator(mode="after")
    def debug_only_in_dev(self) -> "AppConfig":
        """Ensure debug mode is only allowed in development environment."""
        if self.debug and self.environment != "development":
            raise ValueError("debug mode is only allowed in development environment")
        return self


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    def _optional_int(val: str | None) -> int | None:
        if val is None or not val.strip():
            return None
        return int(val)

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    snapshot_config = SnapshotConfig(
        hydration_fallback_l=float(os.getenv("HYDRATION_FALLBACK_L", "2.5")),
    )

    advisory_config = AdvisoryConfig(
        max_advisories=int(os.getenv("ADVISORY_MAX_COUNT", "6")),
        daily_calorie_goal_kcal=float(os.getenv("DAILY_CALORIE_GOAL_KCAL", "300")),
        ideal_intake_kcal=float(os.getenv("IDEAL_INTAKE_KCAL", "2200")),
    )

    delivery_config = DeliveryConfig(
        initial_delay_ms=int(os.getenv("DELIVERY_INITIAL_DELAY_MS", "500")),
        inter_delay_ms=int(os.getenv("DELIVERY_INTER_DELAY_MS", "800")),
        jitter_ms=int(os.getenv("DELIVERY_JITTER_MS", "0")),
        jitter_seed=_optional_int(os.getenv("DELIVERY_JITTER_SEED")),
    )

    trend_config = TrendConfig(
        monthly_span_days=int(os.getenv("MONTHLY_SPAN_DAYS", "30")),
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if debug else "json",
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        snapshot=snapshot_config,
        advisory=advisory_config,
        delivery=delivery_config,
        trend=trend_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def reset_config_cache() -> None:
    """Drop the cached configuration so the next get_config() re-reads the environment."""
    get_config.cache_clear()


def configure_logging(logging_config: LoggingConfig | None = None) -> None:
    """
    Configure structlog and the stdlib root logger.

    Call once from an entry point with the loaded LoggingConfig; service modules
    apply the defaults (INFO, JSON) on import. Level filtering happens at call
    time, so a new level also reaches loggers that were already created.
    Handlers are left to the host application.
    """
    logging_config = logging_config or LoggingConfig()
    level = getattr(logging, logging_config.level)
    renderer = (
        structlog.dev.ConsoleRenderer()
        if logging_config.format == "console"
        else structlog.processors.JSONRenderer()
    )

    logging.getLogger().setLevel(level)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"Configuration loaded for {config.environment} environment")
    except Exception as e:
        print(f"Configuration validation failed: {e}")
        raise


def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\nCONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\nADVISORY CONFIGURATION")
    print(f"Max Advisories: {config.advisory.max_advisories}")
    print(f"Calorie Burn Goal: {config.advisory.daily_calorie_goal_kcal:.0f} kcal")
    print(f"Ideal Intake: {config.advisory.ideal_intake_kcal:.0f} kcal")

    print("\nDELIVERY CONFIGURATION")
    print(f"Initial Delay: {config.delivery.initial_delay_ms}ms")
    print(f"Inter Delay: {config.delivery.inter_delay_ms}ms")
    print(f"Jitter: {config.delivery.jitter_ms}ms")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
