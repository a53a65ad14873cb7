"""
Configuration management with environment variable support and validation.

Design principles:
- Environment-specific configs (dev, staging, prod)
- Validation at startup (fail fast)
- Type safety with Pydantic
- Clinical evidence thresholds are constants, not configuration
"""

import os
from functools import lru_cache
from typing import Literal, cast

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from woundcore.domain.models import CoveragePolicy
from woundcore.domain.reference import L39806_METADATA

# Load environment variables from .env file
load_dotenv()


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AnalysisConfig(BaseModel):
    """Measurement-series analysis settings."""

    expected_measurement_interval_days: float = Field(
        default=7.0, gt=0.0, description="Expected days between wound measurements"
    )
    minimum_observation_days: float = Field(
        default=14.0, gt=0.0, description="Observation span for full time-span credit"
    )


class FatigueConfig(BaseModel):
    """Alert fatigue suppression settings."""

    daily_cap: int = Field(default=10, gt=0, description="Max alerts per provider in 24 hours")
    same_type_limit: int = Field(
        default=2, gt=0, description="Unresolved same-type alerts per episode in 24 hours"
    )
    repeat_window_hours: int = Field(
        default=4, gt=0, description="Window for the repeated-unresolved rule"
    )


class CoverageConfig(BaseModel):
    """Payer coverage rule parameters."""

    policy_id: str = Field(default="L39806", description="Coverage policy identifier")
    pre_product_threshold_pct: float = Field(default=50.0, gt=0.0, lt=100.0)
    post_product_threshold_pct: float = Field(default=20.0, gt=0.0, lt=100.0)

    def to_policy(self) -> CoveragePolicy:
        metadata = L39806_METADATA
        if self.policy_id != metadata.policy_id:
            metadata = metadata.model_copy(update={"policy_id": self.policy_id})
        return CoveragePolicy(
            metadata=metadata,
            pre_product_threshold_pct=self.pre_product_threshold_pct,
            post_product_threshold_pct=self.post_product_threshold_pct,
        )


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    # Environment
    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    debug: bool = Field(default=False, description="Enable debug mode")

    # Component configs
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    fatigue: FatigueConfig = Field(default_factory=FatigueConfig)
    coverage: CoverageConfig = Field(default_factory=CoverageConfig)

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

    def _format_to_literal(val: str | None, debug: bool) -> Literal["json", "console"]:
        if val is None:
            return "console" if debug else "json"
        return "console" if val.strip().lower() == "console" else "json"

    # Detect environment
    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))
    debug = environment == "development"

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format=_format_to_literal(os.getenv("LOG_FORMAT"), debug),
    )

    analysis_config = AnalysisConfig(
        expected_measurement_interval_days=float(
            os.getenv("EXPECTED_MEASUREMENT_INTERVAL_DAYS", "7.0")
        ),
        minimum_observation_days=float(os.getenv("MINIMUM_OBSERVATION_DAYS", "14.0")),
    )

    fatigue_config = FatigueConfig(
        daily_cap=int(os.getenv("ALERT_DAILY_CAP", "10")),
        same_type_limit=int(os.getenv("ALERT_SAME_TYPE_LIMIT", "2")),
        repeat_window_hours=int(os.getenv("ALERT_REPEAT_WINDOW_HOURS", "4")),
    )

    coverage_config = CoverageConfig(
        policy_id=os.getenv("COVERAGE_POLICY_ID", "L39806"),
        pre_product_threshold_pct=float(os.getenv("PRE_PRODUCT_REDUCTION_THRESHOLD_PCT", "50.0")),
        post_product_threshold_pct=float(
            os.getenv("POST_PRODUCT_REDUCTION_THRESHOLD_PCT", "20.0")
        ),
    )

    return AppConfig(
        environment=environment,
        debug=debug,
        logging=logging_config,
        analysis=analysis_config,
        fatigue=fatigue_config,
        coverage=coverage_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()


def validate_config() -> None:
    """Validate configuration at startup."""
    try:
        config = get_config()
        print(f"✅ Configuration loaded for {config.environment} environment")
        print(f"✅ Coverage policy {config.coverage.policy_id} configured")
    except ValueError as e:
        print(f"❌ Configuration validation failed: {e}")
        raise


# Development helpers
def print_config_summary() -> None:
    """Print configuration summary for debugging."""
    config = get_config()

    print("\n🔧 CONFIGURATION SUMMARY")
    print(f"Environment: {config.environment}")
    print(f"Debug Mode: {config.debug}")
    print(f"Log Level: {config.logging.level}")

    print("\n📏 ANALYSIS CONFIGURATION")
    print(f"Expected Interval: {config.analysis.expected_measurement_interval_days}d")
    print(f"Minimum Observation: {config.analysis.minimum_observation_days}d")

    print("\n🔔 ALERT FATIGUE CONFIGURATION")
    print(f"Daily Cap: {config.fatigue.daily_cap}")
    print(f"Same-Type Limit: {config.fatigue.same_type_limit}")
    print(f"Repeat Window: {config.fatigue.repeat_window_hours}h")

    print("\n🏥 COVERAGE CONFIGURATION")
    print(f"Policy: {config.coverage.policy_id}")
    print(f"Pre-product Threshold: <{config.coverage.pre_product_threshold_pct:.0f}%")
    print(f"Post-product Threshold: >={config.coverage.post_product_threshold_pct:.0f}%")


if __name__ == "__main__":
    validate_config()
    print_config_summary()
