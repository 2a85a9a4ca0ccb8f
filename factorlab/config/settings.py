"""
Global Settings - Pydantic v2 Configuration Schema

This module defines the configuration schema for the factor research engine.
All settings are validated when they are built. load_settings and
load_settings_from_yaml turn invalid or conflicting values into
ConfigurationError before any run starts; building a section model such as
PortfolioConfig directly raises pydantic's ValidationError instead.
"""

from __future__ import annotations

from datetime import date
from enum import Enum
from pathlib import Path
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from factorlab.exceptions import ConfigurationError


class WeightingScheme(str, Enum):
    """Weighting schemes for turning a transformed signal into weights."""

    EQUAL_LONG_ONLY = "equal_long_only"
    LONG_SHORT = "long_short"
    RISK_SCALED = "risk_scaled"


class Neutralization(str, Enum):
    """Signal neutralization modes."""

    NONE = "none"  # Raw transformed signal
    DEMEAN = "demean"  # Subtract cross-sectional mean
    GROUP = "group"  # Subtract per-group mean


class SignalTransform(str, Enum):
    """Cross-sectional signal transforms."""

    RANK = "rank"  # Average rank mapped to [-1, 1]
    ZSCORE = "zscore"  # (x - mean) / std


class FillPrice(str, Enum):
    """Price at which market-style fills settle."""

    CLOSE = "close"
    NEXT_OPEN = "next_open"


class ExecutorKind(str, Enum):
    """Worker pool used for parallel factor/statistics work."""

    THREAD = "thread"
    PROCESS = "process"


# =============================================================================
# Portfolio Construction Settings
# =============================================================================
class PortfolioConfig(BaseModel):
    """Portfolio construction configuration.

    Invalid values raise ValidationError here; use load_settings to get
    ConfigurationError.
    """

    model_config = ConfigDict(frozen=True)

    quantile_fraction: float = Field(
        default=0.2,
        gt=0.0,
        lt=1.0,
        description="Fraction of the cross-section in each quantile leg",
    )
    max_weight: Annotated[float, Field(gt=0.0)] = Field(
        default=0.1,
        description="Maximum absolute weight of a single asset",
    )
    turnover_cap: float | None = Field(
        default=None,
        ge=0.0,
        description="Maximum L1 weight change per rebalance (None or 0 disables)",
    )
    gross_exposure: Annotated[float, Field(gt=0.0)] = Field(
        default=1.0,
        description="Upper bound on sum of absolute weights (target for risk_scaled)",
    )
    net_exposure: Annotated[float, Field(ge=0.0)] = Field(
        default=1.0,
        description="Upper bound on absolute sum of weights",
    )
    weighting_scheme: WeightingScheme = Field(
        default=WeightingScheme.EQUAL_LONG_ONLY,
        description="How transformed signals become weights",
    )
    neutralization: Neutralization = Field(
        default=Neutralization.NONE,
        description="Neutralization applied after the signal transform",
    )
    signal_transform: SignalTransform = Field(
        default=SignalTransform.RANK,
        description="Cross-sectional signal transform",
    )
    vol_lookback: Annotated[int, Field(ge=2)] = Field(
        default=20,
        description="Sessions of realized volatility for risk_scaled weighting",
    )
    max_iterations: Annotated[int, Field(ge=1)] = Field(
        default=100,
        description="Bound on the clip-and-renormalize fixed-point loop",
    )
    tolerance: Annotated[float, Field(gt=0.0)] = Field(
        default=1e-12,
        description="Convergence tolerance for constraint enforcement",
    )

    @model_validator(mode="after")
    def validate_exposures(self) -> "PortfolioConfig":
        if self.net_exposure > self.gross_exposure:
            raise ValueError(
                f"net_exposure ({self.net_exposure}) cannot exceed "
                f"gross_exposure ({self.gross_exposure})"
            )
        return self

    @property
    def turnover_cap_enabled(self) -> bool:
        """Whether the turnover cap participates in constraint enforcement."""
        return self.turnover_cap is not None and self.turnover_cap > 0


# =============================================================================
# Execution / Cost Settings
# =============================================================================
class ExecutionConfig(BaseModel):
    """Execution and transaction cost configuration."""

    model_config = ConfigDict(frozen=True)

    slippage_k: Annotated[float, Field(ge=0.0)] = Field(
        default=0.0005,
        description="Linear slippage coefficient applied to |trade value|",
    )
    half_spread_bps: Annotated[float, Field(ge=0.0)] = Field(
        default=5.0,
        description="Half bid-ask spread in basis points",
    )
    fill_price: FillPrice = Field(
        default=FillPrice.CLOSE,
        description="Fill at the date's close or the next session's open",
    )

    @property
    def half_spread_rate(self) -> float:
        """Half spread as a fraction of trade value."""
        return self.half_spread_bps / 10000.0


# =============================================================================
# Statistical Evaluation Settings
# =============================================================================
class EvaluationConfig(BaseModel):
    """Statistical evaluation configuration."""

    model_config = ConfigDict(frozen=True)

    forward_horizons: list[int] = Field(
        default_factory=lambda: [1, 5, 10, 20],
        description="Forward-return horizons (sessions) for IC and regression",
    )
    decay_horizons: list[int] = Field(
        default_factory=lambda: list(range(1, 21)),
        description="Horizons for the IC decay curve",
    )
    primary_horizon: Annotated[int, Field(ge=1)] = Field(
        default=1,
        description="Horizon used for IR, regression and covariance",
    )
    standardize: bool = Field(
        default=False,
        description="Z-score factor values before Pearson IC and regression",
    )

    @field_validator("forward_horizons", "decay_horizons")
    @classmethod
    def validate_horizons(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("horizons must not be empty")
        if any(h < 1 for h in v):
            raise ValueError(f"horizons must be positive integers: {v}")
        return sorted(set(v))

    @model_validator(mode="after")
    def validate_primary(self) -> "EvaluationConfig":
        if self.primary_horizon not in self.forward_horizons:
            raise ValueError(
                f"primary_horizon {self.primary_horizon} must be one of "
                f"forward_horizons {self.forward_horizons}"
            )
        return self


# =============================================================================
# Backtest Settings
# =============================================================================
class BacktestConfig(BaseModel):
    """Backtest configuration."""

    model_config = ConfigDict(frozen=True)

    initial_capital: Annotated[float, Field(gt=0.0)] = Field(
        default=1_000_000.0,
        description="Starting cash",
    )
    start_date: date | None = Field(
        default=None,
        description="First simulated session (None = first calendar session)",
    )
    end_date: date | None = Field(
        default=None,
        description="Last simulated session (None = last calendar session)",
    )
    equity_tolerance: Annotated[float, Field(gt=0.0)] = Field(
        default=1e-6,
        description="Relative tolerance between booked and marked equity",
    )

    @model_validator(mode="after")
    def validate_dates(self) -> "BacktestConfig":
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


# =============================================================================
# Runtime Settings
# =============================================================================
class RuntimeConfig(BaseModel):
    """Worker pool configuration for factor and statistics work."""

    model_config = ConfigDict(frozen=True)

    n_workers: Annotated[int, Field(ge=1)] = Field(
        default=1,
        description="Worker pool size (1 = sequential)",
    )
    executor: ExecutorKind = Field(
        default=ExecutorKind.THREAD,
        description="thread or process pool",
    )


# =============================================================================
# Logging Settings
# =============================================================================
class LoggingConfig(BaseModel):
    """Logging configuration."""

    model_config = ConfigDict(frozen=True)

    level: str = Field(
        default="INFO",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_format: bool = Field(
        default=False,
        description="Use JSON format for structured logging",
    )

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()


# =============================================================================
# Main Settings Class
# =============================================================================
class Settings(BaseSettings):
    """
    Main settings class that combines all configuration sections.

    Configuration can be loaded from:
    1. Environment variables (with FACTORLAB_ prefix)
    2. YAML configuration files
    3. Default values
    """

    model_config = SettingsConfigDict(
        env_prefix="FACTORLAB_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    portfolio: PortfolioConfig = Field(default_factory=PortfolioConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    evaluation: EvaluationConfig = Field(default_factory=EvaluationConfig)
    backtest: BacktestConfig = Field(default_factory=BacktestConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        import yaml

        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: str | Path) -> None:
        """Save settings to a YAML file."""
        import yaml

        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)


# =============================================================================
# Loading helpers
# =============================================================================

# Path to default YAML configuration (single source of truth)
DEFAULT_CONFIG_PATH = Path(__file__).parent.parent.parent / "config" / "default.yaml"


def _to_configuration_error(err: ValidationError) -> ConfigurationError:
    first = err.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ()))
    return ConfigurationError(first.get("msg", str(err)), field=field or None)


def load_settings(**sections: Any) -> Settings:
    """
    Build settings from keyword sections, e.g. ``load_settings(portfolio={...})``.

    Raises:
        ConfigurationError: If any value is invalid or inconsistent
    """
    try:
        return Settings(**sections)
    except ValidationError as err:
        raise _to_configuration_error(err) from err


def load_settings_from_yaml(
    path: str | Path | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings from a YAML file (recommended method).

    Args:
        path: Path to YAML config file (defaults to config/default.yaml)
        **overrides: Override specific sections

    Returns:
        Settings instance loaded from YAML

    Raises:
        ConfigurationError: If the file content is invalid
    """
    import yaml

    config_path = Path(path) if path else DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    elif path is not None:
        raise ConfigurationError(f"Config file not found: {config_path}")

    if overrides:
        _deep_update(data, overrides)

    return load_settings(**data)


def _deep_update(base: dict, updates: dict) -> dict:
    """Deep update a dictionary with another dictionary."""
    for key, value in updates.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_update(base[key], value)
        else:
            base[key] = value
    return base
