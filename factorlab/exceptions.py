"""
Engine Exception Classes - Error taxonomy for factor research and simulation.

Three families:
- InsufficientDataError: a computation lacked observations. Recoverable; the
  caller records an absent result for that cell and carries on.
- ConfigurationError: an invalid parameter. Fatal, raised before a run starts.
- ConsistencyViolation: an internal invariant was broken. Fatal, surfaced
  immediately with enough context (date, asset, factor) to reproduce.
"""

from __future__ import annotations

from typing import Any


class FactorLabError(Exception):
    """Base class for all engine errors."""

    pass


class InsufficientDataError(FactorLabError):
    """Raised when a statistic cannot be computed from the available data.

    Attributes:
        operation: The computation that lacked data (e.g., "ic", "covariance")
        required: Minimum number of observations needed
        available: Number of observations actually available
    """

    def __init__(self, operation: str, required: int, available: int) -> None:
        self.operation = operation
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient data for {operation}: "
            f"required {required}, available {available}"
        )


class ConfigurationError(FactorLabError, ValueError):
    """Raised when a configuration value is invalid or inconsistent."""

    def __init__(self, message: str, field: str | None = None) -> None:
        self.field = field
        if field:
            message = f"{field}: {message}"
        super().__init__(message)


class ConsistencyViolation(FactorLabError):
    """Raised when an internal invariant is broken.

    Attributes:
        date: Date at which the violation was detected (if applicable)
        asset: Asset involved (if applicable)
        factor: Factor involved (if applicable)
    """

    def __init__(
        self,
        message: str,
        *,
        date: Any = None,
        asset: Any = None,
        factor: str | None = None,
    ) -> None:
        self.date = date
        self.asset = asset
        self.factor = factor
        context = {
            k: v
            for k, v in (("date", date), ("asset", asset), ("factor", factor))
            if v is not None
        }
        if context:
            details = ", ".join(f"{k}={v}" for k, v in context.items())
            message = f"{message} ({details})"
        super().__init__(message)

    @property
    def context(self) -> dict[str, Any]:
        """Context needed to reproduce the violation."""
        return {"date": self.date, "asset": self.asset, "factor": self.factor}


class FactorEvaluationError(ConsistencyViolation):
    """Raised when a factor's scoring function fails for one cell.

    Attributes:
        original_error: The original error message
    """

    def __init__(self, factor: str, asset: Any, date: Any, original_error: str) -> None:
        self.original_error = original_error
        super().__init__(
            f"Factor evaluation failed: {original_error}",
            date=date,
            asset=asset,
            factor=factor,
        )
