"""
Constraints Module - Constraint enforcement on target weights.

Applied in a fixed order:
1. Max weight: clip |w| to max_weight and hand the clipped excess to the
   unclipped members of the same leg in proportion to their weight, repeated
   to a fixed point. A leg that cannot absorb its sum (n * cap < |sum|) ends
   with every member at the cap.
2. Turnover: if L1(new - prev) > turnover_cap, blend linearly
   prev + alpha * (new - prev) with alpha = cap / L1. Disabled when the cap is
   None or 0, and skipped without a previous target. The new target is first
   scaled to the exposure bounds; prev is a previous output and already
   within them, so the blend is too.
3. Exposure: scale by s = min(1, gross_exposure / gross, net_exposure / |net|).

Every step is a no-op on weights that already satisfy it, so the pipeline is
idempotent. A post-check rejects any output outside the bounds, including
turnover above the cap.

Usage:
    pipeline = ConstraintPipeline(settings.portfolio)
    result = pipeline.apply(raw_weights, previous_weights)
    result.weights
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional, Tuple

import numpy as np
import pandas as pd

from factorlab.config.settings import PortfolioConfig
from factorlab.exceptions import ConsistencyViolation

logger = logging.getLogger(__name__)

# Slack allowed by the post-check for floating-point rounding
POST_CHECK_TOLERANCE = 1e-9


class ConstraintType(str, Enum):
    """Constraint that adjusted a weight vector."""

    MAX_WEIGHT = "max_weight"
    TURNOVER = "turnover"
    EXPOSURE = "exposure"


@dataclass
class ConstraintAdjustment:
    """One adjustment made by the pipeline.

    Attributes:
        constraint_type: Constraint that triggered
        asset: Asset involved (if applicable)
        original_value: Value before the adjustment
        constrained_value: Value after the adjustment
        limit: Bound that was enforced
        message: Detail message
    """

    constraint_type: ConstraintType
    asset: Optional[int] = None
    original_value: float = 0.0
    constrained_value: float = 0.0
    limit: float = 0.0
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "constraint_type": self.constraint_type.value,
            "asset": self.asset,
            "original_value": self.original_value,
            "constrained_value": self.constrained_value,
            "limit": self.limit,
            "message": self.message,
        }


@dataclass
class ConstraintResult:
    """Result of constraint enforcement.

    Attributes:
        weights: Constrained weights
        adjustments: Adjustments made, in order
        turnover: L1 distance from the previous target (0 without one)
        iterations: Fixed-point iterations used by the max-weight step
        is_modified: Whether any step changed the weights
        metadata: Exposure figures for audit logging
    """

    weights: pd.Series
    adjustments: List[ConstraintAdjustment] = field(default_factory=list)
    turnover: float = 0.0
    iterations: int = 0
    is_modified: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def adjustment_count(self) -> int:
        return len(self.adjustments)

    @property
    def gross_exposure(self) -> float:
        return float(self.weights.abs().sum())

    @property
    def net_exposure(self) -> float:
        return float(self.weights.sum())

    def to_dict(self) -> dict[str, Any]:
        return {
            "weights": self.weights.to_dict(),
            "adjustments": [a.to_dict() for a in self.adjustments],
            "turnover": self.turnover,
            "iterations": self.iterations,
            "is_modified": self.is_modified,
            "metadata": self.metadata,
        }


class ConstraintPipeline:
    """Applies max-weight, turnover and exposure constraints in order."""

    def __init__(self, config: Optional[PortfolioConfig] = None) -> None:
        self.config = config or PortfolioConfig()

    def apply(
        self,
        weights: pd.Series,
        previous_weights: Optional[pd.Series] = None,
        date: Any = None,
    ) -> ConstraintResult:
        """
        Enforce every constraint.

        Args:
            weights: Raw target weights indexed by asset
            previous_weights: Previous constrained target (None on the first rebalance)
            date: Rebalance date (context for errors)

        Raises:
            ConsistencyViolation: Non-convergence or a bound breached after enforcement
        """
        original = weights.astype(float).fillna(0.0)
        adjustments: List[ConstraintAdjustment] = []

        constrained, max_adjustments, iterations = self._apply_max_weight(original, date)
        adjustments.extend(max_adjustments)

        prev = None
        if previous_weights is not None:
            index = constrained.index.union(previous_weights.index)
            constrained = constrained.reindex(index, fill_value=0.0)
            prev = previous_weights.astype(float).reindex(index, fill_value=0.0)
            if self.config.turnover_cap_enabled:
                # Blend toward the exposure-feasible target so the final
                # rescale cannot move the weights past the cap
                constrained, exposure_adjustment = self._apply_exposure(constrained)
                if exposure_adjustment is not None:
                    adjustments.append(exposure_adjustment)
                constrained, turnover_adjustment = self._apply_turnover(constrained, prev)
                if turnover_adjustment is not None:
                    adjustments.append(turnover_adjustment)

        constrained, exposure_adjustment = self._apply_exposure(constrained)
        if exposure_adjustment is not None:
            adjustments.append(exposure_adjustment)

        self._post_check(constrained, date, prev)

        turnover = float((constrained - prev).abs().sum()) if prev is not None else 0.0
        result = ConstraintResult(
            weights=constrained,
            adjustments=adjustments,
            turnover=turnover,
            iterations=iterations,
            is_modified=bool(adjustments),
            metadata={
                "original_gross": float(original.abs().sum()),
                "final_gross": float(constrained.abs().sum()),
                "final_net": float(constrained.sum()),
            },
        )
        if adjustments:
            logger.debug(
                "Constraints applied on %s: %d adjustments, turnover=%.6f",
                date,
                len(adjustments),
                turnover,
            )
        return result

    # ------------------------------------------------------------------
    # Max weight
    # ------------------------------------------------------------------
    def _apply_max_weight(
        self, weights: pd.Series, date: Any
    ) -> Tuple[pd.Series, List[ConstraintAdjustment], int]:
        cap = self.config.max_weight
        values = weights.to_numpy(dtype=float).copy()
        iterations = 0
        for sign in (1.0, -1.0):
            members = np.flatnonzero(sign * values > 0)
            if members.size == 0:
                continue
            capped, used = self._water_fill(sign * values[members], cap, date)
            values[members] = sign * capped
            iterations = max(iterations, used)

        result = pd.Series(values, index=weights.index, name=weights.name)
        adjustments = [
            ConstraintAdjustment(
                constraint_type=ConstraintType.MAX_WEIGHT,
                asset=int(asset),
                original_value=float(before),
                constrained_value=float(after),
                limit=cap,
                message=f"{asset}: |{before:.6f}| > {cap:.6f}",
            )
            for asset, before, after in zip(weights.index, weights.to_numpy(), values)
            if abs(before) > cap + self.config.tolerance
        ]
        return result, adjustments, iterations

    def _water_fill(self, leg: np.ndarray, cap: float, date: Any) -> Tuple[np.ndarray, int]:
        """Clip-and-redistribute on one leg of positive magnitudes."""
        tol = self.config.tolerance
        total = float(leg.sum())
        if leg.size * cap <= total + tol:
            # Leg cannot absorb its sum: every member ends at the cap
            if leg.max() <= cap + tol:
                return leg, 0
            return np.full(leg.size, cap), 0

        w = leg.copy()
        for iteration in range(1, self.config.max_iterations + 1):
            over = w > cap + tol
            if not over.any():
                return w, iteration - 1
            excess = float((w[over] - cap).sum())
            w[over] = cap
            free = w < cap - tol
            free_sum = float(w[free].sum())
            if free_sum <= 0:
                break
            w[free] += excess * w[free] / free_sum

        raise ConsistencyViolation(
            f"Max-weight enforcement did not converge within {self.config.max_iterations} iterations",
            date=date,
        )

    # ------------------------------------------------------------------
    # Turnover
    # ------------------------------------------------------------------
    def _apply_turnover(
        self, weights: pd.Series, previous: pd.Series
    ) -> Tuple[pd.Series, Optional[ConstraintAdjustment]]:
        cap = float(self.config.turnover_cap)
        delta = weights - previous
        l1 = float(delta.abs().sum())
        if l1 <= cap + self.config.tolerance:
            return weights, None
        alpha = cap / l1
        blended = previous + alpha * delta
        return blended, ConstraintAdjustment(
            constraint_type=ConstraintType.TURNOVER,
            original_value=l1,
            constrained_value=cap,
            limit=cap,
            message=f"turnover {l1:.6f} > {cap:.6f}, alpha={alpha:.6f}",
        )

    # ------------------------------------------------------------------
    # Exposure
    # ------------------------------------------------------------------
    def _apply_exposure(self, weights: pd.Series) -> Tuple[pd.Series, Optional[ConstraintAdjustment]]:
        tol = self.config.tolerance
        gross = float(weights.abs().sum())
        net = abs(float(weights.sum()))
        scale = 1.0
        if gross > self.config.gross_exposure + tol:
            scale = min(scale, self.config.gross_exposure / gross)
        if net > self.config.net_exposure + tol:
            scale = min(scale, self.config.net_exposure / net)
        if scale >= 1.0:
            return weights, None
        return weights * scale, ConstraintAdjustment(
            constraint_type=ConstraintType.EXPOSURE,
            original_value=gross,
            constrained_value=gross * scale,
            limit=self.config.gross_exposure,
            message=f"gross={gross:.6f}, net={net:.6f}, scale={scale:.6f}",
        )

    def _post_check(self, weights: pd.Series, date: Any, previous: Optional[pd.Series] = None) -> None:
        cfg = self.config
        if weights.empty:
            return
        if previous is not None and cfg.turnover_cap_enabled:
            turnover = float((weights - previous).abs().sum())
            if turnover > float(cfg.turnover_cap) + POST_CHECK_TOLERANCE:
                raise ConsistencyViolation(
                    f"Turnover {turnover:.12f} exceeds turnover_cap {cfg.turnover_cap}", date=date
                )
        abs_weights = weights.abs()
        if float(abs_weights.max()) > cfg.max_weight + POST_CHECK_TOLERANCE:
            asset = abs_weights.idxmax()
            raise ConsistencyViolation(
                f"Weight {weights[asset]:.12f} exceeds max_weight {cfg.max_weight}",
                date=date,
                asset=int(asset),
            )
        gross = float(abs_weights.sum())
        if gross > cfg.gross_exposure + POST_CHECK_TOLERANCE:
            raise ConsistencyViolation(
                f"Gross exposure {gross:.12f} exceeds {cfg.gross_exposure}", date=date
            )
        net = abs(float(weights.sum()))
        if net > cfg.net_exposure + POST_CHECK_TOLERANCE:
            raise ConsistencyViolation(
                f"Net exposure {net:.12f} exceeds {cfg.net_exposure}", date=date
            )
