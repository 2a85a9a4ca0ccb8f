"""
Portfolio Constructor - Factor signal to constrained target weights.

Three ordered stages per date, each total:
1. signal transform (+ neutralization)
2. weighting scheme
3. constraint pipeline

Dates are processed sequentially because the turnover cap needs the previous
target. Every date with a signal cross-section yields a row for each asset of
that cross-section (zero where not held), so "no positions" stays distinct
from "no rebalance" (a date absent from the weight panel).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional, Union

import pandas as pd

from factorlab.config.settings import PortfolioConfig, WeightingScheme
from factorlab.data.model import AssetId, Panel
from factorlab.data.store import BarStore
from factorlab.exceptions import ConfigurationError
from factorlab.portfolio.constraints import ConstraintPipeline, ConstraintResult
from factorlab.portfolio.transforms import composite_panel, transform_signal
from factorlab.portfolio.weighting import compute_weights, realized_volatility
from factorlab.utils.logger import TimedOperation, get_logger


@dataclass
class ConstructionResult:
    """Target weights plus the constraint audit trail per rebalance date."""

    weights: Panel
    constraint_results: Dict[pd.Timestamp, ConstraintResult] = field(default_factory=dict)

    @property
    def n_rebalances(self) -> int:
        return len(self.constraint_results)

    def turnover(self) -> pd.Series:
        """Target-weight turnover per rebalance date."""
        return pd.Series(
            {d: r.turnover for d, r in self.constraint_results.items()}, dtype=float, name="turnover"
        )

    def adjustments_frame(self) -> pd.DataFrame:
        rows = []
        for when, result in self.constraint_results.items():
            for adjustment in result.adjustments:
                row = adjustment.to_dict()
                row["date"] = when
                rows.append(row)
        return pd.DataFrame(rows)


class PortfolioConstructor:
    """
    Builds target-weight Panels from factor signals.

    Example:
        constructor = PortfolioConstructor(settings.portfolio)
        weights = constructor.construct(factor_panel["momentum"], store=store)
    """

    def __init__(self, config: Optional[PortfolioConfig] = None) -> None:
        self.config = config or PortfolioConfig()
        self.pipeline = ConstraintPipeline(self.config)
        self._logger = get_logger(__name__)

    def construct(
        self,
        signal: Union[Panel, Mapping[str, Panel]],
        store: Optional[BarStore] = None,
        groups: Optional[Mapping[AssetId, str]] = None,
        factor_id: Optional[str] = None,
        factor_weights: Optional[Mapping[str, float]] = None,
    ) -> Panel:
        """Target-weight Panel (see ``construct_detailed``)."""
        return self.construct_detailed(signal, store, groups, factor_id, factor_weights).weights

    def construct_detailed(
        self,
        signal: Union[Panel, Mapping[str, Panel]],
        store: Optional[BarStore] = None,
        groups: Optional[Mapping[AssetId, str]] = None,
        factor_id: Optional[str] = None,
        factor_weights: Optional[Mapping[str, float]] = None,
    ) -> ConstructionResult:
        """
        Run the three stages over every signal date.

        Args:
            signal: Signal Panel, or a factor mapping (a FactorPanel works)
            store: Bar source (required for risk_scaled weighting)
            groups: asset -> group label for group neutralization
            factor_id: Factor to use when ``signal`` is a mapping
            factor_weights: Composite weights when ``signal`` is a mapping
                and no ``factor_id`` is given (equal weights by default)

        Raises:
            ConfigurationError: risk_scaled without a store, unknown factor
            ConsistencyViolation: Constraint enforcement failed
        """
        cfg = self.config
        panel = self._resolve_signal(signal, factor_id, factor_weights)
        if cfg.weighting_scheme is WeightingScheme.RISK_SCALED and store is None:
            raise ConfigurationError("risk_scaled weighting requires a BarStore", field="weighting_scheme")

        records = []
        results: Dict[pd.Timestamp, ConstraintResult] = {}
        previous: Optional[pd.Series] = None

        with TimedOperation("portfolio_construction", self._logger):
            for when, section in panel.groupby_date():
                transformed = transform_signal(section, cfg.signal_transform, cfg.neutralization, groups)
                volatility = None
                if cfg.weighting_scheme is WeightingScheme.RISK_SCALED:
                    volatility = realized_volatility(store, list(transformed.index), when, cfg.vol_lookback)
                raw = compute_weights(
                    transformed,
                    scheme=cfg.weighting_scheme,
                    fraction=cfg.quantile_fraction,
                    gross_exposure=cfg.gross_exposure,
                    volatility=volatility,
                )
                result = self.pipeline.apply(raw, previous, date=when)
                index = section.index.union(result.weights.index)
                weights = result.weights.reindex(index, fill_value=0.0)

                records.extend((when, int(asset), float(w)) for asset, w in weights.items())
                results[when] = result
                previous = result.weights

        self._logger.info(
            "Portfolio construction completed",
            signal=panel.name,
            rebalances=len(results),
            scheme=cfg.weighting_scheme.value,
            adjustments=sum(r.adjustment_count for r in results.values()),
        )
        return ConstructionResult(weights=Panel.from_records(records, name="weight"), constraint_results=results)

    def _resolve_signal(
        self,
        signal: Union[Panel, Mapping[str, Panel]],
        factor_id: Optional[str],
        factor_weights: Optional[Mapping[str, float]],
    ) -> Panel:
        if isinstance(signal, Panel):
            return signal
        if factor_id is not None:
            if factor_id not in signal:
                raise ConfigurationError(f"Factor '{factor_id}' not in signal mapping", field="factor_id")
            return signal[factor_id]
        return composite_panel(signal, factor_weights, self.config.signal_transform)
