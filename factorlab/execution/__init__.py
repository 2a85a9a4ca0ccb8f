"""Execution layer: cost model and fill simulation."""

from factorlab.execution.costs import CostBreakdown, CostModel
from factorlab.execution.simulator import ExecutionModel, ExecutionResult, Fill, Side

__all__ = [
    "CostBreakdown",
    "CostModel",
    "ExecutionModel",
    "ExecutionResult",
    "Fill",
    "Side",
]
