"""Shared fixtures: logging reset, small deterministic bar stores and settings."""

from __future__ import annotations

import logging

import numpy as np
import pandas as pd
import pytest
import structlog

from factorlab.config.settings import load_settings
from factorlab.data.store import BarStore
from factorlab.data.synthetic import SyntheticBarGenerator
from factorlab.utils.logger import get_run_id, set_run_id


@pytest.fixture(autouse=True)
def restore_logging():
    """Undo global logging configuration after each test."""
    package_logger = logging.getLogger("factorlab")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    propagate = package_logger.propagate
    run_id = get_run_id()
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    package_logger.handlers = handlers
    package_logger.setLevel(level)
    package_logger.propagate = propagate
    set_run_id(run_id)


@pytest.fixture
def generator() -> SyntheticBarGenerator:
    return SyntheticBarGenerator(random_seed=42)


@pytest.fixture
def synthetic_store(generator: SyntheticBarGenerator) -> BarStore:
    """12 assets over 80 business days."""
    return generator.generate_store(n_assets=12, n_days=80, start="2024-01-01")


@pytest.fixture
def sessions() -> pd.DatetimeIndex:
    return pd.bdate_range("2024-01-01", periods=5)


@pytest.fixture
def two_asset_store(sessions: pd.DatetimeIndex) -> BarStore:
    """Asset 0 rises 10 -> 14, asset 1 falls 20 -> 16, one point per session."""
    closes = pd.DataFrame(
        {0: [10.0, 11.0, 12.0, 13.0, 14.0], 1: [20.0, 19.0, 18.0, 17.0, 16.0]},
        index=sessions,
    )
    return BarStore.from_closes(closes)


@pytest.fixture
def flat_store(sessions: pd.DatetimeIndex) -> BarStore:
    """Two assets with constant prices."""
    closes = pd.DataFrame({0: np.full(5, 10.0), 1: np.full(5, 20.0)}, index=sessions)
    return BarStore.from_closes(closes)


@pytest.fixture
def zero_cost_settings():
    return load_settings(
        execution={"slippage_k": 0.0, "half_spread_bps": 0.0},
        backtest={"initial_capital": 100_000.0},
    )
