"""Data layer: panels, bar store and evaluation calendars."""

from factorlab.data.calendar import Frequency, evaluation_dates, evaluation_mask
from factorlab.data.model import (
    ASSET_LEVEL,
    BAR_FIELDS,
    DATE_LEVEL,
    VALUE_COLUMN,
    AssetId,
    AssetIndex,
    Bar,
    Panel,
    normalize_dates,
    normalize_timestamp,
)
from factorlab.data.store import BarStore, MissingDataPolicy, Window
from factorlab.data.synthetic import SyntheticBarGenerator

__all__ = [
    "ASSET_LEVEL",
    "BAR_FIELDS",
    "DATE_LEVEL",
    "VALUE_COLUMN",
    "AssetId",
    "AssetIndex",
    "Bar",
    "BarStore",
    "Frequency",
    "MissingDataPolicy",
    "Panel",
    "SyntheticBarGenerator",
    "Window",
    "evaluation_dates",
    "evaluation_mask",
    "normalize_dates",
    "normalize_timestamp",
]
