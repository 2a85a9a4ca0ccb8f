"""Factor definitions, registry and rolling-window runtime."""

from factorlab.factors.base import FactorDefinition, FactorFn, FactorId
from factorlab.factors.registry import FactorRegistry, default_registry
from factorlab.factors import library
from factorlab.factors.library import register_library
from factorlab.factors.runtime import FactorPanel, FactorRunner, evaluate

__all__ = [
    "FactorDefinition",
    "FactorFn",
    "FactorId",
    "FactorPanel",
    "FactorRegistry",
    "FactorRunner",
    "default_registry",
    "evaluate",
    "library",
    "register_library",
]
