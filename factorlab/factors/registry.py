"""
Factor Registry - Mapping from factor id to FactorDefinition.

Factors are registered either directly or through a decorator:

Example:
    registry = FactorRegistry()

    @registry.factor("momentum_20", lookback=21, frequency="daily")
    def momentum_20(asset, date, window):
        return window.close[-1] / window.close[0] - 1

    registry.freeze()
    registry.get("momentum_20").lookback   # 21

Registries are mutable only until frozen. Evaluating from a frozen registry
guarantees the set of factors does not change during a run.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Iterator, List, Optional, Union

from factorlab.data.calendar import Frequency
from factorlab.exceptions import ConfigurationError
from factorlab.factors.base import FactorDefinition, FactorFn, FactorId


class FactorRegistry:
    """
    Registry of factor definitions.

    Attributes:
        _factors: Insertion-ordered mapping of factor ids to definitions
        _frozen: Whether further mutation is rejected
    """

    def __init__(self, definitions: Optional[Iterable[FactorDefinition]] = None) -> None:
        self._factors: Dict[FactorId, FactorDefinition] = {}
        self._frozen = False
        for definition in definitions or ():
            self.register(definition)

    def register(self, definition: FactorDefinition) -> FactorDefinition:
        """
        Add a definition.

        Raises:
            ConfigurationError: If the registry is frozen or the id is taken
        """
        self._check_mutable()
        if not isinstance(definition, FactorDefinition):
            raise ConfigurationError(
                f"Expected FactorDefinition, got {type(definition).__name__}"
            )
        if definition.factor_id in self._factors:
            raise ConfigurationError(
                f"Factor '{definition.factor_id}' is already registered",
                field="factor_id",
            )
        self._factors[definition.factor_id] = definition
        return definition

    def factor(
        self,
        factor_id: FactorId,
        *,
        lookback: int,
        frequency: Union[str, Frequency] = Frequency.DAILY,
        description: Optional[str] = None,
    ) -> Callable[[FactorFn], FactorFn]:
        """
        Decorator to register a scoring function.

        Args:
            factor_id: Unique identifier for the factor
            lookback: Window length in bars
            frequency: Evaluation frequency
            description: Human-readable description (defaults to the docstring)

        Returns:
            Decorator returning the function unchanged
        """

        def decorator(fn: FactorFn) -> FactorFn:
            self.register(
                FactorDefinition(
                    factor_id=factor_id,
                    lookback=lookback,
                    fn=fn,
                    frequency=frequency,
                    description=description or (fn.__doc__ or "").strip(),
                )
            )
            return fn

        return decorator

    def unregister(self, factor_id: FactorId) -> None:
        """
        Remove a factor.

        Raises:
            ConfigurationError: If frozen or the factor is not registered
        """
        self._check_mutable()
        if factor_id not in self._factors:
            raise ConfigurationError(f"Factor '{factor_id}' is not registered")
        del self._factors[factor_id]

    def get(self, factor_id: FactorId) -> FactorDefinition:
        """
        Get a definition by id.

        Raises:
            ConfigurationError: If the factor is not found
        """
        if factor_id not in self._factors:
            available = ", ".join(self._factors)
            raise ConfigurationError(
                f"Factor '{factor_id}' not found. Available factors: {available}"
            )
        return self._factors[factor_id]

    def ids(self) -> List[FactorId]:
        return list(self._factors)

    def definitions(self) -> List[FactorDefinition]:
        return list(self._factors.values())

    def subset(self, factor_ids: Iterable[FactorId]) -> "FactorRegistry":
        """New (unfrozen) registry holding only the given factors."""
        return FactorRegistry(self.get(fid) for fid in factor_ids)

    def freeze(self) -> "FactorRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def max_lookback(self) -> int:
        return max((d.lookback for d in self._factors.values()), default=0)

    def _check_mutable(self) -> None:
        if self._frozen:
            raise ConfigurationError("Factor registry is frozen")

    def __contains__(self, factor_id: object) -> bool:
        return factor_id in self._factors

    def __iter__(self) -> Iterator[FactorDefinition]:
        return iter(list(self._factors.values()))

    def __len__(self) -> int:
        return len(self._factors)

    def __repr__(self) -> str:
        return f"FactorRegistry(factors={self.ids()}, frozen={self._frozen})"


# Process-wide registry populated by factorlab.factors.library
default_registry = FactorRegistry()
