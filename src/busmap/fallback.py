"""Ordered provider strategies with explicit provenance."""

import logging
from dataclasses import dataclass
from typing import Callable, Generic, List, Optional, Sequence, Tuple, TypeVar

from .errors import DataMissing, TransitDataError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Strategy = Tuple[str, Callable[[], T]]


@dataclass
class StrategyResult(Generic[T]):
    """Outcome of running one named strategy."""
    source: str
    value: Optional[T] = None
    error: Optional[TransitDataError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def attempt(name: str, build: Callable[[], T]) -> StrategyResult:
    try:
        return StrategyResult(source=name, value=build())
    except TransitDataError as e:
        return StrategyResult(source=name, error=e)


def first_success(strategies: Sequence[Strategy], what: str) -> StrategyResult:
    """Run ``strategies`` in order and return the first successful result.

    Each failure is logged as a warning. When every strategy fails the last
    failure is raised as ``DataMissing``.
    """
    failures: List[StrategyResult] = []
    for name, build in strategies:
        result = attempt(name, build)
        if result.ok:
            if failures:
                logger.warning(f"{what}: using fallback source '{name}'")
            return result
        logger.warning(f"{what}: source '{name}' failed ({result.error})")
        failures.append(result)

    if not failures:
        raise DataMissing(f"{what}: no sources configured")
    last = failures[-1]
    if isinstance(last.error, DataMissing):
        raise last.error
    raise DataMissing(f"{what}: all sources failed, last error: {last.error}") from last.error
