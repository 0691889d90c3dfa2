"""
Strategy Factory

Resolves the DatabaseStrategy for an engine tag. Adding an engine means adding a
strategy class and registering it here; nothing else branches on the tag.
"""

import logging
from typing import Dict, List, Type

from .base import DatabaseStrategy
from .engine import DatabaseEngine
from .postgres import PostgresStrategy
from .redis import RedisStrategy
from ..errors import UnknownEngineError

logger = logging.getLogger(__name__)

_STRATEGIES: Dict[DatabaseEngine, Type[DatabaseStrategy]] = {
    DatabaseEngine.POSTGRES: PostgresStrategy,
    DatabaseEngine.REDIS: RedisStrategy,
}


class StrategyFactory:
    """Factory for database strategies keyed by engine tag."""

    @staticmethod
    def get_strategy(engine: str) -> DatabaseStrategy:
        """
        Get the strategy for an engine tag.

        Args:
            engine: Engine tag (e.g. "postgres", "redis")

        Returns:
            Strategy instance

        Raises:
            UnknownEngineError: If no strategy is registered for the tag
        """
        try:
            engine_enum = DatabaseEngine.from_string(engine)
        except UnknownEngineError:
            raise UnknownEngineError(engine, StrategyFactory.supported_engines()) from None
        strategy_cls = _STRATEGIES.get(engine_enum)
        if strategy_cls is None:
            raise UnknownEngineError(engine, StrategyFactory.supported_engines())
        return strategy_cls()

    @staticmethod
    def supported_engines() -> List[str]:
        return [engine.value for engine in _STRATEGIES]


def get_strategy(engine: str) -> DatabaseStrategy:
    """Convenience wrapper around StrategyFactory.get_strategy()."""
    return StrategyFactory.get_strategy(engine)
