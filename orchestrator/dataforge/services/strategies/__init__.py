"""
Database Strategies - engine-specific policy objects

- DatabaseEngine: supported engine tags
- DatabaseStrategy: abstract interface every engine implements
- StrategyFactory / get_strategy: resolve a strategy by engine tag
"""

from .engine import DatabaseEngine
from .base import DatabaseStrategy, BackupJobSpec
from .postgres import PostgresStrategy
from .redis import RedisStrategy
from .factory import StrategyFactory, get_strategy

__all__ = [
    "DatabaseEngine",
    "DatabaseStrategy",
    "BackupJobSpec",
    "PostgresStrategy",
    "RedisStrategy",
    "StrategyFactory",
    "get_strategy",
]
