"""
Database Engine Enumeration

Defines the database engines DataForge can provision. The engine tag is stored
on every StatefulSet (label dataforge.db/type) so strategies can be re-resolved
later without the caller remembering the engine.
"""

from enum import Enum

from ..errors import UnknownEngineError


class DatabaseEngine(str, Enum):
    """
    Supported database engines.

    Attributes:
        POSTGRES: PostgreSQL (relational)
        REDIS: Redis (key-value)
    """

    POSTGRES = "postgres"
    REDIS = "redis"

    @classmethod
    def from_string(cls, value: str) -> "DatabaseEngine":
        """
        Convert a string to DatabaseEngine enum.

        Raises:
            UnknownEngineError: If value is not a supported engine
        """
        value_lower = (value or "").lower().strip()
        for engine in cls:
            if engine.value == value_lower:
                return engine
        raise UnknownEngineError(value)

    def __str__(self) -> str:
        return self.value
