"""
Log tailing for database containers.
"""

import logging
from typing import AsyncIterator, Optional

from .errors import NotFoundError
from .kubernetes.helpers import DATABASE_CONTAINER
from .streams import relay_from_thread
from ..utils.resource_naming import get_primary_pod_name, get_statefulset_name

logger = logging.getLogger(__name__)


class LogService:
    """Follows the database container log of an instance."""

    def __init__(self, k8s_client=None, settings=None):
        self._k8s = k8s_client
        self._settings = settings

    @property
    def k8s(self):
        if self._k8s is None:
            from .kubernetes.client import get_k8s_client
            self._k8s = get_k8s_client()
        return self._k8s

    @property
    def settings(self):
        if self._settings is None:
            from ..config import get_settings
            self._settings = get_settings()
        return self._settings

    async def open_log_stream(self, name: str) -> AsyncIterator[bytes]:
        """
        Prepare a following, timestamped tail of the instance's database log.

        Raises:
            NotFoundError: If the instance does not exist
        """
        if await self.k8s.read_statefulset(get_statefulset_name(name)) is None:
            raise NotFoundError()

        pod_name = get_primary_pod_name(name)
        settings = self.settings

        def produce(relay) -> None:
            self.k8s.stream_pod_logs(
                pod_name,
                DATABASE_CONTAINER,
                relay,
                tail_lines=settings.log_tail_lines,
                chunk_size=settings.stream_chunk_size
            )

        async def stream() -> AsyncIterator[bytes]:
            logger.info(f"[LOGS] Following logs of {name}")
            try:
                async for chunk in relay_from_thread(produce, maxsize=settings.stream_queue_size):
                    yield chunk
            finally:
                logger.info(f"[LOGS] Stopped following logs of {name}")

        return stream()


# Global instance - lazily initialized
_log_service: Optional[LogService] = None


def get_log_service() -> LogService:
    """Get or create the global LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
