"""
Bounded byte relay between blocking producer threads and asyncio consumers.

Exec stdout, pod logs and object-store bodies are all read by blocking client
libraries (kubernetes websocket, urllib3, botocore). Each producer runs in a
worker thread and hands chunks to the event loop through a bounded queue, so a
slow HTTP client throttles the producer instead of letting it buffer the whole
stream in memory.

Cancellation works in both directions:
- consumer stops iterating (client disconnect) -> relay.cancel() -> the producer's
  registered close callbacks run and its next put() returns False
- producer fails -> the consumer's iteration raises ChannelFailureError
"""

import asyncio
import concurrent.futures
import logging
import threading
from typing import AsyncIterator, Callable, List, Optional

from .errors import ChannelFailureError

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while a producer waits on a full queue
_PUT_POLL_INTERVAL = 0.5


class _EndOfStream:
    pass


class _Failure:
    def __init__(self, error: BaseException):
        self.error = error


_EOF = _EndOfStream()


class ByteRelay:
    """
    Single-producer, single-consumer relay with a bounded queue.

    The producer side (put/finish/fail) must be called from a worker thread;
    the consumer side (async iteration, cancel) from the event loop.
    """

    def __init__(self, maxsize: int = 16, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._cancelled = threading.Event()
        self._on_cancel: List[Callable[[], None]] = []
        self._lock = threading.Lock()

    # =========================================================================
    # Producer side (worker thread)
    # =========================================================================

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def on_cancel(self, callback: Callable[[], None]) -> None:
        """
        Register a callback closing the producer's channel on cancellation.

        Runs immediately if the relay is already cancelled.
        """
        with self._lock:
            if not self._cancelled.is_set():
                self._on_cancel.append(callback)
                return
        self._run_callback(callback)

    def put(self, chunk: bytes) -> bool:
        """
        Hand a chunk to the consumer, blocking while the queue is full.

        Returns:
            False if the consumer went away; the producer should stop.
        """
        if not chunk:
            return not self.cancelled
        return self._put(chunk)

    def finish(self) -> None:
        """Signal a clean end of stream."""
        self._put(_EOF)

    def fail(self, error: BaseException) -> None:
        """Signal a failed stream; the consumer raises ChannelFailureError."""
        self._put(_Failure(error))

    def _put(self, item) -> bool:
        if self._cancelled.is_set():
            return False
        future = asyncio.run_coroutine_threadsafe(self._queue.put(item), self._loop)
        while True:
            try:
                future.result(timeout=_PUT_POLL_INTERVAL)
                return True
            except concurrent.futures.TimeoutError:
                if self._cancelled.is_set():
                    future.cancel()
                    return False

    # =========================================================================
    # Consumer side (event loop)
    # =========================================================================

    def cancel(self) -> None:
        """Stop the producer and close its channel."""
        with self._lock:
            if self._cancelled.is_set():
                return
            self._cancelled.set()
            callbacks, self._on_cancel = self._on_cancel, []
        for callback in callbacks:
            self._run_callback(callback)

    @staticmethod
    def _run_callback(callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            logger.debug(f"Error closing relay channel: {e}")

    async def __aiter__(self) -> AsyncIterator[bytes]:
        while True:
            item = await self._queue.get()
            if item is _EOF:
                return
            if isinstance(item, _Failure):
                if isinstance(item.error, ChannelFailureError):
                    raise item.error
                raise ChannelFailureError(str(item.error)) from item.error
            yield item


async def relay_from_thread(
    producer: Callable[[ByteRelay], None],
    maxsize: int = 16
) -> AsyncIterator[bytes]:
    """
    Run `producer(relay)` in a worker thread and yield the chunks it puts.

    The producer returning normally ends the stream; raising fails it. Leaving
    the iteration early (break, client disconnect, task cancellation) cancels
    the relay, which closes the producer's channel via its on_cancel callbacks.
    """
    relay = ByteRelay(maxsize=maxsize)

    def run() -> None:
        try:
            producer(relay)
        except Exception as e:
            if relay.cancelled:
                logger.debug(f"Producer stopped after cancellation: {e}")
            else:
                relay.fail(e)
        else:
            relay.finish()

    task = asyncio.create_task(asyncio.to_thread(run))
    try:
        async for chunk in relay:
            yield chunk
    finally:
        relay.cancel()
        # The worker thread exits on its own once its channel is closed
        task.add_done_callback(_log_producer_exit)


def _log_producer_exit(task: "asyncio.Task") -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.warning(f"Relay producer exited with error: {error}")
