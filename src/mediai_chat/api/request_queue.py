"""Per-conversation request serialization."""

import asyncio
import contextlib
from typing import Any, AsyncIterator, Awaitable, Callable, Dict

import structlog

logger = structlog.get_logger()


class QueueTimeout(TimeoutError):
    """A request waited too long for its conversation slot."""


def _abandon(lock: asyncio.Lock, waiter: "asyncio.Future[bool]") -> None:
    waiter.cancel()
    # A waiter that won the lock before the cancel landed hands it back.
    waiter.add_done_callback(lambda task: task.cancelled() or lock.release())


class RequestQueue:
    """Runs requests of one conversation one at a time, in arrival order.

    Requests of different conversations run concurrently, up to
    ``max_concurrent`` at once.
    """

    def __init__(self, max_concurrent: int = 10, queue_timeout: float = 90.0) -> None:
        self.max_concurrent = max_concurrent
        self.queue_timeout = queue_timeout
        self.semaphore = asyncio.Semaphore(max_concurrent)
        self.active_requests = 0
        self._lock = asyncio.Lock()
        self._conversation_locks: Dict[int, asyncio.Lock] = {}
        self._waiters: Dict[int, int] = {}
        logger.info("request_queue_initialized", max_concurrent=max_concurrent)

    async def _checkout(self, conversation_id: int) -> asyncio.Lock:
        async with self._lock:
            lock = self._conversation_locks.setdefault(conversation_id, asyncio.Lock())
            self._waiters[conversation_id] = self._waiters.get(conversation_id, 0) + 1
            return lock

    async def _checkin(self, conversation_id: int) -> None:
        async with self._lock:
            self._waiters[conversation_id] -= 1
            if not self._waiters[conversation_id]:
                del self._waiters[conversation_id]
                del self._conversation_locks[conversation_id]

    async def _wait_for_lock(self, lock: asyncio.Lock) -> bool:
        """Acquire lock within queue_timeout; False when the wait expired.

        A lock granted just as the wait expires, or as the caller is
        cancelled, is released again.
        """
        waiter = asyncio.ensure_future(lock.acquire())
        try:
            await asyncio.wait({waiter}, timeout=self.queue_timeout)
        except asyncio.CancelledError:
            _abandon(lock, waiter)
            raise
        if waiter.done():
            return True
        _abandon(lock, waiter)
        return False

    @contextlib.asynccontextmanager
    async def acquire(self, conversation_id: int) -> AsyncIterator[None]:
        """Hold the conversation's slot; waiters are served FIFO."""
        lock = await self._checkout(conversation_id)
        try:
            if not await self._wait_for_lock(lock):
                logger.error("request_timeout", conversation_id=conversation_id)
                raise QueueTimeout("Request processing timed out")
            try:
                async with self.semaphore:
                    self.active_requests += 1
                    try:
                        yield
                    finally:
                        self.active_requests -= 1
            finally:
                lock.release()
        finally:
            await self._checkin(conversation_id)

    async def get_queue_length(self) -> int:
        """Requests currently holding or waiting for a slot."""
        async with self._lock:
            return sum(self._waiters.values())

    async def enqueue_request(
        self,
        conversation_id: int,
        task: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        """Run task once the conversation's earlier requests have finished."""
        async with self.acquire(conversation_id):
            return await task(*args, **kwargs)
