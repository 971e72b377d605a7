"""
Message consolidation buffer.

Customers often split one question over several quick messages. Messages
for the same conversation that arrive within the buffer window of the
previous one are joined and processed once; every caller in the batch
receives the same result.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SEPARATOR = "\n\n"


@dataclass
class _Batch:
    future: asyncio.Future
    deadline: float
    messages: List[str] = field(default_factory=list)
    closed: bool = False


class MessageBuffer:
    """Debounces messages per conversation key."""

    def __init__(self, window_seconds: float = 3.0):
        self.window_seconds = window_seconds
        self._batches: Dict[str, _Batch] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return self.window_seconds > 0

    async def submit(
        self,
        key: str,
        message: str,
        handler: Callable[[str], Awaitable[T]],
    ) -> T:
        """
        Add a message to the conversation's batch and wait for the result.

        Args:
            key: Conversation key
            message: Message text
            handler: Called once with the joined batch text; the first
                caller's handler is the one used

        Returns:
            The handler's result for the whole batch
        """
        if not self.enabled:
            return await handler(message)

        loop = asyncio.get_running_loop()
        batch = self._batches.get(key)

        if batch is None or batch.closed:
            batch = _Batch(future=loop.create_future(), deadline=loop.time() + self.window_seconds)
            batch.messages.append(message)
            self._batches[key] = batch
            task = loop.create_task(self._flush(key, batch, handler))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        else:
            batch.messages.append(message)
            batch.deadline = loop.time() + self.window_seconds
            logger.debug(f"Buffered message {len(batch.messages)} for conversation batch")

        return await asyncio.shield(batch.future)

    def pending_count(self, key: str) -> int:
        batch: Optional[_Batch] = self._batches.get(key)
        return len(batch.messages) if batch and not batch.closed else 0

    async def _flush(self, key: str, batch: _Batch, handler: Callable[[str], Awaitable[T]]):
        loop = asyncio.get_running_loop()
        while True:
            delay = batch.deadline - loop.time()
            if delay <= 0:
                break
            await asyncio.sleep(delay)

        batch.closed = True
        if self._batches.get(key) is batch:
            del self._batches[key]

        if len(batch.messages) > 1:
            logger.info(f"Consolidated {len(batch.messages)} messages into one turn")

        try:
            result = await handler(SEPARATOR.join(batch.messages))
        except Exception as e:
            batch.future.set_exception(e)
        else:
            batch.future.set_result(result)
