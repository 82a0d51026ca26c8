"""
Cancellable subscriptions.

A Subscription turns "call me back when a message arrives" into a bounded
async iterator: subscribe, read messages until a deadline, then unsubscribe
when the ``async with`` block exits.

    async with await bridge.subscribe_commands() as commands:
        message = await commands.first(lambda m: m.data == b"OPEN_DOOR", timeout=30)
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReceivedMessage:
    """A message delivered to a subscription."""
    source: str
    data: bytes
    attributes: Dict[str, str] = field(default_factory=dict)
    message_id: Optional[str] = None

    def text(self, encoding: str = "utf-8") -> str:
        return self.data.decode(encoding)


class Subscription(ABC):
    """Base class for bounded, explicitly closed subscriptions."""

    def __init__(self, name: str):
        self.name = name
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        logger.debug("Closing subscription %s", self.name)
        await self._unsubscribe()

    @abstractmethod
    async def _receive(self, timeout: float) -> List[ReceivedMessage]:
        """Wait up to *timeout* seconds for messages; may return an empty list."""

    @abstractmethod
    async def _unsubscribe(self) -> None:
        """Release the remote subscription."""

    async def messages(
        self,
        timeout: float,
        max_messages: Optional[int] = None
    ) -> AsyncIterator[ReceivedMessage]:
        """
        Yield messages until *timeout* seconds pass or *max_messages* arrive.

        The iterator simply ends at the deadline; it never blocks past it.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        count = 0
        while not self._closed:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            for message in await self._receive(remaining):
                yield message
                count += 1
                if max_messages is not None and count >= max_messages:
                    return

    async def first(
        self,
        predicate: Optional[Callable[[ReceivedMessage], bool]] = None,
        timeout: float = 30.0
    ) -> ReceivedMessage:
        """
        Return the first message matching *predicate*.

        Raises:
            TimeoutError: Nothing matched before the deadline
        """
        async with aclosing(self.messages(timeout)) as stream:
            async for message in stream:
                if predicate is None or predicate(message):
                    return message
        raise TimeoutError(f"No matching message on {self.name} within {timeout}s")


class QueueSubscription(Subscription):
    """
    Subscription fed by a push source such as an MQTT network thread.

    Must be created inside the running event loop; ``deliver`` may be called
    from any thread.
    """

    def __init__(
        self,
        name: str,
        on_close: Optional[Callable[[], Union[None, Awaitable[None]]]] = None
    ):
        super().__init__(name)
        self._loop = asyncio.get_running_loop()
        self._queue: "asyncio.Queue[ReceivedMessage]" = asyncio.Queue()
        self._on_close = on_close

    def deliver(self, message: ReceivedMessage) -> None:
        """Hand a message to the subscription (thread-safe)."""
        if self._closed:
            return
        self._loop.call_soon_threadsafe(self._queue.put_nowait, message)

    async def _receive(self, timeout: float) -> List[ReceivedMessage]:
        try:
            message = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return []
        return [message]

    async def _unsubscribe(self) -> None:
        if self._on_close is None:
            return
        result = self._on_close()
        if inspect.isawaitable(result):
            await result
