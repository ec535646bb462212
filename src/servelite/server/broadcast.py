# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Lossy fan-out channel carrying zero-payload reload signals.

One producer (the filesystem watcher thread) publishes; every websocket
handler holds a :class:`Subscription` living on the server's event loop.
Publishing never blocks: each subscription keeps a bounded buffer and drops
its oldest pending signal on overflow, which is harmless because a reload
signal only says "something changed, fetch again".

Example::

    broadcaster = ReloadBroadcaster(capacity=100)

    async def forward(websocket: WebSocket) -> None:
        with broadcaster.subscribe() as subscription:
            async for _ in subscription:
                await websocket.send_text(RELOAD_MESSAGE)

    watcher = ChangeWatcher(root, broadcaster.publish)
"""

from __future__ import annotations

import asyncio
import threading
from collections import deque
from collections.abc import AsyncIterator
from types import TracebackType
from typing import Self

from ..errors import ServeLiteError
from ..runtime.logging import StructuredLogger, get_logger

RELOAD_MESSAGE = "reload"
DEFAULT_CAPACITY = 100

logger: StructuredLogger = get_logger(__name__)


class BroadcastClosed(ServeLiteError):
    """Raised by :meth:`Subscription.receive` once the stream has ended."""


class Subscription:
    """A single consumer's view of a :class:`ReloadBroadcaster`.

    Created by :meth:`ReloadBroadcaster.subscribe` and bound to the event loop
    running at that moment. Only signals published after creation are seen.
    """

    def __init__(
        self,
        broadcaster: ReloadBroadcaster,
        loop: asyncio.AbstractEventLoop,
        capacity: int,
    ) -> None:
        super().__init__()
        self._broadcaster = broadcaster
        self._loop = loop
        self._pending: deque[None] = deque(maxlen=capacity)
        self._wakeup = asyncio.Event()
        self._closed = False
        self._dropped = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of buffered signals not yet received."""
        return len(self._pending)

    @property
    def dropped(self) -> int:
        """Number of signals discarded because the buffer was full."""
        return self._dropped

    async def receive(self) -> None:
        """Wait for the next reload signal.

        Raises:
            BroadcastClosed: When the subscription or its broadcaster is
                closed and no buffered signal remains.
        """
        while not self._pending:
            if self._closed:
                raise BroadcastClosed("Reload channel closed")
            self._wakeup.clear()
            _ = await self._wakeup.wait()
        self._pending.popleft()

    def close(self) -> None:
        """Unsubscribe and end this stream. Idempotent."""
        self._broadcaster._discard(self)  # pyright: ignore[reportPrivateUsage]
        self._end()

    def _offer(self) -> bool:
        """Hand a signal to this subscription from any thread."""
        if self._on_own_loop():
            self._push()
            return True
        try:
            _ = self._loop.call_soon_threadsafe(self._push)
        except RuntimeError:
            # The owning loop has shut down; nothing can receive anymore.
            self._broadcaster._discard(self)  # pyright: ignore[reportPrivateUsage]
            return False
        return True

    def _end(self) -> None:
        if self._on_own_loop():
            self._mark_closed()
            return
        if self._loop.is_closed():
            self._closed = True
            return
        try:
            _ = self._loop.call_soon_threadsafe(self._mark_closed)
        except RuntimeError:
            self._closed = True

    def _on_own_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def _push(self) -> None:
        if self._closed:
            return
        if len(self._pending) == self._pending.maxlen:
            self._dropped += 1
        self._pending.append(None)
        self._wakeup.set()

    def _mark_closed(self) -> None:
        self._closed = True
        self._wakeup.set()

    def __aiter__(self) -> AsyncIterator[None]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[None]:
        while True:
            try:
                await self.receive()
            except BroadcastClosed:
                return
            yield None

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()


class ReloadBroadcaster:
    """Thread-safe single-producer, multi-consumer reload channel."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        super().__init__()
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._capacity = capacity
        self._lock = threading.Lock()
        self._subscribers: set[Subscription] = set()
        self._closed = False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self) -> Subscription:
        """Return a new subscription bound to the running event loop.

        Subscribing after :meth:`close` yields an already-ended subscription.
        Must be called from a coroutine or callback running on a loop.
        """
        loop = asyncio.get_running_loop()
        subscription = Subscription(self, loop, self._capacity)
        with self._lock:
            if not self._closed:
                self._subscribers.add(subscription)
                return subscription
        subscription._mark_closed()  # pyright: ignore[reportPrivateUsage]
        return subscription

    def publish(self) -> int:
        """Send a reload signal to every current subscriber.

        Never blocks. Returns the number of subscribers the signal was handed
        to; with no subscribers the signal is simply dropped.
        """
        with self._lock:
            if self._closed:
                return 0
            subscribers = tuple(self._subscribers)
        return sum(1 for subscription in subscribers if subscription._offer())  # pyright: ignore[reportPrivateUsage]

    def close(self) -> None:
        """End the stream for all subscribers. Idempotent."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = tuple(self._subscribers)
            self._subscribers.clear()
        for subscription in subscribers:
            subscription._end()  # pyright: ignore[reportPrivateUsage]
        logger.debug(
            "Reload channel closed",
            event="broadcast.close",
            context={"subscribers": len(subscribers)},
        )

    def _discard(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)


__all__ = [
    "DEFAULT_CAPACITY",
    "RELOAD_MESSAGE",
    "BroadcastClosed",
    "ReloadBroadcaster",
    "Subscription",
]
