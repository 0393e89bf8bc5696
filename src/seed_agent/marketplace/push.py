"""Push notification channel for newly posted jobs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class PushChannelClosed(RuntimeError):
    """The push subscription ended and must be re-established."""


class PushChannel(Protocol):
    """Asynchronous source of job notification payloads."""

    async def connect(self) -> None:
        """Open the subscription; raises when the channel cannot connect."""

    def notifications(self) -> AsyncIterator[dict[str, Any]]:
        """Yield payloads until the subscription drops."""

    async def close(self) -> None:
        """Tear the subscription down for good."""


_CLOSED = object()


class QueuePushChannel:
    """In-process push channel fed through `publish()`.

    Used to wire any external notification transport (webhook receiver,
    websocket bridge) into the dispatcher, and by tests. `fail()` drops the
    current subscription the way a lost connection would; the dispatcher then
    reconnects. `close()` is permanent.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._connected = False
        self._closed = False
        self.connect_count = 0

    @property
    def connected(self) -> bool:
        return self._connected

    def publish(self, payload: dict[str, Any]) -> None:
        self._queue.put_nowait(payload)

    def fail(self, message: str = "push connection lost") -> None:
        self._queue.put_nowait(PushChannelClosed(message))

    async def connect(self) -> None:
        if self._closed:
            raise PushChannelClosed("push channel is closed")
        self._connected = True
        self.connect_count += 1
        logger.debug("Push channel connected (attempt %d)", self.connect_count)

    async def notifications(self) -> AsyncIterator[dict[str, Any]]:
        while self._connected:
            item = await self._queue.get()
            if item is _CLOSED:
                self._connected = False
                return
            if isinstance(item, PushChannelClosed):
                self._connected = False
                raise item
            if isinstance(item, dict):
                yield item

    async def close(self) -> None:
        self._closed = True
        if self._connected:
            self._queue.put_nowait(_CLOSED)
