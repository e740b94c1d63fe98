"""
Buffered at-least-once queue used as the second ingress for checkout events.

A received message stays invisible for the visibility timeout. If it is not
deleted before the timeout expires it becomes visible again and is received
once more, with its receive count incremented.
"""

import logging
import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Protocol

from shared.events import Envelope

logger = logging.getLogger(__name__)

DEFAULT_VISIBILITY_TIMEOUT = 30.0


@dataclass
class QueueMessage:
    receipt: str
    body: bytes
    receive_count: int = 1


class Queue(Protocol):
    """What the queue poller needs. Producers feed the queue through a channel rule."""

    name: str

    async def receive(self, max_messages: int = 1) -> list[QueueMessage]:
        ...

    async def delete(self, message: QueueMessage) -> None:
        ...

    async def abandon(self, message: QueueMessage) -> None:
        ...


@dataclass
class _Slot:
    body: bytes
    receive_count: int = 0
    visible_at: float = 0.0
    receipt: str | None = None


@dataclass
class InMemoryQueue:
    name: str
    visibility_timeout: float = DEFAULT_VISIBILITY_TIMEOUT
    clock: Callable[[], float] = time.monotonic
    _slots: list[_Slot] = field(default_factory=list, init=False, repr=False)

    async def __call__(self, envelope: Envelope) -> None:
        # Lets a channel rule route straight into the queue.
        await self.send(envelope)

    async def send(self, envelope: Envelope) -> None:
        await self.send_raw(envelope.model_dump_json(by_alias=True).encode())

    async def send_raw(self, body: bytes) -> None:
        self._slots.append(_Slot(body=body))

    async def receive(self, max_messages: int = 1) -> list[QueueMessage]:
        now = self.clock()
        received: list[QueueMessage] = []
        for slot in self._slots:
            if len(received) >= max_messages:
                break
            if slot.visible_at > now:
                continue
            slot.receive_count += 1
            slot.visible_at = now + self.visibility_timeout
            slot.receipt = str(uuid.uuid4())
            received.append(
                QueueMessage(receipt=slot.receipt, body=slot.body, receive_count=slot.receive_count)
            )
        return received

    async def delete(self, message: QueueMessage) -> None:
        for slot in self._slots:
            if slot.receipt == message.receipt:
                self._slots.remove(slot)
                return
        # Stale receipt: the message timed out and was received again elsewhere.
        logger.warning(
            "Delete with stale receipt ignored",
            extra={"queue": self.name, "receipt": message.receipt},
        )

    async def abandon(self, message: QueueMessage) -> None:
        # Nothing to do: the message reappears once its visibility timeout expires.
        logger.debug("Message abandoned", extra={"queue": self.name, "receipt": message.receipt})

    def __len__(self) -> int:
        return len(self._slots)


DeadLetter = Callable[[bytes, str], Awaitable[None]]


@dataclass
class InMemoryDeadLetter:
    """Collects messages that can never be processed, with the reason."""

    messages: list[tuple[bytes, str]] = field(default_factory=list)

    async def __call__(self, body: bytes, reason: str) -> None:
        self.messages.append((body, reason))
