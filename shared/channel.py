"""
Pattern-routed publish/subscribe channel.

Publishers tag each message with a (source, detail_type) pair; subscribers
register a target for an EventPattern and receive only matching envelopes.

Delivery is at-least-once:
  - a target that raises leaves the envelope in the redelivery backlog
  - the same envelope may reach a target more than once
  - only per-producer order on a single channel is preserved
Every target must therefore be idempotent.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol

from shared.errors import ChannelUnavailableError, RedeliveryRequested
from shared.events import Envelope

logger = logging.getLogger(__name__)

Target = Callable[[Envelope], Awaitable[None]]


@dataclass(frozen=True)
class EventPattern:
    """Matches envelopes by source and detail type. None matches anything."""

    source: str | None = None
    detail_type: str | None = None

    def matches(self, envelope: Envelope) -> bool:
        if self.source is not None and envelope.source != self.source:
            return False
        if self.detail_type is not None and envelope.detail_type != self.detail_type:
            return False
        return True


@dataclass(frozen=True)
class PublishReceipt:
    message_id: str
    channel: str


class Channel(Protocol):
    name: str

    async def publish(self, source: str, detail_type: str, detail: dict[str, Any]) -> PublishReceipt:
        ...

    def subscribe(self, pattern: EventPattern, target: Target) -> None:
        ...


class InMemoryChannel:
    """
    In-process channel used by tests and local runs.

    publish() only buffers; drain() performs delivery, so the hand-off between
    publisher and subscriber stays asynchronous. Failed deliveries wait in the
    backlog until redeliver() is called, which is what a visibility timeout
    expiring looks like from the outside.
    """

    def __init__(self, name: str):
        self.name = name
        self.unavailable = False
        self.published: list[Envelope] = []
        self._subscriptions: list[tuple[EventPattern, Target]] = []
        self._pending: list[tuple[Envelope, Target]] = []
        self._backlog: list[tuple[Envelope, Target]] = []

    def subscribe(self, pattern: EventPattern, target: Target) -> None:
        self._subscriptions.append((pattern, target))

    async def publish(self, source: str, detail_type: str, detail: dict[str, Any]) -> PublishReceipt:
        if self.unavailable:
            raise ChannelUnavailableError(f"Channel {self.name} is unavailable")
        envelope = Envelope(source=source, detail_type=detail_type, detail=detail)
        self.published.append(envelope)
        self._route(envelope)
        logger.debug(
            "Envelope published",
            extra={"channel": self.name, "message_id": envelope.message_id, "source": source},
        )
        return PublishReceipt(message_id=envelope.message_id, channel=self.name)

    def _route(self, envelope: Envelope) -> None:
        for pattern, target in self._subscriptions:
            if pattern.matches(envelope):
                self._pending.append((envelope, target))

    @property
    def backlog_size(self) -> int:
        return len(self._backlog)

    async def drain(self) -> int:
        """Deliver everything pending, including messages published meanwhile."""
        delivered = 0
        while self._pending:
            envelope, target = self._pending.pop(0)
            delivered += 1
            try:
                await target(envelope)
            except RedeliveryRequested as exc:
                logger.warning(
                    "Delivery failed — kept for redelivery",
                    extra={"channel": self.name, "message_id": envelope.message_id, "error": str(exc)},
                )
                self._backlog.append((envelope, target))
            except Exception:
                logger.exception(
                    "Target raised — kept for redelivery",
                    extra={"channel": self.name, "message_id": envelope.message_id},
                )
                self._backlog.append((envelope, target))
        return delivered

    async def redeliver(self) -> int:
        """Move the backlog back to pending and deliver it again."""
        self._pending.extend(self._backlog)
        self._backlog.clear()
        return await self.drain()

    def replay(self, message_id: str) -> None:
        """Schedule a duplicate delivery of an already published envelope."""
        for envelope in self.published:
            if envelope.message_id == message_id:
                self._route(envelope)
                return
        raise KeyError(message_id)
