"""
Message bus for stage-to-stage delivery.

Stages only rely on ``publish`` and ``subscribe``. ``InProcessBus`` is the
transport used by the CLI, the API server and the tests: every publish is
delivered to each subscriber as its own task, at least once.

Delivery policy:
- handler returns            -> acknowledged
- ContractViolation          -> logged and dropped (retry cannot fix a shape mismatch)
- any other exception        -> redelivered with exponential backoff, then
                                dead-lettered after ``max_deliveries`` attempts
"""
import asyncio
import json
import secrets
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Protocol

from .errors import ContractViolation
from .logging_config import get_logger

logger = get_logger(__name__)

TOPIC_DOCUMENTS = "documents"
TOPIC_EXTERNAL_VERIFICATION = "analysis.external"
TOPIC_INTERNAL_QC = "analysis.qc"
TOPIC_BRANCH_RESULTS = "branch.results"
TOPIC_APPROVED = "final.approved"
TOPIC_REJECTED = "final.rejected"


@dataclass(frozen=True)
class Message:
    """A delivered message. ``attempt`` starts at 1 and grows on redelivery."""

    topic: str
    key: str
    payload: dict[str, Any]
    message_id: str = field(default_factory=lambda: secrets.token_hex(8))
    published_at: datetime = field(default_factory=datetime.now)
    attempt: int = 1


@dataclass
class DeadLetter:
    """A message that exhausted its deliveries."""

    message: Message
    error: str
    failed_at: datetime = field(default_factory=datetime.now)


Handler = Callable[[Message], Awaitable[None]]


class MessageBus(Protocol):
    """The two primitives the pipeline needs from a transport."""

    async def publish(self, topic: str, payload: dict[str, Any], key: str) -> str: ...

    async def subscribe(self, topic: str, handler: Handler) -> None: ...


class InProcessBus:
    """
    At-least-once in-process transport.

    Usage:
        bus = InProcessBus()
        await bus.subscribe("documents", handler)
        await bus.publish("documents", payload, key=url)
        await bus.drain()
    """

    def __init__(
        self,
        max_deliveries: int = 5,
        retry_backoff_seconds: float = 0.5,
        history_size: int = 1000,
    ):
        self.max_deliveries = max_deliveries
        self.retry_backoff_seconds = retry_backoff_seconds

        # Topic -> handlers
        self._subscribers: dict[str, list[Handler]] = {}
        self._subscribers_lock = asyncio.Lock()
        self._pending: set[asyncio.Task] = set()

        self.history: deque[Message] = deque(maxlen=history_size)
        self.dead_letters: list[DeadLetter] = []

    async def subscribe(self, topic: str, handler: Handler) -> None:
        """Register a handler for every message published on topic."""
        async with self._subscribers_lock:
            self._subscribers.setdefault(topic, []).append(handler)
        logger.debug("Subscribed %s to %s", getattr(handler, "__qualname__", handler), topic)

    async def publish(self, topic: str, payload: dict[str, Any], key: str) -> str:
        """Publish a JSON payload; returns the message id."""
        # Round-trip through JSON so handlers never share objects with the publisher
        message = Message(topic=topic, key=key, payload=json.loads(json.dumps(payload)))
        self.history.append(message)

        async with self._subscribers_lock:
            handlers = list(self._subscribers.get(topic, []))

        for handler in handlers:
            task = asyncio.create_task(self._deliver(handler, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

        logger.debug(
            "Published %s on %s (key=%s, subscribers=%d)",
            message.message_id, topic, key, len(handlers),
        )
        return message.message_id

    async def redeliver(self, message: Message) -> None:
        """Deliver an already-published message again (at-least-once duplicate)."""
        async with self._subscribers_lock:
            handlers = list(self._subscribers.get(message.topic, []))
        for handler in handlers:
            task = asyncio.create_task(self._deliver(handler, message))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait until every in-flight delivery (and what it published) is done."""
        while self._pending:
            await asyncio.gather(*list(self._pending))

    def published(self, topic: str) -> list[Message]:
        """Messages published on topic that are still in the history window."""
        return [m for m in self.history if m.topic == topic]

    def get_subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def _deliver(self, handler: Handler, message: Message) -> None:
        attempt = 1
        while True:
            delivery = replace(message, attempt=attempt)
            try:
                await handler(delivery)
                return
            except ContractViolation as e:
                logger.warning(
                    "Dropping message %s on %s (key=%s): %s",
                    message.message_id, message.topic, message.key, e,
                )
                return
            except Exception as e:
                if attempt >= self.max_deliveries:
                    logger.error(
                        "Dead-lettering message %s on %s after %d attempts: %s",
                        message.message_id, message.topic, attempt, e,
                        exc_info=True,
                    )
                    self.dead_letters.append(DeadLetter(message=message, error=str(e)))
                    return
                delay = self.retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "Redelivering message %s on %s in %.2fs (attempt %d failed: %s)",
                    message.message_id, message.topic, delay, attempt, e,
                )
                await asyncio.sleep(delay)
                attempt += 1
