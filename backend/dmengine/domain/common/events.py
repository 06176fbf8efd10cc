"""In-process publish/subscribe for engine change notifications.

Events are "go check again" signals: a subscriber that receives one re-reads
the repository for the current truth. Each subscription owns a bounded queue
and `publish` never waits on a slow consumer; when a queue is full the event is
dropped for that subscriber and counted.
"""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional

from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)


class EventKind(str, enum.Enum):
	FOLLOW_CHANGED = "follow_changed"
	BLOCK_CHANGED = "block_changed"
	REACTION_CHANGED = "reaction_changed"
	TYPING_CHANGED = "typing_changed"
	CONVERSATION_CHANGED = "conversation_changed"
	MESSAGE_CREATED = "message_created"


@dataclass(frozen=True, slots=True)
class Event:
	kind: EventKind
	subject_id: str
	payload: Dict[str, Any] = field(default_factory=dict)
	# Users the change is relevant to; empty means broadcast.
	audience: FrozenSet[str] = frozenset()
	published_at: float = field(default_factory=time.time)

	def concerns(self, user_id: str) -> bool:
		return not self.audience or user_id in self.audience


class Subscription:
	"""A bounded mailbox of events; close it when done."""

	def __init__(
		self,
		bus: "EventBus",
		kinds: Optional[FrozenSet[EventKind]],
		user_id: Optional[str],
		maxsize: int,
	) -> None:
		self._bus = bus
		self.kinds = kinds
		self.user_id = user_id
		self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
		self._closed = False
		self._closed_event = asyncio.Event()
		self.dropped = 0

	@property
	def closed(self) -> bool:
		return self._closed

	def wants(self, event: Event) -> bool:
		if self.kinds is not None and event.kind not in self.kinds:
			return False
		if self.user_id is not None and not event.concerns(self.user_id):
			return False
		return True

	def offer(self, event: Event) -> bool:
		if self._closed:
			return False
		try:
			self._queue.put_nowait(event)
		except asyncio.QueueFull:
			self.dropped += 1
			return False
		return True

	async def get(self, timeout: Optional[float] = None) -> Event:
		if timeout is None:
			return await self._queue.get()
		return await asyncio.wait_for(self._queue.get(), timeout)

	def get_nowait(self) -> Event:
		return self._queue.get_nowait()

	def pending(self) -> int:
		return self._queue.qsize()

	def close(self) -> None:
		if self._closed:
			return
		self._closed = True
		self._closed_event.set()
		self._bus._unsubscribe(self)

	async def __aenter__(self) -> "Subscription":
		return self

	async def __aexit__(self, *exc_info) -> None:
		self.close()

	def __aiter__(self) -> AsyncIterator[Event]:
		return self._iterate()

	async def _iterate(self) -> AsyncIterator[Event]:
		while True:
			if not self._queue.empty():
				yield self._queue.get_nowait()
				continue
			if self._closed:
				return
			event = await self._next_or_close()
			if event is None:
				return
			yield event

	async def _next_or_close(self) -> Optional[Event]:
		"""Wait for the next event; None once the subscription is closed."""
		getter = asyncio.create_task(self._queue.get())
		closer = asyncio.create_task(self._closed_event.wait())
		try:
			done, _ = await asyncio.wait({getter, closer}, return_when=asyncio.FIRST_COMPLETED)
		finally:
			for task in (getter, closer):
				if not task.done():
					task.cancel()
		if getter in done:
			return getter.result()
		return None


class EventBus:
	"""Registers subscriptions and fans events out to them."""

	def __init__(self, *, queue_size: int = 256) -> None:
		if queue_size < 1:
			raise ValueError("queue_size must be >= 1")
		self._queue_size = queue_size
		self._subscriptions: List[Subscription] = []

	def subscribe(
		self,
		kinds: Optional[Iterable[EventKind]] = None,
		*,
		user_id: Optional[str] = None,
		queue_size: Optional[int] = None,
	) -> Subscription:
		subscription = Subscription(
			self,
			frozenset(kinds) if kinds is not None else None,
			user_id,
			queue_size or self._queue_size,
		)
		self._subscriptions.append(subscription)
		return subscription

	def _unsubscribe(self, subscription: Subscription) -> None:
		try:
			self._subscriptions.remove(subscription)
		except ValueError:
			return

	def subscriber_count(self) -> int:
		return len(self._subscriptions)

	def publish(self, event: Event) -> int:
		"""Offer `event` to every matching subscriber; returns deliveries."""
		obs_metrics.inc_event_published(event.kind.value)
		delivered = 0
		for subscription in list(self._subscriptions):
			if not subscription.wants(event):
				continue
			if subscription.offer(event):
				delivered += 1
				continue
			obs_metrics.inc_event_dropped(event.kind.value)
			logger.warning(
				"event_dropped",
				extra={"kind": event.kind.value, "subject_id": event.subject_id, "subscriber": subscription.user_id},
			)
		return delivered

	def emit(
		self,
		kind: EventKind,
		subject_id: str,
		payload: Optional[Dict[str, Any]] = None,
		*,
		audience: Iterable[str] = (),
	) -> Event:
		event = Event(kind=kind, subject_id=subject_id, payload=dict(payload or {}), audience=frozenset(audience))
		self.publish(event)
		return event
