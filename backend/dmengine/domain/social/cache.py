"""Short-lived read-through cache for relation lookups.

Block, follow and privacy answers feed access decisions, so entries expire
after a bounded TTL and are invalidated whenever the owning user mutates the
relation locally. Concurrent misses for the same key share one load.

Only stored state goes in here. Per-key locks and load bookkeeping exist
while someone holds them, and expired entries are swept at most once per TTL
so the maps stay proportional to live keys.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Awaitable, Callable, Dict, Generic, Hashable, Optional, Set, TypeVar

from dmengine.obs import metrics as obs_metrics
from dmengine.settings import MAX_RELATION_CACHE_TTL_SECONDS

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

Clock = Callable[[], float]


@dataclass(slots=True)
class _Entry(Generic[V]):
	value: V
	expires_at: float


@dataclass(slots=True)
class _Slot:
	lock: asyncio.Lock = field(default_factory=asyncio.Lock)
	holders: int = 0


class KeyedLocks(Generic[K]):
	"""One asyncio.Lock per key, dropped once nobody holds or awaits it."""

	def __init__(self) -> None:
		self._slots: Dict[K, _Slot] = {}

	@asynccontextmanager
	async def hold(self, key: K) -> AsyncIterator[None]:
		slot = self._slots.get(key)
		if slot is None:
			slot = self._slots[key] = _Slot()
		slot.holders += 1
		try:
			async with slot.lock:
				yield
		finally:
			slot.holders -= 1
			if slot.holders == 0:
				self._slots.pop(key, None)

	def __len__(self) -> int:
		return len(self._slots)


class RelationCache(Generic[K, V]):
	def __init__(self, name: str, *, ttl_seconds: float, clock: Clock = time.monotonic) -> None:
		if ttl_seconds < 0 or ttl_seconds > MAX_RELATION_CACHE_TTL_SECONDS:
			raise ValueError(f"ttl_seconds must be within [0, {MAX_RELATION_CACHE_TTL_SECONDS}]")
		self.name = name
		self.ttl_seconds = ttl_seconds
		self._clock = clock
		self._entries: Dict[K, _Entry[V]] = {}
		self._locks: KeyedLocks[K] = KeyedLocks()
		# Keys with a load in flight, and those written to since it started.
		self._loading: Set[K] = set()
		self._dirty: Set[K] = set()
		self._next_sweep = clock() + ttl_seconds

	def peek(self, key: K) -> Optional[V]:
		entry = self._entries.get(key)
		if entry is None:
			return None
		if entry.expires_at <= self._clock():
			self._entries.pop(key, None)
			return None
		return entry.value

	def _store(self, key: K, value: V) -> None:
		if self.ttl_seconds <= 0:
			self._entries.pop(key, None)
			return
		now = self._clock()
		if now >= self._next_sweep:
			self._sweep(now)
		self._entries[key] = _Entry(value=value, expires_at=now + self.ttl_seconds)

	def _sweep(self, now: float) -> None:
		expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
		for key in expired:
			del self._entries[key]
		self._next_sweep = now + self.ttl_seconds

	def _touch(self, key: K) -> None:
		if key in self._loading:
			self._dirty.add(key)

	def put(self, key: K, value: V) -> None:
		self._touch(key)
		self._store(key, value)

	def invalidate(self, key: K) -> None:
		self._touch(key)
		self._entries.pop(key, None)

	def clear(self) -> None:
		self._dirty.update(self._loading)
		self._entries.clear()

	async def get_or_load(self, key: K, loader: Callable[[], Awaitable[V]]) -> V:
		cached = self.peek(key)
		if cached is not None:
			obs_metrics.cache_lookup(self.name, True)
			return cached
		async with self._locks.hold(key):
			cached = self.peek(key)
			if cached is not None:
				obs_metrics.cache_lookup(self.name, True)
				return cached
			obs_metrics.cache_lookup(self.name, False)
			self._loading.add(key)
			try:
				value = await loader()
				# A local write during the load wins over the loaded answer.
				if key not in self._dirty:
					self._store(key, value)
			finally:
				self._loading.discard(key)
				self._dirty.discard(key)
			return value

	def tracked_keys(self) -> int:
		"""Bookkeeping entries held besides cached values."""
		return len(self._locks) + len(self._loading) + len(self._dirty)

	def __len__(self) -> int:
		return len(self._entries)
