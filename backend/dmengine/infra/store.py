"""Document store access for conversation, message and relation records.

The engine only talks to its backing store through optimistic primitives:
an existence check, a point read, an idempotent-create and a conditional
multi-document commit keyed on per-document versions. Two adapters are
provided: an in-process store (tests, single-node dev) and a Redis store that
implements the same contract with WATCH/MULTI/EXEC.
"""

from __future__ import annotations

import asyncio
import copy
import json
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Protocol

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from redis.exceptions import WatchError

from dmengine.obs import metrics as obs_metrics


class StoreError(Exception):
	"""Base class for document store failures."""

	def __init__(self, message: str, *, collection: str = "", doc_id: str = "") -> None:
		super().__init__(message)
		self.collection = collection
		self.doc_id = doc_id


class DocumentExists(StoreError):
	"""Raised when a create targets an id that is already taken."""


class DocumentNotFound(StoreError):
	"""Raised when a read or conditional write targets a missing document."""


class VersionConflict(StoreError):
	"""Raised when a conditional write observes a changed document."""


class StoreUnavailable(StoreError):
	"""Raised when the store cannot be reached or times out."""

	def __init__(self, message: str, *, reason: str = "network") -> None:
		super().__init__(message)
		self.reason = reason


class StorePermissionDenied(StoreError):
	"""Raised by the store-level authorization layer."""


@dataclass(slots=True)
class Snapshot:
	collection: str
	doc_id: str
	data: Dict[str, Any]
	version: int


@dataclass(frozen=True, slots=True)
class FieldFilter:
	field: str
	op: str
	value: Any

	def matches(self, data: Dict[str, Any]) -> bool:
		current = data.get(self.field)
		if self.op == "eq":
			return current == self.value
		if self.op == "ne":
			return current != self.value
		if self.op == "contains":
			return isinstance(current, (list, tuple)) and self.value in current
		raise ValueError(f"unsupported filter op: {self.op}")


def where(field_name: str, op: str, value: Any) -> FieldFilter:
	if op not in ("eq", "ne", "contains"):
		raise ValueError(f"unsupported filter op: {op}")
	return FieldFilter(field=field_name, op=op, value=value)


@dataclass(slots=True)
class WriteOp:
	kind: str
	collection: str
	doc_id: str
	data: Optional[Dict[str, Any]] = None
	expected_version: Optional[int] = None

	@property
	def key(self) -> tuple[str, str]:
		return (self.collection, self.doc_id)


@dataclass
class WriteBatch:
	"""A set of writes that commit together or not at all."""

	ops: List[WriteOp] = field(default_factory=list)

	def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> "WriteBatch":
		self._append(WriteOp("create", collection, doc_id, data=data))
		return self

	def replace(
		self,
		collection: str,
		doc_id: str,
		data: Dict[str, Any],
		*,
		expected_version: int,
	) -> "WriteBatch":
		self._append(WriteOp("replace", collection, doc_id, data=data, expected_version=expected_version))
		return self

	def delete(self, collection: str, doc_id: str, *, expected_version: int | None = None) -> "WriteBatch":
		self._append(WriteOp("delete", collection, doc_id, expected_version=expected_version))
		return self

	def _append(self, op: WriteOp) -> None:
		if any(existing.key == op.key for existing in self.ops):
			raise ValueError(f"duplicate write for {op.collection}/{op.doc_id}")
		self.ops.append(op)

	def __iter__(self) -> Iterator[WriteOp]:
		return iter(self.ops)

	def __len__(self) -> int:
		return len(self.ops)


class DocumentStore(Protocol):
	async def exists(self, collection: str, doc_id: str) -> bool:
		...

	async def get(self, collection: str, doc_id: str) -> Snapshot:
		...

	async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Snapshot:
		...

	async def conditional_update(
		self,
		collection: str,
		doc_id: str,
		expected_version: int,
		data: Dict[str, Any],
	) -> Snapshot:
		...

	async def delete(self, collection: str, doc_id: str) -> None:
		...

	async def commit(self, batch: WriteBatch) -> List[Snapshot]:
		...

	async def query(self, collection: str, *filters: FieldFilter, limit: int | None = None) -> List[Snapshot]:
		...


def _check_op(op: WriteOp, current: Optional[Snapshot]) -> None:
	if op.kind == "create":
		if current is not None:
			raise DocumentExists("document_exists", collection=op.collection, doc_id=op.doc_id)
		return
	if op.kind == "replace" and current is None:
		raise DocumentNotFound("document_missing", collection=op.collection, doc_id=op.doc_id)
	if op.expected_version is not None:
		actual = current.version if current is not None else 0
		if actual != op.expected_version:
			obs_metrics.inc_cas_conflict(op.collection)
			raise VersionConflict("version_mismatch", collection=op.collection, doc_id=op.doc_id)


class _StoreMixin:
	async def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> Snapshot:
		snapshots = await self.commit(WriteBatch().create(collection, doc_id, data))  # type: ignore[attr-defined]
		return snapshots[0]

	async def conditional_update(
		self,
		collection: str,
		doc_id: str,
		expected_version: int,
		data: Dict[str, Any],
	) -> Snapshot:
		batch = WriteBatch().replace(collection, doc_id, data, expected_version=expected_version)
		snapshots = await self.commit(batch)  # type: ignore[attr-defined]
		return snapshots[0]

	async def delete(self, collection: str, doc_id: str) -> None:
		await self.commit(WriteBatch().delete(collection, doc_id))  # type: ignore[attr-defined]


class InMemoryDocumentStore(_StoreMixin):
	"""Process-local store; commits run under one lock with no awaits in between."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self._docs: Dict[tuple[str, str], Snapshot] = {}

	async def exists(self, collection: str, doc_id: str) -> bool:
		return (collection, doc_id) in self._docs

	async def get(self, collection: str, doc_id: str) -> Snapshot:
		snapshot = self._docs.get((collection, doc_id))
		if snapshot is None:
			raise DocumentNotFound("document_missing", collection=collection, doc_id=doc_id)
		return _copy(snapshot)

	async def commit(self, batch: WriteBatch) -> List[Snapshot]:
		async with self._lock:
			for op in batch:
				_check_op(op, self._docs.get(op.key))
			results: List[Snapshot] = []
			for op in batch:
				if op.kind == "delete":
					self._docs.pop(op.key, None)
					continue
				previous = self._docs.get(op.key)
				version = previous.version + 1 if previous is not None else 1
				snapshot = Snapshot(op.collection, op.doc_id, copy.deepcopy(op.data or {}), version)
				self._docs[op.key] = snapshot
				results.append(_copy(snapshot))
			return results

	async def query(self, collection: str, *filters: FieldFilter, limit: int | None = None) -> List[Snapshot]:
		matches = [
			_copy(snapshot)
			for (coll, _), snapshot in sorted(self._docs.items())
			if coll == collection and all(f.matches(snapshot.data) for f in filters)
		]
		return matches[:limit] if limit is not None else matches


def _copy(snapshot: Snapshot) -> Snapshot:
	return Snapshot(snapshot.collection, snapshot.doc_id, copy.deepcopy(snapshot.data), snapshot.version)


@contextmanager
def _redis_errors() -> Iterator[None]:
	try:
		yield
	except RedisTimeoutError as exc:
		obs_metrics.mark_redis(False)
		raise StoreUnavailable("redis_timeout", reason="timeout") from exc
	except RedisConnectionError as exc:
		obs_metrics.mark_redis(False)
		raise StoreUnavailable("redis_unreachable", reason="network") from exc


class RedisDocumentStore(_StoreMixin):
	"""JSON documents in Redis with optimistic concurrency via WATCH."""

	def __init__(self, client, *, namespace: str = "dm") -> None:
		self._client = client
		self._namespace = namespace

	def _doc_key(self, collection: str, doc_id: str) -> str:
		return f"{self._namespace}:doc:{collection}:{doc_id}"

	def _index_key(self, collection: str) -> str:
		return f"{self._namespace}:ids:{collection}"

	def _decode(self, collection: str, doc_id: str, raw: Any) -> Optional[Snapshot]:
		if raw is None:
			return None
		if isinstance(raw, bytes):
			raw = raw.decode("utf-8")
		envelope = json.loads(raw)
		return Snapshot(collection, doc_id, envelope["d"], int(envelope["v"]))

	@staticmethod
	def _encode(data: Dict[str, Any], version: int) -> str:
		return json.dumps({"v": version, "d": data}, separators=(",", ":"), sort_keys=True)

	async def exists(self, collection: str, doc_id: str) -> bool:
		with _redis_errors():
			return bool(await self._client.exists(self._doc_key(collection, doc_id)))

	async def get(self, collection: str, doc_id: str) -> Snapshot:
		with _redis_errors():
			raw = await self._client.get(self._doc_key(collection, doc_id))
		snapshot = self._decode(collection, doc_id, raw)
		if snapshot is None:
			raise DocumentNotFound("document_missing", collection=collection, doc_id=doc_id)
		return snapshot

	async def commit(self, batch: WriteBatch) -> List[Snapshot]:
		keys = [self._doc_key(op.collection, op.doc_id) for op in batch]
		if not keys:
			return []
		with _redis_errors():
			async with self._client.pipeline(transaction=True) as pipe:
				try:
					await pipe.watch(*keys)
					current: Dict[str, Optional[Snapshot]] = {}
					for op, key in zip(batch, keys):
						current[key] = self._decode(op.collection, op.doc_id, await pipe.get(key))
						_check_op(op, current[key])
					pipe.multi()
					results: List[Snapshot] = []
					for op, key in zip(batch, keys):
						if op.kind == "delete":
							pipe.delete(key)
							pipe.srem(self._index_key(op.collection), op.doc_id)
							continue
						previous = current[key]
						version = previous.version + 1 if previous is not None else 1
						data = copy.deepcopy(op.data or {})
						pipe.set(key, self._encode(data, version))
						pipe.sadd(self._index_key(op.collection), op.doc_id)
						results.append(Snapshot(op.collection, op.doc_id, data, version))
					await pipe.execute()
				except WatchError as exc:
					obs_metrics.inc_cas_conflict(batch.ops[0].collection)
					raise VersionConflict("watch_conflict", collection=batch.ops[0].collection) from exc
		return results

	async def query(self, collection: str, *filters: FieldFilter, limit: int | None = None) -> List[Snapshot]:
		with _redis_errors():
			raw_members = await self._client.smembers(self._index_key(collection))
			members = sorted(m.decode("utf-8") if isinstance(m, bytes) else str(m) for m in raw_members)
			if not members:
				return []
			raws = await self._client.mget([self._doc_key(collection, m) for m in members])
		results: List[Snapshot] = []
		for member, raw in zip(members, raws):
			snapshot = self._decode(collection, member, raw)
			if snapshot is None or not all(f.matches(snapshot.data) for f in filters):
				continue
			results.append(snapshot)
			if limit is not None and len(results) >= limit:
				break
		return results


def build_store(backend: str, redis_client=None) -> DocumentStore:
	if backend == "redis":
		if redis_client is None:
			raise ValueError("redis backend requires a client")
		return RedisDocumentStore(redis_client)
	return InMemoryDocumentStore()
