"""Redis connection management.

The engine imports `redis_client` once; the proxy lets tests and the app
lifespan swap the underlying client (fakeredis, a fresh pool) without chasing
previously imported references.
"""

from __future__ import annotations

import redis.asyncio as redis

from dmengine.settings import settings


class RedisProxy:
	"""Forward attribute access to a swappable Redis client."""

	def __init__(self, client: redis.Redis):
		self._client: redis.Redis = client

	def set_client(self, client: redis.Redis) -> None:
		self._client = client

	def __getattr__(self, item):
		return getattr(self._client, item)


_real_client = redis.from_url(settings.redis_url, decode_responses=True)
redis_client: RedisProxy = RedisProxy(_real_client)


def set_redis_client(client: redis.Redis) -> None:
	redis_client.set_client(client)
