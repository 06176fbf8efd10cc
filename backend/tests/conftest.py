import sys
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from dmengine import container
from dmengine.infra.retry import RetryPolicy
from dmengine.infra.store import InMemoryDocumentStore
from dmengine.settings import settings


class FakeClock:
	"""Monotonic clock the tests advance by hand."""

	def __init__(self, start: float = 1_000.0) -> None:
		self.now = start

	def __call__(self) -> float:
		return self.now

	def advance(self, seconds: float) -> None:
		self.now += seconds


async def _no_sleep(_delay: float) -> None:
	return None


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from dmengine.infra.redis import redis_client, set_redis_client
	original = redis_client._client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Dev mode so API tests can authenticate with X-User-Id."""
	original_env = settings.environment
	settings.environment = "dev"
	try:
		yield
	finally:
		settings.environment = original_env


@pytest.fixture
def clock():
	return FakeClock()


@pytest.fixture
def store():
	return InMemoryDocumentStore()


@pytest.fixture
def retry_policy():
	return RetryPolicy(max_attempts=4, base_delay=0.01, max_delay=0.05, sleep=_no_sleep)


@pytest.fixture
def engine(store, clock, retry_policy):
	built = container.build_engine(store=store, retry=retry_policy, clock=clock)
	container.configure(built)
	try:
		yield built
	finally:
		container.configure(None)


@pytest.fixture
def service(engine):
	return engine.messaging


@pytest_asyncio.fixture
async def api_client(engine):
	from dmengine.main import app

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client
