"""Bounded retry with exponential backoff and full jitter.

Only errors flagged `retryable` (write conflicts, transient store failures)
are retried; every other error, and task cancellation, propagates on the first
occurrence.
"""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from dmengine.domain.common.errors import EngineError
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger
from dmengine.settings import Settings, settings

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(slots=True)
class RetryPolicy:
	max_attempts: int = 4
	base_delay: float = 0.05
	max_delay: float = 1.0
	sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)
	rand: Callable[[], float] = field(default=random.random, repr=False)

	def __post_init__(self) -> None:
		if self.max_attempts < 1:
			raise ValueError("max_attempts must be >= 1")
		if self.base_delay < 0 or self.max_delay < 0:
			raise ValueError("delays must be non-negative")

	@classmethod
	def from_settings(cls, cfg: Settings = settings) -> "RetryPolicy":
		return cls(
			max_attempts=cfg.retry_max_attempts,
			base_delay=cfg.retry_base_delay_seconds,
			max_delay=cfg.retry_max_delay_seconds,
		)

	def backoff(self, attempt: int) -> float:
		"""Delay before retry number `attempt` (0-based)."""
		ceiling = min(self.max_delay, self.base_delay * (2 ** attempt))
		return ceiling * self.rand()

	async def run(self, operation: str, fn: Callable[[], Awaitable[T]]) -> T:
		attempt = 0
		while True:
			try:
				return await fn()
			except EngineError as exc:
				if not exc.retryable:
					raise
				attempt += 1
				if attempt >= self.max_attempts:
					obs_metrics.inc_retry_exhausted(operation)
					logger.warning(
						"retry_exhausted",
						extra={"operation": operation, "attempts": attempt, "reason": exc.reason},
					)
					raise
				delay = self.backoff(attempt - 1)
				obs_metrics.inc_retry(operation, exc.reason)
				logger.info(
					"retry_scheduled",
					extra={"operation": operation, "attempt": attempt, "delay": round(delay, 4), "reason": exc.reason},
				)
				await self.sleep(delay)
