"""Tentative local changes backed by a durable write."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from dmengine.obs.logging import get_logger

T = TypeVar("T")

logger = get_logger(__name__)


@dataclass(slots=True)
class OptimisticChange:
	"""Apply `apply` now, undo it with `revert` if the durable write fails."""

	apply: Callable[[], None]
	revert: Callable[[], None]
	label: str = "change"

	async def run(self, write: Callable[[], Awaitable[T]]) -> T:
		self.apply()
		try:
			return await write()
		except BaseException as exc:
			self.revert()
			logger.info("optimistic_reverted", extra={"label": self.label, "error": type(exc).__name__})
			raise
