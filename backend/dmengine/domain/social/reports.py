"""User reports filed from the request and blocking flows."""

from __future__ import annotations

from typing import List, Optional

import ulid

from dmengine.domain.common.errors import InvalidMessage, PermissionDenied, store_errors
from dmengine.domain.social.blocks import guard_not_self
from dmengine.domain.social.models import UserReport, utcnow
from dmengine.infra import collections, rules
from dmengine.infra.store import DocumentExists, DocumentStore, where
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)

MAX_REASON_LENGTH = 500


def new_report_id() -> str:
	return ulid.new().str


class ReportLedger:
	"""Write-once report records; review happens outside this engine."""

	def __init__(self, store: DocumentStore, *, enforce_rules: bool = True) -> None:
		self._store = store
		self._enforce_rules = enforce_rules

	async def file(
		self,
		reporter_id: str,
		reported_user_id: str,
		reason: str,
		*,
		conversation_id: Optional[str] = None,
		report_id: Optional[str] = None,
	) -> UserReport:
		"""Persist a report. Re-filing the same `report_id` returns the stored record."""
		guard_not_self(reporter_id, reported_user_id)
		cleaned = (reason or "").strip()
		if not cleaned or len(cleaned) > MAX_REASON_LENGTH:
			raise InvalidMessage(InvalidMessage.INVALID_REPORT)
		report = UserReport(
			id=report_id or new_report_id(),
			reporter_id=reporter_id,
			reported_user_id=reported_user_id,
			reason=cleaned,
			created_at=utcnow(),
			conversation_id=conversation_id,
		)
		store = rules.scoped(self._store, reporter_id, enforce=self._enforce_rules)
		with store_errors(denied=PermissionDenied.NOT_OWNER):
			try:
				await store.create(collections.REPORTS, report.id, report.to_document())
			except DocumentExists:
				snapshot = await self._store.get(collections.REPORTS, report.id)
				return UserReport.from_document(snapshot.data)
		logger.info(
			"user_reported",
			extra={"report_id": report.id, "reporter_id": reporter_id, "reported_user_id": reported_user_id, "spam": report.is_spam},
		)
		return report

	async def filed_by(self, reporter_id: str) -> List[UserReport]:
		with store_errors():
			snapshots = await self._store.query(collections.REPORTS, where("reporter_id", "eq", reporter_id))
		reports = [UserReport.from_document(snapshot.data) for snapshot in snapshots]
		reports.sort(key=lambda report: report.created_at, reverse=True)
		return reports
