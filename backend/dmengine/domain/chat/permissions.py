"""Decides whether an initiator may message a target, and on what terms."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from dmengine.domain.chat.models import ConversationStatus
from dmengine.domain.chat.repo import ConversationRepository
from dmengine.domain.common.errors import PermissionDenied
from dmengine.domain.social.blocks import BlockRegistry
from dmengine.domain.social.follows import FollowOracle
from dmengine.domain.social.privacy import PrivacyPolicy
from dmengine.obs import metrics as obs_metrics


class AccessOutcome(str, enum.Enum):
	ALLOWED = "allowed"
	ALLOWED_AS_REQUEST = "allowed_as_request"
	DENIED = "denied"


@dataclass(frozen=True, slots=True)
class AccessDecision:
	outcome: AccessOutcome
	reason: Optional[str] = None

	@classmethod
	def allowed(cls) -> "AccessDecision":
		return cls(AccessOutcome.ALLOWED)

	@classmethod
	def as_request(cls) -> "AccessDecision":
		return cls(AccessOutcome.ALLOWED_AS_REQUEST)

	@classmethod
	def denied(cls, reason: str) -> "AccessDecision":
		return cls(AccessOutcome.DENIED, reason)

	@property
	def is_denied(self) -> bool:
		return self.outcome is AccessOutcome.DENIED

	@property
	def is_request(self) -> bool:
		return self.outcome is AccessOutcome.ALLOWED_AS_REQUEST

	def raise_if_denied(self) -> None:
		if self.is_denied:
			raise PermissionDenied(self.reason or PermissionDenied.reason)


class PermissionResolver:
	"""Pure read-side decision; never writes.

	Checks short-circuit in a fixed order: blocks (either direction), self
	conversation, a previously declined request, then the open paths (target
	accepts everyone, mutual follow, an accepted conversation already exists).
	Anything else becomes a message request.
	"""

	def __init__(
		self,
		blocks: BlockRegistry,
		follows: FollowOracle,
		privacy: PrivacyPolicy,
		conversations: ConversationRepository,
	) -> None:
		self._blocks = blocks
		self._follows = follows
		self._privacy = privacy
		self._conversations = conversations

	async def resolve(self, initiator_id: str, target_id: str) -> AccessDecision:
		decision = await self._decide(initiator_id, target_id)
		obs_metrics.inc_access_decision(decision.outcome.value, decision.reason)
		return decision

	async def _decide(self, initiator_id: str, target_id: str) -> AccessDecision:
		if await self._blocks.blocked_either_way(initiator_id, target_id):
			return AccessDecision.denied(PermissionDenied.BLOCKED)
		if initiator_id == target_id:
			return AccessDecision.denied(PermissionDenied.SELF_CONVERSATION)
		existing = await self._conversations.find(initiator_id, target_id)
		if existing is not None and existing.status is ConversationStatus.DECLINED:
			return AccessDecision.denied(PermissionDenied.DECLINED_PREVIOUSLY)
		if await self._privacy.accepts_everyone(target_id):
			return AccessDecision.allowed()
		if await self._follows.is_mutual(initiator_id, target_id):
			return AccessDecision.allowed()
		if existing is not None and existing.status is ConversationStatus.ACCEPTED:
			return AccessDecision.allowed()
		return AccessDecision.as_request()
