"""Direct-message operations: the control flow from intent to persisted state."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Tuple

from dmengine.domain.chat.gate import MessageGate
from dmengine.domain.chat.models import (
	Conversation,
	ConversationFlag,
	ConversationStatus,
	Message,
	Reaction,
	conversation_id_for,
	new_message_id,
)
from dmengine.domain.chat.permissions import AccessDecision, PermissionResolver
from dmengine.domain.chat.repo import ConversationRepository
from dmengine.domain.chat.state import ConversationStateMachine, Transition, ensure_participant
from dmengine.domain.chat.validation import DEFAULT_MAX_LENGTH, normalize_emoji, normalize_text
from dmengine.domain.common.errors import EngineError, NotFound, PermissionDenied
from dmengine.domain.common.events import EventBus, EventKind
from dmengine.domain.social.blocks import BlockRegistry
from dmengine.domain.social.follows import FollowOracle
from dmengine.domain.social.models import BlockRelation, PrivacySetting, UserReport, Visibility
from dmengine.domain.social.privacy import PrivacyPolicy
from dmengine.domain.social.reports import ReportLedger, new_report_id
from dmengine.infra.retry import RetryPolicy
from dmengine.obs import metrics as obs_metrics
from dmengine.obs.logging import get_logger

logger = get_logger(__name__)


@dataclass(slots=True)
class SendResult:
	conversation: Conversation
	message: Message
	conversation_created: bool = False
	replayed: bool = False
	accepted: bool = False


@dataclass(slots=True)
class ReportResult:
	report: UserReport
	blocked: bool = False


class MessagingService:
	def __init__(
		self,
		*,
		blocks: BlockRegistry,
		follows: FollowOracle,
		privacy: PrivacyPolicy,
		reports: ReportLedger,
		conversations: ConversationRepository,
		resolver: PermissionResolver,
		state: ConversationStateMachine,
		gate: MessageGate,
		bus: EventBus,
		retry: RetryPolicy,
		max_length: int = DEFAULT_MAX_LENGTH,
	) -> None:
		self.blocks = blocks
		self.follows = follows
		self.privacy = privacy
		self.reports = reports
		self.conversations = conversations
		self.resolver = resolver
		self.state = state
		self.gate = gate
		self.bus = bus
		self.retry = retry
		self.max_length = max_length

	# --- access -------------------------------------------------------------

	async def resolve(self, initiator_id: str, target_id: str) -> AccessDecision:
		return await self.resolver.resolve(initiator_id, target_id)

	async def _require_access(self, initiator_id: str, target_id: str) -> AccessDecision:
		decision = await self.resolver.resolve(initiator_id, target_id)
		if decision.is_denied:
			obs_metrics.inc_send_reject(decision.reason or "denied")
			logger.info(
				"dm_access_denied",
				extra={"initiator_id": initiator_id, "target_id": target_id, "reason": decision.reason},
			)
			decision.raise_if_denied()
		return decision

	async def _ensure_not_blocked(self, conversation: Conversation) -> None:
		first, second = conversation.participant_ids
		if await self.blocks.blocked_either_way(first, second):
			raise PermissionDenied(PermissionDenied.BLOCKED)

	# --- conversations ------------------------------------------------------

	async def start_conversation(self, initiator_id: str, target_id: str) -> Tuple[Conversation, bool]:
		"""Resolve or create the pair's conversation without sending anything."""

		async def attempt() -> Tuple[Conversation, bool]:
			decision = await self._require_access(initiator_id, target_id)
			return await self.conversations.get_or_create(
				initiator_id,
				target_id,
				status=self.state.initial_status(decision),
				requester_id=initiator_id if decision.is_request else None,
				actor_id=initiator_id,
			)

		conversation, created = await self.retry.run("start_conversation", attempt)
		if created:
			self._conversation_changed(conversation)
		return conversation, created

	async def get_conversation(self, actor_id: str, conversation_id: str) -> Conversation:
		conversation = await self.conversations.get(conversation_id)
		ensure_participant(conversation, actor_id)
		return conversation

	async def list_conversations(self, actor_id: str, *, include_archived: bool = False) -> List[Conversation]:
		return await self.conversations.list_for_user(actor_id, include_archived=include_archived)

	async def list_requests(self, actor_id: str) -> List[Conversation]:
		return await self.conversations.list_requests(actor_id)

	async def accept(self, actor_id: str, conversation_id: str) -> Conversation:
		async def transition(conversation: Conversation) -> Transition:
			await self._ensure_not_blocked(conversation)
			return self.state.accept(conversation, actor_id)

		return await self._update(actor_id, conversation_id, "accept", transition)

	async def decline(self, actor_id: str, conversation_id: str) -> Conversation:
		return await self._update(
			actor_id,
			conversation_id,
			"decline",
			lambda conversation: _ready(self.state.decline(conversation, actor_id)),
		)

	async def set_flag(
		self,
		actor_id: str,
		conversation_id: str,
		flag: ConversationFlag,
		enabled: bool,
	) -> Conversation:
		return await self._update(
			actor_id,
			conversation_id,
			f"set_{flag.value}",
			lambda conversation: _ready(self.state.set_flag(conversation, actor_id, flag, enabled)),
			notify=False,
		)

	async def mark_request_read(self, actor_id: str, conversation_id: str) -> Conversation:
		return await self._update(
			actor_id,
			conversation_id,
			"mark_request_read",
			lambda conversation: _ready(self.state.mark_request_read(conversation, actor_id)),
			notify=False,
		)

	async def mark_read(self, actor_id: str, conversation_id: str) -> Conversation:
		"""Clear the actor's unread count and add read receipts to incoming messages."""
		conversation = await self._update(
			actor_id,
			conversation_id,
			"mark_read",
			lambda conversation: _ready(self.state.mark_read(conversation, actor_id)),
			notify=False,
		)
		messages = await self.conversations.list_messages(conversation_id, limit=200)
		for message in messages:
			if message.sender_id == actor_id or actor_id in message.read_by:
				continue
			await self._update_message(
				actor_id,
				conversation_id,
				message.id,
				"mark_message_read",
				lambda current: _with_reader(current, actor_id),
			)
		return conversation

	async def _update(
		self,
		actor_id: str,
		conversation_id: str,
		operation: str,
		transition: Callable[[Conversation], Awaitable[Transition]],
		*,
		notify: bool = True,
	) -> Conversation:
		async def attempt() -> Tuple[Conversation, Optional[ConversationStatus]]:
			current = await self.conversations.get(conversation_id)
			ensure_participant(current, actor_id)
			updated, changed = await transition(current)
			if not changed:
				return current, None
			return await self.conversations.save(current, updated, actor_id=actor_id), current.status

		conversation, previous = await self.retry.run(operation, attempt)
		if previous is not None:
			if previous is not conversation.status:
				obs_metrics.inc_transition(previous.value, conversation.status.value, operation)
			if notify:
				self._conversation_changed(conversation)
			logger.info(
				"conversation_updated",
				extra={"conversation_id": conversation_id, "operation": operation, "status": conversation.status.value},
			)
		return conversation

	# --- messages -----------------------------------------------------------

	async def send_message(
		self,
		sender_id: str,
		recipient_id: str,
		text: str,
		*,
		client_message_id: Optional[str] = None,
	) -> SendResult:
		"""Resolve access, create the conversation if needed and persist one message."""
		try:
			body = normalize_text(text, max_length=self.max_length)
		except EngineError as exc:
			obs_metrics.inc_send_reject(exc.reason)
			raise
		message_id = client_message_id or new_message_id()

		async def attempt() -> SendResult:
			decision = await self._require_access(sender_id, recipient_id)
			conversation, created = await self.conversations.get_or_create(
				sender_id,
				recipient_id,
				status=self.state.initial_status(decision),
				requester_id=sender_id if decision.is_request else None,
				actor_id=sender_id,
			)
			existing = await self.conversations.find_message(conversation.id, message_id)
			if existing is not None:
				return SendResult(conversation, existing, conversation_created=created, replayed=True)
			message = Message.new(conversation.id, sender_id, body, message_id=message_id)
			try:
				updated = self.gate.admit(conversation, message)
			except EngineError as exc:
				obs_metrics.inc_send_reject(exc.reason)
				logger.info(
					"dm_send_rejected",
					extra={"conversation_id": conversation.id, "sender_id": sender_id, "reason": exc.reason},
				)
				raise
			stored_conversation, stored_message, written = await self.conversations.apply_message(
				conversation, updated, message
			)
			if written:
				obs_metrics.inc_message_sent(conversation.status.value)
			return SendResult(
				stored_conversation,
				stored_message,
				conversation_created=created,
				replayed=not written,
				accepted=written and stored_conversation.status is not conversation.status,
			)

		result = await self.retry.run("send_message", attempt)
		if not result.replayed:
			if result.accepted:
				obs_metrics.inc_transition(ConversationStatus.PENDING.value, result.conversation.status.value, "reply")
			participants = result.conversation.participant_ids
			self.bus.emit(
				EventKind.MESSAGE_CREATED,
				result.conversation.id,
				{"message_id": result.message.id, "sender_id": sender_id, "message": result.message.to_dict()},
				audience=participants,
			)
			self._conversation_changed(result.conversation)
			logger.info(
				"dm_message_sent",
				extra={
					"conversation_id": result.conversation.id,
					"message_id": result.message.id,
					"status": result.conversation.status.value,
					"accepted": result.accepted,
				},
			)
		return result

	async def send_to_conversation(
		self,
		sender_id: str,
		conversation_id: str,
		text: str,
		*,
		client_message_id: Optional[str] = None,
	) -> SendResult:
		conversation = await self.get_conversation(sender_id, conversation_id)
		recipient_id = conversation.other_participant(sender_id)
		return await self.send_message(sender_id, recipient_id, text, client_message_id=client_message_id)

	async def list_messages(
		self,
		actor_id: str,
		conversation_id: str,
		*,
		before: Optional[datetime] = None,
		limit: int = 50,
	) -> List[Message]:
		await self.get_conversation(actor_id, conversation_id)
		return await self.conversations.list_messages(conversation_id, before=before, limit=limit)

	async def toggle_reaction(self, actor_id: str, conversation_id: str, message_id: str, emoji: str) -> Message:
		value = normalize_emoji(emoji)
		conversation = await self.get_conversation(actor_id, conversation_id)
		await self._ensure_not_blocked(conversation)
		message = await self._update_message(
			actor_id,
			conversation_id,
			message_id,
			"toggle_reaction",
			lambda current: _toggled(current, actor_id, value),
		)
		self.bus.emit(
			EventKind.REACTION_CHANGED,
			conversation_id,
			{"message_id": message_id, "user_id": actor_id, "emoji": value},
			audience=conversation.participant_ids,
		)
		return message

	async def _update_message(
		self,
		actor_id: str,
		conversation_id: str,
		message_id: str,
		operation: str,
		mutate: Callable[[Message], Message],
	) -> Message:
		async def attempt() -> Message:
			current = await self.conversations.get_message(conversation_id, message_id)
			updated = mutate(current)
			if updated is current:
				return current
			return await self.conversations.save_message(current, updated, actor_id=actor_id)

		return await self.retry.run(operation, attempt)

	async def set_typing(self, actor_id: str, conversation_id: str, is_typing: bool) -> None:
		conversation = await self.get_conversation(actor_id, conversation_id)
		await self._ensure_not_blocked(conversation)
		self.bus.emit(
			EventKind.TYPING_CHANGED,
			conversation_id,
			{"user_id": actor_id, "typing": bool(is_typing)},
			audience=(conversation.other_participant(actor_id),),
		)

	# --- relations ----------------------------------------------------------

	async def block(self, actor_id: str, target_id: str) -> BlockRelation:
		"""Block `target_id` and hide any existing conversation for the actor."""
		relation = await self.blocks.block(actor_id, target_id)
		await self._set_hidden(actor_id, target_id, True)
		return relation

	async def unblock(self, actor_id: str, target_id: str) -> bool:
		removed = await self.blocks.unblock(actor_id, target_id)
		await self._set_hidden(actor_id, target_id, False)
		return removed

	async def _set_hidden(self, actor_id: str, target_id: str, hidden: bool) -> None:
		conversation_id = conversation_id_for(actor_id, target_id)
		try:
			await self._update(
				actor_id,
				conversation_id,
				"hide" if hidden else "unhide",
				lambda conversation: _ready(self.state.set_hidden(conversation, actor_id, hidden)),
				notify=False,
			)
		except NotFound:
			return

	async def list_blocked(self, actor_id: str) -> List[BlockRelation]:
		return await self.blocks.list_blocked(actor_id)

	async def follow(self, actor_id: str, target_id: str) -> bool:
		return await self.follows.follow(actor_id, target_id)

	async def unfollow(self, actor_id: str, target_id: str) -> bool:
		return await self.follows.unfollow(actor_id, target_id)

	async def set_privacy(self, actor_id: str, visibility: Visibility) -> PrivacySetting:
		return await self.retry.run("set_privacy", lambda: self.privacy.set_visibility(actor_id, visibility))

	async def report(
		self,
		actor_id: str,
		target_id: str,
		reason: str,
		*,
		conversation_id: Optional[str] = None,
	) -> ReportResult:
		"""File a report against `target_id`; a spam report also blocks them."""
		if conversation_id is not None:
			conversation = await self.get_conversation(actor_id, conversation_id)
			ensure_participant(conversation, target_id)
		report_id = new_report_id()
		report = await self.retry.run(
			"report",
			lambda: self.reports.file(actor_id, target_id, reason, conversation_id=conversation_id, report_id=report_id),
		)
		obs_metrics.inc_user_report(report.is_spam)
		if not report.is_spam:
			return ReportResult(report=report)
		await self.block(actor_id, target_id)
		return ReportResult(report=report, blocked=True)

	async def list_reports(self, actor_id: str) -> List[UserReport]:
		return await self.reports.filed_by(actor_id)

	# --- events -------------------------------------------------------------

	def _conversation_changed(self, conversation: Conversation) -> None:
		self.bus.emit(
			EventKind.CONVERSATION_CHANGED,
			conversation.id,
			{"status": conversation.status.value, "version": conversation.version},
			audience=conversation.participant_ids,
		)


async def _ready(transition: Transition) -> Transition:
	return transition


def _with_reader(message: Message, reader_id: str) -> Message:
	if reader_id in message.read_by:
		return message
	updated = message.copy()
	updated.read_by = message.read_by | {reader_id}
	return updated


def _toggled(message: Message, user_id: str, emoji: str) -> Message:
	reaction = Reaction(user_id=user_id, emoji=emoji)
	updated = message.copy()
	if reaction in message.reactions:
		updated.reactions = tuple(r for r in message.reactions if r != reaction)
	else:
		updated.reactions = message.reactions + (reaction,)
	return updated
