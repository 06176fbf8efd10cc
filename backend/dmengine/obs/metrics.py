"""Central registry for Prometheus metrics used across the engine."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"dm_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"dm_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"dm_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"dm_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

ACCESS_DECISIONS = Counter(
	"dm_access_decisions_total",
	"Permission resolver outcomes",
	["outcome", "reason"],
)

MESSAGES_SENT = Counter(
	"dm_messages_sent_total",
	"Messages persisted, by conversation status at send time",
	["status"],
)

SEND_REJECTS = Counter(
	"dm_message_send_rejects_total",
	"Message sends rejected before persistence",
	["reason"],
)

CONVERSATIONS_CREATED = Counter(
	"dm_conversations_created_total",
	"Conversation records created",
	["status"],
)

CONVERSATION_TRANSITIONS = Counter(
	"dm_conversation_transitions_total",
	"Conversation status transitions",
	["source", "target", "trigger"],
)

CAS_CONFLICTS = Counter(
	"dm_store_cas_conflicts_total",
	"Conditional writes rejected because the document changed",
	["collection"],
)

RETRIES = Counter(
	"dm_retries_total",
	"Retry attempts scheduled by the retry policy",
	["operation", "reason"],
)

RETRY_EXHAUSTED = Counter(
	"dm_retries_exhausted_total",
	"Operations that failed after the retry ceiling",
	["operation"],
)

RELATION_CACHE = Counter(
	"dm_relation_cache_lookups_total",
	"Relation cache lookups",
	["cache", "result"],
)

RELATION_MUTATIONS = Counter(
	"dm_relation_mutations_total",
	"Block / follow / privacy mutations",
	["kind", "action"],
)

USER_REPORTS = Counter(
	"dm_user_reports_total",
	"User reports filed",
	["auto_block"],
)

EVENTS_PUBLISHED = Counter(
	"dm_events_published_total",
	"Events published on the in-process bus",
	["kind"],
)

EVENTS_DROPPED = Counter(
	"dm_events_dropped_total",
	"Events dropped because a subscriber queue was full",
	["kind"],
)

REDIS_UP = Gauge("dm_redis_up", "Redis reachability (1 = reachable)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_access_decision(outcome: str, reason: str | None = None) -> None:
	ACCESS_DECISIONS.labels(outcome=outcome, reason=reason or "none").inc()


def inc_message_sent(status: str) -> None:
	MESSAGES_SENT.labels(status=status).inc()


def inc_send_reject(reason: str) -> None:
	SEND_REJECTS.labels(reason=reason).inc()


def inc_conversation_created(status: str) -> None:
	CONVERSATIONS_CREATED.labels(status=status).inc()


def inc_transition(source: str, target: str, trigger: str) -> None:
	CONVERSATION_TRANSITIONS.labels(source=source, target=target, trigger=trigger).inc()


def inc_cas_conflict(collection: str) -> None:
	CAS_CONFLICTS.labels(collection=collection.split("/", 1)[0]).inc()


def inc_retry(operation: str, reason: str) -> None:
	RETRIES.labels(operation=operation, reason=reason).inc()


def inc_retry_exhausted(operation: str) -> None:
	RETRY_EXHAUSTED.labels(operation=operation).inc()


def cache_lookup(cache: str, hit: bool) -> None:
	RELATION_CACHE.labels(cache=cache, result="hit" if hit else "miss").inc()


def inc_relation_mutation(kind: str, action: str) -> None:
	RELATION_MUTATIONS.labels(kind=kind, action=action).inc()


def inc_user_report(auto_block: bool) -> None:
	USER_REPORTS.labels(auto_block=str(auto_block).lower()).inc()


def inc_event_published(kind: str) -> None:
	EVENTS_PUBLISHED.labels(kind=kind).inc()


def inc_event_dropped(kind: str) -> None:
	EVENTS_DROPPED.labels(kind=kind).inc()


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1 if ok else 0)
