"""Settings for the direct-message engine."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Relation caches feed access decisions, so their staleness window stays short.
MAX_RELATION_CACHE_TTL_SECONDS = 10.0


def _env_field(default, *env_names: str):
	if env_names:
		alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
		return Field(default=default, validation_alias=alias)
	return Field(default=default)


class Settings(BaseSettings):
	store_backend: str = _env_field("memory", "STORE_BACKEND")
	redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
	secret_key: str = _env_field("dev-secret-change-me", "SECRET_KEY")

	# Block / follow / privacy snapshots older than this are reloaded from the store.
	relation_cache_ttl_seconds: float = _env_field(3.0, "RELATION_CACHE_TTL_SECONDS")
	# Messages the requester may send while their request is pending.
	pending_message_limit: int = _env_field(1, "PENDING_MESSAGE_LIMIT")
	message_max_length: int = _env_field(10_000, "MESSAGE_MAX_LENGTH")

	retry_max_attempts: int = _env_field(4, "RETRY_MAX_ATTEMPTS")
	retry_base_delay_seconds: float = _env_field(0.05, "RETRY_BASE_DELAY_SECONDS")
	retry_max_delay_seconds: float = _env_field(1.0, "RETRY_MAX_DELAY_SECONDS")

	event_queue_size: int = _env_field(256, "EVENT_QUEUE_SIZE")
	# Ownership checks at the store boundary, independent of the domain checks.
	store_rules_enabled: bool = _env_field(True, "STORE_RULES_ENABLED")

	environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")
	obs_enabled: bool = _env_field(True, "OBS_ENABLED")
	obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
	obs_log_sampling_rate_info: float = _env_field(0.1, "LOG_SAMPLING_RATE_INFO")
	service_name: str = _env_field("dmengine-api", "SERVICE_NAME")
	git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")
	cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")
	jwt_issuer: str = _env_field("dmengine-auth", "JWT_ISSUER")
	jwt_audience: str = _env_field("dmengine-clients", "JWT_AUDIENCE")
	socketio_path: Optional[str] = _env_field("socket.io", "SOCKETIO_PATH")

	model_config = SettingsConfigDict(
		env_prefix="",
		env_file=".env",
		case_sensitive=False,
		extra="ignore",
	)

	@field_validator("relation_cache_ttl_seconds")
	def _bound_cache_ttl(cls, value: float) -> float:  # type: ignore[override]
		if value < 0 or value > MAX_RELATION_CACHE_TTL_SECONDS:
			raise ValueError(
				f"relation_cache_ttl_seconds must be within [0, {MAX_RELATION_CACHE_TTL_SECONDS}]"
			)
		return value

	@field_validator("store_backend")
	def _known_backend(cls, value: str) -> str:  # type: ignore[override]
		lowered = str(value).strip().lower()
		if lowered not in ("memory", "redis"):
			raise ValueError("store_backend must be 'memory' or 'redis'")
		return lowered

	@field_validator("cors_allow_origins", mode="before")
	def _split_origins(cls, value):  # type: ignore[override]
		if value is None or value == "":
			return ()
		if isinstance(value, str):
			return tuple(part.strip() for part in value.split(",") if part.strip())
		return tuple(value)

	def is_dev(self) -> bool:
		return self.environment.lower() in ("dev", "development", "test")


settings = Settings()
