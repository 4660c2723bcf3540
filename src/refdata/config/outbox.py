"""Outbox publishing and message bus configuration."""

from __future__ import annotations

from dataclasses import dataclass, field, replace

from .env import env_float, env_int, env_str, require_env_var
from .http_resilience import RateLimit, ResilienceConfig, resilience_from_env

DEFAULT_MAX_RETRIES = 3
DEFAULT_POLL_INTERVAL_SECONDS = 5.0
DEFAULT_STALE_AFTER_MINUTES = 15
DEFAULT_TOPIC_PREFIX = "reference-data"
DEFAULT_FALLBACK_TOPIC = "reference-events"
KAFKA_REST_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True, slots=True)
class OutboxConfig:
    max_retries: int = DEFAULT_MAX_RETRIES
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    batch_size: int | None = None
    stale_after_minutes: int = DEFAULT_STALE_AFTER_MINUTES
    topic_prefix: str = DEFAULT_TOPIC_PREFIX
    fallback_topic: str = DEFAULT_FALLBACK_TOPIC


@dataclass(frozen=True, slots=True)
class KafkaRestConfig:
    """Connection settings for a Kafka REST proxy."""

    base_url: str
    resilience: ResilienceConfig = field(
        default_factory=lambda: ResilienceConfig(
            name="kafka-rest",
            timeout_seconds=KAFKA_REST_TIMEOUT_SECONDS,
            ratelimit=RateLimit(max_calls=50, per_seconds=1.0),
        )
    )


def get_outbox_config() -> OutboxConfig:
    batch_size = env_int("REFDATA_OUTBOX_BATCH_SIZE", 0, minimum=0)
    return OutboxConfig(
        max_retries=env_int("REFDATA_OUTBOX_MAX_RETRIES", DEFAULT_MAX_RETRIES, minimum=1),
        poll_interval_seconds=env_float(
            "REFDATA_OUTBOX_POLL_SECONDS", DEFAULT_POLL_INTERVAL_SECONDS, minimum=0.0
        ),
        batch_size=batch_size or None,
        stale_after_minutes=env_int(
            "REFDATA_OUTBOX_STALE_MINUTES", DEFAULT_STALE_AFTER_MINUTES, minimum=1
        ),
        topic_prefix=env_str("REFDATA_TOPIC_PREFIX", DEFAULT_TOPIC_PREFIX) or DEFAULT_TOPIC_PREFIX,
        fallback_topic=env_str("REFDATA_FALLBACK_TOPIC", DEFAULT_FALLBACK_TOPIC)
        or DEFAULT_FALLBACK_TOPIC,
    )


def get_kafka_rest_config() -> KafkaRestConfig:
    base_url = require_env_var("REFDATA_KAFKA_REST_URL")
    defaults = KafkaRestConfig(base_url=base_url.rstrip("/"))
    return replace(
        defaults, resilience=resilience_from_env("REFDATA_KAFKA_REST", defaults.resilience)
    )
