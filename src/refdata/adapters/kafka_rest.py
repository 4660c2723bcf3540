"""Message bus adapter for a Confluent-compatible Kafka REST proxy."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Any, Final

import httpx

from refdata.adapters.http_resilience import ResilientClient
from refdata.config.outbox import KafkaRestConfig, get_kafka_rest_config
from refdata.domain.ports.messaging import MessageDeliveryError

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from refdata.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

KAFKA_JSON_CONTENT_TYPE: Final[str] = "application/vnd.kafka.json.v2+json"
KAFKA_ACCEPT: Final[str] = "application/vnd.kafka.v2+json, application/json"


def _record_errors(payload: object) -> list[str]:
    if not isinstance(payload, dict):
        return []
    offsets: Any = payload.get("offsets") or []
    errors: list[str] = []
    for offset in offsets:
        if isinstance(offset, dict) and offset.get("error_code") is not None:
            errors.append(f"{offset.get('error_code')}: {offset.get('error') or 'unknown error'}")
    return errors


@dataclass(slots=True)
class KafkaRestMessageBus:
    """Send one keyed JSON record per call; returns once the proxy acknowledged it.

    Without an explicit ``config`` the proxy settings are read from the environment on
    the first send.
    """

    config: KafkaRestConfig | None = None
    client_factory: Callable[[ResilienceConfig], ResilientClient] = ResilientClient

    def send(self, topic: str, *, key: str, value: Mapping[str, object]) -> None:
        asyncio.run(self._send_async(topic, key=key, value=value))

    def _resolved_config(self) -> KafkaRestConfig:
        if self.config is None:
            self.config = get_kafka_rest_config()
        return self.config

    async def _send_async(self, topic: str, *, key: str, value: Mapping[str, object]) -> None:
        config = self._resolved_config()
        url = f"{config.base_url}/topics/{topic}"
        body = {"records": [{"key": key, "value": dict(value)}]}
        headers = {"Content-Type": KAFKA_JSON_CONTENT_TYPE, "Accept": KAFKA_ACCEPT}
        try:
            async with self.client_factory(config.resilience) as client:
                response = await client.post(url, json=body, headers=headers)
                response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise MessageDeliveryError(
                f"Kafka REST proxy rejected record for {topic}: "
                f"HTTP {exc.response.status_code} {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise MessageDeliveryError(f"Kafka REST proxy unreachable for {topic}: {exc}") from exc

        try:
            payload = response.json()
        except ValueError:
            payload = None
        errors = _record_errors(payload)
        if errors:
            raise MessageDeliveryError(f"Kafka rejected record for {topic}: {'; '.join(errors)}")
        log.debug("Delivered %s to %s", key, topic)


if TYPE_CHECKING:
    from refdata.domain.ports.messaging import MessageBus

    _bus_check: MessageBus = KafkaRestMessageBus()
