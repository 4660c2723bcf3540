from __future__ import annotations

import json
from collections.abc import Callable  # noqa: TC003

import httpx
import pytest

from refdata.adapters.kafka_rest import KAFKA_JSON_CONTENT_TYPE, KafkaRestMessageBus
from refdata.config.outbox import KafkaRestConfig
from refdata.domain.ports.messaging import MessageDeliveryError
from tests.helpers.http_mocks import make_client_factory

CONFIG = KafkaRestConfig(base_url="http://kafka-rest.test")


def _bus(handler: Callable[[httpx.Request], httpx.Response]) -> KafkaRestMessageBus:
    return KafkaRestMessageBus(config=CONFIG, client_factory=make_client_factory(handler))


def test_send_posts_one_keyed_record() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"offsets": [{"partition": 0, "offset": 12}]})

    _bus(handler).send("reference-data.countries", key="ISO3166-1:US", value={"version": 1})

    (request,) = requests
    assert request.method == "POST"
    assert str(request.url) == "http://kafka-rest.test/topics/reference-data.countries"
    assert request.headers["Content-Type"] == KAFKA_JSON_CONTENT_TYPE
    assert json.loads(request.content) == {
        "records": [{"key": "ISO3166-1:US", "value": {"version": 1}}]
    }


def test_http_error_status_is_a_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="unavailable")

    with pytest.raises(MessageDeliveryError, match="HTTP 503"):
        _bus(handler).send("topic", key="k", value={})


def test_transport_error_is_a_delivery_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(MessageDeliveryError, match="unreachable"):
        _bus(handler).send("topic", key="k", value={})


def test_per_record_errors_are_delivery_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={"offsets": [{"partition": None, "error_code": 40403, "error": "no topic"}]},
        )

    with pytest.raises(MessageDeliveryError, match="40403: no topic"):
        _bus(handler).send("topic", key="k", value={})
