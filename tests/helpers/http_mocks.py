"""httpx mock transports wired into :class:`ResilientClient` factories."""

from __future__ import annotations

from collections.abc import Callable  # noqa: TC003

import httpx

from refdata.adapters.http_resilience import ResilientClient
from refdata.config.http_resilience import ResilienceConfig  # noqa: TC001


def make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
) -> Callable[[ResilienceConfig], ResilientClient]:
    async def async_handler(request: httpx.Request) -> httpx.Response:
        return handler(request)

    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience)
        client._client = httpx.AsyncClient(transport=httpx.MockTransport(async_handler))  # noqa: SLF001  # type: ignore[reportPrivateUsage]
        return client

    return factory
