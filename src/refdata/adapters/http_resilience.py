"""Async HTTP client with retries, response caching and client-side rate limiting.

Every outbound adapter (source downloads, the Kafka REST proxy, the policy service)
talks HTTP through :class:`ResilientClient`. Adapters accept a
``client_factory: Callable[[ResilienceConfig], ResilientClient]`` so tests can swap
the transport.
"""

from __future__ import annotations

import time
from logging import getLogger
from typing import TYPE_CHECKING, TypedDict, Unpack

import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, FilterPolicy
from hishel import Response as HishelCacheResponse
from hishel._policies import BaseFilter
from hishel.httpx import AsyncCacheClient
from httpx_retries import RetryTransport

from refdata.config.storage import get_http_cache_path

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._types import HeaderTypes, QueryParamTypes, URLTypes

    from refdata.config.http_resilience import CacheConfig, ResilienceConfig, ShouldCacheHook

log = getLogger(__name__)


class RequestOptions(TypedDict, total=False):
    params: QueryParamTypes | None
    headers: HeaderTypes | None
    json: object
    content: bytes | str | None


class ResilientClient:
    """One service's HTTP client; use as an async context manager per operation."""

    def __init__(self, config: ResilienceConfig) -> None:
        self.config = config
        self._limiter = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )
        self._client = _build_client(config)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def get(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self._send("GET", url, kwargs)

    async def post(self, url: URLTypes, **kwargs: Unpack[RequestOptions]) -> httpx.Response:
        return await self._send("POST", url, kwargs)

    async def _send(
        self, method: str, url: URLTypes, options: RequestOptions
    ) -> httpx.Response:
        started = time.perf_counter()
        if self._limiter is None:
            response = await self._client.request(method, url, **options)
        else:
            async with self._limiter:
                response = await self._client.request(method, url, **options)
        log.debug(
            "%s %s %s -> %s in %.3fs",
            self.config.name,
            method,
            url,
            response.status_code,
            time.perf_counter() - started,
        )
        return response


def _build_client(config: ResilienceConfig) -> httpx.AsyncClient:
    options: dict[str, object] = {
        "timeout": config.timeout_seconds,
        "transport": RetryTransport(retry=config.retry.build()),
        "headers": dict(config.default_headers),
    }
    if config.base_url is not None:
        options["base_url"] = config.base_url

    cache = _build_cache(config.cache)
    if cache is None:
        return httpx.AsyncClient(**options)  # type: ignore[arg-type]
    storage, policy = cache
    return AsyncCacheClient(**options, storage=storage, policy=policy)  # type: ignore[arg-type]


class _ShouldCacheResponseFilter(BaseFilter[HishelCacheResponse]):
    """Hishel response filter that hands the raw body to a predicate."""

    def __init__(self, predicate: ShouldCacheHook) -> None:
        self._predicate = predicate

    def needs_body(self) -> bool:
        return True

    def apply(self, item: HishelCacheResponse, body: bytes | None) -> bool:  # noqa: ARG002
        if body is None:
            return True
        return bool(self._predicate(body))


def _build_cache(
    config: CacheConfig | None,
) -> tuple[AsyncSqliteStorage, FilterPolicy | None] | None:
    if config is None or not config.enabled:
        return None

    if config.backend == "sqlite":
        database_path = config.sqlite_path or str(get_http_cache_path())
    elif config.backend == "memory":
        database_path = ":memory:"
    else:
        raise ValueError(f"Unsupported cache backend: {config.backend}")
    storage = AsyncSqliteStorage(
        database_path=database_path, default_ttl=config.default_ttl_seconds
    )

    policy = None
    if config.should_cache is not None:
        policy = FilterPolicy(response_filters=[_ShouldCacheResponseFilter(config.should_cache)])
    return storage, policy
