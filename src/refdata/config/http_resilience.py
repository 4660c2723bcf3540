"""Configuration types for the resilient HTTP clients behind every outbound adapter.

Three services are reached over HTTP: the ISO country source, the Kafka REST proxy
and the policy service. Each gets a :class:`ResilienceConfig` whose timeout and retry
budget can be tuned per service through ``<PREFIX>_TIMEOUT_SECONDS`` and
``<PREFIX>_RETRIES`` (see :func:`resilience_from_env`).
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Literal

import httpx
from httpx_retries import Retry

from refdata import __version__

from .env import env_float, env_int

if TYPE_CHECKING:
    from collections.abc import Mapping

ShouldCacheHook = Callable[[bytes], bool]

USER_AGENT = f"refdata/{__version__}"


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    total: int = 3
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    respect_retry_after_header: bool = True
    allowed_methods: frozenset[str] = field(
        default_factory=lambda: frozenset({"GET", "HEAD", "POST"})
    )
    status_forcelist: frozenset[int] = field(
        default_factory=lambda: frozenset({429, 502, 503, 504})
    )
    retry_on_exceptions: tuple[type[httpx.HTTPError], ...] = (
        httpx.TimeoutException,
        httpx.NetworkError,
        httpx.RemoteProtocolError,
    )

    def build(self) -> Retry:
        return Retry(
            total=self.total,
            backoff_factor=self.backoff_factor,
            max_backoff_wait=self.max_backoff_wait,
            respect_retry_after_header=self.respect_retry_after_header,
            allowed_methods=tuple(self.allowed_methods),
            status_forcelist=tuple(self.status_forcelist),
            retry_on_exceptions=self.retry_on_exceptions,
        )


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache for idempotent downloads; never used for publishing or policy calls."""

    enabled: bool = True
    backend: Literal["sqlite", "memory"] = "memory"
    sqlite_path: str | None = None
    default_ttl_seconds: float | None = 3600.0
    should_cache: ShouldCacheHook | None = None


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    default_headers: Mapping[str, str] = field(
        default_factory=lambda: {"User-Agent": USER_AGENT}
    )


def resilience_from_env(prefix: str, base: ResilienceConfig) -> ResilienceConfig:
    """Apply ``<prefix>_TIMEOUT_SECONDS`` and ``<prefix>_RETRIES`` overrides to ``base``."""

    timeout = env_float(f"{prefix}_TIMEOUT_SECONDS", base.timeout_seconds, minimum=0.1)
    retries = env_int(f"{prefix}_RETRIES", base.retry.total, minimum=0)
    return replace(base, timeout_seconds=timeout, retry=replace(base.retry, total=retries))
