"""Read ISO 3166-1 CSV data from a local file or an HTTP(S) URL."""

from __future__ import annotations

import asyncio
import csv
import io
from dataclasses import dataclass, field
from logging import getLogger
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from refdata.adapters.http_resilience import ResilientClient
from refdata.config.http_resilience import (
    CacheConfig,
    RateLimit,
    ResilienceConfig,
    resilience_from_env,
)

from .schema import IsoCountryRow

if TYPE_CHECKING:
    from collections.abc import Callable

    from refdata.domain.loader_pipeline.context import LoaderContext

log = getLogger(__name__)

DEFAULT_SOURCE_URL = (
    "https://raw.githubusercontent.com/lukes/ISO-3166-Countries-with-Regional-Codes/"
    "master/all/all.csv"
)
_DEFAULT_TIMEOUT_SECONDS = 30.0


class SourceReadError(RuntimeError):
    """Raised when the configured source cannot be read or is not a usable CSV."""


def _looks_like_csv(body: bytes) -> bool:
    head = body[:512].decode("utf-8", errors="ignore").lower()
    return "," in head and "<html" not in head


def _default_resilience_config() -> ResilienceConfig:
    defaults = ResilienceConfig(
        name="iso-countries",
        timeout_seconds=_DEFAULT_TIMEOUT_SECONDS,
        ratelimit=RateLimit(max_calls=2, per_seconds=1.0),
        cache=CacheConfig(backend="memory", should_cache=_looks_like_csv),
    )
    return resilience_from_env("REFDATA_SOURCE_HTTP", defaults)


def is_remote(location: str) -> bool:
    return location.startswith(("http://", "https://"))


def parse_rows(text: str) -> list[IsoCountryRow]:
    reader = csv.DictReader(io.StringIO(text), skipinitialspace=True)
    if not reader.fieldnames:
        raise SourceReadError("CSV source has no header row")
    return [IsoCountryRow.model_validate(row) for row in reader]


@dataclass(slots=True)
class IsoCountrySource:
    """Extractor for the ISO country loader.

    The file is a full snapshot, so incremental runs read it the same way.
    """

    location: str = DEFAULT_SOURCE_URL
    resilience: ResilienceConfig = field(default_factory=_default_resilience_config)
    client_factory: Callable[[ResilienceConfig], ResilientClient] = ResilientClient

    def __call__(self, context: LoaderContext) -> list[IsoCountryRow]:
        log.info("Extracting ISO country data from %s", self.location)
        text = self._download() if is_remote(self.location) else self._read_file()
        rows = parse_rows(text)
        log.info(
            "Read %s ISO country rows (execution=%s)", len(rows), context.execution_id
        )
        return rows

    def _read_file(self) -> str:
        path = Path(self.location).expanduser()
        try:
            return path.read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise SourceReadError(f"Cannot read {path}: {exc}") from exc

    def _download(self) -> str:
        try:
            return asyncio.run(self._download_async())
        except httpx.HTTPError as exc:
            raise SourceReadError(f"Cannot download {self.location}: {exc}") from exc

    async def _download_async(self) -> str:
        async with self.client_factory(self.resilience) as client:
            response = await client.get(self.location)
            response.raise_for_status()
            return response.content.decode("utf-8-sig")
