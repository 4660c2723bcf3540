"""Public interface for the ISO 3166-1 country adapter."""

from __future__ import annotations

from .loader import CODE_SYSTEM, LOADER_NAME, build_iso_country_loader, build_validator, to_staging
from .schema import IsoCountryRow
from .source import DEFAULT_SOURCE_URL, IsoCountrySource, SourceReadError, parse_rows

__all__ = [
    "CODE_SYSTEM",
    "DEFAULT_SOURCE_URL",
    "LOADER_NAME",
    "IsoCountryRow",
    "IsoCountrySource",
    "SourceReadError",
    "build_iso_country_loader",
    "build_validator",
    "parse_rows",
    "to_staging",
]
