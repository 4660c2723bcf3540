"""Loader definition for ISO 3166-1 countries."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final

from refdata.domain.loader_pipeline.definition import Loader
from refdata.domain.loader_pipeline.staging import StagedEntry
from refdata.domain.model.reference import Country, DatasetType
from refdata.domain.validation import (
    FieldConstraint,
    FunctionRule,
    RuleResult,
    Severity,
    ValidationService,
)

from .source import DEFAULT_SOURCE_URL, IsoCountrySource

if TYPE_CHECKING:
    from collections.abc import Callable

    from refdata.adapters.http_resilience import ResilientClient
    from refdata.config.http_resilience import ResilienceConfig

    from .schema import IsoCountryRow

LOADER_NAME: Final[str] = "iso-countries"
CODE_SYSTEM: Final[str] = "ISO3166-1"
KNOWN_REGIONS: Final[frozenset[str]] = frozenset(
    {"Africa", "Americas", "Asia", "Europe", "Oceania", "Antarctica"}
)

COUNTRY_CONSTRAINTS: Final[tuple[FieldConstraint, ...]] = (
    FieldConstraint("name", required=True, max_length=200),
    FieldConstraint("alpha_2", required=True, pattern=r"[A-Z]{2}"),
    FieldConstraint("alpha_3", required=True, pattern=r"[A-Z]{3}"),
    FieldConstraint("numeric_code", pattern=r"\d{3}", severity=Severity.WARNING),
)


def _check_region(row: IsoCountryRow) -> RuleResult:
    if row.region is not None and row.region not in KNOWN_REGIONS:
        return RuleResult.warning(f"Unknown region: {row.region}", field="region")
    return RuleResult.valid()


def to_staging(row: IsoCountryRow) -> StagedEntry[Country]:
    if row.alpha_2 is None or row.name is None:
        raise ValueError("Row without alpha-2 code or name cannot be staged")
    return StagedEntry(
        business_key=row.alpha_2,
        attributes=Country(
            country_name=row.name,
            iso2_code=row.alpha_2,
            iso3_code=row.alpha_3,
            numeric_code=row.numeric_code,
        ),
    )


def build_validator() -> ValidationService[IsoCountryRow]:
    return ValidationService(
        constraints=COUNTRY_CONSTRAINTS,
        rules=(FunctionRule("RegionValidation", _check_region),),
        key=lambda row: row.alpha_2,
        key_field="alpha_2",
    )


def build_iso_country_loader(
    source: str | None = None,
    *,
    resilience: ResilienceConfig | None = None,
    client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
) -> Loader[IsoCountryRow, Country]:
    """Assemble the ISO country loader reading from ``source`` (path or URL)."""

    extractor = IsoCountrySource(location=source or DEFAULT_SOURCE_URL)
    if resilience is not None:
        extractor.resilience = resilience
    if client_factory is not None:
        extractor.client_factory = client_factory
    return Loader(
        name=LOADER_NAME,
        dataset=DatasetType.COUNTRY,
        code_system=CODE_SYSTEM,
        extract=extractor,
        to_staging=to_staging,
        validator=build_validator(),
    )
