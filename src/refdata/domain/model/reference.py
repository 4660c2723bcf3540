"""Attribute value objects for the reference datasets.

The bitemporal core treats these as opaque payloads: they are compared, copied and
serialised, never interpreted.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final

from .bitemporal import BitemporalRecord

if TYPE_CHECKING:
    from collections.abc import Mapping


class DatasetType(StrEnum):
    COUNTRY = "country"
    PORT = "port"
    AIRPORT = "airport"
    CODE_MAPPING = "code_mapping"


@dataclass(frozen=True, slots=True, kw_only=True)
class Country:
    country_name: str
    iso2_code: str | None = None
    iso3_code: str | None = None
    numeric_code: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class Port:
    port_name: str
    country_code: str
    city: str | None = None
    state_province: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    port_type: str | None = None
    un_locode: str | None = None
    cbp_port_code: str | None = None
    timezone: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class Airport:
    airport_name: str
    country_code: str
    iata_code: str | None = None
    icao_code: str | None = None
    city: str | None = None
    state_province: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    elevation_ft: int | None = None
    airport_type: str | None = None
    timezone: str | None = None
    is_active: bool = True


@dataclass(frozen=True, slots=True, kw_only=True)
class CodeMapping:
    from_system: str
    from_code: str
    to_system: str
    to_code: str
    mapping_type: str | None = None
    confidence: int = 100
    rule_id: str | None = None
    is_deprecated: bool = False
    deprecation_reason: str | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.confidence <= 100:
            raise ValueError(f"confidence must be between 0 and 100, got {self.confidence}")


type ReferenceAttributes = Country | Port | Airport | CodeMapping
type CountryRecord = BitemporalRecord[Country]
type PortRecord = BitemporalRecord[Port]
type AirportRecord = BitemporalRecord[Airport]
type CodeMappingRecord = BitemporalRecord[CodeMapping]

ATTRIBUTE_TYPES: Final[dict[DatasetType, type[ReferenceAttributes]]] = {
    DatasetType.COUNTRY: Country,
    DatasetType.PORT: Port,
    DatasetType.AIRPORT: Airport,
    DatasetType.CODE_MAPPING: CodeMapping,
}

AGGREGATE_TYPES: Final[dict[DatasetType, str]] = {
    DatasetType.COUNTRY: "Country",
    DatasetType.PORT: "Port",
    DatasetType.AIRPORT: "Airport",
    DatasetType.CODE_MAPPING: "CodeMapping",
}


def aggregate_type_for(dataset: DatasetType) -> str:
    return AGGREGATE_TYPES[dataset]


def mapping_code_system(from_system: str, to_system: str) -> str:
    """Code-mapping lineages are keyed by source code within a system pair."""

    return f"{from_system}->{to_system}"


def attributes_to_dict(attributes: object) -> dict[str, Any]:
    return asdict(attributes)  # type: ignore[call-overload]


def attributes_from_dict(dataset: DatasetType, data: Mapping[str, Any]) -> ReferenceAttributes:
    """Rebuild an attribute object, ignoring keys the type does not declare."""

    attribute_type = ATTRIBUTE_TYPES[dataset]
    known = {item.name for item in fields(attribute_type)}
    return attribute_type(**{name: value for name, value in data.items() if name in known})
