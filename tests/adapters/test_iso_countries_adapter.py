from __future__ import annotations

from typing import TYPE_CHECKING

import httpx
import pytest

from refdata.adapters.iso_countries import (
    CODE_SYSTEM,
    LOADER_NAME,
    IsoCountryRow,
    IsoCountrySource,
    SourceReadError,
    build_iso_country_loader,
    parse_rows,
)
from refdata.adapters.iso_countries.loader import build_validator, to_staging
from refdata.domain.loader_pipeline import (
    LoaderConfig,
    LoaderContext,
    LoaderPipeline,
    LoaderStatus,
)
from refdata.domain.model import DatasetType
from refdata.domain.validation import Severity
from tests.helpers.http_mocks import make_client_factory

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from tests.helpers.reference_data import FakeUnitOfWork, FixedClock, InMemoryStore

LUKES_CSV = """name,alpha-2,alpha-3,country-code,iso_3166-2,region,sub-region
United States of America,US,USA,840,ISO 3166-2:US,Americas,Northern America
Germany,DE,DEU,276,ISO 3166-2:DE,Europe,Western Europe
Afghanistan,af,afg,4,ISO 3166-2:AF,Asia,Southern Asia
"""

DATAHUB_CSV = """ISO3166-1-Alpha-2,ISO3166-1-Alpha-3,ISO3166-1-numeric,official_name_en,Region Name
FR,FRA,250,France,Europe
"""


def test_parse_rows_normalises_codes() -> None:
    rows = parse_rows(LUKES_CSV)

    assert [row.alpha_2 for row in rows] == ["US", "DE", "AF"]
    afghanistan = rows[2]
    assert afghanistan.alpha_3 == "AFG"
    assert afghanistan.numeric_code == "004"
    assert afghanistan.sub_region == "Southern Asia"


def test_parse_rows_accepts_alternative_headers() -> None:
    (france,) = parse_rows(DATAHUB_CSV)

    assert france.name == "France"
    assert france.alpha_3 == "FRA"
    assert france.region == "Europe"


def test_blank_cells_become_none() -> None:
    row = IsoCountryRow.model_validate({"name": "  ", "alpha-2": "XK", "region": ""})

    assert row.name is None
    assert row.region is None


def test_parse_rows_requires_a_header() -> None:
    with pytest.raises(SourceReadError):
        parse_rows("")


def test_source_reads_local_file_with_bom(tmp_path: Path) -> None:
    path = tmp_path / "countries.csv"
    path.write_text("\ufeff" + LUKES_CSV, encoding="utf-8")

    rows = IsoCountrySource(location=str(path))(LoaderContext())

    assert rows[0].name == "United States of America"


def test_missing_file_is_a_source_error(tmp_path: Path) -> None:
    with pytest.raises(SourceReadError, match="Cannot read"):
        IsoCountrySource(location=str(tmp_path / "missing.csv"))(LoaderContext())


def test_source_downloads_over_http() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, content=LUKES_CSV.encode("utf-8"))

    source = IsoCountrySource(
        location="https://example.test/all.csv", client_factory=make_client_factory(handler)
    )

    rows = source(LoaderContext())

    assert len(rows) == 3
    assert str(requests[0].url) == "https://example.test/all.csv"


def test_http_error_is_a_source_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, request=request)

    source = IsoCountrySource(
        location="https://example.test/all.csv", client_factory=make_client_factory(handler)
    )

    with pytest.raises(SourceReadError, match="Cannot download"):
        source(LoaderContext())


def test_validator_flags_bad_codes_and_warns_on_regions() -> None:
    rows = [
        IsoCountryRow.model_validate({"name": "Nowhere", "alpha-2": "N1", "alpha-3": "NOW"}),
        IsoCountryRow.model_validate(
            {"name": "Atlantis", "alpha-2": "AT", "alpha-3": "ATL", "region": "Ocean"}
        ),
        IsoCountryRow.model_validate(
            {"name": "Odd", "alpha-2": "OD", "alpha-3": "ODD", "country-code": "12a"}
        ),
    ]

    result = build_validator().validate(rows)

    assert result.invalid_indexes == frozenset({0})
    assert {(issue.record_index, issue.severity) for issue in result.warnings} == {
        (1, Severity.WARNING),
        (2, Severity.WARNING),
    }


def test_to_staging_maps_country_attributes() -> None:
    row = IsoCountryRow.model_validate(
        {"name": "Germany", "alpha-2": "DE", "alpha-3": "DEU", "country-code": "276"}
    )

    entry = to_staging(row)

    assert entry.business_key == "DE"
    assert entry.attributes.iso3_code == "DEU"
    assert entry.attributes.numeric_code == "276"
    assert entry.valid_from is None


def test_loader_runs_end_to_end(
    tmp_path: Path,
    store: InMemoryStore,
    fake_uow_factory: Callable[[], FakeUnitOfWork],
    clock: FixedClock,
) -> None:
    path = tmp_path / "countries.csv"
    path.write_text(LUKES_CSV, encoding="utf-8")
    loader = build_iso_country_loader(str(path))

    result = LoaderPipeline(
        loader=loader,
        unit_of_work_factory=fake_uow_factory,
        config=LoaderConfig(auto_apply_changes=True),
        clock=clock,
    ).execute()

    assert loader.name == LOADER_NAME
    assert loader.code_system == CODE_SYSTEM
    assert result.status is LoaderStatus.SUCCESS
    assert result.records_added == 3
    stored = store.records.all(DatasetType.COUNTRY)
    assert {record.business_key for record in stored} == {"US", "DE", "AF"}
    assert all(record.code_system == "ISO3166-1" for record in stored)
