from __future__ import annotations

from datetime import UTC, date, datetime

import pytest

from refdata.domain.model import (
    BitemporalRecord,
    Country,
    InvalidValidityWindowError,
    RecordKey,
    create_correction,
    create_new_version,
    current_versions,
    end_validity,
    group_by_change_request,
    group_by_key,
    latest_version,
    versions_as_of,
)
from tests.helpers.reference_data import make_country_record


def test_validity_window_is_half_open() -> None:
    record = make_country_record(valid_from=date(2020, 1, 1), valid_to=date(2021, 1, 1))

    assert record.was_valid_on(date(2020, 1, 1))
    assert record.was_valid_on(date(2020, 12, 31))
    assert not record.was_valid_on(date(2021, 1, 1))
    assert not record.was_valid_on(date(2019, 12, 31))


def test_open_record_is_valid_forever() -> None:
    record = make_country_record(valid_from=date(2020, 1, 1))

    assert record.is_open
    assert record.is_currently_valid(on=date(2999, 1, 1))


def test_window_ending_before_start_is_rejected() -> None:
    with pytest.raises(InvalidValidityWindowError):
        make_country_record(valid_from=date(2021, 1, 1), valid_to=date(2020, 1, 1))


def test_version_must_be_positive() -> None:
    with pytest.raises(InvalidValidityWindowError):
        make_country_record(version=0)


def test_record_key_renders_code_system_first() -> None:
    record = make_country_record("DE", "Germany")

    assert record.key == RecordKey("DE", "ISO3166-1")
    assert str(record.key) == "ISO3166-1:DE"


def test_create_new_version_starts_open_successor() -> None:
    base = make_country_record(version=2)
    now = datetime(2024, 6, 1, 8, tzinfo=UTC)

    successor = create_new_version(
        base,
        actor="alice",
        change_request_id="cr-1",
        attributes=Country(country_name="United States of America", iso2_code="US"),
        on=date(2024, 6, 1),
        now=now,
    )

    assert successor.version == 3
    assert successor.valid_from == date(2024, 6, 1)
    assert successor.valid_to is None
    assert successor.recorded_at == now
    assert successor.recorded_by == "alice"
    assert successor.change_request_id == "cr-1"
    assert successor.id != base.id
    assert not successor.is_correction
    assert base.version == 2
    assert base.attributes.country_name == "United States"


def test_create_correction_keeps_validity_window() -> None:
    base = make_country_record(valid_from=date(2022, 1, 1), valid_to=date(2023, 1, 1))

    correction = create_correction(
        base,
        actor="bob",
        attributes=Country(country_name="United States (fixed)", iso2_code="US"),
    )

    assert correction.is_correction
    assert correction.version == base.version + 1
    assert (correction.valid_from, correction.valid_to) == (base.valid_from, base.valid_to)


def test_end_validity_closes_open_record_without_mutating_it() -> None:
    record = make_country_record()

    closed = end_validity(record, date(2024, 6, 1))

    assert closed.valid_to == date(2024, 6, 1)
    assert record.valid_to is None
    assert closed.id == record.id


def test_end_validity_never_extends_a_window() -> None:
    record = make_country_record(valid_from=date(2020, 1, 1), valid_to=date(2021, 1, 1))

    assert end_validity(record, date(2022, 1, 1)) is record
    assert end_validity(record, date(2020, 6, 1)).valid_to == date(2020, 6, 1)


def test_queries_over_record_collections() -> None:
    v1 = make_country_record(valid_from=date(2020, 1, 1), valid_to=date(2022, 1, 1))
    v2 = make_country_record(
        "US",
        "United States of America",
        version=2,
        valid_from=date(2022, 1, 1),
        recorded_at=datetime(2022, 1, 1, tzinfo=UTC),
        change_request_id="cr-7",
    )
    de = make_country_record(
        "DE", "Germany", valid_from=date(2020, 1, 1), change_request_id="cr-7"
    )

    assert current_versions([v1, v2, de], on=date(2023, 1, 1)) == [v2, de]
    assert versions_as_of([v1, v2], date(2021, 5, 1)) == [v1]
    assert versions_as_of(
        [v1, v2], date(2023, 1, 1), recorded_as_of=datetime(2021, 1, 1, tzinfo=UTC)
    ) == []
    assert latest_version([v1, v2]) is v2
    assert latest_version([]) is None
    assert group_by_change_request([v1, v2, de]) == {"cr-7": [v2, de]}
    assert group_by_key([v1, v2, de]) == {v1.key: [v1, v2], de.key: [de]}


def test_records_are_immutable() -> None:
    record: BitemporalRecord[Country] = make_country_record()

    with pytest.raises(AttributeError):
        record.valid_to = date(2025, 1, 1)  # type: ignore[misc]
