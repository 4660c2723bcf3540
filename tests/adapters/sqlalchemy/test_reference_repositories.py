from __future__ import annotations

from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING

from refdata.adapters.sqlalchemy import (
    SqlAlchemyBitemporalRecordRepository,
    SqlAlchemyChangeRequestRepository,
    SqlAlchemyLoaderRunRepository,
    SqlAlchemyOutboxRepository,
    SqlAlchemyStagingRepository,
)
from refdata.domain.loader_pipeline import (
    LoaderResult,
    LoaderStatus,
    ProcessingStatus,
    StagingRecord,
    compute_source_hash,
)
from refdata.domain.model import (
    ChangeRequest,
    ChangeRequestStatus,
    Country,
    DatasetType,
    EventType,
    OperationType,
    OutboxEvent,
    OutboxStatus,
    create_correction,
    end_validity,
)
from tests.helpers.reference_data import COUNTRY_CODE_SYSTEM, make_country_record

if TYPE_CHECKING:
    from sqlalchemy.orm import Session

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=UTC)


def test_record_round_trip(sqlite_session: Session) -> None:
    repository = SqlAlchemyBitemporalRecordRepository(sqlite_session)
    record = make_country_record(change_request_id="cr-1", recorded_at=NOW)

    repository.add(DatasetType.COUNTRY, record)
    sqlite_session.commit()

    (loaded,) = repository.history(DatasetType.COUNTRY, record.key)
    assert loaded == record
    assert loaded.recorded_at.tzinfo is not None
    assert isinstance(loaded.attributes, Country)


def test_list_current_uses_half_open_windows(sqlite_session: Session) -> None:
    repository = SqlAlchemyBitemporalRecordRepository(sqlite_session)
    v1 = make_country_record(valid_from=date(2020, 1, 1))
    repository.add(DatasetType.COUNTRY, v1)
    repository.end_validity(end_validity(v1, date(2024, 6, 1)))
    repository.add(
        DatasetType.COUNTRY,
        make_country_record(name="USA", version=2, valid_from=date(2024, 6, 1)),
    )
    repository.add(DatasetType.COUNTRY, make_country_record("DE", "Germany"))
    sqlite_session.commit()

    before = repository.list_current(DatasetType.COUNTRY, COUNTRY_CODE_SYSTEM, on=date(2024, 5, 31))
    after = repository.list_current(DatasetType.COUNTRY, COUNTRY_CODE_SYSTEM, on=date(2024, 6, 1))

    assert [(record.business_key, record.version) for record in before] == [("DE", 1), ("US", 1)]
    assert [(record.business_key, record.version) for record in after] == [("DE", 1), ("US", 2)]
    assert repository.list_current(DatasetType.PORT, COUNTRY_CODE_SYSTEM, on=date(2024, 6, 1)) == []


def test_correction_shadows_base_row(sqlite_session: Session) -> None:
    repository = SqlAlchemyBitemporalRecordRepository(sqlite_session)
    base = make_country_record(name="Untied States")
    correction = create_correction(
        base, actor="steward", attributes=Country(country_name="United States", iso2_code="US")
    )
    repository.add(DatasetType.COUNTRY, base)
    repository.add(DatasetType.COUNTRY, correction)
    sqlite_session.commit()

    (current,) = repository.list_current(
        DatasetType.COUNTRY, COUNTRY_CODE_SYSTEM, on=date(2024, 6, 1)
    )

    assert current.version == 2
    assert current.is_correction
    assert repository.latest_version(DatasetType.COUNTRY, base.key) == current


def test_list_as_of_respects_recorded_time(sqlite_session: Session) -> None:
    repository = SqlAlchemyBitemporalRecordRepository(sqlite_session)
    base = make_country_record(recorded_at=NOW - timedelta(days=30))
    correction = create_correction(base, actor="steward", now=NOW)
    repository.add(DatasetType.COUNTRY, base)
    repository.add(DatasetType.COUNTRY, correction)
    sqlite_session.commit()

    known_then = repository.list_as_of(
        DatasetType.COUNTRY, date(2024, 3, 1), recorded_as_of=NOW - timedelta(days=1)
    )

    assert [record.version for record in known_then] == [1]


def test_by_change_request(sqlite_session: Session) -> None:
    repository = SqlAlchemyBitemporalRecordRepository(sqlite_session)
    repository.add(DatasetType.COUNTRY, make_country_record("US", change_request_id="cr-1"))
    repository.add(
        DatasetType.COUNTRY, make_country_record("DE", "Germany", change_request_id="cr-1")
    )
    repository.add(DatasetType.COUNTRY, make_country_record("FR", "France"))
    sqlite_session.commit()

    written = repository.by_change_request("cr-1")

    assert sorted(record.business_key for record in written) == ["DE", "US"]


def _staging_row(execution_id: str, code: str) -> StagingRecord[Country]:
    attributes = Country(country_name=code, iso2_code=code)
    return StagingRecord(
        execution_id=execution_id,
        dataset=DatasetType.COUNTRY,
        business_key=code,
        code_system=COUNTRY_CODE_SYSTEM,
        attributes=attributes,
        source_index=0,
        loaded_at=NOW,
        source_hash=compute_source_hash(attributes),
    )


def test_staging_batches_truncate_and_status(sqlite_session: Session) -> None:
    repository = SqlAlchemyStagingRepository(sqlite_session)
    repository.add_batch([_staging_row("exec-1", "US"), _staging_row("exec-1", "DE")])
    repository.add_batch([])
    sqlite_session.commit()

    assert repository.count("exec-1") == 2
    skipped = repository.set_processing_status(
        "exec-1", ProcessingStatus.SKIPPED, business_keys=["US"]
    )
    assert skipped == 1
    assert repository.set_processing_status("exec-1", ProcessingStatus.PROCESSED) == 2
    assert repository.truncate(DatasetType.PORT) == 0
    assert repository.truncate(DatasetType.COUNTRY) == 2
    assert repository.count("exec-1") == 0


def _result(
    execution_id: str, started_at: datetime, status: LoaderStatus, *, dry_run: bool = False
) -> LoaderResult:
    return LoaderResult(
        execution_id=execution_id,
        loader_name="iso-countries",
        dataset=DatasetType.COUNTRY,
        started_at=started_at,
        finished_at=started_at + timedelta(minutes=1),
        status=status,
        dry_run=dry_run,
    )


def test_last_successful_run_ignores_failures_and_dry_runs(sqlite_session: Session) -> None:
    repository = SqlAlchemyLoaderRunRepository(sqlite_session)
    repository.add(_result("a", NOW - timedelta(days=3), LoaderStatus.SUCCESS))
    repository.add(_result("b", NOW - timedelta(days=2), LoaderStatus.PARTIAL_SUCCESS))
    repository.add(_result("c", NOW - timedelta(days=1), LoaderStatus.FAILED))
    repository.add(_result("d", NOW, LoaderStatus.SUCCESS, dry_run=True))
    sqlite_session.commit()

    assert repository.last_successful_run("iso-countries") == NOW - timedelta(days=2)
    assert repository.last_successful_run("unknown") is None
    recent = repository.recent("iso-countries", limit=2)
    assert [row["execution_id"] for row in recent] == ["d", "c"]


def test_outbox_repository_queries(sqlite_session: Session) -> None:
    repository = SqlAlchemyOutboxRepository(sqlite_session)
    events = [
        OutboxEvent(
            aggregate_id=f"ISO3166-1:{code}",
            aggregate_type="Country",
            event_type=EventType.CREATED,
            payload={"code": code},
            created_at=NOW + timedelta(seconds=index),
        )
        for index, code in enumerate(("US", "DE", "FR"))
    ]
    for event in reversed(events):
        repository.add(event)
    events[2].start_processing(now=NOW - timedelta(hours=1))
    sqlite_session.commit()

    pending = repository.list_pending()
    assert [event.aggregate_id for event in pending] == ["ISO3166-1:US", "ISO3166-1:DE"]
    assert len(repository.list_pending(limit=1)) == 1
    stale = repository.list_stale_processing(started_before=NOW)
    assert [event.id for event in stale] == [events[2].id]
    assert repository.count_by_status() == {OutboxStatus.PENDING: 2, OutboxStatus.PROCESSING: 1}
    loaded = repository.get(events[0].id)
    assert loaded is not None
    assert loaded.payload == {"code": "US"}


def test_change_request_repository(sqlite_session: Session) -> None:
    repository = SqlAlchemyChangeRequestRepository(sqlite_session)
    change_request = ChangeRequest(
        cr_number="CR-20240601-ABCDEF12",
        title="refresh",
        dataset=DatasetType.COUNTRY,
        operation=OperationType.CREATE,
        requester="loader",
        proposed_changes=[{"operation": "CREATE", "business_key": "FR"}],
        created_at=NOW,
    )
    repository.add(change_request)
    sqlite_session.commit()

    assert repository.get(change_request.id) is change_request
    assert repository.get_by_number("CR-20240601-ABCDEF12") is change_request
    assert repository.get_by_number("CR-missing") is None
    assert repository.list_by_status(ChangeRequestStatus.PENDING) == [change_request]
    assert repository.list_by_status(ChangeRequestStatus.APPROVED) == []
