"""In-memory fakes and builders for reference-data tests."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime, timedelta
from typing import TYPE_CHECKING, Any, Literal

from refdata.domain.loader_pipeline import Loader, StagedEntry
from refdata.domain.model import (
    BitemporalRecord,
    ChangeRequest,
    Country,
    DatasetType,
    OutboxEvent,
    OutboxStatus,
)
from refdata.domain.ports.messaging import MessageDeliveryError
from refdata.domain.ports.unit_of_work import OutboxRepositories, ReferenceDataRepositories
from refdata.domain.validation import FieldConstraint, ValidationService

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence
    from types import TracebackType
    from uuid import UUID

    from refdata.domain.loader_pipeline import LoaderContext, LoaderResult
    from refdata.domain.loader_pipeline.staging import ProcessingStatus, StagingRecord
    from refdata.domain.model import RecordKey

COUNTRY_CODE_SYSTEM = "ISO3166-1"


@dataclass(slots=True)
class FixedClock:
    now: datetime = field(default_factory=lambda: datetime(2024, 6, 1, 12, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def make_country_record(
    code: str = "US",
    name: str = "United States",
    *,
    version: int = 1,
    valid_from: date = date(2024, 1, 1),
    valid_to: date | None = None,
    recorded_at: datetime | None = None,
    change_request_id: str | None = None,
    is_correction: bool = False,
) -> BitemporalRecord[Country]:
    return BitemporalRecord(
        business_key=code,
        code_system=COUNTRY_CODE_SYSTEM,
        attributes=Country(country_name=name, iso2_code=code),
        valid_from=valid_from,
        valid_to=valid_to,
        version=version,
        recorded_at=recorded_at or datetime(2024, 1, 1, tzinfo=UTC),
        recorded_by="seed",
        change_request_id=change_request_id,
        is_correction=is_correction,
    )


def country_rows(*pairs: tuple[str, str]) -> list[dict[str, str]]:
    return [{"code": code, "name": name} for code, name in pairs]


def _row_to_entry(row: Mapping[str, str]) -> StagedEntry[Country]:
    return StagedEntry(
        business_key=row["code"],
        attributes=Country(country_name=row["name"], iso2_code=row["code"]),
    )


@dataclass(slots=True)
class StaticSource:
    """Extractor returning fixed rows; remembers the contexts it was called with."""

    rows: list[dict[str, str]]
    error: Exception | None = None
    calls: list[LoaderContext] = field(default_factory=list)

    def __call__(self, context: LoaderContext) -> list[dict[str, str]]:
        self.calls.append(context)
        if self.error is not None:
            raise self.error
        return list(self.rows)


def make_country_loader(
    rows: Iterable[Mapping[str, str]] = (),
    *,
    source: StaticSource | None = None,
) -> Loader[dict[str, str], Country]:
    return Loader(
        name="test-countries",
        dataset=DatasetType.COUNTRY,
        code_system=COUNTRY_CODE_SYSTEM,
        extract=source or StaticSource([dict(row) for row in rows]),
        to_staging=_row_to_entry,
        validator=ValidationService(
            constraints=(
                FieldConstraint("code", required=True, pattern=r"[A-Z]{2}"),
                FieldConstraint("name", required=True),
            ),
            key=lambda row: row.get("code"),
            key_field="code",
        ),
    )


class InMemoryRecordRepository:
    def __init__(self) -> None:
        self.rows: list[tuple[DatasetType, BitemporalRecord[Any]]] = []

    def add(self, dataset: DatasetType, record: BitemporalRecord[Any]) -> None:
        self.rows.append((dataset, record))

    def end_validity(self, record: BitemporalRecord[Any]) -> None:
        for index, (dataset, stored) in enumerate(self.rows):
            if stored.id == record.id:
                self.rows[index] = (dataset, replace(stored, valid_to=record.valid_to))
                return
        raise KeyError(record.id)

    def all(self, dataset: DatasetType = DatasetType.COUNTRY) -> list[BitemporalRecord[Any]]:
        return [record for stored, record in self.rows if stored is dataset]

    def list_current(
        self, dataset: DatasetType, code_system: str, *, on: date
    ) -> list[BitemporalRecord[Any]]:
        return self.list_as_of(dataset, on, code_system=code_system)

    def list_as_of(
        self,
        dataset: DatasetType,
        on: date,
        *,
        code_system: str | None = None,
        recorded_as_of: datetime | None = None,
    ) -> list[BitemporalRecord[Any]]:
        winners: dict[RecordKey, BitemporalRecord[Any]] = {}
        for record in self.all(dataset):
            if code_system is not None and record.code_system != code_system:
                continue
            if recorded_as_of is not None and record.recorded_at > recorded_as_of:
                continue
            if not record.was_valid_on(on):
                continue
            known = winners.get(record.key)
            if known is None or record.version > known.version:
                winners[record.key] = record
        return sorted(winners.values(), key=lambda record: record.business_key)

    def history(self, dataset: DatasetType, key: RecordKey) -> list[BitemporalRecord[Any]]:
        return sorted(
            (record for record in self.all(dataset) if record.key == key),
            key=lambda record: record.version,
        )

    def latest_version(
        self, dataset: DatasetType, key: RecordKey
    ) -> BitemporalRecord[Any] | None:
        history = self.history(dataset, key)
        return history[-1] if history else None

    def by_change_request(self, change_request_id: str) -> list[BitemporalRecord[Any]]:
        return [
            record for _, record in self.rows if record.change_request_id == change_request_id
        ]


class InMemoryStagingRepository:
    def __init__(self) -> None:
        self.rows: list[StagingRecord[Any]] = []
        self.truncations: list[DatasetType] = []

    def add_batch(self, records: Sequence[StagingRecord[Any]]) -> None:
        self.rows.extend(records)

    def truncate(self, dataset: DatasetType) -> int:
        self.truncations.append(dataset)
        before = len(self.rows)
        self.rows = [row for row in self.rows if row.dataset is not dataset]
        return before - len(self.rows)

    def count(self, execution_id: str) -> int:
        return sum(1 for row in self.rows if row.execution_id == execution_id)

    def set_processing_status(
        self,
        execution_id: str,
        status: ProcessingStatus,
        *,
        business_keys: Sequence[str] | None = None,
    ) -> int:
        updated = 0
        for index, row in enumerate(self.rows):
            if row.execution_id != execution_id:
                continue
            if business_keys is not None and row.business_key not in business_keys:
                continue
            self.rows[index] = replace(row, processing_status=status)
            updated += 1
        return updated


class InMemoryOutboxRepository:
    def __init__(self) -> None:
        self.events: dict[UUID, OutboxEvent] = {}

    def add(self, entity: OutboxEvent) -> None:
        self.events[entity.id] = entity

    def get(self, event_id: UUID) -> OutboxEvent | None:
        return self.events.get(event_id)

    def list_pending(self, *, limit: int | None = None) -> list[OutboxEvent]:
        pending = self.list_by_status(OutboxStatus.PENDING)
        return pending if limit is None else pending[:limit]

    def list_by_status(self, status: OutboxStatus) -> list[OutboxEvent]:
        return sorted(
            (event for event in self.events.values() if event.status == status),
            key=lambda event: event.created_at,
        )

    def list_stale_processing(self, *, started_before: datetime) -> list[OutboxEvent]:
        return [
            event
            for event in self.list_by_status(OutboxStatus.PROCESSING)
            if event.processing_started_at is not None
            and event.processing_started_at < started_before
        ]

    def count_by_status(self) -> dict[OutboxStatus, int]:
        counts: dict[OutboxStatus, int] = {}
        for event in self.events.values():
            counts[event.status] = counts.get(event.status, 0) + 1
        return counts


class InMemoryLoaderRunRepository:
    def __init__(self) -> None:
        self.results: list[LoaderResult] = []

    def add(self, result: LoaderResult) -> None:
        self.results.append(result)

    def last_successful_run(self, loader_name: str) -> datetime | None:
        starts = [
            result.started_at
            for result in self.results
            if result.loader_name == loader_name and result.succeeded and not result.dry_run
        ]
        return max(starts, default=None)

    def recent(self, loader_name: str, *, limit: int = 10) -> list[dict[str, object]]:
        matching = [result for result in self.results if result.loader_name == loader_name]
        matching.sort(key=lambda result: result.started_at, reverse=True)
        return [
            {"execution_id": result.execution_id, "status": result.status}
            for result in matching[:limit]
        ]


class InMemoryChangeRequestRepository:
    def __init__(self) -> None:
        self.items: dict[UUID, ChangeRequest] = {}

    def add(self, entity: ChangeRequest) -> None:
        self.items[entity.id] = entity

    def get(self, change_request_id: UUID) -> ChangeRequest | None:
        return self.items.get(change_request_id)

    def get_by_number(self, cr_number: str) -> ChangeRequest | None:
        return next(
            (item for item in self.items.values() if item.cr_number == cr_number),
            None,
        )


@dataclass(slots=True)
class InMemoryStore:
    records: InMemoryRecordRepository = field(default_factory=InMemoryRecordRepository)
    staging: InMemoryStagingRepository = field(default_factory=InMemoryStagingRepository)
    outbox: InMemoryOutboxRepository = field(default_factory=InMemoryOutboxRepository)
    loader_runs: InMemoryLoaderRunRepository = field(default_factory=InMemoryLoaderRunRepository)
    change_requests: InMemoryChangeRequestRepository = field(
        default_factory=InMemoryChangeRequestRepository
    )
    commits: int = 0
    rollbacks: int = 0

    def repositories(self) -> ReferenceDataRepositories:
        return ReferenceDataRepositories(
            records=self.records,
            staging=self.staging,
            outbox=self.outbox,
            loader_runs=self.loader_runs,
            change_requests=self.change_requests,
        )


class FakeUnitOfWork:
    """Writes land immediately; commits and rollbacks are only counted."""

    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._repositories = store.repositories()

    @property
    def repositories(self) -> ReferenceDataRepositories:
        return self._repositories

    def __enter__(self) -> FakeUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        return False

    def commit(self) -> None:
        self.store.commits += 1

    def rollback(self) -> None:
        self.store.rollbacks += 1


class FakeOutboxUnitOfWork:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store
        self._repositories = OutboxRepositories(outbox=store.outbox)

    @property
    def repositories(self) -> OutboxRepositories:
        return self._repositories

    def __enter__(self) -> FakeOutboxUnitOfWork:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        return False

    def commit(self) -> None:
        self.store.commits += 1

    def rollback(self) -> None:
        self.store.rollbacks += 1


@dataclass(slots=True)
class RecordingBus:
    """Message bus double; keys in ``failing_keys`` fail ``failures_per_key`` times."""

    failing_keys: set[str] = field(default_factory=set)
    failures_per_key: int | None = None
    sent: list[tuple[str, str, dict[str, object]]] = field(default_factory=list)
    attempts: dict[str, int] = field(default_factory=dict)

    def send(self, topic: str, *, key: str, value: Mapping[str, object]) -> None:
        self.attempts[key] = self.attempts.get(key, 0) + 1
        if key in self.failing_keys and (
            self.failures_per_key is None or self.attempts[key] <= self.failures_per_key
        ):
            raise MessageDeliveryError(f"broker unavailable for {key}")
        self.sent.append((topic, key, dict(value)))
