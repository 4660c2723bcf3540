"""Ports for persisting reference data, staging rows, outbox events and run results."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import date, datetime
    from uuid import UUID

    from refdata.domain.loader_pipeline.result import LoaderResult
    from refdata.domain.loader_pipeline.staging import ProcessingStatus, StagingRecord
    from refdata.domain.model import (
        BitemporalRecord,
        ChangeRequest,
        DatasetType,
        OutboxEvent,
        OutboxStatus,
        RecordKey,
    )


@runtime_checkable
class Repository[TEntity](Protocol):
    """Minimal repository contract for a persistent aggregate store."""

    def add(self, entity: TEntity) -> None: ...


@runtime_checkable
class BitemporalRecordRepository(Protocol):
    """Append-only store of bitemporal rows; closing ``valid_to`` is the only update."""

    def add(self, dataset: DatasetType, record: BitemporalRecord[Any]) -> None: ...

    def end_validity(self, record: BitemporalRecord[Any]) -> None: ...

    def list_current(
        self, dataset: DatasetType, code_system: str, *, on: date
    ) -> list[BitemporalRecord[Any]]: ...

    def list_as_of(
        self,
        dataset: DatasetType,
        on: date,
        *,
        code_system: str | None = None,
        recorded_as_of: datetime | None = None,
    ) -> list[BitemporalRecord[Any]]: ...

    def history(self, dataset: DatasetType, key: RecordKey) -> list[BitemporalRecord[Any]]: ...

    def latest_version(
        self, dataset: DatasetType, key: RecordKey
    ) -> BitemporalRecord[Any] | None: ...

    def by_change_request(self, change_request_id: str) -> list[BitemporalRecord[Any]]: ...


@runtime_checkable
class StagingRepository(Protocol):
    def add_batch(self, records: Sequence[StagingRecord[Any]]) -> None: ...

    def truncate(self, dataset: DatasetType) -> int: ...

    def count(self, execution_id: str) -> int: ...

    def set_processing_status(
        self,
        execution_id: str,
        status: ProcessingStatus,
        *,
        business_keys: Sequence[str] | None = None,
    ) -> int: ...


@runtime_checkable
class OutboxRepository(Repository["OutboxEvent"], Protocol):
    def get(self, event_id: UUID) -> OutboxEvent | None: ...

    def list_pending(self, *, limit: int | None = None) -> list[OutboxEvent]: ...

    def list_by_status(self, status: OutboxStatus) -> list[OutboxEvent]: ...

    def list_stale_processing(self, *, started_before: datetime) -> list[OutboxEvent]: ...

    def count_by_status(self) -> dict[OutboxStatus, int]: ...


@runtime_checkable
class LoaderRunRepository(Protocol):
    def add(self, result: LoaderResult) -> None: ...

    def last_successful_run(self, loader_name: str) -> datetime | None: ...

    def recent(self, loader_name: str, *, limit: int = 10) -> list[dict[str, object]]: ...


@runtime_checkable
class ChangeRequestRepository(Repository["ChangeRequest"], Protocol):
    def get(self, change_request_id: UUID) -> ChangeRequest | None: ...

    def get_by_number(self, cr_number: str) -> ChangeRequest | None: ...
