"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import and_, delete, func, insert, or_, select, update

from refdata.adapters.sqlalchemy.mappings import (
    bitemporal_record_table,
    change_request_table,
    loader_execution_table,
    outbox_event_table,
    staging_record_table,
)
from refdata.domain.loader_pipeline.result import LoaderStatus
from refdata.domain.model import (
    BitemporalRecord,
    ChangeRequest,
    DatasetType,
    OutboxEvent,
    OutboxStatus,
    attributes_from_dict,
    attributes_to_dict,
)
from refdata.domain.model.change_request import ChangeRequestStatus

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from datetime import date, datetime

    from sqlalchemy import Row, Select
    from sqlalchemy.orm import Session

    from refdata.domain.loader_pipeline.result import LoaderResult
    from refdata.domain.loader_pipeline.staging import ProcessingStatus, StagingRecord
    from refdata.domain.model import RecordKey

_SUCCESSFUL = (LoaderStatus.SUCCESS, LoaderStatus.PARTIAL_SUCCESS)


def _highest_versions(records: Sequence[BitemporalRecord[Any]]) -> list[BitemporalRecord[Any]]:
    """Keep one row per lineage: a correction shadows the row it repairs."""

    winners: dict[RecordKey, BitemporalRecord[Any]] = {}
    for record in records:
        known = winners.get(record.key)
        if known is None or record.version > known.version:
            winners[record.key] = record
    return sorted(winners.values(), key=lambda record: (record.code_system, record.business_key))


class SqlAlchemyBitemporalRecordRepository:
    """Rows are inserted once; closing ``valid_to`` is the only update issued."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, dataset: DatasetType, record: BitemporalRecord[Any]) -> None:
        stmt = insert(bitemporal_record_table).values(
            id=record.id,
            dataset=dataset,
            business_key=record.business_key,
            code_system=record.code_system,
            version=record.version,
            valid_from=record.valid_from,
            valid_to=record.valid_to,
            recorded_at=record.recorded_at,
            recorded_by=record.recorded_by,
            change_request_id=record.change_request_id,
            is_correction=record.is_correction,
            attributes=attributes_to_dict(record.attributes),
            record_metadata=dict(record.metadata),
        )
        self.session.execute(stmt)

    def end_validity(self, record: BitemporalRecord[Any]) -> None:
        stmt = (
            update(bitemporal_record_table)
            .where(bitemporal_record_table.c.id == record.id)
            .values(valid_to=record.valid_to)
        )
        self.session.execute(stmt)

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
        table = bitemporal_record_table
        stmt = (
            select(table)
            .where(table.c.dataset == dataset)
            .where(table.c.valid_from <= on)
            .where(or_(table.c.valid_to.is_(None), table.c.valid_to > on))
        )
        if code_system is not None:
            stmt = stmt.where(table.c.code_system == code_system)
        if recorded_as_of is not None:
            stmt = stmt.where(table.c.recorded_at <= recorded_as_of)
        return _highest_versions(self._fetch(stmt))

    def history(self, dataset: DatasetType, key: RecordKey) -> list[BitemporalRecord[Any]]:
        stmt = self._lineage(dataset, key).order_by(bitemporal_record_table.c.version)
        return self._fetch(stmt)

    def latest_version(
        self, dataset: DatasetType, key: RecordKey
    ) -> BitemporalRecord[Any] | None:
        stmt = self._lineage(dataset, key).order_by(bitemporal_record_table.c.version.desc())
        records = self._fetch(stmt.limit(1))
        return records[0] if records else None

    def by_change_request(self, change_request_id: str) -> list[BitemporalRecord[Any]]:
        table = bitemporal_record_table
        stmt = (
            select(table)
            .where(table.c.change_request_id == change_request_id)
            .order_by(table.c.recorded_at, table.c.code_system, table.c.business_key)
        )
        return self._fetch(stmt)

    @staticmethod
    def _lineage(dataset: DatasetType, key: RecordKey) -> Select[Any]:
        table = bitemporal_record_table
        return select(table).where(
            and_(
                table.c.dataset == dataset,
                table.c.code_system == key.code_system,
                table.c.business_key == key.business_key,
            )
        )

    def _fetch(self, stmt: Select[Any]) -> list[BitemporalRecord[Any]]:
        return [self._to_record(row) for row in self.session.execute(stmt).all()]

    @staticmethod
    def _to_record(row: Row[Any]) -> BitemporalRecord[Any]:
        dataset = DatasetType(row.dataset)
        return BitemporalRecord(
            id=row.id,
            business_key=row.business_key,
            code_system=row.code_system,
            attributes=attributes_from_dict(dataset, row.attributes),
            valid_from=row.valid_from,
            valid_to=row.valid_to,
            version=row.version,
            recorded_at=row.recorded_at,
            recorded_by=row.recorded_by,
            change_request_id=row.change_request_id,
            is_correction=row.is_correction,
            metadata=cast(dict[str, object], row.record_metadata or {}),
        )


class SqlAlchemyStagingRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add_batch(self, records: Sequence[StagingRecord[Any]]) -> None:
        if not records:
            return
        rows = [
            {
                "execution_id": record.execution_id,
                "dataset": record.dataset,
                "business_key": record.business_key,
                "code_system": record.code_system,
                "source_index": record.source_index,
                "source_hash": record.source_hash,
                "loaded_at": record.loaded_at,
                "valid_from": record.valid_from,
                "valid_to": record.valid_to,
                "attributes": attributes_to_dict(record.attributes),
                "validation_status": record.validation_status,
                "validation_messages": list(record.validation_messages),
                "processing_status": record.processing_status,
            }
            for record in records
        ]
        self.session.execute(insert(staging_record_table), rows)

    def truncate(self, dataset: DatasetType) -> int:
        stmt = delete(staging_record_table).where(staging_record_table.c.dataset == dataset)
        return self.session.execute(stmt).rowcount

    def count(self, execution_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(staging_record_table)
            .where(staging_record_table.c.execution_id == execution_id)
        )
        return self.session.execute(stmt).scalar_one()

    def set_processing_status(
        self,
        execution_id: str,
        status: ProcessingStatus,
        *,
        business_keys: Sequence[str] | None = None,
    ) -> int:
        stmt = (
            update(staging_record_table)
            .where(staging_record_table.c.execution_id == execution_id)
            .values(processing_status=status)
        )
        if business_keys is not None:
            stmt = stmt.where(staging_record_table.c.business_key.in_(business_keys))
        return self.session.execute(stmt).rowcount


class SqlAlchemyLoaderRunRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, result: LoaderResult) -> None:
        stmt = insert(loader_execution_table).values(
            execution_id=result.execution_id,
            loader_name=result.loader_name,
            dataset=result.dataset,
            load_type=result.load_type,
            status=result.status,
            step=result.step,
            failed_step=result.failed_step,
            started_at=result.started_at,
            finished_at=result.finished_at,
            records_read=result.records_read,
            records_staged=result.records_staged,
            records_skipped=result.records_skipped,
            records_added=result.records_added,
            records_updated=result.records_updated,
            records_deleted=result.records_deleted,
            records_unchanged=result.records_unchanged,
            events_written=result.events_written,
            validation_issue_count=len(result.validation_issues),
            change_request_id=result.change_request_id,
            changes_applied=result.changes_applied,
            dry_run=result.dry_run,
            error_message=result.error_message,
        )
        self.session.execute(stmt)

    def last_successful_run(self, loader_name: str) -> datetime | None:
        table = loader_execution_table
        stmt = (
            select(func.max(table.c.started_at))
            .where(table.c.loader_name == loader_name)
            .where(table.c.status.in_(_SUCCESSFUL))
            .where(table.c.dry_run.is_(False))
        )
        return self.session.execute(stmt).scalar_one_or_none()

    def recent(self, loader_name: str, *, limit: int = 10) -> list[dict[str, object]]:
        table = loader_execution_table
        stmt = (
            select(table)
            .where(table.c.loader_name == loader_name)
            .order_by(table.c.started_at.desc())
            .limit(limit)
        )
        return [dict(row._mapping) for row in self.session.execute(stmt).all()]  # noqa: SLF001


class SqlAlchemyOutboxRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: OutboxEvent) -> None:
        self.session.add(entity)

    def get(self, event_id: uuid.UUID) -> OutboxEvent | None:
        return self.session.get(OutboxEvent, event_id)

    def list_pending(self, *, limit: int | None = None) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(outbox_event_table.c.status == OutboxStatus.PENDING)
            .order_by(outbox_event_table.c.created_at, outbox_event_table.c.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars().all())

    def list_by_status(self, status: OutboxStatus) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(outbox_event_table.c.status == status)
            .order_by(outbox_event_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars().all())

    def list_stale_processing(self, *, started_before: datetime) -> list[OutboxEvent]:
        stmt = (
            select(OutboxEvent)
            .where(outbox_event_table.c.status == OutboxStatus.PROCESSING)
            .where(outbox_event_table.c.processing_started_at < started_before)
            .order_by(outbox_event_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars().all())

    def count_by_status(self) -> dict[OutboxStatus, int]:
        stmt = select(outbox_event_table.c.status, func.count()).group_by(
            outbox_event_table.c.status
        )
        return {OutboxStatus(status): count for status, count in self.session.execute(stmt).all()}


class SqlAlchemyChangeRequestRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: ChangeRequest) -> None:
        self.session.add(entity)

    def get(self, change_request_id: uuid.UUID) -> ChangeRequest | None:
        return self.session.get(ChangeRequest, change_request_id)

    def get_by_number(self, cr_number: str) -> ChangeRequest | None:
        stmt = select(ChangeRequest).where(change_request_table.c.cr_number == cr_number)
        return self.session.execute(stmt).scalar_one_or_none()

    def list_by_status(self, status: ChangeRequestStatus) -> list[ChangeRequest]:
        stmt = (
            select(ChangeRequest)
            .where(change_request_table.c.status == status)
            .order_by(change_request_table.c.created_at)
        )
        return list(self.session.execute(stmt).scalars().all())


if TYPE_CHECKING:
    from refdata.domain.ports.persistence import (
        BitemporalRecordRepository,
        ChangeRequestRepository,
        LoaderRunRepository,
        OutboxRepository,
        StagingRepository,
    )

    _session_stub = cast("Session", object())
    _records_check: BitemporalRecordRepository = SqlAlchemyBitemporalRecordRepository(
        _session_stub
    )
    _staging_check: StagingRepository = SqlAlchemyStagingRepository(_session_stub)
    _runs_check: LoaderRunRepository = SqlAlchemyLoaderRunRepository(_session_stub)
    _outbox_check: OutboxRepository = SqlAlchemyOutboxRepository(_session_stub)
    _cr_check: ChangeRequestRepository = SqlAlchemyChangeRequestRepository(_session_stub)
