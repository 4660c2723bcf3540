"""SQLAlchemy mapping metadata for the reference-data model."""

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from functools import cache
from typing import TYPE_CHECKING

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Dialect,
    Enum,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import configure_mappers

from refdata.domain.loader_pipeline.context import LoadType
from refdata.domain.loader_pipeline.result import ExecutionStep, LoaderStatus
from refdata.domain.loader_pipeline.staging import ProcessingStatus, ValidationStatus
from refdata.domain.model import (
    ChangeRequest,
    ChangeRequestStatus,
    DatasetType,
    EventType,
    OperationType,
    OutboxEvent,
    OutboxStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)

UUIDColumnType = Uuid[uuid.UUID]


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

# Reference data ---------------------------------------------------------------

bitemporal_record_table = Table(
    "bitemporal_record",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("dataset", Enum(DatasetType, native_enum=False), nullable=False),
    Column("business_key", String, nullable=False),
    Column("code_system", String, nullable=False),
    Column("version", Integer, nullable=False),
    Column("valid_from", Date, nullable=False),
    Column("valid_to", Date, nullable=True),
    Column("recorded_at", UTCDateTime(), nullable=False),
    Column("recorded_by", String, nullable=True),
    Column("change_request_id", String, nullable=True),
    Column("is_correction", Boolean, nullable=False, default=False),
    Column("attributes", JSON, nullable=False),
    Column("record_metadata", JSON, nullable=False, default=dict),
    UniqueConstraint(
        "dataset", "code_system", "business_key", "version", name="uq_bitemporal_record_version"
    ),
    Index("ix_bitemporal_record_lineage", "dataset", "code_system", "business_key"),
    Index("ix_bitemporal_record_validity", "dataset", "valid_from", "valid_to"),
    Index("ix_bitemporal_record_change_request", "change_request_id"),
)

# Loader bookkeeping -----------------------------------------------------------

staging_record_table = Table(
    "staging_record",
    mapper_registry.metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("execution_id", String, nullable=False),
    Column("dataset", Enum(DatasetType, native_enum=False), nullable=False),
    Column("business_key", String, nullable=False),
    Column("code_system", String, nullable=False),
    Column("source_index", Integer, nullable=False),
    Column("source_hash", String(64), nullable=False),
    Column("loaded_at", UTCDateTime(), nullable=False),
    Column("valid_from", Date, nullable=True),
    Column("valid_to", Date, nullable=True),
    Column("attributes", JSON, nullable=False),
    Column("validation_status", Enum(ValidationStatus, native_enum=False), nullable=False),
    Column("validation_messages", JSON, nullable=False, default=list),
    Column("processing_status", Enum(ProcessingStatus, native_enum=False), nullable=False),
    Index("ix_staging_record_execution", "execution_id"),
    Index("ix_staging_record_dataset", "dataset"),
)

loader_execution_table = Table(
    "loader_execution",
    mapper_registry.metadata,
    Column("execution_id", String, primary_key=True),
    Column("loader_name", String, nullable=False),
    Column("dataset", Enum(DatasetType, native_enum=False), nullable=False),
    Column("load_type", Enum(LoadType, native_enum=False), nullable=False),
    Column("status", Enum(LoaderStatus, native_enum=False), nullable=False),
    Column("step", Enum(ExecutionStep, native_enum=False), nullable=False),
    Column("failed_step", Enum(ExecutionStep, native_enum=False), nullable=True),
    Column("started_at", UTCDateTime(), nullable=False),
    Column("finished_at", UTCDateTime(), nullable=True),
    Column("records_read", Integer, nullable=False, default=0),
    Column("records_staged", Integer, nullable=False, default=0),
    Column("records_skipped", Integer, nullable=False, default=0),
    Column("records_added", Integer, nullable=False, default=0),
    Column("records_updated", Integer, nullable=False, default=0),
    Column("records_deleted", Integer, nullable=False, default=0),
    Column("records_unchanged", Integer, nullable=False, default=0),
    Column("events_written", Integer, nullable=False, default=0),
    Column("validation_issue_count", Integer, nullable=False, default=0),
    Column("change_request_id", String, nullable=True),
    Column("changes_applied", Boolean, nullable=False, default=False),
    Column("dry_run", Boolean, nullable=False, default=False),
    Column("error_message", Text, nullable=True),
    Index("ix_loader_execution_name_started", "loader_name", "started_at"),
)

# Mapped entities --------------------------------------------------------------

outbox_event_table = Table(
    "outbox_event",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("aggregate_id", String, nullable=False),
    Column("aggregate_type", String, nullable=False),
    Column("event_type", Enum(EventType, native_enum=False), nullable=False),
    Column("payload", JSON, nullable=False),
    Column("status", Enum(OutboxStatus, native_enum=False), nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("processing_started_at", UTCDateTime(), nullable=True),
    Column("processed_at", UTCDateTime(), nullable=True),
    Column("retry_count", Integer, nullable=False, default=0),
    Column("error_message", Text, nullable=True),
    Index("ix_outbox_event_status_created", "status", "created_at"),
    Index("ix_outbox_event_aggregate", "aggregate_type", "aggregate_id"),
)

change_request_table = Table(
    "change_request",
    mapper_registry.metadata,
    Column("id", UUIDColumnType, primary_key=True, default=uuid.uuid4),
    Column("cr_number", String, nullable=False, unique=True),
    Column("title", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("dataset", Enum(DatasetType, native_enum=False), nullable=False),
    Column("operation", Enum(OperationType, native_enum=False), nullable=False),
    Column("status", Enum(ChangeRequestStatus, native_enum=False), nullable=False),
    Column("priority", String, nullable=False),
    Column("requester", String, nullable=False),
    Column("proposed_changes", JSON, nullable=False),
    Column("created_at", UTCDateTime(), nullable=False),
    Column("approved_by", String, nullable=True),
    Column("approved_at", UTCDateTime(), nullable=True),
    Column("rejection_reason", Text, nullable=True),
    Column("applied_at", UTCDateTime(), nullable=True),
    Index("ix_change_request_status", "status"),
)


@cache
def start_mappers() -> orm.registry:
    """Map the mutable domain entities onto their tables."""

    log.info("Starting SQLAlchemy mappers")

    mapper_registry.map_imperatively(OutboxEvent, outbox_event_table)
    mapper_registry.map_imperatively(ChangeRequest, change_request_table)

    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
