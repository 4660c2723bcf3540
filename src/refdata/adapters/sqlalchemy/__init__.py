"""SQLAlchemy adapter package for reference data."""

from __future__ import annotations

from .mappings import create_all_tables, mapper_registry, start_mappers
from .repositories import (
    SqlAlchemyBitemporalRecordRepository,
    SqlAlchemyChangeRequestRepository,
    SqlAlchemyLoaderRunRepository,
    SqlAlchemyOutboxRepository,
    SqlAlchemyStagingRepository,
)
from .unit_of_work import (
    BaseSqlAlchemyUnitOfWork,
    SqlAlchemyOutboxUnitOfWork,
    SqlAlchemyReferenceDataUnitOfWork,
    StartupError,
    configured_engine,
    is_started,
    shutdown,
    startup,
)

__all__ = [
    "BaseSqlAlchemyUnitOfWork",
    "SqlAlchemyBitemporalRecordRepository",
    "SqlAlchemyChangeRequestRepository",
    "SqlAlchemyLoaderRunRepository",
    "SqlAlchemyOutboxRepository",
    "SqlAlchemyOutboxUnitOfWork",
    "SqlAlchemyReferenceDataUnitOfWork",
    "SqlAlchemyStagingRepository",
    "StartupError",
    "configured_engine",
    "create_all_tables",
    "is_started",
    "mapper_registry",
    "shutdown",
    "start_mappers",
    "startup",
]
