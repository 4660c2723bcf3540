"""Unit-of-work abstractions for coordinating repositories."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from types import TracebackType

    from refdata.domain.ports.persistence import (
        BitemporalRecordRepository,
        ChangeRequestRepository,
        LoaderRunRepository,
        OutboxRepository,
        StagingRepository,
    )


@runtime_checkable
class RepositoryCollection(Protocol):
    """Marker protocol for groups of repositories managed together."""


@runtime_checkable
class UnitOfWork[TRepositories: RepositoryCollection](Protocol):
    """Generic unit-of-work boundary around a repository collection."""

    @property
    def repositories(self) -> TRepositories: ...

    def __enter__(self) -> UnitOfWork[TRepositories]: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...


@dataclass(slots=True)
class ReferenceDataRepositories(RepositoryCollection):
    """Everything a loader execution or a change-request apply touches."""

    records: BitemporalRecordRepository
    staging: StagingRepository
    outbox: OutboxRepository
    loader_runs: LoaderRunRepository
    change_requests: ChangeRequestRepository


@dataclass(slots=True)
class OutboxRepositories(RepositoryCollection):
    """The outbox publisher only ever sees outbox rows."""

    outbox: OutboxRepository


type ReferenceDataUnitOfWork = UnitOfWork[ReferenceDataRepositories]
type OutboxUnitOfWork = UnitOfWork[OutboxRepositories]
