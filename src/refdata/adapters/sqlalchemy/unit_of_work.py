"""SQLAlchemy-backed units of work for loader runs, change requests and the outbox."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from refdata.adapters.sqlalchemy.mappings import create_all_tables, start_mappers
from refdata.adapters.sqlalchemy.repositories import (
    SqlAlchemyBitemporalRecordRepository,
    SqlAlchemyChangeRequestRepository,
    SqlAlchemyLoaderRunRepository,
    SqlAlchemyOutboxRepository,
    SqlAlchemyStagingRepository,
)
from refdata.config.storage import get_database_config
from refdata.domain.ports.unit_of_work import (
    OutboxRepositories,
    ReferenceDataRepositories,
    RepositoryCollection,
)

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """Raised when a SQLAlchemy unit of work is used before initialisation."""


@dataclass(slots=True)
class _AdapterState:
    _engine: Engine | None = None
    _session_factory: sessionmaker[Session] | None = None

    @property
    def engine(self) -> Engine | None:
        return self._engine

    @engine.setter
    def engine(self, value: Engine | None) -> None:
        self._session_factory = None
        self._engine = value

    @property
    def session_factory(self) -> sessionmaker[Session]:
        if self._engine is None:
            raise StartupError(
                "SQLAlchemy adapter not initialised. Call refdata.adapters.sqlalchemy."
                "unit_of_work.startup() before requesting a unit of work."
            )
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        return self._session_factory


_STATE = _AdapterState()


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    """Initialise the SQLAlchemy engine, mappers, schema and session factory."""

    if _STATE.engine is not None and not force:
        raise StartupError(
            "SQLAlchemy adapter already initialised. Pass force=True to reconfigure."
        )

    resolved_engine = engine
    if resolved_engine is None:
        database = get_database_config()
        resolved_engine = create_engine(
            database_uri or database.uri, echo=database.echo, future=True
        )
    start_mappers()
    create_all_tables(resolved_engine)
    log.debug("SQLAlchemy adapter bound to %s", resolved_engine.url)

    _STATE.engine = resolved_engine


def configured_engine() -> Engine | None:
    """Return the engine currently managed by the adapter (if any)."""

    return _STATE.engine


def is_started() -> bool:
    """Return whether the adapter has been initialised."""

    return _STATE.engine is not None


def shutdown() -> None:
    """Dispose the managed engine and reset state (primarily for tests)."""

    if _STATE.engine is not None:
        _STATE.engine.dispose()
    _STATE.engine = None


class BaseSqlAlchemyUnitOfWork[TRepositories: RepositoryCollection](ABC):
    """Generic SQLAlchemy unit of work with pluggable repository collections."""

    def __init__(self) -> None:
        self.session_factory: sessionmaker[Session] = _STATE.session_factory
        self._session: Session | None = None

    @abstractmethod
    def _build_repositories(self, session: Session) -> TRepositories: ...

    def __enter__(self) -> BaseSqlAlchemyUnitOfWork[TRepositories]:
        self.session = self.session_factory()
        self._repositories = self._build_repositories(self.session)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        if exc_type is not None:
            self.rollback()
        self.session.close()
        self.session = None
        return False

    def commit(self) -> None:
        session = self.session
        log.debug(
            "%s commit: %s new, %s dirty",
            type(self).__name__,
            len(session.new),
            len(session.dirty),
        )
        session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @property
    def repositories(self) -> TRepositories:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._repositories

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work session not initialised")
        return self._session

    @session.setter
    def session(self, session: Session | None) -> None:
        if self._session is not None and session is not None:
            raise StartupError("Unit of work session already initialised")
        self._session = session


class SqlAlchemyReferenceDataUnitOfWork(BaseSqlAlchemyUnitOfWork[ReferenceDataRepositories]):
    """Unit of work for loader executions and change-request handling."""

    def _build_repositories(self, session: Session) -> ReferenceDataRepositories:
        return ReferenceDataRepositories(
            records=SqlAlchemyBitemporalRecordRepository(session),
            staging=SqlAlchemyStagingRepository(session),
            outbox=SqlAlchemyOutboxRepository(session),
            loader_runs=SqlAlchemyLoaderRunRepository(session),
            change_requests=SqlAlchemyChangeRequestRepository(session),
        )


class SqlAlchemyOutboxUnitOfWork(BaseSqlAlchemyUnitOfWork[OutboxRepositories]):
    """Unit of work for the outbox publisher."""

    def _build_repositories(self, session: Session) -> OutboxRepositories:
        return OutboxRepositories(outbox=SqlAlchemyOutboxRepository(session))


if TYPE_CHECKING:
    from refdata.domain.ports.unit_of_work import OutboxUnitOfWork, ReferenceDataUnitOfWork

    _uow_rd_check: ReferenceDataUnitOfWork = SqlAlchemyReferenceDataUnitOfWork()
    _uow_ob_check: OutboxUnitOfWork = SqlAlchemyOutboxUnitOfWork()
