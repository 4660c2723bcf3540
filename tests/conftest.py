from __future__ import annotations

import os
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from refdata.adapters.sqlalchemy import create_all_tables, start_mappers
from refdata.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyOutboxUnitOfWork,
    SqlAlchemyReferenceDataUnitOfWork,
    shutdown,
    startup,
)
from tests.helpers.reference_data import (
    FakeOutboxUnitOfWork,
    FakeUnitOfWork,
    FixedClock,
    InMemoryStore,
)

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture(autouse=True)
def _isolated_data_dir(
    tmp_path_factory: pytest.TempPathFactory, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.setenv("REFDATA_DATA_DIR", str(tmp_path_factory.mktemp("refdata-data")))


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def fake_uow_factory(store: InMemoryStore) -> Callable[[], FakeUnitOfWork]:
    return lambda: FakeUnitOfWork(store)


@pytest.fixture
def fake_outbox_uow_factory(store: InMemoryStore) -> Callable[[], FakeOutboxUnitOfWork]:
    return lambda: FakeOutboxUnitOfWork(store)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_engine("sqlite+pysqlite:///:memory:", future=True)
    start_mappers()
    create_all_tables(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, future=True, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def sqlite_unit_of_work(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyReferenceDataUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)

    def factory() -> SqlAlchemyReferenceDataUnitOfWork:
        return SqlAlchemyReferenceDataUnitOfWork()

    try:
        yield factory
    finally:
        shutdown()


@pytest.fixture
def sqlite_outbox_unit_of_work(
    sqlite_unit_of_work: Callable[[], SqlAlchemyReferenceDataUnitOfWork],
) -> Callable[[], SqlAlchemyOutboxUnitOfWork]:
    _ = sqlite_unit_of_work
    return SqlAlchemyOutboxUnitOfWork
