"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING, Any

from refdata.adapters.iso_countries import LOADER_NAME as ISO_COUNTRIES, build_iso_country_loader
from refdata.adapters.kafka_rest import KafkaRestMessageBus
from refdata.adapters.opa import OpaPolicyEvaluator
from refdata.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyOutboxUnitOfWork,
    SqlAlchemyReferenceDataUnitOfWork,
    is_started,
    startup,
)
from refdata.config import get_kafka_rest_config, get_loader_config, get_outbox_config
from refdata.domain.change_requests import ChangeRequestService
from refdata.domain.loader_pipeline import LoaderContext, LoaderPipeline, LoadType
from refdata.domain.loader_pipeline.context import SYSTEM_USER
from refdata.domain.model.bitemporal import RecordKey
from refdata.domain.model.outbox import OutboxStatus
from refdata.domain.ports.unit_of_work import OutboxUnitOfWork, ReferenceDataUnitOfWork
from refdata.domain.publishing import OutboxPublisher, TopicRouter
from refdata.domain.timeline import Timeline

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from refdata.config.outbox import OutboxConfig
    from refdata.domain.loader_pipeline import ChangeSet, Loader, LoaderConfig, LoaderResult
    from refdata.domain.loader_pipeline.definition import AttributeMerger
    from refdata.domain.model import BitemporalRecord, ChangeRequestStatus, DatasetType
    from refdata.domain.ports.messaging import MessageBus
    from refdata.domain.ports.workflow import PolicyEvaluator
    from refdata.domain.publishing import PublishReport

UnitOfWorkFactory = Callable[[], ReferenceDataUnitOfWork]
OutboxUnitOfWorkFactory = Callable[[], OutboxUnitOfWork]
type LoaderFactory = Callable[[str | None], Loader[Any, Any]]

LOADERS: dict[str, LoaderFactory] = {
    ISO_COUNTRIES: build_iso_country_loader,
}

log = getLogger(__name__)


def _ensure_started() -> None:
    if not is_started():
        startup()


def _reference_uow(factory: UnitOfWorkFactory | None) -> UnitOfWorkFactory:
    if factory is not None:
        return factory
    _ensure_started()
    return SqlAlchemyReferenceDataUnitOfWork


def _outbox_uow(factory: OutboxUnitOfWorkFactory | None) -> OutboxUnitOfWorkFactory:
    if factory is not None:
        return factory
    _ensure_started()
    return SqlAlchemyOutboxUnitOfWork


def run_loader(
    name: str = ISO_COUNTRIES,
    *,
    source: str | None = None,
    loader: Loader[Any, Any] | None = None,
    config: LoaderConfig | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    dry_run: bool = False,
    incremental: bool | None = None,
    user_id: str = SYSTEM_USER,
) -> LoaderResult:
    """Run one loader end to end with the configured adapters."""

    effective_config = config or get_loader_config(source=source)
    if loader is None:
        if name not in LOADERS:
            known = ", ".join(sorted(LOADERS))
            raise ValueError(f"Unknown loader {name!r}; known loaders: {known}")
        loader = LOADERS[name](source or effective_config.source)
    effective_uow = _reference_uow(unit_of_work_factory)

    is_incremental = effective_config.incremental_mode if incremental is None else incremental
    context = LoaderContext(
        user_id=user_id,
        dry_run=dry_run,
        load_type=LoadType.INCREMENTAL if is_incremental else LoadType.FULL,
    )
    pipeline = LoaderPipeline(
        loader=loader,
        unit_of_work_factory=effective_uow,
        config=effective_config,
        change_requests=ChangeRequestService(
            effective_uow, merges={**loader_merges(), loader.dataset: loader.merge}
        ),
    )
    return pipeline.execute(context)


def _publisher(
    *,
    bus: MessageBus,
    unit_of_work_factory: OutboxUnitOfWorkFactory | None,
    config: OutboxConfig,
) -> OutboxPublisher:
    return OutboxPublisher(
        unit_of_work_factory=_outbox_uow(unit_of_work_factory),
        bus=bus,
        topics=TopicRouter(prefix=config.topic_prefix, fallback=config.fallback_topic),
        max_retries=config.max_retries,
    )


def publish_outbox(
    *,
    bus: MessageBus | None = None,
    unit_of_work_factory: OutboxUnitOfWorkFactory | None = None,
    config: OutboxConfig | None = None,
    continuous: bool = False,
    max_iterations: int | None = None,
) -> PublishReport:
    """Drain pending outbox events once, or keep polling when ``continuous``."""

    effective_config = config or get_outbox_config()
    publisher = _publisher(
        bus=bus or KafkaRestMessageBus(get_kafka_rest_config()),
        unit_of_work_factory=unit_of_work_factory,
        config=effective_config,
    )
    if not continuous:
        return publisher.publish_pending(limit=effective_config.batch_size)

    log.info(
        "Polling outbox every %.1fs (max_iterations=%s)",
        effective_config.poll_interval_seconds,
        max_iterations,
    )
    return publisher.run(
        poll_interval_seconds=effective_config.poll_interval_seconds,
        max_iterations=max_iterations,
        stale_after=timedelta(minutes=effective_config.stale_after_minutes),
        batch_size=effective_config.batch_size,
    )


def outbox_status(
    *, unit_of_work_factory: OutboxUnitOfWorkFactory | None = None
) -> dict[OutboxStatus, int]:
    effective_uow = _outbox_uow(unit_of_work_factory)
    with effective_uow() as uow:
        counts = uow.repositories.outbox.count_by_status()
    return {status: counts.get(status, 0) for status in OutboxStatus}


def recover_stale_events(
    *,
    older_than_minutes: int | None = None,
    unit_of_work_factory: OutboxUnitOfWorkFactory | None = None,
    bus: MessageBus | None = None,
) -> int:
    config = get_outbox_config()
    minutes = older_than_minutes if older_than_minutes is not None else config.stale_after_minutes
    if minutes < 0:
        raise ValueError("older_than_minutes must be non-negative")
    publisher = _publisher(
        bus=bus or KafkaRestMessageBus(), unit_of_work_factory=unit_of_work_factory, config=config
    )
    return publisher.recover_stale(timedelta(minutes=minutes))


def requeue_failed_events(
    event_ids: Sequence[UUID] | None = None,
    *,
    unit_of_work_factory: OutboxUnitOfWorkFactory | None = None,
    bus: MessageBus | None = None,
) -> int:
    config = get_outbox_config()
    publisher = _publisher(
        bus=bus or KafkaRestMessageBus(), unit_of_work_factory=unit_of_work_factory, config=config
    )
    return publisher.requeue_failed(event_ids)


def loader_merges() -> dict[DatasetType, AttributeMerger[Any]]:
    """The attribute merge of every known loader, keyed by the dataset it writes."""

    loaders = (factory(None) for factory in LOADERS.values())
    return {loader.dataset: loader.merge for loader in loaders}


def _change_requests(unit_of_work_factory: UnitOfWorkFactory | None) -> ChangeRequestService:
    return ChangeRequestService(_reference_uow(unit_of_work_factory), merges=loader_merges())


def decide_change_request(
    reference: str,
    *,
    evaluator: PolicyEvaluator | None = None,
    approver: str = "policy",
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> ChangeRequestStatus:
    """Ask the policy service about a PENDING change request and record the outcome."""

    service = _change_requests(unit_of_work_factory)
    return service.review(reference, evaluator or OpaPolicyEvaluator(), approver=approver)


def approve_change_request(
    reference: str,
    *,
    approver: str,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> None:
    _change_requests(unit_of_work_factory).approve(reference, approver=approver)
    log.info("Approved %s by %s", reference, approver)


def reject_change_request(
    reference: str,
    *,
    reason: str,
    reviewer: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> None:
    _change_requests(unit_of_work_factory).reject(reference, reason, reviewer=reviewer)
    log.info("Rejected %s: %s", reference, reason)


def apply_change_request(
    reference: str,
    *,
    actor: str | None = None,
    publish_events: bool = True,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> ChangeSet:
    return _change_requests(unit_of_work_factory).apply(
        reference, actor=actor, publish_events=publish_events
    )


def change_request_records(
    reference: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> list[BitemporalRecord[Any]]:
    return _change_requests(unit_of_work_factory).records_for(reference)


def record_timeline(
    dataset: DatasetType,
    business_key: str,
    code_system: str,
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
) -> Timeline[BitemporalRecord[Any]]:
    """Every version of one lineage, ordered for point-in-time lookups."""

    effective_uow = _reference_uow(unit_of_work_factory)
    with effective_uow() as uow:
        history = uow.repositories.records.history(dataset, RecordKey(business_key, code_system))
    return Timeline.of(history)
