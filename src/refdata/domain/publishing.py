"""Drain the transactional outbox onto the message bus.

Every state change of an event is committed on its own: the PROCESSING marker is
persisted before the send, so a crash mid-send leaves a recoverable event behind
(see :meth:`OutboxPublisher.recover_stale`). Nothing is marked PROCESSED before the
bus acknowledged it, which makes delivery at-least-once; consumers de-duplicate on
``(aggregateId, eventType, version)``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Final, Protocol

from refdata.domain.model.outbox import OutboxStatus

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping, Sequence
    from datetime import timedelta
    from uuid import UUID

    from refdata.domain.ports.messaging import MessageBus
    from refdata.domain.ports.unit_of_work import OutboxUnitOfWork

log = getLogger(__name__)

DEFAULT_MAX_RETRIES: Final[int] = 3
MAX_ERROR_LENGTH: Final[int] = 1000

TOPIC_SUFFIXES: Final[dict[str, str]] = {
    "Country": "countries",
    "Port": "ports",
    "Airport": "airports",
    "CodeMapping": "mappings",
}


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class TopicRouter:
    """Pick the topic for an aggregate type, e.g. ``reference-data.countries``."""

    prefix: str = "reference-data"
    fallback: str = "reference-events"
    suffixes: Mapping[str, str] = field(default_factory=lambda: dict(TOPIC_SUFFIXES))

    def __call__(self, aggregate_type: str) -> str:
        suffix = self.suffixes.get(aggregate_type)
        if suffix is None:
            return self.fallback
        return f"{self.prefix}.{suffix}"


@dataclass(slots=True)
class PublishReport:
    processed: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0

    @property
    def attempted(self) -> int:
        return self.processed + self.retried + self.failed

    def record(self, outcome: OutboxStatus | None) -> None:
        if outcome is None:
            self.skipped += 1
        elif outcome is OutboxStatus.PROCESSED:
            self.processed += 1
        elif outcome is OutboxStatus.FAILED:
            self.failed += 1
        else:
            self.retried += 1

    def merge(self, other: PublishReport) -> None:
        self.processed += other.processed
        self.retried += other.retried
        self.failed += other.failed
        self.skipped += other.skipped


@dataclass(slots=True)
class OutboxPublisher:
    unit_of_work_factory: Callable[[], OutboxUnitOfWork]
    bus: MessageBus
    topics: Callable[[str], str] = field(default_factory=TopicRouter)
    max_retries: int = DEFAULT_MAX_RETRIES
    clock: Clock = _utcnow

    def __post_init__(self) -> None:
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be >= 1, got {self.max_retries}")

    def publish_pending(self, *, limit: int | None = None) -> PublishReport:
        """Send every PENDING event, oldest first. Delivery failures never raise."""

        with self.unit_of_work_factory() as uow:
            pending = [event.id for event in uow.repositories.outbox.list_pending(limit=limit)]

        report = PublishReport()
        for event_id in pending:
            report.record(self._publish_one(event_id))

        if pending:
            log.info(
                "Outbox pass: processed=%s, retried=%s, failed=%s, skipped=%s",
                report.processed,
                report.retried,
                report.failed,
                report.skipped,
            )
        return report

    def _publish_one(self, event_id: UUID) -> OutboxStatus | None:
        with self.unit_of_work_factory() as uow:
            event = uow.repositories.outbox.get(event_id)
            if event is None or event.status != OutboxStatus.PENDING:
                return None
            event.start_processing(now=self.clock())
            topic = self.topics(event.aggregate_type)
            key = event.aggregate_id
            value = dict(event.payload)
            uow.commit()

        try:
            self.bus.send(topic, key=key, value=value)
        except Exception as exc:  # noqa: BLE001
            return self._record_failure(event_id, exc)

        with self.unit_of_work_factory() as uow:
            event = uow.repositories.outbox.get(event_id)
            if event is None:
                return None
            if event.status != OutboxStatus.PROCESSING:
                log.warning(
                    "Event %s was sent to %s but is now %s; leaving it as is",
                    event_id,
                    topic,
                    event.status,
                )
                return None
            event.mark_processed(now=self.clock())
            uow.commit()
        log.debug("Published event %s to %s (key=%s)", event_id, topic, key)
        return OutboxStatus.PROCESSED

    def _record_failure(self, event_id: UUID, exc: Exception) -> OutboxStatus | None:
        message = f"{exc.__class__.__name__}: {exc}"[:MAX_ERROR_LENGTH]
        with self.unit_of_work_factory() as uow:
            event = uow.repositories.outbox.get(event_id)
            if event is None:
                return None
            status = event.record_failure(message, max_retries=self.max_retries)
            retries = event.retry_count
            uow.commit()

        if status is OutboxStatus.FAILED:
            log.error(
                "Event %s failed permanently after %s attempts: %s", event_id, retries, message
            )
        else:
            log.warning("Event %s send failed (attempt %s): %s", event_id, retries, message)
        return status

    def status_counts(self) -> dict[OutboxStatus, int]:
        with self.unit_of_work_factory() as uow:
            counts = uow.repositories.outbox.count_by_status()
        return {status: counts.get(status, 0) for status in OutboxStatus}

    def recover_stale(self, older_than: timedelta) -> int:
        """Release PROCESSING events abandoned for longer than ``older_than``.

        Each release counts as a retry; events out of retries become FAILED.
        """

        cutoff = self.clock() - older_than
        with self.unit_of_work_factory() as uow:
            stale = uow.repositories.outbox.list_stale_processing(started_before=cutoff)
            outcomes = [event.release(max_retries=self.max_retries) for event in stale]
            uow.commit()
        if stale:
            failed = outcomes.count(OutboxStatus.FAILED)
            log.warning(
                "Released %s stale in-flight events (%s now FAILED)", len(stale), failed
            )
        return len(stale)

    def requeue_failed(self, event_ids: Sequence[UUID] | None = None) -> int:
        """Give FAILED events (all of them, or the given ids) a fresh retry budget."""

        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.outbox
            if event_ids is None:
                failed = repository.list_by_status(OutboxStatus.FAILED)
            else:
                failed = [
                    event
                    for event in (repository.get(event_id) for event_id in event_ids)
                    if event is not None and event.status == OutboxStatus.FAILED
                ]
            for event in failed:
                event.requeue()
            uow.commit()
        log.info("Requeued %s failed events", len(failed))
        return len(failed)

    def run(
        self,
        *,
        poll_interval_seconds: float,
        max_iterations: int | None = None,
        stale_after: timedelta | None = None,
        batch_size: int | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> PublishReport:
        """Poll until ``max_iterations`` passes have run (forever when ``None``)."""

        total = PublishReport()
        iteration = 0
        while max_iterations is None or iteration < max_iterations:
            if stale_after is not None:
                self.recover_stale(stale_after)
            total.merge(self.publish_pending(limit=batch_size))
            iteration += 1
            if max_iterations is None or iteration < max_iterations:
                sleep(poll_interval_seconds)
        return total
