"""Outbox events: durable change notifications awaiting delivery."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Final
from uuid import UUID, uuid4

STALE_PROCESSING_ERROR: Final[str] = "Processing abandoned before the bus acknowledged it"


class OutboxStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    PROCESSED = "PROCESSED"
    FAILED = "FAILED"


class EventType(StrEnum):
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    DEPRECATED = "DEPRECATED"
    MAPPING_CREATED = "MAPPING_CREATED"
    MAPPING_UPDATED = "MAPPING_UPDATED"
    MAPPING_DEPRECATED = "MAPPING_DEPRECATED"


class InvalidEventTransitionError(RuntimeError):
    """Raised when an outbox event is moved along an edge its state machine lacks."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class OutboxEvent:
    """One message waiting in the outbox.

    ``PENDING -> PROCESSING -> PROCESSED`` on success; a failed send moves the
    event back to ``PENDING`` with ``retry_count`` incremented, or to the terminal
    ``FAILED`` state once ``retry_count`` reaches the retry limit.
    """

    aggregate_id: str
    aggregate_type: str
    event_type: EventType
    payload: dict[str, Any]
    id: UUID = field(default_factory=uuid4)
    status: OutboxStatus = OutboxStatus.PENDING
    created_at: datetime = field(default_factory=_utcnow)
    processing_started_at: datetime | None = None
    processed_at: datetime | None = None
    retry_count: int = 0
    error_message: str | None = None

    def start_processing(self, *, now: datetime | None = None) -> None:
        self._require(OutboxStatus.PENDING, "start processing")
        self.status = OutboxStatus.PROCESSING
        self.processing_started_at = now or _utcnow()

    def mark_processed(self, *, now: datetime | None = None) -> None:
        self._require(OutboxStatus.PROCESSING, "mark processed")
        self.status = OutboxStatus.PROCESSED
        self.processed_at = now or _utcnow()
        self.error_message = None

    def record_failure(self, error: str, *, max_retries: int) -> OutboxStatus:
        """Count a failed send and return the resulting status."""

        self._require(OutboxStatus.PROCESSING, "record a failure")
        self.retry_count += 1
        self.error_message = error
        self.processing_started_at = None
        if self.retry_count >= max_retries:
            self.status = OutboxStatus.FAILED
        else:
            self.status = OutboxStatus.PENDING
        return self.status

    def release(self, *, max_retries: int) -> OutboxStatus:
        """Give up on an abandoned in-flight send.

        The lost attempt counts as a failed send: ``retry_count`` goes up and the
        event turns FAILED once it reaches ``max_retries``.
        """

        self._require(OutboxStatus.PROCESSING, "release")
        return self.record_failure(STALE_PROCESSING_ERROR, max_retries=max_retries)

    def requeue(self) -> None:
        """Operator action: give a FAILED event a fresh set of retries."""

        self._require(OutboxStatus.FAILED, "requeue")
        self.status = OutboxStatus.PENDING
        self.retry_count = 0
        self.error_message = None

    @property
    def is_terminal(self) -> bool:
        return self.status in {OutboxStatus.PROCESSED, OutboxStatus.FAILED}

    def _require(self, expected: OutboxStatus, action: str) -> None:
        if self.status != expected:
            raise InvalidEventTransitionError(
                f"Cannot {action} event {self.id}: status is {self.status}, expected {expected}"
            )


def create_event(
    aggregate_id: str,
    aggregate_type: str,
    event_type: EventType,
    payload: dict[str, Any],
    *,
    now: datetime | None = None,
) -> OutboxEvent:
    return OutboxEvent(
        aggregate_id=aggregate_id,
        aggregate_type=aggregate_type,
        event_type=event_type,
        payload=payload,
        created_at=now or _utcnow(),
    )
