"""Event payloads written to the outbox alongside bitemporal writes."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from refdata.domain.model.outbox import EventType, OutboxEvent, create_event
from refdata.domain.model.reference import DatasetType, aggregate_type_for, attributes_to_dict

if TYPE_CHECKING:
    from refdata.domain.model.bitemporal import BitemporalRecord


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


_EVENT_TYPES: dict[ChangeKind, EventType] = {
    ChangeKind.CREATED: EventType.CREATED,
    ChangeKind.UPDATED: EventType.UPDATED,
    ChangeKind.DELETED: EventType.DELETED,
}

_MAPPING_EVENT_TYPES: dict[ChangeKind, EventType] = {
    ChangeKind.CREATED: EventType.MAPPING_CREATED,
    ChangeKind.UPDATED: EventType.MAPPING_UPDATED,
    ChangeKind.DELETED: EventType.MAPPING_DEPRECATED,
}


def event_type_for(dataset: DatasetType, kind: ChangeKind) -> EventType:
    if dataset is DatasetType.CODE_MAPPING:
        return _MAPPING_EVENT_TYPES[kind]
    return _EVENT_TYPES[kind]


def aggregate_id_for(record: BitemporalRecord[Any]) -> str:
    """Events of one lineage share an aggregate id so the bus keeps them in order."""

    return str(record.key)


def build_event_payload(
    record: BitemporalRecord[Any],
    *,
    event_type: EventType,
    aggregate_type: str,
    timestamp: datetime | None = None,
) -> dict[str, Any]:
    """Serialisable snapshot of ``record`` plus envelope metadata.

    Consumers de-duplicate on ``(aggregateId, eventType, version)``.
    """

    payload: dict[str, Any] = {
        "eventId": str(uuid4()),
        "eventType": str(event_type),
        "timestamp": (timestamp or datetime.now(UTC)).isoformat(),
        "aggregateId": aggregate_id_for(record),
        "aggregateType": aggregate_type,
        "version": record.version,
        "changeRequestId": record.change_request_id,
        "recordedBy": record.recorded_by,
        "metadata": dict(record.metadata),
        "recordId": str(record.id),
        "businessKey": record.business_key,
        "codeSystem": record.code_system,
        "validFrom": record.valid_from.isoformat(),
        "validTo": record.valid_to.isoformat() if record.valid_to else None,
        "recordedAt": record.recorded_at.isoformat(),
        "isCorrection": record.is_correction,
    }
    payload["data"] = attributes_to_dict(record.attributes)
    return payload


def record_event(
    dataset: DatasetType,
    record: BitemporalRecord[Any],
    kind: ChangeKind,
    *,
    now: datetime | None = None,
) -> OutboxEvent:
    """Build the outbox event announcing ``kind`` for ``record``."""

    event_type = event_type_for(dataset, kind)
    aggregate_type = aggregate_type_for(dataset)
    payload = build_event_payload(
        record, event_type=event_type, aggregate_type=aggregate_type, timestamp=now
    )
    return create_event(aggregate_id_for(record), aggregate_type, event_type, payload, now=now)
