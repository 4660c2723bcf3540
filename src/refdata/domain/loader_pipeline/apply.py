"""Turn a diff into concrete bitemporal writes and their outbox events."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from refdata.domain.events import ChangeKind, record_event
from refdata.domain.model.bitemporal import BitemporalRecord, create_new_version, end_validity

from .definition import take_staged

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import date, datetime

    from refdata.domain.diff import DiffResult
    from refdata.domain.model.bitemporal import RecordKey
    from refdata.domain.model.outbox import OutboxEvent
    from refdata.domain.model.reference import DatasetType
    from refdata.domain.ports.unit_of_work import ReferenceDataRepositories

    from .definition import AttributeMerger
    from .staging import StagingRecord


@dataclass(frozen=True, slots=True)
class ChangeSet:
    """Rows to close, rows to insert and the events announcing them."""

    closed: tuple[BitemporalRecord[Any], ...] = ()
    created: tuple[BitemporalRecord[Any], ...] = ()
    events: tuple[OutboxEvent, ...] = ()
    added: int = 0
    updated: int = 0
    deleted: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.closed or self.created)


def _close_date(record: BitemporalRecord[Any], on: date) -> date:
    # a row that only starts in the future is closed where it starts
    return max(on, record.valid_from)


def plan_changes[T](
    diff: DiffResult[StagingRecord[T], BitemporalRecord[T]],
    *,
    dataset: DatasetType,
    actor: str | None,
    on: date,
    now: datetime,
    change_request_id: str | None = None,
    merge: AttributeMerger[T] = take_staged,
    latest_versions: Mapping[RecordKey, int] | None = None,
    with_events: bool = True,
) -> ChangeSet:
    """Plan the writes for ``diff``.

    Additions start a lineage (or continue a closed one, per ``latest_versions``),
    updates close the current row and open its successor with merged attributes,
    deletions only close the current row. One event is planned per logical change.
    """

    known_versions = latest_versions or {}
    closed: list[BitemporalRecord[Any]] = []
    created: list[BitemporalRecord[Any]] = []
    events: list[OutboxEvent] = []

    def announce(record: BitemporalRecord[Any], kind: ChangeKind) -> None:
        if with_events:
            events.append(record_event(dataset, record, kind, now=now))

    for staged in diff.additions:
        record = BitemporalRecord(
            business_key=staged.business_key,
            code_system=staged.code_system,
            attributes=staged.attributes,
            valid_from=staged.valid_from or on,
            valid_to=staged.valid_to,
            version=known_versions.get(staged.key, 0) + 1,
            recorded_at=now,
            recorded_by=actor,
            change_request_id=change_request_id,
        )
        created.append(record)
        announce(record, ChangeKind.CREATED)

    for pair in diff.updates:
        current = pair.current
        start = _close_date(current, on)
        closed.append(end_validity(current, start))
        successor = create_new_version(
            current,
            actor=actor,
            change_request_id=change_request_id,
            attributes=merge(current.attributes, pair.staged.attributes),
            on=start,
            now=now,
        )
        created.append(successor)
        announce(successor, ChangeKind.UPDATED)

    for current in diff.deletions:
        ended = end_validity(current, _close_date(current, on))
        closed.append(ended)
        announce(ended, ChangeKind.DELETED)

    return ChangeSet(
        closed=tuple(closed),
        created=tuple(created),
        events=tuple(events),
        added=len(diff.additions),
        updated=len(diff.updates),
        deleted=len(diff.deletions),
    )


def write_change_set(
    change_set: ChangeSet,
    repositories: ReferenceDataRepositories,
    *,
    dataset: DatasetType,
    publish_events: bool = True,
) -> int:
    """Persist ``change_set`` through ``repositories``; returns the number of events written.

    Closing happens before inserting so a lineage never shows two open rows. The
    caller owns the transaction.
    """

    for record in change_set.closed:
        repositories.records.end_validity(record)
    for record in change_set.created:
        repositories.records.add(dataset, record)
    if not publish_events:
        return 0
    for event in change_set.events:
        repositories.outbox.add(event)
    return len(change_set.events)
