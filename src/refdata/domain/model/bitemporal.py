"""Bitemporal record envelope shared by every reference dataset.

A record carries two time axes:

* valid time (``valid_from`` / ``valid_to``): when the fact held in the real world,
  as a half-open interval ``[valid_from, valid_to)``; ``valid_to=None`` is open-ended.
* system time (``recorded_at``): when this row was written. It never changes.

Records are immutable values. Changing an entity means writing a new row with a
higher ``version`` and closing the validity window of the previous one; the helpers
in this module return new values and never touch their inputs.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import TYPE_CHECKING, NamedTuple, Protocol, runtime_checkable
from uuid import UUID, uuid4

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping


class InvalidValidityWindowError(ValueError):
    """Raised when a record would end before it starts."""


class RecordKey(NamedTuple):
    """Identity of one version lineage."""

    business_key: str
    code_system: str

    def __str__(self) -> str:
        return f"{self.code_system}:{self.business_key}"


@runtime_checkable
class HasValidityWindow(Protocol):
    """Anything that can be placed on a timeline."""

    @property
    def valid_from(self) -> date: ...

    @property
    def valid_to(self) -> date | None: ...

    @property
    def version(self) -> int: ...

    def was_valid_on(self, on: date) -> bool: ...


def utcnow() -> datetime:
    return datetime.now(UTC)


def today() -> date:
    return utcnow().date()


def was_valid_on(valid_from: date, valid_to: date | None, on: date) -> bool:
    """Return whether ``on`` falls inside ``[valid_from, valid_to)``."""

    if on < valid_from:
        return False
    return valid_to is None or on < valid_to


@dataclass(frozen=True, slots=True, kw_only=True)
class BitemporalRecord[TAttributes]:
    business_key: str
    code_system: str
    attributes: TAttributes
    valid_from: date
    valid_to: date | None = None
    version: int = 1
    recorded_at: datetime = field(default_factory=utcnow)
    recorded_by: str | None = None
    change_request_id: str | None = None
    is_correction: bool = False
    metadata: Mapping[str, object] = field(default_factory=dict)
    id: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.valid_to is not None and self.valid_to < self.valid_from:
            raise InvalidValidityWindowError(
                f"{self.key} v{self.version}: valid_to {self.valid_to} "
                f"is before valid_from {self.valid_from}"
            )
        if self.version < 1:
            raise InvalidValidityWindowError(f"{self.key}: version must be >= 1")

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.business_key, self.code_system)

    @property
    def is_open(self) -> bool:
        return self.valid_to is None

    def was_valid_on(self, on: date) -> bool:
        return was_valid_on(self.valid_from, self.valid_to, on)

    def is_currently_valid(self, *, on: date | None = None) -> bool:
        return self.was_valid_on(on or today())


def create_new_version[T](
    base: BitemporalRecord[T],
    *,
    actor: str | None,
    change_request_id: str | None = None,
    attributes: T | None = None,
    on: date | None = None,
    now: datetime | None = None,
) -> BitemporalRecord[T]:
    """Return the successor of ``base`` representing a real-world change.

    The new version starts today and is open-ended. Closing ``base`` is the
    caller's job (see :func:`end_validity`).
    """

    return replace(
        base,
        id=uuid4(),
        attributes=base.attributes if attributes is None else attributes,
        valid_from=on or today(),
        valid_to=None,
        version=base.version + 1,
        recorded_at=now or utcnow(),
        recorded_by=actor,
        change_request_id=change_request_id,
        is_correction=False,
    )


def create_correction[T](
    base: BitemporalRecord[T],
    *,
    actor: str | None,
    change_request_id: str | None = None,
    attributes: T | None = None,
    now: datetime | None = None,
) -> BitemporalRecord[T]:
    """Return a version that repairs ``base`` without moving its validity window."""

    return replace(
        base,
        id=uuid4(),
        attributes=base.attributes if attributes is None else attributes,
        version=base.version + 1,
        recorded_at=now or utcnow(),
        recorded_by=actor,
        change_request_id=change_request_id,
        is_correction=True,
    )


def end_validity[T](record: BitemporalRecord[T], end_date: date) -> BitemporalRecord[T]:
    """Close ``record`` at ``end_date``. An existing earlier end date is kept."""

    if record.valid_to is not None and record.valid_to <= end_date:
        return record
    return replace(record, valid_to=end_date)


def current_versions[T](
    records: Iterable[BitemporalRecord[T]], *, on: date | None = None
) -> list[BitemporalRecord[T]]:
    reference = on or today()
    return [record for record in records if record.was_valid_on(reference)]


def versions_as_of[T](
    records: Iterable[BitemporalRecord[T]],
    on: date,
    *,
    recorded_as_of: datetime | None = None,
) -> list[BitemporalRecord[T]]:
    """Records valid on ``on``, optionally restricted to what was known at ``recorded_as_of``."""

    return [
        record
        for record in records
        if record.was_valid_on(on)
        and (recorded_as_of is None or record.recorded_at <= recorded_as_of)
    ]


def latest_version[T](records: Iterable[BitemporalRecord[T]]) -> BitemporalRecord[T] | None:
    return max(records, key=lambda record: record.version, default=None)


def group_by_change_request[T](
    records: Iterable[BitemporalRecord[T]],
) -> dict[str, list[BitemporalRecord[T]]]:
    grouped: dict[str, list[BitemporalRecord[T]]] = defaultdict(list)
    for record in records:
        if record.change_request_id is not None:
            grouped[record.change_request_id].append(record)
    return dict(grouped)


def group_by_key[T](
    records: Iterable[BitemporalRecord[T]],
) -> dict[RecordKey, list[BitemporalRecord[T]]]:
    grouped: dict[RecordKey, list[BitemporalRecord[T]]] = defaultdict(list)
    for record in records:
        grouped[record.key].append(record)
    return dict(grouped)
