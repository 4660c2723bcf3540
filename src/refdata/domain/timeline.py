"""Point-in-time views over the versions of one reference entity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from refdata.domain.model.bitemporal import HasValidityWindow, RecordKey, group_by_key, today

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator
    from datetime import date

    from refdata.domain.model.bitemporal import BitemporalRecord


@dataclass(frozen=True, slots=True)
class Timeline[T: HasValidityWindow]:
    """Versions of a single lineage ordered by ``(valid_from, version)``.

    Built on demand and never persisted. Lookups pick the highest version covering a
    date, so a correction (same window, higher version) shadows the row it repairs.
    """

    versions: tuple[T, ...]

    @classmethod
    def of(cls, records: Iterable[T]) -> Timeline[T]:
        return cls(tuple(sorted(records, key=lambda record: (record.valid_from, record.version))))

    def __len__(self) -> int:
        return len(self.versions)

    def __iter__(self) -> Iterator[T]:
        return iter(self.versions)

    def version_on(self, on: date) -> T | None:
        covering = [record for record in self.versions if record.was_valid_on(on)]
        return max(covering, key=lambda record: record.version, default=None)

    def current(self, *, on: date | None = None) -> T | None:
        return self.version_on(on or today())

    def latest(self) -> T | None:
        return max(self.versions, key=lambda record: record.version, default=None)

    def versions_between(self, start: date, end: date) -> list[T]:
        """Versions whose validity overlaps the closed range ``[start, end]``."""

        if start > end:
            raise ValueError(f"start {start} is after end {end}")
        return [
            record
            for record in self.versions
            if record.valid_from <= end and (record.valid_to is None or record.valid_to > start)
        ]

    def change_points(self) -> list[date]:
        points: set[date] = set()
        for record in self.versions:
            points.add(record.valid_from)
            if record.valid_to is not None:
                points.add(record.valid_to)
        return sorted(points)


def build_timelines[T](
    records: Iterable[BitemporalRecord[T]],
) -> dict[RecordKey, Timeline[BitemporalRecord[T]]]:
    return {key: Timeline.of(versions) for key, versions in group_by_key(records).items()}
