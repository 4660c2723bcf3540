"""Key-based reconciliation of staged records against current production state."""

from __future__ import annotations

from collections.abc import Callable, Hashable
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable


@dataclass(frozen=True, slots=True)
class UpdatePair[S, P]:
    staged: S
    current: P


@dataclass(frozen=True, slots=True)
class DiffSummary:
    additions: int
    updates: int
    deletions: int
    unchanged: int

    @property
    def total_changes(self) -> int:
        return self.additions + self.updates + self.deletions


@dataclass(frozen=True, slots=True)
class DiffResult[S, P]:
    additions: tuple[S, ...] = ()
    updates: tuple[UpdatePair[S, P], ...] = ()
    deletions: tuple[P, ...] = ()
    unchanged: tuple[P, ...] = ()

    @classmethod
    def empty(cls) -> DiffResult[S, P]:
        return cls()

    def has_changes(self) -> bool:
        return bool(self.additions or self.updates or self.deletions)

    @property
    def total_changes(self) -> int:
        return len(self.additions) + len(self.updates) + len(self.deletions)

    def summary(self) -> DiffSummary:
        return DiffSummary(
            additions=len(self.additions),
            updates=len(self.updates),
            deletions=len(self.deletions),
            unchanged=len(self.unchanged),
        )


@dataclass(frozen=True, slots=True)
class DiffDetector[S, P]:
    """Classify every key as addition, update, deletion or unchanged.

    Both inputs are indexed by key in one pass each, so detection is O(n + m).
    A key repeated inside one input keeps its last record.
    """

    staging_key: Callable[[S], Hashable]
    production_key: Callable[[P], Hashable]
    has_changed: Callable[[S, P], bool]

    def detect(self, staged: Iterable[S], production: Iterable[P]) -> DiffResult[S, P]:
        staged_by_key = {self.staging_key(record): record for record in staged}
        production_by_key = {self.production_key(record): record for record in production}

        additions: list[S] = []
        updates: list[UpdatePair[S, P]] = []
        unchanged: list[P] = []
        for key, staged_record in staged_by_key.items():
            if key not in production_by_key:
                additions.append(staged_record)
                continue
            current = production_by_key[key]
            if self.has_changed(staged_record, current):
                updates.append(UpdatePair(staged=staged_record, current=current))
            else:
                unchanged.append(current)

        deletions = [
            record for key, record in production_by_key.items() if key not in staged_by_key
        ]

        return DiffResult(
            additions=tuple(additions),
            updates=tuple(updates),
            deletions=tuple(deletions),
            unchanged=tuple(unchanged),
        )
