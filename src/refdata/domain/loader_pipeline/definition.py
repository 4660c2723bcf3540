"""The set of functions that turns a generic pipeline into a concrete loader."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from refdata.domain.model.reference import DatasetType  # noqa: TC001
from refdata.domain.validation import ValidationService

from .context import LoaderContext  # noqa: TC001
from .staging import StagedEntry  # noqa: TC001

type Extractor[S] = Callable[[LoaderContext], Sequence[S]]
type StagingTransform[S, T] = Callable[[S], StagedEntry[T]]
type ChangeComparator[T] = Callable[[T, T], bool]
type AttributeMerger[T] = Callable[[T, T], T]


def attributes_differ[T](staged: T, current: T) -> bool:
    return staged != current


def take_staged[T](current: T, staged: T) -> T:
    _ = current
    return staged


@dataclass(frozen=True, slots=True, kw_only=True)
class Loader[S, T]:
    """A loader for one ``(dataset, code_system)`` pair.

    ``S`` is the raw source record, ``T`` the attribute value object stored on the
    bitemporal rows. ``extract`` may raise; anything it raises fails the execution.
    ``has_changed`` receives ``(staged, current)`` attributes and ``merge`` receives
    ``(current, staged)`` attributes and returns what the new version carries.
    """

    name: str
    dataset: DatasetType
    code_system: str
    extract: Extractor[S]
    to_staging: StagingTransform[S, T]
    validator: ValidationService[S] = field(default_factory=ValidationService)
    has_changed: ChangeComparator[T] = attributes_differ
    merge: AttributeMerger[T] = take_staged
