"""Execution-scoped staging rows."""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from refdata.domain.model.bitemporal import RecordKey
from refdata.domain.model.reference import attributes_to_dict

if TYPE_CHECKING:
    from datetime import date, datetime

    from refdata.domain.model.reference import DatasetType


class ValidationStatus(StrEnum):
    PENDING = "PENDING"
    VALID = "VALID"
    INVALID = "INVALID"
    WARNING = "WARNING"


class ProcessingStatus(StrEnum):
    PENDING = "PENDING"
    PROCESSED = "PROCESSED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"


@dataclass(frozen=True, slots=True, kw_only=True)
class StagedEntry[T]:
    """What a loader produces for one source record before load metadata is attached."""

    business_key: str
    attributes: T
    valid_from: date | None = None
    valid_to: date | None = None


@dataclass(frozen=True, slots=True, kw_only=True)
class StagingRecord[T]:
    execution_id: str
    dataset: DatasetType
    business_key: str
    code_system: str
    attributes: T
    source_index: int
    loaded_at: datetime
    source_hash: str
    valid_from: date | None = None
    valid_to: date | None = None
    validation_status: ValidationStatus = ValidationStatus.VALID
    validation_messages: tuple[str, ...] = field(default_factory=tuple)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING

    @property
    def key(self) -> RecordKey:
        return RecordKey(self.business_key, self.code_system)


def compute_source_hash(attributes: object) -> str:
    """Stable SHA-256 over the canonical JSON form of ``attributes``."""

    payload = json.dumps(
        attributes_to_dict(attributes), sort_keys=True, default=str, separators=(",", ":")
    )
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
