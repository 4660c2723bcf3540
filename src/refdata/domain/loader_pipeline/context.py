"""Configuration and per-execution context for loader runs."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from datetime import datetime

DEFAULT_BATCH_SIZE = 1000
SYSTEM_USER = "system"


class LoadType(StrEnum):
    FULL = "FULL"
    INCREMENTAL = "INCREMENTAL"


@dataclass(frozen=True, slots=True)
class LoaderConfig:
    batch_size: int = DEFAULT_BATCH_SIZE
    auto_apply_changes: bool = False
    fail_on_validation_error: bool = False
    publish_events: bool = True
    incremental_mode: bool = False
    source: str | None = None

    def __post_init__(self) -> None:
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self.batch_size}")


@dataclass(slots=True, kw_only=True)
class LoaderContext:
    execution_id: str = field(default_factory=lambda: str(uuid4()))
    user_id: str = SYSTEM_USER
    change_request_id: str | None = None
    load_type: LoadType = LoadType.FULL
    last_run_time: datetime | None = None
    dry_run: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_incremental(self) -> bool:
        return self.load_type is LoadType.INCREMENTAL
