"""Execution summaries produced by every loader run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

from .context import LoadType

if TYPE_CHECKING:
    from datetime import datetime, timedelta

    from refdata.domain.model.reference import DatasetType
    from refdata.domain.validation import ValidationIssue


class LoaderStatus(StrEnum):
    IN_PROGRESS = "IN_PROGRESS"
    SUCCESS = "SUCCESS"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    FAILED = "FAILED"


class ExecutionStep(StrEnum):
    EXTRACT = "EXTRACT"
    VALIDATE = "VALIDATE"
    TRANSFORM_TO_STAGING = "TRANSFORM_TO_STAGING"
    LOAD_STAGING = "LOAD_STAGING"
    DIFF = "DIFF"
    AUTO_APPLY = "AUTO_APPLY"
    PROPOSE_CHANGE_REQUEST = "PROPOSE_CHANGE_REQUEST"
    PUBLISH_EVENTS = "PUBLISH_EVENTS"
    DONE = "DONE"
    FAILED = "FAILED"


@dataclass(slots=True, kw_only=True)
class LoaderResult:
    execution_id: str
    loader_name: str
    dataset: DatasetType
    started_at: datetime
    load_type: LoadType = LoadType.FULL
    status: LoaderStatus = LoaderStatus.IN_PROGRESS
    step: ExecutionStep = ExecutionStep.EXTRACT
    failed_step: ExecutionStep | None = None
    finished_at: datetime | None = None
    records_read: int = 0
    records_staged: int = 0
    records_added: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    records_unchanged: int = 0
    records_skipped: int = 0
    events_written: int = 0
    validation_issues: list[ValidationIssue] = field(default_factory=list)
    error_message: str | None = None
    change_request_id: str | None = None
    changes_applied: bool = False
    dry_run: bool = False

    @property
    def duration(self) -> timedelta | None:
        if self.finished_at is None:
            return None
        return self.finished_at - self.started_at

    @property
    def total_changes(self) -> int:
        return self.records_added + self.records_updated + self.records_deleted

    @property
    def has_errors(self) -> bool:
        return self.error_message is not None or self.status is LoaderStatus.FAILED

    @property
    def success_rate(self) -> float:
        if self.records_read == 0:
            return 0.0
        return self.records_staged / self.records_read * 100

    @property
    def succeeded(self) -> bool:
        return self.status in {LoaderStatus.SUCCESS, LoaderStatus.PARTIAL_SUCCESS}

    def fail(self, message: str) -> None:
        self.failed_step = self.step
        self.step = ExecutionStep.FAILED
        self.status = LoaderStatus.FAILED
        self.error_message = message

    def summary(self) -> str:
        text = (
            f"{self.loader_name} [{self.status}] read={self.records_read} "
            f"staged={self.records_staged} added={self.records_added} "
            f"updated={self.records_updated} deleted={self.records_deleted} "
            f"skipped={self.records_skipped} events={self.events_written} "
            f"success_rate={self.success_rate:.1f}%"
        )
        if self.change_request_id:
            text += f" change_request={self.change_request_id}"
        if self.error_message:
            text += f" error={self.error_message!r}"
        return text
