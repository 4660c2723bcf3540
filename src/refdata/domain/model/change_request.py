"""Change requests: proposed reference-data changes awaiting approval."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import UUID, uuid4

from .reference import DatasetType


class OperationType(StrEnum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    DEPRECATE = "DEPRECATE"


class ChangeRequestStatus(StrEnum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    APPLIED = "APPLIED"
    CANCELLED = "CANCELLED"


class ChangeRequestError(RuntimeError):
    """Base class for change-request failures."""


class ChangeRequestNotFoundError(ChangeRequestError):
    def __init__(self, change_request_id: str) -> None:
        super().__init__(f"Change request not found: {change_request_id}")
        self.change_request_id = change_request_id


class InvalidChangeRequestTransitionError(ChangeRequestError):
    """Raised when a change request is moved out of a state that does not allow it."""


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(eq=False, kw_only=True)
class ChangeRequest:
    cr_number: str
    title: str
    dataset: DatasetType
    operation: OperationType
    requester: str
    proposed_changes: list[dict[str, Any]] = field(default_factory=list)
    description: str | None = None
    priority: str = "NORMAL"
    status: ChangeRequestStatus = ChangeRequestStatus.PENDING
    id: UUID = field(default_factory=uuid4)
    created_at: datetime = field(default_factory=_utcnow)
    approved_by: str | None = None
    approved_at: datetime | None = None
    rejection_reason: str | None = None
    applied_at: datetime | None = None

    def approve(self, approver: str, *, now: datetime | None = None) -> None:
        self._require(ChangeRequestStatus.PENDING, "approve")
        self.status = ChangeRequestStatus.APPROVED
        self.approved_by = approver
        self.approved_at = now or _utcnow()

    def reject(self, reason: str, *, reviewer: str | None = None) -> None:
        self._require(ChangeRequestStatus.PENDING, "reject")
        self.status = ChangeRequestStatus.REJECTED
        self.rejection_reason = reason
        self.approved_by = reviewer

    def cancel(self) -> None:
        self._require(ChangeRequestStatus.PENDING, "cancel")
        self.status = ChangeRequestStatus.CANCELLED

    def mark_applied(self, *, now: datetime | None = None) -> None:
        self._require(ChangeRequestStatus.APPROVED, "apply")
        self.status = ChangeRequestStatus.APPLIED
        self.applied_at = now or _utcnow()

    def _require(self, expected: ChangeRequestStatus, action: str) -> None:
        if self.status != expected:
            raise InvalidChangeRequestTransitionError(
                f"Cannot {action} change request {self.cr_number}: status is {self.status}"
            )
