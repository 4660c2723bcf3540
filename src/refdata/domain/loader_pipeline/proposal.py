"""Serialisable change proposals handed to the approval workflow."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any

from refdata.domain.model.change_request import OperationType
from refdata.domain.model.reference import DatasetType, attributes_to_dict

if TYPE_CHECKING:
    from collections.abc import Mapping

    from refdata.domain.diff import DiffResult
    from refdata.domain.model.bitemporal import BitemporalRecord

    from .staging import StagingRecord


@dataclass(frozen=True, slots=True, kw_only=True)
class ProposedChange:
    operation: OperationType
    business_key: str
    code_system: str
    attributes: Mapping[str, Any] | None = None
    current_version: int | None = None
    valid_from: date | None = None
    valid_to: date | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "operation": str(self.operation),
            "business_key": self.business_key,
            "code_system": self.code_system,
            "attributes": dict(self.attributes) if self.attributes is not None else None,
            "current_version": self.current_version,
            "valid_from": self.valid_from.isoformat() if self.valid_from else None,
            "valid_to": self.valid_to.isoformat() if self.valid_to else None,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProposedChange:
        valid_from = data.get("valid_from")
        valid_to = data.get("valid_to")
        return cls(
            operation=OperationType(data["operation"]),
            business_key=data["business_key"],
            code_system=data["code_system"],
            attributes=data.get("attributes"),
            current_version=data.get("current_version"),
            valid_from=date.fromisoformat(valid_from) if valid_from else None,
            valid_to=date.fromisoformat(valid_to) if valid_to else None,
        )


@dataclass(frozen=True, slots=True, kw_only=True)
class ChangeProposal:
    dataset: DatasetType
    code_system: str
    requester: str
    title: str
    changes: tuple[ProposedChange, ...] = field(default_factory=tuple)
    execution_id: str | None = None

    @property
    def operation(self) -> OperationType:
        """The single operation of a homogeneous proposal, UPDATE for mixed ones."""

        operations = {change.operation for change in self.changes}
        if len(operations) == 1:
            return operations.pop()
        return OperationType.UPDATE

    @classmethod
    def from_diff[T](
        cls,
        diff: DiffResult[StagingRecord[T], BitemporalRecord[T]],
        *,
        dataset: DatasetType,
        code_system: str,
        requester: str,
        title: str,
        execution_id: str | None = None,
    ) -> ChangeProposal:
        changes: list[ProposedChange] = [
            ProposedChange(
                operation=OperationType.CREATE,
                business_key=staged.business_key,
                code_system=staged.code_system,
                attributes=attributes_to_dict(staged.attributes),
                valid_from=staged.valid_from,
                valid_to=staged.valid_to,
            )
            for staged in diff.additions
        ]
        changes.extend(
            ProposedChange(
                operation=OperationType.UPDATE,
                business_key=pair.staged.business_key,
                code_system=pair.staged.code_system,
                attributes=attributes_to_dict(pair.staged.attributes),
                current_version=pair.current.version,
            )
            for pair in diff.updates
        )
        changes.extend(
            ProposedChange(
                operation=OperationType.DELETE,
                business_key=current.business_key,
                code_system=current.code_system,
                current_version=current.version,
            )
            for current in diff.deletions
        )
        return cls(
            dataset=dataset,
            code_system=code_system,
            requester=requester,
            title=title,
            changes=tuple(changes),
            execution_id=execution_id,
        )
