"""Approval hand-off: turn proposals into change requests and apply approved ones.

The workflow engine itself lives elsewhere. This module only records what was
proposed, what was decided, and writes the approved changes through the same
apply path the loader pipeline uses when auto-apply is on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from logging import getLogger
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID, uuid4

from refdata.domain.diff import DiffResult, UpdatePair
from refdata.domain.loader_pipeline.apply import plan_changes, write_change_set
from refdata.domain.loader_pipeline.context import SYSTEM_USER
from refdata.domain.loader_pipeline.definition import take_staged
from refdata.domain.loader_pipeline.proposal import ProposedChange
from refdata.domain.loader_pipeline.staging import StagingRecord, compute_source_hash
from refdata.domain.model.bitemporal import RecordKey
from refdata.domain.model.change_request import (
    ChangeRequest,
    ChangeRequestError,
    ChangeRequestNotFoundError,
    ChangeRequestStatus,
    InvalidChangeRequestTransitionError,
    OperationType,
)
from refdata.domain.model.reference import attributes_from_dict

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Mapping

    from refdata.domain.loader_pipeline.apply import ChangeSet
    from refdata.domain.loader_pipeline.definition import AttributeMerger
    from refdata.domain.loader_pipeline.proposal import ChangeProposal
    from refdata.domain.model.bitemporal import BitemporalRecord
    from refdata.domain.model.reference import DatasetType
    from refdata.domain.ports.persistence import (
        BitemporalRecordRepository,
        ChangeRequestRepository,
    )
    from refdata.domain.ports.unit_of_work import ReferenceDataUnitOfWork
    from refdata.domain.ports.workflow import PolicyEvaluator

log = getLogger(__name__)


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class StaleChangeRequestError(ChangeRequestError):
    """Production moved on since the change request was proposed."""


@dataclass(frozen=True, slots=True)
class PolicyDecision:
    allowed: bool
    reason: str | None = None
    requires_additional_approval: bool = False

    @classmethod
    def deny(cls, reason: str) -> PolicyDecision:
        """Fail closed: not allowed, and a human has to look at it."""

        return cls(allowed=False, reason=reason, requires_additional_approval=True)


@dataclass(frozen=True, slots=True, kw_only=True)
class PolicyInput:
    dataset: str
    change_type: str
    requester: str
    payload: Mapping[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset": self.dataset,
            "change_type": self.change_type,
            "requester": self.requester,
            "payload": dict(self.payload),
        }


def new_cr_number(now: datetime) -> str:
    return f"CR-{now:%Y%m%d}-{uuid4().hex[:8].upper()}"


def _find(repository: ChangeRequestRepository, reference: str) -> ChangeRequest:
    """Resolve either a change-request UUID or its ``CR-...`` number."""

    try:
        change_request_id = UUID(reference)
    except ValueError:
        change_request = repository.get_by_number(reference)
    else:
        change_request = repository.get(change_request_id)
    if change_request is None:
        raise ChangeRequestNotFoundError(reference)
    return change_request


@dataclass(slots=True)
class ChangeRequestService:
    """Record, decide and apply change requests.

    ``merges`` holds the attribute merge of each dataset's loader, so an approved
    update writes the same attributes an auto-applied one would. Datasets without
    an entry take the staged attributes as they are.
    """

    unit_of_work_factory: Callable[[], ReferenceDataUnitOfWork]
    clock: Clock = _utcnow
    merges: Mapping[DatasetType, AttributeMerger[Any]] = field(default_factory=dict)

    def submit(self, proposal: ChangeProposal) -> str:
        now = self.clock()
        change_request = ChangeRequest(
            cr_number=new_cr_number(now),
            title=proposal.title,
            dataset=proposal.dataset,
            operation=proposal.operation,
            requester=proposal.requester,
            proposed_changes=[change.to_dict() for change in proposal.changes],
            description=(
                f"Proposed by loader execution {proposal.execution_id}"
                if proposal.execution_id
                else None
            ),
            created_at=now,
        )
        with self.unit_of_work_factory() as uow:
            uow.repositories.change_requests.add(change_request)
            uow.commit()
        log.info(
            "Submitted %s with %s changes for %s",
            change_request.cr_number,
            len(proposal.changes),
            proposal.dataset,
        )
        return str(change_request.id)

    def get(self, reference: str) -> ChangeRequest:
        with self.unit_of_work_factory() as uow:
            return _find(uow.repositories.change_requests, reference)

    def decide(
        self, reference: str, decision: PolicyDecision, *, approver: str
    ) -> ChangeRequestStatus:
        """Record a policy outcome.

        Allowed without extra approval approves, not allowed rejects, and an allowed
        decision that needs more approval leaves the request PENDING.
        """

        with self.unit_of_work_factory() as uow:
            change_request = _find(uow.repositories.change_requests, reference)
            if decision.allowed and not decision.requires_additional_approval:
                change_request.approve(approver, now=self.clock())
            elif not decision.allowed:
                change_request.reject(decision.reason or "Denied by policy", reviewer=approver)
            else:
                log.info(
                    "%s needs additional approval: %s",
                    change_request.cr_number,
                    decision.reason,
                )
            status = change_request.status
            uow.commit()
        log.info("Decision for %s: %s", reference, status)
        return status

    def review(
        self, reference: str, evaluator: PolicyEvaluator, *, approver: str = "policy"
    ) -> ChangeRequestStatus:
        """Ask ``evaluator`` about the request, then :meth:`decide` on its answer."""

        change_request = self.get(reference)
        decision = evaluator.evaluate(policy_input_for(change_request))
        return self.decide(reference, decision, approver=approver)

    def approve(self, reference: str, *, approver: str) -> None:
        with self.unit_of_work_factory() as uow:
            change_request = _find(uow.repositories.change_requests, reference)
            change_request.approve(approver, now=self.clock())
            uow.commit()

    def reject(self, reference: str, reason: str, *, reviewer: str | None = None) -> None:
        with self.unit_of_work_factory() as uow:
            change_request = _find(uow.repositories.change_requests, reference)
            change_request.reject(reason, reviewer=reviewer)
            uow.commit()

    def cancel(self, reference: str) -> None:
        with self.unit_of_work_factory() as uow:
            change_request = _find(uow.repositories.change_requests, reference)
            change_request.cancel()
            uow.commit()

    def apply(
        self, reference: str, *, actor: str | None = None, publish_events: bool = True
    ) -> ChangeSet:
        """Write an APPROVED request's changes and mark it APPLIED, atomically.

        The stored proposal is replayed as a diff against current production; a
        proposal whose update or delete no longer matches the current version is
        refused with :class:`StaleChangeRequestError` and nothing is written.
        """

        now = self.clock()
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            change_request = _find(repositories.change_requests, reference)
            if change_request.status != ChangeRequestStatus.APPROVED:
                raise InvalidChangeRequestTransitionError(
                    f"Cannot apply change request {change_request.cr_number}: "
                    f"status is {change_request.status}"
                )
            changes = [ProposedChange.from_dict(item) for item in change_request.proposed_changes]
            diff = _replay(
                changes,
                dataset=change_request.dataset,
                records=repositories.records,
                execution_id=change_request.cr_number,
                now=now,
            )
            change_request_id = str(change_request.id)
            latest_versions: dict[RecordKey, int] = {}
            for staged in diff.additions:
                previous = repositories.records.latest_version(change_request.dataset, staged.key)
                if previous is not None:
                    latest_versions[staged.key] = previous.version
            change_set = plan_changes(
                diff,
                dataset=change_request.dataset,
                actor=actor or change_request.approved_by or SYSTEM_USER,
                on=now.date(),
                now=now,
                change_request_id=change_request_id,
                merge=self.merges.get(change_request.dataset, take_staged),
                latest_versions=latest_versions,
                with_events=publish_events,
            )
            events = write_change_set(
                change_set,
                repositories,
                dataset=change_request.dataset,
                publish_events=publish_events,
            )
            change_request.mark_applied(now=now)
            uow.commit()
        log.info(
            "Applied %s: added=%s, updated=%s, deleted=%s, events=%s",
            change_request.cr_number,
            change_set.added,
            change_set.updated,
            change_set.deleted,
            events,
        )
        return change_set

    def records_for(self, reference: str) -> list[BitemporalRecord[Any]]:
        """Rows written by the given change request, oldest first."""

        with self.unit_of_work_factory() as uow:
            change_request = _find(uow.repositories.change_requests, reference)
            return uow.repositories.records.by_change_request(str(change_request.id))


def policy_input_for(change_request: ChangeRequest) -> PolicyInput:
    return PolicyInput(
        dataset=str(change_request.dataset),
        change_type=str(change_request.operation),
        requester=change_request.requester,
        payload={
            "cr_number": change_request.cr_number,
            "title": change_request.title,
            "priority": change_request.priority,
            "change_count": len(change_request.proposed_changes),
            "changes": list(change_request.proposed_changes),
        },
    )


def _replay(
    changes: Iterable[ProposedChange],
    *,
    dataset: DatasetType,
    records: BitemporalRecordRepository,
    execution_id: str,
    now: datetime,
) -> DiffResult[StagingRecord[Any], BitemporalRecord[Any]]:
    changes = list(changes)
    current: dict[RecordKey, BitemporalRecord[Any]] = {}
    for code_system in {change.code_system for change in changes}:
        for record in records.list_current(dataset, code_system, on=now.date()):
            current[record.key] = record

    additions: list[StagingRecord[Any]] = []
    updates: list[UpdatePair[StagingRecord[Any], BitemporalRecord[Any]]] = []
    deletions: list[BitemporalRecord[Any]] = []
    for index, change in enumerate(changes):
        key = RecordKey(change.business_key, change.code_system)
        existing = current.get(key)
        if change.operation is OperationType.CREATE:
            if existing is not None:
                raise StaleChangeRequestError(f"{key} already exists (version {existing.version})")
            additions.append(_staged(change, dataset, index, execution_id, now))
            continue

        if existing is None:
            raise StaleChangeRequestError(f"{key} has no current version")
        if change.current_version is not None and existing.version != change.current_version:
            raise StaleChangeRequestError(
                f"{key} is at version {existing.version}, "
                f"change request expected {change.current_version}"
            )
        if change.operation is OperationType.UPDATE:
            staged = _staged(change, dataset, index, execution_id, now)
            updates.append(UpdatePair(staged=staged, current=existing))
        else:
            deletions.append(existing)

    return DiffResult(
        additions=tuple(additions), updates=tuple(updates), deletions=tuple(deletions)
    )


def _staged(
    change: ProposedChange,
    dataset: DatasetType,
    index: int,
    execution_id: str,
    now: datetime,
) -> StagingRecord[Any]:
    if change.attributes is None:
        raise ChangeRequestError(
            f"{change.operation} of {change.business_key} carries no attributes"
        )
    attributes = attributes_from_dict(dataset, change.attributes)
    return StagingRecord(
        execution_id=execution_id,
        dataset=dataset,
        business_key=change.business_key,
        code_system=change.code_system,
        attributes=attributes,
        source_index=index,
        loaded_at=now,
        source_hash=compute_source_hash(attributes),
        valid_from=change.valid_from,
        valid_to=change.valid_to,
    )
