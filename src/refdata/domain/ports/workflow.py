"""Collaborators owned by the approval workflow."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from refdata.domain.change_requests import PolicyDecision, PolicyInput
    from refdata.domain.loader_pipeline.proposal import ChangeProposal


@runtime_checkable
class ChangeRequestSubmitter(Protocol):
    """Receives a proposed change set and returns the change-request identifier."""

    def submit(self, proposal: ChangeProposal) -> str: ...


@runtime_checkable
class PolicyEvaluator(Protocol):
    def evaluate(self, policy_input: PolicyInput) -> PolicyDecision: ...
