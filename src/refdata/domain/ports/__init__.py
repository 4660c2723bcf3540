"""Ports (protocols) the domain depends on."""

from __future__ import annotations

from .messaging import MessageBus, MessageDeliveryError
from .persistence import (
    BitemporalRecordRepository,
    ChangeRequestRepository,
    LoaderRunRepository,
    OutboxRepository,
    Repository,
    StagingRepository,
)
from .unit_of_work import (
    OutboxRepositories,
    OutboxUnitOfWork,
    ReferenceDataRepositories,
    ReferenceDataUnitOfWork,
    RepositoryCollection,
    UnitOfWork,
)
from .workflow import ChangeRequestSubmitter, PolicyEvaluator

__all__ = [
    "BitemporalRecordRepository",
    "ChangeRequestRepository",
    "ChangeRequestSubmitter",
    "LoaderRunRepository",
    "MessageBus",
    "MessageDeliveryError",
    "OutboxRepositories",
    "OutboxRepository",
    "OutboxUnitOfWork",
    "PolicyEvaluator",
    "ReferenceDataRepositories",
    "ReferenceDataUnitOfWork",
    "Repository",
    "RepositoryCollection",
    "StagingRepository",
    "UnitOfWork",
]
