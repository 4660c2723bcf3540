"""Generic loader pipeline: extract, validate, stage, diff, apply or propose, publish."""

from __future__ import annotations

from .apply import ChangeSet, plan_changes, write_change_set
from .context import LoadType, LoaderConfig, LoaderContext
from .definition import Loader, attributes_differ, take_staged
from .orchestrator import (
    ExtractionError,
    LoaderPipeline,
    MissingCollaboratorError,
    PipelineError,
    ValidationFailedError,
)
from .proposal import ChangeProposal, ProposedChange
from .result import ExecutionStep, LoaderResult, LoaderStatus
from .staging import (
    ProcessingStatus,
    StagedEntry,
    StagingRecord,
    ValidationStatus,
    compute_source_hash,
)

__all__ = [
    "ChangeProposal",
    "ChangeSet",
    "ExecutionStep",
    "ExtractionError",
    "LoadType",
    "Loader",
    "LoaderConfig",
    "LoaderContext",
    "LoaderPipeline",
    "LoaderResult",
    "LoaderStatus",
    "MissingCollaboratorError",
    "PipelineError",
    "ProcessingStatus",
    "ProposedChange",
    "StagedEntry",
    "StagingRecord",
    "ValidationFailedError",
    "ValidationStatus",
    "attributes_differ",
    "compute_source_hash",
    "plan_changes",
    "take_staged",
    "write_change_set",
]
