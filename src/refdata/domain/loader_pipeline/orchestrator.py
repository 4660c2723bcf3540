"""State machine driving one loader execution end to end."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from itertools import batched
from logging import getLogger
from typing import TYPE_CHECKING, Protocol

from refdata.domain.diff import DiffDetector, DiffResult
from refdata.domain.model.bitemporal import BitemporalRecord, RecordKey

from .apply import plan_changes, write_change_set
from .context import LoaderConfig, LoaderContext, LoadType
from .proposal import ChangeProposal
from .result import ExecutionStep, LoaderResult, LoaderStatus
from .staging import ProcessingStatus, StagingRecord, ValidationStatus, compute_source_hash

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence, Set

    from refdata.domain.ports.persistence import BitemporalRecordRepository
    from refdata.domain.ports.unit_of_work import ReferenceDataUnitOfWork
    from refdata.domain.ports.workflow import ChangeRequestSubmitter
    from refdata.domain.validation import ValidationResult

    from .definition import Loader

log = getLogger(__name__)


class Clock(Protocol):
    def __call__(self) -> datetime: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PipelineError(RuntimeError):
    """Base class for failures that end a loader execution."""


class ExtractionError(PipelineError):
    """The source could not be read; nothing downstream runs."""


class ValidationFailedError(PipelineError):
    """Validation found errors and the loader is configured to stop on them."""


class MissingCollaboratorError(PipelineError):
    """A step needs a collaborator the pipeline was built without."""


@dataclass(slots=True)
class LoaderPipeline[S, T]:
    """Run ``extract -> validate -> stage -> diff -> apply|propose -> publish``.

    Every execution ends with a persisted :class:`LoaderResult`, whether it succeeded
    or not; exceptions raised by any step are recorded on the result instead of
    propagating to the caller.
    """

    loader: Loader[S, T]
    unit_of_work_factory: Callable[[], ReferenceDataUnitOfWork]
    config: LoaderConfig = field(default_factory=LoaderConfig)
    change_requests: ChangeRequestSubmitter | None = None
    clock: Clock = _utcnow

    def execute(self, context: LoaderContext | None = None) -> LoaderResult:
        ctx = context or self._default_context()
        result = LoaderResult(
            execution_id=ctx.execution_id,
            loader_name=self.loader.name,
            dataset=self.loader.dataset,
            started_at=self.clock(),
            load_type=ctx.load_type,
            dry_run=ctx.dry_run,
        )
        log.info(
            "Starting loader %s: execution=%s, load_type=%s, dry_run=%s",
            self.loader.name,
            ctx.execution_id,
            ctx.load_type,
            ctx.dry_run,
        )
        try:
            self._run(ctx, result)
        except Exception as exc:  # noqa: BLE001
            result.fail(str(exc) or exc.__class__.__name__)
            log.exception(
                "Loader %s failed during %s (execution=%s)",
                self.loader.name,
                result.failed_step,
                ctx.execution_id,
            )
        finally:
            result.finished_at = self.clock()
            self._save_result(result)

        log.info("Finished loader: %s", result.summary())
        return result

    def execute_incremental(self, context: LoaderContext | None = None) -> LoaderResult:
        """Run in incremental mode; the last successful run time is looked up if unset."""

        ctx = context or LoaderContext()
        ctx.load_type = LoadType.INCREMENTAL
        return self.execute(ctx)

    def _default_context(self) -> LoaderContext:
        load_type = LoadType.INCREMENTAL if self.config.incremental_mode else LoadType.FULL
        return LoaderContext(load_type=load_type)

    def _run(self, ctx: LoaderContext, result: LoaderResult) -> None:
        records = self._extract(ctx, result)
        validation = self._validate(records, result)
        staged, withheld = self._transform_to_staging(records, validation, ctx, result)
        staged = self._load_staging(staged, ctx, result)
        diff = self._diff(staged, ctx, result, withheld=withheld)

        if ctx.dry_run:
            log.info("Dry run: leaving production untouched (%s changes)", diff.total_changes)
        elif not diff.has_changes():
            log.info("No changes detected for %s", self.loader.name)
        elif self.config.auto_apply_changes:
            self._apply(diff, ctx, result)
        else:
            self._propose(diff, ctx, result)

        result.step = ExecutionStep.DONE
        result.status = (
            LoaderStatus.PARTIAL_SUCCESS if result.records_skipped else LoaderStatus.SUCCESS
        )

    def _extract(self, ctx: LoaderContext, result: LoaderResult) -> list[S]:
        result.step = ExecutionStep.EXTRACT
        if ctx.is_incremental and ctx.last_run_time is None:
            with self.unit_of_work_factory() as uow:
                ctx.last_run_time = uow.repositories.loader_runs.last_successful_run(
                    self.loader.name
                )
            log.info("Incremental run since %s", ctx.last_run_time)
        try:
            records = list(self.loader.extract(ctx))
        except Exception as exc:
            raise ExtractionError(f"Extraction failed: {exc}") from exc
        result.records_read = len(records)
        log.info("Extracted %s records for %s", len(records), self.loader.name)
        return records

    def _validate(self, records: Sequence[S], result: LoaderResult) -> ValidationResult:
        result.step = ExecutionStep.VALIDATE
        validation = self.loader.validator.validate(records)
        result.validation_issues = list(validation.issues)
        if not validation.is_valid:
            log.warning(
                "Validation found %s errors and %s warnings in %s records",
                validation.error_count,
                validation.warning_count,
                len(records),
            )
            if self.config.fail_on_validation_error:
                raise ValidationFailedError(
                    f"Validation failed with {validation.error_count} errors"
                )
        elif validation.has_warnings:
            log.info("Validation passed with %s warnings", validation.warning_count)
        return validation

    def _transform_to_staging(
        self,
        records: Sequence[S],
        validation: ValidationResult,
        ctx: LoaderContext,
        result: LoaderResult,
    ) -> tuple[list[StagingRecord[T]], set[RecordKey]]:
        """Stage every valid record; also return the keys of the rejected ones."""

        result.step = ExecutionStep.TRANSFORM_TO_STAGING
        now = self.clock()
        staged: list[StagingRecord[T]] = []
        withheld: set[RecordKey] = set()
        for index, record in enumerate(records):
            if not validation.is_record_valid(index):
                result.records_skipped += 1
                key = self._rejected_key(record)
                if key is not None:
                    withheld.add(key)
                continue
            entry = self.loader.to_staging(record)
            messages = tuple(str(issue) for issue in validation.issues_for(index))
            staged.append(
                StagingRecord(
                    execution_id=ctx.execution_id,
                    dataset=self.loader.dataset,
                    business_key=entry.business_key,
                    code_system=self.loader.code_system,
                    attributes=entry.attributes,
                    source_index=index,
                    loaded_at=now,
                    source_hash=compute_source_hash(entry.attributes),
                    valid_from=entry.valid_from,
                    valid_to=entry.valid_to,
                    validation_status=(
                        ValidationStatus.WARNING if messages else ValidationStatus.VALID
                    ),
                    validation_messages=messages,
                )
            )
        return staged, withheld

    def _rejected_key(self, record: S) -> RecordKey | None:
        key_of = self.loader.validator.key
        if key_of is None:
            return None
        business_key = key_of(record)
        if business_key is None or business_key == "":
            return None
        return RecordKey(str(business_key), self.loader.code_system)

    def _load_staging(
        self,
        staged: Sequence[StagingRecord[T]],
        ctx: LoaderContext,
        result: LoaderResult,
    ) -> list[StagingRecord[T]]:
        result.step = ExecutionStep.LOAD_STAGING
        loaded: list[StagingRecord[T]] = []
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.staging
            if not ctx.is_incremental:
                removed = repository.truncate(self.loader.dataset)
                uow.commit()
                log.debug("Truncated %s staging rows for %s", removed, self.loader.dataset)
            for batch in batched(staged, self.config.batch_size):
                batch_time = self.clock()
                tagged = [
                    replace(record, execution_id=ctx.execution_id, loaded_at=batch_time)
                    for record in batch
                ]
                repository.add_batch(tagged)
                uow.commit()
                loaded.extend(tagged)
        result.records_staged = len(loaded)
        return loaded

    def _diff(
        self,
        staged: Sequence[StagingRecord[T]],
        ctx: LoaderContext,
        result: LoaderResult,
        *,
        withheld: Set[RecordKey] = frozenset(),
    ) -> DiffResult[StagingRecord[T], BitemporalRecord[T]]:
        result.step = ExecutionStep.DIFF
        with self.unit_of_work_factory() as uow:
            production: list[BitemporalRecord[T]] = uow.repositories.records.list_current(
                self.loader.dataset, self.loader.code_system, on=self.clock().date()
            )
        if ctx.is_incremental:
            # an increment only speaks for the keys it contains
            staged_keys = {record.key for record in staged}
            production = [record for record in production if record.key in staged_keys]
        if withheld:
            # keys with rejected source rows are neither compared nor deleted
            kept = [record for record in production if record.key in withheld]
            if kept:
                log.warning(
                    "Leaving %s production records untouched: their source rows failed "
                    "validation (%s)",
                    len(kept),
                    ", ".join(sorted(record.business_key for record in kept)),
                )
            production = [record for record in production if record.key not in withheld]

        detector: DiffDetector[StagingRecord[T], BitemporalRecord[T]] = DiffDetector(
            staging_key=lambda record: record.key,
            production_key=lambda record: record.key,
            has_changed=lambda record, current: self.loader.has_changed(
                record.attributes, current.attributes
            ),
        )
        diff = detector.detect(staged, production)
        summary = diff.summary()
        result.records_added = summary.additions
        result.records_updated = summary.updates
        result.records_deleted = summary.deletions
        result.records_unchanged = summary.unchanged
        log.info(
            "Diff for %s: additions=%s, updates=%s, deletions=%s, unchanged=%s",
            self.loader.name,
            summary.additions,
            summary.updates,
            summary.deletions,
            summary.unchanged,
        )
        return diff

    def _apply(
        self,
        diff: DiffResult[StagingRecord[T], BitemporalRecord[T]],
        ctx: LoaderContext,
        result: LoaderResult,
    ) -> None:
        result.step = ExecutionStep.AUTO_APPLY
        now = self.clock()
        with self.unit_of_work_factory() as uow:
            repositories = uow.repositories
            latest_versions = self._latest_versions(diff, repositories.records)
            change_set = plan_changes(
                diff,
                dataset=self.loader.dataset,
                actor=ctx.user_id,
                on=now.date(),
                now=now,
                change_request_id=ctx.change_request_id,
                merge=self.loader.merge,
                latest_versions=latest_versions,
                with_events=self.config.publish_events,
            )
            if self.config.publish_events:
                result.step = ExecutionStep.PUBLISH_EVENTS
            result.events_written = write_change_set(
                change_set,
                repositories,
                dataset=self.loader.dataset,
                publish_events=self.config.publish_events,
            )
            repositories.staging.set_processing_status(
                ctx.execution_id, ProcessingStatus.PROCESSED
            )
            uow.commit()
        result.changes_applied = True
        log.info(
            "Applied %s changes for %s (%s events queued)",
            diff.total_changes,
            self.loader.name,
            result.events_written,
        )

    def _latest_versions(
        self,
        diff: DiffResult[StagingRecord[T], BitemporalRecord[T]],
        records: BitemporalRecordRepository,
    ) -> dict[RecordKey, int]:
        latest: dict[RecordKey, int] = {}
        for staged in diff.additions:
            previous = records.latest_version(self.loader.dataset, staged.key)
            if previous is not None:
                latest[staged.key] = previous.version
        return latest

    def _propose(
        self,
        diff: DiffResult[StagingRecord[T], BitemporalRecord[T]],
        ctx: LoaderContext,
        result: LoaderResult,
    ) -> None:
        result.step = ExecutionStep.PROPOSE_CHANGE_REQUEST
        if self.change_requests is None:
            raise MissingCollaboratorError(
                "Auto-apply is disabled but no change-request collaborator is configured"
            )
        proposal = ChangeProposal.from_diff(
            diff,
            dataset=self.loader.dataset,
            code_system=self.loader.code_system,
            requester=ctx.user_id,
            title=f"{self.loader.name}: {diff.total_changes} changes",
            execution_id=ctx.execution_id,
        )
        result.change_request_id = self.change_requests.submit(proposal)
        log.info(
            "Submitted change request %s for %s changes",
            result.change_request_id,
            diff.total_changes,
        )

    def _save_result(self, result: LoaderResult) -> None:
        try:
            with self.unit_of_work_factory() as uow:
                uow.repositories.loader_runs.add(result)
                uow.commit()
        except Exception:  # noqa: BLE001
            log.exception("Could not persist loader result for %s", result.execution_id)
