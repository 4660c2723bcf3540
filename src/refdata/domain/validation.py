"""Structural and business-rule validation for freshly extracted source records."""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from collections.abc import Callable, Hashable, Mapping
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence


class Severity(StrEnum):
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


@dataclass(frozen=True, slots=True)
class ValidationIssue:
    record_index: int
    field: str | None
    message: str
    severity: Severity = Severity.ERROR

    def __str__(self) -> str:
        location = f"Record {self.record_index}"
        if self.field:
            location += f", Field '{self.field}'"
        return f"[{self.severity}] {location}: {self.message}"


@dataclass(frozen=True, slots=True)
class RuleResult:
    passed: bool
    message: str | None = None
    severity: Severity = Severity.ERROR
    field: str | None = None

    @classmethod
    def valid(cls) -> RuleResult:
        return cls(passed=True)

    @classmethod
    def invalid(cls, message: str, *, field: str | None = None) -> RuleResult:
        return cls(passed=False, message=message, severity=Severity.ERROR, field=field)

    @classmethod
    def warning(cls, message: str, *, field: str | None = None) -> RuleResult:
        return cls(passed=False, message=message, severity=Severity.WARNING, field=field)


class ValidationRule[S](Protocol):
    """A named business rule evaluated against one source record."""

    @property
    def name(self) -> str: ...

    def validate(self, record: S) -> RuleResult: ...


@dataclass(frozen=True, slots=True)
class FunctionRule[S]:
    """Adapt a plain callable into a :class:`ValidationRule`."""

    name: str
    check: Callable[[S], RuleResult]

    def validate(self, record: S) -> RuleResult:
        return self.check(record)


_MISSING = object()


def read_field(record: object, name: str) -> object:
    """Read ``name`` from a mapping key or an attribute; missing fields read as ``None``."""

    if isinstance(record, Mapping):
        return record.get(name)  # type: ignore[union-attr]
    value = getattr(record, name, _MISSING)
    return None if value is _MISSING else value


@dataclass(frozen=True, slots=True)
class FieldConstraint:
    """Declarative structural checks for a single field."""

    field: str
    required: bool = False
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    min_value: float | None = None
    max_value: float | None = None
    severity: Severity = Severity.ERROR

    def check(self, record: object) -> list[str]:
        value = read_field(record, self.field)
        if value is None or (isinstance(value, str) and not value.strip()):
            return ["is required"] if self.required else []

        problems: list[str] = []
        if isinstance(value, str):
            if self.min_length is not None and len(value) < self.min_length:
                problems.append(f"must be at least {self.min_length} characters")
            if self.max_length is not None and len(value) > self.max_length:
                problems.append(f"must be at most {self.max_length} characters")
            if self.pattern is not None and re.fullmatch(self.pattern, value) is None:
                problems.append(f"must match pattern {self.pattern}")
        if self.min_value is not None or self.max_value is not None:
            problems.extend(self._check_range(value))
        return problems

    def _check_range(self, value: object) -> list[str]:
        try:
            number = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return ["must be numeric"]
        if self.min_value is not None and number < self.min_value:
            return [f"must be >= {self.min_value}"]
        if self.max_value is not None and number > self.max_value:
            return [f"must be <= {self.max_value}"]
        return []


@dataclass(frozen=True, slots=True)
class ValidationResult:
    record_count: int
    issues: tuple[ValidationIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not any(issue.severity is Severity.ERROR for issue in self.issues)

    @property
    def has_warnings(self) -> bool:
        return any(issue.severity is Severity.WARNING for issue in self.issues)

    @property
    def errors(self) -> list[ValidationIssue]:
        return self.by_severity().get(Severity.ERROR, [])

    @property
    def warnings(self) -> list[ValidationIssue]:
        return self.by_severity().get(Severity.WARNING, [])

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def warning_count(self) -> int:
        return len(self.warnings)

    @property
    def invalid_indexes(self) -> frozenset[int]:
        return frozenset(issue.record_index for issue in self.errors)

    @property
    def valid_count(self) -> int:
        return self.record_count - len(self.invalid_indexes)

    def by_severity(self) -> dict[Severity, list[ValidationIssue]]:
        grouped: dict[Severity, list[ValidationIssue]] = defaultdict(list)
        for issue in self.issues:
            grouped[issue.severity].append(issue)
        return dict(grouped)

    def is_record_valid(self, index: int) -> bool:
        return index not in self.invalid_indexes

    def issues_for(self, index: int) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.record_index == index]


@dataclass(frozen=True, slots=True)
class ValidationService[S]:
    """Run structural constraints and business rules over a batch of source records.

    ``key`` is optional; when given, every record whose key occurs more than once in
    the batch gets an ERROR so duplicates never reach the diff step.
    """

    constraints: Sequence[FieldConstraint] = ()
    rules: Sequence[ValidationRule[S]] = ()
    key: Callable[[S], Hashable] | None = None
    key_field: str = "key"

    def validate(self, records: Sequence[S]) -> ValidationResult:
        issues: list[ValidationIssue] = []
        for index, record in enumerate(records):
            issues.extend(self.validate_record(record, index))
        issues.extend(self._duplicate_key_issues(records))
        return ValidationResult(record_count=len(records), issues=tuple(issues))

    def validate_record(self, record: S, index: int) -> list[ValidationIssue]:
        issues = [
            ValidationIssue(index, constraint.field, problem, constraint.severity)
            for constraint in self.constraints
            for problem in constraint.check(record)
        ]
        for rule in self.rules:
            outcome = rule.validate(record)
            if outcome.passed:
                continue
            issues.append(
                ValidationIssue(
                    index,
                    outcome.field,
                    f"{rule.name}: {outcome.message or 'rule failed'}",
                    outcome.severity,
                )
            )
        return issues

    def _duplicate_key_issues(self, records: Sequence[S]) -> list[ValidationIssue]:
        if self.key is None:
            return []
        keys = [self.key(record) for record in records]
        counts = Counter(keys)
        return [
            ValidationIssue(index, self.key_field, f"Duplicate key {key!r} in batch")
            for index, key in enumerate(keys)
            if counts[key] > 1
        ]
