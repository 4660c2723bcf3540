from __future__ import annotations

from datetime import UTC, date, datetime

from refdata.domain.diff import DiffResult, UpdatePair
from refdata.domain.loader_pipeline import (
    ChangeProposal,
    ProposedChange,
    StagingRecord,
    compute_source_hash,
)
from refdata.domain.model import Country, DatasetType, OperationType
from tests.helpers.reference_data import COUNTRY_CODE_SYSTEM, make_country_record


def _staged(code: str, name: str) -> StagingRecord[Country]:
    attributes = Country(country_name=name, iso2_code=code)
    return StagingRecord(
        execution_id="exec-1",
        dataset=DatasetType.COUNTRY,
        business_key=code,
        code_system=COUNTRY_CODE_SYSTEM,
        attributes=attributes,
        source_index=0,
        loaded_at=datetime(2024, 6, 1, tzinfo=UTC),
        source_hash=compute_source_hash(attributes),
        valid_from=date(2024, 7, 1),
    )


def _proposal(diff: DiffResult) -> ChangeProposal:
    return ChangeProposal.from_diff(
        diff,
        dataset=DatasetType.COUNTRY,
        code_system=COUNTRY_CODE_SYSTEM,
        requester="loader",
        title="countries",
        execution_id="exec-1",
    )


def test_from_diff_lists_every_change() -> None:
    us = make_country_record(version=3)
    yu = make_country_record("YU", "Yugoslavia")
    diff = DiffResult(
        additions=(_staged("FR", "France"),),
        updates=(UpdatePair(staged=_staged("US", "USA"), current=us),),
        deletions=(yu,),
    )

    proposal = _proposal(diff)

    create, update, delete = proposal.changes
    assert create.operation is OperationType.CREATE
    assert create.attributes is not None
    assert create.attributes["country_name"] == "France"
    assert create.valid_from == date(2024, 7, 1)
    assert update.operation is OperationType.UPDATE
    assert update.current_version == 3
    assert delete.operation is OperationType.DELETE
    assert delete.attributes is None
    assert delete.business_key == "YU"
    assert proposal.operation is OperationType.UPDATE


def test_homogeneous_proposal_reports_its_operation() -> None:
    proposal = _proposal(DiffResult(additions=(_staged("FR", "France"),)))

    assert proposal.operation is OperationType.CREATE


def test_proposed_change_survives_serialisation() -> None:
    change = ProposedChange(
        operation=OperationType.CREATE,
        business_key="FR",
        code_system=COUNTRY_CODE_SYSTEM,
        attributes={"country_name": "France"},
        valid_from=date(2024, 7, 1),
    )

    data = change.to_dict()

    assert data["operation"] == "CREATE"
    assert data["valid_from"] == "2024-07-01"
    assert data["valid_to"] is None
    assert ProposedChange.from_dict(data) == change
