"""Domain model for bitemporal reference data."""

from __future__ import annotations

from .bitemporal import (
    BitemporalRecord,
    HasValidityWindow,
    InvalidValidityWindowError,
    RecordKey,
    create_correction,
    create_new_version,
    current_versions,
    end_validity,
    group_by_change_request,
    group_by_key,
    latest_version,
    versions_as_of,
    was_valid_on,
)
from .change_request import (
    ChangeRequest,
    ChangeRequestError,
    ChangeRequestNotFoundError,
    ChangeRequestStatus,
    InvalidChangeRequestTransitionError,
    OperationType,
)
from .outbox import (
    EventType,
    InvalidEventTransitionError,
    OutboxEvent,
    OutboxStatus,
    create_event,
)
from .reference import (
    ATTRIBUTE_TYPES,
    Airport,
    AirportRecord,
    CodeMapping,
    CodeMappingRecord,
    Country,
    CountryRecord,
    DatasetType,
    Port,
    PortRecord,
    ReferenceAttributes,
    aggregate_type_for,
    attributes_from_dict,
    attributes_to_dict,
    mapping_code_system,
)

__all__ = [
    "ATTRIBUTE_TYPES",
    "Airport",
    "AirportRecord",
    "BitemporalRecord",
    "ChangeRequest",
    "ChangeRequestError",
    "ChangeRequestNotFoundError",
    "ChangeRequestStatus",
    "CodeMapping",
    "CodeMappingRecord",
    "Country",
    "CountryRecord",
    "DatasetType",
    "EventType",
    "HasValidityWindow",
    "InvalidChangeRequestTransitionError",
    "InvalidEventTransitionError",
    "InvalidValidityWindowError",
    "OperationType",
    "OutboxEvent",
    "OutboxStatus",
    "Port",
    "PortRecord",
    "RecordKey",
    "ReferenceAttributes",
    "aggregate_type_for",
    "attributes_from_dict",
    "attributes_to_dict",
    "create_correction",
    "create_event",
    "create_new_version",
    "current_versions",
    "end_validity",
    "group_by_change_request",
    "group_by_key",
    "latest_version",
    "mapping_code_system",
    "versions_as_of",
    "was_valid_on",
]
