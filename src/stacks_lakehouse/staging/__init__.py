"""Staging layer - normalizes raw chainhook payloads into staging relations."""

from stacks_lakehouse.staging.models import (
    RawEvent,
    RejectedPayload,
    StagedBlock,
    StagedEvent,
    StagedOperation,
    StagedTransaction,
    StagingRelation,
    StagingRows,
)
from stacks_lakehouse.staging.payloads import (
    PartialPayload,
    UnparseablePayload,
    WellFormedPayload,
    parse_payload,
    to_staging_rows,
)

__all__ = [
    "PartialPayload",
    "RawEvent",
    "RejectedPayload",
    "StagedBlock",
    "StagedEvent",
    "StagedOperation",
    "StagedTransaction",
    "StagingRelation",
    "StagingRows",
    "UnparseablePayload",
    "WellFormedPayload",
    "parse_payload",
    "to_staging_rows",
]
