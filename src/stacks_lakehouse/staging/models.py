"""Data models for raw events and the four staging relations.

Staging rows are immutable once produced. Each relation has a
deterministic key so re-staging the same raw event yields the same rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any


class StagingRelation(str, Enum):
    """Names of the staging relations."""

    BLOCKS = "stg_blocks"
    TRANSACTIONS = "stg_transactions"
    ADDRESS_OPERATIONS = "stg_address_operations"
    EVENTS = "stg_events"


@dataclass(frozen=True)
class RawEvent:
    """A payload as appended to the raw event log."""

    event_id: str
    received_at: datetime
    webhook_path: str
    body_json: str | dict[str, Any]


@dataclass(frozen=True)
class StagedBlock:
    block_hash: str
    block_index: int
    block_time: datetime | None
    bitcoin_anchor_hash: str | None
    bitcoin_anchor_index: int | None
    stacks_block_hash: str | None
    transaction_count: int
    chainhook_uuid: str | None
    is_streaming_blocks: bool | None
    event_id: str
    webhook_path: str
    received_at: datetime

    @property
    def key(self) -> str:
        return self.block_hash


@dataclass(frozen=True)
class StagedTransaction:
    tx_hash: str
    block_hash: str
    block_index: int
    block_time: datetime | None
    description: str | None
    fee: int | None
    success: bool | None
    sender: str | None
    contract_identifier: str | None
    operation_count: int
    event_id: str
    webhook_path: str
    received_at: datetime

    @property
    def key(self) -> str:
        return self.tx_hash


@dataclass(frozen=True)
class StagedOperation:
    tx_hash: str
    operation_index: int
    block_hash: str
    block_time: datetime | None
    operation_type: str | None
    address: str | None
    amount: Decimal | None
    contract_identifier: str | None
    function_name: str | None
    function_args: list[Any] | None
    event_id: str
    webhook_path: str
    received_at: datetime

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.operation_index)


@dataclass(frozen=True)
class StagedEvent:
    tx_hash: str
    position_index: int
    block_hash: str
    block_time: datetime | None
    event_type: str | None
    contract_identifier: str | None
    topic: str | None
    action: str | None
    sender: str | None
    recipient: str | None
    amount: Decimal | None
    asset_identifier: str | None
    raw_event: dict[str, Any] | None
    event_id: str
    webhook_path: str
    received_at: datetime

    @property
    def key(self) -> tuple[str, int]:
        return (self.tx_hash, self.position_index)

    @property
    def asset_contract_id(self) -> str | None:
        """Contract part of an asset identifier such as ``SP..token::name``."""
        if not self.asset_identifier or "::" not in self.asset_identifier:
            return None
        return self.asset_identifier.split("::", 1)[0]


@dataclass(frozen=True)
class RejectedPayload:
    """A raw payload captured verbatim because it could not be fully staged."""

    event_id: str
    kind: str
    reason: str
    body_json: str
    webhook_path: str
    received_at: datetime


@dataclass
class StagingRows:
    """Rows produced for all four relations from one batch of raw events."""

    blocks: list[StagedBlock] = field(default_factory=list)
    transactions: list[StagedTransaction] = field(default_factory=list)
    operations: list[StagedOperation] = field(default_factory=list)
    events: list[StagedEvent] = field(default_factory=list)
    rejected: list[RejectedPayload] = field(default_factory=list)

    def extend(self, other: StagingRows) -> None:
        self.blocks.extend(other.blocks)
        self.transactions.extend(other.transactions)
        self.operations.extend(other.operations)
        self.events.extend(other.events)
        self.rejected.extend(other.rejected)
