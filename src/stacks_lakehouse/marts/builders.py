"""Pure mart builders over staging rows.

Each builder takes a ``StagingSnapshot`` and returns plain row dicts keyed
by the destination table's columns. Builders never touch the database.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any

from stacks_lakehouse.classifier.contracts import protocol_category
from stacks_lakehouse.staging.models import StagedBlock, StagedEvent, StagedOperation, StagedTransaction
from stacks_lakehouse.staging.payloads import as_amount, as_str, dig

SMART_CONTRACT_EVENT = "SmartContractEvent"

TRANSACTION_TYPE_KEYWORDS = (
    ("transfer", "transfer"),
    ("contract", "contract_call"),
    ("deploy", "contract_deploy"),
    ("mint", "token_mint"),
)
FEE_CATEGORIES = ((0, "free"), (1000, "low"), (5000, "medium"), (10000, "high"))
ACTIVITY_LEVELS = ((10, "low"), (100, "medium"), (1000, "high"))
SWAP_SIZE_CATEGORIES = ((1_000_000, "small"), (10_000_000, "medium"), (100_000_000, "large"))

SWAP_ACTION_KEYWORDS = ("swap", "helper")
LENDING_ACTION_KEYWORDS = ("lend", "borrow", "supply")
STACKING_ACTION_KEYWORDS = ("pox", "delegate", "stack")

UNKNOWN = "unknown"


@dataclass(frozen=True)
class StagingSnapshot:
    """The staging relations a mart refresh reads."""

    blocks: list[StagedBlock] = field(default_factory=list)
    transactions: list[StagedTransaction] = field(default_factory=list)
    operations: list[StagedOperation] = field(default_factory=list)
    events: list[StagedEvent] = field(default_factory=list)


def _has_keyword(text: str | None, keywords: Iterable[str]) -> bool:
    lowered = (text or "").lower()
    return any(k in lowered for k in keywords)


def transaction_type(description: str | None) -> str:
    lowered = (description or "").lower()
    for keyword, label in TRANSACTION_TYPE_KEYWORDS:
        if keyword in lowered:
            return label
    return "other"


def fee_category(fee: int | None) -> str:
    if fee is None:
        return UNKNOWN
    for ceiling, label in FEE_CATEGORIES:
        if fee <= ceiling:
            return label
    return "very_high"


def transaction_status(success: bool | None) -> str:
    if success is True:
        return "successful"
    if success is False:
        return "failed"
    return UNKNOWN


def activity_level(event_count: int) -> str:
    for ceiling, label in ACTIVITY_LEVELS:
        if event_count < ceiling:
            return label
    return "very_high"


def swap_size_category(x_amount: Decimal | None) -> str:
    if x_amount is None:
        return UNKNOWN
    for ceiling, label in SWAP_SIZE_CATEGORIES:
        if x_amount < ceiling:
            return label
    return "whale"


def is_swap_event(event: StagedEvent) -> bool:
    return (
        event.event_type == SMART_CONTRACT_EVENT
        and event.contract_identifier is not None
        and _has_keyword(event.action, SWAP_ACTION_KEYWORDS)
    )


def _swap_field(event: StagedEvent, name: str) -> Any:
    return dig(event.raw_event, "data", "value", "data", name)


# ============================================================================
# Chain dimensions
# ============================================================================


def build_dim_blocks(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    tx_by_block: dict[str, list[StagedTransaction]] = defaultdict(list)
    for tx in snapshot.transactions:
        tx_by_block[tx.block_hash].append(tx)
    addresses_by_block: dict[str, set[str]] = defaultdict(set)
    for op in snapshot.operations:
        if op.address:
            addresses_by_block[op.block_hash].add(op.address)

    rows = []
    for block in snapshot.blocks:
        txs = tx_by_block.get(block.block_hash, [])
        count = len(txs)
        total_fees = sum(tx.fee or 0 for tx in txs)
        successful = sum(1 for tx in txs if tx.success is True)
        rows.append(
            {
                "block_hash": block.block_hash,
                "block_index": block.block_index,
                "block_time": block.block_time,
                "transaction_count": count,
                "total_fees": total_fees,
                "successful_transactions": successful,
                "failed_transactions": sum(1 for tx in txs if tx.success is False),
                "success_rate": successful / count if count else None,
                "avg_fee": total_fees / count if count else None,
                "unique_addresses": len(addresses_by_block.get(block.block_hash, ())),
            }
        )
    return rows


def build_dim_transactions(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    return [
        {
            "tx_hash": tx.tx_hash,
            "block_hash": tx.block_hash,
            "block_index": tx.block_index,
            "block_time": tx.block_time,
            "transaction_type": transaction_type(tx.description),
            "fee": tx.fee,
            "fee_category": fee_category(tx.fee),
            "status": transaction_status(tx.success),
            "operation_count": tx.operation_count,
        }
        for tx in snapshot.transactions
    ]


def build_fact_daily_activity(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    """Per (date, webhook path) totals; blocks without a time are left out."""
    block_day: dict[str, tuple[date, str]] = {}
    for block in snapshot.blocks:
        if block.block_time is not None:
            block_day[block.block_hash] = (block.block_time.date(), block.webhook_path)

    blocks: dict[tuple[date, str], set[str]] = defaultdict(set)
    for block_hash, day in block_day.items():
        blocks[day].add(block_hash)

    txs: dict[tuple[date, str], list[StagedTransaction]] = defaultdict(list)
    for tx in snapshot.transactions:
        day = block_day.get(tx.block_hash)
        if day is not None:
            txs[day].append(tx)

    addresses: dict[tuple[date, str], set[str]] = defaultdict(set)
    for op in snapshot.operations:
        day = block_day.get(op.block_hash)
        if day is not None and op.address:
            addresses[day].add(op.address)

    rows = []
    for day in sorted(set(blocks) | set(txs) | set(addresses)):
        day_txs = txs.get(day, [])
        rows.append(
            {
                "activity_date": day[0],
                "webhook_path": day[1],
                "block_count": len(blocks.get(day, ())),
                "transaction_count": len(day_txs),
                "successful_transactions": sum(1 for tx in day_txs if tx.success is True),
                "total_fees": sum(tx.fee or 0 for tx in day_txs),
                "unique_addresses": len(addresses.get(day, ())),
            }
        )
    return rows


# ============================================================================
# Contract and DeFi marts
# ============================================================================


def build_dim_smart_contract_activity(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    groups: dict[tuple[str, date, int, str], list[StagedEvent]] = defaultdict(list)
    for event in snapshot.events:
        if (
            event.event_type != SMART_CONTRACT_EVENT
            or event.contract_identifier is None
            or event.action is None
            or event.block_time is None
        ):
            continue
        key = (event.contract_identifier, event.block_time.date(), event.block_time.hour, event.action)
        groups[key].append(event)

    rows = []
    for (contract_id, activity_date, hour, action), events in sorted(groups.items()):
        rows.append(
            {
                "contract_id": contract_id,
                "activity_date": activity_date,
                "activity_hour": hour,
                "action": action,
                "protocol_category": protocol_category(contract_id),
                "event_count": len(events),
                "transaction_count": len({e.tx_hash for e in events}),
                "activity_level": activity_level(len(events)),
            }
        )
    return rows


def build_dim_defi_swaps(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    rows = []
    for event in snapshot.events:
        if not is_swap_event(event):
            continue
        x_amount = as_amount(_swap_field(event, "x-amount"))
        rows.append(
            {
                "tx_hash": event.tx_hash,
                "position_index": event.position_index,
                "contract_id": event.contract_identifier,
                "action": event.action,
                "block_time": event.block_time,
                "pool_name": as_str(_swap_field(event, "pool-name")),
                "x_token": as_str(_swap_field(event, "x-token")),
                "y_token": as_str(_swap_field(event, "y-token")),
                "x_amount": x_amount,
                "dy": as_amount(_swap_field(event, "dy")),
                "fees_protocol": as_amount(_swap_field(event, "x-amount-fees-protocol")),
                "fees_provider": as_amount(_swap_field(event, "x-amount-fees-provider")),
                "swap_size_category": swap_size_category(x_amount),
            }
        )
    return rows


def build_fact_defi_metrics(snapshot: StagingSnapshot) -> list[dict[str, Any]]:
    """Per-day DeFi activity; days without any DeFi event are left out."""
    dex: dict[date, set[str]] = defaultdict(set)
    lending: dict[date, set[str]] = defaultdict(set)
    stacking: dict[date, set[str]] = defaultdict(set)
    swap_count: dict[date, int] = defaultdict(int)
    swap_volume: dict[date, Decimal] = defaultdict(Decimal)

    for event in snapshot.events:
        if event.event_type != SMART_CONTRACT_EVENT or event.contract_identifier is None:
            continue
        if event.block_time is None:
            continue
        day = event.block_time.date()
        if is_swap_event(event):
            dex[day].add(event.contract_identifier)
            swap_count[day] += 1
            swap_volume[day] += as_amount(_swap_field(event, "x-amount")) or Decimal(0)
        if _has_keyword(event.action, LENDING_ACTION_KEYWORDS):
            lending[day].add(event.contract_identifier)
        if _has_keyword(event.action, STACKING_ACTION_KEYWORDS):
            stacking[day].add(event.contract_identifier)

    return [
        {
            "metric_date": day,
            "dex_contracts": len(dex.get(day, ())),
            "lending_contracts": len(lending.get(day, ())),
            "stacking_contracts": len(stacking.get(day, ())),
            "swap_count": swap_count.get(day, 0),
            "swap_volume": swap_volume.get(day, Decimal(0)),
        }
        for day in sorted(set(dex) | set(lending) | set(stacking))
    ]
