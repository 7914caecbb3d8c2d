"""Schema-on-read parsing of chainhook payloads.

The ingestion front door acknowledges every payload, so anything can land
in the raw event log. Each raw event is classified into one of three
variants before conversion:

- ``WellFormedPayload``: every block and transaction carries its identifiers.
- ``PartialPayload``: some blocks or transactions were unusable and skipped.
- ``UnparseablePayload``: the body is not a chainhook ``apply`` payload at all.

``to_staging_rows`` converts each variant into staging rows. Partial and
unparseable payloads are also captured verbatim as ``RejectedPayload`` rows.
"""

from __future__ import annotations

import contextlib
import json
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from stacks_lakehouse.errors import ParseError
from stacks_lakehouse.staging.models import (
    RawEvent,
    RejectedPayload,
    StagedBlock,
    StagedEvent,
    StagedOperation,
    StagedTransaction,
    StagingRows,
)

# Largest timestamp representable as a calendar date (9999-12-31T23:59:59Z).
MAX_BLOCK_TIME_SECONDS = 253402300799

# Column bounds: BIGINT for heights and fees, INTEGER for positions inside a
# transaction, NUMERIC(40, 0) for amounts, VARCHAR(66) for hashes.
MAX_BIGINT = 2**63 - 1
MAX_POSITION = 2**31 - 1
MAX_AMOUNT = 10**40 - 1
MAX_HASH_LENGTH = 66


@dataclass(frozen=True)
class ParsedBlock:
    """A block whose identifiers were validated, with its usable transactions."""

    raw: dict[str, Any]
    block_hash: str
    block_index: int
    transactions: tuple[dict[str, Any], ...]


@dataclass(frozen=True)
class WellFormedPayload:
    event: RawEvent
    body: dict[str, Any]
    blocks: tuple[ParsedBlock, ...]


@dataclass(frozen=True)
class PartialPayload:
    event: RawEvent
    body: dict[str, Any]
    blocks: tuple[ParsedBlock, ...]
    problems: tuple[str, ...]


@dataclass(frozen=True)
class UnparseablePayload:
    event: RawEvent
    reason: str


ParsedPayload = WellFormedPayload | PartialPayload | UnparseablePayload


def dig(data: Any, *path: str) -> Any:
    """Follow a key path through nested mappings, returning None on any miss."""
    current = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _parse_int(value: Any) -> int | None:
    """Leniently coerce JSON scalars to int."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return int(value.strip())
    return None


def as_int(value: Any, *, maximum: int = MAX_BIGINT) -> int | None:
    """Coerce to int, discarding values that do not fit in ``[-maximum - 1, maximum]``."""
    number = _parse_int(value)
    if number is None or not -maximum - 1 <= number <= maximum:
        return None
    return number


def _amount_value(value: Any) -> Any:
    return value.get("value") if isinstance(value, dict) else value


def as_amount(value: Any) -> Decimal | None:
    """Parse an amount that may be a scalar or a ``{"value": ...}`` object."""
    number = _parse_int(_amount_value(value))
    if number is None or abs(number) > MAX_AMOUNT:
        return None
    return Decimal(number)


def as_str(value: Any) -> str | None:
    return value if isinstance(value, str) and value else None


def parse_block_time(value: Any) -> datetime | None:
    """Convert epoch seconds to UTC, discarding values outside the valid range."""
    seconds = as_int(value)
    if seconds is None or not 0 <= seconds <= MAX_BLOCK_TIME_SECONDS:
        return None
    return datetime.fromtimestamp(seconds, tz=UTC)


def _check_bounds(value: Any, label: str, maximum: int) -> None:
    number = _parse_int(value)
    if number is not None and not -maximum - 1 <= number <= maximum:
        raise ParseError(f"{label} out of range: {number}")


def _check_hash(value: str, label: str) -> None:
    if len(value) > MAX_HASH_LENGTH:
        raise ParseError(f"{label} longer than {MAX_HASH_LENGTH} characters")


def check_transaction(tx: dict[str, Any]) -> None:
    """Reject a transaction whose values cannot be stored in the staging relations.

    Raises:
        ParseError: If the hash, fee, an operation or an event is out of range.
    """
    _check_hash(tx["transaction_identifier"]["hash"], "transaction hash")
    _check_bounds(dig(tx, "metadata", "fee"), "fee", MAX_BIGINT)

    operations = tx.get("operations")
    for position, op in enumerate(operations if isinstance(operations, list) else []):
        _check_bounds(dig(op, "operation_identifier", "index"), f"operations[{position}] index", MAX_POSITION)
        amount = op.get("amount") if isinstance(op, dict) else None
        _check_bounds(_amount_value(amount), f"operations[{position}] amount", MAX_AMOUNT)

    events = dig(tx, "metadata", "receipt", "events")
    for position, event in enumerate(events if isinstance(events, list) else []):
        _check_bounds(dig(event, "position", "index"), f"events[{position}] position", MAX_POSITION)
        _check_bounds(_amount_value(dig(event, "data", "amount")), f"events[{position}] amount", MAX_AMOUNT)


def _decode_body(body: str | dict[str, Any]) -> dict[str, Any]:
    if isinstance(body, dict):
        decoded: Any = body
    else:
        try:
            decoded = json.loads(body)
        except (TypeError, ValueError) as e:
            raise ParseError(f"body is not valid JSON: {e}") from e
    if not isinstance(decoded, dict):
        raise ParseError(f"body is a JSON {type(decoded).__name__}, expected an object")
    if not isinstance(decoded.get("apply"), list):
        raise ParseError("body has no 'apply' list")
    return decoded


def parse_payload(event: RawEvent) -> ParsedPayload:
    """Classify a raw event into one of the payload variants. Never raises."""
    try:
        body = _decode_body(event.body_json)
    except ParseError as e:
        return UnparseablePayload(event=event, reason=str(e))

    blocks: list[ParsedBlock] = []
    problems: list[str] = []
    for position, raw_block in enumerate(body["apply"]):
        block_hash = as_str(dig(raw_block, "block_identifier", "hash"))
        raw_index = dig(raw_block, "block_identifier", "index")
        block_index = as_int(raw_index)
        if block_hash is None or block_index is None:
            reason = "block index out of range" if _parse_int(raw_index) is not None else "missing block identifier"
            problems.append(f"apply[{position}]: {reason}")
            continue
        if len(block_hash) > MAX_HASH_LENGTH:
            problems.append(f"apply[{position}]: block hash longer than {MAX_HASH_LENGTH} characters")
            continue

        transactions: list[dict[str, Any]] = []
        raw_transactions = raw_block.get("transactions")
        if raw_transactions is None:
            raw_transactions = []
        if not isinstance(raw_transactions, list):
            problems.append(f"block {block_hash}: 'transactions' is not a list")
            raw_transactions = []
        for tx_position, tx in enumerate(raw_transactions):
            if as_str(dig(tx, "transaction_identifier", "hash")) is None:
                problems.append(f"block {block_hash}: transactions[{tx_position}] has no hash")
                continue
            try:
                check_transaction(tx)
            except ParseError as e:
                problems.append(f"block {block_hash}: transactions[{tx_position}]: {e}")
                continue
            transactions.append(tx)

        blocks.append(
            ParsedBlock(
                raw=raw_block,
                block_hash=block_hash,
                block_index=block_index,
                transactions=tuple(transactions),
            )
        )

    if problems:
        return PartialPayload(event=event, body=body, blocks=tuple(blocks), problems=tuple(problems))
    return WellFormedPayload(event=event, body=body, blocks=tuple(blocks))


def _verbatim(body: str | dict[str, Any]) -> str:
    if isinstance(body, str):
        return body
    return json.dumps(body, sort_keys=True, default=str)


def _reject(event: RawEvent, kind: str, reason: str) -> RejectedPayload:
    return RejectedPayload(
        event_id=event.event_id,
        kind=kind,
        reason=reason,
        body_json=_verbatim(event.body_json),
        webhook_path=event.webhook_path,
        received_at=event.received_at,
    )


def _convert_blocks(event: RawEvent, body: dict[str, Any], blocks: tuple[ParsedBlock, ...]) -> StagingRows:
    rows = StagingRows()
    chainhook_uuid = as_str(dig(body, "chainhook", "uuid"))
    streaming = dig(body, "chainhook", "is_streaming_blocks")
    is_streaming = streaming if isinstance(streaming, bool) else None
    audit = {
        "event_id": event.event_id,
        "webhook_path": event.webhook_path,
        "received_at": event.received_at,
    }

    for block in blocks:
        block_time = parse_block_time(dig(block.raw, "metadata", "block_time"))
        rows.blocks.append(
            StagedBlock(
                block_hash=block.block_hash,
                block_index=block.block_index,
                block_time=block_time,
                bitcoin_anchor_hash=as_str(dig(block.raw, "metadata", "bitcoin_anchor_block_identifier", "hash")),
                bitcoin_anchor_index=as_int(dig(block.raw, "metadata", "bitcoin_anchor_block_identifier", "index")),
                stacks_block_hash=as_str(dig(block.raw, "metadata", "stacks_block_hash")),
                transaction_count=len(block.transactions),
                chainhook_uuid=chainhook_uuid,
                is_streaming_blocks=is_streaming,
                **audit,
            )
        )

        for tx in block.transactions:
            tx_hash = tx["transaction_identifier"]["hash"]
            operations = tx.get("operations")
            operations = operations if isinstance(operations, list) else []
            success = dig(tx, "metadata", "success")
            rows.transactions.append(
                StagedTransaction(
                    tx_hash=tx_hash,
                    block_hash=block.block_hash,
                    block_index=block.block_index,
                    block_time=block_time,
                    description=as_str(dig(tx, "metadata", "description")),
                    fee=as_int(dig(tx, "metadata", "fee")),
                    success=success if isinstance(success, bool) else None,
                    sender=as_str(dig(tx, "metadata", "sender")),
                    contract_identifier=as_str(dig(tx, "metadata", "kind", "data", "contract_identifier")),
                    operation_count=len(operations),
                    **audit,
                )
            )

            for position, op in enumerate(operations):
                if not isinstance(op, dict):
                    continue
                index = as_int(dig(op, "operation_identifier", "index"), maximum=MAX_POSITION)
                args = op.get("args")
                rows.operations.append(
                    StagedOperation(
                        tx_hash=tx_hash,
                        operation_index=index if index is not None else position,
                        block_hash=block.block_hash,
                        block_time=block_time,
                        operation_type=as_str(op.get("type")),
                        address=as_str(op.get("address")) or as_str(dig(op, "account", "address")),
                        amount=as_amount(op.get("amount")),
                        contract_identifier=as_str(op.get("contract_identifier")),
                        function_name=as_str(op.get("function_name")),
                        function_args=args if isinstance(args, list) else None,
                        **audit,
                    )
                )

            receipt_events = dig(tx, "metadata", "receipt", "events")
            for position, raw_event in enumerate(receipt_events if isinstance(receipt_events, list) else []):
                if not isinstance(raw_event, dict):
                    continue
                index = as_int(dig(raw_event, "position", "index"), maximum=MAX_POSITION)
                rows.events.append(
                    StagedEvent(
                        tx_hash=tx_hash,
                        position_index=index if index is not None else position,
                        block_hash=block.block_hash,
                        block_time=block_time,
                        event_type=as_str(raw_event.get("type")),
                        contract_identifier=as_str(dig(raw_event, "data", "contract_identifier")),
                        topic=as_str(dig(raw_event, "data", "topic")),
                        action=as_str(dig(raw_event, "data", "value", "action")),
                        sender=as_str(dig(raw_event, "data", "sender")),
                        recipient=as_str(dig(raw_event, "data", "recipient")),
                        amount=as_amount(dig(raw_event, "data", "amount")),
                        asset_identifier=as_str(dig(raw_event, "data", "asset_identifier")),
                        raw_event=raw_event,
                        **audit,
                    )
                )

    return rows


def to_staging_rows(parsed: ParsedPayload) -> StagingRows:
    """Convert a parsed payload into staging rows (plus a rejection record if needed)."""
    if isinstance(parsed, UnparseablePayload):
        rows = StagingRows()
        rows.rejected.append(_reject(parsed.event, "unparseable", parsed.reason))
        return rows
    if isinstance(parsed, PartialPayload):
        rows = _convert_blocks(parsed.event, parsed.body, parsed.blocks)
        rows.rejected.append(_reject(parsed.event, "partial", "; ".join(parsed.problems)))
        return rows
    return _convert_blocks(parsed.event, parsed.body, parsed.blocks)
