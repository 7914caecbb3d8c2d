"""Feature builders that aggregate staging rows for archetype classification."""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from stacks_lakehouse.classifier.models import ContractFeatures, WalletFeatures
from stacks_lakehouse.staging.models import StagedEvent, StagedOperation, StagedTransaction

NATIVE_ASSET = "STX"
DEFAULT_DECIMALS = 6
TRANSFER_EVENT_TYPES = frozenset({"FTTransferEvent", "STXTransferEvent"})


@dataclass(frozen=True)
class AssetInfo:
    """Catalogue facts needed to scale and label transfer amounts."""

    symbol: str | None = None
    decimals: int | None = None


@dataclass(frozen=True)
class Transfer:
    tx_hash: str
    asset_id: str
    symbol: str
    sender: str | None
    recipient: str | None
    value: Decimal
    block_time: datetime | None


def extract_transfers(
    events: Iterable[StagedEvent],
    assets: Mapping[str, AssetInfo] | None = None,
) -> list[Transfer]:
    """Turn FT/STX transfer events into scaled transfers."""
    assets = assets or {}
    transfers = []
    for event in events:
        if event.event_type not in TRANSFER_EVENT_TYPES or event.amount is None:
            continue
        if event.event_type == "STXTransferEvent":
            asset_id = NATIVE_ASSET
            default_symbol = NATIVE_ASSET
        else:
            asset_id = event.asset_contract_id or event.asset_identifier or "unknown"
            default_symbol = (event.asset_identifier or asset_id).split("::")[-1]
        info = assets.get(asset_id, AssetInfo())
        decimals = info.decimals if info.decimals is not None else DEFAULT_DECIMALS
        transfers.append(
            Transfer(
                tx_hash=event.tx_hash,
                asset_id=asset_id,
                symbol=info.symbol or default_symbol,
                sender=event.sender,
                recipient=event.recipient,
                value=event.amount / (Decimal(10) ** decimals),
                block_time=event.block_time,
            )
        )
    return transfers


def _span_days(times: Iterable[datetime | None]) -> float:
    known = [t for t in times if t is not None]
    if not known:
        return 1.0
    return max(1.0, (max(known) - min(known)).total_seconds() / 86400)


def build_contract_features(
    contract_id: str,
    *,
    function_names: frozenset[str],
    interfaces: frozenset[str],
    transactions: Iterable[StagedTransaction],
    operations: Iterable[StagedOperation],
    events: Iterable[StagedEvent],
    assets: Mapping[str, AssetInfo] | None = None,
) -> ContractFeatures:
    """Aggregate one contract's interactions and value flows from staging rows."""
    touched: dict[str, datetime | None] = {}
    for tx in transactions:
        if tx.contract_identifier == contract_id:
            touched[tx.tx_hash] = tx.block_time
    for op in operations:
        if op.contract_identifier == contract_id:
            touched.setdefault(op.tx_hash, op.block_time)

    event_list = list(events)
    for event in event_list:
        if contract_id in (event.contract_identifier, event.sender, event.recipient):
            touched.setdefault(event.tx_hash, event.block_time)

    inbound = Decimal(0)
    outbound = Decimal(0)
    tokens: set[str] = set()
    for transfer in extract_transfers(event_list, assets):
        if transfer.recipient == contract_id:
            inbound += transfer.value
            tokens.add(transfer.asset_id)
        if transfer.sender == contract_id:
            outbound += transfer.value
            tokens.add(transfer.asset_id)

    return ContractFeatures(
        contract_id=contract_id,
        function_names=function_names,
        interfaces=interfaces,
        interactions=len(touched),
        window_days=_span_days(touched.values()),
        active_tokens=len(tokens),
        inbound_value=inbound,
        outbound_value=outbound,
    )


def build_wallet_features(
    address: str,
    *,
    transactions: Iterable[StagedTransaction],
    operations: Iterable[StagedOperation],
    events: Iterable[StagedEvent],
    assets: Mapping[str, AssetInfo] | None = None,
) -> WalletFeatures:
    """Aggregate one wallet's transactions and transfer flows from staging rows."""
    touched: dict[str, datetime | None] = {}
    counterparties: set[str] = set()
    for tx in transactions:
        if tx.sender == address:
            touched[tx.tx_hash] = tx.block_time
            if tx.contract_identifier:
                counterparties.add(tx.contract_identifier)
    for op in operations:
        if op.address == address:
            touched.setdefault(op.tx_hash, op.block_time)

    inbound: dict[str, Decimal] = defaultdict(Decimal)
    outbound: dict[str, Decimal] = defaultdict(Decimal)
    for transfer in extract_transfers(events, assets):
        if transfer.recipient == address:
            inbound[transfer.symbol] += transfer.value
            touched.setdefault(transfer.tx_hash, transfer.block_time)
            if transfer.sender:
                counterparties.add(transfer.sender)
        if transfer.sender == address:
            outbound[transfer.symbol] += transfer.value
            touched.setdefault(transfer.tx_hash, transfer.block_time)
            if transfer.recipient:
                counterparties.add(transfer.recipient)

    return WalletFeatures(
        address=address,
        transactions=len(touched),
        window_days=_span_days(touched.values()),
        inbound_by_asset=dict(inbound),
        outbound_by_asset=dict(outbound),
        counterparties=frozenset(counterparties),
    )
