"""Contract discovery from staging relations.

Contract identifiers are collected from five places in the staging data:
transaction descriptions, contract-call transaction kinds, address
operations, event emitters, and the contract part of transferred asset
identifiers. Identifiers that are not yet catalogued are inserted in the
``discovered`` state. Existing catalogue rows are never rewritten.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING

from stacks_lakehouse.staging.models import StagedEvent, StagedOperation, StagedTransaction
from stacks_lakehouse.storage.repos import ContractDTO, ContractRepository, StagingRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

CONTRACT_ID_PATTERN = re.compile(r"^S[PM][0-9A-Z]{38,42}\.[a-zA-Z0-9_-]+$")
_EMBEDDED_CONTRACT_ID = re.compile(r"S[PM][0-9A-Z]{38,42}\.[a-zA-Z0-9_-]+")
MIN_CONTRACT_ID_LENGTH = 42
DEFAULT_REPORT_WINDOW_MINUTES = 5


class DiscoverySource(str, Enum):
    DESCRIPTION = "tx_description"
    CONTRACT_CALL = "contract_call"
    OPERATION = "address_operation"
    EVENT = "event_contract"
    ASSET = "event_asset"
    MANUAL = "manual"


@dataclass(frozen=True)
class ContractCandidate:
    """A contract identifier seen in staging data, with activity aggregates."""

    contract_id: str
    transaction_count: int
    last_seen: datetime | None
    sources: tuple[str, ...]

    @property
    def deployer(self) -> str:
        return self.contract_id.split(".", 1)[0]

    @property
    def name(self) -> str:
        return self.contract_id.split(".", 1)[1]

    def to_dto(self) -> ContractDTO:
        return ContractDTO(
            contract_id=self.contract_id,
            deployer=self.deployer,
            name=self.name,
            transaction_count=self.transaction_count,
            last_seen=self.last_seen,
            discovery_sources=list(self.sources),
        )


@dataclass(frozen=True)
class DiscoveryResult:
    """Outcome of a discovery pass."""

    candidates: int
    inserted: int
    recent_discovered: int


def is_valid_contract_id(value: str | None) -> bool:
    return value is not None and len(value) >= MIN_CONTRACT_ID_LENGTH and CONTRACT_ID_PATTERN.match(value) is not None


def find_contract_candidates(
    transactions: Iterable[StagedTransaction],
    operations: Iterable[StagedOperation],
    events: Iterable[StagedEvent],
) -> list[ContractCandidate]:
    """Collect valid contract identifiers, ranked by activity then recency."""
    seen: dict[str, dict[str, datetime | None]] = {}
    sources: dict[str, set[str]] = {}

    def mention(contract_id: str | None, source: DiscoverySource, tx_hash: str, at: datetime | None) -> None:
        if contract_id is None or not is_valid_contract_id(contract_id):
            return
        txs = seen.setdefault(contract_id, {})
        previous = txs.get(tx_hash)
        txs[tx_hash] = at if previous is None or (at is not None and at > previous) else previous
        sources.setdefault(contract_id, set()).add(source.value)

    for tx in transactions:
        at = tx.block_time or tx.received_at
        for match in _EMBEDDED_CONTRACT_ID.findall(tx.description or ""):
            mention(match, DiscoverySource.DESCRIPTION, tx.tx_hash, at)
        mention(tx.contract_identifier, DiscoverySource.CONTRACT_CALL, tx.tx_hash, at)
    for op in operations:
        mention(op.contract_identifier, DiscoverySource.OPERATION, op.tx_hash, op.block_time or op.received_at)
    for event in events:
        at = event.block_time or event.received_at
        mention(event.contract_identifier, DiscoverySource.EVENT, event.tx_hash, at)
        mention(event.asset_contract_id, DiscoverySource.ASSET, event.tx_hash, at)

    candidates = []
    for contract_id, txs in seen.items():
        times = [t for t in txs.values() if t is not None]
        candidates.append(
            ContractCandidate(
                contract_id=contract_id,
                transaction_count=len(txs),
                last_seen=max(times) if times else None,
                sources=tuple(sorted(sources[contract_id])),
            )
        )
    candidates.sort(
        key=lambda c: (
            -c.transaction_count,
            -(c.last_seen.timestamp() if c.last_seen else 0.0),
            c.contract_id,
        )
    )
    return candidates


class ContractDiscovery:
    """Inserts newly seen contracts into the catalogue.

    Example:
        ```python
        async with db.get_async_session() as session:
            result = await ContractDiscovery(session).run()
            print(f"{result.inserted} new contracts")
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        report_window_minutes: int = DEFAULT_REPORT_WINDOW_MINUTES,
    ) -> None:
        self._staging = StagingRepository(session)
        self._contracts = ContractRepository(session)
        self._report_window = timedelta(minutes=report_window_minutes)

    async def run(self, *, since: datetime | None = None) -> DiscoveryResult:
        """Discover contracts in staging rows received since ``since`` (all when None)."""
        candidates = find_contract_candidates(
            await self._staging.list_transactions(since=since),
            await self._staging.list_operations(since=since),
            await self._staging.list_events(since=since),
        )
        inserted = await self._contracts.insert_if_absent([c.to_dto() for c in candidates])
        recent = await self._contracts.count_discovered_since(datetime.now(UTC) - self._report_window)
        logger.info(
            "Contract discovery: %d candidate(s), %d new, %d discovered in the last %s",
            len(candidates),
            len(inserted),
            recent,
            self._report_window,
        )
        return DiscoveryResult(candidates=len(candidates), inserted=len(inserted), recent_discovered=recent)

    async def register(self, contract_id: str) -> ContractDTO:
        """Queue a contract for analysis by hand, ahead of seeing it on chain.

        Raises:
            ValueError: If ``contract_id`` is not a valid contract identifier.
            DiscoveryConflict: If the contract is already catalogued.
        """
        if not is_valid_contract_id(contract_id):
            raise ValueError(f"Not a contract identifier: {contract_id!r}")
        candidate = ContractCandidate(
            contract_id=contract_id,
            transaction_count=0,
            last_seen=None,
            sources=(DiscoverySource.MANUAL.value,),
        )
        contract = await self._contracts.insert(candidate.to_dto())
        logger.info("Contract %s registered manually", contract_id)
        return contract
