"""Contract analysis worker: fetches interface and source for discovered contracts.

Contracts move ``discovered -> analyzing -> analyzed | error``. A contract
whose interface and source are both reported absent by the node is marked
``error``; one that only hit transient failures goes back to
``discovered`` and is retried on a later run. Analyzed contracts are never
regressed here.

Each batch is committed as soon as it is analyzed, so a run cut short by a
step timeout keeps the batches it finished. With a time budget the worker
stops starting batches once the next one would not fit, leaving the rest
for a later run.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from stacks_lakehouse.classifier.abi import detect_interfaces
from stacks_lakehouse.enrichment.calls import CallResult, fan_out
from stacks_lakehouse.storage.repos import ContractDTO, ContractRepository, ContractStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from stacks_lakehouse.enrichment.stacks_client import StacksApiClient

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 1000
DEFAULT_CONCURRENCY = 10
DEFAULT_CALL_TIMEOUT_SECONDS = 8.0


@dataclass
class AnalysisStats:
    """Counters for one analysis run."""

    attempted: int = 0
    analyzed: int = 0
    errored: int = 0
    retried: int = 0
    deferred: int = 0

    def as_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)


def apply_analysis(
    contract: ContractDTO,
    results: dict[str, CallResult],
    *,
    now: datetime | None = None,
) -> ContractDTO:
    """Fold interface/source outcomes into a copy of the contract row."""
    interface = results["interface"]
    source = results["source"]
    updated = dataclasses.replace(
        contract,
        classification_errors=[r.describe() for r in results.values() if not r.ok],
    )

    if interface.ok or source.ok:
        if interface.ok and isinstance(interface.value, dict):
            updated.parsed_abi = interface.value
        if source.ok and isinstance(source.value, str):
            updated.source_code = source.value
        updated.interfaces = sorted(detect_interfaces(updated.parsed_abi))
        updated.analysis_status = ContractStatus.ANALYZED.value
        updated.analyzed_at = now or datetime.now(UTC)
    elif interface.absent and source.absent:
        updated.analysis_status = ContractStatus.ERROR.value
    else:
        updated.analysis_status = ContractStatus.DISCOVERED.value
    return updated


class ContractAnalysisWorker:
    """Analyzes discovered contracts with bounded concurrency."""

    def __init__(
        self,
        session: AsyncSession,
        client: StacksApiClient,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        concurrency: int = DEFAULT_CONCURRENCY,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        time_budget_seconds: float | None = None,
    ) -> None:
        self._session = session
        self._contracts = ContractRepository(session)
        self._client = client
        self._batch_limit = batch_limit
        self._concurrency = concurrency
        self._call_timeout = call_timeout_seconds
        self._time_budget = time_budget_seconds

    async def run_once(self) -> AnalysisStats:
        """Analyze up to ``batch_limit`` discovered contracts, committing per batch."""
        stats = AnalysisStats()
        discovered = await self._contracts.list_by_status(ContractStatus.DISCOVERED, limit=self._batch_limit)
        loop = asyncio.get_running_loop()
        started = loop.time()
        last_batch = 0.0

        for start in range(0, len(discovered), self._concurrency):
            elapsed = loop.time() - started
            if self._time_budget is not None and start and elapsed + last_batch > self._time_budget:
                stats.deferred = len(discovered) - start
                logger.info("Contract analysis stopping after %.1fs, %d contract(s) deferred", elapsed, stats.deferred)
                break

            batch_started = loop.time()
            await self._analyze_batch(discovered[start : start + self._concurrency], stats)
            await self._session.commit()
            last_batch = loop.time() - batch_started

        logger.info(
            "Contract analysis: %d attempted, %d analyzed, %d errored, %d retried later, %d deferred",
            stats.attempted,
            stats.analyzed,
            stats.errored,
            stats.retried,
            stats.deferred,
        )
        return stats

    async def _analyze_batch(self, batch: list[ContractDTO], stats: AnalysisStats) -> None:
        for contract in batch:
            contract.analysis_status = ContractStatus.ANALYZING.value
            await self._contracts.save(contract)

        outcomes = await asyncio.gather(*(self._fetch(c.contract_id) for c in batch))
        for contract, results in zip(batch, outcomes, strict=True):
            updated = apply_analysis(contract, results)
            await self._contracts.save(updated)
            stats.attempted += 1
            if updated.analysis_status == ContractStatus.ANALYZED.value:
                stats.analyzed += 1
            elif updated.analysis_status == ContractStatus.ERROR.value:
                stats.errored += 1
                logger.warning("Contract %s has no interface or source", contract.contract_id)
            else:
                stats.retried += 1

    async def _fetch(self, contract_id: str) -> dict[str, CallResult]:
        return await fan_out(
            {
                "interface": lambda: self._client.get_contract_interface(contract_id),
                "source": lambda: self._client.get_contract_source(contract_id),
            },
            timeout=self._call_timeout,
        )
