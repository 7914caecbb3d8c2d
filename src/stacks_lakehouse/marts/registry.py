"""Named marts and their refresh step."""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from stacks_lakehouse.marts.builders import (
    StagingSnapshot,
    build_dim_blocks,
    build_dim_defi_swaps,
    build_dim_smart_contract_activity,
    build_dim_transactions,
    build_fact_daily_activity,
    build_fact_defi_metrics,
)
from stacks_lakehouse.storage.models import (
    Base,
    DimBlockModel,
    DimContractActivityModel,
    DimDefiSwapModel,
    DimTransactionModel,
    FactDailyActivityModel,
    FactDefiMetricsModel,
)
from stacks_lakehouse.storage.repos import StagingRepository, WriteDisposition, write_rows

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MartDefinition:
    name: str
    model: type[Base]
    key: tuple[str, ...]
    build: Callable[[StagingSnapshot], list[dict[str, Any]]]


MARTS: dict[str, MartDefinition] = {
    definition.name: definition
    for definition in (
        MartDefinition("dim_blocks", DimBlockModel, ("block_hash",), build_dim_blocks),
        MartDefinition("dim_transactions", DimTransactionModel, ("tx_hash",), build_dim_transactions),
        MartDefinition(
            "fact_daily_activity",
            FactDailyActivityModel,
            ("activity_date", "webhook_path"),
            build_fact_daily_activity,
        ),
        MartDefinition(
            "dim_smart_contract_activity",
            DimContractActivityModel,
            ("contract_id", "activity_date", "activity_hour", "action"),
            build_dim_smart_contract_activity,
        ),
        MartDefinition("dim_defi_swaps", DimDefiSwapModel, ("tx_hash", "position_index"), build_dim_defi_swaps),
        MartDefinition("fact_defi_metrics", FactDefiMetricsModel, ("metric_date",), build_fact_defi_metrics),
    )
}

MART_NAMES = tuple(MARTS)


async def load_snapshot(session: AsyncSession) -> StagingSnapshot:
    staging = StagingRepository(session)
    return StagingSnapshot(
        blocks=await staging.list_blocks(),
        transactions=await staging.list_transactions(),
        operations=await staging.list_operations(),
        events=await staging.list_events(),
    )


async def refresh_mart(session: AsyncSession, name: str) -> int:
    """Rebuild one mart from staging and replace its contents.

    Raises:
        KeyError: If ``name`` is not a known mart.
    """
    definition = MARTS[name]
    snapshot = await load_snapshot(session)
    rows = definition.build(snapshot)
    written = await write_rows(
        session,
        definition.model,
        rows,
        key=definition.key,
        disposition=WriteDisposition.OVERWRITE,
    )
    logger.info("Refreshed mart %s with %d row(s)", name, written)
    return written
