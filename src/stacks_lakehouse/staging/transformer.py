"""Staging transformer: raw event log to the four staging relations.

Re-running over the same window yields the same rows because every relation
is written by deterministic key (merge), never by delete-and-insert.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from stacks_lakehouse.staging.models import StagingRelation, StagingRows
from stacks_lakehouse.staging.payloads import (
    PartialPayload,
    UnparseablePayload,
    parse_payload,
    to_staging_rows,
)
from stacks_lakehouse.storage.models import (
    StagedBlockModel,
    StagedEventModel,
    StagedOperationModel,
    StagedTransactionModel,
)
from stacks_lakehouse.storage.repos import RawEventRepository, StagingRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from stacks_lakehouse.staging.models import RawEvent

logger = logging.getLogger(__name__)

_RELATION_MODELS = {
    StagingRelation.BLOCKS: StagedBlockModel,
    StagingRelation.TRANSACTIONS: StagedTransactionModel,
    StagingRelation.ADDRESS_OPERATIONS: StagedOperationModel,
    StagingRelation.EVENTS: StagedEventModel,
}


@dataclass(frozen=True)
class StagingWindow:
    """Arrival-time window over the raw event log (``since`` inclusive, ``until`` exclusive)."""

    since: datetime | None = None
    until: datetime | None = None


@dataclass
class StagingStats:
    """Counters for one staging pass."""

    events_read: int = 0
    well_formed: int = 0
    partial: int = 0
    unparseable: int = 0
    rows_written: dict[str, int] = field(default_factory=dict)

    @property
    def skipped(self) -> int:
        return self.partial + self.unparseable


def stage_events(events: Iterable[RawEvent]) -> tuple[StagingRows, StagingStats]:
    """Parse and convert raw events in memory. Never raises for bad payloads."""
    rows = StagingRows()
    stats = StagingStats()
    for event in events:
        stats.events_read += 1
        parsed = parse_payload(event)
        if isinstance(parsed, UnparseablePayload):
            stats.unparseable += 1
            logger.warning("Skipping unparseable event %s: %s", event.event_id, parsed.reason)
        elif isinstance(parsed, PartialPayload):
            stats.partial += 1
            logger.warning(
                "Event %s partially parsed, %d fragment(s) skipped",
                event.event_id,
                len(parsed.problems),
            )
        else:
            stats.well_formed += 1
        rows.extend(to_staging_rows(parsed))
    return rows, stats


class StagingTransformer:
    """Reads a window of raw events and writes staging relations.

    Example:
        ```python
        async with db.get_async_session() as session:
            stats = await StagingTransformer(session).run([StagingRelation.BLOCKS])
        ```
    """

    def __init__(self, session: AsyncSession) -> None:
        self._raw = RawEventRepository(session)
        self._staging = StagingRepository(session)

    async def resolve_window(
        self,
        relations: Iterable[StagingRelation],
        window: StagingWindow | None,
    ) -> StagingWindow:
        """Turn "all unprocessed" into a concrete window using per-relation watermarks.

        The oldest watermark among the requested relations is used, so a
        relation that lags behind is always caught up. Events at the
        watermark itself are re-read; keyed writes absorb the overlap.
        """
        if window is not None:
            return window
        watermarks = [await self._staging.latest_received_at(_RELATION_MODELS[r]) for r in relations]
        if not watermarks or any(w is None for w in watermarks):
            return StagingWindow()
        return StagingWindow(since=min(w for w in watermarks if w is not None))

    async def run(
        self,
        relations: Iterable[StagingRelation] | None = None,
        *,
        window: StagingWindow | None = None,
    ) -> StagingStats:
        """Stage the requested relations for a window (default: all unprocessed).

        Args:
            relations: Relations to write; all four when omitted.
            window: Explicit arrival window; resolved from watermarks when omitted.

        Returns:
            Parse counters and rows written per relation.
        """
        selected = list(relations) if relations is not None else list(StagingRelation)
        resolved = await self.resolve_window(selected, window)
        events = await self._raw.list_events(since=resolved.since, until=resolved.until)
        rows, stats = stage_events(events)

        for relation in selected:
            if relation == StagingRelation.BLOCKS:
                written = await self._staging.upsert_blocks(rows.blocks)
            elif relation == StagingRelation.TRANSACTIONS:
                written = await self._staging.upsert_transactions(rows.transactions)
            elif relation == StagingRelation.ADDRESS_OPERATIONS:
                written = await self._staging.upsert_operations(rows.operations)
            else:
                written = await self._staging.upsert_events(rows.events)
            stats.rows_written[relation.value] = written

        if rows.rejected:
            await self._staging.record_rejected(rows.rejected)

        logger.info(
            "Staged %d event(s) into %s (%d skipped)",
            stats.events_read,
            ", ".join(r.value for r in selected),
            stats.skipped,
        )
        return stats
