"""Repository pattern implementations for data access.

This module provides data access abstractions for the raw event log, the
staging relations, the contract/token catalogue, pipeline runs, and mart
tables.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import case, delete, func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from stacks_lakehouse.errors import DiscoveryConflict
from stacks_lakehouse.staging.models import (
    RawEvent,
    RejectedPayload,
    StagedBlock,
    StagedEvent,
    StagedOperation,
    StagedTransaction,
)
from stacks_lakehouse.storage.models import (
    Base,
    ContractModel,
    PipelineRunModel,
    RawEventModel,
    RejectedPayloadModel,
    StagedBlockModel,
    StagedEventModel,
    StagedOperationModel,
    StagedTransactionModel,
    TokenModel,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Keeps multi-row statements well under SQLite's bound-parameter limit.
WRITE_CHUNK_SIZE = 500


class WriteDisposition(str, Enum):
    """How a step's output is written to its destination relation."""

    OVERWRITE = "overwrite"
    APPEND = "append"
    MERGE = "merge"


class ContractStatus(str, Enum):
    DISCOVERED = "discovered"
    ANALYZING = "analyzing"
    ANALYZED = "analyzed"
    ERROR = "error"


class TokenStatus(str, Enum):
    PENDING = "pending"
    VALIDATED = "validated"
    FAILED = "failed"


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _insert(session: AsyncSession, model: type[Base]) -> Any:
    """Return a dialect-specific INSERT supporting ON CONFLICT clauses."""
    if session.bind is not None and session.bind.dialect.name == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)


def _chunks(rows: Sequence[dict[str, Any]]) -> Iterable[Sequence[dict[str, Any]]]:
    for start in range(0, len(rows), WRITE_CHUNK_SIZE):
        yield rows[start : start + WRITE_CHUNK_SIZE]


def _dedupe(rows: Sequence[dict[str, Any]], key: Sequence[str]) -> list[dict[str, Any]]:
    """Keep the last row per key so one statement never touches a row twice."""
    by_key: dict[tuple[Any, ...], dict[str, Any]] = {}
    for row in rows:
        by_key[tuple(row[k] for k in key)] = row
    return list(by_key.values())


async def upsert_rows(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    *,
    key: Sequence[str],
) -> int:
    """Insert rows, replacing every non-key column of rows that already exist."""
    rows = _dedupe(rows, key)
    for chunk in _chunks(rows):
        stmt = _insert(session, model).values(list(chunk))
        stmt = stmt.on_conflict_do_update(
            index_elements=list(key),
            set_={column: stmt.excluded[column] for column in chunk[0] if column not in key},
        )
        await session.execute(stmt)
    await session.flush()
    return len(rows)


async def insert_missing_rows(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    *,
    key: Sequence[str],
) -> int:
    """Insert rows whose key is absent; existing rows are left untouched."""
    rows = _dedupe(rows, key)
    for chunk in _chunks(rows):
        stmt = _insert(session, model).values(list(chunk))
        stmt = stmt.on_conflict_do_nothing(index_elements=list(key))
        await session.execute(stmt)
    await session.flush()
    return len(rows)


async def write_rows(
    session: AsyncSession,
    model: type[Base],
    rows: Sequence[dict[str, Any]],
    *,
    key: Sequence[str],
    disposition: WriteDisposition,
) -> int:
    """Write rows to a relation according to the step's disposition."""
    if disposition == WriteDisposition.OVERWRITE:
        await session.execute(delete(model))
        return await upsert_rows(session, model, rows, key=key)
    if disposition == WriteDisposition.APPEND:
        return await insert_missing_rows(session, model, rows, key=key)
    return await upsert_rows(session, model, rows, key=key)


# ============================================================================
# Raw event log
# ============================================================================


class RawEventRepository:
    """Read access to the append-only raw event log."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def append(self, event: RawEvent) -> None:
        """Append a payload (used by the ingestion boundary and fixtures)."""
        body = event.body_json
        if not isinstance(body, str):
            body = json.dumps(body)
        await insert_missing_rows(
            self.session,
            RawEventModel,
            [
                {
                    "event_id": event.event_id,
                    "received_at": event.received_at,
                    "webhook_path": event.webhook_path,
                    "body_json": body,
                }
            ],
            key=["event_id"],
        )

    async def list_events(
        self,
        *,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[RawEvent]:
        query = select(RawEventModel)
        if since is not None:
            query = query.where(RawEventModel.received_at >= since)
        if until is not None:
            query = query.where(RawEventModel.received_at < until)
        result = await self.session.execute(
            query.order_by(RawEventModel.received_at.asc(), RawEventModel.event_id.asc())
        )
        return [
            RawEvent(
                event_id=m.event_id,
                received_at=as_utc(m.received_at) or datetime.now(UTC),
                webhook_path=m.webhook_path,
                body_json=m.body_json,
            )
            for m in result.scalars().all()
        ]


# ============================================================================
# Staging relations
# ============================================================================


def _staged_from_model(cls: type[Any], model: Base) -> Any:
    values = {f.name: getattr(model, f.name) for f in dataclasses.fields(cls)}
    for name in ("block_time", "received_at"):
        if name in values:
            values[name] = as_utc(values[name])
    return cls(**values)


class StagingRepository:
    """Keyed writes and windowed reads over the staging relations."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def upsert_blocks(self, rows: Sequence[StagedBlock]) -> int:
        return await upsert_rows(
            self.session, StagedBlockModel, [dataclasses.asdict(r) for r in rows], key=["block_hash"]
        )

    async def upsert_transactions(self, rows: Sequence[StagedTransaction]) -> int:
        return await upsert_rows(
            self.session, StagedTransactionModel, [dataclasses.asdict(r) for r in rows], key=["tx_hash"]
        )

    async def upsert_operations(self, rows: Sequence[StagedOperation]) -> int:
        return await upsert_rows(
            self.session,
            StagedOperationModel,
            [dataclasses.asdict(r) for r in rows],
            key=["tx_hash", "operation_index"],
        )

    async def upsert_events(self, rows: Sequence[StagedEvent]) -> int:
        return await upsert_rows(
            self.session,
            StagedEventModel,
            [dataclasses.asdict(r) for r in rows],
            key=["tx_hash", "position_index"],
        )

    async def record_rejected(self, rows: Sequence[RejectedPayload]) -> int:
        return await upsert_rows(
            self.session, RejectedPayloadModel, [dataclasses.asdict(r) for r in rows], key=["event_id"]
        )

    async def latest_received_at(self, model: Any) -> datetime | None:
        """Watermark: arrival time of the newest raw event staged into a relation."""
        result = await self.session.execute(select(func.max(model.received_at)))
        return as_utc(result.scalar())

    async def list_blocks(self, *, since: datetime | None = None) -> list[StagedBlock]:
        return await self._list(StagedBlockModel, StagedBlock, since)

    async def list_transactions(self, *, since: datetime | None = None) -> list[StagedTransaction]:
        return await self._list(StagedTransactionModel, StagedTransaction, since)

    async def list_operations(self, *, since: datetime | None = None) -> list[StagedOperation]:
        return await self._list(StagedOperationModel, StagedOperation, since)

    async def list_events(self, *, since: datetime | None = None) -> list[StagedEvent]:
        return await self._list(StagedEventModel, StagedEvent, since)

    async def list_rejected(self) -> list[RejectedPayload]:
        result = await self.session.execute(select(RejectedPayloadModel).order_by(RejectedPayloadModel.event_id))
        return [_staged_from_model(RejectedPayload, m) for m in result.scalars().all()]

    async def _list(self, model: Any, cls: type[Any], since: datetime | None) -> list[Any]:
        query = select(model)
        if since is not None:
            query = query.where(model.received_at >= since)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [_staged_from_model(cls, m) for m in result.scalars().all()]


# ============================================================================
# Catalogue
# ============================================================================


@dataclass
class ContractDTO:
    """Data transfer object for catalogued contracts."""

    contract_id: str
    deployer: str
    name: str
    transaction_count: int = 0
    last_seen: datetime | None = None
    discovery_sources: list[str] = field(default_factory=list)
    analysis_status: str = ContractStatus.DISCOVERED.value
    parsed_abi: dict[str, Any] | None = None
    source_code: str | None = None
    interfaces: list[str] = field(default_factory=list)
    classification: str | None = None
    classification_confidence: int | None = None
    classification_analysis: str | None = None
    classification_errors: list[str] = field(default_factory=list)
    analyzed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: ContractModel) -> ContractDTO:
        return cls(
            contract_id=model.contract_id,
            deployer=model.deployer,
            name=model.name,
            transaction_count=model.transaction_count,
            last_seen=as_utc(model.last_seen),
            discovery_sources=list(model.discovery_sources or []),
            analysis_status=model.analysis_status,
            parsed_abi=model.parsed_abi,
            source_code=model.source_code,
            interfaces=list(model.interfaces or []),
            classification=model.classification,
            classification_confidence=model.classification_confidence,
            classification_analysis=model.classification_analysis,
            classification_errors=list(model.classification_errors or []),
            analyzed_at=as_utc(model.analyzed_at),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )

    def to_row(self) -> dict[str, Any]:
        row = dataclasses.asdict(self)
        row.pop("created_at")
        row["updated_at"] = datetime.now(UTC)
        return row


@dataclass
class TokenDTO:
    """Data transfer object for catalogued tokens."""

    contract_id: str
    token_type: str
    detection_score: int = 0
    name: str | None = None
    symbol: str | None = None
    decimals: int | None = None
    total_supply: Decimal | None = None
    token_uri: str | None = None
    image_url: str | None = None
    description: str | None = None
    validation_status: str = TokenStatus.PENDING.value
    validation_errors: list[str] = field(default_factory=list)
    enrichment_attempts: int = 0
    transaction_count: int = 0
    last_seen: datetime | None = None
    validated_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: TokenModel) -> TokenDTO:
        return cls(
            contract_id=model.contract_id,
            token_type=model.token_type,
            detection_score=model.detection_score,
            name=model.name,
            symbol=model.symbol,
            decimals=model.decimals,
            total_supply=model.total_supply,
            token_uri=model.token_uri,
            image_url=model.image_url,
            description=model.description,
            validation_status=model.validation_status,
            validation_errors=list(model.validation_errors or []),
            enrichment_attempts=model.enrichment_attempts,
            transaction_count=model.transaction_count,
            last_seen=as_utc(model.last_seen),
            validated_at=as_utc(model.validated_at),
            created_at=as_utc(model.created_at),
            updated_at=as_utc(model.updated_at),
        )

    def to_row(self) -> dict[str, Any]:
        row = dataclasses.asdict(self)
        row.pop("created_at")
        row["updated_at"] = datetime.now(UTC)
        return row


class ContractRepository:
    """Catalogue access for contracts.

    Discovery only calls ``insert_if_absent``; enrichment and classification
    only call ``save`` on rows they loaded by identifier.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, contracts: Sequence[ContractDTO]) -> list[ContractDTO]:
        """Insert contracts whose identifier is not catalogued yet.

        Returns:
            The contracts that were newly inserted.
        """
        if not contracts:
            return []
        ids = [c.contract_id for c in contracts]
        existing = set(
            (await self.session.execute(select(ContractModel.contract_id).where(ContractModel.contract_id.in_(ids))))
            .scalars()
            .all()
        )
        new = [c for c in contracts if c.contract_id not in existing]
        now = datetime.now(UTC)
        rows = []
        for contract in new:
            row = contract.to_row()
            row["created_at"] = now
            rows.append(row)
        await insert_missing_rows(self.session, ContractModel, rows, key=["contract_id"])
        return new

    async def insert(self, contract: ContractDTO) -> ContractDTO:
        """Insert a single contract.

        Raises:
            DiscoveryConflict: If the identifier is already catalogued.
        """
        if not await self.insert_if_absent([contract]):
            raise DiscoveryConflict(contract.contract_id)
        return contract

    async def get(self, contract_id: str) -> ContractDTO | None:
        model = await self.session.get(ContractModel, contract_id, populate_existing=True)
        return ContractDTO.from_model(model) if model else None

    async def list_by_status(
        self,
        status: ContractStatus,
        *,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ContractDTO]:
        query = (
            select(ContractModel)
            .where(ContractModel.analysis_status == status.value)
            .order_by(
                ContractModel.transaction_count.desc(),
                ContractModel.last_seen.desc(),
                ContractModel.contract_id.asc(),
            )
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [ContractDTO.from_model(m) for m in result.scalars().all()]

    async def list_all(self, *, limit: int | None = None, offset: int = 0) -> list[ContractDTO]:
        query = (
            select(ContractModel)
            .order_by(ContractModel.transaction_count.desc(), ContractModel.contract_id.asc())
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [ContractDTO.from_model(m) for m in result.scalars().all()]

    async def save(self, contract: ContractDTO) -> ContractDTO:
        """Whole-row upsert of a contract the caller already owns."""
        row = contract.to_row()
        row["created_at"] = contract.created_at or datetime.now(UTC)
        await upsert_rows(self.session, ContractModel, [row], key=["contract_id"])
        return contract

    async def count_discovered_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(ContractModel)
            .where(
                (ContractModel.analysis_status == ContractStatus.DISCOVERED.value)
                & (ContractModel.created_at >= since)
            )
        )
        return int(result.scalar() or 0)

    async def request_reanalysis(self, contract_id: str) -> bool:
        """Explicitly send an analyzed/errored contract back to ``discovered``."""
        contract = await self.get(contract_id)
        if contract is None:
            return False
        contract.analysis_status = ContractStatus.DISCOVERED.value
        contract.classification_errors = []
        await self.save(contract)
        logger.info("Contract %s queued for re-analysis", contract_id)
        return True


class TokenRepository:
    """Catalogue access for tokens."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_if_absent(self, tokens: Sequence[TokenDTO]) -> list[TokenDTO]:
        if not tokens:
            return []
        ids = [t.contract_id for t in tokens]
        existing = set(
            (await self.session.execute(select(TokenModel.contract_id).where(TokenModel.contract_id.in_(ids))))
            .scalars()
            .all()
        )
        new = [t for t in tokens if t.contract_id not in existing]
        now = datetime.now(UTC)
        rows = []
        for token in new:
            row = token.to_row()
            row["created_at"] = now
            rows.append(row)
        await insert_missing_rows(self.session, TokenModel, rows, key=["contract_id"])
        return new

    async def get(self, contract_id: str) -> TokenDTO | None:
        model = await self.session.get(TokenModel, contract_id, populate_existing=True)
        return TokenDTO.from_model(model) if model else None

    async def get_many(self, contract_ids: Iterable[str]) -> dict[str, TokenDTO]:
        ids = sorted(set(contract_ids))
        if not ids:
            return {}
        query = select(TokenModel).where(TokenModel.contract_id.in_(ids))
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return {m.contract_id: TokenDTO.from_model(m) for m in result.scalars().all()}

    async def list_pending(self, *, limit: int) -> list[TokenDTO]:
        """Pending tokens, full-standard tokens first, then by activity."""
        full_first = case((TokenModel.token_type == "full_token", 0), else_=1)
        result = await self.session.execute(
            select(TokenModel)
            .where(TokenModel.validation_status == TokenStatus.PENDING.value)
            .order_by(
                full_first,
                TokenModel.transaction_count.desc(),
                TokenModel.last_seen.desc(),
                TokenModel.contract_id.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def list_tokens(
        self,
        *,
        status: TokenStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TokenDTO]:
        query = select(TokenModel)
        if status is not None:
            query = query.where(TokenModel.validation_status == status.value)
        query = query.order_by(TokenModel.transaction_count.desc(), TokenModel.contract_id.asc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query.execution_options(populate_existing=True))
        return [TokenDTO.from_model(m) for m in result.scalars().all()]

    async def count_pending_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TokenModel)
            .where(
                (TokenModel.validation_status == TokenStatus.PENDING.value)
                & (TokenModel.created_at >= since)
            )
        )
        return int(result.scalar() or 0)

    async def save(self, token: TokenDTO) -> TokenDTO:
        """Whole-row upsert of a token the caller already owns."""
        row = token.to_row()
        row["created_at"] = token.created_at or datetime.now(UTC)
        await upsert_rows(self.session, TokenModel, [row], key=["contract_id"])
        return token


# ============================================================================
# Pipeline runs
# ============================================================================


@dataclass
class PipelineRunDTO:
    """Data transfer object for pipeline runs."""

    run_id: str
    stage: str
    status: str
    started_at: datetime
    marts: list[str] | None = None
    steps: list[dict[str, Any]] = field(default_factory=list)
    failed_step: str | None = None
    error: str | None = None
    finished_at: datetime | None = None

    @classmethod
    def from_model(cls, model: PipelineRunModel) -> PipelineRunDTO:
        return cls(
            run_id=model.run_id,
            stage=model.stage,
            status=model.status,
            started_at=as_utc(model.started_at) or datetime.now(UTC),
            marts=model.marts,
            steps=list(model.steps or []),
            failed_step=model.failed_step,
            error=model.error,
            finished_at=as_utc(model.finished_at),
        )


class PipelineRunRepository:
    """Repository for pipeline run records."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def save(self, run: PipelineRunDTO) -> PipelineRunDTO:
        await upsert_rows(self.session, PipelineRunModel, [dataclasses.asdict(run)], key=["run_id"])
        return run

    async def get(self, run_id: str) -> PipelineRunDTO | None:
        model = await self.session.get(PipelineRunModel, run_id, populate_existing=True)
        return PipelineRunDTO.from_model(model) if model else None

    async def list_recent(self, *, limit: int = 10) -> list[PipelineRunDTO]:
        result = await self.session.execute(
            select(PipelineRunModel).order_by(PipelineRunModel.started_at.desc()).limit(limit)
        )
        return [PipelineRunDTO.from_model(m) for m in result.scalars().all()]
