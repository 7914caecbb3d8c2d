"""SQLAlchemy models for persistent storage.

This module defines the database schema for the raw event log, the
staging relations, the contract/token catalogue, pipeline runs, and the
dimension/fact marts.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


# Stacks contract identifiers are "<principal>.<name>" with names up to 128 chars.
CONTRACT_ID_LENGTH = 180


class RawEventModel(Base):
    """Append-only log of inbound chainhook payloads (written by the ingestion front door)."""

    __tablename__ = "raw_events"

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    body_json: Mapped[str] = mapped_column(Text, nullable=False)

    __table_args__ = (Index("idx_raw_events_received_at", "received_at"),)


class StagedBlockModel(Base):
    """One row per applied block."""

    __tablename__ = "stg_blocks"

    block_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    bitcoin_anchor_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    bitcoin_anchor_index: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    stacks_block_hash: Mapped[str | None] = mapped_column(String(66), nullable=True)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    chainhook_uuid: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_streaming_blocks: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_stg_blocks_block_index", "block_index"),
        Index("idx_stg_blocks_received_at", "received_at"),
    )


class StagedTransactionModel(Base):
    """One row per transaction inside an applied block."""

    __tablename__ = "stg_transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    fee: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    success: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sender: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contract_identifier: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    operation_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_stg_transactions_block_hash", "block_hash"),
        Index("idx_stg_transactions_received_at", "received_at"),
    )


class StagedOperationModel(Base):
    """One row per address operation inside a transaction."""

    __tablename__ = "stg_address_operations"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    operation_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    operation_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    address: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    contract_identifier: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    function_name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    function_args: Mapped[list[Any] | None] = mapped_column(JSON, nullable=True)

    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_stg_operations_address", "address"),
        Index("idx_stg_operations_contract", "contract_identifier"),
    )


class StagedEventModel(Base):
    """One row per receipt event inside a transaction."""

    __tablename__ = "stg_events"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    position_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    event_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    contract_identifier: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    topic: Mapped[str | None] = mapped_column(String(64), nullable=True)
    action: Mapped[str | None] = mapped_column(String(128), nullable=True)
    sender: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    recipient: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    asset_identifier: Mapped[str | None] = mapped_column(String(320), nullable=True)
    raw_event: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    event_id: Mapped[str] = mapped_column(String(64), nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_stg_events_contract", "contract_identifier"),
        Index("idx_stg_events_type", "event_type"),
    )


class RejectedPayloadModel(Base):
    """Raw payloads that could not be fully staged, captured verbatim."""

    __tablename__ = "stg_rejected_payloads"

    event_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    body_json: Mapped[str] = mapped_column(Text, nullable=False)
    webhook_path: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    received_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )


class ContractModel(Base):
    """Catalogue of discovered smart contracts."""

    __tablename__ = "contracts"

    contract_id: Mapped[str] = mapped_column(String(CONTRACT_ID_LENGTH), primary_key=True)
    deployer: Mapped[str] = mapped_column(String(64), nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    discovery_sources: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    analysis_status: Mapped[str] = mapped_column(String(16), nullable=False, default="discovered")
    parsed_abi: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    source_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    interfaces: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    classification: Mapped[str | None] = mapped_column(String(64), nullable=True)
    classification_confidence: Mapped[int | None] = mapped_column(Integer, nullable=True)
    classification_analysis: Mapped[str | None] = mapped_column(Text, nullable=True)
    classification_errors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_contracts_status", "analysis_status"),
        Index("idx_contracts_tx_count", "transaction_count"),
    )


class TokenModel(Base):
    """Catalogue of fungible tokens (one row per contract identifier)."""

    __tablename__ = "tokens"

    # Logically references contracts.contract_id; no FK so tokens stay independently insertable.
    contract_id: Mapped[str] = mapped_column(String(CONTRACT_ID_LENGTH), primary_key=True)
    token_type: Mapped[str] = mapped_column(String(32), nullable=False)
    detection_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    symbol: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decimals: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_supply: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    token_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    image_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    validation_status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending")
    validation_errors: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    enrichment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_seen: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_tokens_status", "validation_status"),
        Index("idx_tokens_type", "token_type"),
    )


class PipelineRunModel(Base):
    """One row per orchestrator invocation (observability only)."""

    __tablename__ = "pipeline_runs"

    run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    stage: Mapped[str] = mapped_column(String(16), nullable=False)
    marts: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    failed_step: Mapped[str | None] = mapped_column(String(64), nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (Index("idx_pipeline_runs_started_at", "started_at"),)


# ============================================================================
# Marts
# ============================================================================


class DimBlockModel(Base):
    __tablename__ = "dim_blocks"

    block_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    total_fees: Mapped[int] = mapped_column(BigInteger, nullable=False)
    successful_transactions: Mapped[int] = mapped_column(Integer, nullable=False)
    failed_transactions: Mapped[int] = mapped_column(Integer, nullable=False)
    success_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    avg_fee: Mapped[float | None] = mapped_column(Float, nullable=True)
    unique_addresses: Mapped[int] = mapped_column(Integer, nullable=False)


class DimTransactionModel(Base):
    __tablename__ = "dim_transactions"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    block_hash: Mapped[str] = mapped_column(String(66), nullable=False)
    block_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    fee: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    fee_category: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    operation_count: Mapped[int] = mapped_column(Integer, nullable=False)


class FactDailyActivityModel(Base):
    __tablename__ = "fact_daily_activity"

    activity_date: Mapped[date] = mapped_column(Date, primary_key=True)
    webhook_path: Mapped[str] = mapped_column(String(255), primary_key=True)
    block_count: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    successful_transactions: Mapped[int] = mapped_column(Integer, nullable=False)
    total_fees: Mapped[int] = mapped_column(BigInteger, nullable=False)
    unique_addresses: Mapped[int] = mapped_column(Integer, nullable=False)


class DimContractActivityModel(Base):
    __tablename__ = "dim_smart_contract_activity"

    contract_id: Mapped[str] = mapped_column(String(CONTRACT_ID_LENGTH), primary_key=True)
    activity_date: Mapped[date] = mapped_column(Date, primary_key=True)
    activity_hour: Mapped[int] = mapped_column(Integer, primary_key=True)
    action: Mapped[str] = mapped_column(String(128), primary_key=True)
    protocol_category: Mapped[str] = mapped_column(String(32), nullable=False)
    event_count: Mapped[int] = mapped_column(Integer, nullable=False)
    transaction_count: Mapped[int] = mapped_column(Integer, nullable=False)
    activity_level: Mapped[str] = mapped_column(String(16), nullable=False)


class DimDefiSwapModel(Base):
    __tablename__ = "dim_defi_swaps"

    tx_hash: Mapped[str] = mapped_column(String(66), primary_key=True)
    position_index: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_id: Mapped[str] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    block_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pool_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    x_token: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    y_token: Mapped[str | None] = mapped_column(String(CONTRACT_ID_LENGTH), nullable=True)
    x_amount: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    dy: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    fees_protocol: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    fees_provider: Mapped[Decimal | None] = mapped_column(Numeric(40, 0), nullable=True)
    swap_size_category: Mapped[str] = mapped_column(String(16), nullable=False)


class FactDefiMetricsModel(Base):
    __tablename__ = "fact_defi_metrics"

    metric_date: Mapped[date] = mapped_column(Date, primary_key=True)
    dex_contracts: Mapped[int] = mapped_column(Integer, nullable=False)
    lending_contracts: Mapped[int] = mapped_column(Integer, nullable=False)
    stacking_contracts: Mapped[int] = mapped_column(Integer, nullable=False)
    swap_count: Mapped[int] = mapped_column(Integer, nullable=False)
    swap_volume: Mapped[Decimal] = mapped_column(Numeric(40, 0), nullable=False)
