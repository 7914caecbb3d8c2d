"""Initial schema: raw event log, staging, catalogue, pipeline runs and marts.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

CONTRACT_ID_LENGTH = 180


def _audit_columns() -> list[sa.Column]:
    return [
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("webhook_path", sa.String(255), nullable=False, server_default=""),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    # Raw event log (append-only, written by the ingestion front door)
    op.create_table(
        "raw_events",
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("webhook_path", sa.String(255), nullable=False, server_default=""),
        sa.Column("body_json", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )
    op.create_index("idx_raw_events_received_at", "raw_events", ["received_at"])

    # Staging relations
    op.create_table(
        "stg_blocks",
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_index", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("bitcoin_anchor_hash", sa.String(66), nullable=True),
        sa.Column("bitcoin_anchor_index", sa.BigInteger(), nullable=True),
        sa.Column("stacks_block_hash", sa.String(66), nullable=True),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chainhook_uuid", sa.String(64), nullable=True),
        sa.Column("is_streaming_blocks", sa.Boolean(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("block_hash"),
    )
    op.create_index("idx_stg_blocks_block_index", "stg_blocks", ["block_index"])
    op.create_index("idx_stg_blocks_received_at", "stg_blocks", ["received_at"])

    op.create_table(
        "stg_transactions",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_index", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("fee", sa.BigInteger(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=True),
        sa.Column("sender", sa.String(64), nullable=True),
        sa.Column("contract_identifier", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("operation_count", sa.Integer(), nullable=False, server_default="0"),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("tx_hash"),
    )
    op.create_index("idx_stg_transactions_block_hash", "stg_transactions", ["block_hash"])
    op.create_index("idx_stg_transactions_received_at", "stg_transactions", ["received_at"])

    op.create_table(
        "stg_address_operations",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("operation_index", sa.Integer(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("operation_type", sa.String(64), nullable=True),
        sa.Column("address", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("amount", sa.Numeric(40, 0), nullable=True),
        sa.Column("contract_identifier", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("function_name", sa.String(128), nullable=True),
        sa.Column("function_args", sa.JSON(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("tx_hash", "operation_index"),
    )
    op.create_index("idx_stg_operations_address", "stg_address_operations", ["address"])
    op.create_index("idx_stg_operations_contract", "stg_address_operations", ["contract_identifier"])

    op.create_table(
        "stg_events",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("position_index", sa.Integer(), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=True),
        sa.Column("contract_identifier", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("topic", sa.String(64), nullable=True),
        sa.Column("action", sa.String(128), nullable=True),
        sa.Column("sender", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("recipient", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("amount", sa.Numeric(40, 0), nullable=True),
        sa.Column("asset_identifier", sa.String(320), nullable=True),
        sa.Column("raw_event", sa.JSON(), nullable=True),
        *_audit_columns(),
        sa.PrimaryKeyConstraint("tx_hash", "position_index"),
    )
    op.create_index("idx_stg_events_contract", "stg_events", ["contract_identifier"])
    op.create_index("idx_stg_events_type", "stg_events", ["event_type"])

    op.create_table(
        "stg_rejected_payloads",
        sa.Column("event_id", sa.String(64), nullable=False),
        sa.Column("kind", sa.String(16), nullable=False),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("body_json", sa.Text(), nullable=False),
        sa.Column("webhook_path", sa.String(255), nullable=False, server_default=""),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("captured_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("event_id"),
    )

    # Catalogue
    op.create_table(
        "contracts",
        sa.Column("contract_id", sa.String(CONTRACT_ID_LENGTH), nullable=False),
        sa.Column("deployer", sa.String(64), nullable=False),
        sa.Column("name", sa.String(128), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discovery_sources", sa.JSON(), nullable=False),
        sa.Column("analysis_status", sa.String(16), nullable=False, server_default="discovered"),
        sa.Column("parsed_abi", sa.JSON(), nullable=True),
        sa.Column("source_code", sa.Text(), nullable=True),
        sa.Column("interfaces", sa.JSON(), nullable=False),
        sa.Column("classification", sa.String(64), nullable=True),
        sa.Column("classification_confidence", sa.Integer(), nullable=True),
        sa.Column("classification_errors", sa.JSON(), nullable=False),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("contract_id"),
    )
    op.create_index("idx_contracts_status", "contracts", ["analysis_status"])
    op.create_index("idx_contracts_tx_count", "contracts", ["transaction_count"])

    op.create_table(
        "tokens",
        sa.Column("contract_id", sa.String(CONTRACT_ID_LENGTH), nullable=False),
        sa.Column("token_type", sa.String(32), nullable=False),
        sa.Column("detection_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("symbol", sa.String(64), nullable=True),
        sa.Column("decimals", sa.Integer(), nullable=True),
        sa.Column("total_supply", sa.Numeric(40, 0), nullable=True),
        sa.Column("token_uri", sa.Text(), nullable=True),
        sa.Column("image_url", sa.Text(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("validation_status", sa.String(16), nullable=False, server_default="pending"),
        sa.Column("validation_errors", sa.JSON(), nullable=False),
        sa.Column("enrichment_attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("transaction_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_seen", sa.DateTime(timezone=True), nullable=True),
        sa.Column("validated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("contract_id"),
    )
    op.create_index("idx_tokens_status", "tokens", ["validation_status"])
    op.create_index("idx_tokens_type", "tokens", ["token_type"])

    # Pipeline runs
    op.create_table(
        "pipeline_runs",
        sa.Column("run_id", sa.String(36), nullable=False),
        sa.Column("stage", sa.String(16), nullable=False),
        sa.Column("marts", sa.JSON(), nullable=True),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("steps", sa.JSON(), nullable=False),
        sa.Column("failed_step", sa.String(64), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("run_id"),
    )
    op.create_index("idx_pipeline_runs_started_at", "pipeline_runs", ["started_at"])

    # Marts
    op.create_table(
        "dim_blocks",
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_index", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("total_fees", sa.BigInteger(), nullable=False),
        sa.Column("successful_transactions", sa.Integer(), nullable=False),
        sa.Column("failed_transactions", sa.Integer(), nullable=False),
        sa.Column("success_rate", sa.Float(), nullable=True),
        sa.Column("avg_fee", sa.Float(), nullable=True),
        sa.Column("unique_addresses", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("block_hash"),
    )

    op.create_table(
        "dim_transactions",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("block_hash", sa.String(66), nullable=False),
        sa.Column("block_index", sa.BigInteger(), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("transaction_type", sa.String(32), nullable=False),
        sa.Column("fee", sa.BigInteger(), nullable=True),
        sa.Column("fee_category", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("operation_count", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash"),
    )

    op.create_table(
        "fact_daily_activity",
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("webhook_path", sa.String(255), nullable=False),
        sa.Column("block_count", sa.Integer(), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("successful_transactions", sa.Integer(), nullable=False),
        sa.Column("total_fees", sa.BigInteger(), nullable=False),
        sa.Column("unique_addresses", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("activity_date", "webhook_path"),
    )

    op.create_table(
        "dim_smart_contract_activity",
        sa.Column("contract_id", sa.String(CONTRACT_ID_LENGTH), nullable=False),
        sa.Column("activity_date", sa.Date(), nullable=False),
        sa.Column("activity_hour", sa.Integer(), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("protocol_category", sa.String(32), nullable=False),
        sa.Column("event_count", sa.Integer(), nullable=False),
        sa.Column("transaction_count", sa.Integer(), nullable=False),
        sa.Column("activity_level", sa.String(16), nullable=False),
        sa.PrimaryKeyConstraint("contract_id", "activity_date", "activity_hour", "action"),
    )

    op.create_table(
        "dim_defi_swaps",
        sa.Column("tx_hash", sa.String(66), nullable=False),
        sa.Column("position_index", sa.Integer(), nullable=False),
        sa.Column("contract_id", sa.String(CONTRACT_ID_LENGTH), nullable=False),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("block_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("pool_name", sa.String(255), nullable=True),
        sa.Column("x_token", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("y_token", sa.String(CONTRACT_ID_LENGTH), nullable=True),
        sa.Column("x_amount", sa.Numeric(40, 0), nullable=True),
        sa.Column("dy", sa.Numeric(40, 0), nullable=True),
        sa.Column("fees_protocol", sa.Numeric(40, 0), nullable=True),
        sa.Column("fees_provider", sa.Numeric(40, 0), nullable=True),
        sa.Column("swap_size_category", sa.String(16), nullable=False),
        sa.PrimaryKeyConstraint("tx_hash", "position_index"),
    )

    op.create_table(
        "fact_defi_metrics",
        sa.Column("metric_date", sa.Date(), nullable=False),
        sa.Column("dex_contracts", sa.Integer(), nullable=False),
        sa.Column("lending_contracts", sa.Integer(), nullable=False),
        sa.Column("stacking_contracts", sa.Integer(), nullable=False),
        sa.Column("swap_count", sa.Integer(), nullable=False),
        sa.Column("swap_volume", sa.Numeric(40, 0), nullable=False),
        sa.PrimaryKeyConstraint("metric_date"),
    )


def downgrade() -> None:
    for table in (
        "fact_defi_metrics",
        "dim_defi_swaps",
        "dim_smart_contract_activity",
        "fact_daily_activity",
        "dim_transactions",
        "dim_blocks",
    ):
        op.drop_table(table)

    op.drop_index("idx_pipeline_runs_started_at", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")

    op.drop_index("idx_tokens_type", table_name="tokens")
    op.drop_index("idx_tokens_status", table_name="tokens")
    op.drop_table("tokens")

    op.drop_index("idx_contracts_tx_count", table_name="contracts")
    op.drop_index("idx_contracts_status", table_name="contracts")
    op.drop_table("contracts")

    op.drop_table("stg_rejected_payloads")

    op.drop_index("idx_stg_events_type", table_name="stg_events")
    op.drop_index("idx_stg_events_contract", table_name="stg_events")
    op.drop_table("stg_events")

    op.drop_index("idx_stg_operations_contract", table_name="stg_address_operations")
    op.drop_index("idx_stg_operations_address", table_name="stg_address_operations")
    op.drop_table("stg_address_operations")

    op.drop_index("idx_stg_transactions_received_at", table_name="stg_transactions")
    op.drop_index("idx_stg_transactions_block_hash", table_name="stg_transactions")
    op.drop_table("stg_transactions")

    op.drop_index("idx_stg_blocks_received_at", table_name="stg_blocks")
    op.drop_index("idx_stg_blocks_block_index", table_name="stg_blocks")
    op.drop_table("stg_blocks")

    op.drop_index("idx_raw_events_received_at", table_name="raw_events")
    op.drop_table("raw_events")
