"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from stacks_lakehouse.staging.models import RawEvent
from stacks_lakehouse.storage.database import create_async_session_factory, session_scope
from stacks_lakehouse.storage.models import Base

DEPLOYER = "SP2C2YFP12AJZB4MABJBAJ55XECVS7E4PMMZ89YZR"
SENDER = "SP3K8BC0PPEVCV7NZ6QSRWPQ2JE9E5B6N3PA0KBR9"
TOKEN_CONTRACT = f"{DEPLOYER}.welsh-token"
POOL_CONTRACT = f"{DEPLOYER}.amm-pool-v2-01"

# ============================================================================
# Database
# ============================================================================


@pytest.fixture
async def async_engine():
    """Create an async in-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine):
    return create_async_session_factory(async_engine)


@pytest.fixture
async def async_session(session_factory) -> AsyncSession:
    """Create an async session for testing."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def session_provider(session_factory):
    """Transactional session scopes, as handed to the orchestrator."""
    return lambda: session_scope(session_factory)


# ============================================================================
# Chainhook payloads
# ============================================================================


def contract_call_tx(
    tx_hash: str,
    *,
    contract_id: str = TOKEN_CONTRACT,
    function: str = "transfer",
    fee: int | str = 3000,
    success: bool = True,
    sender: str = SENDER,
    events: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "transaction_identifier": {"hash": tx_hash},
        "operations": [
            {
                "operation_identifier": {"index": 0},
                "type": "CONTRACT_CALL",
                "account": {"address": sender},
                "contract_identifier": contract_id,
                "function_name": function,
                "args": ["u100"],
            },
            {
                "operation_identifier": {"index": 1},
                "type": "DEBIT",
                "account": {"address": sender},
                "amount": {"value": "100", "currency": {"symbol": "STX", "decimals": 6}},
            },
        ],
        "metadata": {
            "description": f"invoked: {contract_id}::{function}(u100)",
            "fee": fee,
            "success": success,
            "sender": sender,
            "kind": {"type": "ContractCall", "data": {"contract_identifier": contract_id, "method": function}},
            "receipt": {"events": events or []},
        },
    }


def ft_transfer_event(index: int, *, asset: str, sender: str, recipient: str, amount: str) -> dict[str, Any]:
    return {
        "type": "FTTransferEvent",
        "position": {"index": index},
        "data": {"asset_identifier": asset, "sender": sender, "recipient": recipient, "amount": amount},
    }


def swap_event(index: int, *, contract_id: str = POOL_CONTRACT, x_amount: str | None = "5000000") -> dict[str, Any]:
    data: dict[str, Any] = {
        "pool-name": "STX-WELSH",
        "x-token": "SP000000000000000000002Q6VF78.wstx",
        "y-token": TOKEN_CONTRACT,
        "dy": "1200",
        "x-amount-fees-protocol": "50",
        "x-amount-fees-provider": "100",
    }
    if x_amount is not None:
        data["x-amount"] = x_amount
    return {
        "type": "SmartContractEvent",
        "position": {"index": index},
        "data": {
            "contract_identifier": contract_id,
            "topic": "print",
            "value": {"action": "swap-x-for-y", "data": data},
        },
    }


def chainhook_block(
    block_hash: str,
    index: int,
    transactions: list[dict[str, Any]],
    *,
    block_time: int | None = 1760745600,
) -> dict[str, Any]:
    metadata: dict[str, Any] = {
        "bitcoin_anchor_block_identifier": {"hash": "0x" + "b" * 64, "index": 915000 + index},
        "stacks_block_hash": "0x" + "c" * 64,
    }
    if block_time is not None:
        metadata["block_time"] = block_time
    return {
        "block_identifier": {"hash": block_hash, "index": index},
        "metadata": metadata,
        "transactions": transactions,
    }


def chainhook_payload(*blocks: dict[str, Any]) -> dict[str, Any]:
    return {
        "apply": list(blocks),
        "rollback": [],
        "chainhook": {"uuid": "4c2a1f3e-hook", "is_streaming_blocks": True},
    }


@pytest.fixture
def make_raw_event() -> Callable[..., RawEvent]:
    """Build a raw event around a body, stamped with the current time by default."""

    def build(
        event_id: str,
        body: str | dict[str, Any],
        *,
        received_at: datetime | None = None,
        webhook_path: str = "/chainhook/mainnet",
    ) -> RawEvent:
        return RawEvent(
            event_id=event_id,
            received_at=received_at or datetime.now(UTC),
            webhook_path=webhook_path,
            body_json=body,
        )

    return build


@pytest.fixture
def sample_payload() -> dict[str, Any]:
    """One block with a token call and a DEX swap."""
    return chainhook_payload(
        chainhook_block(
            "0x" + "1" * 64,
            180000,
            [
                contract_call_tx(
                    "0x" + "a" * 64,
                    events=[
                        ft_transfer_event(
                            0,
                            asset=f"{TOKEN_CONTRACT}::welshcorgicoin",
                            sender=SENDER,
                            recipient=POOL_CONTRACT,
                            amount="2500000",
                        )
                    ],
                ),
                contract_call_tx(
                    "0x" + "d" * 64,
                    contract_id=POOL_CONTRACT,
                    function="swap-x-for-y",
                    fee=12000,
                    events=[swap_event(0)],
                ),
            ],
        )
    )
