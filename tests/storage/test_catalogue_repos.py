"""Tests for storage repositories."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from conftest import DEPLOYER, POOL_CONTRACT, TOKEN_CONTRACT
from sqlalchemy import select

from stacks_lakehouse.errors import DiscoveryConflict
from stacks_lakehouse.staging.payloads import parse_payload, to_staging_rows
from stacks_lakehouse.storage.models import StagedBlockModel
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    PipelineRunDTO,
    PipelineRunRepository,
    RawEventRepository,
    StagingRepository,
    TokenDTO,
    TokenRepository,
    TokenStatus,
    WriteDisposition,
    write_rows,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=UTC)


def contract(contract_id: str, **kwargs) -> ContractDTO:
    deployer, name = contract_id.split(".")
    return ContractDTO(contract_id=contract_id, deployer=deployer, name=name, **kwargs)


# ============================================================================
# Raw event log
# ============================================================================


class TestRawEventRepository:
    async def test_append_is_idempotent(self, async_session, make_raw_event, sample_payload) -> None:
        repo = RawEventRepository(async_session)
        await repo.append(make_raw_event("evt-1", sample_payload, received_at=NOW))
        await repo.append(make_raw_event("evt-1", "{}", received_at=NOW))

        events = await repo.list_events()

        assert len(events) == 1
        assert events[0].body_json.startswith("{")
        assert "apply" in events[0].body_json
        assert events[0].received_at == NOW

    async def test_window(self, async_session, make_raw_event) -> None:
        repo = RawEventRepository(async_session)
        for i in range(3):
            await repo.append(make_raw_event(f"evt-{i}", "{}", received_at=NOW + timedelta(minutes=i)))

        events = await repo.list_events(since=NOW + timedelta(minutes=1), until=NOW + timedelta(minutes=2))

        assert [e.event_id for e in events] == ["evt-1"]


# ============================================================================
# Staging
# ============================================================================


class TestStagingRepository:
    async def test_upsert_replaces_rows_by_key(self, async_session, make_raw_event, sample_payload) -> None:
        staging = StagingRepository(async_session)
        first = to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload, received_at=NOW)))
        later = to_staging_rows(
            parse_payload(make_raw_event("evt-2", sample_payload, received_at=NOW + timedelta(hours=1)))
        )

        await staging.upsert_blocks(first.blocks)
        await staging.upsert_blocks(later.blocks)

        blocks = await staging.list_blocks()
        assert len(blocks) == 1
        assert blocks[0].event_id == "evt-2"
        assert await staging.latest_received_at(StagedBlockModel) == NOW + timedelta(hours=1)

    async def test_list_since(self, async_session, make_raw_event, sample_payload) -> None:
        staging = StagingRepository(async_session)
        rows = to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload, received_at=NOW)))
        await staging.upsert_transactions(rows.transactions)

        assert len(await staging.list_transactions(since=NOW)) == 2
        assert await staging.list_transactions(since=NOW + timedelta(seconds=1)) == []

    async def test_empty_watermark(self, async_session) -> None:
        assert await StagingRepository(async_session).latest_received_at(StagedBlockModel) is None


class TestWriteRows:
    ROWS = [
        {
            "block_hash": "0x01",
            "block_index": 1,
            "block_time": None,
            "transaction_count": 0,
            "event_id": "evt-1",
            "webhook_path": "/chainhook/mainnet",
            "received_at": NOW,
        }
    ]

    async def test_append_keeps_existing_rows(self, async_session) -> None:
        await write_rows(
            async_session, StagedBlockModel, self.ROWS, key=["block_hash"], disposition=WriteDisposition.APPEND
        )
        changed = [{**self.ROWS[0], "event_id": "evt-2"}]

        await write_rows(
            async_session, StagedBlockModel, changed, key=["block_hash"], disposition=WriteDisposition.APPEND
        )

        event_ids = (await async_session.execute(select(StagedBlockModel.event_id))).scalars().all()
        assert event_ids == ["evt-1"]

    async def test_merge_replaces_existing_rows(self, async_session) -> None:
        await write_rows(
            async_session, StagedBlockModel, self.ROWS, key=["block_hash"], disposition=WriteDisposition.MERGE
        )
        changed = [{**self.ROWS[0], "event_id": "evt-2"}]

        await write_rows(
            async_session, StagedBlockModel, changed, key=["block_hash"], disposition=WriteDisposition.MERGE
        )

        event_ids = (await async_session.execute(select(StagedBlockModel.event_id))).scalars().all()
        assert event_ids == ["evt-2"]


# ============================================================================
# Catalogue
# ============================================================================


class TestContractRepository:
    async def test_insert_if_absent(self, async_session) -> None:
        repo = ContractRepository(async_session)

        first = await repo.insert_if_absent([contract(TOKEN_CONTRACT), contract(POOL_CONTRACT)])
        second = await repo.insert_if_absent([contract(TOKEN_CONTRACT, transaction_count=99)])

        assert len(first) == 2
        assert second == []
        stored = await repo.get(TOKEN_CONTRACT)
        assert stored.transaction_count == 0
        assert stored.analysis_status == ContractStatus.DISCOVERED.value
        assert stored.created_at is not None

    async def test_insert_conflict(self, async_session) -> None:
        repo = ContractRepository(async_session)
        await repo.insert(contract(TOKEN_CONTRACT))

        with pytest.raises(DiscoveryConflict):
            await repo.insert(contract(TOKEN_CONTRACT))

    async def test_save_round_trip(self, async_session) -> None:
        repo = ContractRepository(async_session)
        await repo.insert(contract(TOKEN_CONTRACT))
        stored = await repo.get(TOKEN_CONTRACT)
        stored.parsed_abi = {"functions": []}
        stored.interfaces = ["sip-010-ft"]
        stored.analysis_status = ContractStatus.ANALYZED.value

        await repo.save(stored)

        reloaded = await repo.get(TOKEN_CONTRACT)
        assert reloaded.parsed_abi == {"functions": []}
        assert reloaded.interfaces == ["sip-010-ft"]
        assert reloaded.created_at == stored.created_at

    async def test_list_by_status_orders_by_activity(self, async_session) -> None:
        repo = ContractRepository(async_session)
        await repo.insert_if_absent(
            [
                contract(TOKEN_CONTRACT, transaction_count=1),
                contract(POOL_CONTRACT, transaction_count=7),
                contract(f"{DEPLOYER}.done", analysis_status=ContractStatus.ANALYZED.value),
            ]
        )

        discovered = await repo.list_by_status(ContractStatus.DISCOVERED)

        assert [c.contract_id for c in discovered] == [POOL_CONTRACT, TOKEN_CONTRACT]
        assert await repo.count_discovered_since(NOW - timedelta(days=3650)) == 2

    async def test_request_reanalysis(self, async_session) -> None:
        repo = ContractRepository(async_session)
        await repo.insert(
            contract(
                TOKEN_CONTRACT,
                analysis_status=ContractStatus.ERROR.value,
                classification_errors=["interface: absent"],
            )
        )

        assert await repo.request_reanalysis(TOKEN_CONTRACT)
        assert not await repo.request_reanalysis(f"{DEPLOYER}.unknown")

        stored = await repo.get(TOKEN_CONTRACT)
        assert stored.analysis_status == ContractStatus.DISCOVERED.value
        assert stored.classification_errors == []


class TestTokenRepository:
    async def test_pending_full_tokens_first(self, async_session) -> None:
        repo = TokenRepository(async_session)
        await repo.insert_if_absent(
            [
                TokenDTO(contract_id=POOL_CONTRACT, token_type="partial_token", transaction_count=50),
                TokenDTO(contract_id=TOKEN_CONTRACT, token_type="full_token", transaction_count=1),
                TokenDTO(
                    contract_id=f"{DEPLOYER}.done",
                    token_type="full_token",
                    validation_status=TokenStatus.VALIDATED.value,
                ),
            ]
        )

        pending = await repo.list_pending(limit=10)

        assert [t.contract_id for t in pending] == [TOKEN_CONTRACT, POOL_CONTRACT]
        assert len(await repo.list_tokens(status=TokenStatus.VALIDATED)) == 1

    async def test_save_keeps_decimal_supply(self, async_session) -> None:
        repo = TokenRepository(async_session)
        await repo.insert_if_absent([TokenDTO(contract_id=TOKEN_CONTRACT, token_type="full_token")])
        token = await repo.get(TOKEN_CONTRACT)
        token.total_supply = Decimal(10_000_000_000)
        token.validation_errors = ["get-symbol: timeout"]

        await repo.save(token)

        many = await repo.get_many([TOKEN_CONTRACT, POOL_CONTRACT])
        assert set(many) == {TOKEN_CONTRACT}
        assert many[TOKEN_CONTRACT].total_supply == Decimal(10_000_000_000)
        assert many[TOKEN_CONTRACT].validation_errors == ["get-symbol: timeout"]


class TestPipelineRunRepository:
    async def test_save_and_list(self, async_session) -> None:
        repo = PipelineRunRepository(async_session)
        for i, status in enumerate(("succeeded", "failed")):
            await repo.save(
                PipelineRunDTO(
                    run_id=f"run-{i}",
                    stage="full",
                    status=status,
                    started_at=NOW + timedelta(minutes=i),
                    steps=[{"name": "staging", "status": "succeeded"}],
                )
            )

        recent = await repo.list_recent()

        assert [r.run_id for r in recent] == ["run-1", "run-0"]
        assert recent[1].steps == [{"name": "staging", "status": "succeeded"}]
        assert (await repo.get("run-1")).status == "failed"
