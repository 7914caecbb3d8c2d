"""Tests for the staging transformer."""

from datetime import UTC, datetime, timedelta

from conftest import chainhook_block, chainhook_payload, contract_call_tx
from sqlalchemy import func, select

from stacks_lakehouse.staging.models import StagingRelation
from stacks_lakehouse.staging.transformer import StagingTransformer, StagingWindow, stage_events
from stacks_lakehouse.storage.models import RejectedPayloadModel, StagedBlockModel, StagedEventModel
from stacks_lakehouse.storage.repos import RawEventRepository, StagingRepository


async def _count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


class TestStageEvents:
    """Tests for in-memory staging of raw events."""

    def test_counts_variants(self, make_raw_event, sample_payload) -> None:
        events = [
            make_raw_event("evt-1", sample_payload),
            make_raw_event("evt-2", "not json"),
            make_raw_event("evt-3", {"apply": [{"transactions": []}]}),
        ]

        rows, stats = stage_events(events)

        assert stats.events_read == 3
        assert stats.well_formed == 1
        assert stats.unparseable == 1
        assert stats.partial == 1
        assert stats.skipped == 2
        assert len(rows.blocks) == 1
        assert len(rows.rejected) == 2

    def test_one_bad_event_does_not_affect_others(self, make_raw_event, sample_payload) -> None:
        rows, _ = stage_events([make_raw_event("evt-bad", "{"), make_raw_event("evt-1", sample_payload)])

        assert len(rows.transactions) == 2


class TestStagingTransformer:
    """Tests for windowed staging into the database."""

    async def test_run_writes_all_relations(self, async_session, make_raw_event, sample_payload) -> None:
        await RawEventRepository(async_session).append(make_raw_event("evt-1", sample_payload))

        stats = await StagingTransformer(async_session).run()

        assert stats.rows_written == {
            "stg_blocks": 1,
            "stg_transactions": 2,
            "stg_address_operations": 4,
            "stg_events": 2,
        }
        staging = StagingRepository(async_session)
        assert len(await staging.list_blocks()) == 1
        assert len(await staging.list_events()) == 2

    async def test_rerun_is_idempotent(self, async_session, make_raw_event, sample_payload) -> None:
        await RawEventRepository(async_session).append(make_raw_event("evt-1", sample_payload))
        transformer = StagingTransformer(async_session)

        await transformer.run()
        await transformer.run()
        await transformer.run(window=StagingWindow())

        assert await _count(async_session, StagedBlockModel) == 1
        assert await _count(async_session, StagedEventModel) == 2

    async def test_single_relation(self, async_session, make_raw_event, sample_payload) -> None:
        await RawEventRepository(async_session).append(make_raw_event("evt-1", sample_payload))

        stats = await StagingTransformer(async_session).run([StagingRelation.BLOCKS])

        assert stats.rows_written == {"stg_blocks": 1}
        assert await _count(async_session, StagedEventModel) == 0

    async def test_rejected_payloads_are_recorded(self, async_session, make_raw_event) -> None:
        await RawEventRepository(async_session).append(make_raw_event("evt-bad", "{oops"))

        stats = await StagingTransformer(async_session).run()

        assert stats.unparseable == 1
        rejected = await StagingRepository(async_session).list_rejected()
        assert [r.event_id for r in rejected] == ["evt-bad"]
        assert rejected[0].body_json == "{oops"
        assert await _count(async_session, RejectedPayloadModel) == 1

    async def test_drifted_event_does_not_block_the_batch(self, async_session, make_raw_event, sample_payload) -> None:
        drifted = chainhook_payload(
            chainhook_block("0x" + "2" * 64, 180001, [contract_call_tx("0x" + "d" * 64, fee="99999999999999999999999")])
        )
        raw = RawEventRepository(async_session)
        await raw.append(make_raw_event("evt-good", sample_payload))
        await raw.append(make_raw_event("evt-drift", drifted))

        stats = await StagingTransformer(async_session).run()

        assert stats.well_formed == 1
        assert stats.partial == 1
        assert stats.rows_written["stg_transactions"] == 2
        rejected = await StagingRepository(async_session).list_rejected()
        assert [(r.event_id, r.kind) for r in rejected] == [("evt-drift", "partial")]
        assert "fee out of range" in rejected[0].reason

    async def test_default_window_starts_at_watermark(self, async_session, make_raw_event, sample_payload) -> None:
        raw = RawEventRepository(async_session)
        old = datetime.now(UTC) - timedelta(days=2)
        await raw.append(make_raw_event("evt-old", sample_payload, received_at=old))
        transformer = StagingTransformer(async_session)
        await transformer.run()

        window = await transformer.resolve_window(list(StagingRelation), None)

        assert window.since is not None
        assert abs((window.since - old).total_seconds()) < 1

    async def test_empty_staging_reads_everything(self, async_session) -> None:
        window = await StagingTransformer(async_session).resolve_window(list(StagingRelation), None)

        assert window == StagingWindow()

    async def test_explicit_window_excludes_other_events(
        self, async_session, make_raw_event, sample_payload
    ) -> None:
        now = datetime.now(UTC)
        raw = RawEventRepository(async_session)
        await raw.append(make_raw_event("evt-old", sample_payload, received_at=now - timedelta(days=3)))

        stats = await StagingTransformer(async_session).run(window=StagingWindow(since=now - timedelta(days=1)))

        assert stats.events_read == 0
        assert await _count(async_session, StagedBlockModel) == 0
