"""Tests for chainhook payload parsing and conversion."""

import json
from datetime import UTC, datetime
from decimal import Decimal

from conftest import SENDER, TOKEN_CONTRACT, chainhook_block, chainhook_payload, contract_call_tx

from stacks_lakehouse.staging.payloads import (
    PartialPayload,
    UnparseablePayload,
    WellFormedPayload,
    as_amount,
    as_int,
    parse_block_time,
    parse_payload,
    to_staging_rows,
)


class TestScalarHelpers:
    """Tests for lenient scalar coercion."""

    def test_as_int_accepts_numeric_strings(self) -> None:
        assert as_int("3000") == 3000
        assert as_int(" 42 ") == 42
        assert as_int(7.0) == 7

    def test_as_int_rejects_bools_and_garbage(self) -> None:
        assert as_int(True) is None
        assert as_int("12abc") is None
        assert as_int(None) is None

    def test_as_amount_reads_value_objects(self) -> None:
        assert as_amount({"value": "100"}) == Decimal(100)
        assert as_amount("250") == Decimal(250)
        assert as_amount({"currency": "STX"}) is None

    def test_out_of_range_integers_are_discarded(self) -> None:
        assert as_int(str(2**63)) is None
        assert as_int(2**63 - 1) == 2**63 - 1
        assert as_int("70000", maximum=65535) is None

    def test_as_amount_rejects_values_wider_than_the_column(self) -> None:
        assert as_amount("9" * 40) == Decimal("9" * 40)
        assert as_amount({"value": "1" + "0" * 40}) is None

    def test_parse_block_time(self) -> None:
        assert parse_block_time(1760745600) == datetime(2025, 10, 18, tzinfo=UTC)
        assert parse_block_time("1760745600") == datetime(2025, 10, 18, tzinfo=UTC)

    def test_parse_block_time_out_of_range(self) -> None:
        assert parse_block_time(-1) is None
        assert parse_block_time(10**15) is None


class TestParsePayload:
    """Tests for classifying raw events into payload variants."""

    def test_well_formed(self, make_raw_event, sample_payload) -> None:
        parsed = parse_payload(make_raw_event("evt-1", sample_payload))

        assert isinstance(parsed, WellFormedPayload)
        assert len(parsed.blocks) == 1
        assert len(parsed.blocks[0].transactions) == 2

    def test_string_body_is_decoded(self, make_raw_event, sample_payload) -> None:
        parsed = parse_payload(make_raw_event("evt-1", json.dumps(sample_payload)))

        assert isinstance(parsed, WellFormedPayload)

    def test_invalid_json_is_unparseable(self, make_raw_event) -> None:
        parsed = parse_payload(make_raw_event("evt-bad", "{not json"))

        assert isinstance(parsed, UnparseablePayload)
        assert "not valid JSON" in parsed.reason

    def test_non_object_body_is_unparseable(self, make_raw_event) -> None:
        parsed = parse_payload(make_raw_event("evt-list", "[1, 2, 3]"))

        assert isinstance(parsed, UnparseablePayload)
        assert "expected an object" in parsed.reason

    def test_missing_apply_is_unparseable(self, make_raw_event) -> None:
        parsed = parse_payload(make_raw_event("evt-empty", {"rollback": []}))

        assert isinstance(parsed, UnparseablePayload)

    def test_block_without_identifier_is_skipped(self, make_raw_event) -> None:
        good = chainhook_block("0x" + "1" * 64, 10, [contract_call_tx("0x" + "a" * 64)])
        bad = {"metadata": {"block_time": 1760745600}, "transactions": []}

        parsed = parse_payload(make_raw_event("evt-partial", chainhook_payload(bad, good)))

        assert isinstance(parsed, PartialPayload)
        assert [b.block_hash for b in parsed.blocks] == ["0x" + "1" * 64]
        assert parsed.problems == ("apply[0]: missing block identifier",)

    def test_transaction_without_hash_is_skipped(self, make_raw_event) -> None:
        tx = contract_call_tx("0x" + "a" * 64)
        broken = {"metadata": {"fee": 1}}
        block = chainhook_block("0x" + "1" * 64, 10, [broken, tx])

        parsed = parse_payload(make_raw_event("evt-partial", chainhook_payload(block)))

        assert isinstance(parsed, PartialPayload)
        assert len(parsed.blocks[0].transactions) == 1

    def test_transaction_with_oversized_fee_is_skipped(self, make_raw_event) -> None:
        drifted = contract_call_tx("0x" + "d" * 64, fee="99999999999999999999999")
        block = chainhook_block("0x" + "1" * 64, 10, [drifted, contract_call_tx("0x" + "a" * 64)])

        parsed = parse_payload(make_raw_event("evt-drift", chainhook_payload(block)))

        assert isinstance(parsed, PartialPayload)
        assert [tx["transaction_identifier"]["hash"] for tx in parsed.blocks[0].transactions] == ["0x" + "a" * 64]
        assert parsed.problems == (
            f"block {'0x' + '1' * 64}: transactions[0]: fee out of range: 99999999999999999999999",
        )

    def test_out_of_range_positions_and_amounts_are_skipped(self, make_raw_event) -> None:
        huge_index = contract_call_tx("0x" + "d" * 64)
        huge_index["operations"][0]["operation_identifier"]["index"] = 2**31
        huge_amount = contract_call_tx("0x" + "e" * 64)
        huge_amount["operations"][1]["amount"]["value"] = "1" + "0" * 40
        block = chainhook_block("0x" + "1" * 64, 10, [huge_index, huge_amount])

        parsed = parse_payload(make_raw_event("evt-drift", chainhook_payload(block)))

        assert isinstance(parsed, PartialPayload)
        assert parsed.blocks[0].transactions == ()
        assert "operations[0] index out of range" in parsed.problems[0]
        assert "operations[1] amount out of range" in parsed.problems[1]

    def test_block_index_out_of_range(self, make_raw_event) -> None:
        block = chainhook_block("0x" + "1" * 64, 2**63, [])

        parsed = parse_payload(make_raw_event("evt-drift", chainhook_payload(block)))

        assert isinstance(parsed, PartialPayload)
        assert parsed.problems == ("apply[0]: block index out of range",)


class TestToStagingRows:
    """Tests for converting payload variants into staging rows."""

    def test_rows_for_all_relations(self, make_raw_event, sample_payload) -> None:
        event = make_raw_event("evt-1", sample_payload)

        rows = to_staging_rows(parse_payload(event))

        assert len(rows.blocks) == 1
        assert len(rows.transactions) == 2
        assert len(rows.operations) == 4
        assert len(rows.events) == 2
        assert rows.rejected == []

        block = rows.blocks[0]
        assert block.block_index == 180000
        assert block.transaction_count == 2
        assert block.chainhook_uuid == "4c2a1f3e-hook"
        assert block.is_streaming_blocks is True
        assert block.event_id == "evt-1"
        assert block.webhook_path == "/chainhook/mainnet"

    def test_transaction_fields(self, make_raw_event, sample_payload) -> None:
        rows = to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload)))

        tx = rows.transactions[0]
        assert tx.fee == 3000
        assert tx.success is True
        assert tx.sender == SENDER
        assert tx.contract_identifier == TOKEN_CONTRACT
        assert tx.operation_count == 2
        assert tx.block_time == datetime(2025, 10, 18, tzinfo=UTC)

    def test_operation_and_event_fields(self, make_raw_event, sample_payload) -> None:
        rows = to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload)))

        call, debit = rows.operations[0], rows.operations[1]
        assert call.key == ("0x" + "a" * 64, 0)
        assert call.address == SENDER
        assert call.function_name == "transfer"
        assert call.function_args == ["u100"]
        assert debit.amount == Decimal(100)

        transfer = rows.events[0]
        assert transfer.event_type == "FTTransferEvent"
        assert transfer.amount == Decimal(2500000)
        assert transfer.asset_contract_id == TOKEN_CONTRACT

        swap = rows.events[1]
        assert swap.event_type == "SmartContractEvent"
        assert swap.action == "swap-x-for-y"
        assert swap.topic == "print"

    def test_string_fee_and_missing_time(self, make_raw_event) -> None:
        block = chainhook_block("0x" + "2" * 64, 11, [contract_call_tx("0x" + "e" * 64, fee="450")], block_time=None)

        rows = to_staging_rows(parse_payload(make_raw_event("evt-2", chainhook_payload(block))))

        assert rows.transactions[0].fee == 450
        assert rows.blocks[0].block_time is None
        assert rows.transactions[0].block_time is None

    def test_unparseable_is_captured_verbatim(self, make_raw_event) -> None:
        rows = to_staging_rows(parse_payload(make_raw_event("evt-bad", "{not json")))

        assert rows.blocks == []
        assert len(rows.rejected) == 1
        assert rows.rejected[0].kind == "unparseable"
        assert rows.rejected[0].body_json == "{not json"

    def test_partial_keeps_usable_rows_and_rejection(self, make_raw_event) -> None:
        good = chainhook_block("0x" + "1" * 64, 10, [contract_call_tx("0x" + "a" * 64)])
        payload = chainhook_payload({"transactions": []}, good)

        rows = to_staging_rows(parse_payload(make_raw_event("evt-partial", payload)))

        assert len(rows.blocks) == 1
        assert len(rows.transactions) == 1
        assert rows.rejected[0].kind == "partial"
        assert "missing block identifier" in rows.rejected[0].reason

    def test_restaging_is_deterministic(self, make_raw_event, sample_payload) -> None:
        event = make_raw_event("evt-1", sample_payload)

        first = to_staging_rows(parse_payload(event))
        second = to_staging_rows(parse_payload(event))

        assert first == second
