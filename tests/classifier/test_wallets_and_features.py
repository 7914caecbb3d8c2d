"""Tests for wallet archetypes and staging feature builders."""

from decimal import Decimal

import pytest
from conftest import POOL_CONTRACT, SENDER, TOKEN_CONTRACT

from stacks_lakehouse.classifier.features import (
    AssetInfo,
    build_contract_features,
    build_wallet_features,
    extract_transfers,
)
from stacks_lakehouse.classifier.models import WalletFeatures
from stacks_lakehouse.classifier.wallets import classify_wallet, is_reference_asset
from stacks_lakehouse.staging.payloads import parse_payload, to_staging_rows

WALLET = "SP1HTBVD3JG9C05J7HBJTHGR0GGW7KXW28M5JS8QE"


def wallet(**kwargs) -> WalletFeatures:
    return WalletFeatures(address=WALLET, **kwargs)


@pytest.fixture
def staged_rows(make_raw_event, sample_payload):
    return to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload)))


# ============================================================================
# Wallet archetypes
# ============================================================================


class TestWalletArchetypes:
    def test_automated(self) -> None:
        assert classify_wallet(wallet(transactions=150)).label == "Automated Wallet"

    def test_distressed_seller(self) -> None:
        result = classify_wallet(
            wallet(
                transactions=5,
                inbound_by_asset={"STX": Decimal(100)},
                outbound_by_asset={"WELSH": Decimal(100)},
            )
        )

        assert result.label == "Distressed Seller"

    def test_power_user(self) -> None:
        inbound = {f"TOK{i}": Decimal(1) for i in range(8)}

        result = classify_wallet(wallet(transactions=20, inbound_by_asset=inbound))

        assert result.label == "DeFi Power User"

    def test_accumulator(self) -> None:
        result = classify_wallet(
            wallet(
                transactions=5,
                inbound_by_asset={"WELSH": Decimal(100)},
                outbound_by_asset={"WELSH": Decimal(10)},
            )
        )

        assert result.label == "Token Accumulator"

    def test_active_trader(self) -> None:
        result = classify_wallet(
            wallet(
                transactions=15,
                inbound_by_asset={"WELSH": Decimal(100)},
                outbound_by_asset={"WELSH": Decimal(95)},
            )
        )

        assert result.label == "Active Trader"

    def test_liquidity_provider(self) -> None:
        flows = {name: Decimal(10) for name in ("A", "B", "C", "D")}

        result = classify_wallet(
            wallet(
                transactions=8,
                inbound_by_asset=flows,
                outbound_by_asset=flows,
                counterparties=frozenset({POOL_CONTRACT}),
            )
        )

        assert result.label == "Liquidity Provider"

    def test_casual(self) -> None:
        assert classify_wallet(wallet(transactions=2)).label == "Casual User"

    def test_default(self) -> None:
        result = classify_wallet(wallet(transactions=7))

        assert result.label == "Active User"
        assert result.confidence == 40

    def test_reference_assets(self) -> None:
        assert is_reference_asset("sBTC")
        assert is_reference_asset("stx")
        assert not is_reference_asset("WELSH")


# ============================================================================
# Feature builders
# ============================================================================


class TestFeatureBuilders:
    def test_transfers_are_scaled_by_decimals(self, staged_rows) -> None:
        transfers = extract_transfers(staged_rows.events)

        assert len(transfers) == 1
        assert transfers[0].value == Decimal("2.5")
        assert transfers[0].symbol == "welshcorgicoin"
        assert transfers[0].asset_id == TOKEN_CONTRACT

    def test_catalogue_symbol_and_decimals(self, staged_rows) -> None:
        assets = {TOKEN_CONTRACT: AssetInfo(symbol="WELSH", decimals=3)}

        transfers = extract_transfers(staged_rows.events, assets)

        assert transfers[0].symbol == "WELSH"
        assert transfers[0].value == Decimal(2500)

    def test_contract_features(self, staged_rows) -> None:
        result = build_contract_features(
            POOL_CONTRACT,
            function_names=frozenset({"swap-x-for-y"}),
            interfaces=frozenset(),
            transactions=staged_rows.transactions,
            operations=staged_rows.operations,
            events=staged_rows.events,
        )

        assert result.interactions == 2
        assert result.inbound_value == Decimal("2.5")
        assert result.outbound_value == Decimal(0)
        assert result.active_tokens == 1
        assert result.window_days == 1.0

    def test_wallet_features(self, staged_rows) -> None:
        result = build_wallet_features(
            SENDER,
            transactions=staged_rows.transactions,
            operations=staged_rows.operations,
            events=staged_rows.events,
        )

        assert result.transactions == 2
        assert result.outbound_by_asset == {"welshcorgicoin": Decimal("2.5")}
        assert result.inbound_by_asset == {}
        assert {TOKEN_CONTRACT, POOL_CONTRACT} <= result.counterparties

    def test_unrelated_wallet_has_no_activity(self, staged_rows) -> None:
        result = build_wallet_features(
            WALLET,
            transactions=staged_rows.transactions,
            operations=staged_rows.operations,
            events=staged_rows.events,
        )

        assert result.transactions == 0
        assert result.active_tokens == 0
