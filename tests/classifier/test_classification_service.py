"""Tests for the classification pass over analyzed contracts."""

import pytest
from conftest import DEPLOYER, POOL_CONTRACT, TOKEN_CONTRACT

from stacks_lakehouse.classifier.abi import SIP010_INTERFACE
from stacks_lakehouse.classifier.service import ContractClassifier, classify_analyzed_contract
from stacks_lakehouse.errors import ClassificationInconclusive
from stacks_lakehouse.staging.payloads import parse_payload, to_staging_rows
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    StagingRepository,
    TokenDTO,
    TokenRepository,
)

EMPTY_CONTRACT = f"{DEPLOYER}.empty-one"

TOKEN_ABI = {
    "functions": [
        {"name": "transfer", "access": "public", "args": [{"name": n} for n in ("amount", "sender", "recipient")]},
        *(
            {"name": n, "access": "read_only", "args": []}
            for n in ("get-name", "get-symbol", "get-decimals", "get-balance", "get-total-supply", "get-token-uri")
        ),
    ]
}
POOL_ABI = {"functions": [{"name": "swap-x-for-y", "access": "public", "args": [{"name": "dx"}]}]}


def analyzed(contract_id: str, abi: dict | None, interfaces: list[str] | None = None) -> ContractDTO:
    deployer, name = contract_id.split(".")
    return ContractDTO(
        contract_id=contract_id,
        deployer=deployer,
        name=name,
        analysis_status=ContractStatus.ANALYZED.value,
        parsed_abi=abi,
        interfaces=interfaces or [],
    )


@pytest.fixture
async def catalogue(async_session, make_raw_event, sample_payload):
    rows = to_staging_rows(parse_payload(make_raw_event("evt-1", sample_payload)))
    staging = StagingRepository(async_session)
    await staging.upsert_transactions(rows.transactions)
    await staging.upsert_operations(rows.operations)
    await staging.upsert_events(rows.events)

    contracts = ContractRepository(async_session)
    await contracts.insert_if_absent(
        [
            analyzed(TOKEN_CONTRACT, TOKEN_ABI, [SIP010_INTERFACE]),
            analyzed(POOL_CONTRACT, POOL_ABI),
            analyzed(EMPTY_CONTRACT, None),
        ]
    )
    await TokenRepository(async_session).insert_if_absent(
        [TokenDTO(contract_id=TOKEN_CONTRACT, token_type="partial_token", detection_score=40)]
    )
    return contracts


class TestContractClassifier:
    async def test_labels_analyzed_contracts(self, async_session, catalogue) -> None:
        stats = await ContractClassifier(async_session).run()

        assert stats.contracts == 3
        assert stats.classified == 2
        assert stats.inconclusive == 1
        assert stats.labels == {"Token Contract": 1, "DEX": 1}

        token = await catalogue.get(TOKEN_CONTRACT)
        assert token.classification == "Token Contract"
        assert token.classification_confidence == 95
        assert token.classification_analysis.startswith("This contract operates as a Token Contract")
        pool = await catalogue.get(POOL_CONTRACT)
        assert pool.classification == "DEX"

    async def test_inconclusive_contract_is_left_unlabelled(self, async_session, catalogue) -> None:
        await ContractClassifier(async_session).run()

        empty = await catalogue.get(EMPTY_CONTRACT)
        assert empty.classification is None
        assert empty.analysis_status == ContractStatus.ANALYZED.value

    async def test_token_type_is_upgraded(self, async_session, catalogue) -> None:
        stats = await ContractClassifier(async_session).run()

        assert stats.tokens_retyped == 1
        token = await TokenRepository(async_session).get(TOKEN_CONTRACT)
        assert token.token_type == "full_token"
        assert token.detection_score >= 60

    async def test_source_detection_never_downgrades(self, async_session, catalogue) -> None:
        contract = await catalogue.get(TOKEN_CONTRACT)
        contract.parsed_abi = None
        contract.source_code = "(define-fungible-token welsh)"
        await catalogue.save(contract)

        stats = await ContractClassifier(async_session).run()

        assert stats.tokens_retyped == 0
        token = await TokenRepository(async_session).get(TOKEN_CONTRACT)
        assert token.token_type == "partial_token"

    async def test_interface_result_replaces_a_stronger_recorded_type(self, async_session, catalogue) -> None:
        contract = await catalogue.get(TOKEN_CONTRACT)
        contract.parsed_abi = POOL_ABI
        contract.source_code = "(define-fungible-token welsh)"
        await catalogue.save(contract)

        stats = await ContractClassifier(async_session).run()

        assert stats.tokens_retyped == 1
        token = await TokenRepository(async_session).get(TOKEN_CONTRACT)
        assert token.token_type == "unknown"

    async def test_no_analyzed_contracts(self, async_session) -> None:
        stats = await ContractClassifier(async_session).run()

        assert stats.contracts == 0
        assert stats.classified == 0


def test_classify_analyzed_contract_raises_without_evidence() -> None:
    with pytest.raises(ClassificationInconclusive):
        classify_analyzed_contract(
            analyzed(EMPTY_CONTRACT, None),
            transactions=[],
            operations=[],
            events=[],
            assets={},
        )
