"""Classification pass over analyzed contracts.

Assigns a protocol archetype to every analyzed contract from its interface
and recent staging activity, and refreshes the detected token standard of
already-catalogued tokens. An interface result replaces the recorded type
in either direction; source text alone can only upgrade it.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from stacks_lakehouse.classifier.abi import abi_function_names
from stacks_lakehouse.classifier.contracts import (
    DEFAULT_CONTRACT_RULES,
    classify_contract,
)
from stacks_lakehouse.classifier.features import AssetInfo, build_contract_features
from stacks_lakehouse.classifier.models import ClassificationResult, TokenType
from stacks_lakehouse.classifier.narrative import describe_contract
from stacks_lakehouse.classifier.rules import RuleTable
from stacks_lakehouse.classifier.tokens import detect_token_standard, token_function_names
from stacks_lakehouse.errors import ClassificationInconclusive
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    StagingRepository,
    TokenDTO,
    TokenRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from stacks_lakehouse.classifier.models import ContractFeatures
    from stacks_lakehouse.staging.models import StagedEvent, StagedOperation, StagedTransaction

logger = logging.getLogger(__name__)

DEFAULT_FEATURE_WINDOW_DAYS = 30

# Strongest first; source-only detection may only upgrade a recorded type.
_TOKEN_TYPE_RANK = {
    TokenType.FULL.value: 3,
    TokenType.PARTIAL.value: 2,
    TokenType.SOURCE_DETECTED.value: 1,
    TokenType.UNKNOWN.value: 0,
}


@dataclass
class ClassificationStats:
    contracts: int = 0
    classified: int = 0
    inconclusive: int = 0
    tokens_retyped: int = 0
    labels: dict[str, int] = field(default_factory=dict)


def asset_info_from_tokens(tokens: Mapping[str, TokenDTO] | Sequence[TokenDTO]) -> dict[str, AssetInfo]:
    values = tokens.values() if isinstance(tokens, Mapping) else tokens
    return {t.contract_id: AssetInfo(symbol=t.symbol, decimals=t.decimals) for t in values}


def classify_analyzed_contract(
    contract: ContractDTO,
    *,
    transactions: Sequence[StagedTransaction],
    operations: Sequence[StagedOperation],
    events: Sequence[StagedEvent],
    assets: Mapping[str, AssetInfo],
    rules: RuleTable[ContractFeatures] = DEFAULT_CONTRACT_RULES,
) -> ClassificationResult:
    """Archetype and narrative analysis for one analyzed contract.

    Raises:
        ClassificationInconclusive: If the contract exposes no functions and
            has no recorded activity.
    """
    function_names = token_function_names(contract.parsed_abi, contract.source_code)
    features = build_contract_features(
        contract.contract_id,
        function_names=function_names,
        interfaces=frozenset(contract.interfaces),
        transactions=transactions,
        operations=operations,
        events=events,
        assets=assets,
    )
    if not features.function_names and features.interactions == 0:
        raise ClassificationInconclusive(f"{contract.contract_id}: no functions and no activity")
    result = classify_contract(features, rules)
    return replace(result, analysis=describe_contract(features, result))


class ContractClassifier:
    """Writes archetype labels for analyzed contracts."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        window_days: int = DEFAULT_FEATURE_WINDOW_DAYS,
        rules: RuleTable[ContractFeatures] = DEFAULT_CONTRACT_RULES,
    ) -> None:
        self._contracts = ContractRepository(session)
        self._tokens = TokenRepository(session)
        self._staging = StagingRepository(session)
        self._window = timedelta(days=window_days)
        self._rules = rules

    async def run(self) -> ClassificationStats:
        stats = ClassificationStats()
        analyzed = await self._contracts.list_by_status(ContractStatus.ANALYZED)
        stats.contracts = len(analyzed)
        if not analyzed:
            return stats

        since = datetime.now(UTC) - self._window
        transactions = await self._staging.list_transactions(since=since)
        operations = await self._staging.list_operations(since=since)
        events = await self._staging.list_events(since=since)
        tokens = await self._tokens.get_many(c.contract_id for c in analyzed)
        assets = asset_info_from_tokens(await self._tokens.list_tokens())

        for contract in analyzed:
            try:
                result = classify_analyzed_contract(
                    contract,
                    transactions=transactions,
                    operations=operations,
                    events=events,
                    assets=assets,
                    rules=self._rules,
                )
            except ClassificationInconclusive as e:
                stats.inconclusive += 1
                logger.debug("Skipping classification: %s", e)
            else:
                contract.classification = result.label
                contract.classification_confidence = result.confidence
                contract.classification_analysis = result.analysis
                await self._contracts.save(contract)
                stats.classified += 1
                stats.labels[result.label] = stats.labels.get(result.label, 0) + 1

            token = tokens.get(contract.contract_id)
            if token is not None and await self._refresh_token_type(contract, token):
                stats.tokens_retyped += 1

        logger.info(
            "Classified %d of %d analyzed contract(s) (%d inconclusive, %d token type change(s))",
            stats.classified,
            stats.contracts,
            stats.inconclusive,
            stats.tokens_retyped,
        )
        return stats

    async def _refresh_token_type(self, contract: ContractDTO, token: TokenDTO) -> bool:
        detection = detect_token_standard(contract.parsed_abi, contract.source_code)
        if detection.token_type.value == token.token_type:
            return False
        from_interface = bool(abi_function_names(contract.parsed_abi))
        rank = _TOKEN_TYPE_RANK[detection.token_type.value]
        if not from_interface and rank <= _TOKEN_TYPE_RANK.get(token.token_type, 0):
            return False
        previous = token.token_type
        token.token_type = detection.token_type.value
        token.detection_score = detection.score
        await self._tokens.save(token)
        logger.info("Token %s retyped %s -> %s", token.contract_id, previous, token.token_type)
        return True
