"""Token discovery over analyzed contracts.

A token row is created only when minimum-function detection succeeds
(``transfer``, ``get-balance`` and ``get-total-supply``), using the parsed
interface or, when none is available, function definitions in the source.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from stacks_lakehouse.classifier.tokens import (
    DEFAULT_TOKEN_DETECTION_CONFIG,
    TokenDetectionConfig,
    detect_token_standard,
    has_minimum_token_functions,
    token_function_names,
)
from stacks_lakehouse.discovery.contracts import DEFAULT_REPORT_WINDOW_MINUTES, DiscoveryResult
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    TokenDTO,
    TokenRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


def find_token_candidates(
    contracts: Iterable[ContractDTO],
    config: TokenDetectionConfig = DEFAULT_TOKEN_DETECTION_CONFIG,
) -> list[TokenDTO]:
    """Token rows for analyzed contracts that pass minimum-function detection.

    Ordered by number of standard functions detected, then activity, then recency.
    """
    ranked: list[tuple[int, TokenDTO]] = []
    for contract in contracts:
        if contract.analysis_status != ContractStatus.ANALYZED.value:
            continue
        if not has_minimum_token_functions(token_function_names(contract.parsed_abi, contract.source_code)):
            continue
        detection = detect_token_standard(contract.parsed_abi, contract.source_code, config)
        if not detection.is_token:
            continue
        ranked.append(
            (
                len(detection.detected),
                TokenDTO(
                    contract_id=contract.contract_id,
                    token_type=detection.token_type.value,
                    detection_score=detection.score,
                    transaction_count=contract.transaction_count,
                    last_seen=contract.last_seen,
                ),
            )
        )
    ranked.sort(
        key=lambda item: (
            -item[0],
            -item[1].transaction_count,
            -(item[1].last_seen.timestamp() if item[1].last_seen else 0.0),
            item[1].contract_id,
        )
    )
    return [token for _, token in ranked]


class TokenDiscovery:
    """Inserts pending token rows for analyzed token-like contracts."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        config: TokenDetectionConfig = DEFAULT_TOKEN_DETECTION_CONFIG,
        report_window_minutes: int = DEFAULT_REPORT_WINDOW_MINUTES,
    ) -> None:
        self._contracts = ContractRepository(session)
        self._tokens = TokenRepository(session)
        self._config = config
        self._report_window = timedelta(minutes=report_window_minutes)

    async def run(self) -> DiscoveryResult:
        analyzed = await self._contracts.list_by_status(ContractStatus.ANALYZED)
        candidates = find_token_candidates(analyzed, self._config)
        inserted = await self._tokens.insert_if_absent(candidates)
        recent = await self._tokens.count_pending_since(datetime.now(UTC) - self._report_window)
        logger.info(
            "Token discovery: %d analyzed contract(s), %d candidate(s), %d new",
            len(analyzed),
            len(candidates),
            len(inserted),
        )
        return DiscoveryResult(candidates=len(candidates), inserted=len(inserted), recent_discovered=recent)
