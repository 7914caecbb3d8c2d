"""Read-only access to the contract/token catalogue and wallet profiles."""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

from stacks_lakehouse.classifier.features import build_wallet_features
from stacks_lakehouse.classifier.models import ClassificationResult, WalletFeatures
from stacks_lakehouse.classifier.narrative import describe_wallet
from stacks_lakehouse.classifier.service import DEFAULT_FEATURE_WINDOW_DAYS, asset_info_from_tokens
from stacks_lakehouse.classifier.wallets import classify_wallet
from stacks_lakehouse.storage.repos import (
    ContractDTO,
    ContractRepository,
    ContractStatus,
    StagingRepository,
    TokenDTO,
    TokenRepository,
    TokenStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class WalletProfile:
    features: WalletFeatures
    classification: ClassificationResult


def _page(limit: int | None) -> int:
    if limit is None:
        return DEFAULT_PAGE_SIZE
    return max(1, min(limit, MAX_PAGE_SIZE))


class CatalogReader:
    """Dashboard-facing queries over the catalogue."""

    def __init__(self, session: AsyncSession, *, window_days: int = DEFAULT_FEATURE_WINDOW_DAYS) -> None:
        self._contracts = ContractRepository(session)
        self._tokens = TokenRepository(session)
        self._staging = StagingRepository(session)
        self._window = timedelta(days=window_days)

    async def list_contracts(
        self,
        *,
        status: ContractStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ContractDTO]:
        if status is None:
            return await self._contracts.list_all(limit=_page(limit), offset=max(0, offset))
        return await self._contracts.list_by_status(status, limit=_page(limit), offset=max(0, offset))

    async def list_tokens(
        self,
        *,
        status: TokenStatus | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[TokenDTO]:
        return await self._tokens.list_tokens(status=status, limit=_page(limit), offset=max(0, offset))

    async def get_contract(self, contract_id: str) -> ContractDTO | None:
        return await self._contracts.get(contract_id)

    async def get_token(self, contract_id: str) -> TokenDTO | None:
        return await self._tokens.get(contract_id)

    async def profile_wallet(self, address: str) -> WalletProfile:
        """Usage features, archetype and narrative for a wallet over the trailing window."""
        since = datetime.now(UTC) - self._window
        features = build_wallet_features(
            address,
            transactions=await self._staging.list_transactions(since=since),
            operations=await self._staging.list_operations(since=since),
            events=await self._staging.list_events(since=since),
            assets=asset_info_from_tokens(await self._tokens.list_tokens()),
        )
        result = classify_wallet(features)
        result = replace(result, analysis=describe_wallet(features, result))
        return WalletProfile(features=features, classification=result)
