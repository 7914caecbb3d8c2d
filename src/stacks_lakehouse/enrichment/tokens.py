"""Token metadata enrichment worker.

Pending tokens are enriched in small concurrent batches. For each token the
five standard read-only functions are called concurrently, each under its
own timeout, and the declared metadata URI (if any) is fetched afterwards.
Each call outcome is captured separately so a partial success still
persists the fields that did resolve.

Status decision per attempt:
- ``validated`` when either the name or the symbol call succeeds
- ``failed`` when both name and symbol are absent from the contract, or when
  total supply is absent and nothing else succeeded
- ``pending`` otherwise (transient failures are retried on a later run)
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from stacks_lakehouse.enrichment.calls import CallResult, fan_out, settle, timed_out
from stacks_lakehouse.enrichment.images import DEFAULT_IPFS_GATEWAY, normalize_image_url
from stacks_lakehouse.storage.repos import TokenDTO, TokenRepository, TokenStatus

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from stacks_lakehouse.enrichment.stacks_client import StacksApiClient

logger = logging.getLogger(__name__)

TOKEN_READ_FUNCTIONS = ("get-name", "get-symbol", "get-decimals", "get-total-supply", "get-token-uri")
METADATA_CALL = "token-uri-metadata"
DEFAULT_DECIMALS = 6
MAX_DECIMALS = 38

# Default configuration
DEFAULT_BATCH_LIMIT = 50
DEFAULT_BATCH_SIZE = 5
DEFAULT_BATCH_DELAY_SECONDS = 2.0
DEFAULT_ENTITY_TIMEOUT_SECONDS = 15.0
DEFAULT_CALL_TIMEOUT_SECONDS = 8.0
DEFAULT_URI_TIMEOUT_SECONDS = 5.0


@dataclass
class EnrichmentStats:
    """Counters for one enrichment run."""

    attempted: int = 0
    validated: int = 0
    failed: int = 0
    pending: int = 0
    batches: int = 0

    def as_dict(self) -> dict[str, int]:
        return dataclasses.asdict(self)


def fallback_name(contract_id: str) -> str:
    """Human-readable name derived from the contract name (``welsh-token`` -> ``Welsh Token``)."""
    name = contract_id.split(".", 1)[-1]
    return " ".join(part.capitalize() for part in name.replace("_", "-").split("-") if part) or contract_id


def fallback_symbol(name: str) -> str:
    compact = "".join(ch for ch in name if ch.isalnum()).upper()
    return compact if len(compact) <= 5 else compact[:4]


def _text(result: CallResult | None) -> str | None:
    if result is None or not result.ok or not isinstance(result.value, str):
        return None
    return result.value.strip() or None


def _non_negative_int(result: CallResult | None) -> int | None:
    if result is None or not result.ok:
        return None
    value = result.value
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        return None
    return value


def decide_status(results: Mapping[str, CallResult]) -> TokenStatus:
    name = results.get("get-name")
    symbol = results.get("get-symbol")
    supply = results.get("get-total-supply")

    if (name is not None and name.ok) or (symbol is not None and symbol.ok):
        return TokenStatus.VALIDATED
    if name is not None and symbol is not None and name.absent and symbol.absent:
        return TokenStatus.FAILED
    if supply is not None and supply.absent and not any(r.ok for r in results.values()):
        return TokenStatus.FAILED
    return TokenStatus.PENDING


def merge_token_metadata(
    token: TokenDTO,
    results: Mapping[str, CallResult],
    *,
    gateway: str = DEFAULT_IPFS_GATEWAY,
    now: datetime | None = None,
) -> TokenDTO:
    """Fold one attempt's call outcomes into a copy of the token row.

    Only successful calls overwrite fields, so earlier enrichment is never
    clobbered by a later failure.
    """
    now = now or datetime.now(UTC)
    merged = dataclasses.replace(
        token,
        validation_errors=[r.describe() for r in results.values() if not r.ok],
        enrichment_attempts=token.enrichment_attempts + 1,
    )

    name = _text(results.get("get-name"))
    if name:
        merged.name = name
    symbol = _text(results.get("get-symbol"))
    if symbol:
        merged.symbol = symbol

    decimals = _non_negative_int(results.get("get-decimals"))
    if decimals is not None and decimals <= MAX_DECIMALS:
        merged.decimals = decimals
    elif decimals is not None:
        merged.validation_errors.append(f"get-decimals: implausible value {decimals}")

    supply = _non_negative_int(results.get("get-total-supply"))
    if supply is not None:
        merged.total_supply = Decimal(supply)

    uri = _text(results.get("get-token-uri"))
    if uri:
        merged.token_uri = uri

    metadata_result = results.get(METADATA_CALL)
    metadata: Any = metadata_result.value if metadata_result is not None and metadata_result.ok else None
    if isinstance(metadata, dict):
        image = normalize_image_url(metadata.get("image"), gateway=gateway)
        if image:
            merged.image_url = image
        description = metadata.get("description")
        if isinstance(description, str) and description.strip():
            merged.description = description.strip()
        if not merged.name and isinstance(metadata.get("name"), str) and metadata["name"].strip():
            merged.name = metadata["name"].strip()
        if not merged.symbol and isinstance(metadata.get("symbol"), str) and metadata["symbol"].strip():
            merged.symbol = metadata["symbol"].strip()

    status = decide_status(results)
    merged.validation_status = status.value
    if status == TokenStatus.VALIDATED:
        merged.name = merged.name or fallback_name(token.contract_id)
        merged.symbol = merged.symbol or fallback_symbol(merged.name)
        if merged.decimals is None:
            merged.decimals = DEFAULT_DECIMALS
        if not merged.description:
            merged.description = f"{merged.name} ({merged.symbol}) is a fungible token on the Stacks blockchain."
        merged.validated_at = now
    return merged


class TokenEnrichmentWorker:
    """Resolves descriptive metadata for tokens pending enrichment.

    Example:
        ```python
        async with db.get_async_session() as session, StacksApiClient() as client:
            stats = await TokenEnrichmentWorker(session, client).run_once()
        ```
    """

    def __init__(
        self,
        session: AsyncSession,
        client: StacksApiClient,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        batch_size: int = DEFAULT_BATCH_SIZE,
        batch_delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
        entity_timeout_seconds: float = DEFAULT_ENTITY_TIMEOUT_SECONDS,
        call_timeout_seconds: float = DEFAULT_CALL_TIMEOUT_SECONDS,
        uri_timeout_seconds: float = DEFAULT_URI_TIMEOUT_SECONDS,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._tokens = TokenRepository(session)
        self._client = client
        self._batch_limit = batch_limit
        self._batch_size = batch_size
        self._batch_delay = batch_delay_seconds
        self._entity_timeout = entity_timeout_seconds
        self._call_timeout = call_timeout_seconds
        self._uri_timeout = uri_timeout_seconds
        self._gateway = ipfs_gateway
        self._sleep = sleep

    async def run_once(self) -> EnrichmentStats:
        """Enrich up to ``batch_limit`` pending tokens."""
        stats = EnrichmentStats()
        pending = await self._tokens.list_pending(limit=self._batch_limit)
        if not pending:
            logger.info("No tokens pending enrichment")
            return stats

        batches = [pending[i : i + self._batch_size] for i in range(0, len(pending), self._batch_size)]
        for index, batch in enumerate(batches):
            outcomes = await asyncio.gather(*(self._resolve(token) for token in batch))
            for token, results in zip(batch, outcomes, strict=True):
                await self._apply(token, results, stats)
            stats.batches += 1
            if index < len(batches) - 1 and self._batch_delay > 0:
                await self._sleep(self._batch_delay)

        logger.info(
            "Token enrichment: %d attempted, %d validated, %d failed, %d still pending",
            stats.attempted,
            stats.validated,
            stats.failed,
            stats.pending,
        )
        return stats

    async def _resolve(self, token: TokenDTO) -> dict[str, CallResult]:
        try:
            return await asyncio.wait_for(self._fetch(token.contract_id), self._entity_timeout)
        except TimeoutError:
            logger.warning("Token %s exceeded %.0fs enrichment budget", token.contract_id, self._entity_timeout)
            return timed_out(TOKEN_READ_FUNCTIONS, self._entity_timeout)

    async def _fetch(self, contract_id: str) -> dict[str, CallResult]:
        def read(function_name: str) -> Callable[[], Awaitable[Any]]:
            return lambda: self._client.call_read_only(contract_id, function_name)

        results = await fan_out({fn: read(fn) for fn in TOKEN_READ_FUNCTIONS}, timeout=self._call_timeout)

        uri = _text(results.get("get-token-uri"))
        if uri:
            results[METADATA_CALL] = await settle(
                METADATA_CALL,
                lambda: self._client.fetch_json(uri, timeout=self._uri_timeout),
                timeout=self._uri_timeout,
            )
        return results

    async def _apply(self, token: TokenDTO, results: dict[str, CallResult], stats: EnrichmentStats) -> None:
        merged = merge_token_metadata(token, results, gateway=self._gateway)
        await self._tokens.save(merged)

        stats.attempted += 1
        if merged.validation_status == TokenStatus.VALIDATED.value:
            stats.validated += 1
        elif merged.validation_status == TokenStatus.FAILED.value:
            stats.failed += 1
            logger.warning("Token %s failed validation: %s", token.contract_id, "; ".join(merged.validation_errors))
        else:
            stats.pending += 1
            logger.debug("Token %s left pending: %s", token.contract_id, "; ".join(merged.validation_errors))
