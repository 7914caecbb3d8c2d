"""Metadata enrichment - remote contract analysis and token metadata resolution."""

from stacks_lakehouse.enrichment.calls import CallResult, CallStatus, fan_out, settle
from stacks_lakehouse.enrichment.contracts import AnalysisStats, ContractAnalysisWorker
from stacks_lakehouse.enrichment.images import normalize_image_url
from stacks_lakehouse.enrichment.stacks_client import (
    NotFoundError,
    RateLimitError,
    ReadOnlyCallError,
    StacksApiClient,
    StacksApiError,
)
from stacks_lakehouse.enrichment.tokens import EnrichmentStats, TokenEnrichmentWorker

__all__ = [
    "AnalysisStats",
    "CallResult",
    "CallStatus",
    "ContractAnalysisWorker",
    "EnrichmentStats",
    "NotFoundError",
    "RateLimitError",
    "ReadOnlyCallError",
    "StacksApiClient",
    "StacksApiError",
    "TokenEnrichmentWorker",
    "fan_out",
    "normalize_image_url",
    "settle",
]
