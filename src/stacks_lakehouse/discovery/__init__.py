"""Entity discovery - inserts newly seen contracts and tokens into the catalogue."""

from stacks_lakehouse.discovery.contracts import (
    ContractCandidate,
    ContractDiscovery,
    DiscoveryResult,
    find_contract_candidates,
    is_valid_contract_id,
)
from stacks_lakehouse.discovery.tokens import TokenDiscovery, find_token_candidates

__all__ = [
    "ContractCandidate",
    "ContractDiscovery",
    "DiscoveryResult",
    "TokenDiscovery",
    "find_contract_candidates",
    "find_token_candidates",
    "is_valid_contract_id",
]
