"""Classification engine - token-standard detection and archetype rules."""

from stacks_lakehouse.classifier.contracts import classify_contract, protocol_category
from stacks_lakehouse.classifier.models import (
    ClassificationResult,
    ContractFeatures,
    TokenDetection,
    TokenType,
    WalletFeatures,
)
from stacks_lakehouse.classifier.narrative import describe_contract, describe_wallet
from stacks_lakehouse.classifier.rules import Rule, RuleTable
from stacks_lakehouse.classifier.tokens import detect_token_standard, has_minimum_token_functions
from stacks_lakehouse.classifier.wallets import classify_wallet

__all__ = [
    "ClassificationResult",
    "ContractFeatures",
    "Rule",
    "RuleTable",
    "TokenDetection",
    "TokenType",
    "WalletFeatures",
    "classify_contract",
    "classify_wallet",
    "describe_contract",
    "describe_wallet",
    "detect_token_standard",
    "has_minimum_token_functions",
    "protocol_category",
]
