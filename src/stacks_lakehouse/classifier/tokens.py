"""Fungible-token standard (SIP-010) detection.

Detection works from the function list of a parsed contract interface.
When no interface is available the contract's source text is used instead.
Source-based results are always capped below interface-based ones, and a
source-based label can never be ``full_token``.

Scoring for interface-based detection:
- Up to 80 points for coverage of the seven required functions
- +5 each when ``transfer`` and ``get-balance`` are present
- +5 when ``transfer`` has the standard (amount, sender, recipient[, memo]) shape
- Up to +10 for optional standard-adjacent functions (2 each)
- -20 / -15 when ``transfer`` / ``get-balance`` are missing
- -10 when more than three names look like protocol administration
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from stacks_lakehouse.classifier.abi import (
    abi_function_names,
    parse_abi_functions,
    source_function_names,
)
from stacks_lakehouse.classifier.models import TokenDetection, TokenType

REQUIRED_TOKEN_FUNCTIONS = (
    "get-name",
    "get-symbol",
    "get-decimals",
    "get-total-supply",
    "get-token-uri",
    "transfer",
    "get-balance",
)
MINIMUM_TOKEN_FUNCTIONS = ("transfer", "get-balance", "get-total-supply")
OPTIONAL_TOKEN_FUNCTIONS = ("mint", "burn", "transfer-memo", "get-owner", "set-token-uri")
PROTOCOL_NAME_KEYWORDS = ("admin", "governance", "vault", "pool", "stake", "farm")

_SOURCE_FUNCTION_KEYWORDS = {
    "transfer": re.compile(r"transfer", re.IGNORECASE),
    "balance": re.compile(r"balance", re.IGNORECASE),
    "supply": re.compile(r"supply", re.IGNORECASE),
}
_SOURCE_TOKEN_KEYWORDS = re.compile(r"define-fungible-token|fungible-token|sip-010|sip010", re.IGNORECASE)


@dataclass(frozen=True)
class TokenDetectionConfig:
    """Thresholds and weights for token detection."""

    full_min_functions: int = 5
    full_min_score: int = 60
    partial_min_functions: int = 3
    coverage_points: int = 80
    transfer_bonus: int = 5
    balance_bonus: int = 5
    signature_bonus: int = 5
    transfer_min_args: int = 3
    optional_points_each: int = 2
    optional_points_max: int = 10
    missing_transfer_penalty: int = 20
    missing_balance_penalty: int = 15
    protocol_function_limit: int = 3
    protocol_penalty: int = 10
    source_partial_max_score: int = 40
    source_detected_score: int = 20


DEFAULT_TOKEN_DETECTION_CONFIG = TokenDetectionConfig()


def has_minimum_token_functions(function_names: frozenset[str] | set[str]) -> bool:
    return all(name in function_names for name in MINIMUM_TOKEN_FUNCTIONS)


def _score_functions(
    names: frozenset[str],
    transfer_arg_count: int | None,
    config: TokenDetectionConfig,
) -> tuple[int, list[str]]:
    notes: list[str] = []
    detected = [f for f in REQUIRED_TOKEN_FUNCTIONS if f in names]
    score = len(detected) / len(REQUIRED_TOKEN_FUNCTIONS) * config.coverage_points
    notes.append(f"{len(detected)}/{len(REQUIRED_TOKEN_FUNCTIONS)} required functions present")

    if "transfer" in names:
        score += config.transfer_bonus
    else:
        score -= config.missing_transfer_penalty
        notes.append(f"-{config.missing_transfer_penalty}: transfer function missing")
    if "get-balance" in names:
        score += config.balance_bonus
    else:
        score -= config.missing_balance_penalty
        notes.append(f"-{config.missing_balance_penalty}: get-balance function missing")

    if transfer_arg_count is not None and transfer_arg_count >= config.transfer_min_args:
        score += config.signature_bonus
        notes.append("transfer signature has standard shape")

    optional = [f for f in OPTIONAL_TOKEN_FUNCTIONS if f in names]
    if optional:
        score += min(len(optional) * config.optional_points_each, config.optional_points_max)
        notes.append(f"optional functions: {', '.join(optional)}")

    protocol_like = [n for n in names if any(k in n.lower() for k in PROTOCOL_NAME_KEYWORDS)]
    if len(protocol_like) > config.protocol_function_limit:
        score -= config.protocol_penalty
        notes.append(f"-{config.protocol_penalty}: {len(protocol_like)} protocol-like functions")

    return round(max(0.0, min(100.0, score))), notes


def detect_from_interface(
    abi: dict[str, Any],
    config: TokenDetectionConfig = DEFAULT_TOKEN_DETECTION_CONFIG,
) -> TokenDetection:
    """Detect token-standard membership from a parsed interface."""
    names = abi_function_names(abi)
    transfer = next((f for f in parse_abi_functions(abi) if f.name == "transfer"), None)
    score, notes = _score_functions(names, len(transfer.arg_names) if transfer else None, config)

    detected = frozenset(f for f in REQUIRED_TOKEN_FUNCTIONS if f in names)
    missing = frozenset(REQUIRED_TOKEN_FUNCTIONS) - detected
    if len(detected) >= config.full_min_functions and score >= config.full_min_score:
        token_type = TokenType.FULL
    elif len(detected) >= config.partial_min_functions:
        token_type = TokenType.PARTIAL
    else:
        token_type = TokenType.UNKNOWN

    return TokenDetection(
        token_type=token_type,
        score=score,
        detected=detected,
        missing=missing,
        optional=frozenset(f for f in OPTIONAL_TOKEN_FUNCTIONS if f in names),
        notes=tuple(notes),
    )


def detect_from_source(
    source: str,
    config: TokenDetectionConfig = DEFAULT_TOKEN_DETECTION_CONFIG,
) -> TokenDetection:
    """Lower-confidence detection from source text when no interface is available."""
    names = source_function_names(source)
    detected = frozenset(f for f in REQUIRED_TOKEN_FUNCTIONS if f in names)
    missing = frozenset(REQUIRED_TOKEN_FUNCTIONS) - detected
    keywords = all(pattern.search(source) for pattern in _SOURCE_FUNCTION_KEYWORDS.values())
    token_keyword = _SOURCE_TOKEN_KEYWORDS.search(source) is not None
    notes = ["no parsed interface; detection from source text"]

    if len(detected) >= config.partial_min_functions or (keywords and token_keyword):
        score, score_notes = _score_functions(names, None, config)
        notes.extend(score_notes)
        return TokenDetection(
            token_type=TokenType.PARTIAL,
            score=min(score, config.source_partial_max_score),
            detected=detected,
            missing=missing,
            notes=tuple(notes),
            from_source=True,
        )
    if token_keyword:
        notes.append("fungible-token declaration found in source")
        return TokenDetection(
            token_type=TokenType.SOURCE_DETECTED,
            score=config.source_detected_score,
            detected=detected,
            missing=missing,
            notes=tuple(notes),
            from_source=True,
        )
    return TokenDetection(
        token_type=TokenType.UNKNOWN,
        score=0,
        detected=detected,
        missing=missing,
        notes=tuple(notes),
        from_source=True,
    )


def detect_token_standard(
    abi: dict[str, Any] | None,
    source: str | None = None,
    config: TokenDetectionConfig = DEFAULT_TOKEN_DETECTION_CONFIG,
) -> TokenDetection:
    """Detect token-standard membership, preferring the interface over source text.

    An interface result always wins, even when it is ``unknown``; source text
    is consulted only when no interface with functions is available.
    """
    if abi_function_names(abi):
        return detect_from_interface(abi or {}, config)
    if source:
        return detect_from_source(source, config)
    return TokenDetection(
        token_type=TokenType.UNKNOWN,
        score=0,
        detected=frozenset(),
        missing=frozenset(REQUIRED_TOKEN_FUNCTIONS),
        notes=("no interface or source available",),
    )


def token_function_names(abi: dict[str, Any] | None, source: str | None = None) -> frozenset[str]:
    """Function names used for minimum-function checks (interface first, then source)."""
    names = abi_function_names(abi)
    if names:
        return names
    return source_function_names(source)
