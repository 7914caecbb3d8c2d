"""Narrative analysis text for classified contracts and wallets.

The text is built from the same feature vector the rule table saw, so it
always agrees with the assigned label. Amounts are token units scaled by
decimals, not fiat values.
"""

from __future__ import annotations

from decimal import Decimal

from stacks_lakehouse.classifier.abi import SIP010_INTERFACE, VAULT_INTERFACE
from stacks_lakehouse.classifier.contracts import is_obfuscated
from stacks_lakehouse.classifier.models import ClassificationResult, ContractFeatures, WalletFeatures
from stacks_lakehouse.classifier.wallets import AMM_COUNTERPARTY_KEYWORDS, is_reference_asset

HIGH_FREQUENCY_PER_DAY = 100
FLOW_SKEW = Decimal("1.5")
LOW_CONFIDENCE = 50
PRIMARY_TOKEN_COUNT = 3

LABEL_DESCRIPTIONS = {
    "DEX": "a decentralized exchange that facilitates token swaps",
    "Yield Farm": "a protocol that distributes rewards for staking or providing liquidity",
    "Automated Market Maker": "a liquidity pool that prices trades automatically",
    "Token Contract": "a fungible token implementing the SIP-010 standard",
    "Arbitrage Contract": "a system that exploits price differences across markets",
    "Bridge Contract": "a protocol that moves assets between networks",
    "Staking Pool": "a contract where users lock tokens to earn rewards",
    "Smart Contract": "a general-purpose programmable contract",
}


def format_amount(amount: Decimal) -> str:
    """Compact amount: ``1.2M``, ``35K`` or ``12``."""
    if amount >= 1_000_000:
        return f"{amount / 1_000_000:.1f}M"
    if amount >= 1_000:
        return f"{amount / 1_000:.0f}K"
    return f"{amount:.0f}"


def _plural(count: int, noun: str) -> str:
    return f"{count:,} {noun}" if count == 1 else f"{count:,} {noun}s"


def describe_flow(inbound: Decimal, outbound: Decimal) -> str:
    if inbound <= 0 and outbound <= 0:
        return "No token transfers were observed."
    if inbound > outbound * FLOW_SKEW:
        return "Inbound value clearly exceeds outbound, a net accumulation pattern."
    if outbound > inbound * FLOW_SKEW:
        return "Outbound value clearly exceeds inbound, a net distribution pattern."
    return "Inbound and outbound flows are roughly balanced."


def _interface_sentence(interfaces: frozenset[str]) -> str | None:
    if not interfaces:
        return None
    if VAULT_INTERFACE in interfaces:
        kind = "liquidity pool management"
    elif SIP010_INTERFACE in interfaces:
        kind = "the fungible token standard"
    else:
        kind = "standard contract interfaces"
    return f"It implements {kind} ({', '.join(sorted(interfaces))})."


def _risk_notes(rate: float, result: ClassificationResult) -> list[str]:
    notes = []
    if rate >= HIGH_FREQUENCY_PER_DAY:
        notes.append(f"High-frequency activity ({rate:.0f} per day) points to automated callers.")
    if result.confidence < LOW_CONFIDENCE:
        notes.append(f"Low-confidence label ({result.confidence}/100).")
    notes.extend(f"Contradicting signal: {c}." for c in result.contradictions)
    return notes


def describe_contract(features: ContractFeatures, result: ClassificationResult) -> str:
    """Narrative covering a contract's activity, value flow and risk notes."""
    description = LABEL_DESCRIPTIONS.get(result.label, "a smart contract on the Stacks blockchain")
    sentences = [
        f"This contract operates as a {result.label}, {description}.",
        f"It processed {format_amount(features.total_flow)} in token value through "
        f"{_plural(features.interactions, 'interaction')} "
        f"({features.interactions_per_day:.1f} per day).",
    ]
    interfaces = _interface_sentence(features.interfaces)
    if interfaces:
        sentences.append(interfaces)

    if features.active_tokens == 2:
        sentences.append("Its transfers concentrate on a single token pair.")
    elif features.active_tokens > 2:
        sentences.append(f"Its transfers span {features.active_tokens} different tokens.")
    if features.interactions:
        sentences.append(describe_flow(features.inbound_value, features.outbound_value))
        sentences.append(
            f"The average interaction moves {format_amount(features.avg_value_per_interaction)} in token value."
        )

    risks = _risk_notes(features.interactions_per_day, result)
    if is_obfuscated(features.function_names):
        risks.append("Most entry points have opaque names, typical of obfuscated code.")
    sentences.extend(risks)
    return " ".join(sentences)


def _primary_tokens(features: WalletFeatures) -> list[str]:
    volume: dict[str, Decimal] = {}
    for flows in (features.inbound_by_asset, features.outbound_by_asset):
        for symbol, value in flows.items():
            volume[symbol] = volume.get(symbol, Decimal(0)) + value
    ranked = sorted(volume, key=lambda s: (-volume[s], s))
    return ranked[:PRIMARY_TOKEN_COUNT]


def _counterparty_kind(counterparties: frozenset[str]) -> str | None:
    lowered = [c.lower() for c in counterparties]
    if any("stableswap" in c for c in lowered):
        return "AMM protocols"
    if any("alex" in c for c in lowered):
        return "the ALEX ecosystem"
    if any("arkadiko" in c for c in lowered):
        return "the Arkadiko platform"
    if any(k in c for c in lowered for k in AMM_COUNTERPARTY_KEYWORDS):
        return "DeFi protocols"
    return None


def _seller_sentence(features: WalletFeatures) -> str:
    selling = [
        s
        for s, out in features.outbound_by_asset.items()
        if out > features.inbound_by_asset.get(s, Decimal(0)) and not is_reference_asset(s)
    ]
    receiving = [
        s
        for s, inbound in features.inbound_by_asset.items()
        if inbound > features.outbound_by_asset.get(s, Decimal(0)) and is_reference_asset(s)
    ]
    if selling and receiving:
        return f"It mainly sells {', '.join(sorted(selling)[:2])} in exchange for {', '.join(sorted(receiving)[:2])}."
    return "It mainly sells small-cap tokens for reference assets."


def describe_wallet(features: WalletFeatures, result: ClassificationResult) -> str:
    """Narrative covering a wallet's activity, token mix, value flow and risk notes."""
    sentences = [
        f"This wallet behaves like a {result.label}, moving {format_amount(features.total_volume)} "
        f"in token value across {_plural(features.active_tokens, 'token')}.",
    ]
    average = features.total_volume / features.transactions if features.transactions else Decimal(0)
    sentences.append(
        f"It averages {features.txs_per_day:.1f} transactions per day "
        f"with a typical transfer of {format_amount(average)}."
    )

    if result.label == "Distressed Seller":
        sentences.append(_seller_sentence(features))
    else:
        primary = _primary_tokens(features)
        if primary:
            sentences.append(f"Activity centres on {', '.join(primary)}.")
    kind = _counterparty_kind(features.counterparties)
    if kind:
        sentences.append(f"It interacts with {kind}.")

    sentences.append(describe_flow(features.inbound_total, features.outbound_total))
    sentences.extend(_risk_notes(features.txs_per_day, result))
    return " ".join(sentences)
