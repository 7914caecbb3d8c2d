"""Counterparty (wallet) archetype classification.

Rules are evaluated in a fixed priority order and the first match wins.
Each rule carries a short explanation that is surfaced to the dashboard.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal

from stacks_lakehouse.classifier.models import ClassificationResult, WalletFeatures
from stacks_lakehouse.classifier.rules import Rule, RuleTable

# Reference assets a distressed seller moves into (matched by symbol substring).
REFERENCE_ASSETS = ("STX", "SBTC", "USDA", "SUSDT", "DIKO", "ALEX")
AMM_COUNTERPARTY_KEYWORDS = ("stableswap", "amm", "alex", "arkadiko")


@dataclass(frozen=True)
class WalletRuleConfig:
    """Thresholds for wallet archetypes."""

    automated_min_per_day: float = 100
    seller_min_reference_inbound: Decimal = Decimal(50)
    seller_min_other_outbound: Decimal = Decimal(50)
    seller_min_reference_share: Decimal = Decimal("0.3")
    seller_min_other_share: Decimal = Decimal("0.3")
    seller_min_assets: int = 2
    power_min_tokens: int = 8
    power_min_per_day: float = 20
    accumulator_inbound_multiple: Decimal = Decimal(3)
    accumulator_max_per_day: float = 10
    trader_min_per_day: float = 10
    trader_net_ratio: Decimal = Decimal("0.3")
    lp_min_tokens: int = 4
    casual_max_per_day: float = 5


DEFAULT_WALLET_RULE_CONFIG = WalletRuleConfig()


def is_reference_asset(symbol: str) -> bool:
    upper = symbol.upper()
    return any(ref in upper for ref in REFERENCE_ASSETS)


def _split_flows(flows: Mapping[str, Decimal]) -> tuple[Decimal, Decimal]:
    reference = Decimal(0)
    other = Decimal(0)
    for symbol, value in flows.items():
        if is_reference_asset(symbol):
            reference += value
        else:
            other += value
    return reference, other


def build_wallet_rules(config: WalletRuleConfig = DEFAULT_WALLET_RULE_CONFIG) -> RuleTable[WalletFeatures]:
    """Build the wallet archetype rule table for a given set of thresholds."""

    def distressed_seller(f: WalletFeatures) -> bool:
        ref_in, other_in = _split_flows(f.inbound_by_asset)
        ref_out, other_out = _split_flows(f.outbound_by_asset)
        total_in = ref_in + other_in
        total_out = ref_out + other_out
        if total_in <= 0 or total_out <= 0:
            return False
        return (
            ref_in > config.seller_min_reference_inbound
            and other_out > config.seller_min_other_outbound
            and ref_in / total_in > config.seller_min_reference_share
            and other_out / total_out > config.seller_min_other_share
            and f.active_tokens >= config.seller_min_assets
        )

    def accumulator(f: WalletFeatures) -> bool:
        return (
            f.inbound_total > config.accumulator_inbound_multiple * f.outbound_total
            and f.txs_per_day < config.accumulator_max_per_day
        )

    def active_trader(f: WalletFeatures) -> bool:
        return f.txs_per_day >= config.trader_min_per_day and abs(f.net_flow) < config.trader_net_ratio * f.total_volume

    def liquidity_provider(f: WalletFeatures) -> bool:
        amm = any(k in c.lower() for c in f.counterparties for k in AMM_COUNTERPARTY_KEYWORDS)
        return amm and f.active_tokens >= config.lp_min_tokens

    return RuleTable(
        [
            Rule(
                "automated",
                "Automated Wallet",
                10,
                lambda f: f.txs_per_day >= config.automated_min_per_day,
                confidence=85,
                explanation="transaction rate only achievable by a bot",
            ),
            Rule(
                "distressed-seller",
                "Distressed Seller",
                20,
                distressed_seller,
                confidence=70,
                explanation="receives reference assets while selling other tokens",
            ),
            Rule(
                "power-user",
                "DeFi Power User",
                30,
                lambda f: f.active_tokens >= config.power_min_tokens and f.txs_per_day >= config.power_min_per_day,
                confidence=70,
                explanation="many tokens and a high daily transaction rate",
            ),
            Rule(
                "accumulator",
                "Token Accumulator",
                40,
                accumulator,
                confidence=65,
                explanation="receives far more value than it sends",
            ),
            Rule(
                "active-trader",
                "Active Trader",
                50,
                active_trader,
                confidence=60,
                explanation="frequent trading with small net position change",
            ),
            Rule(
                "liquidity-provider",
                "Liquidity Provider",
                60,
                liquidity_provider,
                confidence=60,
                explanation="interacts with AMM pools across several tokens",
            ),
            Rule(
                "casual",
                "Casual User",
                70,
                lambda f: f.txs_per_day < config.casual_max_per_day,
                confidence=50,
                explanation="occasional activity",
            ),
        ],
        default_label="Active User",
        default_confidence=40,
        default_explanation="regular activity without a distinctive pattern",
    )


DEFAULT_WALLET_RULES = build_wallet_rules()


def classify_wallet(
    features: WalletFeatures,
    rules: RuleTable[WalletFeatures] = DEFAULT_WALLET_RULES,
) -> ClassificationResult:
    return rules.classify(features.address, features)
