"""Protocol archetype classification for contracts.

Rules are evaluated in a fixed priority order and the first match wins:

1. Token Contract: declares the SIP-010 interface
2. Yield Farm: reward/staking function names
3. Arbitrage Contract: obfuscated code, high frequency, low value
4. DEX: swap function names, or high token diversity and high frequency, with balanced flow
5. Automated Market Maker: vault interface, balanced flow, several tokens
6. Arbitrage Contract: very high frequency, very low value, few tokens
7. Bridge Contract: exactly two tokens with high interaction count
8. Staking Pool: inbound value well above outbound
9. Smart Contract: fallback
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal

from stacks_lakehouse.classifier.abi import SIP010_INTERFACE, VAULT_INTERFACE
from stacks_lakehouse.classifier.models import ClassificationResult, ContractFeatures
from stacks_lakehouse.classifier.rules import Rule, RuleTable

REWARD_FUNCTION_NAMES = (
    "claim",
    "claim-reward",
    "claim-rewards",
    "get-reward",
    "harvest",
    "stake",
    "unstake",
    "deposit",
    "withdraw",
    "earn",
    "compound",
    "pending-reward",
)
SWAP_FUNCTION_NAMES = (
    "swap",
    "swap-exact-tokens-for-tokens",
    "swap-tokens-for-exact-tokens",
    "do-swap",
    "exchange",
    "trade",
    "swap-x-for-y",
    "swap-y-for-x",
)
DISPATCH_FUNCTION_NAME = "dispatch"
_OPAQUE_NAME = re.compile(r"^[a-z0-9]{6,8}$")


@dataclass(frozen=True)
class ContractRuleConfig:
    """Frequency/value/diversity cutoffs for contract archetypes."""

    obfuscated_name_ratio: float = 0.5
    obfuscated_min_per_day: float = 50
    obfuscated_max_avg_value: Decimal = Decimal(100)
    dex_min_tokens: int = 5
    dex_min_per_day: float = 50
    dex_balance_ratio: Decimal = Decimal("0.3")
    amm_min_tokens: int = 2
    amm_balance_ratio: Decimal = Decimal("0.2")
    arbitrage_min_per_day: float = 200
    arbitrage_max_avg_value: Decimal = Decimal(25)
    arbitrage_max_tokens: int = 2
    bridge_tokens: int = 2
    bridge_min_interactions: int = 100
    staking_inbound_multiple: Decimal = Decimal(2)


DEFAULT_CONTRACT_RULE_CONFIG = ContractRuleConfig()


def has_reward_functions(names: frozenset[str]) -> bool:
    return any(reward in name for name in names for reward in REWARD_FUNCTION_NAMES)


def has_swap_functions(names: frozenset[str]) -> bool:
    return any(swap in name for name in names for swap in SWAP_FUNCTION_NAMES)


def is_obfuscated(names: frozenset[str], ratio: float = DEFAULT_CONTRACT_RULE_CONFIG.obfuscated_name_ratio) -> bool:
    """Dispatch-style entry point, or mostly short opaque function names."""
    if not names:
        return False
    if DISPATCH_FUNCTION_NAME in names:
        return True
    opaque = sum(1 for name in names if _OPAQUE_NAME.match(name))
    return opaque / len(names) > ratio


def _balanced(features: ContractFeatures, ratio: Decimal) -> bool:
    return abs(features.inbound_value - features.outbound_value) < ratio * features.total_flow


def build_contract_rules(config: ContractRuleConfig = DEFAULT_CONTRACT_RULE_CONFIG) -> RuleTable[ContractFeatures]:
    """Build the contract archetype rule table for a given set of thresholds."""

    def obfuscated_arbitrage(f: ContractFeatures) -> bool:
        return (
            is_obfuscated(f.function_names, config.obfuscated_name_ratio)
            and f.interactions_per_day >= config.obfuscated_min_per_day
            and f.avg_value_per_interaction < config.obfuscated_max_avg_value
        )

    def dex(f: ContractFeatures) -> bool:
        swap_abi = has_swap_functions(f.function_names)
        busy_multi_token = f.active_tokens >= config.dex_min_tokens and f.interactions_per_day >= config.dex_min_per_day
        if not (swap_abi or busy_multi_token):
            return False
        return swap_abi or _balanced(f, config.dex_balance_ratio)

    def amm(f: ContractFeatures) -> bool:
        return (
            VAULT_INTERFACE in f.interfaces
            and f.active_tokens >= config.amm_min_tokens
            and _balanced(f, config.amm_balance_ratio)
        )

    def frequency_arbitrage(f: ContractFeatures) -> bool:
        return (
            f.interactions_per_day >= config.arbitrage_min_per_day
            and f.avg_value_per_interaction < config.arbitrage_max_avg_value
            and f.active_tokens <= config.arbitrage_max_tokens
        )

    def bridge(f: ContractFeatures) -> bool:
        return f.active_tokens == config.bridge_tokens and f.interactions > config.bridge_min_interactions

    def staking(f: ContractFeatures) -> bool:
        return f.inbound_value > config.staking_inbound_multiple * f.outbound_value

    return RuleTable(
        [
            Rule(
                "standard-token-interface",
                "Token Contract",
                10,
                lambda f: SIP010_INTERFACE in f.interfaces,
                confidence=95,
                explanation="implements the SIP-010 fungible token interface",
            ),
            Rule(
                "reward-functions",
                "Yield Farm",
                20,
                lambda f: has_reward_functions(f.function_names),
                confidence=80,
                explanation="exposes reward or staking functions",
            ),
            Rule(
                "obfuscated-arbitrage",
                "Arbitrage Contract",
                30,
                obfuscated_arbitrage,
                confidence=70,
                explanation="obfuscated entry points with frequent low-value calls",
            ),
            Rule(
                "swap-activity",
                "DEX",
                40,
                dex,
                confidence=75,
                explanation="swap functions or balanced multi-token flow",
            ),
            Rule(
                "vault-interface",
                "Automated Market Maker",
                50,
                amm,
                confidence=70,
                explanation="vault interface with balanced multi-token flow",
            ),
            Rule(
                "high-frequency-low-value",
                "Arbitrage Contract",
                60,
                frequency_arbitrage,
                confidence=60,
                explanation="very frequent, very low value calls over few tokens",
            ),
            Rule(
                "two-token-bridge",
                "Bridge Contract",
                70,
                bridge,
                confidence=55,
                explanation="exactly two tokens with heavy interaction",
            ),
            Rule(
                "inbound-heavy",
                "Staking Pool",
                80,
                staking,
                confidence=50,
                explanation="inbound value materially exceeds outbound",
            ),
        ],
        default_label="Smart Contract",
        default_confidence=30,
        default_explanation="no archetype rule matched",
    )


DEFAULT_CONTRACT_RULES = build_contract_rules()


def classify_contract(
    features: ContractFeatures,
    rules: RuleTable[ContractFeatures] = DEFAULT_CONTRACT_RULES,
) -> ClassificationResult:
    return rules.classify(features.contract_id, features)


def protocol_category(contract_id: str) -> str:
    """Coarse protocol category from a contract's name."""
    name = contract_id.split(".", 1)[-1].lower()
    if "stableswap" in name:
        return "DEX - Stableswap"
    if "xyk" in name or "pool" in name:
        return "DEX - AMM"
    if "lending" in name or "borrow" in name:
        return "Lending"
    if "pox" in name or "stacking" in name:
        return "Stacking"
    if "token" in name:
        return "Token Contract"
    if "aggregator" in name or "helper" in name:
        return "DeFi Aggregator"
    return "Other"
