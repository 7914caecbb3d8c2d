"""Data models for the classification engine."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class TokenType(str, Enum):
    """Token-standard detection labels, strongest first."""

    FULL = "full_token"
    PARTIAL = "partial_token"
    SOURCE_DETECTED = "source_detected_token"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class ClassificationResult:
    """Outcome of one classification, projected onto catalogue rows.

    Attributes:
        entity_id: Contract identifier or wallet address that was classified.
        label: Assigned label (token type or archetype).
        confidence: Confidence score from 0 to 100.
        evidence: Notes supporting the label.
        contradictions: Notes that weigh against the label.
        analysis: Narrative summary of the features behind the label, when built.
    """

    entity_id: str
    label: str
    confidence: int
    evidence: tuple[str, ...] = ()
    contradictions: tuple[str, ...] = ()
    analysis: str | None = None

    @property
    def notes(self) -> list[str]:
        return [*self.evidence, *self.contradictions]


@dataclass(frozen=True)
class TokenDetection:
    """Result of token-standard detection for one contract."""

    token_type: TokenType
    score: int
    detected: frozenset[str]
    missing: frozenset[str]
    optional: frozenset[str] = frozenset()
    notes: tuple[str, ...] = ()
    from_source: bool = False

    @property
    def is_token(self) -> bool:
        return self.token_type != TokenType.UNKNOWN

    def to_result(self, entity_id: str) -> ClassificationResult:
        positives = tuple(n for n in self.notes if not n.startswith("-"))
        negatives = tuple(n for n in self.notes if n.startswith("-"))
        return ClassificationResult(
            entity_id=entity_id,
            label=self.token_type.value,
            confidence=self.score,
            evidence=positives,
            contradictions=negatives,
        )


@dataclass(frozen=True)
class ContractFeatures:
    """Interface and usage features for protocol archetype classification.

    Values are token amounts scaled by their decimals over the feature window.
    """

    contract_id: str
    function_names: frozenset[str] = frozenset()
    interfaces: frozenset[str] = frozenset()
    interactions: int = 0
    window_days: float = 1.0
    active_tokens: int = 0
    inbound_value: Decimal = Decimal(0)
    outbound_value: Decimal = Decimal(0)

    @property
    def interactions_per_day(self) -> float:
        return self.interactions / max(self.window_days, 1.0)

    @property
    def total_flow(self) -> Decimal:
        return self.inbound_value + self.outbound_value

    @property
    def avg_value_per_interaction(self) -> Decimal:
        if self.interactions == 0:
            return Decimal(0)
        return self.total_flow / self.interactions


@dataclass(frozen=True)
class WalletFeatures:
    """Transfer-flow features for counterparty archetype classification."""

    address: str
    transactions: int = 0
    window_days: float = 1.0
    inbound_by_asset: Mapping[str, Decimal] = field(default_factory=dict)
    outbound_by_asset: Mapping[str, Decimal] = field(default_factory=dict)
    counterparties: frozenset[str] = frozenset()

    @property
    def txs_per_day(self) -> float:
        return self.transactions / max(self.window_days, 1.0)

    @property
    def active_tokens(self) -> int:
        return len(set(self.inbound_by_asset) | set(self.outbound_by_asset))

    @property
    def inbound_total(self) -> Decimal:
        return sum(self.inbound_by_asset.values(), Decimal(0))

    @property
    def outbound_total(self) -> Decimal:
        return sum(self.outbound_by_asset.values(), Decimal(0))

    @property
    def net_flow(self) -> Decimal:
        return self.inbound_total - self.outbound_total

    @property
    def total_volume(self) -> Decimal:
        return self.inbound_total + self.outbound_total
