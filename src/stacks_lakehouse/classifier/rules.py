"""Ordered rule tables with first-match-wins evaluation.

Every classifier in this package is a ``RuleTable``: a list of
``(priority, predicate, label)`` rules evaluated in ascending priority.
The first rule whose predicate holds decides the label and later rules
are never evaluated.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Generic, TypeVar

from stacks_lakehouse.classifier.models import ClassificationResult

S = TypeVar("S")


@dataclass(frozen=True)
class Rule(Generic[S]):
    """A single classification rule."""

    name: str
    label: str
    priority: int
    predicate: Callable[[S], bool]
    confidence: int = 50
    explanation: str = ""


class RuleTable(Generic[S]):
    """Evaluates rules in priority order; the first match wins."""

    def __init__(
        self,
        rules: Iterable[Rule[S]],
        *,
        default_label: str,
        default_confidence: int = 30,
        default_explanation: str = "",
    ) -> None:
        ordered = sorted(rules, key=lambda r: r.priority)
        priorities = [r.priority for r in ordered]
        if len(priorities) != len(set(priorities)):
            raise ValueError("Rule priorities must be unique")
        self._rules = tuple(ordered)
        self.default_label = default_label
        self.default_confidence = default_confidence
        self.default_explanation = default_explanation

    @property
    def rules(self) -> tuple[Rule[S], ...]:
        return self._rules

    def first_match(self, subject: S) -> Rule[S] | None:
        for rule in self._rules:
            if rule.predicate(subject):
                return rule
        return None

    def classify(self, entity_id: str, subject: S) -> ClassificationResult:
        rule = self.first_match(subject)
        if rule is None:
            return ClassificationResult(
                entity_id=entity_id,
                label=self.default_label,
                confidence=self.default_confidence,
                evidence=(self.default_explanation,) if self.default_explanation else (),
            )
        return ClassificationResult(
            entity_id=entity_id,
            label=rule.label,
            confidence=rule.confidence,
            evidence=(f"{rule.name}: {rule.explanation}" if rule.explanation else rule.name,),
        )
