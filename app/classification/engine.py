"""Rule-based classification engine.

The engine walks an ordered rule table and returns the first rule whose pattern matches the
lower-cased text. Tables are tuples built at import time and never mutated, so a single engine
can be shared by every worker in the process.
"""

from collections.abc import Sequence

from app.classification.base import BaseClassifier
from app.classification.rules import CATEGORY_RULES, PAYMENT_METHOD_RULES, Rule
from app.core.models import RuleStats, Suggestion
from app.parsing.encoding import ENCODING_FIXES


class ClassificationEngine(BaseClassifier):
    """First-match-wins classifier over category and payment-method rule tables."""

    def __init__(
        self,
        category_rules: Sequence[Rule] = CATEGORY_RULES,
        payment_method_rules: Sequence[Rule] = PAYMENT_METHOD_RULES,
    ) -> None:
        """Initialize the engine with its rule tables (the built-in ones by default)."""
        self.category_rules = tuple(category_rules)
        self.payment_method_rules = tuple(payment_method_rules)

    @staticmethod
    def _first_match(rules: tuple[Rule, ...], text: str | None) -> Suggestion | None:
        if not text:
            return None
        lowered = text.lower()
        for rule in rules:
            if rule.pattern.search(lowered):
                return Suggestion(value=rule.value, confidence=rule.confidence, rationale=rule.rationale)
        return None

    def suggest_category(self, text: str | None) -> Suggestion | None:
        """Return the category suggested by the first matching rule, or None."""
        return self._first_match(self.category_rules, text)

    def suggest_payment_method(self, text: str | None) -> Suggestion | None:
        """Return the payment method suggested by the first matching rule, or None."""
        return self._first_match(self.payment_method_rules, text)

    def stats(self) -> RuleStats:
        """Return the size of each loaded rule table."""
        categories = len(self.category_rules)
        payment_methods = len(self.payment_method_rules)
        fixes = len(ENCODING_FIXES)
        return RuleStats(
            category_rules=categories,
            payment_method_rules=payment_methods,
            encoding_fixes=fixes,
            total_rules=categories + payment_methods + fixes,
        )


default_engine = ClassificationEngine()
