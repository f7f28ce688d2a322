"""Tests for the rule-based classification engine."""

import re

from app.classification.engine import ClassificationEngine, default_engine
from app.classification.rules import CATEGORY_RULES, PAYMENT_METHOD_RULES, Rule
from app.parsing.encoding import ENCODING_FIXES

PERFECT_CONFIDENCE = 100


def test_vt_payment_is_payroll() -> None:
    """A transport-voucher payment is classified as Folha with full confidence and a rationale."""
    suggestion = default_engine.suggest_category("Pagamento VT da Semana")
    if suggestion is None or suggestion.value != "Folha":
        msg = f"Expected Folha, got {suggestion}"
        raise AssertionError(msg)
    if suggestion.confidence != PERFECT_CONFIDENCE:
        msg = f"Expected confidence {PERFECT_CONFIDENCE}, got {suggestion.confidence}"
        raise AssertionError(msg)
    if not suggestion.rationale:
        msg = "Expected a non-empty rationale"
        raise AssertionError(msg)


def test_vt_inside_a_word_does_not_match() -> None:
    """Short codes only match when delimited."""
    suggestion = default_engine.suggest_category("Compra na VTEX")
    if suggestion is not None and suggestion.value == "Folha":
        msg = f"Did not expect Folha for an embedded 'VT', got {suggestion}"
        raise AssertionError(msg)


def test_pix_payment_method() -> None:
    """Any text mentioning PIX is a PIX payment."""
    suggestion = default_engine.suggest_payment_method("Transferencia PIX recebida de Maria")
    if suggestion is None or suggestion.value != "PIX" or suggestion.confidence != PERFECT_CONFIDENCE:
        msg = f"Expected PIX with confidence {PERFECT_CONFIDENCE}, got {suggestion}"
        raise AssertionError(msg)


def test_first_matching_rule_wins() -> None:
    """Declaration order decides between rules that both match."""
    suggestion = default_engine.suggest_payment_method("BOLETO PAGO")
    if suggestion is None or suggestion.value != "Boleto Bancário":
        msg = f"Expected the earlier 'Boleto Bancário' rule to win, got {suggestion}"
        raise AssertionError(msg)

    engine = ClassificationEngine(
        category_rules=(
            Rule(re.compile("mercado"), "Compras", 80, "first"),
            Rule(re.compile("mercado livre"), "Vendas", 100, "second"),
        ),
        payment_method_rules=(),
    )
    suggestion = engine.suggest_category("Mercado Livre")
    if suggestion is None or suggestion.rationale != "first":
        msg = f"Expected the first rule to win regardless of confidence, got {suggestion}"
        raise AssertionError(msg)


def test_dimensions_are_independent() -> None:
    """Category and payment method are suggested separately; either may be missing."""
    result = default_engine.classify("Compra POS supermercado")
    if result.category is not None:
        msg = f"Expected no category, got {result.category}"
        raise AssertionError(msg)
    if result.payment_method is None or result.payment_method.value != "Cartão de Débito":
        msg = f"Expected Cartão de Débito, got {result.payment_method}"
        raise AssertionError(msg)

    result = default_engine.classify("Loja XYZ")
    if result.category is not None or result.payment_method is not None:
        msg = f"Expected no suggestion at all, got {result}"
        raise AssertionError(msg)


def test_empty_text_has_no_suggestion() -> None:
    """Missing text is a miss, not an error."""
    if default_engine.suggest_category("") is not None or default_engine.suggest_payment_method(None) is not None:
        msg = "Expected no suggestion for empty text"
        raise AssertionError(msg)


def test_stats_counts_every_table() -> None:
    """Stats report the size of each rule table and their total."""
    stats = default_engine.stats()
    expected = (len(CATEGORY_RULES), len(PAYMENT_METHOD_RULES), len(ENCODING_FIXES))
    if (stats.category_rules, stats.payment_method_rules, stats.encoding_fixes) != expected:
        msg = f"Expected {expected}, got {stats}"
        raise AssertionError(msg)
    if stats.total_rules != sum(expected):
        msg = f"Expected total {sum(expected)}, got {stats.total_rules}"
        raise AssertionError(msg)
