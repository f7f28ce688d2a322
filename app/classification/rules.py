"""Rule tables for the classification engine.

Each table is evaluated top to bottom and the first matching rule wins, so order matters:
a specific or rare term must come before any generic rule that would otherwise shadow it.
Suggested values are category / payment method *names*; the bulk processor resolves them to
store identifiers. Confidence is a fixed property of the rule.
"""

import re
from typing import NamedTuple

# Separators banks use around short codes such as "VT" or "VR".
_SEP = r"[\s\-_/.,;]"


class Rule(NamedTuple):
    """A pre-compiled pattern and the suggestion it produces."""

    pattern: re.Pattern[str]
    value: str
    confidence: int
    rationale: str


def _rule(pattern: str, value: str, confidence: int, rationale: str) -> Rule:
    return Rule(re.compile(pattern, re.IGNORECASE), value, confidence, rationale)


CATEGORY_RULES: tuple[Rule, ...] = (
    # Payroll: transport and meal vouchers, payroll, benefits, bonuses
    _rule(
        rf"(?:^|{_SEP})(?:VT|VR)(?={_SEP}|$)",
        "Folha",
        100,
        "Matched VT/VR (vale transporte / vale refeição) -> Folha",
    ),
    _rule(
        r"VT\s+e\s+VR|VT\s*&\s*VR|VT\s*/\s*VR",
        "Folha",
        100,
        "Matched VT e VR (vale transporte e vale refeição) -> Folha",
    ),
    _rule(rf"(?:^|{_SEP})FOLHA(?={_SEP}|$)", "Folha", 100, "Matched folha de pagamento -> Folha"),
    _rule(
        r"vale[\s\-_]*(?:transporte|refei[cç][aã]o|alimenta[cç][aã]o)",
        "Folha",
        95,
        "Matched vale transporte/refeição/alimentação -> Folha",
    ),
    _rule(
        r"benef[ií]cio|subs[ií]dio|aux[ií]lio",
        "Folha",
        90,
        "Matched benefício/subsídio/auxílio -> Folha",
    ),
    _rule(r"\bpremia[cç][aã]o\b", "Folha", 100, "Matched premiação -> Folha"),
    _rule(r"\bleads\b", "Folha", 100, "Matched leads payout -> Folha"),
    # Taxes and bank fees
    _rule(
        r"\b(?:DARF|GPS|DAS\s+(?:SIMPLES|MEI)|IPTU|IPVA|SIMPLES\s+NACIONAL|IMPOSTO)\b",
        "Impostos",
        90,
        "Matched tax collection (DARF/GPS/DAS/IPTU/IPVA) -> Impostos",
    ),
    _rule(
        r"\b(?:TARIFA|TAR\s+PACOTE|PACOTE\s+DE\s+SERVI[CÇ]OS|ANUIDADE|CESTA\s+DE\s+SERVI[CÇ]OS)\b",
        "TARIFAS_BANCARIAS",
        85,
        "Matched bank service fee -> Tarifas bancárias",
    ),
    # Investment income
    _rule(
        r"\b(?:RENDIMENTOS?|REND\s+PAGO|JUROS\s+S/?\s*CAPITAL|RESGATE\s+APLICA[CÇ][AÃ]O)\b",
        "Juros e Rendimentos",
        85,
        "Matched investment income -> Juros e Rendimentos",
    ),
    # Utilities and rent
    _rule(
        r"\b(?:ENERGIA|ELETROPAULO|ENEL|CEMIG|COPEL|LIGHT\s+S\.?A)\b",
        "Energia Elétrica",
        85,
        "Matched power utility -> Energia Elétrica",
    ),
    _rule(
        r"\b(?:VIVO|CLARO\s+(?:S\.?A|NET|BRASIL)|TIM|OI\s+FIXO|INTERNET|TELEFONIA)\b",
        "Telefone/Internet",
        80,
        "Matched telecom provider -> Telefone/Internet",
    ),
    _rule(r"\bALUGUEL\b", "Aluguel", 85, "Matched aluguel -> Aluguel"),
)


PAYMENT_METHOD_RULES: tuple[Rule, ...] = (
    _rule(
        r"\b(?:PIX|PIX\s+RECEBIMENTO|PIX\s+PAGAMENTO|PIX\s+TRANSFERENCIA|PIX\s+ENVIADO|PIX\s+RECEBIDO"
        r"|PIX\s+IN|PIX\s+OUT)\b",
        "PIX",
        100,
        "Matched PIX transaction",
    ),
    _rule(
        r"\b(?:BOLETO|BOLETO\s+BANCARIO|BOLETO\s+PAGO|BOLETO\s+RECEBIDO|BOLETO\s+EMITIDO"
        r"|BOLETO\s+COMPENSADO|BOLETO\s+LIQUIDADO)\b",
        "Boleto Bancário",
        100,
        "Matched boleto bancário",
    ),
    _rule(
        r"\b(?:BOLETO|BOLETO\s+PAGO|BOLETO\s+RECEBIDO|BOLETO\s+EMITIDO)\b",
        "Boleto",
        95,
        "Matched boleto",
    ),
    _rule(
        r"\b(?:CART[AÃ]O\s+CR[EÉ]DITO|CART[AÃ]O\s+DE\s+CR[EÉ]DITO|CREDITO|COMPRA\s+CREDITO"
        r"|PAGAMENTO\s+CREDITO|CREDITO\s+CARTAO|FATURA\s+CREDITO)\b",
        "Cartão de Crédito",
        100,
        "Matched credit card",
    ),
    _rule(
        r"\b(?:CREDITO|COMPRA\s+CREDITO|PAGAMENTO\s+CREDITO)\b",
        "Cartão de Crédito",
        90,
        "Matched credit (probably card)",
    ),
    _rule(
        r"\b(?:CART[AÃ]O\s+D[EÉ]BITO|CART[AÃ]O\s+DE\s+D[EÉ]BITO|DEBITO|COMPRA\s+DEBITO"
        r"|PAGAMENTO\s+DEBITO|DEBITO\s+CARTAO)\b",
        "Cartão de Débito",
        100,
        "Matched debit card",
    ),
    _rule(
        r"\b(?:POS|COMPRA\s+POS|PAGAMENTO\s+POS|TERMINAL\s+POS|POS\s+DEBITO)\b",
        "Cartão de Débito",
        85,
        "Matched POS purchase (probably debit)",
    ),
    _rule(
        r"\b(?:CHEQUE|CHEQUE\s+NUMERO|CHEQUE\s+COMPENSADO|CHEQUE\s+EMITIDO|CHEQUE\s+LIQUIDADO"
        r"|CHEQUE\s+PROPRIO)\b",
        "Cheque",
        100,
        "Matched cheque",
    ),
    _rule(
        r"\b(?:DEBITO\s+AUTOMATICO|DEBITO\s+EM\s+CONTA|DEBITO\s+DIRETO|AUTOMATICO|DEBITO\s+AUT"
        r"|AUTOMATICO\s+DEBITO)\b",
        "Débito Automático",
        100,
        "Matched automatic debit",
    ),
    _rule(
        r"\b(?:DINHEIRO|CASH|EFETIVO|ESPECIE|DINHEIRO\s+FISICO)\b",
        "Dinheiro",
        100,
        "Matched cash",
    ),
    _rule(
        r"\b(?:SAQUE|ATM|SAQUE\s+ATM|SAQUE\s+TERMINAL|SAQUE\s+EFETIVO|SAQUE\s+DINHEIRO)\b",
        "Dinheiro",
        95,
        "Matched ATM withdrawal (cash)",
    ),
    _rule(
        r"\b(?:TRANSFER[EÊ]NCIA|TRANSFERENCIA\s+BANCARIA|TRANSFERENCIA\s+ENTRE\s+CONTAS|TED|DOC"
        r"|TRANSFERENCIA\s+ELETRONICA)\b",
        "Transferência Bancária",
        100,
        "Matched bank transfer",
    ),
    _rule(
        r"\b(?:DEP[OÓ]SITO|DEPOSITO\s+BANCARIO|DEPOSITO\s+EM\s+CONTA|DEPOSITO\s+EFETIVO)\b",
        "Transferência Bancária",
        90,
        "Matched bank deposit",
    ),
    _rule(
        r"\b(?:TED|DOC|TRANSFERENCIA\s+ELETRONICA|TRANSFERENCIA\s+INTERBANCARIA)\b",
        "Transferência Bancária",
        100,
        "Matched TED/DOC bank transfer",
    ),
    _rule(
        r"\b(?:COMPRA\s+ONLINE|E-COMMERCE|SHOPPING\s+ONLINE|COMPRA\s+INTERNET)\b",
        "Cartão de Crédito",
        80,
        "Matched online purchase (probably credit card)",
    ),
    _rule(
        r"\b(?:ASSINATURA|RECORRENTE|MENSALIDADE|PLANO|SUBSCRIPTION)\b",
        "Cartão de Crédito",
        85,
        "Matched recurring payment (probably credit card)",
    ),
)
