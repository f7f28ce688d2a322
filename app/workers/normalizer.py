"""Per-record transaction normalization, run inside pool workers.

A worker receives a ``ChunkWorkload`` and turns each raw statement record into a
``ProcessedTransaction``: direction, amount in cents, posting date, display title and
description, plus the classifier's suggestions. Invalid records are skipped with a warning;
they never fail the chunk.
"""

import math
from datetime import date
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from app.classification.base import BaseClassifier
from app.classification.engine import default_engine
from app.core.models import (
    ChunkResult,
    ChunkWorkload,
    ProcessedTransaction,
    RawStatementRecord,
    TransactionType,
)
from app.core.utils import get_logger
from app.parsing.encoding import fix_encoding

logger = get_logger("ofx-import.worker")

MIN_YEAR = 1900
MAX_YEAR = 2100

CREDIT_TYPES = frozenset({"CREDIT", "DEP", "DIRECTDEP", "INT", "DIV"})
DEBIT_TYPES = frozenset(
    {"DEBIT", "ATM", "POS", "FEE", "SRVCHG", "CHECK", "PAYMENT", "DIRECTDEBIT", "REPEATPMT"}
)

TYPE_LABELS: dict[str, str] = {
    "CREDIT": "Depósito",
    "DEBIT": "Saque",
    "INT": "Juros",
    "DIV": "Dividendos",
    "FEE": "Taxa",
    "SRVCHG": "Taxa de Serviço",
    "DEP": "Depósito",
    "ATM": "Saque ATM",
    "POS": "Compra POS",
    "XFER": "Transferência",
    "CHECK": "Cheque",
    "PAYMENT": "Pagamento",
    "CASH": "Dinheiro",
    "DIRECTDEP": "Depósito Direto",
    "DIRECTDEBIT": "Débito Direto",
    "REPEATPMT": "Pagamento Recorrente",
    "HOLD": "Retenção",
    "OTHER": "Outro",
}


class RecordSkipped(ValueError):
    """A raw record is unusable and must be left out of the import."""


def parse_ofx_date(value: str | None) -> date:
    """Parse ``YYYYMMDD[HHMMSS[.XXX][TZ]]`` into a calendar date."""
    if not value:
        msg = "missing posted date"
        raise RecordSkipped(msg)
    digits = value.strip()[:8]
    if len(digits) != 8 or not digits.isdigit():
        msg = f"unparsable posted date {value!r}"
        raise RecordSkipped(msg)
    year, month, day = int(digits[:4]), int(digits[4:6]), int(digits[6:8])
    if not MIN_YEAR <= year <= MAX_YEAR:
        msg = f"posted date year out of range: {value!r}"
        raise RecordSkipped(msg)
    try:
        return date(year, month, day)
    except ValueError as exc:
        msg = f"posted date out of range: {value!r}"
        raise RecordSkipped(msg) from exc


def parse_amount(value: str | None) -> Decimal:
    """Parse a signed decimal amount; a lone comma is taken as the decimal separator."""
    if value is None or not value.strip() or value.strip() == "0":
        msg = "missing or zero amount"
        raise RecordSkipped(msg)
    text = value.strip().replace(" ", "")
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    try:
        amount = Decimal(text)
    except InvalidOperation as exc:
        msg = f"unparsable amount {value!r}"
        raise RecordSkipped(msg) from exc
    if not amount.is_finite() or not math.isfinite(float(amount)):
        msg = f"non-finite amount {value!r}"
        raise RecordSkipped(msg)
    if amount == 0:
        msg = "zero amount"
        raise RecordSkipped(msg)
    return amount


def to_cents(amount: Decimal) -> int:
    """Magnitude of ``amount`` in minor units, rounded half up."""
    return int((abs(amount) * 100).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def transaction_type(trntype: str, amount: Decimal) -> TransactionType:
    """Map an OFX type code to CREDIT/DEBIT, using the amount sign for unknown codes."""
    code = (trntype or "").upper()
    if code in CREDIT_TYPES:
        return TransactionType.CREDIT
    if code in DEBIT_TYPES:
        return TransactionType.DEBIT
    return TransactionType.CREDIT if amount > 0 else TransactionType.DEBIT


def build_title(trntype: str, memo: str, checknum: str | None) -> str:
    """Memo text first, then the cheque number, then a label for the type code."""
    if memo.strip():
        return memo.strip()
    if checknum and checknum.strip():
        return f"Cheque {checknum.strip()}"
    code = (trntype or "OTHER").upper()
    return TYPE_LABELS.get(code, f"Transação {code}")


def normalize_record(
    record: RawStatementRecord,
    source_index: int,
    classifier: BaseClassifier = default_engine,
) -> ProcessedTransaction:
    """Turn one raw record into a processed transaction, or raise RecordSkipped."""
    posted = parse_ofx_date(record.dtposted)
    amount = parse_amount(record.trnamt)
    trntype = (record.trntype or "OTHER").upper()

    memo = fix_encoding(record.memo).strip()
    name = fix_encoding(record.name).strip()
    title = build_title(trntype, memo, record.checknum)

    classification_text = name or memo
    description = classification_text
    if not description or description == title:
        description = f"Transação {trntype}"

    category = classifier.suggest_category(classification_text)
    payment_method = classifier.suggest_payment_method(classification_text)

    return ProcessedTransaction(
        source_index=source_index,
        title=title,
        description=description,
        amount=to_cents(amount),
        type=transaction_type(trntype, amount),
        transaction_date=posted,
        fitid=record.fitid,
        trntype=trntype,
        checknum=record.checknum,
        memo=memo,
        name=name,
        suggested_category=category.value if category else None,
        category_confidence=category.confidence if category else None,
        category_rationale=category.rationale if category else None,
        suggested_payment_method=payment_method.value if payment_method else None,
        payment_method_confidence=payment_method.confidence if payment_method else None,
        payment_method_rationale=payment_method.rationale if payment_method else None,
    )


def process_chunk(workload: ChunkWorkload) -> ChunkResult:
    """Normalize every record of a chunk.

    Skipped records are logged and left out. A record whose dedup key (title, amount, date)
    already appeared earlier in the chunk is dropped silently. Anything else escaping the
    per-record loop is reported as a failed chunk instead of being raised across the pool.
    """
    transactions: list[ProcessedTransaction] = []
    seen: set[tuple[str, int, date]] = set()
    skipped = 0
    try:
        for position, record in enumerate(workload.records):
            source_index = workload.offset + position
            try:
                transaction = normalize_record(record, source_index)
            except RecordSkipped as exc:
                skipped += 1
                logger.warning(f"[import {workload.import_id}] record {source_index + 1} skipped: {exc}")
                continue
            if transaction.dedup_key in seen:
                logger.info(f"[import {workload.import_id}] record {source_index + 1} duplicates an earlier one")
                continue
            seen.add(transaction.dedup_key)
            transactions.append(transaction)
    except Exception as exc:
        logger.exception(f"[import {workload.import_id}] chunk {workload.chunk_index} failed")
        return ChunkResult(
            correlation_id=workload.correlation_id,
            chunk_index=workload.chunk_index,
            success=False,
            errors=[f"chunk {workload.chunk_index}: {exc}"],
        )

    logger.info(
        f"[import {workload.import_id}] chunk {workload.chunk_index + 1}/{workload.total_chunks}: "
        f"{len(transactions)} processed, {skipped} skipped"
    )
    return ChunkResult(
        correlation_id=workload.correlation_id,
        chunk_index=workload.chunk_index,
        success=True,
        processed_count=len(transactions),
        transactions=transactions,
    )
