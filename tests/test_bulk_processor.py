"""Tests for name resolution and batched, duplicate-tolerant staging."""

import asyncio
from datetime import date

import pytest
from sqlalchemy.exc import OperationalError

from app.core.db import session_scope
from app.core.models import ImportStatus, ProcessedTransaction, TransactionType
from app.core.repository import ImportRepository
from app.core.settings import Settings
from app.services.bulk_processor import CATEGORY_SYNONYMS, BulkProcessor, NameResolver, synonym_key

CATEGORIES = [("c-folha", "Folha"), ("c-compras", "Compras"), ("c-impostos", "Impostos")]


def _transaction(index: int, category: str | None, confidence: int | None = 100) -> ProcessedTransaction:
    return ProcessedTransaction(
        source_index=index,
        title=f"Compra {index}",
        description=f"Loja {index}",
        amount=1000 + index,
        type=TransactionType.DEBIT,
        transaction_date=date(2024, 1, 5),
        trntype="DEBIT",
        suggested_category=category,
        category_confidence=confidence if category else None,
        suggested_payment_method="PIX",
        payment_method_confidence=100,
    )


def test_resolver_exact_synonym_substring_and_miss() -> None:
    """Names resolve by exact match, then synonyms, then containment; unknown names give None."""
    resolver = NameResolver(CATEGORIES, CATEGORY_SYNONYMS)
    cases = {
        "Folha": "c-folha",
        "FOLHA": "c-folha",
        "c-compras": "c-compras",
        "TARIFAS_BANCARIAS": "c-impostos",
        "Saúde": "c-compras",
        "Compra": "c-compras",
        "Xyzzy": None,
        "": None,
        None: None,
    }
    for name, expected in cases.items():
        if resolver.resolve(name) != expected:
            msg = f"Expected {name!r} to resolve to {expected!r}, got {resolver.resolve(name)!r}"
            raise AssertionError(msg)


def test_synonym_key_strips_accents() -> None:
    """Synonym keys are accent-free, upper-case and underscore-joined."""
    if synonym_key("Prestação serviço") != "PRESTACAO_SERVICO":
        msg = f"Unexpected key: {synonym_key('Prestação serviço')}"
        raise AssertionError(msg)


def test_unresolved_suggestions_are_dropped() -> None:
    """A suggestion with no match loses both its id and its confidence."""
    categories = NameResolver(CATEGORIES, CATEGORY_SYNONYMS)
    methods = NameResolver([("pm-pix", "PIX")], {})
    rows = BulkProcessor.to_pending_rows(
        "job-1", [_transaction(0, "Folha"), _transaction(1, "Inexistente")], categories, methods
    )
    if (rows[0].suggested_category_id, rows[0].confidence) != ("c-folha", 100):
        msg = f"Expected Folha to resolve, got {rows[0]}"
        raise AssertionError(msg)
    if (rows[1].suggested_category_id, rows[1].confidence) != (None, None):
        msg = f"Expected the unknown category to be dropped, got {rows[1]}"
        raise AssertionError(msg)
    if rows[1].suggested_payment_method_id != "pm-pix" or rows[1].sequence != 1:
        msg = f"Unexpected payment method or sequence: {rows[1]}"
        raise AssertionError(msg)


def test_batched_insert_is_idempotent(sessions, reference_data) -> None:
    """Staging the same rows twice, across several batches, writes each row once."""
    with session_scope(sessions) as session:
        job_id = ImportRepository(session).create_job(reference_data["account"], "extrato.ofx").id
    processor = BulkProcessor(sessions, Settings(batch_size=2, batch_pause_seconds=0))
    categories, methods = processor.load_resolvers()
    rows = processor.to_pending_rows(job_id, [_transaction(i, "Folha") for i in range(5)], categories, methods)

    first = asyncio.run(processor.insert_pending(rows))
    second = asyncio.run(processor.insert_pending(rows))
    if (first, second) != (5, 0):
        msg = f"Expected 5 then 0 rows written, got {first} then {second}"
        raise AssertionError(msg)
    with session_scope(sessions) as session:
        stored = ImportRepository(session).pending_for_job(job_id)
        sequences = [row.sequence for row in stored]
        category_ids = {row.suggested_category_id for row in stored}
    if sequences != [0, 1, 2, 3, 4]:
        msg = f"Expected rows in file order, got {sequences}"
        raise AssertionError(msg)
    if category_ids != {reference_data["Folha"]}:
        msg = f"Expected every row to point at Folha, got {category_ids}"
        raise AssertionError(msg)


def test_progress_update_is_best_effort(sessions, reference_data) -> None:
    """Progress writes to unknown or finished jobs are swallowed and reported as False."""
    processor = BulkProcessor(sessions, Settings(batch_pause_seconds=0))
    if asyncio.run(processor.update_progress("missing", processed_records=1)):
        msg = "Expected an update of an unknown job to fail quietly"
        raise AssertionError(msg)

    with session_scope(sessions) as session:
        job = ImportRepository(session).create_job(reference_data["account"], "extrato.ofx")
        job.status = ImportStatus.FAILED.value
        job_id = job.id
    if asyncio.run(processor.update_progress(job_id, total_records=3)):
        msg = "Expected a write to a FAILED job to be refused"
        raise AssertionError(msg)

    with session_scope(sessions) as session:
        job = ImportRepository(session).create_job(reference_data["account"], "extrato.ofx")
        job_id = job.id
    if not asyncio.run(processor.update_progress(job_id, total_records=3, processed_records=5)):
        msg = "Expected the update to succeed"
        raise AssertionError(msg)
    with session_scope(sessions) as session:
        job = ImportRepository(session).get_job(job_id)
        counters = (job.total_records, job.processed_records)
    if counters != (3, 3):
        msg = f"Expected processed to be capped at total, got {counters}"
        raise AssertionError(msg)


def test_busy_store_writes_are_retried(sessions, reference_data, monkeypatch) -> None:
    """A locked store is retried; status writes raise once retries run out, counters report False."""
    with session_scope(sessions) as session:
        job_id = ImportRepository(session).create_job(reference_data["account"], "extrato.ofx").id
    processor = BulkProcessor(sessions, Settings(store_retry_attempts=3, store_retry_backoff_seconds=0))
    original = BulkProcessor._update_progress
    calls = {"count": 0, "fail": 1}

    def locked_then_free(self, import_id, **changes):
        calls["count"] += 1
        if calls["count"] <= calls["fail"]:
            raise OperationalError("UPDATE ofx_imports", {}, Exception("database is locked"))
        return original(self, import_id, **changes)

    monkeypatch.setattr(BulkProcessor, "_update_progress", locked_then_free)
    if not asyncio.run(processor.update_progress(job_id, total_records=4)) or calls["count"] != 2:
        msg = f"Expected the write to succeed on the second attempt, got {calls['count']} attempts"
        raise AssertionError(msg)

    calls.update(count=0, fail=10)
    with pytest.raises(OperationalError):
        asyncio.run(processor.set_status(job_id, ImportStatus.FAILED, error_message="x"))
    if calls["count"] != 3:
        msg = f"Expected 3 attempts before giving up, got {calls['count']}"
        raise AssertionError(msg)
    calls.update(count=0)
    if asyncio.run(processor.update_progress(job_id, processed_records=1)):
        msg = "Expected a counter write to report False once retries run out"
        raise AssertionError(msg)
    with session_scope(sessions) as session:
        job = ImportRepository(session).get_job(job_id)
        stored = (job.status, job.total_records)
    if stored != ("PENDING", 4):
        msg = f"Expected only the first write to be stored, got {stored}"
        raise AssertionError(msg)
