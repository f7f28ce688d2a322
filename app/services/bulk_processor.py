"""Bulk persistence of processed transactions.

The classifier suggests category and payment method *names*. Before rows are staged those
names are resolved against the live reference tables: exact name match, then the curated
synonym table, then substring containment either way. A suggestion that resolves to nothing
is dropped along with its confidence. Rows are then written in bounded batches with a short
pause between them, and duplicate rows are skipped by the store.
"""

import asyncio
import unicodedata
from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any, TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from app.core.db import session_scope
from app.core.models import ImportStatus, PendingTransactionCreate, ProcessedTransaction
from app.core.repository import ImportRepository
from app.core.settings import Settings, get_settings
from app.core.utils import chunked, get_logger

logger = get_logger("ofx-import.bulk")

T = TypeVar("T")

CATEGORY_SYNONYMS: dict[str, tuple[str, ...]] = {
    "ALIMENTACAO": ("Compras",),
    "TRANSPORTE": ("Compras",),
    "ENTRETENIMENTO": ("Compras",),
    "SAUDE": ("Compras",),
    "RENDA": ("Vendas", "Serviços", "Outras Receitas"),
    "TRANSFERENCIA": ("Aporte Financeiro", "Outras Receitas"),
    "TARIFAS_BANCARIAS": ("Impostos",),
    "COMPRAS": ("Compras",),
    "FOLHA": ("Folha", "Salários"),
    "IMPOSTOS": ("Impostos",),
    "PARTICULAR": ("Particular",),
    "VENDAS": ("Vendas",),
    "PRESTACAO_SERVICO": ("Prestação de Serviço", "Serviços"),
    "JUROS_RENDIMENTOS": ("Juros e Rendimentos",),
    "JUROS_E_RENDIMENTOS": ("Juros e Rendimentos",),
    "OUTRAS_RECEITAS": ("Outras Receitas",),
}

PAYMENT_METHOD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "BOLETO": ("Boleto Bancário", "Boleto"),
    "BOLETO_BANCARIO": ("Boleto Bancário", "Boleto"),
    "CARTAO_DE_CREDITO": ("Cartão de Crédito", "Crédito"),
    "CARTAO_DE_DEBITO": ("Cartão de Débito", "Débito"),
    "TRANSFERENCIA_BANCARIA": ("Transferência Bancária", "Transferência", "TED"),
    "DEBITO_AUTOMATICO": ("Débito Automático",),
    "DINHEIRO": ("Dinheiro", "Espécie"),
}


def synonym_key(name: str) -> str:
    """Upper-case, accent-free, underscore-joined form used as synonym table key."""
    decomposed = unicodedata.normalize("NFKD", name)
    plain = "".join(char for char in decomposed if not unicodedata.combining(char))
    return "_".join(plain.upper().split())


class NameResolver:
    """Maps suggested names to identifiers of one reference table."""

    def __init__(self, entries: Iterable[tuple[str, str]], synonyms: Mapping[str, Sequence[str]]) -> None:
        """Build the resolver from ``(id, name)`` pairs and a synonym table."""
        self.entries = list(entries)
        self.synonyms = synonyms
        self._ids = {entry_id for entry_id, _ in self.entries}
        self._by_name: dict[str, str] = {}
        for entry_id, name in self.entries:
            self._by_name.setdefault(name.strip().lower(), entry_id)

    def resolve(self, value: str | None) -> str | None:
        """Return the identifier ``value`` refers to, or None when nothing matches."""
        if not value or not value.strip():
            return None
        if value in self._ids:
            return value
        wanted = value.strip().lower()
        if wanted in self._by_name:
            return self._by_name[wanted]
        for alias in self.synonyms.get(synonym_key(value), ()):
            alias_id = self._by_name.get(alias.lower())
            if alias_id is not None:
                return alias_id
        for entry_id, name in self.entries:
            candidate = name.strip().lower()
            if candidate and (wanted in candidate or candidate in wanted):
                return entry_id
        return None


class BulkProcessor:
    """Resolves suggestions and stages processed transactions in batches."""

    def __init__(self, session_factory: sessionmaker, settings: Settings | None = None) -> None:
        """Initialize with a session factory and the batching settings."""
        self.session_factory = session_factory
        self.settings = settings or get_settings()

    def load_resolvers(self) -> tuple[NameResolver, NameResolver]:
        """Build category and payment-method resolvers from the current reference tables."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            categories = [(category.id, category.name) for category in repo.list_categories()]
            methods = [(method.id, method.name) for method in repo.list_payment_methods()]
        return NameResolver(categories, CATEGORY_SYNONYMS), NameResolver(methods, PAYMENT_METHOD_SYNONYMS)

    @staticmethod
    def to_pending_rows(
        import_id: str,
        transactions: Iterable[ProcessedTransaction],
        categories: NameResolver,
        payment_methods: NameResolver,
    ) -> list[PendingTransactionCreate]:
        """Attach resolved identifiers to processed transactions."""
        rows = []
        for txn in transactions:
            category_id = categories.resolve(txn.suggested_category)
            method_id = payment_methods.resolve(txn.suggested_payment_method)
            if txn.suggested_category and category_id is None:
                logger.debug(f"[import {import_id}] category '{txn.suggested_category}' did not resolve")
            rows.append(
                PendingTransactionCreate(
                    import_job_id=import_id,
                    sequence=txn.source_index,
                    title=txn.title,
                    description=txn.description,
                    amount=txn.amount,
                    type=txn.type,
                    transaction_date=txn.transaction_date,
                    fitid=txn.fitid,
                    trntype=txn.trntype,
                    checknum=txn.checknum,
                    memo=txn.memo,
                    name=txn.name,
                    suggested_category_id=category_id,
                    confidence=txn.category_confidence if category_id else None,
                    suggested_payment_method_id=method_id,
                    payment_method_confidence=txn.payment_method_confidence if method_id else None,
                )
            )
        return rows

    async def _with_retry(self, import_id: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run a blocking store call off the loop, retrying while the store reports it is busy."""
        attempt = 1
        while True:
            try:
                return await asyncio.to_thread(func, *args, **kwargs)
            except OperationalError as exc:
                if attempt >= self.settings.store_retry_attempts:
                    raise
                logger.warning(f"[import {import_id}] store busy, retrying (attempt {attempt}): {exc.orig}")
                await asyncio.sleep(self.settings.store_retry_backoff_seconds * attempt)
                attempt += 1

    def _insert_batch(self, batch: Sequence[PendingTransactionCreate]) -> int:
        with session_scope(self.session_factory) as session:
            return ImportRepository(session).insert_pending_batch(batch)

    async def insert_pending(self, rows: Sequence[PendingTransactionCreate]) -> int:
        """Insert rows in batches of ``batch_size``. Returns rows written; insert errors propagate."""
        written = 0
        batches = list(chunked(rows, self.settings.batch_size)) if rows else []
        import_id = rows[0].import_job_id if rows else "-"
        for number, batch in enumerate(batches, start=1):
            written += await self._with_retry(import_id, self._insert_batch, batch)
            logger.info(f"Batch {number}/{len(batches)} stored ({len(batch)} rows)")
            if number < len(batches):
                await asyncio.sleep(self.settings.batch_pause_seconds)
        return written

    def _start(self, import_id: str) -> None:
        with session_scope(self.session_factory) as session:
            ImportRepository(session).start_processing(import_id)

    async def start_job(self, import_id: str) -> None:
        """Move a PENDING job to PROCESSING. Refusals and store errors propagate."""
        await self._with_retry(import_id, self._start, import_id)

    def _update_progress(self, import_id: str, **changes: Any) -> None:
        with session_scope(self.session_factory) as session:
            ImportRepository(session).update_progress(import_id, **changes)

    async def set_status(self, import_id: str, status: ImportStatus, **changes: Any) -> None:
        """Write a status transition together with ``changes``. Failures propagate."""
        await self._with_retry(import_id, self._update_progress, import_id, status=status, **changes)

    async def update_progress(
        self,
        import_id: str,
        total_records: int | None = None,
        processed_records: int | None = None,
        status: ImportStatus | None = None,
        error_message: str | None = None,
        statement_account: dict[str, Any] | None = None,
    ) -> bool:
        """Write job counters/status. Best effort: a failure is logged and reported as False."""
        try:
            await self._with_retry(
                import_id,
                self._update_progress,
                import_id,
                total_records=total_records,
                processed_records=processed_records,
                status=status,
                error_message=error_message,
                statement_account=statement_account,
            )
        except Exception:
            logger.exception(f"[import {import_id}] progress update failed (ignored)")
            return False
        return True
