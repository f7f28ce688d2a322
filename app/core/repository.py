"""Repository over the transaction store used by the import pipeline.

All pipeline stages reach the store through ``ImportRepository``. It wraps one SQLAlchemy
session; callers own the transaction boundary (see ``app.core.db.session_scope``).
"""

from collections.abc import Sequence
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session, selectinload

from app.core.db import (
    BankAccount,
    Category,
    ImportJob,
    LedgerTransaction,
    PaymentMethod,
    PendingTransaction,
    PendingTransactionTag,
    Tag,
)
from app.core.exceptions import InvalidStateError, NotFoundError
from app.core.models import ImportStatus, PendingTransactionCreate
from app.core.utils import new_id


class ImportRepository:
    """Data access for import jobs, staged rows and the reference tables they point at."""

    def __init__(self, session: Session) -> None:
        """Initialize the repository with a SQLAlchemy session."""
        self.session = session

    # --- Jobs ---

    def get_bank_account(self, bank_account_id: str) -> BankAccount | None:
        """Return an active bank account or None."""
        stmt = select(BankAccount).where(BankAccount.id == bank_account_id, BankAccount.is_active.is_(True))
        return self.session.execute(stmt).scalar_one_or_none()

    def create_job(self, bank_account_id: str, file_name: str, description: str | None = None) -> ImportJob:
        """Insert a new job in PENDING state."""
        job = ImportJob(
            id=new_id(),
            bank_account_id=bank_account_id,
            file_name=file_name,
            description=description,
            status=ImportStatus.PENDING.value,
            total_records=0,
            processed_records=0,
        )
        self.session.add(job)
        self.session.flush()
        return job

    def get_job(self, job_id: str, *, with_pending: bool = False) -> ImportJob:
        """Return a job by id or raise NotFoundError."""
        stmt = select(ImportJob).where(ImportJob.id == job_id).options(selectinload(ImportJob.bank_account))
        if with_pending:
            stmt = stmt.options(
                selectinload(ImportJob.pending_transactions).selectinload(PendingTransaction.suggested_category),
                selectinload(ImportJob.pending_transactions).selectinload(PendingTransaction.final_category),
                selectinload(ImportJob.pending_transactions).selectinload(PendingTransaction.suggested_payment_method),
                selectinload(ImportJob.pending_transactions)
                .selectinload(PendingTransaction.tag_links)
                .selectinload(PendingTransactionTag.tag),
            )
        job = self.session.execute(stmt).scalar_one_or_none()
        if job is None:
            msg = f"OFX import not found: {job_id}"
            raise NotFoundError(msg)
        return job

    def list_jobs(self) -> list[ImportJob]:
        """Return every job, newest first, with its bank account loaded."""
        stmt = select(ImportJob).options(selectinload(ImportJob.bank_account)).order_by(ImportJob.import_date.desc())
        return list(self.session.execute(stmt).scalars())

    def delete_job(self, job_id: str) -> None:
        """Delete a job; its staged rows go with it."""
        job = self.get_job(job_id)
        self.session.delete(job)

    def transition(self, job: ImportJob, target: ImportStatus, error_message: str | None = None) -> None:
        """Move a job to ``target`` if the lifecycle allows it, else raise InvalidStateError."""
        current = ImportStatus(job.status)
        if current != target and not current.can_transition_to(target):
            msg = f"Import {job.id} cannot move from {current} to {target}"
            raise InvalidStateError(msg)
        job.status = target.value
        if error_message is not None:
            job.error_message = error_message

    def start_processing(self, job_id: str) -> ImportJob:
        """Claim a PENDING job for processing; any other state raises InvalidStateError."""
        job = self.get_job(job_id)
        current = ImportStatus(job.status)
        if not current.can_transition_to(ImportStatus.PROCESSING):
            msg = f"Import {job_id} is {current} and cannot be processed"
            raise InvalidStateError(msg)
        job.status = ImportStatus.PROCESSING.value
        return job

    def update_progress(
        self,
        job_id: str,
        total_records: int | None = None,
        processed_records: int | None = None,
        status: ImportStatus | None = None,
        error_message: str | None = None,
        statement_account: dict[str, Any] | None = None,
    ) -> ImportJob:
        """Update a job's counters and optionally its status; terminal jobs are rejected."""
        job = self.get_job(job_id)
        if ImportStatus(job.status).is_terminal:
            msg = f"Import {job_id} is {job.status} and accepts no further writes"
            raise InvalidStateError(msg)
        if statement_account is not None:
            job.statement_account = statement_account
        if total_records is not None:
            job.total_records = total_records
        if processed_records is not None:
            job.processed_records = min(processed_records, job.total_records)
        if status is not None:
            self.transition(job, status, error_message)
        elif error_message is not None:
            job.error_message = error_message
        return job

    # --- Reference data ---

    def list_categories(self) -> list[Category]:
        """Return every category."""
        return list(self.session.execute(select(Category).order_by(Category.name)).scalars())

    def list_payment_methods(self) -> list[PaymentMethod]:
        """Return active payment methods."""
        stmt = select(PaymentMethod).where(PaymentMethod.is_active.is_(True)).order_by(PaymentMethod.name)
        return list(self.session.execute(stmt).scalars())

    def get_category(self, category_id: str) -> Category | None:
        """Return a category or None."""
        return self.session.get(Category, category_id)

    def get_active_tags(self, tag_ids: Sequence[str]) -> list[Tag]:
        """Return the active tags among ``tag_ids``."""
        if not tag_ids:
            return []
        stmt = select(Tag).where(Tag.id.in_(list(tag_ids)), Tag.is_active.is_(True))
        return list(self.session.execute(stmt).scalars())

    # --- Pending transactions ---

    def insert_pending_batch(self, rows: Sequence[PendingTransactionCreate]) -> int:
        """Insert staged rows, skipping any that collide on the dedup key. Returns rows written."""
        if not rows:
            return 0
        values: list[dict[str, Any]] = []
        for row in rows:
            data = row.model_dump()
            data["id"] = new_id()
            data["type"] = row.type.value
            values.append(data)
        dialect = self.session.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(PendingTransaction).values(values).on_conflict_do_nothing()
        elif dialect == "sqlite":
            stmt = sqlite.insert(PendingTransaction).values(values).on_conflict_do_nothing()
        else:
            return self._insert_pending_one_by_one(values)
        result = self.session.execute(stmt)
        return max(result.rowcount or 0, 0)

    def _insert_pending_one_by_one(self, values: list[dict[str, Any]]) -> int:
        written = 0
        for data in values:
            exists = self.session.execute(
                select(PendingTransaction.id).where(
                    PendingTransaction.import_job_id == data["import_job_id"],
                    PendingTransaction.title == data["title"],
                    PendingTransaction.amount == data["amount"],
                    PendingTransaction.transaction_date == data["transaction_date"],
                )
            ).first()
            if exists:
                continue
            self.session.add(PendingTransaction(**data))
            written += 1
        self.session.flush()
        return written

    def get_pending(self, pending_id: str) -> PendingTransaction:
        """Return a pending transaction with its relations, or raise NotFoundError."""
        stmt = (
            select(PendingTransaction)
            .where(PendingTransaction.id == pending_id)
            .options(
                selectinload(PendingTransaction.import_job),
                selectinload(PendingTransaction.suggested_category),
                selectinload(PendingTransaction.final_category),
                selectinload(PendingTransaction.suggested_payment_method),
                selectinload(PendingTransaction.tag_links).selectinload(PendingTransactionTag.tag),
            )
        )
        pending = self.session.execute(stmt).scalar_one_or_none()
        if pending is None:
            msg = f"Pending OFX transaction not found: {pending_id}"
            raise NotFoundError(msg)
        return pending

    def pending_for_job(self, job_id: str) -> list[PendingTransaction]:
        """Return a job's staged rows in original file order."""
        stmt = (
            select(PendingTransaction)
            .where(PendingTransaction.import_job_id == job_id)
            .options(
                selectinload(PendingTransaction.suggested_category),
                selectinload(PendingTransaction.final_category),
                selectinload(PendingTransaction.suggested_payment_method),
                selectinload(PendingTransaction.tag_links).selectinload(PendingTransactionTag.tag),
            )
            .order_by(PendingTransaction.sequence)
        )
        return list(self.session.execute(stmt).scalars())

    def count_pending(self, job_id: str) -> int:
        """Return how many staged rows a job has."""
        stmt = select(func.count()).select_from(PendingTransaction).where(PendingTransaction.import_job_id == job_id)
        return self.session.execute(stmt).scalar_one()

    def delete_pending_for_job(self, job_id: str) -> int:
        """Delete every staged row of a job. Returns rows deleted."""
        result = self.session.execute(delete(PendingTransaction).where(PendingTransaction.import_job_id == job_id))
        return result.rowcount or 0

    def replace_tags(self, pending: PendingTransaction, tags: Sequence[Tag]) -> None:
        """Replace the tag set of a pending transaction."""
        pending.tag_links.clear()
        self.session.flush()
        for tag in tags:
            pending.tag_links.append(PendingTransactionTag(tag_id=tag.id, tag=tag))
        self.session.flush()

    # --- Ledger ---

    def create_ledger_transaction(
        self,
        pending: PendingTransaction,
        bank_account_id: str,
        category_id: str | None,
        payment_method_id: str | None,
    ) -> LedgerTransaction:
        """Create the authoritative ledger entry for an approved pending row."""
        ledger = LedgerTransaction(
            id=new_id(),
            title=pending.title,
            description=pending.description,
            amount=pending.amount,
            type=pending.type,
            status="PAID",
            transaction_date=pending.transaction_date,
            due_date=pending.transaction_date,
            paid_date=pending.transaction_date,
            category_id=category_id,
            payment_method_id=payment_method_id,
            bank_account_id=bank_account_id,
            import_job_id=pending.import_job_id,
        )
        self.session.add(ledger)
        self.session.flush()
        return ledger
