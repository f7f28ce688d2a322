"""Import job orchestration: job creation, status, listing, deletion and metrics.

Processing itself is delegated to ``JobRunner``; this service owns the job records a client
sees while polling.
"""

from sqlalchemy.orm import sessionmaker

from app.core.db import ImportJob, session_scope
from app.core.exceptions import InvalidStateError, NotFoundError
from app.core.models import (
    ImportCreated,
    ImportJobDetail,
    ImportJobOut,
    ImportJobStatus,
    ImportMetrics,
    ImportStatus,
)
from app.core.repository import ImportRepository
from app.core.settings import Settings, get_settings
from app.core.utils import get_logger
from app.workers.cluster_manager import ClusterManager
from app.workers.job_runner import JobRunner

logger = get_logger("ofx-import.service")


def progress_percent(total_records: int, processed_records: int) -> int:
    """Processed share as a whole percentage, rounded half up; 0 when nothing was counted."""
    if total_records <= 0:
        return 0
    return int(processed_records * 100 / total_records + 0.5)


def _rate(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def job_status(job: ImportJob) -> ImportJobStatus:
    """Build the pollable status view of a job."""
    status = ImportStatus(job.status)
    return ImportJobStatus(
        status=status,
        progress=progress_percent(job.total_records, job.processed_records),
        total_records=job.total_records,
        processed_records=job.processed_records,
        error_message=job.error_message,
        import_date=job.import_date,
        pollable=status.is_pollable,
    )


class ImportService:
    """Entry point the HTTP layer calls for everything about import jobs."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cluster: ClusterManager,
        settings: Settings | None = None,
    ) -> None:
        """Initialize the service with the store, the shared worker pool and settings."""
        self.session_factory = session_factory
        self.cluster = cluster
        self.settings = settings or get_settings()
        self.runner = JobRunner(cluster, session_factory, self.settings)

    def create_import(self, bank_account_id: str, file_name: str, description: str | None = None) -> ImportCreated:
        """Create a PENDING job for an upload targeting an existing bank account."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            if repo.get_bank_account(bank_account_id) is None:
                msg = f"Bank account not found: {bank_account_id}"
                raise NotFoundError(msg)
            job = repo.create_job(bank_account_id, file_name, description)
            created = ImportCreated(
                message="OFX import started",
                import_id=job.id,
                status=ImportStatus(job.status),
                total_records=job.total_records,
                processed_records=job.processed_records,
            )
        logger.info(f"Created import {created.import_id} for account {bank_account_id}: {file_name}")
        return created

    async def process_import(self, import_id: str, content: bytes) -> ImportStatus:
        """Run the pipeline for a created job; meant to be scheduled as a background task.

        Raises ``InvalidStateError`` when the job is no longer PENDING.
        """
        return await self.runner.run_job(import_id, content)

    def get_status(self, import_id: str) -> ImportJobStatus:
        """Return the pollable status of a job."""
        with session_scope(self.session_factory) as session:
            return job_status(ImportRepository(session).get_job(import_id))

    def list_imports(self) -> list[ImportJobOut]:
        """Return every job with its bank account, newest first."""
        with session_scope(self.session_factory) as session:
            return [ImportJobOut.model_validate(job) for job in ImportRepository(session).list_jobs()]

    def get_import(self, import_id: str) -> ImportJobDetail:
        """Return a job with its staged transactions in file order."""
        with session_scope(self.session_factory) as session:
            job = ImportRepository(session).get_job(import_id, with_pending=True)
            return ImportJobDetail.model_validate(job)

    def delete_import(self, import_id: str) -> None:
        """Delete a job and, through the cascade, its staged transactions."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            job = repo.get_job(import_id)
            if ImportStatus(job.status) == ImportStatus.PROCESSING:
                msg = f"Import {import_id} is still processing"
                raise InvalidStateError(msg)
            repo.delete_job(import_id)
        logger.info(f"Deleted import {import_id}")

    def get_metrics(self, import_id: str) -> ImportMetrics:
        """Return classification coverage and progress for a job."""
        with session_scope(self.session_factory) as session:
            repo = ImportRepository(session)
            job = repo.get_job(import_id)
            rows = repo.pending_for_job(import_id)
            categorized = sum(1 for row in rows if row.suggested_category_id or row.final_category_id)
            with_method = sum(1 for row in rows if row.suggested_payment_method_id)
            return ImportMetrics(
                import_id=job.id,
                status=ImportStatus(job.status),
                total_records=job.total_records,
                processed_records=job.processed_records,
                pending_transactions=len(rows),
                categorized_transactions=categorized,
                payment_method_suggestions=with_method,
                progress=float(progress_percent(job.total_records, job.processed_records)),
                categorization_rate=_rate(categorized, len(rows)),
                payment_method_rate=_rate(with_method, len(rows)),
                import_date=job.import_date,
                cluster=self.cluster.stats(),
            )
