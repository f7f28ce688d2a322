"""Background orchestration of one OFX import.

The pipeline runs as a single asynchronous task per job: parse, dispatch chunks to the shared
worker pool, wait for every chunk, resolve and stage the rows, then hand the job over for
review. Anything fatal marks the job FAILED with a readable message; the traceback only goes
to the log.
"""

import asyncio

from sqlalchemy.orm import sessionmaker

from app.core.exceptions import ImportPipelineError, StatementFormatError
from app.core.models import ChunkResult, ImportStatus
from app.core.settings import Settings
from app.core.utils import get_logger
from app.parsing.ofx import parse_statement_bytes
from app.services.bulk_processor import BulkProcessor
from app.workers.cluster_manager import ClusterManager

logger = get_logger("ofx-import.worker")


class ChunkFailedError(RuntimeError):
    """At least one chunk reported an unrecoverable error."""


class JobRunner:
    """Runs the import pipeline for uploaded statements on a shared worker pool."""

    def __init__(
        self, cluster: ClusterManager, session_factory: sessionmaker, settings: Settings | None = None
    ) -> None:
        """Initialize JobRunner with the worker pool and the store's session factory."""
        self.cluster = cluster
        self.bulk = BulkProcessor(session_factory, settings)

    async def run_job(self, import_id: str, content: bytes) -> ImportStatus:
        """Process an uploaded statement end to end and return the job's final status.

        Only a PENDING job is processed. Any other state raises ``InvalidStateError`` before
        anything is parsed or staged.
        """
        logger.info(f"Starting import: {import_id} ({len(content)} bytes)")
        try:
            await self.bulk.start_job(import_id)
        except ImportPipelineError as exc:
            logger.warning(f"[import {import_id}] not started: {exc}")
            raise
        except Exception as exc:
            logger.exception(f"Could not start import {import_id}")
            return await self._fail(import_id, f"Import processing failed: {exc}")

        try:
            statement = await asyncio.to_thread(parse_statement_bytes, content)
            total = len(statement.records)
            account = statement.account.model_dump(exclude_none=True)
            await self.bulk.update_progress(
                import_id, total_records=total, processed_records=0, statement_account=account
            )

            results = await self.cluster.process_records(import_id, statement.records)
            _raise_for_failed_chunks(results)
            processed = sum(result.processed_count for result in results)
            transactions = [txn for result in results for txn in result.transactions]
            logger.info(f"[import {import_id}] {processed}/{total} records normalized")

            categories, payment_methods = await asyncio.to_thread(self.bulk.load_resolvers)
            rows = self.bulk.to_pending_rows(import_id, transactions, categories, payment_methods)
            written = await self.bulk.insert_pending(rows)
            if written < len(rows):
                logger.info(f"[import {import_id}] {len(rows) - written} rows already staged, skipped")

            await self.bulk.set_status(
                import_id,
                ImportStatus.PENDING_REVIEW,
                total_records=total,
                processed_records=processed,
                statement_account=account,
            )
        except StatementFormatError as exc:
            logger.warning(f"[import {import_id}] rejected: {exc}")
            return await self._fail(import_id, str(exc))
        except Exception as exc:
            logger.exception(f"Error processing import {import_id}")
            return await self._fail(import_id, f"Import processing failed: {exc}")

        logger.info(f"Import {import_id} ready for review")
        return ImportStatus.PENDING_REVIEW

    async def _fail(self, import_id: str, message: str) -> ImportStatus:
        await self.bulk.update_progress(import_id, status=ImportStatus.FAILED, error_message=message)
        return ImportStatus.FAILED


def _raise_for_failed_chunks(results: list[ChunkResult]) -> None:
    failed = [result for result in results if not result.success]
    if failed:
        errors = [error for result in failed for error in result.errors] or ["chunk failed"]
        raise ChunkFailedError("; ".join(errors))
