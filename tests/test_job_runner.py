"""Integration tests for the background import pipeline against a SQLite store."""

import asyncio

import pytest

from app.core.db import session_scope
from app.core.exceptions import InvalidStateError
from app.core.models import ChunkResult, ChunkWorkload, ImportStatus
from app.core.repository import ImportRepository
from app.services.import_service import ImportService, progress_percent
from app.workers.cluster_manager import ClusterManager


def failing_chunks(workload: ChunkWorkload) -> ChunkResult:
    """Report every chunk as failed."""
    return ChunkResult(
        correlation_id=workload.correlation_id,
        chunk_index=workload.chunk_index,
        success=False,
        errors=[f"chunk {workload.chunk_index}: boom"],
    )


def crashing_chunks(workload: ChunkWorkload) -> ChunkResult:
    """Fault the worker on every chunk."""
    msg = "segfault"
    raise RuntimeError(msg)


def _run(sessions, account_id: str, content: bytes, chunk_processor=None) -> tuple[str, ImportStatus]:
    async def scenario() -> tuple[str, ImportStatus]:
        if chunk_processor is None:
            cluster = ClusterManager(pool_size=2, backend="thread")
        else:
            cluster = ClusterManager(pool_size=2, backend="thread", chunk_processor=chunk_processor)
        service = ImportService(sessions, cluster)
        try:
            created = service.create_import(account_id, "extrato.ofx", "Janeiro")
            if created.status != ImportStatus.PENDING:
                msg = f"Expected a new job to be PENDING, got {created.status}"
                raise AssertionError(msg)
            final = await service.process_import(created.import_id, content)
        finally:
            await cluster.shutdown()
        return created.import_id, final

    return asyncio.run(scenario())


def test_three_records_with_zero_amount(sessions, reference_data, three_record_ofx) -> None:
    """The zero-amount record counts toward the total but is not processed or staged."""
    import_id, final = _run(sessions, reference_data["account"], three_record_ofx)
    if final != ImportStatus.PENDING_REVIEW:
        msg = f"Expected PENDING_REVIEW, got {final}"
        raise AssertionError(msg)
    with session_scope(sessions) as session:
        repo = ImportRepository(session)
        job = repo.get_job(import_id)
        rows = repo.pending_for_job(import_id)
        counters = (job.status, job.total_records, job.processed_records)
        staged = [(row.sequence, row.title, row.amount, row.type) for row in rows]
        suggestions = [(row.suggested_category_id, row.confidence, row.suggested_payment_method_id) for row in rows]
    if counters != ("PENDING_REVIEW", 3, 2):
        msg = f"Expected status/total/processed PENDING_REVIEW/3/2, got {counters}"
        raise AssertionError(msg)
    expected = [(0, "PIX ENVIADO", 15000, "DEBIT"), (2, "Pagamento VT da Semana", 8050, "DEBIT")]
    if staged != expected:
        msg = f"Expected staged rows {expected}, got {staged}"
        raise AssertionError(msg)
    if suggestions[0] != (None, None, reference_data["PIX"]):
        msg = f"Expected a PIX payment method and no category on the first row, got {suggestions[0]}"
        raise AssertionError(msg)
    if suggestions[1][:2] != (reference_data["Folha"], 100):
        msg = f"Expected Folha at 100 on the VT row, got {suggestions[1]}"
        raise AssertionError(msg)
    if progress_percent(3, 2) != 67:
        msg = f"Expected progress 67, got {progress_percent(3, 2)}"
        raise AssertionError(msg)


def test_malformed_file_fails_job(sessions, reference_data) -> None:
    """A file without the statement structure fails the job with a readable message."""
    import_id, final = _run(sessions, reference_data["account"], b"<OFX><SIGNONMSGSRSV1></SIGNONMSGSRSV1></OFX>")
    with session_scope(sessions) as session:
        job = ImportRepository(session).get_job(import_id)
        outcome = (job.status, job.error_message)
    if final != ImportStatus.FAILED or outcome != ("FAILED", "Invalid OFX format"):
        msg = f"Expected FAILED with 'Invalid OFX format', got {outcome}"
        raise AssertionError(msg)


def test_failed_chunk_fails_job(sessions, reference_data, three_record_ofx) -> None:
    """A chunk reporting failure is fatal for the job and nothing is staged."""
    import_id, final = _run(sessions, reference_data["account"], three_record_ofx, failing_chunks)
    with session_scope(sessions) as session:
        repo = ImportRepository(session)
        job = repo.get_job(import_id)
        outcome = (job.status, job.error_message or "", repo.count_pending(import_id))
    if final != ImportStatus.FAILED or outcome[0] != "FAILED" or "boom" not in outcome[1] or outcome[2] != 0:
        msg = f"Expected FAILED mentioning the chunk error and no rows, got {outcome}"
        raise AssertionError(msg)


def test_worker_fault_fails_job(sessions, reference_data, three_record_ofx) -> None:
    """A crashed worker fails the job instead of leaving it PROCESSING."""
    import_id, final = _run(sessions, reference_data["account"], three_record_ofx, crashing_chunks)
    with session_scope(sessions) as session:
        job = ImportRepository(session).get_job(import_id)
        outcome = (job.status, job.error_message or "")
    if final != ImportStatus.FAILED or outcome[0] != "FAILED" or "segfault" not in outcome[1]:
        msg = f"Expected FAILED mentioning the worker fault, got {outcome}"
        raise AssertionError(msg)


def test_status_view(sessions, reference_data, three_record_ofx) -> None:
    """Status reports progress and stops being pollable once processing ends."""
    import_id, _ = _run(sessions, reference_data["account"], three_record_ofx)
    status = ImportService(sessions, ClusterManager(pool_size=1, backend="thread")).get_status(import_id)
    if (status.progress, status.pollable, status.total_records) != (67, False, 3):
        msg = f"Unexpected status view: {status}"
        raise AssertionError(msg)
    if progress_percent(0, 0) != 0:
        msg = "Expected 0 progress when nothing was counted"
        raise AssertionError(msg)


def test_account_header_is_stored(sessions, reference_data, three_record_ofx) -> None:
    """The statement's account identification is kept with the job."""
    import_id, _ = _run(sessions, reference_data["account"], three_record_ofx)
    detail = ImportService(sessions, ClusterManager(pool_size=1, backend="thread")).get_import(import_id)
    account = detail.statement_account
    if account is None or (account.bank_id, account.account_id, account.currency) != ("0341", "56789-0", "BRL"):
        msg = f"Expected the BANKACCTFROM header on the job, got {account}"
        raise AssertionError(msg)


def test_finished_job_is_not_processed_again(sessions, staged_import, three_record_ofx) -> None:
    """Re-running a completed job is refused before anything is staged."""
    import_id = staged_import([{"title": "x"}], status=ImportStatus.COMPLETED)

    async def scenario() -> None:
        cluster = ClusterManager(pool_size=1, backend="thread")
        try:
            await ImportService(sessions, cluster).process_import(import_id, three_record_ofx)
        finally:
            await cluster.shutdown()

    with pytest.raises(InvalidStateError):
        asyncio.run(scenario())
    with session_scope(sessions) as session:
        repo = ImportRepository(session)
        outcome = (repo.get_job(import_id).status, repo.count_pending(import_id))
    if outcome != ("COMPLETED", 1):
        msg = f"Expected the completed job and its single row untouched, got {outcome}"
        raise AssertionError(msg)


def test_concurrent_imports_share_the_pool(sessions, reference_data, ofx_builder) -> None:
    """Two imports running at once on one process pool both reach review with their own rows in order."""

    def statement(count: int, prefix: str) -> bytes:
        records = [
            {
                "TRNTYPE": "DEBIT",
                "DTPOSTED": f"202401{index % 28 + 1:02d}",
                "TRNAMT": f"-{index + 1}.00",
                "FITID": f"{prefix}-{index}",
                "MEMO": f"{prefix} COMPRA {index}",
            }
            for index in range(count)
        ]
        return ofx_builder(records)

    sizes = {"A": 50, "B": 31}

    async def scenario() -> tuple[list[str], list[ImportStatus]]:
        cluster = ClusterManager(pool_size=2, backend="process")
        service = ImportService(sessions, cluster)
        try:
            ids = [service.create_import(reference_data["account"], f"{name}.ofx").import_id for name in sizes]
            runs = [
                service.process_import(import_id, statement(size, name))
                for import_id, (name, size) in zip(ids, sizes.items(), strict=True)
            ]
            finals = await asyncio.gather(*runs)
        finally:
            await cluster.shutdown()
        return ids, list(finals)

    ids, finals = asyncio.run(scenario())
    if finals != [ImportStatus.PENDING_REVIEW, ImportStatus.PENDING_REVIEW]:
        msg = f"Expected both imports to reach PENDING_REVIEW, got {finals}"
        raise AssertionError(msg)
    for import_id, (name, size) in zip(ids, sizes.items(), strict=True):
        with session_scope(sessions) as session:
            repo = ImportRepository(session)
            job = repo.get_job(import_id)
            counters = (job.status, job.total_records, job.processed_records)
            sequences = [row.sequence for row in repo.pending_for_job(import_id)]
            titles = {row.title.split(" ")[0] for row in repo.pending_for_job(import_id)}
        if counters != ("PENDING_REVIEW", size, size):
            msg = f"Expected import {name} stored as PENDING_REVIEW {size}/{size}, got {counters}"
            raise AssertionError(msg)
        if sequences != list(range(size)) or titles != {name}:
            msg = f"Expected import {name} to hold only its own rows in file order, got {sequences} {titles}"
            raise AssertionError(msg)
