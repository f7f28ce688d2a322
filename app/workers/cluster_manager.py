"""Fixed pool of long-lived workers shared by every import job.

Each worker is an asyncio task that owns an inbox queue and a single-slot executor (a process
by default, a thread when ``worker_backend`` is ``thread``). A job's records are split into
contiguous chunks; chunk ``i`` is posted to worker ``i % pool_size`` under the job's
correlation id. Workers post their ``ChunkResult`` to a shared results queue, and a collector
task resolves the job's future once every expected chunk index has reported, with results
sorted by chunk index.

A worker fault (the executor itself raising) rejects every in-flight correlation id with
``WorkerPoolError``. Ordinary record problems never get that far: ``process_chunk`` reports
them inside the result.
"""

import asyncio
import math
from collections.abc import Callable, Sequence
from concurrent.futures import Executor, ProcessPoolExecutor, ThreadPoolExecutor
from dataclasses import dataclass, field

from app.core.exceptions import WorkerPoolError
from app.core.models import ChunkResult, ChunkWorkload, ClusterStats, RawStatementRecord
from app.core.settings import get_settings
from app.core.utils import chunked, get_logger, new_id
from app.workers.normalizer import process_chunk

logger = get_logger("ofx-import.cluster")

ChunkProcessor = Callable[[ChunkWorkload], ChunkResult]


@dataclass
class _Worker:
    worker_id: int
    inbox: asyncio.Queue
    executor: Executor
    task: asyncio.Task | None = None


@dataclass
class _InFlightJob:
    import_id: str
    expected: set[int]
    future: asyncio.Future
    results: dict[int, ChunkResult] = field(default_factory=dict)


class ClusterManager:
    """Dispatches chunk workloads to a fixed set of workers and joins their results per job."""

    def __init__(
        self,
        pool_size: int | None = None,
        backend: str | None = None,
        chunk_processor: ChunkProcessor = process_chunk,
    ) -> None:
        """Configure the pool; workers start on first use."""
        settings = get_settings()
        self.pool_size = pool_size or settings.worker_pool_size
        self.backend = backend or settings.worker_backend
        if self.pool_size < 1:
            msg = f"worker pool size must be at least 1, got {self.pool_size}"
            raise ValueError(msg)
        if self.backend not in ("process", "thread"):
            msg = f"unknown worker backend: {self.backend}"
            raise ValueError(msg)
        self._chunk_processor = chunk_processor
        self._workers: list[_Worker] = []
        self._results: asyncio.Queue | None = None
        self._collector: asyncio.Task | None = None
        self._in_flight: dict[str, _InFlightJob] = {}

    @property
    def is_initialized(self) -> bool:
        """Whether the worker tasks are running."""
        return bool(self._workers)

    def _new_executor(self, worker_id: int) -> Executor:
        if self.backend == "thread":
            return ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"ofx-worker-{worker_id}")
        return ProcessPoolExecutor(max_workers=1)

    def _ensure_started(self) -> None:
        if self._workers:
            return
        self._results = asyncio.Queue()
        for worker_id in range(self.pool_size):
            worker = _Worker(worker_id=worker_id, inbox=asyncio.Queue(), executor=self._new_executor(worker_id))
            worker.task = asyncio.create_task(self._run_worker(worker), name=f"ofx-worker-{worker_id}")
            self._workers.append(worker)
        self._collector = asyncio.create_task(self._collect(), name="ofx-collector")
        logger.info(f"Worker pool started: {self.pool_size} {self.backend} workers")

    async def _run_worker(self, worker: _Worker) -> None:
        loop = asyncio.get_running_loop()
        while True:
            workload = await worker.inbox.get()
            if workload is None:
                return
            try:
                result = await loop.run_in_executor(worker.executor, self._chunk_processor, workload)
            except Exception as exc:
                logger.exception(f"Worker {worker.worker_id} faulted on chunk {workload.chunk_index}")
                self._reject_all(f"Worker {worker.worker_id} faulted: {exc}")
                worker.executor.shutdown(wait=False, cancel_futures=True)
                worker.executor = self._new_executor(worker.worker_id)
                continue
            await self._results.put(result)

    async def _collect(self) -> None:
        while True:
            result: ChunkResult = await self._results.get()
            job = self._in_flight.get(result.correlation_id)
            if job is None or job.future.done():
                logger.debug(f"Dropping chunk {result.chunk_index} of finished job {result.correlation_id}")
                continue
            job.results[result.chunk_index] = result
            if job.expected.issubset(job.results):
                ordered = [job.results[index] for index in sorted(job.results)]
                job.future.set_result(ordered)

    def _reject_all(self, message: str) -> None:
        for correlation_id, job in self._in_flight.items():
            if not job.future.done():
                logger.error(f"Rejecting job {job.import_id} ({correlation_id}): {message}")
                job.future.set_exception(WorkerPoolError(message))

    async def process_records(self, import_id: str, records: Sequence[RawStatementRecord]) -> list[ChunkResult]:
        """Run ``records`` through the pool and return one result per chunk, in chunk order."""
        self._ensure_started()
        if not records:
            return []
        correlation_id = new_id()
        chunk_size = math.ceil(len(records) / self.pool_size)
        workloads = [
            ChunkWorkload(
                correlation_id=correlation_id,
                import_id=import_id,
                chunk_index=index,
                total_chunks=math.ceil(len(records) / chunk_size),
                offset=index * chunk_size,
                records=list(chunk),
            )
            for index, chunk in enumerate(chunked(records, chunk_size))
        ]
        future = asyncio.get_running_loop().create_future()
        self._in_flight[correlation_id] = _InFlightJob(
            import_id=import_id,
            expected={workload.chunk_index for workload in workloads},
            future=future,
        )
        logger.info(f"[import {import_id}] dispatching {len(records)} records in {len(workloads)} chunks")
        try:
            for workload in workloads:
                await self._workers[workload.chunk_index % self.pool_size].inbox.put(workload)
            return await future
        finally:
            self._in_flight.pop(correlation_id, None)

    def stats(self) -> ClusterStats:
        """Snapshot of the pool."""
        return ClusterStats(
            worker_count=self.pool_size,
            backend=self.backend,
            is_initialized=self.is_initialized,
            active_jobs=len(self._in_flight),
            queued_chunks=sum(worker.inbox.qsize() for worker in self._workers),
        )

    async def shutdown(self) -> None:
        """Stop every worker and release the executors. In-flight jobs are rejected."""
        if not self._workers:
            return
        self._reject_all("Worker pool shut down")
        for worker in self._workers:
            await worker.inbox.put(None)
        await asyncio.gather(*(worker.task for worker in self._workers), return_exceptions=True)
        if self._collector is not None:
            self._collector.cancel()
            await asyncio.gather(self._collector, return_exceptions=True)
        for worker in self._workers:
            worker.executor.shutdown(wait=True)
        self._workers = []
        self._collector = None
        self._results = None
        logger.info("Worker pool stopped")
