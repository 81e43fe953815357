"""
Asynchronous trace jobs.

A job is created PENDING, claimed by one worker (PROCESSING) and finishes
COMPLETED with its TraceResult or FAILED with a list of failure flags.
Cancellation is best-effort: a queued job is skipped when dequeued, a running
orchestrator is left to finish but its result is discarded, and no retry is
started once a job is cancelled. Stopping the workers fails any job they were
running.
"""
import asyncio
import logging
import uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional, Protocol

from chaintrace.chains import CHAINS, normalize_chain
from chaintrace.client_protocol import ChainDataSource
from chaintrace.config import EngineConfig
from chaintrace.errors import InvalidTraceRequest, JobNotFoundError, UnsupportedChainError
from chaintrace.models import FailureFlag, JobStatus, TraceJob, TraceResult
from chaintrace.trace_postprocess import RiskAggregator, postprocess_trace_result
from chaintrace.tracer import TraceOrchestrator, detect_seed_kind

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    """Storage for trace jobs."""

    def add(self, job: TraceJob) -> None:
        ...

    def get(self, job_id: str) -> Optional[TraceJob]:
        ...

    def all(self) -> List[TraceJob]:
        ...

    def claim(self, job_id: str) -> Optional[TraceJob]:
        """Move a PENDING job to PROCESSING and return it; None if it is not PENDING."""
        ...


class InMemoryJobStore:
    """Dict-backed store that keeps only the newest finished jobs."""

    def __init__(self, keep_completed: Optional[int] = None, keep_failed: Optional[int] = None):
        self._jobs: Dict[str, TraceJob] = {}
        self.keep_completed = keep_completed if keep_completed is not None else EngineConfig.JOB_KEEP_COMPLETED
        self.keep_failed = keep_failed if keep_failed is not None else EngineConfig.JOB_KEEP_FAILED

    def add(self, job: TraceJob) -> None:
        self._jobs[job.job_id] = job
        self.prune()

    def get(self, job_id: str) -> Optional[TraceJob]:
        return self._jobs.get(job_id)

    def all(self) -> List[TraceJob]:
        return list(self._jobs.values())

    def claim(self, job_id: str) -> Optional[TraceJob]:
        # No await between the check and the update, so two workers can never both claim
        job = self._jobs.get(job_id)
        if job is None or job.status != JobStatus.PENDING:
            return None
        job.status = JobStatus.PROCESSING
        job.started_at = datetime.now()
        job.attempts = 1
        return job

    def prune(self) -> int:
        """Drop the oldest finished jobs beyond the retention caps. PENDING and PROCESSING jobs are kept."""
        removed = 0
        for status, keep in ((JobStatus.COMPLETED, self.keep_completed), (JobStatus.FAILED, self.keep_failed)):
            finished = [j for j in self._jobs.values() if j.status == status]
            if len(finished) <= keep:
                continue
            finished.sort(key=lambda j: j.completed_at or j.created_at)
            for job in finished[:len(finished) - keep]:
                del self._jobs[job.job_id]
                removed += 1
        if removed:
            logger.debug(f"Pruned {removed} finished trace jobs")
        return removed


def _default_source_factory(chain: str) -> ChainDataSource:
    from chaintrace.rpc_client import EvmRpcDataSource
    return EvmRpcDataSource(chain)


class TraceJobManager:
    def __init__(
        self,
        source_factory: Optional[Callable[[str], ChainDataSource]] = None,
        store: Optional[JobStore] = None,
        orchestrator_factory: Optional[Callable[[ChainDataSource], TraceOrchestrator]] = None,
        aggregator: Optional[RiskAggregator] = None,
        worker_concurrency: Optional[int] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
        max_depth_limit: Optional[int] = None,
        supported_chains: Optional[List[str]] = None,
    ):
        self.source_factory = source_factory or _default_source_factory
        self.store = store or InMemoryJobStore()
        self.orchestrator_factory = orchestrator_factory or TraceOrchestrator
        self.aggregator = aggregator or RiskAggregator()
        self.worker_concurrency = worker_concurrency or EngineConfig.WORKER_CONCURRENCY
        self.max_attempts = max(1, max_attempts or EngineConfig.JOB_MAX_ATTEMPTS)
        self.retry_backoff = retry_backoff if retry_backoff is not None else EngineConfig.JOB_RETRY_BACKOFF
        self.max_depth_limit = max_depth_limit or EngineConfig.MAX_TRACE_DEPTH
        self.supported_chains = set(supported_chains or CHAINS.keys())

        self._queue: asyncio.Queue = asyncio.Queue()
        self._workers: List[asyncio.Task] = []

    # ─── Public surface ───────────────────────────────────────────────────────

    def submit(
        self,
        seed: str,
        chain: str,
        max_depth: Optional[int] = None,
        requester: Optional[str] = None,
    ) -> str:
        """Validate a trace request, create a PENDING job and queue it. Returns the job id."""
        seed = (seed or "").strip()
        seed_kind = detect_seed_kind(seed)
        if seed_kind is None:
            raise InvalidTraceRequest(f"Seed must be an address or a transaction hash: {seed!r}")

        chain_key = normalize_chain(chain)
        if chain_key not in self.supported_chains:
            raise UnsupportedChainError(f"Unsupported chain: {chain}")

        if max_depth is None:
            max_depth = min(EngineConfig.DEFAULT_DEPTH, self.max_depth_limit)
        if isinstance(max_depth, bool) or not isinstance(max_depth, int):
            raise InvalidTraceRequest("max_depth must be an integer")
        if not 1 <= max_depth <= self.max_depth_limit:
            raise InvalidTraceRequest(f"max_depth must be between 1 and {self.max_depth_limit}")

        job = TraceJob(
            job_id=f"trace_{uuid.uuid4().hex}",
            seed=seed.lower(),
            seed_kind=seed_kind,
            chain=chain_key,
            max_depth=max_depth,
            requested_by=requester,
        )
        self.store.add(job)
        self._queue.put_nowait(job.job_id)
        logger.info(f"Queued trace job {job.job_id} for {seed_kind} {job.seed} on {chain_key} (depth {max_depth})")
        return job.job_id

    def get_status(self, job_id: str) -> TraceJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Trace job not found: {job_id}")
        return job.model_copy()

    def cancel(self, job_id: str) -> bool:
        """Cancel a PENDING or PROCESSING job. Returns False if it already finished."""
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Trace job not found: {job_id}")
        if job.status.is_terminal:
            return False

        previous = self._mark_cancelled(job, "Trace was cancelled by user")
        logger.info(f"Cancelled trace job {job_id} (was {previous.value})")
        return True

    def _mark_cancelled(self, job: TraceJob, description: str) -> JobStatus:
        previous = job.status
        job.status = JobStatus.FAILED
        job.cancelled = True
        job.completed_at = datetime.now()
        job.failure_flags = [
            FailureFlag(
                type="TRACE_CANCELLED",
                severity="LOW",
                description=description,
                details={"previous_status": previous.value},
            )
        ]
        return previous

    def list_jobs(
        self,
        requester: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ) -> List[TraceJob]:
        # Store order breaks ties between jobs created in the same microsecond
        jobs = [
            (i, j) for i, j in enumerate(self.store.all())
            if (requester is None or j.requested_by == requester)
            and (status is None or j.status == status)
        ]
        jobs.sort(key=lambda item: (item[1].created_at, item[0]), reverse=True)
        return [j.model_copy() for _, j in jobs[:limit]]

    def stats(self) -> Dict[str, object]:
        jobs = self.store.all()
        counts = {s.value: 0 for s in JobStatus}
        for job in jobs:
            counts[job.status.value] += 1

        completed = [j for j in jobs if j.status == JobStatus.COMPLETED]
        terminal = counts[JobStatus.COMPLETED.value] + counts[JobStatus.FAILED.value]
        risk_levels = [j.risk_level for j in completed if j.risk_level is not None]

        return {
            "total_traces": len(jobs),
            "by_status": counts,
            "cancelled_traces": sum(1 for j in jobs if j.cancelled),
            "average_risk": sum(risk_levels) / len(risk_levels) if risk_levels else 0,
            "high_risk_traces": sum(1 for r in risk_levels if r > 70),
            "success_rate": (len(completed) / terminal) * 100 if terminal else 0,
        }

    # ─── Workers ──────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Spawn the worker pool on the running event loop."""
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"trace-worker-{i}")
            for i in range(self.worker_concurrency)
        ]
        logger.info(f"Started {len(self._workers)} trace workers")

    async def stop(self) -> None:
        workers, self._workers = self._workers, []
        for task in workers:
            task.cancel()
        await asyncio.gather(*workers, return_exceptions=True)
        if workers:
            logger.info("Trace workers stopped")

    async def join(self) -> None:
        """Wait until every queued job has been handled."""
        await self._queue.join()

    async def run_pending_once(self) -> Optional[TraceJob]:
        """Process the next queued job inline. Returns None when the queue is empty."""
        try:
            job_id = self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None
        try:
            await self.process_job(job_id)
        finally:
            self._queue.task_done()
        return self.store.get(job_id)

    async def _worker(self, index: int) -> None:
        while True:
            job_id = await self._queue.get()
            try:
                await self.process_job(job_id)
            except Exception:
                logger.exception(f"Worker {index} crashed on job {job_id}")
            finally:
                self._queue.task_done()

    # ─── Processing ───────────────────────────────────────────────────────────

    async def process_job(self, job_id: str) -> Optional[TraceJob]:
        job = self.store.claim(job_id)
        if job is None:
            logger.info(f"Skipping trace job {job_id}: no longer pending")
            return None

        logger.info(f"Processing trace job {job_id}")
        try:
            result = await self._run_trace(job)
        except asyncio.CancelledError:
            # Worker shutdown mid-run: leave the job terminal instead of PROCESSING
            if not job.status.is_terminal:
                self._mark_cancelled(job, "Trace was interrupted by worker shutdown")
                logger.warning(f"Trace job {job_id} interrupted by worker shutdown")
            raise
        except Exception as e:
            if job.cancelled:
                logger.info(f"Trace job {job_id} failed after cancellation: {e}")
                return job
            logger.error(f"Failed trace job {job_id}: {type(e).__name__}: {e}")
            job.status = JobStatus.FAILED
            job.completed_at = datetime.now()
            job.failure_flags = [
                FailureFlag(
                    type="TRACE_FAILED",
                    severity="LOW",
                    description=str(e) or type(e).__name__,
                    details={"error_type": type(e).__name__, "attempts": job.attempts},
                )
            ]
            return job

        if job.cancelled:
            logger.info(f"Discarding result of cancelled trace job {job_id}")
            return job

        job.result = result
        job.risk_level = result.summary.overall_risk_level
        job.status = JobStatus.COMPLETED
        job.completed_at = datetime.now()
        logger.info(
            f"Completed trace job {job_id}: {result.stats.total_transactions} txs, "
            f"risk level {job.risk_level}"
        )
        return job

    async def _run_trace(self, job: TraceJob) -> TraceResult:
        while True:
            try:
                return await self._run_once(job)
            except Exception as e:
                if job.cancelled or job.attempts >= self.max_attempts:
                    raise
                delay = self.retry_backoff * (2 ** (job.attempts - 1))
                logger.warning(
                    f"Trace job {job.job_id} attempt {job.attempts} failed ({e}); retrying in {delay:.1f}s"
                )
                await asyncio.sleep(delay)
                if job.cancelled:
                    raise
                job.attempts += 1

    async def _run_once(self, job: TraceJob) -> TraceResult:
        source = self.source_factory(job.chain)
        try:
            orchestrator = self.orchestrator_factory(source)
            result = await orchestrator.trace(job.seed, job.max_depth)
            return postprocess_trace_result(result, self.aggregator)
        finally:
            close = getattr(source, "aclose", None)
            if close is not None:
                await close()
