"""
FastAPI backend for the trace engine.
Submits trace jobs to the worker pool and exposes their status.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from chaintrace.errors import InvalidTraceRequest, JobNotFoundError
from chaintrace.jobs import TraceJobManager
from chaintrace.models import JobStatus, TraceJob

# Setup logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


class TraceRequest(BaseModel):
    seed: str
    chain: str = "ethereum"
    depth: Optional[int] = None
    requester: Optional[str] = None


def _job_view(job: TraceJob, include_result: bool = True) -> dict:
    exclude = None if include_result else {"result"}
    return job.model_dump(mode="json", exclude=exclude)


def create_app(manager: Optional[TraceJobManager] = None) -> FastAPI:
    manager = manager or TraceJobManager()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan handler."""
        logger.info("Starting trace API...")
        manager.start()
        yield
        await manager.stop()
        logger.info("Shutting down trace API...")

    app = FastAPI(
        title="Chain Trace API",
        description="Multi-chain transaction tracing with risk annotation",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.manager = manager

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.post("/api/traces", status_code=202)
    async def start_trace(request: TraceRequest):
        """Queue a trace job. The job runs in the background worker pool."""
        try:
            job_id = manager.submit(request.seed, request.chain, request.depth, request.requester)
        except InvalidTraceRequest as e:
            raise HTTPException(status_code=400, detail=str(e))

        logger.info(f"Trace requested: {job_id}")
        return {
            "message": "Transaction trace started",
            "trace": _job_view(manager.get_status(job_id), include_result=False),
        }

    @app.get("/api/traces")
    async def list_traces(
        requester: Optional[str] = None,
        status: Optional[JobStatus] = None,
        limit: int = 20,
    ):
        jobs = manager.list_jobs(requester=requester, status=status, limit=limit)
        return {"traces": [_job_view(j, include_result=False) for j in jobs]}

    @app.get("/api/traces/stats")
    async def trace_stats():
        return manager.stats()

    @app.get("/api/traces/{job_id}")
    async def get_trace(job_id: str):
        try:
            job = manager.get_status(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Trace not found")
        return _job_view(job)

    @app.delete("/api/traces/{job_id}")
    async def cancel_trace(job_id: str):
        try:
            cancelled = manager.cancel(job_id)
        except JobNotFoundError:
            raise HTTPException(status_code=404, detail="Trace not found")
        if not cancelled:
            raise HTTPException(status_code=400, detail="Cannot cancel completed or failed trace")
        return {"message": "Trace cancelled successfully", "job_id": job_id}

    @app.get("/api/health")
    async def health():
        """Detailed health check."""
        return {
            "status": "healthy",
            "timestamp": datetime.now().isoformat(),
            "version": VERSION,
            "traces": manager.stats()["by_status"],
        }

    return app


app = create_app()


def main():
    """Run the API server."""
    import uvicorn
    uvicorn.run(
        "chaintrace.api:app",
        host="0.0.0.0",
        port=8000,
    )


if __name__ == "__main__":
    main()
