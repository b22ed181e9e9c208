"""Main application entry point: `uvicorn gpuwatch.main:app`."""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from prometheus_fastapi_instrumentator import Instrumentator

from gpuwatch import __version__, metrics
from gpuwatch.api.routes import admin, outbound, watches
from gpuwatch.config import settings
from gpuwatch.db.session import Database
from gpuwatch.logging_config import setup_logging
from gpuwatch.queue.backend import JobQueue
from gpuwatch.queue.redis_queue import RedisJobQueue
from gpuwatch.worker.tasks import TaskRunner

logger = logging.getLogger(__name__)


def create_app(
    db: Optional[Database] = None,
    queue: Optional[JobQueue] = None,
    run_workers: Optional[bool] = None,
) -> FastAPI:
    """
    Build the FastAPI app.

    Handles passed in are used as-is and left open on shutdown; anything
    created here is closed by the lifespan.
    """
    run_workers = settings.run_workers_in_api if run_workers is None else run_workers

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting GPUWatch...")
        owned_db = db is None
        owned_queue = queue is None
        app.state.db = db or Database()
        app.state.queue = queue or RedisJobQueue()
        metrics.app_info.info({"version": __version__, "name": "gpuwatch"})

        runner = None
        if run_workers:
            runner = TaskRunner(app.state.db, app.state.queue)
            runner.start()
            logger.info("Pipeline workers started in API process")

        yield

        logger.info("Shutting down...")
        if runner:
            await runner.stop()
        if owned_queue:
            await app.state.queue.close()
        if owned_db:
            await app.state.db.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="GPUWatch",
        description="GPU price tracking, deal scoring and alerts",
        version=__version__,
        lifespan=lifespan,
    )

    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        excluded_handlers=["/metrics", "/health"],
        inprogress_name="http_requests_inprogress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

    app.include_router(watches.router)
    app.include_router(outbound.router)
    app.include_router(admin.router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    return app


setup_logging()
app = create_app()


if __name__ == "__main__":
    uvicorn.run(
        "gpuwatch.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
    )
