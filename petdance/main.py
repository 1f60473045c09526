import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Query

from . import metrics
from .config import load_settings
from .container import Container, build_container
from .jobs.routes import styles_router, videos_router

logger = logging.getLogger(__name__)


def create_app(container: Optional[Container] = None) -> FastAPI:
    """
    Build the worker app. Tests pass a ready-made container; in production
    it's built from the environment when the app starts.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "container", None) is None:
            settings = load_settings()
            logging.basicConfig(level=settings.log_level)
            app.state.container = build_container(settings)

        c: Container = app.state.container
        logger.info("Worker starting up...")
        metrics.set_gauge("start_time", time.time())

        if c.job_queue is not None:
            recovered = c.job_queue.recover_stale()
            if recovered:
                logger.info(f"Recovered {recovered} stale job(s) from previous session")
            if c.consumer is not None:
                c.consumer.start()
        else:
            logger.info("No Redis - jobs run as background tasks")
        yield
        logger.info("Worker shutting down...")
        if c.consumer is not None:
            c.consumer.stop()

    app = FastAPI(title="petdance", lifespan=lifespan)
    app.state.container = container
    app.include_router(videos_router)
    app.include_router(styles_router)

    @app.get("/health")
    def health_check():
        c: Container = app.state.container
        s = c.settings
        return {
            "status": "ok",
            "default_provider": c.providers.default,
            "supabase_url_set": bool(s.supabase_url),
            "queue": "redis" if c.job_queue is not None else "background_tasks",
            "storage_configured": s.storage_configured,
        }

    @app.get("/metrics")
    def metrics_endpoint():
        c: Container = app.state.container
        if c.job_queue is not None:
            metrics.set_gauge("queue_depth", c.job_queue.length())
            metrics.set_gauge("processing_count", c.job_queue.processing_count())
        return metrics.get_snapshot()

    @app.get("/queue/status")
    def queue_status(job_id: str = Query(...)):
        """Queue position for a job (0 once it has left the pending list)."""
        c: Container = app.state.container
        if c.job_queue is None:
            return {"position": 0, "queue_length": 0, "status": "unqueued"}
        meta = c.job_queue.meta(job_id)
        return {
            "position": c.job_queue.position(job_id) or 0,
            "queue_length": c.job_queue.length(),
            "status": meta.get("status", "unknown") if meta else "not_found",
        }

    return app


app = create_app()


if __name__ == "__main__":
    uvicorn.run("petdance.main:app", host="0.0.0.0", port=8000)
