"""
Handing jobs from the request handler to the worker.

With Redis configured, job ids go onto the durable queue and a consumer
thread (started in the app lifespan) runs them. Without Redis they run as
FastAPI background tasks after the response is sent; that mode loses
in-flight jobs on restart and is meant for local development.
"""

import time
import logging
import threading
from typing import Callable, Optional

from fastapi import BackgroundTasks

from .. import metrics
from ..queue import VideoJobQueue
from .orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)


def make_dispatcher(
    orchestrator: GenerationOrchestrator,
    job_queue: Optional[VideoJobQueue],
    background_tasks: BackgroundTasks,
    owner_id: str,
) -> Callable[[str], None]:
    def dispatch(job_id: str):
        if job_queue is not None:
            job_queue.enqueue(owner_id, job_id)
        else:
            background_tasks.add_task(orchestrator.run_job, job_id)

    return dispatch


class QueueConsumer:
    """Background thread: dequeue, run, ack; nack if run_job itself blows up."""

    def __init__(self, job_queue: VideoJobQueue, orchestrator: GenerationOrchestrator, block_seconds: int = 5):
        self.queue = job_queue
        self.orchestrator = orchestrator
        self.block_seconds = block_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self):
        self._thread = threading.Thread(target=self._loop, name="petdance-consumer", daemon=True)
        self._thread.start()
        logger.info("Queue consumer thread launched")

    def stop(self, timeout: float = 10.0):
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def run_once(self) -> Optional[str]:
        """Process at most one job. Returns the job id handled, if any."""
        job_id = self.queue.dequeue(timeout=self.block_seconds)
        if job_id is None:
            return None
        try:
            self.orchestrator.run_job(job_id)
        except Exception as e:
            logger.error(f"Queue consumer: job {job_id} crashed: {e}", exc_info=True)
            self.queue.nack(job_id, str(e))
        else:
            self.queue.ack(job_id)
        return job_id

    def _loop(self):
        while not self._stop.is_set():
            try:
                self.run_once()
                metrics.set_gauge("queue_depth", self.queue.length())
            except Exception as e:
                logger.error(f"Queue consumer loop error: {e}")
                time.sleep(2)
