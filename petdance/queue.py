"""
Redis-backed reliable work queue for generation jobs.

  1. LPUSH   -> `petdance:jobs`                     (enqueue)
  2. BLMOVE  -> `petdance:processing`               (dequeue + in-flight tracking)
  3. LREM from processing                           (ack)
  4. Requeue, or -> `petdance:dead_letter` after MAX_DELIVERIES (nack)

A job id is always in exactly one list, so a worker crash leaves it in
`processing`, where recover_stale() finds it on the next startup.

Keys:
  petdance:jobs             pending job ids (FIFO)
  petdance:processing       in-flight job ids
  petdance:dead_letter      job ids that kept crashing the consumer
  petdance:meta:{job_id}    per-job hash (owner, timestamps, retries), TTL 2h
"""

import time
import logging
from typing import Optional

logger = logging.getLogger(__name__)

QUEUE_KEY = "petdance:jobs"
PROCESSING_KEY = "petdance:processing"
DEAD_LETTER_KEY = "petdance:dead_letter"
META_PREFIX = "petdance:meta:"
META_TTL = 7200

MAX_DELIVERIES = 3
STALE_TASK_TIMEOUT = 900  # longer than a full poll timeout


def _decode(value) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else value


class VideoJobQueue:
    def __init__(self, redis_client):
        self.r = redis_client

    def _meta_key(self, job_id: str) -> str:
        return f"{META_PREFIX}{job_id}"

    # ── Enqueue / Dequeue ────────────────────────────────────────────────────

    def enqueue(self, owner_id: str, job_id: str) -> int:
        """Push a job id to the back of the queue. Returns its 1-based position."""
        pipe = self.r.pipeline(transaction=True)
        pipe.hset(self._meta_key(job_id), mapping={
            "owner_id": owner_id,
            "job_id": job_id,
            "enqueued_at": str(time.time()),
            "status": "queued",
            "retries": "0",
        })
        pipe.expire(self._meta_key(job_id), META_TTL)
        pipe.lpush(QUEUE_KEY, job_id)
        pipe.execute()

        position = self.r.llen(QUEUE_KEY)
        logger.info(f"Enqueued job {job_id} for user {owner_id} (pos={position})")
        return position

    def dequeue(self, timeout: int = 5) -> Optional[str]:
        """Atomically move the oldest job into `processing`. None on timeout."""
        result = self.r.blmove(QUEUE_KEY, PROCESSING_KEY, timeout, src="RIGHT", dest="LEFT")
        if result is None:
            return None

        job_id = _decode(result)
        self.r.hset(self._meta_key(job_id), mapping={
            "processing_started_at": str(time.time()),
            "status": "processing",
        })
        logger.info(f"Dequeued job {job_id} -> processing")
        return job_id

    # ── Ack / Nack ───────────────────────────────────────────────────────────

    def ack(self, job_id: str):
        self.r.lrem(PROCESSING_KEY, 1, job_id)
        self.r.hset(self._meta_key(job_id), "status", "completed")
        logger.info(f"Acked job {job_id}")

    def nack(self, job_id: str, error_msg: str = ""):
        """Requeue a job whose handler crashed, or dead-letter it after MAX_DELIVERIES."""
        meta_key = self._meta_key(job_id)
        retries = int(self.r.hget(meta_key, "retries") or 0) + 1
        self.r.hset(meta_key, "retries", str(retries))
        if error_msg:
            self.r.hset(meta_key, "last_error", error_msg[:500])

        self.r.lrem(PROCESSING_KEY, 1, job_id)
        if retries < MAX_DELIVERIES:
            self.r.lpush(QUEUE_KEY, job_id)
            self.r.hset(meta_key, "status", "queued")
            logger.warning(f"Nacked job {job_id} (attempt {retries}/{MAX_DELIVERIES}), requeued")
        else:
            self.r.lpush(DEAD_LETTER_KEY, job_id)
            self.r.hset(meta_key, "status", "dead_letter")
            logger.error(f"Job {job_id} dead-lettered after {MAX_DELIVERIES} attempts: {error_msg}")

    # ── Recovery ─────────────────────────────────────────────────────────────

    def recover_stale(self, now: Optional[float] = None) -> int:
        """
        Move jobs stuck in `processing` longer than STALE_TASK_TIMEOUT back to
        the pending queue. Run at startup. Returns the number recovered.
        """
        now = now or time.time()
        recovered = 0
        for item in self.r.lrange(PROCESSING_KEY, 0, -1):
            job_id = _decode(item)
            meta = self.meta(job_id)
            if not meta:
                self.r.lrem(PROCESSING_KEY, 1, job_id)
                logger.warning(f"Dropped orphaned job {job_id} from processing (no metadata)")
                continue

            started_at = float(meta.get("processing_started_at", 0))
            if started_at and now - started_at > STALE_TASK_TIMEOUT:
                self.r.lrem(PROCESSING_KEY, 1, job_id)
                self.r.lpush(QUEUE_KEY, job_id)
                self.r.hset(self._meta_key(job_id), "status", "queued")
                recovered += 1
                logger.warning(f"Recovered stale job {job_id} (in-flight {int(now - started_at)}s)")
        return recovered

    # ── Inspection ───────────────────────────────────────────────────────────

    def position(self, job_id: str) -> Optional[int]:
        """1-based position in the pending queue, None if not pending."""
        items = [_decode(i) for i in self.r.lrange(QUEUE_KEY, 0, -1)]
        if job_id not in items:
            return None
        # Consumers pop from the right
        return len(items) - items.index(job_id)

    def length(self) -> int:
        return self.r.llen(QUEUE_KEY)

    def processing_count(self) -> int:
        return self.r.llen(PROCESSING_KEY)

    def meta(self, job_id: str) -> Optional[dict]:
        data = self.r.hgetall(self._meta_key(job_id))
        if not data:
            return None
        return {_decode(k): _decode(v) for k, v in data.items()}
