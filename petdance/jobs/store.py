"""
Job Record Store.

One row per generation in the Supabase `videos` table. All status writes are
conditional on the row's current status (`.in_("status", allowed_from)`), so
two writers racing on the same job can never move it backwards or out of a
terminal state: the losing write simply matches zero rows.

InMemoryJobStore implements the same contract behind a lock for local runs
and tests.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Optional, Protocol
from uuid import uuid4

from supabase import Client

from ..errors import InvalidTransitionError, JobNotFoundError, StorageError
from .models import ALLOWED_FROM, Job, JobStatus, can_transition

logger = logging.getLogger(__name__)

TABLE = "videos"

# Job field -> column name where they differ
_COLUMN_FOR = {
    "owner_id": "user_id",
    "provider_job_id": "provider_video_id",
    "result_url": "video_url",
    "error_detail": "error_message",
}
_FIELD_FOR = {column: name for name, column in _COLUMN_FOR.items()}

UPDATABLE_FIELDS = frozenset({
    "status",
    "provider",
    "provider_job_id",
    "result_url",
    "error_detail",
    "prompt",
})


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _row_to_job(row: dict) -> Job:
    data = {_FIELD_FOR.get(k, k): v for k, v in row.items()}
    return Job(**{k: v for k, v in data.items() if k in Job.model_fields})


def _job_to_row(fields: dict) -> dict:
    row = {}
    for name, value in fields.items():
        if isinstance(value, JobStatus):
            value = value.value
        row[_COLUMN_FOR.get(name, name)] = value
    return row


def _check_fields(fields: dict):
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValueError(f"Job fields cannot be updated: {sorted(unknown)}")


def _check_update(job: Job, fields: dict):
    """Raise InvalidTransitionError if `fields` would break a job invariant."""
    target = fields.get("status")
    if target is not None and not can_transition(job.status, JobStatus(target)):
        raise InvalidTransitionError(
            f"Job {job.id}: {job.status.value} -> {JobStatus(target).value} is not allowed"
        )
    if target is None and job.is_terminal:
        raise InvalidTransitionError(f"Job {job.id} is {job.status.value}; terminal jobs are read-only")

    resulting = JobStatus(target) if target is not None else job.status
    if fields.get("result_url") and resulting != JobStatus.SUCCEEDED:
        raise InvalidTransitionError(f"Job {job.id}: result_url only accompanies succeeded")
    if resulting == JobStatus.SUCCEEDED and not (fields.get("result_url") or job.result_url):
        raise InvalidTransitionError(f"Job {job.id}: succeeded requires a result_url")
    if fields.get("error_detail") and resulting != JobStatus.FAILED:
        raise InvalidTransitionError(f"Job {job.id}: error_detail only accompanies failed")

    new_corr = fields.get("provider_job_id")
    if new_corr is not None and job.provider_job_id and new_corr != job.provider_job_id:
        raise InvalidTransitionError(
            f"Job {job.id} already has provider id {job.provider_job_id}, refusing {new_corr}"
        )


class JobStore(Protocol):
    def create(
        self,
        owner_id: str,
        input_image_url: str,
        dance_style: str,
        prompt: str,
        provider: str,
        pet_description: Optional[str] = None,
    ) -> Job: ...

    def get(self, job_id: str, owner_id: str) -> Job: ...

    def get_by_id(self, job_id: str) -> Job: ...

    def update(self, job_id: str, **fields) -> Optional[Job]: ...

    def claim(self, job_id: str) -> Optional[Job]: ...

    def list(self, owner_id: str) -> list[Job]: ...

    def delete(self, job_id: str, owner_id: str) -> None: ...


# ═════════════════════════════════════════════════════════════════════════════
# Supabase
# ═════════════════════════════════════════════════════════════════════════════

class SupabaseJobStore:
    def __init__(self, client: Client):
        self.sb = client

    def _execute(self, query, action: str):
        try:
            return query.execute()
        except Exception as e:
            raise StorageError(f"videos {action} failed: {e}") from e

    def create(self, owner_id, input_image_url, dance_style, prompt, provider, pet_description=None) -> Job:
        now = _now_iso()
        row = {
            "id": str(uuid4()),
            "user_id": owner_id,
            "input_image_url": input_image_url,
            "dance_style": dance_style,
            "pet_description": pet_description,
            "prompt": prompt,
            "provider": provider,
            "status": JobStatus.QUEUED.value,
            "created_at": now,
            "updated_at": now,
        }
        result = self._execute(self.sb.table(TABLE).insert(row), "insert")
        if not result.data:
            raise StorageError("videos insert returned no row")
        job = _row_to_job(result.data[0])
        logger.info(f"Created job {job.id} for user {owner_id} ({dance_style}, provider={provider})")
        return job

    def get(self, job_id: str, owner_id: str) -> Job:
        result = self._execute(
            self.sb.table(TABLE).select("*").eq("id", job_id).eq("user_id", owner_id).limit(1),
            "select",
        )
        if not result.data:
            raise JobNotFoundError(f"Video {job_id} not found")
        return _row_to_job(result.data[0])

    def get_by_id(self, job_id: str) -> Job:
        result = self._execute(self.sb.table(TABLE).select("*").eq("id", job_id).limit(1), "select")
        if not result.data:
            raise JobNotFoundError(f"Video {job_id} not found")
        return _row_to_job(result.data[0])

    def update(self, job_id: str, **fields) -> Optional[Job]:
        """
        Apply a partial update. Returns the updated job, or None when the
        write was refused because it would break a transition rule.
        """
        _check_fields(fields)
        current = self.get_by_id(job_id)
        try:
            _check_update(current, fields)
        except InvalidTransitionError as e:
            logger.warning(f"Ignoring update: {e}")
            return None

        payload = _job_to_row(fields)
        payload["updated_at"] = _now_iso()

        target = JobStatus(fields.get("status", current.status))
        query = (
            self.sb.table(TABLE)
            .update(payload)
            .eq("id", job_id)
            .in_("status", [s.value for s in ALLOWED_FROM[target]])
        )
        if fields.get("provider_job_id") and not current.provider_job_id:
            query = query.is_("provider_video_id", "null")

        result = self._execute(query, "update")
        if not result.data:
            # Someone else moved the row between our read and write
            logger.warning(f"Job {job_id}: concurrent update won, dropped {sorted(fields)}")
            return None
        return _row_to_job(result.data[0])

    def claim(self, job_id: str) -> Optional[Job]:
        """
        Move a queued job to processing. Only one caller can win: the update
        matches `status = 'queued'`, so a second claim (redelivery, a second
        worker) gets None back.
        """
        query = (
            self.sb.table(TABLE)
            .update({"status": JobStatus.PROCESSING.value, "updated_at": _now_iso()})
            .eq("id", job_id)
            .eq("status", JobStatus.QUEUED.value)
        )
        result = self._execute(query, "claim")
        if not result.data:
            self.get_by_id(job_id)
            return None
        return _row_to_job(result.data[0])

    def list(self, owner_id: str) -> list[Job]:
        result = self._execute(
            self.sb.table(TABLE).select("*").eq("user_id", owner_id).order("created_at", desc=True),
            "select",
        )
        return [_row_to_job(row) for row in (result.data or [])]

    def delete(self, job_id: str, owner_id: str) -> None:
        # Ownership check first so a foreign id reads as not-found, not as a no-op
        self.get(job_id, owner_id)
        self._execute(self.sb.table(TABLE).delete().eq("id", job_id).eq("user_id", owner_id), "delete")
        logger.info(f"Deleted job {job_id} for user {owner_id}")


# ═════════════════════════════════════════════════════════════════════════════
# In-memory
# ═════════════════════════════════════════════════════════════════════════════

class InMemoryJobStore:
    def __init__(self):
        self._jobs: dict[str, Job] = {}
        self._lock = threading.Lock()
        self._seq = 0
        self._order: dict[str, int] = {}

    def create(self, owner_id, input_image_url, dance_style, prompt, provider, pet_description=None) -> Job:
        with self._lock:
            self._seq += 1
            now = _now_iso()
            job = Job(
                id=str(uuid4()),
                owner_id=owner_id,
                input_image_url=input_image_url,
                dance_style=dance_style,
                pet_description=pet_description,
                prompt=prompt,
                provider=provider,
                created_at=now,
                updated_at=now,
            )
            self._jobs[job.id] = job
            self._order[job.id] = self._seq
            return job.model_copy()

    def get(self, job_id: str, owner_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.owner_id != owner_id:
                raise JobNotFoundError(f"Video {job_id} not found")
            return job.model_copy()

    def get_by_id(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Video {job_id} not found")
            return job.model_copy()

    def update(self, job_id: str, **fields) -> Optional[Job]:
        _check_fields(fields)
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Video {job_id} not found")
            try:
                _check_update(job, fields)
            except InvalidTransitionError as e:
                logger.warning(f"Ignoring update: {e}")
                return None

            changes = dict(fields)
            if "status" in changes:
                changes["status"] = JobStatus(changes["status"])
            changes["updated_at"] = _now_iso()
            updated = job.model_copy(update=changes)
            self._jobs[job_id] = updated
            return updated.model_copy()

    def claim(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(f"Video {job_id} not found")
            if job.status != JobStatus.QUEUED:
                return None
            claimed = job.model_copy(update={"status": JobStatus.PROCESSING, "updated_at": _now_iso()})
            self._jobs[job_id] = claimed
            return claimed.model_copy()

    def list(self, owner_id: str) -> list[Job]:
        with self._lock:
            owned = [j for j in self._jobs.values() if j.owner_id == owner_id]
            owned.sort(key=lambda j: self._order[j.id], reverse=True)
            return [j.model_copy() for j in owned]

    def delete(self, job_id: str, owner_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.owner_id != owner_id:
                raise JobNotFoundError(f"Video {job_id} not found")
            del self._jobs[job_id]
            self._order.pop(job_id, None)
