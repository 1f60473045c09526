"""
Client-side status poller.

Used by front-ends (and the CLI smoke script) to follow one or more jobs
until they settle. A job is settled when its status is terminal and, for
succeeded, its resultUrl is present: the status can land a moment before
the result URL does, so "succeeded with no URL" keeps polling.

Stopping the poller only stops local polling; the job keeps running.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

import httpx

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 5.0

TERMINAL = ("succeeded", "failed")

StatusPayload = dict
FetchStatus = Callable[[str], Awaitable[StatusPayload]]


def is_settled(payload: StatusPayload) -> bool:
    status = payload.get("status")
    if status not in TERMINAL:
        return False
    return status != "succeeded" or bool(payload.get("resultUrl"))


class JobPoller:
    def __init__(self, fetch_status: FetchStatus, interval: float = DEFAULT_INTERVAL):
        self.fetch_status = fetch_status
        self.interval = interval
        self._stopped = asyncio.Event()

    def stop(self):
        """Stop polling (e.g. the view showing these jobs went away)."""
        self._stopped.set()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    async def watch(
        self,
        job_ids: Iterable[str],
        on_settled: Optional[Callable[[StatusPayload], None]] = None,
    ) -> dict[str, StatusPayload]:
        """
        Poll every `interval` seconds until every job settles or stop() is
        called. Calls on_settled once per job as it settles. Returns the last
        payload seen for each job.
        """
        pending = list(dict.fromkeys(job_ids))
        latest: dict[str, StatusPayload] = {}

        while pending and not self.stopped:
            for job_id in list(pending):
                try:
                    payload = await self.fetch_status(job_id)
                except Exception as e:
                    # retried next tick
                    logger.warning(f"Status fetch failed for {job_id}: {e}")
                    continue

                latest[job_id] = payload
                if is_settled(payload):
                    pending.remove(job_id)
                    if on_settled is not None:
                        on_settled(payload)

            if not pending:
                break
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        return latest


class HttpStatusFetcher:
    """Fetches GET {base_url}/videos/status?jobId=... with a bearer token."""

    def __init__(self, base_url: str, access_token: str, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.client = client or httpx.AsyncClient(timeout=30)

    async def __call__(self, job_id: str) -> StatusPayload:
        resp = await self.client.get(
            f"{self.base_url}/videos/status",
            params={"jobId": job_id},
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        resp.raise_for_status()
        return resp.json()

    async def aclose(self):
        await self.client.aclose()
