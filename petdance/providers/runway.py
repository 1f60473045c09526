"""
Runway image-to-video adapter.

  POST {base}/image-to-video        -> {id, status}
  GET  {base}/image-to-video/{id}   -> {id, status|state, output: [...]}
"""

import logging
from typing import Optional

import requests

from ..errors import ProviderProtocolError
from ..jobs.models import JobStatus, Provider
from .base import (
    GenerationOptions,
    ProviderResult,
    map_status,
    request_with_backoff,
    require_credentials,
    truncate_prompt,
)

logger = logging.getLogger(__name__)

STATUS_MAP = {
    "succeeded": JobStatus.SUCCEEDED,
    "completed": JobStatus.SUCCEEDED,
    "done": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "error": JobStatus.FAILED,
    "processing": JobStatus.PROCESSING,
    "running": JobStatus.PROCESSING,
    "in_progress": JobStatus.PROCESSING,
    "pending": JobStatus.QUEUED,
    "queued": JobStatus.QUEUED,
    "throttled": JobStatus.QUEUED,
}

# Runway ratios are pixel sizes, not aspect strings
RATIO_MAP = {
    "9:16": "720:1280",
    "16:9": "1280:720",
    "1:1": "960:960",
}


def _extract_video_url(data: dict) -> Optional[str]:
    output = data.get("output")
    if isinstance(output, list) and output:
        first = output[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict):
            return first.get("url")
    return data.get("videoUrl") or data.get("video_url") or data.get("url")


class RunwayProvider:
    name = Provider.RUNWAY.value

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.runwayml.com/v1",
        model_id: str = "gen4_turbo",
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model_id = model_id
        self.session = session or requests.Session()
        self._sleep_kwargs = {"sleep": sleep} if sleep else {}

    def _headers(self) -> dict:
        require_credentials(self.name, self.api_key, "RUNWAY_API_KEY")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
            "X-Runway-Version": "2024-11-06",
        }

    def _to_result(self, data: dict, correlation_id: str) -> ProviderResult:
        raw = data.get("status") or data.get("state")
        status = map_status(raw, STATUS_MAP)
        error = data.get("failure") or data.get("error")
        return ProviderResult(
            provider=self.name,
            correlation_id=correlation_id,
            status=status,
            result_url=_extract_video_url(data) if status == JobStatus.SUCCEEDED else None,
            error_detail=str(error) if error and status == JobStatus.FAILED else None,
            raw_status=raw,
        )

    def submit(self, image_url: str, prompt: str, options: GenerationOptions) -> ProviderResult:
        headers = self._headers()
        body = {
            "model": self.model_id,
            "promptImage": image_url,
            "promptText": truncate_prompt(prompt),
            "duration": options.duration,
            "ratio": RATIO_MAP.get(options.aspect_ratio, "720:1280"),
        }
        data = request_with_backoff(
            self.session, self.name, "POST", f"{self.base_url}/image-to-video",
            headers=headers, json=body, idempotent=False, **self._sleep_kwargs,
        )
        task_id = data.get("id") or data.get("taskId")
        if not task_id:
            raise ProviderProtocolError("Runway API did not return a task id", self.name)

        logger.info(f"Runway task created: {task_id}")
        return self._to_result(data, str(task_id))

    def poll(self, correlation_id: str) -> ProviderResult:
        data = request_with_backoff(
            self.session, self.name, "GET", f"{self.base_url}/image-to-video/{correlation_id}",
            headers=self._headers(), **self._sleep_kwargs,
        )
        return self._to_result(data, correlation_id)
