"""
RunComfy adapter (Wan 2.5 image-to-video).

Polling takes two calls: /status for progress and, once that looks finished,
/result for the video. When both answer, /result wins; it is the only one
that reports the final state reliably.
"""

import logging
from typing import Optional

import requests

from ..errors import ProviderError, ProviderProtocolError
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

SUBMIT_PATH = "/v1/models/wan-ai/wan-2-5/image-to-video"

STATUS_MAP = {
    "completed": JobStatus.SUCCEEDED,
    "succeeded": JobStatus.SUCCEEDED,
    "failed": JobStatus.FAILED,
    "in_progress": JobStatus.PROCESSING,
    "in_queue": JobStatus.QUEUED,
}


def _extract_video_url(data: dict) -> Optional[str]:
    output = data.get("output")
    if isinstance(output, dict):
        if output.get("video"):
            return output["video"]
        videos = output.get("videos")
        if isinstance(videos, list) and videos:
            return videos[0]
    return data.get("video") or data.get("video_url")


class RunComfyProvider:
    name = Provider.RUNCOMFY.value

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://model-api.runcomfy.net",
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep_kwargs = {"sleep": sleep} if sleep else {}

    def _headers(self) -> dict:
        require_credentials(self.name, self.api_key, "RUNCOMFY_API_KEY")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _get(self, path: str) -> dict:
        return request_with_backoff(
            self.session, self.name, "GET", f"{self.base_url}{path}",
            headers=self._headers(), **self._sleep_kwargs,
        )

    def submit(self, image_url: str, prompt: str, options: GenerationOptions) -> ProviderResult:
        body = {
            "prompt": truncate_prompt(prompt),
            "img_url": image_url,
            "duration": options.duration or 5,
            "resolution": (options.resolution or "480p").upper(),
            "negative_prompt": options.negative_prompt or "",
        }
        if options.audio_url:
            body["audio_url"] = options.audio_url

        data = request_with_backoff(
            self.session, self.name, "POST", f"{self.base_url}{SUBMIT_PATH}",
            headers=self._headers(), json=body, idempotent=False, **self._sleep_kwargs,
        )
        request_id = data.get("request_id") or data.get("id")
        if not request_id:
            raise ProviderProtocolError("RunComfy API did not return a request_id", self.name)

        logger.info(f"RunComfy task created with request_id: {request_id}")
        return ProviderResult(
            provider=self.name,
            correlation_id=str(request_id),
            status=map_status(data.get("status"), STATUS_MAP),
            raw_status=data.get("status"),
        )

    def poll(self, correlation_id: str) -> ProviderResult:
        status_data = self._get(f"/v1/requests/{correlation_id}/status")
        raw = status_data.get("status") or status_data.get("state")
        status = map_status(raw, STATUS_MAP)

        result = ProviderResult(
            provider=self.name,
            correlation_id=correlation_id,
            status=status,
            raw_status=raw,
        )
        if status not in (JobStatus.SUCCEEDED, JobStatus.FAILED):
            return result

        try:
            result_data = self._get(f"/v1/requests/{correlation_id}/result")
        except ProviderError as e:
            # /status already answered; keep its verdict and look again next poll
            logger.warning(f"RunComfy result fetch failed for {correlation_id}: {e}")
            if status == JobStatus.SUCCEEDED:
                result.status = JobStatus.PROCESSING
            return result

        result_raw = result_data.get("status") or result_data.get("state")
        if result_raw:
            result.status = map_status(result_raw, STATUS_MAP)
            result.raw_status = result_raw

        error = result_data.get("error") or result_data.get("failure_reason")
        if result.status == JobStatus.SUCCEEDED:
            result.result_url = _extract_video_url(result_data)
        elif result.status == JobStatus.FAILED:
            result.error_detail = str(error) if error else "RunComfy generation failed"
        return result
