"""
Replicate adapter (Seedance 1 Pro Fast by default).

Replicate wants a version hash rather than a model name on POST /predictions,
so the latest version is resolved from GET /models/{owner}/{name} first and
cached on the adapter.
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
    "failed": JobStatus.FAILED,
    "processing": JobStatus.PROCESSING,
    "starting": JobStatus.QUEUED,
}


def _extract_output(output) -> Optional[str]:
    if isinstance(output, str) and output:
        return output
    if isinstance(output, list) and output:
        return output[0]
    return None


class ReplicateProvider:
    name = Provider.REPLICATE.value

    def __init__(
        self,
        api_token: str,
        model: str = "bytedance/seedance-1-pro-fast",
        base_url: str = "https://api.replicate.com/v1",
        session: Optional[requests.Session] = None,
        sleep=None,
    ):
        self.api_token = api_token
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self._sleep_kwargs = {"sleep": sleep} if sleep else {}
        self._version: Optional[str] = None

    def _headers(self) -> dict:
        require_credentials(self.name, self.api_token, "REPLICATE_API_TOKEN")
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }

    def _latest_version(self) -> str:
        if self._version:
            return self._version
        data = request_with_backoff(
            self.session, self.name, "GET", f"{self.base_url}/models/{self.model}",
            headers=self._headers(), **self._sleep_kwargs,
        )
        version = (data.get("latest_version") or {}).get("id")
        if not version:
            raise ProviderProtocolError("Replicate API did not return a version hash", self.name)
        logger.info(f"Replicate using version {version} of {self.model}")
        self._version = version
        return version

    def _to_result(self, data: dict, correlation_id: str) -> ProviderResult:
        raw = data.get("status")
        status = map_status(raw, STATUS_MAP)
        error = data.get("error")
        return ProviderResult(
            provider=self.name,
            correlation_id=correlation_id,
            status=status,
            result_url=_extract_output(data.get("output")) if status == JobStatus.SUCCEEDED else None,
            error_detail=str(error) if error and status == JobStatus.FAILED else None,
            raw_status=raw,
        )

    def submit(self, image_url: str, prompt: str, options: GenerationOptions) -> ProviderResult:
        version = self._latest_version()

        model_input = {
            "image": image_url,
            "prompt": truncate_prompt(prompt),
        }
        if options.duration:
            model_input["duration"] = options.duration
        if options.num_frames:
            model_input["num_frames"] = options.num_frames
        if options.resolution:
            model_input["resolution"] = options.resolution
        if options.aspect_ratio:
            model_input["aspect_ratio"] = options.aspect_ratio
        if options.negative_prompt:
            model_input["negative_prompt"] = options.negative_prompt
        # Seedance takes no audio input

        data = request_with_backoff(
            self.session, self.name, "POST", f"{self.base_url}/predictions",
            headers=self._headers(), json={"version": version, "input": model_input}, idempotent=False,
            **self._sleep_kwargs,
        )
        prediction_id = data.get("id")
        if not prediction_id:
            raise ProviderProtocolError("Replicate API did not return a prediction id", self.name)

        logger.info(f"Replicate prediction created: {prediction_id} (status={data.get('status')})")
        return self._to_result(data, prediction_id)

    def poll(self, correlation_id: str) -> ProviderResult:
        data = request_with_backoff(
            self.session, self.name, "GET", f"{self.base_url}/predictions/{correlation_id}",
            headers=self._headers(), **self._sleep_kwargs,
        )
        return self._to_result(data, correlation_id)
