"""
Shared plumbing for the video provider adapters.

Every adapter turns a vendor API into the same two calls:

    submit(image_url, prompt, options) -> ProviderResult
    poll(correlation_id)               -> ProviderResult

and every HTTP failure into one of the typed ProviderError subclasses, so the
orchestrator never looks at vendor response bodies.
"""

import re
import time
import random
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

import requests

from ..errors import (
    ProviderAuthError,
    ProviderNotFoundError,
    ProviderProtocolError,
    ProviderRequestError,
    ProviderTransientError,
)
from ..jobs.models import JobStatus

logger = logging.getLogger(__name__)

# ── Retry configuration ──────────────────────────────────────────────────────
MAX_RETRIES = 4
BASE_DELAY = 2.0       # seconds, doubles each retry: 2, 4, 8, 16
JITTER_MAX = 1.0
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
NON_IDEMPOTENT_RETRY_CODES = {429}
REQUEST_TIMEOUT = 30

MAX_PROMPT_LENGTH = 2000

NEGATIVE_PROMPT = (
    "plain background, white background, empty background, solid color background, "
    "blank background, simple background, minimal background, cropped pet, pet out of frame, "
    "partial pet, pet cut off, pet partially visible, pet cropped out"
)


@dataclass
class GenerationOptions:
    """Knobs passed through to the provider. Adapters ignore what they don't support."""
    duration: int = 5
    resolution: str = "480p"
    num_frames: Optional[int] = 12
    aspect_ratio: str = "9:16"
    negative_prompt: str = NEGATIVE_PROMPT
    audio_url: Optional[str] = None


@dataclass
class ProviderResult:
    provider: str
    correlation_id: str
    status: JobStatus
    result_url: Optional[str] = None
    error_detail: Optional[str] = None
    raw_status: Optional[str] = None
    extra: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.SUCCEEDED, JobStatus.FAILED)


class VideoProvider(Protocol):
    name: str

    def submit(self, image_url: str, prompt: str, options: GenerationOptions) -> ProviderResult: ...

    def poll(self, correlation_id: str) -> ProviderResult: ...


# ── Status mapping ───────────────────────────────────────────────────────────

def map_status(raw: Optional[str], table: dict[str, JobStatus]) -> JobStatus:
    """
    Map a vendor status string to a canonical JobStatus.

    Unknown values fail open to QUEUED so a new vendor state keeps the job
    polling instead of failing it. Cancellation always counts as failure.
    """
    if not raw:
        return JobStatus.QUEUED
    key = str(raw).strip().lower()
    if key in ("cancelled", "canceled"):
        return JobStatus.FAILED
    status = table.get(key)
    if status is None:
        logger.warning(f"Unknown provider status {raw!r}, treating as queued")
        return JobStatus.QUEUED
    return status


# ── Prompt handling ──────────────────────────────────────────────────────────

_SENTENCE_END = re.compile(r"[.!?](?=\s|$)")


def truncate_prompt(prompt: str, limit: int = MAX_PROMPT_LENGTH) -> str:
    """
    Shorten a prompt to at most `limit` characters, cutting at the last
    sentence end if one exists in the second half of the window, otherwise at
    the last word boundary. Never splits a word.
    """
    prompt = prompt.strip()
    if len(prompt) <= limit:
        return prompt

    window = prompt[:limit]
    # If the char right after the window is whitespace, the window ends on a word
    if prompt[limit].isspace():
        word_cut = limit
    else:
        word_cut = window.rfind(" ")

    sentence_cut = -1
    for match in _SENTENCE_END.finditer(window):
        sentence_cut = match.end()
    if sentence_cut >= limit // 2:
        return window[:sentence_cut].rstrip()

    if word_cut <= 0:
        # One unbroken token longer than the limit; a hard cut is all that's left
        logger.warning(f"Prompt has no word boundary in the first {limit} chars, hard-cutting")
        return window
    return window[:word_cut].rstrip()


# ── HTTP with backoff ────────────────────────────────────────────────────────

def _delay_for(attempt: int, response: Optional[requests.Response] = None) -> float:
    if response is not None:
        retry_after = response.headers.get("Retry-After")
        if retry_after and retry_after.isdigit():
            return float(retry_after)
    return BASE_DELAY * (2 ** attempt) + random.uniform(0, JITTER_MAX)


def _raise_for_response(provider: str, response: requests.Response):
    code = response.status_code
    body = (response.text or "")[:300]
    message = f"{provider} API error: {code} - {body}"
    if code in (401, 403):
        raise ProviderAuthError(message, provider, code)
    if code == 404:
        raise ProviderNotFoundError(message, provider, code)
    if code in RETRYABLE_STATUS_CODES:
        raise ProviderTransientError(message, provider, code)
    raise ProviderRequestError(message, provider, code)


def request_with_backoff(
    session: requests.Session,
    provider: str,
    method: str,
    url: str,
    sleep=time.sleep,
    max_retries: int = MAX_RETRIES,
    idempotent: bool = True,
    **kwargs,
) -> dict:
    """
    Make an HTTP request, retrying 429/5xx and connection errors with
    exponential backoff + jitter (honouring Retry-After).

    With idempotent=False (job submission) only failures where the provider
    cannot have accepted the request are retried: 429 and connect timeouts.
    A read timeout or 5xx may mean the work was created, so it is raised
    as ProviderTransientError after a single request.

    Returns the decoded JSON body of a 2xx response. Everything else ends up
    as a ProviderError subclass.
    """
    kwargs.setdefault("timeout", REQUEST_TIMEOUT)
    retry_codes = RETRYABLE_STATUS_CODES if idempotent else NON_IDEMPOTENT_RETRY_CODES

    for attempt in range(max_retries + 1):
        try:
            response = session.request(method, url, **kwargs)
        except requests.exceptions.RequestException as e:
            retryable = idempotent or isinstance(e, requests.exceptions.ConnectTimeout)
            if not retryable or attempt >= max_retries:
                raise ProviderTransientError(f"{provider} request failed: {e}", provider) from e
            delay = _delay_for(attempt)
            logger.warning(
                f"{provider} request error on attempt {attempt + 1}/{max_retries + 1}: {e} "
                f"- retrying in {delay:.1f}s"
            )
            sleep(delay)
            continue

        if response.status_code in retry_codes and attempt < max_retries:
            delay = _delay_for(attempt, response)
            logger.warning(
                f"{provider} {response.status_code} on attempt {attempt + 1}/{max_retries + 1} "
                f"- retrying in {delay:.1f}s (url={url})"
            )
            sleep(delay)
            continue

        if not response.ok:
            _raise_for_response(provider, response)

        try:
            return response.json()
        except ValueError as e:
            raise ProviderProtocolError(
                f"{provider} returned a non-JSON body", provider, response.status_code
            ) from e

    # Unreachable: the loop either returns or raises on its last attempt
    raise ProviderTransientError(f"{provider} request to {url} exhausted retries", provider)


def require_credentials(provider: str, value: str, env_name: str):
    if not value:
        raise ProviderAuthError(f"{env_name} is not set", provider)
