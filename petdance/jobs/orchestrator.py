"""
Generation Orchestrator.

Request side (synchronous, inside the HTTP handler):
  1. Validate the request
  2. Atomically charge COINS_PER_GENERATION
  3. Create the job (queued)
  4. Dispatch job id to the worker (Redis queue or BackgroundTasks)

Worker side (`run_job`, off the request path):
  queued -> processing -> submit once -> poll -> succeeded | failed

Anything that goes wrong after acknowledgement ends up on the job record
as status=failed + error_detail; nothing is re-raised to the caller.
"""

import time
import logging
from typing import Callable, Optional
from urllib.parse import urlparse

from .. import metrics
from ..errors import (
    InsufficientBalanceError,
    JobNotFoundError,
    ProviderNotFoundError,
    ProviderProtocolError,
    ProviderTransientError,
    StorageError,
    ValidationError,
    describe_error,
    truncate_error,
)
from ..providers import GenerationOptions, ProviderFactory, ProviderResult
from .credits import COINS_PER_GENERATION, CreditLedger
from .dance_styles import audio_url_for, build_prompt, resolve_style
from .image_prep import ImagePreparer
from .models import GenerateRequest, Job, JobStatus
from .storage import BlobStorage, is_temporary_url
from .store import JobStore

logger = logging.getLogger(__name__)

MAX_DESCRIPTION_LENGTH = 500


class GenerationOrchestrator:
    def __init__(
        self,
        store: JobStore,
        credits: CreditLedger,
        providers: ProviderFactory,
        image_preparer: Optional[ImagePreparer] = None,
        blob_storage: Optional[BlobStorage] = None,
        poll_interval: float = 5.0,
        poll_timeout: float = 600.0,
        audio_base_url: str = "",
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.credits = credits
        self.providers = providers
        self.image_preparer = image_preparer or ImagePreparer(None)
        self.blob_storage = blob_storage
        self.poll_interval = poll_interval
        self.poll_timeout = poll_timeout
        self.audio_base_url = audio_base_url
        self._sleep = sleep
        self._clock = clock

    # ═════════════════════════════════════════════════════════════════════
    # Request side
    # ═════════════════════════════════════════════════════════════════════

    def _validate(self, request: GenerateRequest) -> tuple[str, dict, Optional[str]]:
        image_url = (request.image_url or "").strip()
        if not image_url or not request.dance_style:
            raise ValidationError("Missing required fields: imageUrl and danceStyle")

        parsed = urlparse(image_url)
        if parsed.scheme != "https" or not parsed.netloc:
            raise ValidationError("imageUrl must be an https:// URL")

        style = resolve_style(request.dance_style)

        description = (request.pet_description or "").strip() or None
        if description and len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(f"petDescription must be at most {MAX_DESCRIPTION_LENGTH} characters")
        return image_url, style, description

    def start_generation(self, owner_id: str, request: GenerateRequest, dispatch: Callable[[str], None]) -> Job:
        """
        Charge, create and dispatch a generation. Returns the queued job.

        Raises:
            ValidationError: bad request; nothing charged.
            InsufficientBalanceError: balance below one generation; no job created.
            StorageError: job record could not be created or scheduled.
        """
        image_url, style, description = self._validate(request)

        try:
            charged = self.credits.decrement_if_sufficient(owner_id, COINS_PER_GENERATION)
        except StorageError as e:
            # Ledger unreachable: generate anyway, but leave a loud trail for billing to reconcile
            logger.error(f"CREDIT DISCREPANCY: could not charge user {owner_id}, proceeding uncharged: {e}")
            metrics.record_error("generate", "credit_discrepancy", str(e), owner_id)
            charged = True

        if not charged:
            metrics.inc_counter("errors.insufficient_balance")
            raise InsufficientBalanceError(
                f"Insufficient credits. You need at least {COINS_PER_GENERATION} coins to generate a video."
            )

        job = self.store.create(
            owner_id=owner_id,
            input_image_url=image_url,
            dance_style=style["id"],
            prompt=build_prompt(style["id"], description),
            provider=self.providers.default,
            pet_description=description,
        )

        try:
            dispatch(job.id)
        except Exception as e:
            logger.error(f"[{job.id}] Dispatch failed: {e}", exc_info=True)
            self._fail(job.id, f"Could not schedule generation: {e}")
            raise StorageError(f"Could not schedule job {job.id}") from e

        metrics.inc_counter("jobs.created")
        logger.info(f"[{job.id}] Queued {style['id']} generation for user {owner_id}")
        return job

    # ═════════════════════════════════════════════════════════════════════
    # Worker side
    # ═════════════════════════════════════════════════════════════════════

    def _options_for(self, job: Job) -> GenerationOptions:
        return GenerationOptions(audio_url=audio_url_for(job.dance_style, self.audio_base_url))

    def run_job(self, job_id: str) -> Optional[Job]:
        """
        Drive one job to a terminal state. Safe to call again for the same
        job (queue redelivery): a job with a provider id resumes polling and
        is never submitted twice.
        """
        try:
            return self._run(job_id)
        except JobNotFoundError:
            logger.warning(f"[{job_id}] Job deleted, abandoning")
            return None

    def _run(self, job_id: str) -> Optional[Job]:
        job = self.store.get_by_id(job_id)
        if job.is_terminal:
            logger.info(f"[{job_id}] Already {job.status.value}, nothing to do")
            return job

        started = time.time()
        try:
            provider = self.providers.get_provider(job.provider)

            if job.provider_job_id:
                logger.info(f"[{job_id}] Resuming poll of {provider.name} task {job.provider_job_id}")
                if job.status == JobStatus.QUEUED:
                    self.store.claim(job_id)
                correlation_id = job.provider_job_id
            elif job.status == JobStatus.PROCESSING:
                # Crashed between processing and saving the provider id; we can't tell
                # whether the provider has it, so don't risk a second charge upstream
                raise RuntimeError("Generation was interrupted before the provider acknowledged it")
            else:
                if self.store.claim(job_id) is None:
                    logger.info(f"[{job_id}] Another worker picked this job up")
                    return self.store.get_by_id(job_id)

                image_url = self.image_preparer.prepare(job.input_image_url, job.owner_id, job_id)
                logger.info(f"[{job_id}] Submitting to {provider.name}")
                submitted = provider.submit(image_url, job.prompt or "", self._options_for(job))
                self.store.update(job_id, provider_job_id=submitted.correlation_id)
                logger.info(f"[{job_id}] Task started: {submitted.correlation_id}")

                if submitted.is_terminal:
                    return self._finish(job_id, submitted, started)
                correlation_id = submitted.correlation_id

            result = self._poll_until_done(provider, correlation_id, job_id)
            return self._finish(job_id, result, started)

        except JobNotFoundError:
            raise
        except Exception as e:
            detail = describe_error(e)
            logger.error(f"[{job_id}] Generation failed: {detail}", exc_info=True)
            metrics.inc_counter("jobs.failed")
            metrics.record_error("run_job", type(e).__name__, detail, job.owner_id)
            return self._fail(job_id, detail)

    def _poll_until_done(self, provider, correlation_id: str, job_id: str) -> ProviderResult:
        deadline = self._clock() + self.poll_timeout
        while True:
            try:
                result = provider.poll(correlation_id)
            except ProviderNotFoundError:
                raise
            except ProviderTransientError as e:
                logger.warning(f"[{job_id}] Poll hiccup, will retry: {e}")
            else:
                logger.info(f"[{job_id}] {provider.name} status: {result.raw_status} -> {result.status.value}")
                if result.is_terminal:
                    return result

            if self._clock() >= deadline:
                raise TimeoutError(f"Generation timed out after {int(self.poll_timeout)}s")
            self._sleep(self.poll_interval)

    def _finish(self, job_id: str, result: ProviderResult, started: float) -> Optional[Job]:
        job = self.store.get_by_id(job_id)
        updated = self.apply_provider_result(job, result)
        if updated is not None and updated.status == JobStatus.SUCCEEDED:
            metrics.inc_counter("jobs.succeeded")
            metrics.record_latency("generation", (time.time() - started) * 1000)
        return updated

    def apply_provider_result(self, job: Job, result: ProviderResult) -> Optional[Job]:
        """
        Fold a provider answer into the job record.

        Shared by the worker and the status endpoint. Raises
        ProviderProtocolError for a success without a result URL and
        StorageError when the result can't be copied to our bucket.
        """
        if result.status == JobStatus.SUCCEEDED:
            if not result.result_url:
                raise ProviderProtocolError(
                    f"{result.provider} reported success without a video URL", result.provider
                )
            url = self._persist_result(job, result.result_url)
            if job.status == JobStatus.QUEUED:
                # succeeded is only reachable from processing
                self.store.claim(job.id)
            return self._write_terminal(job.id, status=JobStatus.SUCCEEDED, result_url=url)

        if result.status == JobStatus.FAILED:
            detail = result.error_detail or f"{result.provider} generation failed"
            return self._write_terminal(job.id, status=JobStatus.FAILED, error_detail=truncate_error(detail))

        if result.status == JobStatus.PROCESSING and job.status == JobStatus.QUEUED:
            return self.store.claim(job.id) or self.store.get_by_id(job.id)
        return job

    def _persist_result(self, job: Job, url: str) -> str:
        if self.blob_storage is None or not is_temporary_url(url):
            return url
        permanent = self.blob_storage.persist_remote_video(url, job.owner_id, job.id)
        logger.info(f"[{job.id}] Stored video permanently at {permanent}")
        return permanent

    def _write_terminal(self, job_id: str, **fields) -> Optional[Job]:
        for attempt in (1, 2):
            try:
                updated = self.store.update(job_id, **fields)
                if updated is None:
                    # Refused: someone already settled it. Report what's stored.
                    return self.store.get_by_id(job_id)
                logger.info(f"[{job_id}] -> {updated.status.value}")
                return updated
            except StorageError as e:
                if attempt == 2:
                    logger.error(f"[{job_id}] UNRESOLVED: terminal write {fields} failed twice: {e}")
                    metrics.record_error("terminal_write", "StorageError", str(e))
                    return None
                logger.warning(f"[{job_id}] Terminal write failed, retrying once: {e}")
        return None

    def _fail(self, job_id: str, message: str) -> Optional[Job]:
        return self._write_terminal(job_id, status=JobStatus.FAILED, error_detail=truncate_error(message))
