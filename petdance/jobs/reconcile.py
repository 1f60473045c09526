"""
Status reconciliation for GET /videos/status.

Terminal jobs are served straight from the store. A non-terminal job that has
a provider id is re-checked with its provider on every read (all providers,
same rule), and any change is written back through the orchestrator so the
worker and the endpoint share one set of finalisation rules. If the provider
or the store misbehaves, the caller gets the last persisted state.
"""

import logging

from ..errors import ProviderError, StorageError
from .models import Job
from .orchestrator import GenerationOrchestrator

logger = logging.getLogger(__name__)


class JobReconciler:
    def __init__(self, orchestrator: GenerationOrchestrator, requery_enabled: bool = True):
        self.orchestrator = orchestrator
        self.requery_enabled = requery_enabled

    def get_status(self, job_id: str, owner_id: str) -> Job:
        job = self.orchestrator.store.get(job_id, owner_id)
        return self.refresh(job)

    def refresh(self, job: Job) -> Job:
        if job.is_terminal or not self.requery_enabled or not job.provider_job_id:
            return job

        try:
            provider = self.orchestrator.providers.get_provider(job.provider)
            result = provider.poll(job.provider_job_id)
        except ProviderError as e:
            logger.warning(f"[{job.id}] Status re-query failed, serving stored state: {e}")
            return job

        if result.status == job.status and not result.result_url:
            return job

        try:
            updated = self.orchestrator.apply_provider_result(job, result)
        except (ProviderError, StorageError) as e:
            logger.warning(f"[{job.id}] Could not apply {result.status.value} from provider: {e}")
            return job

        if updated is None:
            return job
        if updated.status != job.status:
            logger.info(f"[{job.id}] Reconciled {job.status.value} -> {updated.status.value}")
        return updated
