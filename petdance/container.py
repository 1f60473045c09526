"""
Wiring. Every client (Supabase, Redis, S3, provider sessions) is built once
here at startup and passed down explicitly.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import redis
from supabase import create_client

from .auth import Authenticator, DevAuthenticator, SupabaseAuthenticator
from .config import Settings
from .jobs.credits import CreditLedger, InMemoryCreditLedger, SupabaseCreditLedger
from .jobs.dispatch import QueueConsumer
from .jobs.image_prep import ImagePreparer
from .jobs.orchestrator import GenerationOrchestrator
from .jobs.reconcile import JobReconciler
from .jobs.storage import BlobStorage
from .jobs.store import InMemoryJobStore, JobStore, SupabaseJobStore
from .providers import ProviderFactory
from .queue import VideoJobQueue

logger = logging.getLogger(__name__)


@dataclass
class Container:
    settings: Settings
    store: JobStore
    credits: CreditLedger
    providers: ProviderFactory
    orchestrator: GenerationOrchestrator
    reconciler: JobReconciler
    authenticator: Authenticator
    job_queue: Optional[VideoJobQueue] = None
    consumer: Optional[QueueConsumer] = None


def connect_redis(url: Optional[str]):
    """Return a live Redis client, or None when unset/unreachable."""
    if not url:
        return None
    client = redis.from_url(url, decode_responses=False)
    try:
        client.ping()
    except redis.RedisError as e:
        logger.warning(f"Redis connection failed: {e} - falling back to background tasks")
        return None
    logger.info(f"Redis connected: {url[:30]}...")
    return client


def build_container(settings: Settings) -> Container:
    if settings.supabase_configured:
        sb = create_client(settings.supabase_url, settings.supabase_service_role_key)
        store = SupabaseJobStore(sb)
        credits = SupabaseCreditLedger(sb)
        authenticator = SupabaseAuthenticator(sb)
    elif settings.environment == "development":
        logger.warning("Supabase not configured - using in-memory store, ledger and dev auth")
        store = InMemoryJobStore()
        credits = InMemoryCreditLedger()
        authenticator = DevAuthenticator()
    else:
        raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY must be set")

    blob_storage = BlobStorage.from_settings(settings) if settings.storage_configured else None
    providers = ProviderFactory.from_settings(settings)
    orchestrator = GenerationOrchestrator(
        store=store,
        credits=credits,
        providers=providers,
        image_preparer=ImagePreparer(blob_storage),
        blob_storage=blob_storage,
        poll_interval=settings.poll_interval_seconds,
        poll_timeout=settings.poll_timeout_seconds,
        audio_base_url=settings.audio_base_url,
    )

    redis_client = connect_redis(settings.redis_url)
    job_queue = VideoJobQueue(redis_client) if redis_client is not None else None
    consumer = QueueConsumer(job_queue, orchestrator) if job_queue is not None else None

    return Container(
        settings=settings,
        store=store,
        credits=credits,
        providers=providers,
        orchestrator=orchestrator,
        reconciler=JobReconciler(orchestrator, settings.status_requery_enabled),
        authenticator=authenticator,
        job_queue=job_queue,
        consumer=consumer,
    )
