import pytest
from fastapi.testclient import TestClient

from petdance import metrics
from petdance.auth import DevAuthenticator
from petdance.config import Settings
from petdance.container import Container
from petdance.errors import ProviderError
from petdance.jobs.credits import InMemoryCreditLedger
from petdance.jobs.models import JobStatus
from petdance.jobs.orchestrator import GenerationOrchestrator
from petdance.jobs.reconcile import JobReconciler
from petdance.jobs.store import InMemoryJobStore
from petdance.main import create_app
from petdance.providers import ProviderFactory, ProviderResult

PET_IMAGE = "https://cdn.example.com/uploads/rex.jpg"
RESULT_URL = "https://cdn.example.com/videos/rex-robot.mp4"


class FakeProvider:
    """Scripted provider: `polls` is consumed one item per poll() call."""

    def __init__(self, name="replicate", submit_status=JobStatus.QUEUED, polls=None, submit_error=None):
        self.name = name
        self.submit_status = submit_status
        self.polls = list(polls or [])
        self.submit_error = submit_error
        self.submit_calls = []
        self.poll_calls = []

    def result(self, status, url=None, error=None, corr="pred-1"):
        return ProviderResult(self.name, corr, status, result_url=url, error_detail=error, raw_status=status.value)

    def submit(self, image_url, prompt, options):
        self.submit_calls.append((image_url, prompt, options))
        if self.submit_error:
            raise self.submit_error
        return self.result(self.submit_status)

    def poll(self, correlation_id):
        self.poll_calls.append(correlation_id)
        step = self.polls.pop(0) if len(self.polls) > 1 else self.polls[0]
        if isinstance(step, ProviderError):
            raise step
        status, url, error = step
        return self.result(status, url, error, corr=correlation_id)


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def credits():
    return InMemoryCreditLedger({"user-1": 100})


@pytest.fixture
def provider():
    return FakeProvider(polls=[
        (JobStatus.PROCESSING, None, None),
        (JobStatus.SUCCEEDED, RESULT_URL, None),
    ])


@pytest.fixture
def orchestrator(store, credits, provider):
    return GenerationOrchestrator(
        store=store,
        credits=credits,
        providers=ProviderFactory({"replicate": provider}, default="replicate"),
        poll_interval=0,
        poll_timeout=60,
        sleep=lambda s: None,
    )


@pytest.fixture
def container(store, credits, orchestrator):
    return Container(
        settings=Settings(),
        store=store,
        credits=credits,
        providers=orchestrator.providers,
        orchestrator=orchestrator,
        reconciler=JobReconciler(orchestrator),
        authenticator=DevAuthenticator(),
    )


@pytest.fixture
def client(container):
    return TestClient(create_app(container))


def auth(user_id="user-1"):
    return {"Authorization": f"Bearer {user_id}"}
