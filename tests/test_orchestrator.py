import threading

import pytest

from conftest import PET_IMAGE, RESULT_URL, FakeProvider

from petdance.errors import (
    InsufficientBalanceError,
    ProviderNotFoundError,
    ProviderRequestError,
    ProviderTransientError,
    StorageError,
    ValidationError,
)
from petdance.jobs.models import GenerateRequest, JobStatus
from petdance.jobs.orchestrator import GenerationOrchestrator
from petdance.providers import ProviderFactory


def _request(style="robot", image=PET_IMAGE, description=None):
    return GenerateRequest(image_url=image, dance_style=style, pet_description=description)


def _orchestrator(store, credits, provider, **kwargs):
    kwargs.setdefault("poll_interval", 0)
    kwargs.setdefault("sleep", lambda s: None)
    return GenerationOrchestrator(
        store=store,
        credits=credits,
        providers=ProviderFactory({provider.name: provider}, default=provider.name),
        **kwargs,
    )


def test_scenario_a_success_end_to_end(orchestrator, store, credits, provider):
    dispatched = []
    job = orchestrator.start_generation("user-1", _request(), dispatched.append)

    assert job.status == JobStatus.QUEUED
    assert dispatched == [job.id]
    assert credits.get_balance("user-1") == 0
    assert provider.submit_calls == []

    final = orchestrator.run_job(job.id)
    assert final.status == JobStatus.SUCCEEDED
    assert final.result_url == RESULT_URL
    assert final.provider_job_id == "pred-1"
    assert len(provider.submit_calls) == 1


def test_scenario_b_insufficient_balance_creates_nothing(orchestrator, store, credits):
    credits.set_balance("user-1", 0)
    dispatched = []
    with pytest.raises(InsufficientBalanceError):
        orchestrator.start_generation("user-1", _request(), dispatched.append)
    assert store.list("user-1") == []
    assert dispatched == []


@pytest.mark.parametrize("request_kwargs", [
    {"image": None},
    {"image": "http://insecure.example/p.jpg"},
    {"image": "not a url"},
    {"style": None},
    {"style": "moonwalk"},
    {"description": "x" * 501},
])
def test_validation_errors_charge_nothing(orchestrator, credits, request_kwargs):
    with pytest.raises(ValidationError):
        orchestrator.start_generation("user-1", _request(**request_kwargs), lambda job_id: None)
    assert credits.get_balance("user-1") == 100


def test_ledger_outage_still_generates(store, provider):
    class BrokenLedger:
        def decrement_if_sufficient(self, owner_id, amount, job_ref=None):
            raise StorageError("connection refused")

    orch = _orchestrator(store, BrokenLedger(), provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)
    assert job.status == JobStatus.QUEUED


def test_dispatch_failure_marks_job_failed(orchestrator, store):
    def broken_dispatch(job_id):
        raise ConnectionError("redis down")

    with pytest.raises(StorageError):
        orchestrator.start_generation("user-1", _request(), broken_dispatch)
    [job] = store.list("user-1")
    assert job.status == JobStatus.FAILED
    assert "redis down" in job.error_detail


def test_provider_failure_is_recorded(store, credits):
    provider = FakeProvider(polls=[(JobStatus.FAILED, None, "content policy violation")])
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert final.error_detail == "content policy violation"
    assert final.result_url is None
    # no refund on failure
    assert credits.get_balance("user-1") == 0


def test_submit_error_fails_job_with_truncated_detail(store, credits):
    provider = FakeProvider(submit_error=ProviderRequestError("bad input " + "z" * 900, "replicate", 422))
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert final.error_detail.startswith("bad input")
    assert len(final.error_detail) == 500


def test_success_without_url_fails_job(store, credits):
    provider = FakeProvider(polls=[(JobStatus.SUCCEEDED, None, None)])
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert "without a video URL" in final.error_detail


def test_transient_poll_errors_are_tolerated(store, credits):
    provider = FakeProvider(polls=[
        ProviderTransientError("timeout", "replicate"),
        (JobStatus.PROCESSING, None, None),
        (JobStatus.SUCCEEDED, RESULT_URL, None),
    ])
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)
    assert orch.run_job(job.id).status == JobStatus.SUCCEEDED


def test_unknown_correlation_id_fails_job(store, credits):
    provider = FakeProvider(polls=[ProviderNotFoundError("gone", "replicate", 404)])
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)
    assert orch.run_job(job.id).status == JobStatus.FAILED


def test_poll_timeout_fails_job(store, credits):
    provider = FakeProvider(polls=[(JobStatus.PROCESSING, None, None)])
    ticks = iter(range(0, 10_000, 10))
    orch = _orchestrator(store, credits, provider, poll_timeout=30, clock=lambda: next(ticks))
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert "timed out" in final.error_detail


def test_redelivered_job_resumes_without_resubmitting(orchestrator, store, provider):
    job = orchestrator.start_generation("user-1", _request(), lambda job_id: None)
    store.update(job.id, status=JobStatus.PROCESSING)
    store.update(job.id, provider_job_id="pred-existing")

    final = orchestrator.run_job(job.id)
    assert provider.submit_calls == []
    assert provider.poll_calls[0] == "pred-existing"
    assert final.status == JobStatus.SUCCEEDED


def test_interrupted_submission_is_failed_not_resubmitted(orchestrator, store, provider):
    job = orchestrator.start_generation("user-1", _request(), lambda job_id: None)
    store.update(job.id, status=JobStatus.PROCESSING)

    final = orchestrator.run_job(job.id)
    assert provider.submit_calls == []
    assert final.status == JobStatus.FAILED


def test_terminal_job_is_left_alone(orchestrator, store, provider):
    job = orchestrator.start_generation("user-1", _request(), lambda job_id: None)
    orchestrator.run_job(job.id)
    again = orchestrator.run_job(job.id)
    assert again.status == JobStatus.SUCCEEDED
    assert len(provider.submit_calls) == 1


def test_temporary_result_url_is_copied_to_storage(store, credits):
    provider = FakeProvider(polls=[(JobStatus.SUCCEEDED, "https://replicate.delivery/tmp/out.mp4", None)])

    class FakeBlob:
        def __init__(self):
            self.copied = []

        def persist_remote_video(self, url, user_id, job_id):
            self.copied.append(url)
            return f"https://assets.example/user-generations/{user_id}/{job_id}.mp4"

    blob = FakeBlob()
    orch = _orchestrator(store, credits, provider, blob_storage=blob)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert blob.copied == ["https://replicate.delivery/tmp/out.mp4"]
    assert final.result_url.startswith("https://assets.example/user-generations/user-1/")


def test_storage_failure_mid_job_fails_job(store, credits):
    provider = FakeProvider(polls=[(JobStatus.SUCCEEDED, "https://replicate.delivery/tmp/out.mp4", None)])

    class BrokenBlob:
        def persist_remote_video(self, url, user_id, job_id):
            raise StorageError("R2 unavailable")

    orch = _orchestrator(store, credits, provider, blob_storage=BrokenBlob())
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert "R2 unavailable" in final.error_detail


def test_terminal_write_is_retried_once(orchestrator, store, monkeypatch):
    job = orchestrator.start_generation("user-1", _request(), lambda job_id: None)
    real_update = store.update
    calls = {"terminal": 0}

    def flaky_update(job_id, **fields):
        if fields.get("status") == JobStatus.SUCCEEDED:
            calls["terminal"] += 1
            if calls["terminal"] == 1:
                raise StorageError("write timeout")
        return real_update(job_id, **fields)

    monkeypatch.setattr(store, "update", flaky_update)
    final = orchestrator.run_job(job.id)
    assert calls["terminal"] == 2
    assert final.status == JobStatus.SUCCEEDED


def test_exception_without_message_still_records_a_detail(store, credits):
    provider = FakeProvider(submit_error=TimeoutError())
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)

    final = orch.run_job(job.id)
    assert final.status == JobStatus.FAILED
    assert final.error_detail == "TimeoutError"


def test_second_delivery_with_stale_read_does_not_submit(orchestrator, store, provider, monkeypatch):
    job = orchestrator.start_generation("user-1", _request(), lambda job_id: None)
    stale = store.get_by_id(job.id)
    # the other worker claims it between our read and our claim
    assert store.claim(job.id) is not None

    real_get = store.get_by_id
    reads = [stale]

    def get_by_id(job_id):
        return reads.pop() if reads else real_get(job_id)

    monkeypatch.setattr(store, "get_by_id", get_by_id)

    current = orchestrator.run_job(job.id)
    assert provider.submit_calls == []
    assert current.status == JobStatus.PROCESSING


def test_job_deleted_while_running_is_abandoned(store, credits):
    class DeletingProvider(FakeProvider):
        def poll(self, correlation_id):
            store.delete(self.job_id, "user-1")
            return super().poll(correlation_id)

    provider = DeletingProvider(polls=[(JobStatus.SUCCEEDED, RESULT_URL, None)])
    orch = _orchestrator(store, credits, provider)
    job = orch.start_generation("user-1", _request(), lambda job_id: None)
    provider.job_id = job.id

    assert orch.run_job(job.id) is None
    assert store.list("user-1") == []


def test_concurrent_requests_for_the_last_coins_create_one_job(orchestrator, store, credits):
    attempts = 12
    barrier = threading.Barrier(attempts)
    outcomes = []

    def attempt():
        barrier.wait()
        try:
            orchestrator.start_generation("user-1", _request(), lambda job_id: None)
            outcomes.append("created")
        except InsufficientBalanceError:
            outcomes.append("refused")

    threads = [threading.Thread(target=attempt) for _ in range(attempts)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert outcomes.count("created") == 1
    assert outcomes.count("refused") == attempts - 1
    assert len(store.list("user-1")) == 1
    assert credits.get_balance("user-1") == 0
