import itertools
import random

import pytest

from petdance.errors import JobNotFoundError
from petdance.jobs.models import JobStatus, TERMINAL_STATUSES, can_transition
from petdance.jobs.store import InMemoryJobStore, SupabaseJobStore

ORDER = [JobStatus.QUEUED, JobStatus.PROCESSING, JobStatus.SUCCEEDED, JobStatus.FAILED]


def _new(store, owner="user-1"):
    return store.create(
        owner_id=owner,
        input_image_url="https://cdn.example.com/p.jpg",
        dance_style="robot",
        prompt="A pet doing the robot dance",
        provider="replicate",
    )


def _fields_for(status):
    fields = {"status": status}
    if status == JobStatus.SUCCEEDED:
        fields["result_url"] = "https://cdn.example.com/v.mp4"
    if status == JobStatus.FAILED:
        fields["error_detail"] = "boom"
    return fields


def test_create_starts_queued():
    store = InMemoryJobStore()
    job = _new(store)
    assert job.status == JobStatus.QUEUED
    assert job.provider_job_id is None
    assert job.result_url is None
    assert store.get(job.id, "user-1").id == job.id


def test_get_hides_other_owners_jobs():
    store = InMemoryJobStore()
    job = _new(store)
    with pytest.raises(JobNotFoundError):
        store.get(job.id, "someone-else")


def test_partial_update_keeps_other_fields():
    store = InMemoryJobStore()
    job = _new(store)
    store.update(job.id, status=JobStatus.PROCESSING)
    updated = store.update(job.id, provider_job_id="pred-1")
    assert updated.status == JobStatus.PROCESSING
    assert updated.prompt == "A pet doing the robot dance"
    assert updated.provider_job_id == "pred-1"


def test_correlation_id_is_immutable_once_set():
    store = InMemoryJobStore()
    job = _new(store)
    store.update(job.id, provider_job_id="pred-1")
    assert store.update(job.id, provider_job_id="pred-2") is None
    assert store.get_by_id(job.id).provider_job_id == "pred-1"


def test_terminal_state_is_final():
    store = InMemoryJobStore()
    job = _new(store)
    store.update(job.id, status=JobStatus.PROCESSING)
    store.update(job.id, **_fields_for(JobStatus.SUCCEEDED))

    assert store.update(job.id, **_fields_for(JobStatus.FAILED)) is None
    assert store.update(job.id, status=JobStatus.PROCESSING) is None
    final = store.get_by_id(job.id)
    assert final.status == JobStatus.SUCCEEDED
    assert final.error_detail is None


def test_result_url_only_with_success():
    store = InMemoryJobStore()
    job = _new(store)
    assert store.update(job.id, status=JobStatus.SUCCEEDED) is None
    assert store.update(job.id, result_url="https://x.example/v.mp4") is None
    assert store.get_by_id(job.id).status == JobStatus.QUEUED


@pytest.mark.parametrize("current,target", list(itertools.product(ORDER, ORDER)))
def test_transition_table(current, target):
    expected = (
        current not in TERMINAL_STATUSES
        and ORDER.index(target) >= ORDER.index(current)
        and (current, target) != (JobStatus.QUEUED, JobStatus.SUCCEEDED)
    )
    assert can_transition(current, target) is expected


def test_queued_job_cannot_jump_to_succeeded():
    store = InMemoryJobStore()
    job = _new(store)
    assert store.update(job.id, **_fields_for(JobStatus.SUCCEEDED)) is None
    assert store.get_by_id(job.id).status == JobStatus.QUEUED


def test_only_one_claim_wins():
    store = InMemoryJobStore()
    job = _new(store)
    stale = store.get_by_id(job.id)
    assert stale.status == JobStatus.QUEUED

    first = store.claim(job.id)
    second = store.claim(job.id)
    assert first.status == JobStatus.PROCESSING
    assert second is None


def test_claim_refuses_terminal_jobs_and_unknown_ids():
    store = InMemoryJobStore()
    job = _new(store)
    store.update(job.id, **_fields_for(JobStatus.FAILED))
    assert store.claim(job.id) is None
    with pytest.raises(JobNotFoundError):
        store.claim("no-such-job")


def test_random_update_sequences_never_go_backwards():
    rng = random.Random(1234)
    for _ in range(200):
        store = InMemoryJobStore()
        job = _new(store)
        history = [job.status]
        for _ in range(6):
            store.update(job.id, **_fields_for(rng.choice(ORDER)))
            history.append(store.get_by_id(job.id).status)

        ranks = [min(ORDER.index(s), 2) for s in history]
        assert ranks == sorted(ranks)
        terminal_at = next((i for i, s in enumerate(history) if s in TERMINAL_STATUSES), None)
        if terminal_at is not None:
            assert len(set(history[terminal_at:])) == 1


def test_list_is_newest_first_and_owner_scoped():
    store = InMemoryJobStore()
    first = _new(store)
    second = _new(store)
    _new(store, owner="user-2")
    assert [j.id for j in store.list("user-1")] == [second.id, first.id]


def test_delete_requires_ownership():
    store = InMemoryJobStore()
    job = _new(store)
    with pytest.raises(JobNotFoundError):
        store.delete(job.id, "user-2")
    store.delete(job.id, "user-1")
    with pytest.raises(JobNotFoundError):
        store.get_by_id(job.id)


class _Query:
    def __init__(self, table, op, payload=None):
        self.table = table
        self.op = op
        self.payload = payload
        self.filters = []

    def eq(self, column, value):
        self.filters.append((column, value))
        return self

    def limit(self, n):
        return self

    def execute(self):
        rows = [r for r in self.table.rows if all(r.get(c) == v for c, v in self.filters)]
        if self.op == "update":
            for row in rows:
                row.update(self.payload)
        return type("Result", (), {"data": [dict(r) for r in rows]})()


class _Table:
    def __init__(self, rows):
        self.rows = rows
        self.queries = []

    def update(self, payload):
        query = _Query(self, "update", payload)
        self.queries.append(query)
        return query

    def select(self, columns):
        return _Query(self, "select")


class _FakeSupabase:
    def __init__(self, rows):
        self.videos = _Table(rows)

    def table(self, name):
        assert name == "videos"
        return self.videos


def test_supabase_claim_is_conditional_on_queued():
    row = {
        "id": "job-1",
        "user_id": "user-1",
        "status": "queued",
        "input_image_url": "https://cdn.example.com/p.jpg",
        "dance_style": "robot",
        "provider": "replicate",
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    sb = _FakeSupabase([row])
    store = SupabaseJobStore(sb)

    assert store.claim("job-1").status == JobStatus.PROCESSING
    assert store.claim("job-1") is None
    assert ("status", "queued") in sb.videos.queries[0].filters
    with pytest.raises(JobNotFoundError):
        store.claim("job-404")
