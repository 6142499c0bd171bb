from datetime import datetime, timedelta

import pytest

from app.core.errors import InvalidTransition, JobNotFound, SourceNotFound
from app.models.files import SourceFile
from app.models.jobs import JobStatus
from app.models.operations import OperationSet
from app.services.registry import JobRegistry

WINDOW = timedelta(minutes=30)


def make_source(registry, age=timedelta(0), path="/uploads/a.mp4"):
    source = SourceFile(
        original_filename="a.mp4",
        stored_path=path,
        duration=10.0,
        width=1920,
        height=1080,
        format="mp4",
        created_at=datetime.utcnow() - age,
    )
    return registry.register(source)


def age_job(registry, job_id, age):
    def set_old(job):
        job.updated_at = datetime.utcnow() - age
    registry.update_job(job_id, set_old)


def complete(registry, job_id, path="/outputs/x.mp4"):
    registry.update_job(job_id, lambda j: j.mark_processing())
    registry.update_job(job_id, lambda j: j.mark_completed(path, f"/api/download/{job_id}"))


def test_create_job_requires_known_source():
    registry = JobRegistry()
    with pytest.raises(SourceNotFound):
        registry.create_job("missing", OperationSet())


def test_create_job_starts_pending():
    registry = JobRegistry()
    source = make_source(registry)
    job_id = registry.create_job(source.id, OperationSet(format="gif"))
    job = registry.get_job(job_id)
    assert job.status == JobStatus.PENDING
    assert job.file_id == source.id
    assert job.operations.format == "gif"


def test_get_job_returns_copies():
    registry = JobRegistry()
    job_id = registry.create_job(make_source(registry).id, OperationSet())
    snapshot = registry.get_job(job_id)
    snapshot.progress = 99
    assert registry.get_job(job_id).progress == 0


def test_update_job_unknown_raises():
    with pytest.raises(JobNotFound):
        JobRegistry().update_job("missing", lambda j: None)


def test_failed_mutator_leaves_job_untouched():
    registry = JobRegistry()
    job_id = registry.create_job(make_source(registry).id, OperationSet())
    with pytest.raises(InvalidTransition):
        registry.update_job(job_id, lambda j: j.mark_completed("/x", "/y"))
    assert registry.get_job(job_id).status == JobStatus.PENDING


def test_stale_sources_listed_by_age():
    registry = JobRegistry()
    old = make_source(registry, age=timedelta(hours=1))
    make_source(registry)
    stale = registry.list_stale_sources(datetime.utcnow(), WINDOW)
    assert [s.id for s in stale] == [old.id]


def test_delete_source_refuses_while_job_active():
    registry = JobRegistry()
    source = make_source(registry, age=timedelta(hours=1))
    job_id = registry.create_job(source.id, OperationSet())

    assert registry.delete_source(source.id) is None
    registry.update_job(job_id, lambda j: j.mark_processing())
    assert registry.delete_source(source.id) is None
    assert registry.get(source.id) is not None

    registry.update_job(job_id, lambda j: j.mark_failed("boom"))
    assert registry.delete_source(source.id).id == source.id
    assert registry.get(source.id) is None


def test_delete_source_respects_cutoff():
    registry = JobRegistry()
    source = make_source(registry)
    cutoff = datetime.utcnow() - WINDOW
    assert registry.delete_source(source.id, older_than=cutoff) is None


def test_stale_outputs_only_for_completed_jobs():
    registry = JobRegistry()
    source = make_source(registry)
    done = registry.create_job(source.id, OperationSet())
    running = registry.create_job(source.id, OperationSet())
    complete(registry, done)
    registry.update_job(running, lambda j: j.mark_processing())
    age_job(registry, done, timedelta(hours=1))
    age_job(registry, running, timedelta(hours=1))

    stale = registry.list_stale_job_outputs(datetime.utcnow(), WINDOW)
    assert [j.id for j in stale] == [done]


def test_clear_job_output_rechecks_age():
    registry = JobRegistry()
    job_id = registry.create_job(make_source(registry).id, OperationSet())
    complete(registry, job_id, "/outputs/a.mp4")
    cutoff = datetime.utcnow() - WINDOW

    # updated just now, so a sweep that listed it earlier must not clear it
    assert registry.clear_job_output(job_id, older_than=cutoff) is None

    age_job(registry, job_id, timedelta(hours=1))
    assert registry.clear_job_output(job_id, older_than=cutoff) == "/outputs/a.mp4"
    job = registry.get_job(job_id)
    assert job.status == JobStatus.COMPLETED
    assert job.output_path is None and job.output_url is None
    assert registry.clear_job_output(job_id) is None


def test_counts():
    registry = JobRegistry()
    source = make_source(registry)
    registry.create_job(source.id, OperationSet())
    complete(registry, registry.create_job(source.id, OperationSet()))
    counts = registry.counts()
    assert counts["sources"] == 1
    assert counts["jobs"] == {"pending": 1, "processing": 0, "completed": 1, "failed": 0}
