import asyncio
import threading
from datetime import datetime, timedelta

import pytest

from app.models.files import SourceFile
from app.models.operations import OperationSet
from app.services.registry import JobRegistry
from app.services.storage_manager import RetentionSweeper

WINDOW_SEC = 1800


def make_sweeper(tmp_path, registry):
    uploads = tmp_path / "uploads"
    outputs = tmp_path / "outputs"
    uploads.mkdir(exist_ok=True)
    outputs.mkdir(exist_ok=True)
    return RetentionSweeper(registry, str(uploads), str(outputs), retention_window_sec=WINDOW_SEC)


def add_source(registry, path, age, content=b"x" * 10):
    if content is not None:
        path.write_bytes(content)
    return registry.register(SourceFile(
        original_filename=path.name,
        stored_path=str(path),
        size_bytes=len(content or b""),
        duration=10.0,
        width=640,
        height=360,
        format="mp4",
        created_at=datetime.utcnow() - age,
    ))


def finish_job(registry, job_id, output_path, age):
    registry.update_job(job_id, lambda j: j.mark_processing())
    registry.update_job(job_id, lambda j: j.mark_completed(str(output_path), f"/api/download/{job_id}"))

    def backdate(job):
        job.updated_at = datetime.utcnow() - age
    registry.update_job(job_id, backdate)


def test_old_unused_upload_is_deleted(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    old = add_source(registry, tmp_path / "uploads" / "old.mp4", timedelta(hours=1))
    fresh = add_source(registry, tmp_path / "uploads" / "fresh.mp4", timedelta(minutes=1))

    report = sweeper.sweep()

    assert report.sources_deleted == 1
    assert report.bytes_freed == 10
    assert registry.get(old.id) is None
    assert not (tmp_path / "uploads" / "old.mp4").exists()
    assert registry.get(fresh.id) is not None
    assert (tmp_path / "uploads" / "fresh.mp4").exists()


def test_upload_backing_active_job_is_kept(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    source = add_source(registry, tmp_path / "uploads" / "busy.mp4", timedelta(hours=2))
    job_id = registry.create_job(source.id, OperationSet())
    registry.update_job(job_id, lambda j: j.mark_processing())

    report = sweeper.sweep()

    assert report.sources_deleted == 0
    assert report.sources_kept_in_use == 1
    assert registry.get(source.id) is not None
    assert (tmp_path / "uploads" / "busy.mp4").exists()


def test_old_output_is_deleted_but_job_stays(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    source = add_source(registry, tmp_path / "uploads" / "a.mp4", timedelta(minutes=1))
    job_id = registry.create_job(source.id, OperationSet())
    output = tmp_path / "outputs" / f"{job_id}.mp4"
    output.write_bytes(b"y" * 20)
    finish_job(registry, job_id, output, timedelta(hours=1))

    report = sweeper.sweep()

    assert report.outputs_deleted == 1
    assert not output.exists()
    job = registry.get_job(job_id)
    assert job.status.value == "completed"
    assert job.output_url is None


def test_recent_output_survives(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    source = add_source(registry, tmp_path / "uploads" / "a.mp4", timedelta(minutes=1))
    job_id = registry.create_job(source.id, OperationSet())
    output = tmp_path / "outputs" / f"{job_id}.mp4"
    output.write_bytes(b"y")
    finish_job(registry, job_id, output, timedelta(minutes=5))

    assert sweeper.sweep().outputs_deleted == 0
    assert output.exists()
    assert registry.get_job(job_id).output_url == f"/api/download/{job_id}"


def test_file_already_gone_is_not_fatal(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    source = add_source(registry, tmp_path / "uploads" / "ghost.mp4", timedelta(hours=1), content=None)

    report = sweeper.sweep()

    assert report.sources_deleted == 1
    assert report.delete_errors == 0
    assert registry.get(source.id) is None


def test_sweep_with_explicit_clock(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    source = add_source(registry, tmp_path / "uploads" / "a.mp4", timedelta(0))

    assert sweeper.sweep().sources_deleted == 0
    later = datetime.utcnow() + timedelta(hours=1)
    assert sweeper.sweep(now=later).sources_deleted == 1
    assert registry.get(source.id) is None


def test_disk_usage(tmp_path):
    registry = JobRegistry()
    sweeper = make_sweeper(tmp_path, registry)
    (tmp_path / "uploads" / "a.mp4").write_bytes(b"a" * 1024 * 1024)
    (tmp_path / "outputs" / "b.mp4").write_bytes(b"b" * 512 * 1024)

    usage = sweeper.get_disk_usage()

    assert usage["uploads_mb"] == 1.0
    assert usage["outputs_mb"] == 0.5
    assert usage["total_mb"] == 1.5
    assert usage["retention_window_sec"] == WINDOW_SEC


def test_run_forever_sweeps_off_the_event_loop_thread(tmp_path):
    registry = JobRegistry()
    sweeper = RetentionSweeper(
        registry,
        str(tmp_path / "uploads"),
        str(tmp_path / "outputs"),
        retention_window_sec=WINDOW_SEC,
        interval_sec=0.01,
    )
    sweep_threads = []

    def record_sweep(now=None):
        sweep_threads.append(threading.get_ident())

    sweeper.sweep = record_sweep

    async def scenario():
        task = asyncio.ensure_future(sweeper.run_forever())
        while not sweep_threads:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        return threading.get_ident()

    loop_thread = asyncio.run(asyncio.wait_for(scenario(), timeout=5))
    assert sweep_threads
    assert loop_thread not in sweep_threads
