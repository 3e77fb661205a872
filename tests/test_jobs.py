"""Tests for the asynchronous generation job manager."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from backend.domain.constraints import build_generation_config
from backend.domain.errors import GenerationCancelledError, NotFoundError, ValidationError
from backend.domain.models import JobStatus
from backend.repository.data_repository import DataRepository
from backend.services.availability_service import AvailabilityService
from backend.services.generator_service import TimetableService
from backend.services.job_service import JobManager
from backend.utils.config import get_settings


def _build_test_settings(tmp_path, filename: str, **overrides):
    get_settings.cache_clear()
    base = get_settings()
    return replace(base, database_path=tmp_path / filename, **overrides)


class _FinishedResult:
    def to_api_dict(self) -> dict:
        return {"success": True, "schedule": []}


class _BlockingTimetableService:
    """Stands in for TimetableService; generate() runs until released or cancelled."""

    def __init__(self, settings) -> None:
        self._settings = settings
        self.started = threading.Event()
        self.release = threading.Event()

    def build_config(self, options):
        return build_generation_config(self._settings, options)

    def estimate_generation_time(self, algorithm: str, max_iterations: int) -> float:
        return 1.5

    def generate(self, options, catalog=None, cancel_event=None):
        self.started.set()
        while not self.release.wait(0.01):
            if cancel_event is not None and cancel_event.is_set():
                raise GenerationCancelledError("Generation cancelled")
        if options.get("explode"):
            raise RuntimeError("boom")
        return _FinishedResult()


def _wait_for(manager: JobManager, job_id: str, status: JobStatus, timeout: float = 10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = manager.get(job_id)
        if job.status is status:
            return job
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} never reached {status.value}; last={manager.get(job_id).status.value}")


def test_job_runs_real_generation_to_completion(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    repository = DataRepository(settings)
    repository.initialize_database()
    repository.seed_demo_catalog_if_empty()
    service = TimetableService(repository, AvailabilityService(repository, settings), settings)
    manager = JobManager(service, settings)

    try:
        ticket = manager.submit({"algorithm": "greedy"})
        job = _wait_for(manager, ticket["job_id"], JobStatus.COMPLETED)
    finally:
        manager.shutdown()

    assert ticket["status"] == "pending"
    assert ticket["status_url"] == f"/timetable/status/{ticket['job_id']}"
    assert ticket["estimated_time"] == 30.0
    assert job.result["success"] is True
    assert job.started_at is not None and job.finished_at is not None


def test_running_job_stops_at_next_checkpoint(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    service = _BlockingTimetableService(settings)
    manager = JobManager(service, settings)

    try:
        job_id = manager.submit({})["job_id"]
        assert service.started.wait(5)
        response = manager.cancel(job_id)
        job = _wait_for(manager, job_id, JobStatus.CANCELLED)
    finally:
        service.release.set()
        manager.shutdown()

    assert response["success"] is True
    assert job.cancel_requested is True
    assert job.to_api_dict()["cancel_requested"] is True
    assert job.result is None


def test_pending_job_is_cancelled_before_it_starts(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db", job_max_workers=1)
    service = _BlockingTimetableService(settings)
    manager = JobManager(service, settings)

    try:
        running_id = manager.submit({})["job_id"]
        assert service.started.wait(5)
        queued_id = manager.submit({})["job_id"]
        assert manager.get(queued_id).status is JobStatus.PENDING

        response = manager.cancel(queued_id)
        assert response["status"] == "cancelled"

        service.release.set()
        _wait_for(manager, running_id, JobStatus.COMPLETED)
    finally:
        service.release.set()
        manager.shutdown()

    assert manager.get(queued_id).status is JobStatus.CANCELLED
    assert manager.get(queued_id).started_at is None


def test_cancelling_a_finished_job_reports_failure(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    service = _BlockingTimetableService(settings)
    service.release.set()
    manager = JobManager(service, settings)

    try:
        job_id = manager.submit({})["job_id"]
        _wait_for(manager, job_id, JobStatus.COMPLETED)
        response = manager.cancel(job_id)
    finally:
        manager.shutdown()

    assert response["success"] is False
    assert manager.get(job_id).status is JobStatus.COMPLETED


def test_submit_after_shutdown_starts_a_fresh_pool(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    service = _BlockingTimetableService(settings)
    service.release.set()
    manager = JobManager(service, settings)
    manager.start()
    manager.shutdown()

    try:
        job_id = manager.submit({})["job_id"]
        job = _wait_for(manager, job_id, JobStatus.COMPLETED)
    finally:
        manager.shutdown()

    assert job.result == {"success": True, "schedule": []}


def test_unexpected_error_marks_job_failed(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    service = _BlockingTimetableService(settings)
    service.release.set()
    manager = JobManager(service, settings)

    try:
        job_id = manager.submit({"explode": True})["job_id"]
        job = _wait_for(manager, job_id, JobStatus.FAILED)
    finally:
        manager.shutdown()

    assert "boom" in job.error


def test_invalid_options_are_rejected_at_submission(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    manager = JobManager(_BlockingTimetableService(settings), settings)

    with pytest.raises(ValidationError):
        manager.submit({"algorithm": "quantum"})


def test_unknown_job_raises_not_found(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db")
    manager = JobManager(_BlockingTimetableService(settings), settings)

    with pytest.raises(NotFoundError):
        manager.get("missing")
    with pytest.raises(NotFoundError):
        manager.cancel("missing")


def test_finished_jobs_are_pruned_after_retention(tmp_path) -> None:
    settings = _build_test_settings(tmp_path, "jobs.db", job_retention_seconds=60)
    service = _BlockingTimetableService(settings)
    service.release.set()
    manager = JobManager(service, settings)

    try:
        job_id = manager.submit({})["job_id"]
        _wait_for(manager, job_id, JobStatus.COMPLETED)
    finally:
        manager.shutdown()

    assert manager.prune(datetime.now(timezone.utc)) == 0
    assert manager.prune(datetime.now(timezone.utc) + timedelta(minutes=5)) == 1
    with pytest.raises(NotFoundError):
        manager.get(job_id)
