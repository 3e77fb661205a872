"""Asynchronous generation jobs with cooperative cancellation."""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping, Optional
from uuid import uuid4

from backend.domain.errors import GenerationCancelledError, NotFoundError, SchedulingError
from backend.domain.models import GenerationJob, JobStatus
from backend.services.conflict_service import SchedulingCatalog
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobManager:
    """Process-scoped registry of generation jobs.

    Every read and write of a job entry goes through ``self._lock``; workers
    only observe cancellation through the per-job ``threading.Event``.
    """

    def __init__(self, timetable_service: Any, settings: Optional[Settings] = None) -> None:
        self._timetable_service = timetable_service
        self._settings = settings or get_settings()
        self._lock = threading.RLock()
        self._jobs: dict[str, GenerationJob] = {}
        self._events: dict[str, threading.Event] = {}
        self._futures: dict[str, Future] = {}
        self._executor: Optional[ThreadPoolExecutor] = None

    def start(self) -> None:
        with self._lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._settings.job_max_workers,
                    thread_name_prefix="timetable-job",
                )
                logger.info("Job manager started | workers=%s", self._settings.job_max_workers)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            executor = self._executor
            self._executor = None
            for event in self._events.values():
                event.set()
        if executor is not None:
            executor.shutdown(wait=wait, cancel_futures=True)
            logger.info("Job manager stopped")

    def submit(
        self,
        options: Optional[Mapping[str, Any]] = None,
        catalog: Optional[SchedulingCatalog] = None,
    ) -> dict[str, Any]:
        options = dict(options or {})
        config = self._timetable_service.build_config(options)
        job_id = uuid4().hex
        event = threading.Event()
        job = GenerationJob(
            job_id=job_id,
            status=JobStatus.PENDING,
            options=options,
            created_at=_utcnow(),
        )
        with self._lock:
            self.prune()
            self.start()
            self._jobs[job_id] = job
            self._events[job_id] = event
            self._futures[job_id] = self._executor.submit(self._run, job_id, options, catalog, event)
        logger.info("Job submitted | job_id=%s | algorithm=%s", job_id, config.algorithm)
        return {
            "job_id": job_id,
            "status": JobStatus.PENDING.value,
            "status_url": f"/timetable/status/{job_id}",
            "estimated_time": self._timetable_service.estimate_generation_time(
                config.algorithm,
                config.max_iterations,
            ),
        }

    def _transition(self, job_id: str, status: JobStatus, **changes: Any) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return
            job.status = status
            for key, value in changes.items():
                setattr(job, key, value)
        logger.info("Job %s | job_id=%s", status.value, job_id)

    def _run(
        self,
        job_id: str,
        options: dict[str, Any],
        catalog: Optional[SchedulingCatalog],
        event: threading.Event,
    ) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status is not JobStatus.PENDING:
                return
            job.status = JobStatus.RUNNING
            job.started_at = _utcnow()
        logger.info("Job running | job_id=%s", job_id)
        try:
            result = self._timetable_service.generate(options, catalog=catalog, cancel_event=event)
        except GenerationCancelledError:
            self._transition(job_id, JobStatus.CANCELLED, finished_at=_utcnow())
        except SchedulingError as exc:
            self._transition(job_id, JobStatus.FAILED, finished_at=_utcnow(), error=str(exc))
        except Exception as exc:
            logger.exception("Job crashed | job_id=%s", job_id)
            self._transition(job_id, JobStatus.FAILED, finished_at=_utcnow(), error=f"Internal error: {exc}")
        else:
            self._transition(
                job_id,
                JobStatus.COMPLETED,
                finished_at=_utcnow(),
                result=result.to_api_dict(),
            )

    def get(self, job_id: str) -> GenerationJob:
        """Return a snapshot of the job entry."""
        with self._lock:
            self.prune()
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            return replace(job)

    def cancel(self, job_id: str) -> dict[str, Any]:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            if job.status.is_terminal:
                return {
                    "success": False,
                    "job_id": job_id,
                    "status": job.status.value,
                    "message": f"Job already {job.status.value}",
                }
            job.cancel_requested = True
            self._events[job_id].set()
            if job.status is JobStatus.PENDING:
                self._futures[job_id].cancel()
                job.status = JobStatus.CANCELLED
                job.finished_at = _utcnow()
            status = job.status
        logger.info("Job cancellation requested | job_id=%s | status=%s", job_id, status.value)
        return {
            "success": True,
            "job_id": job_id,
            "status": status.value,
            "message": "Cancellation requested",
        }

    def prune(self, now: Optional[datetime] = None) -> int:
        """Drop finished jobs older than the retention window."""
        cutoff = (now or _utcnow()) - timedelta(seconds=self._settings.job_retention_seconds)
        with self._lock:
            expired = [
                job_id
                for job_id, job in self._jobs.items()
                if job.status.is_terminal and job.finished_at is not None and job.finished_at < cutoff
            ]
            for job_id in expired:
                del self._jobs[job_id]
                self._events.pop(job_id, None)
                self._futures.pop(job_id, None)
        if expired:
            logger.info("Jobs pruned | count=%s", len(expired))
        return len(expired)
