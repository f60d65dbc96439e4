# Overview: In-memory registry of batch import jobs; process lifetime, mutex guarded.

"""
Batch Job Registry

Jobs live only in this process. A client that loses the process loses the job.

Every mutation happens under one lock and readers get a deep copy, so a
snapshot is never observed half-written. Progress only moves forward: a
smaller value than the current one is ignored. Finished jobs are evicted
after the TTL, checked whenever a new job is created.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from dataclasses import dataclass, field, asdict
from typing import Callable

from flask import current_app

from ..time_utils import to_utc_z, utcnow


QUEUED = "queued"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"

FINISHED_STATUSES = frozenset({COMPLETED, FAILED})


@dataclass
class BatchJob:
    id: str
    total: int
    status: str = QUEUED
    progress: int = 0
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)
    warnings: list[dict] = field(default_factory=list)
    delete_missing: bool = False
    message: str | None = None
    created_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None
    # monotonic clock reading used for TTL eviction
    finished_monotonic: float | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data.pop("finished_monotonic", None)
        return data


class JobRegistry:
    def __init__(self, ttl_seconds: int = 3600):
        self.ttl_seconds = ttl_seconds
        self._jobs: dict[str, BatchJob] = {}
        self._lock = threading.Lock()

    def create(self, total: int, *, delete_missing: bool = False) -> BatchJob:
        job = BatchJob(
            id=str(uuid.uuid4()),
            total=total,
            delete_missing=delete_missing,
            created_at=to_utc_z(utcnow()),
        )
        with self._lock:
            self._evict_expired_locked()
            self._jobs[job.id] = job
            return copy.deepcopy(job)

    def get(self, job_id: str) -> BatchJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job else None

    def update(self, job_id: str, mutator: Callable[[BatchJob], None]) -> None:
        """Apply mutator to the live job under the lock. Unknown ids are ignored."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is not None:
                mutator(job)

    def set_processing(self, job_id: str) -> None:
        def _mutate(job: BatchJob) -> None:
            if job.status == QUEUED:
                job.status = PROCESSING
                job.started_at = to_utc_z(utcnow())
        self.update(job_id, _mutate)

    def set_progress(self, job_id: str, progress: int) -> None:
        progress = max(0, min(int(progress), 100))

        def _mutate(job: BatchJob) -> None:
            # 100 is reserved for completion
            if job.status in FINISHED_STATUSES:
                return
            job.progress = max(job.progress, min(progress, 99))
        self.update(job_id, _mutate)

    def add_processed(self, job_id: str, n: int = 1) -> None:
        def _mutate(job: BatchJob) -> None:
            job.processed += n
        self.update(job_id, _mutate)

    def add_created(self, job_id: str, n: int = 1) -> None:
        def _mutate(job: BatchJob) -> None:
            job.created += n
        self.update(job_id, _mutate)

    def add_updated(self, job_id: str, n: int = 1) -> None:
        def _mutate(job: BatchJob) -> None:
            job.updated += n
        self.update(job_id, _mutate)

    def add_deleted(self, job_id: str, n: int = 1) -> None:
        def _mutate(job: BatchJob) -> None:
            job.deleted += n
        self.update(job_id, _mutate)

    def add_error(self, job_id: str, row: int, product: str | None, fields: dict) -> None:
        def _mutate(job: BatchJob) -> None:
            job.failed += 1
            job.errors.append({"row": row, "product": product, "fields": dict(fields)})
        self.update(job_id, _mutate)

    def add_warning(self, job_id: str, row: int, product: str | None, message: str) -> None:
        """Non-fatal row note (unparseable date, image that could not be fetched). Does not count as failed."""
        def _mutate(job: BatchJob) -> None:
            job.warnings.append({"row": row, "product": product, "message": message})
        self.update(job_id, _mutate)

    def complete(self, job_id: str, status: str, message: str | None = None) -> None:
        if status not in FINISHED_STATUSES:
            raise ValueError(f"Invalid completion status: {status}")

        def _mutate(job: BatchJob) -> None:
            if job.status in FINISHED_STATUSES:
                return
            job.status = status
            if status == COMPLETED:
                job.progress = 100
            job.message = message
            job.finished_at = to_utc_z(utcnow())
            job.finished_monotonic = time.monotonic()
        self.update(job_id, _mutate)

    def evict_expired(self) -> int:
        with self._lock:
            return self._evict_expired_locked()

    def _evict_expired_locked(self) -> int:
        now = time.monotonic()
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.finished_monotonic is not None and now - job.finished_monotonic >= self.ttl_seconds
        ]
        for job_id in expired:
            del self._jobs[job_id]
        return len(expired)

    def clear(self) -> None:
        with self._lock:
            self._jobs.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


def init_registry(app) -> None:
    if "job_registry" not in app.extensions:
        app.extensions["job_registry"] = JobRegistry(ttl_seconds=app.config.get("BATCH_JOB_TTL_SECONDS", 3600))


def get_registry() -> JobRegistry:
    return current_app.extensions["job_registry"]
