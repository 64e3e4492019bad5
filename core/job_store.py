"""
In-memory job store.

An explicit, injected store for job records. Writers go through ``update`` and
``transition`` under an asyncio lock; readers always get copies, so a status
read never observes a half-applied change.
"""

import asyncio
from typing import Any, Dict, List, Optional

from core.errors import InvalidTransitionError, JobNotFoundError
from core.models import Job, JobStatus

UPDATABLE_FIELDS = {"records_processed", "input_file_path", "token", "result_reference", "error"}


class JobStore:
    """Concurrency-safe map of job id -> Job."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: str) -> bool:
        return job_id in self._jobs

    async def add(self, job: Job) -> Job:
        async with self._lock:
            if job.id in self._jobs:
                raise ValueError(f"Job id {job.id} already exists")
            self._jobs[job.id] = job.snapshot()
            return job.snapshot()

    async def get(self, job_id: str) -> Optional[Job]:
        async with self._lock:
            job = self._jobs.get(job_id)
            return job.snapshot() if job else None

    async def require(self, job_id: str) -> Job:
        job = await self.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    async def list(self) -> List[Job]:
        """All jobs, newest first."""
        async with self._lock:
            jobs = [job.snapshot() for job in self._jobs.values()]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def update(self, job_id: str, **fields: Any) -> Job:
        """Set non-status fields on a job that has not finished yet."""
        async with self._lock:
            job = self._get_locked(job_id)
            if job.is_terminal:
                raise InvalidTransitionError(f"Job {job_id} is {job.status.value} and can no longer change")
            staged = job.snapshot()
            self._apply(staged, fields)
            self._jobs[job_id] = staged
            return staged.snapshot()

    async def transition(self, job_id: str, status: JobStatus, **fields: Any) -> Job:
        """Apply ``fields`` and move to ``status`` in one step, or change nothing."""
        async with self._lock:
            job = self._get_locked(job_id)
            if not job.can_transition(status):
                raise InvalidTransitionError(
                    f"Job {job_id}: cannot move from {job.status.value} to {status.value}"
                )
            staged = job.snapshot()
            self._apply(staged, fields)
            staged.transition(status)
            self._jobs[job_id] = staged
            return staged.snapshot()

    def _get_locked(self, job_id: str) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job

    @staticmethod
    def _apply(job: Job, fields: Dict[str, Any]) -> None:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {', '.join(sorted(unknown))}")
        for name, value in fields.items():
            if name == "token":
                job.assign_token(value)
            else:
                setattr(job, name, value)
