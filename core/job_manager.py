#!/usr/bin/env python3
"""
Job Lifecycle Manager

Owns each job from Pending to Completed or Failed:

1. Fetch the payment records (date range, or yesterday)
2. Write the submission file
3. Run the browser automation with engine fallback
4. Hand the downloaded archive to remote storage
5. Remove the local input file and archive, whatever happened

Each job runs as its own supervised asyncio task. The task never lets an
error escape: anything unexpected ends the job as Failed.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from core.dates import yesterday
from core.errors import (
    InvalidTransitionError,
    JobAlreadyStartedError,
    NoRecordsError,
    StorageError,
    SubmissionFileError,
)
from core.fallback import BrowserFallbackOrchestrator
from core.file_manager import FileManager
from core.job_store import JobStore
from core.models import FormatType, Job, JobStatus, PaymentRecord, generate_job_id
from core.submission_file import write_submission_file

logger = logging.getLogger(__name__)

NO_RECORDS_MESSAGE = "No records to process for the requested dates."

Serializer = Callable[[List[PaymentRecord], str, FileManager], Path]


# ============== Collaborators ==============

class PaymentDataSource(ABC):
    """Source of payment records."""

    @abstractmethod
    async def fetch_records_by_date(self, day: str) -> List[PaymentRecord]:
        pass

    @abstractmethod
    async def fetch_records_by_range(self, start_date: str, end_date: str) -> List[PaymentRecord]:
        pass


class ArtifactStorage(ABC):
    """Remote storage for the downloaded archive."""

    @abstractmethod
    async def upload_artifact(self, local_path: Union[str, Path], job_id: str) -> str:
        """Upload ``local_path`` and return a remote reference (e.g. a signed URL)."""


# ============== Manager ==============

class JobLifecycleManager:
    """
    Creates jobs, runs them in the background and records their outcome.

    Example:
        manager = JobLifecycleManager(store, repository, orchestrator, storage, files)
        job = await manager.submit("ops@example.com", FormatType.PDF)
        finished = await manager.wait(job.id)
    """

    def __init__(
        self,
        store: JobStore,
        data_source: PaymentDataSource,
        orchestrator: BrowserFallbackOrchestrator,
        storage: ArtifactStorage,
        files: FileManager,
        serializer: Serializer = write_submission_file,
        job_deadline: Optional[float] = 1800.0,
    ):
        self.store = store
        self.data_source = data_source
        self.orchestrator = orchestrator
        self.storage = storage
        self.files = files
        self.serializer = serializer
        self.job_deadline = job_deadline
        self._tasks: Dict[str, asyncio.Task] = {}

    # ---------- creation & scheduling ----------

    async def create_job(
        self,
        email: str,
        fmt: FormatType,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Job:
        """Register a new Pending job under a fresh id."""
        for _ in range(10):
            job = Job(id=generate_job_id(), email=email, format=fmt, start_date=start_date, end_date=end_date)
            try:
                return await self.store.add(job)
            except ValueError:
                continue
        raise RuntimeError("Could not allocate a unique job id")

    async def submit(
        self,
        email: str,
        fmt: FormatType,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Job:
        """Create a job and start processing it in the background."""
        job = await self.create_job(email, fmt, start_date, end_date)
        logger.info(f"[{job.id}] job accepted ({'range' if job.is_range else 'yesterday'}, {fmt.value})")
        self.spawn(job.id)
        return job

    def spawn(self, job_id: str) -> asyncio.Task:
        running = self._tasks.get(job_id)
        if running and not running.done():
            raise JobAlreadyStartedError(f"Job {job_id} is already running")

        task = asyncio.create_task(self._supervise(job_id), name=f"cep-job:{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job_id, None))
        return task

    def is_running(self, job_id: str) -> bool:
        task = self._tasks.get(job_id)
        return bool(task and not task.done())

    async def wait(self, job_id: str) -> Job:
        """Wait for the job's background task, then return the job."""
        task = self._tasks.get(job_id)
        if task:
            await asyncio.gather(task, return_exceptions=True)
        return await self.store.require(job_id)

    async def cancel(self, job_id: str) -> bool:
        """Cancel a running job. It ends as Failed after its cleanup runs."""
        task = self._tasks.get(job_id)
        if not task or task.done():
            return False
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        # A task cancelled before its first step never reaches its own handler
        await self._fail(job_id, "Job was cancelled")
        return True

    async def shutdown(self) -> None:
        running = {job_id: task for job_id, task in self._tasks.items() if not task.done()}
        for task in running.values():
            task.cancel()
        if running:
            await asyncio.gather(*running.values(), return_exceptions=True)
            for job_id in running:
                await self._fail(job_id, "Job was cancelled")
            logger.info(f"Cancelled {len(running)} running job(s)")

    async def _supervise(self, job_id: str) -> None:
        try:
            if self.job_deadline:
                await asyncio.wait_for(self.process(job_id), timeout=self.job_deadline)
            else:
                await self.process(job_id)
        except JobAlreadyStartedError as e:
            # Someone else owns this job; leave its record alone
            logger.warning(f"[{job_id}] not started: {e}")
        except asyncio.TimeoutError:
            await self._fail(job_id, f"Job exceeded its deadline of {self.job_deadline:.0f}s")
        except asyncio.CancelledError:
            await self._fail(job_id, "Job was cancelled")
        except Exception as e:
            logger.exception(f"[{job_id}] unexpected error in job task")
            await self._fail(job_id, e)

    # ---------- processing ----------

    async def process(self, job_id: str) -> Job:
        """Run a Pending job end to end, starting from the data source."""
        job = await self._begin(job_id)
        return await self._execute(job)

    async def start(self, job_id: str, input_file_path: Union[str, Path]) -> Job:
        """Run a Pending job whose submission file already exists."""
        job = await self._begin(job_id, input_file_path=str(input_file_path))
        return await self._execute(job, str(input_file_path))

    async def _begin(self, job_id: str, **fields) -> Job:
        job = await self.store.require(job_id)
        if job.status != JobStatus.PENDING:
            raise JobAlreadyStartedError(f"Job {job_id} is already {job.status.value}")
        try:
            return await self.store.transition(job_id, JobStatus.PROCESSING, **fields)
        except InvalidTransitionError as e:
            raise JobAlreadyStartedError(str(e)) from e

    async def _execute(self, job: Job, input_path: Optional[str] = None) -> Job:
        job_id = job.id
        try:
            try:
                if input_path is None:
                    input_path = await self._prepare_input(job)
                if not self.files.exists(input_path):
                    raise SubmissionFileError(f"Submission file not found: {input_path}")
                result = await self.orchestrator.run_automation(job_id, input_path, job.email, job.format)
                reference = await self._hand_off(result.download_path, job_id)
            finally:
                self._cleanup(job_id, input_path)
        except Exception as e:
            return await self._fail(job_id, e)

        finished = await self.store.transition(
            job_id, JobStatus.COMPLETED, token=result.token, result_reference=reference
        )
        logger.info(f"[{job_id}] job completed")
        return finished

    async def _prepare_input(self, job: Job) -> str:
        if job.is_range:
            records = await self.data_source.fetch_records_by_range(job.start_date, job.end_date)
        else:
            records = await self.data_source.fetch_records_by_date(yesterday())

        if not records:
            raise NoRecordsError(NO_RECORDS_MESSAGE)

        await self.store.update(job.id, records_processed=len(records))
        logger.info(f"[{job.id}] {len(records)} records fetched")

        path = self.serializer(records, job.id, self.files)
        await self.store.update(job.id, input_file_path=str(path))
        logger.info(f"[{job.id}] submission file written")
        return str(path)

    async def _hand_off(self, download_path: str, job_id: str) -> str:
        try:
            return await self.storage.upload_artifact(download_path, job_id)
        except Exception as e:
            raise StorageError(f"Storage upload failed: {e}") from e

    async def _fail(self, job_id: str, error: Union[str, BaseException]) -> Optional[Job]:
        message = error if isinstance(error, str) else (str(error) or type(error).__name__)
        job = await self.store.get(job_id)
        if job is None or job.is_terminal:
            return job
        logger.error(f"[{job_id}] job failed: {message}")
        try:
            return await self.store.transition(job_id, JobStatus.FAILED, error=message)
        except InvalidTransitionError:
            return await self.store.get(job_id)

    def _cleanup(self, job_id: str, input_path: Optional[str]) -> None:
        """Delete the job's local files. Errors are logged, never raised."""
        candidates = {str(self.files.output_path(job_id)), str(self.files.download_path(job_id))}
        if input_path:
            candidates.add(str(input_path))

        for path in sorted(candidates):
            try:
                if self.files.delete_if_exists(path):
                    logger.info(f"[{job_id}] removed temporary file {path}")
            except OSError as e:
                logger.warning(f"[{job_id}] could not remove {path}: {e}")
