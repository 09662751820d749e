from __future__ import annotations
import asyncio
import logging
from typing import Any, Optional

from plugin_console.core.errors import InvalidTransition, JobCancelled, NotFound, PluginConsoleError
from plugin_console.plugins.manager import PluginManager
from plugin_console.tasks.models import Job, JobAction
from plugin_console.tasks.queue import JobQueue

_log = logging.getLogger(__name__)


class JobWorker:
    """Single consumer of the job queue.

    The loop is an asyncio task; each job runs on a worker thread through
    ``asyncio.to_thread`` so API requests keep being served while a download
    is in progress. Cancellation is cooperative: the manager calls the
    checkpoint callback, which re-reads the persisted job status.
    """

    def __init__(self, queue: JobQueue, manager: PluginManager, poll_interval: float = 2.0):
        self.queue = queue
        self.manager = manager
        self.poll_interval = poll_interval
        self._task: Optional[asyncio.Task] = None
        self._current_job_id: Optional[str] = None

    @property
    def current_job_id(self) -> Optional[str]:
        return self._current_job_id

    @property
    def is_processing(self) -> bool:
        return self._current_job_id is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.is_running:
            _log.debug('worker already running')
            return
        _log.info(f"starting job worker poll_interval={self.poll_interval}s")
        self._task = asyncio.create_task(self._main_loop(), name='plugin-job-worker')

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        _log.info('job worker stopped')

    async def _main_loop(self) -> None:
        while True:
            try:
                handled = await self.process_next_job()
            except Exception as e:  # keep polling after store errors
                _log.exception(f"worker tick failed: {e}")
                handled = False
            if not handled:
                await asyncio.sleep(self.poll_interval)

    async def process_next_job(self) -> bool:
        """Run the oldest queued job, if any. Returns True when a job was picked up."""
        job = self.queue.next_queued()
        if job is None:
            return False
        try:
            job = self.queue.mark_running(job.id)
        except InvalidTransition:
            # cancelled between the read and the claim
            return True
        self._current_job_id = job.id
        _log.info(f"processing job {job.id}: {job.summary()}")
        try:
            self._job_log(job.id, f"Started {job.action.value} operation")
            result = await asyncio.to_thread(self._execute, job)
        except JobCancelled:
            _log.info(f"job {job.id} cancelled while running")
        except Exception as e:
            message = e.message if isinstance(e, PluginConsoleError) else str(e) or e.__class__.__name__
            if not isinstance(e, PluginConsoleError):
                _log.exception(f"job {job.id} crashed")
            self._finish(job.id, failed=message)
        else:
            self._finish(job.id, result=result)
        finally:
            self._current_job_id = None
        return True

    # --- execution (worker thread) ----------------------------------------
    def _execute(self, job: Job) -> dict[str, Any]:
        target = job.target

        def report(message: str) -> None:
            self._job_log(job.id, message)

        def checkpoint() -> None:
            if self.queue.is_cancelled(job.id):
                raise JobCancelled(f"Job {job.id} was cancelled")

        if job.action == JobAction.install:
            report(f"Installing plugin from: {target.url}")
            return self.manager.install(target.url, target.custom_name, report=report, checkpoint=checkpoint)
        if job.action == JobAction.update:
            return self.manager.update(target.name, target.url, report=report, checkpoint=checkpoint)
        if job.action == JobAction.uninstall:
            return self.manager.uninstall(target.name, target.options.delete_configs, report=report)
        if job.action in (JobAction.enable, JobAction.disable):
            return self.manager.toggle(target.name, job.action == JobAction.enable, report=report)
        raise ValueError(f"Unknown action: {job.action}")

    def _job_log(self, job_id: str, message: str) -> None:
        try:
            self.queue.append_log(job_id, message)
        except InvalidTransition:
            # job went terminal (cancelled) under us; the step keeps going
            _log.debug(f"dropped log line for finished job {job_id}: {message}")

    def _finish(self, job_id: str, result: Optional[dict] = None, failed: Optional[str] = None) -> None:
        try:
            if failed is not None:
                self._job_log(job_id, f"Failed: {failed}")
                self.queue.mark_failed(job_id, failed)
                _log.warning(f"job {job_id} failed: {failed}")
            else:
                self._job_log(job_id, 'Completed successfully')
                self.queue.mark_completed(job_id, result)
                _log.info(f"job {job_id} completed")
        except (InvalidTransition, NotFound) as e:
            _log.info(f"job {job_id} not finalised: {e}")
