from __future__ import annotations
"""Persisted plugin job queue.

The whole job collection lives in one JSON document (``{"jobs": [...]}``).
Every mutation is one locked load-modify-save cycle through the store, so a
cancellation issued by an API request and a status change made by the worker
thread can never overwrite each other.
"""
import logging
import secrets
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from plugin_console.core.errors import InvalidTransition, NotFound
from plugin_console.db.json_store import DocumentStore
from plugin_console.tasks.models import (
    ALLOWED_TRANSITIONS,
    CANCEL_ERROR,
    CANCEL_LOG,
    RESTART_ERROR,
    TERMINAL_STATUSES,
    Job,
    JobAction,
    JobStatus,
    JobTarget,
    LogEntry,
)

_log = logging.getLogger(__name__)


def _iso_from_micros(stamp: int) -> str:
    dt = datetime.fromtimestamp(stamp / 1_000_000, tz=timezone.utc)
    return dt.isoformat(timespec='microseconds').replace('+00:00', 'Z')


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec='microseconds').replace('+00:00', 'Z')


def _stamp_of(job_id: str) -> int:
    parts = job_id.split('-')
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return 0


def _jobs_of(doc: Any) -> list[dict]:
    if not isinstance(doc, dict):
        raise ValueError('jobs document must be an object')
    jobs = doc.setdefault('jobs', [])
    if not isinstance(jobs, list):
        doc['jobs'] = jobs = []
    return jobs


def _order_key(job: Job) -> tuple[str, str]:
    return (job.created_at, job.id)


class JobQueue:
    def __init__(self, store: DocumentStore, history_limit: int = 100, log_limit: int = 500):
        self._store = store
        self._history_limit = max(1, int(history_limit))
        self._log_limit = max(1, int(log_limit))
        self._stamp_lock = threading.Lock()
        self._last_stamp = max((_stamp_of(j.id) for j in self._all()), default=0)
        self._recover_interrupted()

    # --- internals --------------------------------------------------------
    def _all(self) -> list[Job]:
        doc = self._store.load()
        out: list[Job] = []
        for raw in (doc.get('jobs') or []) if isinstance(doc, dict) else []:
            try:
                out.append(Job.model_validate(raw))
            except ValueError as e:
                _log.warning(f"skipping malformed job entry: {e}")
        return out

    def _next_stamp(self) -> int:
        with self._stamp_lock:
            stamp = max(time.time_ns() // 1000, self._last_stamp + 1)
            self._last_stamp = stamp
            return stamp

    def _log_entry(self, message: str) -> dict:
        return LogEntry(timestamp=_now_iso(), message=message).model_dump(by_alias=True)

    def _append_raw_log(self, raw: dict, message: str) -> None:
        logs = raw.setdefault('logs', [])
        logs.append(self._log_entry(message))
        overflow = len(logs) - self._log_limit
        if overflow > 0:
            del logs[:overflow]

    def _edit(self, job_id: str, fn: Callable[[Job, dict], None]) -> Job:
        """Run ``fn`` against the stored job inside one read-modify-write cycle."""
        def apply(doc: Any) -> Job:
            for i, raw in enumerate(_jobs_of(doc)):
                if isinstance(raw, dict) and raw.get('id') == job_id:
                    job = Job.model_validate(raw)
                    fn(job, raw)
                    updated = Job.model_validate(raw)
                    doc['jobs'][i] = updated.to_json()
                    return updated
            raise NotFound(f"Job {job_id} not found")
        return self._store.mutate(apply)

    def _transition(self, job_id: str, target: JobStatus, **fields: Any) -> Callable[[Job, dict], None]:
        def fn(job: Job, raw: dict) -> None:
            if target not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidTransition(
                    f"Job {job_id} cannot move from {job.status.value} to {target.value}",
                    status=job.status.value,
                )
            raw['status'] = target.value
            raw.update(fields)
        return fn

    def _recover_interrupted(self) -> None:
        if not any(j.status == JobStatus.running for j in self._all()):
            return

        def apply(doc: Any) -> int:
            n = 0
            for raw in _jobs_of(doc):
                if isinstance(raw, dict) and raw.get('status') == JobStatus.running.value:
                    raw['status'] = JobStatus.failed.value
                    raw['error'] = RESTART_ERROR
                    raw['completedAt'] = _now_iso()
                    self._append_raw_log(raw, 'Job interrupted by restart')
                    n += 1
            return n

        recovered = self._store.mutate(apply)
        _log.warning(f"marked {recovered} interrupted job(s) as failed")

    # --- public api -------------------------------------------------------
    def enqueue(self, action: JobAction | str, target: JobTarget | dict) -> Job:
        action = JobAction(action)
        if not isinstance(target, JobTarget):
            target = JobTarget.model_validate(target or {})
        target = target.require_for(action)

        def apply(doc: Any) -> Job:
            jobs = _jobs_of(doc)
            stamp = self._next_stamp()
            job = Job(
                id=f"job-{stamp:016d}-{secrets.token_hex(4)}",
                action=action,
                target=target,
                created_at=_iso_from_micros(stamp),
            )
            jobs.append(job.to_json())
            self._prune(jobs)
            return job

        job = self._store.mutate(apply)
        _log.info(f"created job {job.id}: {job.summary()}")
        return job

    def _prune(self, jobs: list[dict]) -> None:
        overflow = len(jobs) - self._history_limit
        if overflow <= 0:
            return
        terminal = sorted(
            (raw for raw in jobs if raw.get('status') in {s.value for s in TERMINAL_STATUSES}),
            key=lambda raw: (str(raw.get('createdAt') or ''), str(raw.get('id') or '')),
        )
        drop = {id(raw) for raw in terminal[:overflow]}
        if drop:
            jobs[:] = [raw for raw in jobs if id(raw) not in drop]
            _log.debug(f"pruned {len(drop)} old job(s)")

    def list(self, limit: Optional[int] = None, status: JobStatus | str | None = None) -> list[Job]:
        jobs = self._all()
        if status:
            wanted = JobStatus(status)
            jobs = [j for j in jobs if j.status == wanted]
        jobs.sort(key=_order_key, reverse=True)
        if limit is not None:
            jobs = jobs[:max(0, limit)]
        return jobs

    def get(self, job_id: str) -> Job:
        job = next((j for j in self._all() if j.id == job_id), None)
        if job is None:
            raise NotFound(f"Job {job_id} not found")
        return job

    def next_queued(self) -> Optional[Job]:
        queued = [j for j in self._all() if j.status == JobStatus.queued]
        return min(queued, key=_order_key) if queued else None

    def mark_running(self, job_id: str) -> Job:
        return self._edit(job_id, self._transition(job_id, JobStatus.running, startedAt=_now_iso()))

    def mark_completed(self, job_id: str, result: Optional[dict] = None) -> Job:
        return self._edit(job_id, self._transition(
            job_id, JobStatus.completed, result=result, error=None, completedAt=_now_iso()))

    def mark_failed(self, job_id: str, error: str) -> Job:
        return self._edit(job_id, self._transition(
            job_id, JobStatus.failed, error=error, result=None, completedAt=_now_iso()))

    def mark_cancelled(self, job_id: str) -> Job:
        return self._edit(job_id, self._transition(
            job_id, JobStatus.cancelled, error=CANCEL_ERROR, completedAt=_now_iso()))

    def append_log(self, job_id: str, message: str) -> Job:
        def fn(job: Job, raw: dict) -> None:
            if job.is_terminal:
                raise InvalidTransition(f"Job {job_id} is {job.status.value}; log is closed", status=job.status.value)
            self._append_raw_log(raw, message)
        return self._edit(job_id, fn)

    def cancel(self, job_id: str) -> Job:
        transition = self._transition(job_id, JobStatus.cancelled, error=CANCEL_ERROR, completedAt=_now_iso())

        def fn(job: Job, raw: dict) -> None:
            transition(job, raw)
            self._append_raw_log(raw, CANCEL_LOG)

        job = self._edit(job_id, fn)
        _log.info(f"cancelled job {job_id}")
        return job

    def is_cancelled(self, job_id: str) -> bool:
        return self.get(job_id).status == JobStatus.cancelled
