"""Tests for the persisted job queue and its lifecycle rules."""

import re

import pytest
from hypothesis import given, settings as hyp_settings, strategies as st

from plugin_console.core.errors import InvalidRequest, InvalidTransition, NotFound
from plugin_console.db.json_store import JsonFileStore, MemoryStore
from plugin_console.tasks.models import JobAction, JobStatus, JobTarget
from plugin_console.tasks.queue import JobQueue

_ID_RE = re.compile(r'^job-\d{16}-[0-9a-f]{8}$')


def _install(queue, url='https://example.org/a.jar'):
    return queue.enqueue(JobAction.install, {'url': url})


class TestEnqueue:

    def test_new_job_shape(self, queue):
        job = queue.enqueue('uninstall', {'name': 'Foo', 'options': {'deleteConfigs': True}})
        assert _ID_RE.match(job.id)
        assert job.status == JobStatus.queued
        assert job.target.options.delete_configs is True
        assert job.started_at is None and job.completed_at is None
        data = job.to_json()
        assert data['createdAt'] and data['target']['options']['deleteConfigs'] is True

    def test_ids_strictly_increase(self, queue):
        ids = [_install(queue).id for _ in range(20)]
        stamps = [int(i.split('-')[1]) for i in ids]
        assert stamps == sorted(stamps)
        assert len(set(stamps)) == len(stamps)

    @pytest.mark.parametrize('action, target', [
        ('install', {}),
        ('install', {'url': '   '}),
        ('uninstall', {'url': 'https://x/y.jar'}),
        ('update', {}),
        ('enable', {'name': ''}),
    ])
    def test_required_fields(self, queue, action, target):
        with pytest.raises(InvalidRequest):
            queue.enqueue(action, target)
        assert queue.list() == []

    def test_unknown_action(self, queue):
        with pytest.raises(ValueError):
            queue.enqueue('explode', {'name': 'x'})


class TestLifecycle:

    def test_happy_path(self, queue):
        job = _install(queue)
        running = queue.mark_running(job.id)
        assert running.status == JobStatus.running and running.started_at
        queue.append_log(job.id, 'step one')
        done = queue.mark_completed(job.id, {'version': '1.0.0'})
        assert done.status == JobStatus.completed
        assert done.result == {'version': '1.0.0'}
        assert done.completed_at
        assert [l.message for l in done.logs] == ['step one']

    def test_terminal_jobs_are_frozen(self, queue):
        job = _install(queue)
        queue.mark_running(job.id)
        queue.mark_failed(job.id, 'boom')
        before = queue.get(job.id)
        for op in (lambda: queue.mark_running(job.id),
                   lambda: queue.mark_completed(job.id, {}),
                   lambda: queue.cancel(job.id),
                   lambda: queue.append_log(job.id, 'late')):
            with pytest.raises(InvalidTransition):
                op()
        assert queue.get(job.id) == before

    def test_queued_cannot_complete_directly(self, queue):
        job = _install(queue)
        with pytest.raises(InvalidTransition):
            queue.mark_completed(job.id, {})

    def test_cancel_queued(self, queue):
        job = _install(queue)
        cancelled = queue.cancel(job.id)
        assert cancelled.status == JobStatus.cancelled
        assert cancelled.error == 'Job cancelled by user'
        assert cancelled.logs[-1].message == 'Job cancelled by user request'
        assert queue.is_cancelled(job.id)
        assert queue.next_queued() is None

    def test_cancel_running(self, queue):
        job = _install(queue)
        queue.mark_running(job.id)
        assert queue.cancel(job.id).status == JobStatus.cancelled
        with pytest.raises(InvalidTransition):
            queue.mark_completed(job.id, {})

    def test_unknown_job(self, queue):
        with pytest.raises(NotFound):
            queue.get('job-0000000000000000-deadbeef')
        with pytest.raises(NotFound):
            queue.cancel('job-0000000000000000-deadbeef')

    def test_log_cap(self):
        queue = JobQueue(MemoryStore({'jobs': []}), log_limit=3)
        job = _install(queue)
        queue.mark_running(job.id)
        for i in range(5):
            queue.append_log(job.id, f'line {i}')
        assert [l.message for l in queue.get(job.id).logs] == ['line 2', 'line 3', 'line 4']


class TestListingAndRetention:

    def test_list_newest_first_with_filters(self, queue):
        a, b, c = _install(queue), _install(queue), _install(queue)
        queue.cancel(b.id)
        assert [j.id for j in queue.list()] == [c.id, b.id, a.id]
        assert [j.id for j in queue.list(status='queued')] == [c.id, a.id]
        assert [j.id for j in queue.list(limit=1)] == [c.id]

    def test_prunes_only_terminal_jobs(self):
        queue = JobQueue(MemoryStore({'jobs': []}), history_limit=3)
        first = _install(queue)
        second = _install(queue)
        queue.cancel(second.id)
        third = _install(queue)
        fourth = _install(queue)
        ids = {j.id for j in queue.list()}
        assert second.id not in ids
        assert {first.id, third.id, fourth.id} == ids
        fifth = _install(queue)
        assert len(queue.list()) == 4
        assert fifth.id in {j.id for j in queue.list()}


class TestRestartRecovery:

    def test_running_jobs_fail_and_nothing_is_lost(self, tmp_path):
        store = JsonFileStore(tmp_path / 'plugin-jobs.json', {'jobs': []})
        queue = JobQueue(store)
        running = _install(queue)
        waiting = _install(queue)
        queue.mark_running(running.id)

        reopened = JobQueue(JsonFileStore(tmp_path / 'plugin-jobs.json', {'jobs': []}))
        recovered = reopened.get(running.id)
        assert recovered.status == JobStatus.failed
        assert recovered.error == 'interrupted by restart'
        assert recovered.logs[-1].message == 'Job interrupted by restart'
        assert reopened.get(waiting.id).status == JobStatus.queued
        assert reopened.next_queued().id == waiting.id

    def test_new_ids_sort_after_replayed_ones(self, tmp_path):
        path = tmp_path / 'plugin-jobs.json'
        future = 'job-4000000000000000-00000000'
        JsonFileStore(path, {}).save({'jobs': [{
            'id': future, 'action': 'enable', 'target': {'name': 'X'}, 'status': 'completed',
            'createdAt': '2096-10-02T07:06:40.000000Z',
        }]})
        queue = JobQueue(JsonFileStore(path, {'jobs': []}))
        job = queue.enqueue('disable', {'name': 'X'})
        assert job.id > future


class TestFifoProperty:

    @hyp_settings(max_examples=30, deadline=None)
    @given(st.lists(st.sampled_from(['cancel', 'keep']), min_size=1, max_size=12))
    def test_next_queued_is_oldest_remaining(self, plan):
        queue = JobQueue(MemoryStore({'jobs': []}))
        jobs = [queue.enqueue(JobAction.enable, JobTarget(name=f'p{i}')) for i in range(len(plan))]
        for job, what in zip(jobs, plan):
            if what == 'cancel':
                queue.cancel(job.id)
        order = []
        while (nxt := queue.next_queued()) is not None:
            order.append(nxt.id)
            queue.mark_running(nxt.id)
            queue.mark_completed(nxt.id, {})
        assert order == [j.id for j, what in zip(jobs, plan) if what == 'keep']
