"""HTTP-level tests for the /api/v1/plugins router."""

import time

import pytest
from fastapi.testclient import TestClient

from plugin_console.main import create_app
from plugin_console.services import build_services
from tests.plugin_jars import build_jar

URL = 'https://cdn.example.org/plugin-1.0.0.jar'


@pytest.fixture
def idle_client(settings, origin):
    """App whose worker never gets around to a second poll, so queued jobs stay queued."""
    settings.job_poll_interval = 3600
    svc = build_services(settings, client=origin.client())
    with TestClient(create_app(svc)) as c:
        yield c
    svc.close()


def _wait_for(client, job_id, statuses=('completed', 'failed', 'cancelled'), timeout=10.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        job = client.get(f'/api/v1/plugins/jobs/{job_id}').json()['job']
        if job['status'] in statuses:
            return job
        time.sleep(0.02)
    raise AssertionError(f'job {job_id} did not finish')


class TestJobsApi:

    @pytest.mark.timeout(30)
    def test_submit_and_complete_install(self, client, origin):
        origin.file(URL, build_jar('TestPlugin', '1.0.0'))
        r = client.post('/api/v1/plugins/job', json={'action': 'install', 'url': URL})
        assert r.status_code == 201, r.text
        job = r.json()['job']
        assert job['status'] in ('queued', 'running', 'completed')

        done = _wait_for(client, job['id'])
        assert done['status'] == 'completed', done
        assert done['result']['version'] == '1.0.0'

        plugins = client.get('/api/v1/plugins/list').json()['plugins']
        assert [(p['name'], p['version'], p['hasBackup']) for p in plugins] == [('TestPlugin', '1.0.0', False)]
        history = client.get('/api/v1/plugins/history').json()['history']
        assert history[0]['action'] == 'installed'
        assert history[0]['pluginName'] == 'TestPlugin'

    @pytest.mark.timeout(30)
    def test_failed_job_keeps_its_log(self, client, origin):
        origin.file(URL, b'not a jar')
        job = client.post('/api/v1/plugins/job', json={'action': 'install', 'url': URL}).json()['job']
        done = _wait_for(client, job['id'])
        assert done['status'] == 'failed'
        assert done['error'].startswith('Invalid plugin file')
        assert done['logs'][-1]['message'].startswith('Failed: ')

    @pytest.mark.parametrize('body', [
        {'action': 'install'},
        {'action': 'uninstall'},
        {'action': 'reboot', 'name': 'x'},
        {'name': 'x'},
    ])
    def test_submit_validation(self, idle_client, body):
        r = idle_client.post('/api/v1/plugins/job', json=body)
        assert r.status_code == 400
        assert r.json()['code'] == 'INVALID_REQUEST'

    def test_list_and_cancel(self, idle_client):
        a = idle_client.post('/api/v1/plugins/job', json={'action': 'enable', 'name': 'A'}).json()['job']
        b = idle_client.post('/api/v1/plugins/job', json={'action': 'disable', 'name': 'B'}).json()['job']

        body = idle_client.get('/api/v1/plugins/jobs').json()
        assert [j['id'] for j in body['jobs']] == [b['id'], a['id']]
        assert body['currentJobId'] is None

        r = idle_client.put(f"/api/v1/plugins/job/{a['id']}/cancel")
        assert r.status_code == 200
        assert r.json()['job']['status'] == 'cancelled'
        again = idle_client.put(f"/api/v1/plugins/job/{a['id']}/cancel")
        assert again.status_code == 409
        assert again.json()['code'] == 'INVALID_TRANSITION'

        queued = idle_client.get('/api/v1/plugins/jobs', params={'status': 'queued'}).json()['jobs']
        assert [j['id'] for j in queued] == [b['id']]
        assert idle_client.get('/api/v1/plugins/jobs', params={'status': 'bogus'}).status_code == 400

    def test_unknown_job(self, idle_client):
        assert idle_client.get('/api/v1/plugins/jobs/job-0000000000000000-00000000').status_code == 404
        assert idle_client.put('/api/v1/plugins/job/job-0000000000000000-00000000/cancel').status_code == 404


class TestSynchronousEndpoints:

    def test_parse_url_preview(self, idle_client):
        r = idle_client.post('/api/v1/plugins/parse-url', json={'url': URL})
        assert r.status_code == 200
        assert r.json() == {
            'status': 'resolved', 'type': 'direct', 'downloadUrl': URL, 'filename': 'plugin-1.0.0.jar',
            'size': None, 'version': None, 'projectId': None,
        }
        manual = idle_client.post('/api/v1/plugins/parse-url', json={'url': 'https://dev.bukkit.org/projects/x'}).json()
        assert manual['status'] == 'manual'
        bad = idle_client.post('/api/v1/plugins/parse-url', json={'url': 'https://example.org/'})
        assert bad.status_code == 400
        assert bad.json()['code'] == 'UNRECOGNIZED_SOURCE'

    def test_rate_limit_maps_to_429(self, idle_client, origin):
        origin.status('https://api.github.com/repos/a/b/releases/latest', 429, headers={'retry-after': '30'})
        r = idle_client.post('/api/v1/plugins/parse-url', json={'url': 'https://github.com/a/b/releases/latest'})
        assert r.status_code == 429
        assert r.headers['retry-after'] == '30'

    def test_rollback(self, idle_client, origin):
        manager = idle_client.app.state.services.manager
        v2_url = 'https://cdn.example.org/plugin-2.0.0.jar'
        origin.file(URL, build_jar('TestPlugin', '1.0.0')).file(v2_url, build_jar('TestPlugin', '2.0.0'))
        manager.install(URL)

        no_backup = idle_client.post('/api/v1/plugins/rollback', json={'name': 'TestPlugin'})
        assert no_backup.status_code == 409
        assert no_backup.json()['code'] == 'NO_BACKUP_AVAILABLE'

        manager.install(v2_url)
        r = idle_client.post('/api/v1/plugins/rollback', json={'name': 'TestPlugin'})
        assert r.status_code == 200, r.text
        assert r.json()['version'] == '1.0.0'
        assert idle_client.get('/api/v1/plugins/list').json()['plugins'][0]['version'] == '1.0.0'
        assert idle_client.post('/api/v1/plugins/rollback', json={'name': 'Missing'}).status_code == 404

    def test_rollback_over_damaged_backup(self, idle_client, origin):
        manager = idle_client.app.state.services.manager
        v2_url = 'https://cdn.example.org/plugin-2.0.0.jar'
        origin.file(URL, build_jar('TestPlugin', '1.0.0')).file(v2_url, build_jar('TestPlugin', '2.0.0'))
        manager.install(URL)
        manager.install(v2_url)
        manager.backup_path('TestPlugin').write_bytes(b'PK\x03\x04 truncated')
        r = idle_client.post('/api/v1/plugins/rollback', json={'name': 'TestPlugin'})
        assert r.status_code == 422
        assert r.json()['code'] == 'INVALID_ARCHIVE'

    def test_health(self, idle_client):
        r = idle_client.get('/api/v1/plugins/health')
        assert r.status_code == 200
        body = r.json()
        assert body['status'] == 'healthy'
        assert set(body['checks']) == {'registry', 'pluginsDir', 'worker'}
