import sys
import pathlib
import pytest
from fastapi.testclient import TestClient

# Ensure backend root (containing the 'plugin_console' package) is on sys.path
BACKEND_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from plugin_console.core.config import Settings
from plugin_console.db.json_store import JsonFileStore, MemoryStore
from plugin_console.plugins.download import Downloader
from plugin_console.plugins.manager import PluginManager
from plugin_console.plugins.registry import PluginHistory, PluginRegistry
from plugin_console.services import build_services
from plugin_console.sources.resolver import SourceResolver
from plugin_console.tasks.queue import JobQueue
from tests.plugin_jars import FakeOrigin


@pytest.fixture
def origin():
    return FakeOrigin()


@pytest.fixture
def settings(tmp_path):
    data_dir = tmp_path / 'data'
    return Settings(
        data_dir=data_dir,
        plugins_dir=tmp_path / 'plugins',
        plugins_json=tmp_path / 'plugins.json',
        job_poll_interval=0.01,
    )


@pytest.fixture
def plugins_dir(settings):
    settings.plugins_dir.mkdir(parents=True, exist_ok=True)
    return settings.plugins_dir


@pytest.fixture
def manager(settings, plugins_dir, origin):
    client = origin.client()
    mgr = PluginManager(
        plugins_dir=plugins_dir,
        registry=PluginRegistry(JsonFileStore(settings.plugins_json, {'plugins': []})),
        history=PluginHistory(JsonFileStore(settings.history_file, []), limit=settings.plugin_history_limit),
        resolver=SourceResolver(client),
        downloader=Downloader(client, max_bytes=settings.max_download_bytes),
    )
    yield mgr
    client.close()


@pytest.fixture
def queue():
    return JobQueue(MemoryStore({'jobs': []}))


@pytest.fixture
def services(settings, origin):
    svc = build_services(settings, client=origin.client())
    yield svc
    svc.close()


@pytest.fixture
def client(services):
    from plugin_console.main import create_app
    with TestClient(create_app(services)) as c:
        yield c

