from __future__ import annotations
"""Assembly of the long-lived collaborators hung on ``app.state``."""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from plugin_console import __version__
from plugin_console.core.config import Settings
from plugin_console.db.json_store import JsonFileStore
from plugin_console.plugins.download import Downloader
from plugin_console.plugins.manager import PluginManager
from plugin_console.plugins.registry import PluginHistory, PluginRegistry
from plugin_console.sources.resolver import SourceResolver
from plugin_console.tasks.queue import JobQueue
from plugin_console.tasks.worker import JobWorker

_log = logging.getLogger(__name__)


@dataclass
class AppServices:
    settings: Optional[Settings]
    queue: JobQueue
    manager: PluginManager
    worker: JobWorker
    http_client: Optional[httpx.Client] = None

    def close(self) -> None:
        if self.http_client is not None:
            self.http_client.close()


def build_http_client(settings: Settings) -> httpx.Client:
    return httpx.Client(
        timeout=httpx.Timeout(settings.download_timeout, connect=min(30.0, settings.download_timeout)),
        follow_redirects=True,
        headers={'User-Agent': f"plugin-console/{__version__}"},
    )


def build_services(settings: Settings, client: Optional[httpx.Client] = None) -> AppServices:
    settings.ensure_dirs()
    http = client or build_http_client(settings)
    resolver = SourceResolver(http, github_token=settings.github_token, compatible_loaders=settings.compatible_loaders)
    manager = PluginManager(
        plugins_dir=settings.plugins_dir,
        registry=PluginRegistry(JsonFileStore(settings.plugins_json, {'plugins': []})),
        history=PluginHistory(JsonFileStore(settings.history_file, []), limit=settings.plugin_history_limit),
        resolver=resolver,
        downloader=Downloader(http, max_bytes=settings.max_download_bytes),
    )
    queue = JobQueue(
        JsonFileStore(settings.jobs_file, {'jobs': []}),
        history_limit=settings.job_history_limit,
        log_limit=settings.job_log_limit,
    )
    worker = JobWorker(queue, manager, poll_interval=settings.job_poll_interval)
    _log.debug(f"services built plugins_dir={settings.plugins_dir} registry={settings.plugins_json}")
    return AppServices(settings=settings, queue=queue, manager=manager, worker=worker, http_client=http)
