from __future__ import annotations
"""Install, update, uninstall, toggle and roll back plugins.

Files owned per plugin inside the plugins directory:

  <name>.jar          live artifact
  <name>.jar.backup   copy of the artifact that was live before the last overwrite
  <name>/             configuration directory (only removed on request)
  .staging-*.jar      in-flight download, never picked up by the server

Downloads land in a staging file in the same directory so the final step is
a single ``os.replace``. Metadata is validated before the live artifact, the
backup or the registry are touched.
"""
import logging
import os
import re
import secrets
import shutil
import time
from pathlib import Path
from typing import Any, Callable, Optional

from plugin_console.core.errors import (
    InvalidRequest,
    JobCancelled,
    ManualDownloadRequired,
    MultipleArtifacts,
    NoBackupAvailable,
    PluginConsoleError,
)
from plugin_console.core.logging_config import INSTALL_ATTEMPTS_LOGGER
from plugin_console.plugins.download import Downloader
from plugin_console.plugins.metadata import parse_plugin_file
from plugin_console.plugins.registry import (
    HistoryAction,
    HistoryOutcome,
    PluginHistory,
    PluginRecord,
    PluginRegistry,
    PluginSource,
    utc_now_iso,
)
from plugin_console.plugins.versions import compare_versions
from plugin_console.sources.models import (
    ArtifactChoices,
    ManualActionRequired,
    ResolvedArtifact,
    SourceKind,
)
from plugin_console.sources.resolver import SourceResolver

_log = logging.getLogger(__name__)
_attempts = logging.getLogger(INSTALL_ATTEMPTS_LOGGER)

Reporter = Callable[[str], None]
Checkpoint = Callable[[], None]

_NAME_RE = re.compile(r'^[A-Za-z0-9 _.+-]{1,128}$')

_SOURCE_BY_KIND = {
    SourceKind.direct: PluginSource.direct_url,
    SourceKind.github_latest: PluginSource.github,
    SourceKind.github_tag: PluginSource.github,
    SourceKind.modrinth: PluginSource.modrinth,
    SourceKind.manual: PluginSource.manual,
}


def _noop_report(_message: str) -> None:
    return None


def _noop_checkpoint() -> None:
    return None


def validate_plugin_name(name: Optional[str]) -> str:
    cleaned = (name or '').strip()
    if not cleaned or not _NAME_RE.match(cleaned) or cleaned.startswith('.'):
        raise InvalidRequest(f"Invalid plugin name: {name!r}")
    return cleaned


def _unlink_quietly(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False


class PluginManager:
    def __init__(
        self,
        plugins_dir: Path,
        registry: PluginRegistry,
        history: PluginHistory,
        resolver: SourceResolver,
        downloader: Downloader,
    ):
        self.plugins_dir = Path(plugins_dir)
        self.registry = registry
        self.history = history
        self.resolver = resolver
        self.downloader = downloader

    # --- paths ------------------------------------------------------------
    def artifact_path(self, name: str) -> Path:
        return self.plugins_dir / f"{name}.jar"

    def backup_path(self, name: str) -> Path:
        return self.plugins_dir / f"{name}.jar.backup"

    def config_dir(self, name: str) -> Path:
        return self.plugins_dir / name

    def _staging_path(self) -> Path:
        return self.plugins_dir / f".staging-{secrets.token_hex(6)}.jar"

    def _live_path_for(self, record: PluginRecord) -> Path:
        return self.plugins_dir / (record.filename or f"{record.name}.jar")

    # --- queries ----------------------------------------------------------
    def has_backup(self, name: str) -> bool:
        return self.backup_path(name).is_file()

    def list_plugins(self) -> list[dict]:
        out = []
        for rec in self.registry.list():
            item = rec.to_json()
            item['hasBackup'] = self.has_backup(rec.name)
            out.append(item)
        return out

    def get_history(self, limit: Optional[int] = None) -> list[dict]:
        return [e.to_json() for e in self.history.list(limit)]

    def preview(self, url: str) -> dict:
        return self.resolver.resolve(url).as_dict()

    def check_health(self) -> dict:
        checks: dict[str, dict[str, Any]] = {}
        try:
            count = len(self.registry.list())
            location = self.registry.location
            checks['registry'] = {'ok': True, 'plugins': count, 'path': str(location) if location else None}
        except (OSError, ValueError) as e:
            checks['registry'] = {'ok': False, 'error': str(e)}
        d = self.plugins_dir
        if not d.is_dir():
            checks['pluginsDir'] = {'ok': False, 'path': str(d), 'error': 'missing'}
        elif not os.access(d, os.W_OK):
            checks['pluginsDir'] = {'ok': False, 'path': str(d), 'error': 'not writable'}
        else:
            checks['pluginsDir'] = {'ok': True, 'path': str(d)}
        return checks

    # --- operations -------------------------------------------------------
    def install(self, url: str, custom_name: Optional[str] = None, *,
                report: Reporter = _noop_report, checkpoint: Checkpoint = _noop_checkpoint) -> dict:
        started = time.monotonic()
        _attempts.info('install started', extra={'attempt': {'event': 'started', 'url': url, 'customName': custom_name}})
        label = custom_name or url
        try:
            if custom_name is not None:
                custom_name = validate_plugin_name(custom_name)
            result = self._install(url, custom_name, report, checkpoint)
        except JobCancelled:
            _attempts.info('install cancelled', extra={'attempt': {
                'event': 'cancelled', 'url': url, 'durationMs': int((time.monotonic() - started) * 1000)}})
            raise
        except Exception as e:
            _attempts.info('install failed', extra={'attempt': {
                'event': 'failed', 'url': url, 'error': str(e), 'errorType': e.__class__.__name__,
                'durationMs': int((time.monotonic() - started) * 1000)}})
            self._record_failure(HistoryAction.installed, label, e)
            raise
        _attempts.info('install succeeded', extra={'attempt': {
            'event': 'success', 'url': url, 'pluginName': result['pluginName'], 'version': result['version'],
            'durationMs': int((time.monotonic() - started) * 1000)}})
        return result

    def _install(self, url: str, custom_name: Optional[str], report: Reporter, checkpoint: Checkpoint) -> dict:
        report(f"Resolving source: {url}")
        resolution = self.resolver.resolve(url)
        if isinstance(resolution, ManualActionRequired):
            raise ManualDownloadRequired(resolution.guidance, url=url)
        if isinstance(resolution, ArtifactChoices):
            report(f"Multiple JAR files found: {len(resolution.options)} options")
            raise MultipleArtifacts(
                'Multiple JAR files found. Pick one of the offered download URLs and submit it instead.',
                options=[o.url for o in resolution.options],
            )
        artifact: ResolvedArtifact = resolution

        checkpoint()
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        staging = self._staging_path()
        try:
            report(f"Downloading {artifact.filename}")
            size = self.downloader.fetch(artifact.download_url, staging, artifact.size, report)
            report(f"Downloaded {size} bytes")

            meta = parse_plugin_file(staging)
            report(f"Validated plugin.yml: {meta.name} {meta.version}")
            name = validate_plugin_name(custom_name or meta.name)

            existing = self.registry.get(name)
            if existing is None:
                relation = None
                report(f"Installing new plugin {name} {meta.version}")
            else:
                name = existing.name
                relation = compare_versions(meta.version, existing.version)
                report(f"Plugin already exists: {name} ({existing.version}), new version {meta.version} ({relation.value})")

            checkpoint()
            live = self.artifact_path(name)
            previous_file = self._live_path_for(existing) if existing else live
            backup_created = False
            if previous_file.is_file():
                shutil.copy2(previous_file, self.backup_path(name))
                backup_created = True
                report(f"Backed up {previous_file.name} to {self.backup_path(name).name}")
            os.replace(staging, live)
            if previous_file != live:
                _unlink_quietly(previous_file)
            report(f"Installed {live.name}")
        finally:
            _unlink_quietly(staging)

        now = utc_now_iso()
        record = PluginRecord(
            name=name,
            version=meta.version,
            source=_SOURCE_BY_KIND.get(artifact.kind, PluginSource.manual),
            enabled=existing.enabled if existing else True,
            category=existing.category if existing else 'custom',
            description=meta.description or (existing.description if existing else ''),
            installed_at=existing.installed_at if existing and existing.installed_at else now,
            updated_at=now,
            origin_url=url,
            project_id=artifact.project_id,
            filename=live.name,
            backup_version=existing.version if existing and backup_created else (existing.backup_version if existing else None),
        )
        self.registry.upsert(record)

        action = HistoryAction.installed if relation is None else HistoryAction(relation.value)
        self.history.record(
            action, name,
            from_version=existing.version if existing else None,
            to_version=meta.version,
            details=url,
        )
        _log.info(f"plugin {action.value} name={name} version={meta.version} backup={backup_created}")
        return {
            'pluginName': name,
            'version': meta.version,
            'action': action.value,
            'previousVersion': existing.version if existing else None,
            'backupCreated': backup_created,
            'filename': live.name,
        }

    def update(self, name: str, url: Optional[str] = None, *,
               report: Reporter = _noop_report, checkpoint: Checkpoint = _noop_checkpoint) -> dict:
        name = validate_plugin_name(name)
        rec = self.registry.require(name)
        source_url = (url or '').strip() or rec.origin_url
        if not source_url:
            raise InvalidRequest(f"No update source known for {rec.name}; supply a URL")
        report(f"Updating plugin: {rec.name}")
        report(f"Update source: {source_url}")
        result = self.install(source_url, rec.name, report=report, checkpoint=checkpoint)
        report(f"Updated to version: {result['version']}")
        return result

    def uninstall(self, name: str, delete_configs: bool = False, *, report: Reporter = _noop_report) -> dict:
        name = validate_plugin_name(name)
        rec = self.registry.require(name)
        try:
            report(f"Uninstalling plugin: {rec.name}")
            removed = []
            for path in {self._live_path_for(rec), self.artifact_path(rec.name), self.backup_path(rec.name)}:
                if _unlink_quietly(path):
                    removed.append(path.name)
            configs_deleted = False
            if delete_configs:
                cfg = self.config_dir(rec.name)
                if cfg.is_dir():
                    report('Deleting plugin configuration')
                    shutil.rmtree(cfg)
                    configs_deleted = True
            self.registry.remove(rec.name)
        except Exception as e:
            self._record_failure(HistoryAction.uninstalled, rec.name, e, from_version=rec.version)
            raise
        self.history.record(HistoryAction.uninstalled, rec.name, from_version=rec.version)
        report('Plugin uninstalled successfully')
        _log.info(f"plugin uninstalled name={rec.name} removed={sorted(removed)} configs_deleted={configs_deleted}")
        return {'pluginName': rec.name, 'version': rec.version, 'action': 'uninstalled',
                'removedFiles': sorted(removed), 'configsDeleted': configs_deleted}

    def toggle(self, name: str, enabled: bool, *, report: Reporter = _noop_report) -> dict:
        name = validate_plugin_name(name)
        current = self.registry.require(name)
        action = HistoryAction.enabled if enabled else HistoryAction.disabled
        report(f"{'Enabling' if enabled else 'Disabling'} plugin: {current.name}")
        try:
            rec = self.registry.set_enabled(current.name, enabled)
        except Exception as e:
            self._record_failure(action, current.name, e, from_version=current.version)
            raise
        self.history.record(action, rec.name, from_version=rec.version, to_version=rec.version)
        report(f"Plugin {action.value} successfully")
        return {'pluginName': rec.name, 'version': rec.version, 'enabled': rec.enabled, 'action': action.value}

    def rollback(self, name: str, *, report: Reporter = _noop_report) -> dict:
        name = validate_plugin_name(name)
        rec = self.registry.require(name)
        if not self.has_backup(rec.name):
            raise NoBackupAvailable(f"No backup available for {rec.name}")
        staging = self._staging_path()
        try:
            backup = self.backup_path(rec.name)
            meta = parse_plugin_file(backup)
            report(f"Rolling back {rec.name} {rec.version} -> {meta.version}")
            shutil.copy2(backup, staging)
            live = self.artifact_path(rec.name)
            os.replace(staging, live)
            if self._live_path_for(rec) != live:
                _unlink_quietly(self._live_path_for(rec))

            def restore(r: PluginRecord) -> PluginRecord:
                return r.model_copy(update={
                    'version': meta.version,
                    'filename': live.name,
                    'backup_version': meta.version,
                    'updated_at': utc_now_iso(),
                })
            self.registry.update(rec.name, restore)
        except Exception as e:
            self._record_failure(HistoryAction.rolledback, rec.name, e, from_version=rec.version)
            raise
        finally:
            _unlink_quietly(staging)
        self.history.record(HistoryAction.rolledback, rec.name, from_version=rec.version, to_version=meta.version)
        _log.info(f"plugin rolled back name={rec.name} {rec.version} -> {meta.version}")
        return {'pluginName': rec.name, 'version': meta.version, 'previousVersion': rec.version, 'action': 'rolledback'}

    def _record_failure(self, action: HistoryAction, plugin_name: str, error: Exception,
                        from_version: Optional[str] = None) -> None:
        message = error.message if isinstance(error, PluginConsoleError) else str(error)
        try:
            self.history.record(action, plugin_name, from_version=from_version,
                                outcome=HistoryOutcome.failed, details=message)
        except PluginConsoleError as e:
            _log.error(f"could not record failed {action.value} of {plugin_name}: {e}")
