"""Central configuration.

Everything is driven by environment variables. A `config.env` file in the
working directory (or the path named by PLUGIN_CONSOLE_CONFIG_FILE) is loaded
first so operators can keep tokens out of compose files.

Env vars:
  PLUGIN_CONSOLE_DATA_DIR   - writable directory for jobs/history/attempt log (created)
  PLUGINS_DIR               - live plugin directory of the game server
  PLUGINS_JSON              - installed plugin registry file
  GITHUB_TOKEN              - optional token for the GitHub releases API
  JOB_POLL_INTERVAL         - worker poll interval in seconds
  JOB_HISTORY_LIMIT         - number of jobs retained in the jobs file
  JOB_LOG_LIMIT             - log lines retained per job
  PLUGIN_HISTORY_LIMIT      - history entries retained
  DOWNLOAD_TIMEOUT          - HTTP timeout (seconds) for origin API calls and downloads
  MAX_DOWNLOAD_BYTES        - hard cap on a downloaded artifact
  COMPATIBLE_LOADERS        - comma separated loaders accepted from package registries
  PLUGIN_CONSOLE_LOG_LEVEL  - DEBUG, INFO, WARNING, ERROR
"""
from __future__ import annotations
from functools import lru_cache
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv
from pydantic import BaseModel
import os
from plugin_console import __version__

DEFAULT_COMPATIBLE_LOADERS = ('paper', 'bukkit', 'spigot', 'purpur', 'folia')


def _load_env_file() -> None:
    candidates = []
    override = os.getenv('PLUGIN_CONSOLE_CONFIG_FILE')
    if override:
        candidates.append(Path(override))
    candidates.append(Path.cwd() / 'config.env')
    candidates.append(Path.cwd() / 'backend' / 'config.env')
    for p in candidates:
        if p.exists():
            load_dotenv(str(p))
            break


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        return default


class Settings(BaseModel):
    app_name: str = 'Plugin Console'
    api_v1_prefix: str = '/api/v1'
    version: str = __version__
    data_dir: Path
    plugins_dir: Path
    plugins_json: Path
    github_token: Optional[str] = None
    job_poll_interval: float = 2.0
    job_history_limit: int = 100
    job_log_limit: int = 500
    plugin_history_limit: int = 500
    download_timeout: float = 120.0
    max_download_bytes: int = 100 * 1024 * 1024
    compatible_loaders: list[str] = list(DEFAULT_COMPATIBLE_LOADERS)
    log_level: str = 'INFO'
    host: str = '0.0.0.0'
    port: int = 4160
    diagnostics: list[str] = []

    @property
    def jobs_file(self) -> Path:
        return self.data_dir / 'plugin-jobs.json'

    @property
    def history_file(self) -> Path:
        return self.data_dir / 'plugin-history.json'

    @property
    def install_log(self) -> Path:
        return self.data_dir / 'install-attempts.log'

    def ensure_dirs(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.plugins_dir.mkdir(parents=True, exist_ok=True)
        self.plugins_json.parent.mkdir(parents=True, exist_ok=True)


def load_settings() -> Settings:
    _load_env_file()
    diagnostics: list[str] = []

    env_data_dir = os.getenv('PLUGIN_CONSOLE_DATA_DIR')
    data_dir = Path(env_data_dir) if env_data_dir else Path.cwd() / 'data'
    diagnostics.append(f"data_dir={data_dir} source={'env' if env_data_dir else 'cwd'}")

    plugins_dir = Path(os.getenv('PLUGINS_DIR') or data_dir / 'plugins')
    plugins_json = Path(os.getenv('PLUGINS_JSON') or data_dir / 'plugins.json')
    diagnostics.append(f"plugins_dir={plugins_dir}")
    diagnostics.append(f"plugins_json={plugins_json}")

    loaders_raw = os.getenv('COMPATIBLE_LOADERS')
    loaders = [l.strip().lower() for l in loaders_raw.split(',') if l.strip()] if loaders_raw else list(DEFAULT_COMPATIBLE_LOADERS)

    token = (os.getenv('GITHUB_TOKEN') or '').strip() or None
    if token:
        diagnostics.append('github_token=set')

    return Settings(
        version=os.getenv('PLUGIN_CONSOLE_VERSION', __version__),
        data_dir=data_dir,
        plugins_dir=plugins_dir,
        plugins_json=plugins_json,
        github_token=token,
        job_poll_interval=_env_float('JOB_POLL_INTERVAL', 2.0),
        job_history_limit=_env_int('JOB_HISTORY_LIMIT', 100),
        job_log_limit=_env_int('JOB_LOG_LIMIT', 500),
        plugin_history_limit=_env_int('PLUGIN_HISTORY_LIMIT', 500),
        download_timeout=_env_float('DOWNLOAD_TIMEOUT', 120.0),
        max_download_bytes=_env_int('MAX_DOWNLOAD_BYTES', 100 * 1024 * 1024),
        compatible_loaders=loaders or list(DEFAULT_COMPATIBLE_LOADERS),
        log_level=os.getenv('PLUGIN_CONSOLE_LOG_LEVEL', 'INFO'),
        host=os.getenv('PLUGIN_CONSOLE_HOST', '0.0.0.0'),
        port=_env_int('PLUGIN_CONSOLE_PORT', 4160),
        diagnostics=diagnostics,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
