from __future__ import annotations

import json
import logging
from pathlib import Path

INSTALL_ATTEMPTS_LOGGER = 'plugin_console.install_attempts'

_NOISY_LOGGERS: tuple[str, ...] = (
    "httpx",
    "httpcore",
    "httpcore.http11",
    "httpcore.connection",
    "uvicorn.access",
)


class _JsonLineFormatter(logging.Formatter):
    """Render install attempt records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - logging hook
        payload = {'timestamp': self.formatTime(record, '%Y-%m-%dT%H:%M:%S')}
        attempt = getattr(record, 'attempt', None)
        if isinstance(attempt, dict):
            payload.update(attempt)
        else:
            payload['message'] = record.getMessage()
        return json.dumps(payload, default=str)


def _ensure_stream_handler(logger: logging.Logger) -> None:
    handler_exists = any(isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler) for h in logger.handlers)
    if handler_exists:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter('[%(levelname)s] %(name)s: %(message)s'))
    logger.addHandler(handler)


def _ensure_attempt_file_handler(path: Path) -> None:
    logger = logging.getLogger(INSTALL_ATTEMPTS_LOGGER)
    target = str(path.resolve())
    for existing in logger.handlers:
        if isinstance(existing, logging.FileHandler) and existing.baseFilename == target:
            return
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(target, encoding='utf-8')
    handler.setFormatter(_JsonLineFormatter())
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)


def configure_logging(level_name: str | None = None, install_log: Path | None = None) -> None:
    """Configure the root logger, quiet HTTP client chatter and attach the install attempt log."""

    lvl = getattr(logging, (level_name or 'INFO').upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root_logger = logging.getLogger()
    root_logger.setLevel(lvl)
    _ensure_stream_handler(root_logger)

    for noisy_name in _NOISY_LOGGERS:
        logger = logging.getLogger(noisy_name)
        if logger.level < logging.WARNING:
            logger.setLevel(logging.WARNING)

    if install_log is not None:
        _ensure_attempt_file_handler(install_log)
