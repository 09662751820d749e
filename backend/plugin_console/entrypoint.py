from __future__ import annotations
from plugin_console.core.config import get_settings
from plugin_console.core.logging_config import configure_logging


def main():
    settings = get_settings()
    configure_logging(settings.log_level, settings.install_log)
    print(f"[entrypoint] starting version={settings.version} log_level={settings.log_level}", flush=True)
    for line in settings.diagnostics:
        print(f"[entrypoint][config] {line}", flush=True)
    settings.ensure_dirs()
    import uvicorn
    from uvicorn.config import LOGGING_CONFIG
    print(f"[entrypoint] launching uvicorn on {settings.host}:{settings.port}", flush=True)
    try:
        uvicorn.run(
            'plugin_console.main:app',
            host=settings.host,
            port=settings.port,
            reload=False,
            log_level=settings.log_level.lower(),
            log_config=LOGGING_CONFIG,
        )
    finally:
        print('[entrypoint] uvicorn stopped', flush=True)


if __name__ == '__main__':  # pragma: no cover
    main()
