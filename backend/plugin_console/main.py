from __future__ import annotations
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from plugin_console import __version__
from plugin_console.api import plugins as plugins_router
from plugin_console.core.config import get_settings
from plugin_console.core.errors import PluginConsoleError
from plugin_console.core.logging_config import configure_logging
from plugin_console.services import AppServices, build_services

_log = logging.getLogger(__name__)


def create_app(services: Optional[AppServices] = None) -> FastAPI:
    """Build the API app. Injected ``services`` are used as-is (tests); otherwise they are built from settings at startup."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        if owned:
            settings = get_settings()
            configure_logging(settings.log_level, settings.install_log)
            app.state.services = build_services(settings)
        svc: AppServices = app.state.services
        await svc.worker.start()
        _log.info(f"plugin console ready version={__version__}")

        yield

        await svc.worker.stop()
        if owned:
            svc.close()

    app = FastAPI(title='Plugin Console', version=__version__, lifespan=lifespan)
    if services is not None:
        app.state.services = services

    app.add_exception_handler(PluginConsoleError, plugins_router.plugin_console_error_handler)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        _log.debug(f"validation error url={request.url} errors={exc.errors()}")
        return JSONResponse(status_code=400, content={'error': 'Invalid request', 'code': 'INVALID_REQUEST', 'details': jsonable_encoder(exc.errors())})

    settings = services.settings if services is not None and services.settings is not None else get_settings()
    app.include_router(plugins_router.router, prefix=settings.api_v1_prefix)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=['*'],
        allow_credentials=True,
        allow_methods=['*'],
        allow_headers=['*'],
    )

    @app.get('/')
    async def root():
        return {'status': 'ok', 'app': 'Plugin Console', 'version': __version__}

    return app


app = create_app()
