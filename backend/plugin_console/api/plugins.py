from __future__ import annotations
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from plugin_console.core.errors import InvalidRequest, PluginConsoleError
from plugin_console.services import AppServices
from plugin_console.tasks.models import JobAction, JobOptions, JobStatus, JobTarget

router = APIRouter(prefix='/plugins', tags=['plugins'])
logger = logging.getLogger(__name__)


def get_services(request: Request) -> AppServices:
    return request.app.state.services


class SubmitJobRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    action: str
    name: Optional[str] = None
    url: Optional[str] = None
    custom_name: Optional[str] = None
    options: JobOptions = Field(default_factory=JobOptions)


class UrlRequest(BaseModel):
    url: str


class NameRequest(BaseModel):
    name: str


async def plugin_console_error_handler(request: Request, exc: PluginConsoleError):
    if exc.http_status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    headers = None
    retry_after = getattr(exc, 'retry_after', None)
    if retry_after:
        headers = {'Retry-After': str(retry_after)}
    return JSONResponse(status_code=exc.http_status, content=exc.as_dict(), headers=headers)


# Keep '/jobs' routes and '/job' routes distinct so '/jobs/{job_id}' never shadows a literal path.
@router.post('/job', status_code=201)
def submit_job(payload: SubmitJobRequest, services: AppServices = Depends(get_services)) -> dict:
    try:
        action = JobAction(payload.action)
    except ValueError:
        raise InvalidRequest(f"Invalid action: {payload.action}. Must be one of: {', '.join(a.value for a in JobAction)}")
    target = JobTarget(name=payload.name, url=payload.url, custom_name=payload.custom_name, options=payload.options)
    job = services.queue.enqueue(action, target)
    return {'job': job.to_json()}


@router.get('/jobs')
def list_jobs(status: Optional[str] = None, limit: Optional[int] = None, services: AppServices = Depends(get_services)) -> dict:
    """Jobs newest first, plus the id of the job the worker is executing right now."""
    if status:
        try:
            status = JobStatus(status).value
        except ValueError:
            raise InvalidRequest(f"Invalid status: {status}")
    if limit is not None and limit < 0:
        raise InvalidRequest('limit must be >= 0')
    jobs = services.queue.list(limit=limit, status=status)
    return {'jobs': [j.to_json() for j in jobs], 'currentJobId': services.worker.current_job_id}


@router.get('/jobs/{job_id}')
def get_job(job_id: str, services: AppServices = Depends(get_services)) -> dict:
    return {'job': services.queue.get(job_id).to_json()}


@router.put('/job/{job_id}/cancel')
def cancel_job(job_id: str, services: AppServices = Depends(get_services)) -> dict:
    return {'job': services.queue.cancel(job_id).to_json()}


@router.get('/list')
def list_plugins(services: AppServices = Depends(get_services)) -> dict:
    return {'plugins': services.manager.list_plugins()}


@router.get('/history')
def plugin_history(limit: int = 50, services: AppServices = Depends(get_services)) -> dict:
    """Return recent plugin operations (newest first)."""
    return {'history': services.manager.get_history(max(0, min(limit, 500)))}


@router.post('/parse-url')
def parse_url(payload: UrlRequest, services: AppServices = Depends(get_services)) -> dict:
    return services.manager.preview(payload.url)


@router.post('/rollback')
def rollback(payload: NameRequest, services: AppServices = Depends(get_services)) -> dict:
    return services.manager.rollback(payload.name)


@router.get('/health')
def health(services: AppServices = Depends(get_services)):
    checks = services.manager.check_health()
    worker = services.worker
    checks['worker'] = {
        'ok': worker.is_running,
        'processing': worker.is_processing,
        'currentJobId': worker.current_job_id,
    }
    healthy = all(c.get('ok') for c in checks.values())
    body = {'status': 'healthy' if healthy else 'unhealthy', 'checks': checks}
    return JSONResponse(status_code=200 if healthy else 503, content=body)
