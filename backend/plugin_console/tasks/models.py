from __future__ import annotations
import enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from plugin_console.core.errors import InvalidRequest


class JobAction(str, enum.Enum):
    install = 'install'
    uninstall = 'uninstall'
    update = 'update'
    enable = 'enable'
    disable = 'disable'


class JobStatus(str, enum.Enum):
    queued = 'queued'
    running = 'running'
    completed = 'completed'
    failed = 'failed'
    cancelled = 'cancelled'


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled})

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.queued: frozenset({JobStatus.running, JobStatus.cancelled}),
    JobStatus.running: frozenset({JobStatus.completed, JobStatus.failed, JobStatus.cancelled}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
    JobStatus.cancelled: frozenset(),
}

CANCEL_ERROR = 'Job cancelled by user'
CANCEL_LOG = 'Job cancelled by user request'
RESTART_ERROR = 'interrupted by restart'


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class JobOptions(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    delete_configs: bool = False


class JobTarget(_CamelModel):
    name: Optional[str] = None
    url: Optional[str] = None
    custom_name: Optional[str] = None
    options: JobOptions = Field(default_factory=JobOptions)

    def require_for(self, action: JobAction) -> 'JobTarget':
        """Check the fields ``action`` needs; blank strings count as missing."""
        name = (self.name or '').strip() or None
        url = (self.url or '').strip() or None
        custom = (self.custom_name or '').strip() or None
        if action == JobAction.install and not url:
            raise InvalidRequest('URL is required for install')
        if action in (JobAction.uninstall, JobAction.update, JobAction.enable, JobAction.disable) and not name:
            raise InvalidRequest(f"Plugin name is required for {action.value}")
        return self.model_copy(update={'name': name, 'url': url, 'custom_name': custom})


class LogEntry(_CamelModel):
    timestamp: str
    message: str


class Job(_CamelModel):
    id: str
    action: JobAction
    target: JobTarget
    status: JobStatus = JobStatus.queued
    logs: list[LogEntry] = Field(default_factory=list)
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    created_at: str
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_json(self) -> dict:
        return self.model_dump(mode='json', by_alias=True)

    def summary(self) -> str:
        return f"{self.action.value} {self.target.name or self.target.url or ''}".strip()
