from __future__ import annotations
"""Error taxonomy shared by the resolver, plugin manager, job queue and API.

Every error carries a stable ``code`` and the HTTP status the API answers
with when the error reaches a synchronous caller. Inside the worker the
message becomes the job's ``error`` field.
"""
from typing import Any, Optional


class PluginConsoleError(Exception):
    code = 'ERROR'
    http_status = 500

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def as_dict(self) -> dict:
        body = {'error': self.message, 'code': self.code}
        if self.details:
            body['details'] = self.details
        return body


class InvalidRequest(PluginConsoleError):
    code = 'INVALID_REQUEST'
    http_status = 400


class SourceUnavailable(PluginConsoleError):
    code = 'SOURCE_UNAVAILABLE'
    http_status = 502


class RateLimited(SourceUnavailable):
    code = 'RATE_LIMITED'
    http_status = 429

    def __init__(self, message: str, retry_after: Optional[int] = None, **details: Any):
        super().__init__(message, retry_after=retry_after, **details)
        self.retry_after = retry_after


class UnrecognizedSource(PluginConsoleError):
    code = 'UNRECOGNIZED_SOURCE'
    http_status = 400


class ManualDownloadRequired(PluginConsoleError):
    code = 'MANUAL_DOWNLOAD_REQUIRED'
    http_status = 422


class MultipleArtifacts(PluginConsoleError):
    code = 'MULTIPLE_ARTIFACTS'
    http_status = 409


class NoCompatibleArtifact(PluginConsoleError):
    code = 'NO_COMPATIBLE_ARTIFACT'
    http_status = 422


class InvalidArchive(PluginConsoleError):
    code = 'INVALID_ARCHIVE'
    http_status = 422


class MissingManifest(PluginConsoleError):
    code = 'MISSING_MANIFEST'
    http_status = 422


class NotFound(PluginConsoleError):
    code = 'NOT_FOUND'
    http_status = 404


class NoBackupAvailable(PluginConsoleError):
    code = 'NO_BACKUP_AVAILABLE'
    http_status = 409


class InvalidTransition(PluginConsoleError):
    code = 'INVALID_TRANSITION'
    http_status = 409


class RegistryWriteConflict(PluginConsoleError):
    code = 'REGISTRY_WRITE_CONFLICT'
    http_status = 500


class JobCancelled(PluginConsoleError):
    """Raised at a checkpoint when the running job was cancelled externally."""
    code = 'JOB_CANCELLED'
    http_status = 409
