from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Callable, Optional
from urllib.parse import urlparse

import httpx

from plugin_console.core.errors import InvalidArchive, SourceUnavailable

_log = logging.getLogger(__name__)

Reporter = Callable[[str], None]

_CHUNK = 64 * 1024
_PROGRESS_STEPS = (25, 50, 75, 100)


def _noop(_message: str) -> None:
    return None


class Downloader:
    """Stream an artifact to a local file, enforcing a size cap."""

    def __init__(self, client: httpx.Client, max_bytes: int = 100 * 1024 * 1024):
        self._client = client
        self._max_bytes = max_bytes

    def fetch(self, url: str, dest: Path, expected_size: Optional[int] = None, report: Reporter = _noop) -> int:
        host = urlparse(url).hostname or url
        written = 0
        try:
            with self._client.stream('GET', url) as r:
                if r.status_code >= 400:
                    raise SourceUnavailable(f"Download failed: HTTP {r.status_code} from {host}", url=url)
                total = _content_length(r) or expected_size
                if total and total > self._max_bytes:
                    raise InvalidArchive(f"Artifact is {total} bytes, larger than the {self._max_bytes} byte limit")
                next_step = 0
                with open(dest, 'wb') as fh:
                    for chunk in r.iter_bytes(_CHUNK):
                        written += len(chunk)
                        if written > self._max_bytes:
                            raise InvalidArchive(f"Artifact exceeds the {self._max_bytes} byte limit")
                        fh.write(chunk)
                        if total:
                            pct = min(100, written * 100 // total)
                            while next_step < len(_PROGRESS_STEPS) and pct >= _PROGRESS_STEPS[next_step]:
                                report(f"Download progress: {_PROGRESS_STEPS[next_step]}%")
                                next_step += 1
                    fh.flush()
                    os.fsync(fh.fileno())
        except httpx.TimeoutException as e:
            raise SourceUnavailable(f"Download timed out from {host}: {e}", url=url) from e
        except httpx.TransportError as e:
            raise SourceUnavailable(f"Download failed from {host}: {e}", url=url) from e
        _log.debug(f"downloaded url={url} bytes={written} dest={dest}")
        return written


def _content_length(r: httpx.Response) -> Optional[int]:
    raw = r.headers.get('content-length')
    if raw and raw.strip().isdigit():
        return int(raw.strip())
    return None
