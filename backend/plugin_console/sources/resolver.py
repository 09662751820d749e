from __future__ import annotations
"""Turn a user supplied URL into something downloadable.

Two stages:

``classify_url`` is a pure function mapping a URL onto the closed ``SourceRef``
union. Rules live in ``_RULES`` and are evaluated in that order; the first one
that matches wins. The archive-extension rule is first on purpose so a GitHub
``/releases/download/<tag>/<file>.jar`` link is treated as a direct link rather
than a release page.

``SourceResolver.resolve`` asks the origin API (GitHub releases, Modrinth
versions) for concrete artifact URLs when the reference is indirect.
"""
import logging
import re
import time
from typing import Any, Callable, Optional
from urllib.parse import urlparse, unquote

import httpx

from plugin_console.core.config import DEFAULT_COMPATIBLE_LOADERS
from plugin_console.core.errors import (
    NoCompatibleArtifact,
    RateLimited,
    SourceUnavailable,
    UnrecognizedSource,
)
from plugin_console.sources.models import (
    ArtifactChoices,
    ArtifactOption,
    DirectLink,
    GitHubLatest,
    GitHubTag,
    ManualActionRequired,
    ManualHost,
    ModrinthProject,
    Resolution,
    ResolvedArtifact,
    SourceKind,
    SourceRef,
)

_log = logging.getLogger(__name__)

GITHUB_API = 'https://api.github.com'
MODRINTH_API = 'https://api.modrinth.com/v2'

ARCHIVE_EXTENSIONS = ('.jar', '.zip')

MANUAL_DOWNLOAD_HOSTS: dict[str, str] = {
    'spigotmc.org': 'SpigotMC requires manual download. Download the plugin JAR in a browser and submit its direct .jar URL instead.',
    'dev.bukkit.org': 'BukkitDev downloads sit behind an interstitial page. Copy the direct file link from the Files tab and submit that URL instead.',
}

_GITHUB_HOSTS = ('github.com', 'www.github.com')
_MODRINTH_HOSTS = ('modrinth.com', 'www.modrinth.com')
_GITHUB_LATEST_RE = re.compile(r'^/([^/]+)/([^/]+)/releases/latest/?$')
_GITHUB_TAG_RE = re.compile(r'^/([^/]+)/([^/]+)/releases/tag/([^/]+)/?$')
_MODRINTH_RE = re.compile(r'^/plugin/([^/]+)')
_SECONDARY_ASSET_RE = re.compile(r'(^|[-_.])(sources|javadoc|api)([-_.]|$)')


def _direct_link(parsed, url: str) -> Optional[SourceRef]:
    path = unquote(parsed.path)
    if path.lower().endswith(ARCHIVE_EXTENSIONS):
        return DirectLink(url=url, filename=path.rsplit('/', 1)[-1])
    return None


def _github_latest(parsed, url: str) -> Optional[SourceRef]:
    if parsed.hostname not in _GITHUB_HOSTS:
        return None
    m = _GITHUB_LATEST_RE.match(parsed.path)
    return GitHubLatest(owner=m.group(1), repo=m.group(2)) if m else None


def _github_tag(parsed, url: str) -> Optional[SourceRef]:
    if parsed.hostname not in _GITHUB_HOSTS:
        return None
    m = _GITHUB_TAG_RE.match(parsed.path)
    return GitHubTag(owner=m.group(1), repo=m.group(2), tag=unquote(m.group(3))) if m else None


def _modrinth_project(parsed, url: str) -> Optional[SourceRef]:
    if parsed.hostname not in _MODRINTH_HOSTS:
        return None
    m = _MODRINTH_RE.match(parsed.path)
    return ModrinthProject(slug=m.group(1)) if m else None


def _manual_host(parsed, url: str) -> Optional[SourceRef]:
    host = parsed.hostname or ''
    for known, guidance in MANUAL_DOWNLOAD_HOSTS.items():
        if host == known or host.endswith('.' + known):
            return ManualHost(host=host, guidance=guidance)
    return None


# Evaluated top to bottom, first match wins.
_RULES: tuple[tuple[str, Callable[[Any, str], Optional[SourceRef]]], ...] = (
    ('direct-archive', _direct_link),
    ('github-latest', _github_latest),
    ('github-tag', _github_tag),
    ('modrinth-project', _modrinth_project),
    ('manual-host', _manual_host),
)


def classify_url(url: str) -> SourceRef:
    raw = (url or '').strip()
    if not raw:
        raise UnrecognizedSource('URL is required')
    parsed = urlparse(raw)
    if parsed.scheme not in ('http', 'https') or not parsed.hostname:
        raise UnrecognizedSource(f"Unsupported URL: {raw}")
    for _name, rule in _RULES:
        ref = rule(parsed, raw)
        if ref is not None:
            return ref
    raise UnrecognizedSource(
        f"Unrecognized plugin source: {raw}. Use a direct .jar link, a GitHub release page or a Modrinth project page.",
        url=raw,
    )


def _strip_tag_prefix(tag: str) -> str:
    return re.sub(r'^[vV](?=\d)', '', tag or '')


def _is_primary_jar(name: str) -> bool:
    lowered = name.lower()
    if not lowered.endswith('.jar'):
        return False
    return not _SECONDARY_ASSET_RE.search(lowered[:-4])


def _list(value: Any) -> list:
    return value if isinstance(value, list) else []


def _dicts(value: Any) -> list[dict]:
    return [v for v in _list(value) if isinstance(v, dict)]


def _size(item: dict) -> Optional[int]:
    size = item.get('size')
    return size if isinstance(size, int) and not isinstance(size, bool) else None


class SourceResolver:
    """Resolve classified sources through the origin's public API."""

    def __init__(
        self,
        client: httpx.Client,
        github_token: Optional[str] = None,
        compatible_loaders: Optional[list[str]] = None,
    ):
        self._client = client
        self._github_token = github_token
        self._loaders = {l.lower() for l in (compatible_loaders or DEFAULT_COMPATIBLE_LOADERS)}

    def resolve(self, url: str) -> Resolution:
        ref = classify_url(url)
        _log.debug(f"classified url={url} kind={ref.kind.value}")
        if isinstance(ref, DirectLink):
            return ResolvedArtifact(kind=ref.kind, download_url=ref.url, filename=ref.filename)
        if isinstance(ref, GitHubLatest):
            release = self._get_json(f"{GITHUB_API}/repos/{ref.owner}/{ref.repo}/releases/latest", self._github_headers())
            return self._from_github_release(ref.kind, ref.project_id, release)
        if isinstance(ref, GitHubTag):
            release = self._get_json(f"{GITHUB_API}/repos/{ref.owner}/{ref.repo}/releases/tags/{ref.tag}", self._github_headers())
            return self._from_github_release(ref.kind, ref.project_id, release)
        if isinstance(ref, ModrinthProject):
            versions = self._get_json(f"{MODRINTH_API}/project/{ref.slug}/version", {})
            return self._from_modrinth_versions(ref.slug, versions)
        if isinstance(ref, ManualHost):
            return ManualActionRequired(kind=ref.kind, guidance=ref.guidance)
        raise UnrecognizedSource(f"Unsupported source kind: {ref!r}")  # pragma: no cover

    # --- origin specifics -------------------------------------------------
    def _github_headers(self) -> dict[str, str]:
        headers = {'Accept': 'application/vnd.github+json'}
        if self._github_token:
            headers['Authorization'] = f"Bearer {self._github_token}"
        return headers

    def _from_github_release(self, kind: SourceKind, project_id: str, release: Any) -> Resolution:
        if not isinstance(release, dict):
            raise SourceUnavailable(f"Unexpected GitHub response for {project_id}")
        if release.get('draft'):
            raise NoCompatibleArtifact(f"Release of {project_id} is a draft")
        version = _strip_tag_prefix(str(release.get('tag_name') or '')) or None
        assets = [a for a in _dicts(release.get('assets'))
                  if isinstance(a.get('browser_download_url'), str) and isinstance(a.get('name'), str)
                  and _is_primary_jar(a['name'])]
        if not assets:
            raise NoCompatibleArtifact(f"No JAR files found in release {release.get('tag_name') or '(untagged)'} of {project_id}")
        if len(assets) == 1:
            a = assets[0]
            return ResolvedArtifact(
                kind=kind,
                download_url=a['browser_download_url'],
                filename=a['name'],
                size=_size(a),
                version=version,
                project_id=project_id,
            )
        options = tuple(ArtifactOption(filename=a['name'], size=_size(a), url=a['browser_download_url']) for a in assets)
        return ArtifactChoices(kind=kind, options=options, version=version, project_id=project_id)

    def _from_modrinth_versions(self, slug: str, versions: Any) -> Resolution:
        versions = _dicts(versions)
        if not versions:
            raise NoCompatibleArtifact(f"No versions found for Modrinth project {slug}")
        ordered = sorted(versions, key=lambda v: str(v.get('date_published') or ''), reverse=True)
        compatible = next(
            (v for v in ordered if any(str(l).lower() in self._loaders for l in _list(v.get('loaders')))),
            None,
        )
        if compatible is None:
            raise NoCompatibleArtifact(f"No version of {slug} supports any of: {', '.join(sorted(self._loaders))}")
        files = [f for f in _dicts(compatible.get('files')) if isinstance(f.get('url'), str) and f['url']]
        primary = next((f for f in files if f.get('primary')), files[0] if files else None)
        if primary is None:
            raise NoCompatibleArtifact(f"Version {compatible.get('version_number')} of {slug} has no downloadable files")
        return ResolvedArtifact(
            kind=SourceKind.modrinth,
            download_url=primary['url'],
            filename=str(primary.get('filename') or primary['url'].rsplit('/', 1)[-1]),
            size=_size(primary),
            version=str(compatible['version_number']) if compatible.get('version_number') else None,
            project_id=slug,
        )

    # --- transport --------------------------------------------------------
    def _get_json(self, url: str, headers: dict[str, str]) -> Any:
        try:
            r = self._client.get(url, headers=headers)
        except httpx.TimeoutException as e:
            raise SourceUnavailable(f"Timed out contacting {urlparse(url).hostname}: {e}") from e
        except httpx.TransportError as e:
            raise SourceUnavailable(f"Could not reach {urlparse(url).hostname}: {e}") from e
        if r.status_code == 429 or (r.status_code == 403 and r.headers.get('x-ratelimit-remaining') == '0'):
            retry_after = _retry_after_seconds(r)
            hint = f" Try again in {retry_after}s." if retry_after else ' Try again later.'
            raise RateLimited(f"Rate limited by {urlparse(url).hostname}.{hint}", retry_after=retry_after)
        if r.status_code == 404:
            raise SourceUnavailable(f"Not found at origin: {url}")
        if r.status_code >= 400:
            raise SourceUnavailable(f"{urlparse(url).hostname} answered HTTP {r.status_code}")
        try:
            return r.json()
        except ValueError as e:
            raise SourceUnavailable(f"Invalid JSON from {urlparse(url).hostname}") from e


def _retry_after_seconds(r: httpx.Response) -> Optional[int]:
    raw = r.headers.get('retry-after')
    if raw and raw.strip().isdigit():
        return int(raw.strip())
    reset = r.headers.get('x-ratelimit-reset')
    if reset and reset.strip().isdigit():
        return max(0, int(reset.strip()) - int(time.time()))
    return None
