from __future__ import annotations
import enum
from dataclasses import dataclass, field, asdict
from typing import Optional, Union


class SourceKind(str, enum.Enum):
    direct = 'direct'
    github_latest = 'github-latest'
    github_tag = 'github-tag'
    modrinth = 'modrinth'
    manual = 'manual'


# --- classified input (pure, no network) ---------------------------------

@dataclass(frozen=True)
class DirectLink:
    url: str
    filename: str
    kind: SourceKind = SourceKind.direct


@dataclass(frozen=True)
class GitHubLatest:
    owner: str
    repo: str
    kind: SourceKind = SourceKind.github_latest

    @property
    def project_id(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class GitHubTag:
    owner: str
    repo: str
    tag: str
    kind: SourceKind = SourceKind.github_tag

    @property
    def project_id(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass(frozen=True)
class ModrinthProject:
    slug: str
    kind: SourceKind = SourceKind.modrinth


@dataclass(frozen=True)
class ManualHost:
    host: str
    guidance: str
    kind: SourceKind = SourceKind.manual


SourceRef = Union[DirectLink, GitHubLatest, GitHubTag, ModrinthProject, ManualHost]


# --- resolution (after talking to the origin) -----------------------------

@dataclass(frozen=True)
class ArtifactOption:
    filename: str
    size: Optional[int]
    url: str


@dataclass(frozen=True)
class ResolvedArtifact:
    kind: SourceKind
    download_url: str
    filename: str
    size: Optional[int] = None
    version: Optional[str] = None
    project_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            'status': 'resolved',
            'type': self.kind.value,
            'downloadUrl': self.download_url,
            'filename': self.filename,
            'size': self.size,
            'version': self.version,
            'projectId': self.project_id,
        }


@dataclass(frozen=True)
class ArtifactChoices:
    kind: SourceKind
    options: tuple[ArtifactOption, ...] = field(default_factory=tuple)
    version: Optional[str] = None
    project_id: Optional[str] = None

    def as_dict(self) -> dict:
        return {
            'status': 'multiple-options',
            'type': self.kind.value,
            'version': self.version,
            'projectId': self.project_id,
            'options': [asdict(o) for o in self.options],
        }


@dataclass(frozen=True)
class ManualActionRequired:
    kind: SourceKind
    guidance: str

    def as_dict(self) -> dict:
        return {'status': 'manual', 'type': self.kind.value, 'guidance': self.guidance}


Resolution = Union[ResolvedArtifact, ArtifactChoices, ManualActionRequired]
