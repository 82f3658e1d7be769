from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, Iterable, List, Optional, Tuple


class Stage(Enum):
    IMPORT = auto()
    OSDEPS = auto()
    PREPARE = auto()
    BUILD = auto()
    DOC = auto()

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class OSIdentity:
    family: str
    version: str


@dataclass
class BuildCommands:
    """Explicit per-stage commands for packages of the ``custom`` build type."""

    prepare: List[List[str]] = field(default_factory=list)
    build: List[List[str]] = field(default_factory=list)
    doc: List[List[str]] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BuildCommands":
        return cls(
            prepare=_command_list(data.get("prepare")),
            build=_command_list(data.get("build")),
            doc=_command_list(data.get("doc")),
        )


def _command_list(value: Any) -> List[List[str]]:
    if not value:
        return []
    commands: List[List[str]] = []
    for entry in value:
        if isinstance(entry, str):
            commands.append(entry.split())
        else:
            commands.append([str(arg) for arg in entry])
    return commands


@dataclass
class PackageSpec:
    """Package metadata sourced from a package set definition."""

    name: str
    vcs: str = "git"
    url: str = ""
    branch: str = "master"
    path: Optional[str] = None
    build_type: str = "cmake"
    enabled: bool = True
    commands: BuildCommands = field(default_factory=BuildCommands)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageSpec":
        return cls(
            name=data["name"],
            vcs=data.get("vcs", "git"),
            url=data.get("url", ""),
            branch=data.get("branch", "master"),
            path=data.get("path"),
            build_type=data.get("type", "cmake"),
            enabled=bool(data.get("enabled", True)),
            commands=BuildCommands.from_dict(data),
        )


@dataclass
class PackageSet:
    """Named, ordered group of packages sharing a checkout, prefix and log root."""

    name: str
    packages: List[PackageSpec] = field(default_factory=list)
    selected: Optional[List[str]] = None

    @property
    def members(self) -> List[str]:
        return [pkg.name for pkg in self.packages]

    @property
    def enabled(self) -> List[str]:
        if self.selected is not None:
            return [name for name in self.members if name in self.selected]
        return [pkg.name for pkg in self.packages if pkg.enabled]

    def get(self, name: str) -> PackageSpec:
        for pkg in self.packages:
            if pkg.name == name:
                return pkg
        raise KeyError(name)


@dataclass
class SourceSpec:
    """Where a package set definition comes from."""

    name: str
    vcs: str = "local"
    url: str = ""
    branch: str = "master"
    path: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceSpec":
        vcs = data.get("vcs") or ("git" if data.get("url") else "local")
        return cls(
            name=data["name"],
            vcs=vcs,
            url=data.get("url", ""),
            branch=data.get("branch", "master"),
            path=data.get("path"),
        )

    def describe(self) -> str:
        if self.vcs == "local":
            return f"{self.name}: local {self.path}"
        return f"{self.name}: {self.vcs} {self.url} ({self.branch})"


@dataclass
class PackageManifest:
    """Dependency information declared by a checked-out package."""

    depends: List[str] = field(default_factory=list)
    osdeps: List[str] = field(default_factory=list)
    env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PackageManifest":
        return cls(
            depends=[str(name) for name in data.get("depends") or []],
            osdeps=[str(name) for name in data.get("osdeps") or []],
            env={str(k): str(v) for k, v in (data.get("env") or {}).items()},
        )


class SyncState(Enum):
    UP_TO_DATE = auto()
    ADVANCED = auto()
    BEHIND = auto()
    DIVERGED = auto()


@dataclass(frozen=True)
class VCSStatus:
    package: str
    state: SyncState
    local_count: int = 0
    remote_count: int = 0
    uncommitted: bool = False
    local_commits: Tuple[str, ...] = ()
    remote_commits: Tuple[str, ...] = ()

    @classmethod
    def from_counts(
        cls,
        package: str,
        local_count: int,
        remote_count: int,
        *,
        uncommitted: bool = False,
        local_commits: Iterable[str] = (),
        remote_commits: Iterable[str] = (),
    ) -> "VCSStatus":
        if local_count and remote_count:
            state = SyncState.DIVERGED
        elif local_count:
            state = SyncState.ADVANCED
        elif remote_count:
            state = SyncState.BEHIND
        else:
            state = SyncState.UP_TO_DATE
        return cls(
            package=package,
            state=state,
            local_count=local_count,
            remote_count=remote_count,
            uncommitted=uncommitted,
            local_commits=tuple(local_commits),
            remote_commits=tuple(remote_commits),
        )

    @property
    def is_clean_sync(self) -> bool:
        return self.state is SyncState.UP_TO_DATE and not self.uncommitted


@dataclass
class StageResult:
    """Outcome of one stage for one package."""

    package: str
    stage: Stage
    success: bool = True
    reason: str = ""

    @classmethod
    def failure(cls, package: str, stage: Stage, reason: str) -> "StageResult":
        return cls(package=package, stage=stage, success=False, reason=reason)
