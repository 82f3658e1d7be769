from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol

from .errors import ConfigError
from .models import PackageSpec, VCSStatus
from .utils import ensure_directory, run_command

logger = logging.getLogger(__name__)


class Importer(Protocol):
    """Synchronizes a package's sources from its origin."""

    supports_status: bool

    def import_package(
        self,
        package: PackageSpec,
        srcdir: Path,
        *,
        update: bool = True,
        log_path: Optional[Path] = None,
    ) -> bool:
        ...

    def status(self, package: PackageSpec, srcdir: Path) -> VCSStatus:
        ...


class GitImporter:
    supports_status = True

    def __init__(self, runner: Callable[..., object] = run_command) -> None:
        self.runner = runner

    def _git(self, srcdir: Path, *args: str, log_path: Optional[Path] = None):
        return self.runner(["git", *args], cwd=srcdir, log_path=log_path)

    def import_package(
        self,
        package: PackageSpec,
        srcdir: Path,
        *,
        update: bool = True,
        log_path: Optional[Path] = None,
    ) -> bool:
        """Clone or update ``srcdir``; returns True if anything was fetched."""

        if not (srcdir / ".git").exists():
            if not package.url:
                raise ConfigError(f"package {package.name} has no url to clone from")
            ensure_directory(srcdir.parent)
            logger.info("checking out %s", package.name)
            self.runner(
                ["git", "clone", "-b", package.branch, package.url, str(srcdir)],
                log_path=log_path,
            )
            return True
        if not update:
            logger.debug("not updating %s", package.name)
            return False
        logger.info("updating %s", package.name)
        self._git(srcdir, "pull", "--ff-only", "origin", package.branch, log_path=log_path)
        return True

    def status(self, package: PackageSpec, srcdir: Path) -> VCSStatus:
        self._git(srcdir, "fetch", "origin", package.branch)
        counts = self._git(srcdir, "rev-list", "--left-right", "--count", "HEAD...FETCH_HEAD")
        parts = counts.stdout.split()
        local_count, remote_count = (int(parts[0]), int(parts[1])) if len(parts) == 2 else (0, 0)

        porcelain = self._git(srcdir, "status", "--porcelain")
        uncommitted = bool(porcelain.stdout.strip())

        local_commits: List[str] = []
        remote_commits: List[str] = []
        if local_count:
            local_commits = self._summaries(srcdir, "FETCH_HEAD..HEAD")
        if remote_count:
            remote_commits = self._summaries(srcdir, "HEAD..FETCH_HEAD")
        return VCSStatus.from_counts(
            package.name,
            local_count,
            remote_count,
            uncommitted=uncommitted,
            local_commits=local_commits,
            remote_commits=remote_commits,
        )

    def _summaries(self, srcdir: Path, revrange: str) -> List[str]:
        log = self._git(srcdir, "log", "--format=%h %s", revrange)
        return [line.strip() for line in log.stdout.splitlines() if line.strip()]


class LocalImporter:
    """Package sources that live in a directory managed outside stackbuild."""

    supports_status = False

    def import_package(
        self,
        package: PackageSpec,
        srcdir: Path,
        *,
        update: bool = True,
        log_path: Optional[Path] = None,
    ) -> bool:
        if not srcdir.is_dir():
            raise ConfigError(f"source directory {srcdir} of {package.name} does not exist")
        return False

    def status(self, package: PackageSpec, srcdir: Path) -> VCSStatus:
        raise ConfigError(f"{package.name}: the local importer does not support status display")


def default_importers(runner: Callable[..., object] = run_command) -> Dict[str, Importer]:
    return {"git": GitImporter(runner), "local": LocalImporter()}


def importer_for(importers: Dict[str, Importer], vcs: str) -> Importer:
    try:
        return importers[vcs]
    except KeyError:
        raise ConfigError(f"unknown VCS type {vcs!r}") from None
