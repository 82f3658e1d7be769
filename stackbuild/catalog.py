from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import yaml

from .errors import CatalogError, ConfigError
from .models import PackageSet, PackageSpec, SourceSpec
from .osdeps import DependencyCatalog
from .utils import ensure_directory, load_document

logger = logging.getLogger(__name__)

SOURCE_FILE = "source.yml"
OSDEPS_FILE = "osdeps.yml"


@dataclass(frozen=True)
class Workspace:
    """Directory layout of a stackbuild installation."""

    root: Path

    @property
    def config_dir(self) -> Path:
        return self.root / "config"

    @property
    def manifest_path(self) -> Path:
        return self.config_dir / "manifest.yml"

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.yml"

    @property
    def remotes_dir(self) -> Path:
        return self.config_dir / "remotes"

    @property
    def log_dir(self) -> Path:
        return self.root / "install" / "log"

    @property
    def osdeps_script(self) -> Path:
        return self.root / "install" / "osdeps.sh"

    def set_srcdir(self, set_name: str) -> Path:
        return self.root / set_name

    def prefix(self, set_name: str) -> Path:
        return self.root / "install" / set_name

    def set_log_dir(self, set_name: str) -> Path:
        return ensure_directory(self.prefix(set_name) / "log")

    def env_script(self, set_name: str) -> Path:
        return self.prefix(set_name) / "env.sh"

    def package_srcdir(self, set_name: str, package: PackageSpec) -> Path:
        if package.path:
            return self.root / package.path
        return self.set_srcdir(set_name) / package.name

    def package_builddir(self, set_name: str, package: PackageSpec) -> Path:
        return self.package_srcdir(set_name, package) / "build"

    def source_dir(self, source: SourceSpec) -> Path:
        if source.vcs == "local":
            return self.root / (source.path or source.name)
        return self.remotes_dir / source.name


def _read_mapping(path: Path, what: str) -> Dict[str, Any]:
    try:
        data = load_document(path)
    except yaml.YAMLError as exc:
        raise CatalogError(f"cannot parse {what} {path}: {exc}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise CatalogError(f"{what} {path} must contain a mapping")
    return data


@dataclass
class SourceCatalog:
    """Loader for the workspace manifest and the package sets it references."""

    workspace: Workspace
    _sources: Optional[List[SourceSpec]] = None
    _sets: Optional[List[PackageSet]] = None

    @classmethod
    def from_root(cls, root: str | Path) -> "SourceCatalog":
        return cls(workspace=Workspace(Path(root)))

    @property
    def sources(self) -> List[SourceSpec]:
        if self._sources is not None:
            return self._sources

        manifest_path = self.workspace.manifest_path
        if not manifest_path.exists():
            raise ConfigError(f"no manifest found at {manifest_path}")
        raw_data = _read_mapping(manifest_path, "manifest")
        entries = raw_data.get("sources") or []
        if not isinstance(entries, list):
            raise CatalogError("manifest must contain a 'sources' list")
        try:
            self._sources = [SourceSpec.from_dict(entry) for entry in entries]
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"invalid source entry in {manifest_path}: {exc}") from exc
        return self._sources

    def package_sets(self) -> List[PackageSet]:
        if self._sets is not None:
            return self._sets

        sets: List[PackageSet] = []
        owners: Dict[str, str] = {}
        for source in self.sources:
            package_set = self._load_set(source)
            for name in package_set.members:
                if name in owners:
                    raise ConfigError(
                        f"package {name} is defined in both {owners[name]} and {package_set.name}"
                    )
                owners[name] = package_set.name
            sets.append(package_set)
        self._sets = sets
        return sets

    def _load_set(self, source: SourceSpec) -> PackageSet:
        source_file = self.workspace.source_dir(source) / SOURCE_FILE
        if not source_file.exists():
            raise ConfigError(
                f"source {source.name} has no {SOURCE_FILE} at {source_file}; run update-sources"
            )
        raw_data = _read_mapping(source_file, "source definition")
        try:
            packages = [PackageSpec.from_dict(entry) for entry in raw_data.get("packages") or []]
        except (KeyError, TypeError) as exc:
            raise CatalogError(f"invalid package entry in {source_file}: {exc}") from exc
        return PackageSet(name=str(raw_data.get("name") or source.name), packages=packages)

    def osdeps(self) -> DependencyCatalog:
        """Merge the OS dependency files of all sources, then the local one."""

        catalog = DependencyCatalog()
        candidates = [self.workspace.source_dir(source) / OSDEPS_FILE for source in self.sources]
        candidates.append(self.workspace.config_dir / OSDEPS_FILE)
        for path in candidates:
            if path.exists():
                catalog = catalog.merge(DependencyCatalog.load(path))
        return catalog

    def select(self, names: Sequence[str]) -> List[PackageSet]:
        """Restrict the enabled subsets to the named packages or package sets."""

        sets = self.package_sets()
        if not names:
            return sets

        wanted = set(names)
        known = {s.name for s in sets} | {m for s in sets for m in s.members}
        unknown = sorted(wanted - known)
        if unknown:
            raise ConfigError(f"unknown packages or package sets: {', '.join(unknown)}")
        for package_set in sets:
            if package_set.name in wanted:
                package_set.selected = list(package_set.members)
            else:
                package_set.selected = [m for m in package_set.members if m in wanted]
        return sets

    def iter_packages(self) -> Iterable[PackageSpec]:
        for package_set in self.package_sets():
            yield from package_set.packages
