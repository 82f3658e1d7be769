from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .catalog import SourceCatalog, Workspace
from .config import ConfigStore
from .environment import Environment
from .errors import ConfigError, OSDependencyError, StageFailure, UnknownOperatingSystem
from .importers import Importer, default_importers, importer_for
from .installer import OSDepsInstaller
from .models import PackageManifest, PackageSet, PackageSpec, Stage, StageResult
from .osdeps import DependencyCatalog
from .pipeline import (
    PackageContext,
    build_package,
    import_package,
    load_manifest,
    prepare_package,
    run_units,
)
from .report import MailSettings, RunReport
from .status import collect_statuses, render_status
from .utils import CommandError, run_command

logger = logging.getLogger(__name__)


class Mode(Enum):
    BOOTSTRAP = "bootstrap"
    BUILD = "build"
    UPDATE = "update"
    STATUS = "status"
    DOC = "doc"
    LIST_SOURCES = "list-sources"
    UPDATE_SOURCES = "update-sources"

    @classmethod
    def names(cls) -> List[str]:
        return [mode.value for mode in cls]


PIPELINE_MODES = (Mode.BUILD, Mode.UPDATE, Mode.DOC)


@dataclass
class RunOptions:
    mode: Mode
    selection: List[str] = field(default_factory=list)
    reconfigure: bool = False
    update: bool = True
    osdeps: bool = True
    verbose: bool = False
    debug: bool = False
    nice: Optional[int] = None
    mail: MailSettings = field(default_factory=MailSettings)


class Orchestrator:
    """Drives the package sets of a workspace through the build pipeline."""

    def __init__(
        self,
        root: str | Path,
        options: RunOptions,
        *,
        config: ConfigStore,
        importers: Optional[Dict[str, Importer]] = None,
        installer: Optional[OSDepsInstaller] = None,
        runner: Callable[..., object] = run_command,
        out: Callable[[str], None] = print,
    ) -> None:
        self.workspace = Workspace(Path(root))
        self.options = options
        self.config = config
        self.runner = runner
        self.importers = importers if importers is not None else default_importers(runner)
        self.out = out
        self.catalog = SourceCatalog(self.workspace)
        self.report = RunReport()
        self.cancel = threading.Event()
        self.environment = Environment()
        self._installer = installer
        self._osdeps: Optional[DependencyCatalog] = None
        self._depends: Dict[str, List[str]] = {}
        self._parallel = 1
        self._install_osdeps = False

    # -- entry point --------------------------------------------------

    def run(self) -> RunReport:
        mode = self.options.mode
        if mode is Mode.LIST_SOURCES:
            for source in self.catalog.sources:
                self.out(source.describe())
            return self.report
        if mode is Mode.UPDATE_SOURCES:
            self.update_sources()
            return self.report
        if mode is Mode.BOOTSTRAP:
            self.config.configure_all()
            self.config.save()
            self.update_sources()
            return self.report

        if mode is Mode.UPDATE:
            self.options.update = True
            self.update_sources()

        sets = self.catalog.select(self.options.selection)
        if mode is Mode.STATUS:
            self.show_status(sets)
            return self.report

        if not any(package_set.enabled for package_set in sets):
            logger.info("no packages selected, nothing to do")
            return self.report

        self._parallel = int(self.config.get("parallel_builds"))
        self._install_osdeps = self.options.osdeps and bool(self.config.get("install_osdeps"))
        self.config.save()

        for package_set in sets:
            if self.cancel.is_set():
                break
            if not self.process_set(package_set):
                logger.error("aborting package set %s", package_set.name)
        return self.report

    # -- sources and status -------------------------------------------

    def update_sources(self) -> None:
        log_path = self.workspace.log_dir / "sources.log"
        for source in self.catalog.sources:
            if source.vcs == "local":
                continue
            spec = PackageSpec(name=source.name, vcs=source.vcs, url=source.url, branch=source.branch)
            importer = importer_for(self.importers, source.vcs)
            importer.import_package(spec, self.workspace.source_dir(source), update=True, log_path=log_path)
        self.catalog = SourceCatalog(self.workspace, _sources=self.catalog.sources)
        self._osdeps = None

    def show_status(self, sets: List[PackageSet]) -> None:
        for package_set in sets:
            names = package_set.selected if package_set.selected is not None else package_set.members
            if not names:
                continue
            packages = [
                (pkg, self.workspace.package_srcdir(package_set.name, pkg))
                for pkg in package_set.packages
                if pkg.name in names
            ]
            statuses, notices = collect_statuses(packages, self.importers)
            self.out(f"{package_set.name}:")
            for line in render_status(statuses, notices):
                self.out(f"  {line}")

    # -- pipeline -----------------------------------------------------

    @property
    def osdeps(self) -> DependencyCatalog:
        if self._osdeps is None:
            self._osdeps = self.catalog.osdeps()
        return self._osdeps

    @property
    def installer(self) -> OSDepsInstaller:
        if self._installer is None:
            self._installer = OSDepsInstaller(
                self.osdeps,
                script_path=self.workspace.osdeps_script,
                runner=self.runner,
                verbose=self.options.verbose,
            )
        return self._installer

    def process_set(self, package_set: PackageSet) -> bool:
        """Run every stage for one package set; returns False if it was aborted."""

        logger.info("processing package set %s", package_set.name)
        contexts = {
            pkg.name: PackageContext(self.workspace, package_set.name, pkg) for pkg in package_set.packages
        }
        members = package_set.members
        results = self.report.results

        def do_import(name: str) -> None:
            context = contexts[name]
            importer = importer_for(self.importers, context.package.vcs)
            import_package(context, importer, update=self.options.update)

        if not run_units(
            members,
            do_import,
            stage=Stage.IMPORT,
            results=results,
            max_workers=self._parallel,
            cancel=self.cancel,
            fail_fast=True,
        ):
            return False

        manifests = self._load_manifests(contexts)
        if manifests is None:
            return False
        if self._install_osdeps and not self._install_set_osdeps(package_set, manifests):
            return False

        set_env = Environment()
        set_env.add_prefix(self.workspace.prefix(package_set.name))
        prepare_env = self._command_env(set_env)

        def do_prepare(name: str) -> None:
            prepare_package(contexts[name], manifests[name], set_env, prepare_env, runner=self.runner)

        if not run_units(
            members,
            do_prepare,
            stage=Stage.PREPARE,
            results=results,
            depends=self._depends,
            max_workers=self._parallel,
            cancel=self.cancel,
        ):
            return False
        self.environment.update(set_env)

        stage = Stage.DOC if self.options.mode is Mode.DOC else Stage.BUILD
        build_env = self._command_env()

        def do_build(name: str) -> None:
            build_package(contexts[name], stage, build_env, runner=self.runner)

        if not run_units(
            package_set.enabled,
            do_build,
            stage=stage,
            results=results,
            depends=self._depends,
            max_workers=self._parallel,
            cancel=self.cancel,
        ):
            return False

        set_env.write(self.workspace.env_script(package_set.name))
        return True

    def _command_env(self, extra: Optional[Environment] = None) -> Dict[str, str]:
        env = Environment()
        env.update(self.environment)
        if extra is not None:
            env.update(extra)
        return env.resolved()

    def _load_manifests(self, contexts: Dict[str, PackageContext]) -> Optional[Dict[str, PackageManifest]]:
        manifests: Dict[str, PackageManifest] = {}
        failed = False
        for name, context in contexts.items():
            try:
                manifests[name] = load_manifest(context)
            except StageFailure as exc:
                logger.error(str(exc))
                self.report.results.append(StageResult.failure(name, Stage.OSDEPS, exc.reason))
                failed = True
        if failed:
            return None

        known = {pkg.name for pkg in self.catalog.iter_packages()}
        for name, manifest in manifests.items():
            unknown = [dep for dep in manifest.depends if dep not in known]
            if unknown:
                raise ConfigError(f"{name} depends on unknown package(s) {', '.join(unknown)}")
            self._depends[name] = list(manifest.depends)
        return manifests

    def _install_set_osdeps(self, package_set: PackageSet, manifests: Dict[str, PackageManifest]) -> bool:
        names = list(dict.fromkeys(dep for m in manifests.values() for dep in m.osdeps))
        if not names:
            return True
        try:
            self.installer.install(names)
        except (OSDependencyError, UnknownOperatingSystem, CommandError) as exc:
            logger.error("%s: cannot install OS dependencies: %s", package_set.name, exc)
            self.report.results.append(StageResult.failure(package_set.name, Stage.OSDEPS, str(exc)))
            return False
        self.report.results.append(StageResult(package_set.name, Stage.OSDEPS))
        return True
