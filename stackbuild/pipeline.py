from __future__ import annotations

import logging
import threading
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import yaml

from .catalog import Workspace
from .environment import Environment
from .errors import ConfigError, StageFailure
from .importers import Importer
from .models import PackageManifest, PackageSpec, Stage, StageResult
from .utils import CommandError, ensure_directory, load_document, run_command

logger = logging.getLogger(__name__)

MANIFEST_FILE = "manifest.yml"

Runner = Callable[..., object]


@dataclass
class PackageContext:
    workspace: Workspace
    set_name: str
    package: PackageSpec

    @property
    def name(self) -> str:
        return self.package.name

    @property
    def srcdir(self) -> Path:
        return self.workspace.package_srcdir(self.set_name, self.package)

    @property
    def builddir(self) -> Path:
        return self.workspace.package_builddir(self.set_name, self.package)

    @property
    def prefix(self) -> Path:
        return self.workspace.prefix(self.set_name)

    def log_path(self, stage: Stage) -> Path:
        safe_name = self.package.name.replace("/", "-")
        return self.workspace.set_log_dir(self.set_name) / f"{safe_name}-{stage.label}.log"

    def commands(self, stage: Stage) -> List[List[str]]:
        build_type = self.package.build_type
        if build_type == "custom":
            return {
                Stage.PREPARE: self.package.commands.prepare,
                Stage.BUILD: self.package.commands.build,
                Stage.DOC: self.package.commands.doc,
            }[stage]
        if build_type == "cmake":
            configure = ["cmake", f"-DCMAKE_INSTALL_PREFIX={self.prefix}", str(self.srcdir)]
        elif build_type == "autotools":
            configure = [str(self.srcdir / "configure"), f"--prefix={self.prefix}"]
        else:
            raise ConfigError(f"unknown build type {build_type!r} for package {self.name}")
        return {
            Stage.PREPARE: [configure],
            Stage.BUILD: [["make"], ["make", "install"]],
            Stage.DOC: [["make", "doc"]],
        }[stage]

    @property
    def workdir(self) -> Path:
        if self.package.build_type == "custom":
            return self.srcdir
        return ensure_directory(self.builddir)


def import_package(
    context: PackageContext,
    importer: Importer,
    *,
    update: bool = True,
) -> bool:
    return importer.import_package(
        context.package,
        context.srcdir,
        update=update,
        log_path=context.log_path(Stage.IMPORT),
    )


def load_manifest(context: PackageContext) -> PackageManifest:
    path = context.srcdir / MANIFEST_FILE
    if not path.exists():
        logger.debug("%s has no %s", context.name, MANIFEST_FILE)
        return PackageManifest()
    try:
        data = load_document(path)
    except yaml.YAMLError as exc:
        raise StageFailure(context.name, "manifest", f"cannot parse {path}: {exc}") from exc
    if data is None:
        return PackageManifest()
    if not isinstance(data, dict):
        raise StageFailure(context.name, "manifest", f"{path} must contain a mapping")
    return PackageManifest.from_dict(data)


def _run_stage_commands(
    context: PackageContext,
    stage: Stage,
    env: Mapping[str, str],
    runner: Runner,
) -> None:
    commands = context.commands(stage)
    if not commands:
        logger.debug("%s: nothing to do for %s", context.name, stage.label)
        return
    log_path = context.log_path(stage)
    for command in commands:
        try:
            runner(command, cwd=context.workdir, env=env, log_path=log_path)
        except CommandError as exc:
            raise StageFailure(
                context.name, stage.label, f"{exc} (see {log_path})"
            ) from exc


def prepare_package(
    context: PackageContext,
    manifest: PackageManifest,
    set_env: Environment,
    env: Mapping[str, str],
    *,
    runner: Runner = run_command,
) -> None:
    """Configure the package and record its environment contributions."""

    logger.info("preparing %s", context.name)
    _run_stage_commands(context, Stage.PREPARE, env, runner)
    set_env.add_prefix(context.prefix)
    for name, value in manifest.env.items():
        set_env.set(name, value)


def build_package(
    context: PackageContext,
    stage: Stage,
    env: Mapping[str, str],
    *,
    runner: Runner = run_command,
) -> None:
    logger.info("%s %s", "documenting" if stage is Stage.DOC else "building", context.name)
    _run_stage_commands(context, stage, env, runner)


def order_units(units: Sequence[str], depends: Mapping[str, Iterable[str]]) -> List[str]:
    """Sort units so that each comes after its dependencies among ``units``.

    Declaration order is kept wherever the dependencies allow it.
    """

    remaining = list(units)
    unit_set = set(units)
    placed: List[str] = []
    placed_set = set()
    while remaining:
        for name in remaining:
            deps = [d for d in depends.get(name, ()) if d in unit_set]
            if all(d in placed_set for d in deps):
                remaining.remove(name)
                placed.append(name)
                placed_set.add(name)
                break
        else:
            raise ConfigError(f"dependency cycle between {', '.join(remaining)}")
    return placed


def run_units(
    units: Sequence[str],
    worker: Callable[[str], None],
    *,
    stage: Stage,
    results: List[StageResult],
    depends: Optional[Mapping[str, Iterable[str]]] = None,
    max_workers: int = 1,
    cancel: Optional[threading.Event] = None,
    fail_fast: bool = False,
) -> bool:
    """Run one stage over ``units`` on a bounded pool.

    A unit starts only once all of its dependencies among ``units`` succeeded;
    dependents of a failed unit are recorded as failed without running. The
    cancel event is checked before every start. Results are appended to
    ``results`` as they come in. Returns True if every unit succeeded.
    """

    depends = depends or {}
    cancel = cancel or threading.Event()
    unit_set = set(units)
    pending = order_units(units, depends)
    outcome: Dict[str, bool] = {}
    running: Dict[Future, str] = {}

    def record_failure(name: str, reason: str) -> None:
        outcome[name] = False
        results.append(StageResult.failure(name, stage, reason))

    with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
        try:
            while pending or running:
                stopped = cancel.is_set() or (fail_fast and False in outcome.values())
                if not stopped:
                    for name in list(pending):
                        if len(running) >= max_workers:
                            break
                        deps = [d for d in depends.get(name, ()) if d in unit_set]
                        failed = [d for d in deps if outcome.get(d) is False]
                        if failed:
                            pending.remove(name)
                            record_failure(name, f"dependency {failed[0]} failed")
                        elif all(outcome.get(d) for d in deps):
                            pending.remove(name)
                            running[pool.submit(worker, name)] = name
                if not running:
                    break

                finished, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in finished:
                    name = running.pop(future)
                    try:
                        future.result()
                    except ConfigError:
                        raise
                    except Exception as exc:
                        reason = exc.reason if isinstance(exc, StageFailure) else str(exc)
                        logger.error("%s: %s failed: %s", name, stage.label, reason)
                        record_failure(name, reason)
                    else:
                        outcome[name] = True
                        results.append(StageResult(name, stage))
        except KeyboardInterrupt:
            cancel.set()
            raise

    return len(outcome) == len(unit_set) and all(outcome.values())
