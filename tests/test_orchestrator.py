from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import pytest
import yaml

from stackbuild.config import ConfigStore
from stackbuild.errors import ConfigError, UnsupportedOSVersion
from stackbuild.importers import LocalImporter
from stackbuild.models import Stage
from stackbuild.orchestrator import Mode, Orchestrator, RunOptions
from stackbuild.utils import CommandError


class RecordingRunner:
    def __init__(self) -> None:
        self.commands: List[str] = []

    def __call__(self, argv, **kwargs):
        self.commands.append(" ".join(str(a) for a in argv))


class FailingImporter:
    supports_status = False

    def __init__(self) -> None:
        self.imported: List[str] = []

    def import_package(self, package, srcdir, *, update=True, log_path=None):
        self.imported.append(package.name)
        raise CommandError(["git", "clone", package.url], 128, "", "repository not found")


class RecordingImporter:
    supports_status = False

    def __init__(self) -> None:
        self.imported: List[tuple] = []

    def import_package(self, package, srcdir, *, update=True, log_path=None):
        self.imported.append((package.name, srcdir, update))
        return True


class FakeInstaller:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.requests: List[List[str]] = []
        self.error = error

    def install(self, names):
        self.requests.append(list(names))
        if self.error is not None:
            raise self.error


def custom(name: str, **extra) -> dict:
    entry = {
        "name": name,
        "vcs": "local",
        "path": f"src/{name}",
        "type": "custom",
        "prepare": [f"prepare {name}"],
        "build": [f"build {name}"],
        "doc": [f"doc {name}"],
    }
    entry.update(extra)
    return entry


def add_sources(root: Path, name: str, manifest: Optional[dict] = None) -> None:
    srcdir = root / "src" / name
    srcdir.mkdir(parents=True, exist_ok=True)
    if manifest is not None:
        (srcdir / "manifest.yml").write_text(yaml.safe_dump(manifest))


def store(root: Path, *, osdeps: bool = False) -> ConfigStore:
    def no_prompt(question: str) -> str:
        raise AssertionError(f"unexpected question {question}")

    config = ConfigStore(path=root / "config" / "config.yml", prompt=no_prompt)
    config.set("parallel_builds", 1)
    config.set("install_osdeps", osdeps)
    return config


def make_orchestrator(root: Path, mode: Mode, runner=None, **kwargs) -> Orchestrator:
    options = RunOptions(mode=mode, selection=kwargs.pop("selection", []))
    return Orchestrator(
        root,
        options,
        config=kwargs.pop("config", None) or store(root),
        runner=runner or RecordingRunner(),
        **kwargs,
    )


def test_prepare_covers_all_members_and_build_only_enabled(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1"), custom("p2", enabled=False)]})
    add_sources(root, "p1", {"depends": ["p2"]})
    add_sources(root, "p2")
    runner = RecordingRunner()

    report = make_orchestrator(root, Mode.BUILD, runner).run()

    assert runner.commands == ["prepare p2", "prepare p1", "build p1"]
    assert not report.failures
    assert report.succeeded(Stage.PREPARE) == ["p2", "p1"]
    assert report.succeeded(Stage.BUILD) == ["p1"]
    env_script = (root / "install/base/env.sh").read_text()
    assert f"export PATH={root / 'install/base/bin'}" in env_script


def test_doc_mode_runs_documentation_commands(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")]})
    add_sources(root, "p1")
    runner = RecordingRunner()
    make_orchestrator(root, Mode.DOC, runner).run()
    assert runner.commands == ["prepare p1", "doc p1"]


def test_import_failure_aborts_only_its_own_set(make_workspace) -> None:
    root = make_workspace(
        {
            "broken": [custom("a1", vcs="git", url="https://example.com/a1.git"), custom("a2", vcs="git")],
            "good": [custom("b1")],
        }
    )
    add_sources(root, "b1")
    runner = RecordingRunner()
    failing = FailingImporter()
    orchestrator = make_orchestrator(
        root, Mode.BUILD, runner, importers={"git": failing, "local": LocalImporter()}
    )

    report = orchestrator.run()

    assert failing.imported == ["a1"]
    assert runner.commands == ["prepare b1", "build b1"]
    assert [(f.package, f.stage) for f in report.failures] == [("a1", Stage.IMPORT)]
    assert not (root / "install/broken/env.sh").exists()
    assert (root / "install/good/env.sh").exists()


def test_build_failure_is_collected_and_later_sets_continue(make_workspace) -> None:
    root = make_workspace({"first": [custom("a1")], "second": [custom("b1")]})
    add_sources(root, "a1")
    add_sources(root, "b1")
    commands: List[str] = []

    def runner(argv, **kwargs):
        commands.append(" ".join(argv))
        if argv == ["build", "a1"]:
            raise CommandError(argv, 2, "", "error: missing header")

    report = make_orchestrator(root, Mode.BUILD, runner).run()

    assert commands == ["prepare a1", "build a1", "prepare b1", "build b1"]
    assert [(f.package, f.stage) for f in report.failures] == [("a1", Stage.BUILD)]
    assert "build a1" in report.failures[0].reason
    assert "1 failure(s):" in report.render()


def test_osdeps_of_all_members_are_installed_before_prepare(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1"), custom("p2", enabled=False)]})
    add_sources(root, "p1", {"osdeps": ["boost", "cmake"]})
    add_sources(root, "p2", {"osdeps": ["cmake", "nokogiri"]})
    installer = FakeInstaller()

    report = make_orchestrator(root, Mode.BUILD, config=store(root, osdeps=True), installer=installer).run()

    assert installer.requests == [["boost", "cmake", "nokogiri"]]
    assert report.succeeded(Stage.OSDEPS) == ["base"]


def test_osdeps_resolution_failure_aborts_the_set(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")], "other": [custom("o1")]})
    add_sources(root, "p1", {"osdeps": ["baz"]})
    add_sources(root, "o1")
    runner = RecordingRunner()
    installer = FakeInstaller(UnsupportedOSVersion("baz", "debian", "jessie"))

    report = make_orchestrator(
        root, Mode.BUILD, runner, config=store(root, osdeps=True), installer=installer
    ).run()

    assert runner.commands == ["prepare o1", "build o1"]
    assert report.failures[0].stage is Stage.OSDEPS
    assert "jessie" in report.failures[0].reason


def test_unknown_dependency_is_a_configuration_error(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")]})
    add_sources(root, "p1", {"depends": ["ghost"]})
    with pytest.raises(ConfigError, match="ghost"):
        make_orchestrator(root, Mode.BUILD).run()


def test_status_mode_never_prepares(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")]})
    add_sources(root, "p1")
    runner = RecordingRunner()
    lines: List[str] = []

    make_orchestrator(root, Mode.STATUS, runner, out=lines.append).run()

    assert runner.commands == []
    assert lines == ["base:", "  p1: the local importer does not support status display"]


def test_osdeps_script_is_written_inside_the_workspace(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")]})
    orchestrator = make_orchestrator(root, Mode.BUILD)

    assert orchestrator.installer.script_path == root / "install" / "osdeps.sh"


def test_empty_selection_does_nothing(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1", enabled=False)]})
    runner = RecordingRunner()
    report = make_orchestrator(root, Mode.BUILD, runner).run()
    assert runner.commands == []
    assert report.results == []


def test_list_sources_prints_source_definitions(make_workspace) -> None:
    root = make_workspace({"base": [custom("p1")]})
    lines: List[str] = []
    make_orchestrator(root, Mode.LIST_SOURCES, out=lines.append).run()
    assert lines == ["base: local sources/base"]


def test_update_sources_imports_remote_definitions(tmp_path: Path) -> None:
    (tmp_path / "config").mkdir()
    (tmp_path / "config/manifest.yml").write_text(
        yaml.safe_dump(
            {
                "sources": [
                    {"name": "local-set", "path": "sources/local"},
                    {"name": "remote-set", "url": "https://example.com/set.git", "branch": "stable"},
                ]
            }
        )
    )
    importer = RecordingImporter()
    make_orchestrator(tmp_path, Mode.UPDATE_SOURCES, importers={"git": importer}).run()
    assert importer.imported == [("remote-set", tmp_path / "config/remotes/remote-set", True)]
