from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace
from typing import Dict, List, Optional

import pytest

from stackbuild.errors import ConfigError
from stackbuild.importers import GitImporter, LocalImporter
from stackbuild.models import PackageSpec, SyncState, VCSStatus
from stackbuild.status import IN_SYNC, collect_statuses, render_status
from stackbuild.utils import CommandError


def clean(name: str) -> VCSStatus:
    return VCSStatus.from_counts(name, 0, 0)


def test_clean_packages_coalesce_into_one_line() -> None:
    statuses = [clean(name) for name in ("e", "c", "a", "d", "b")]
    assert render_status(statuses) == [f"a, b, c, d, e: {IN_SYNC}"]


def test_diverged_package_splits_the_clean_run() -> None:
    diverged = VCSStatus.from_counts(
        "c",
        2,
        3,
        local_commits=["1111111 local one", "2222222 local two"],
        remote_commits=["3333333 r1", "4444444 r2", "5555555 r3"],
    )
    assert diverged.state is SyncState.DIVERGED
    lines = render_status([clean("a"), clean("b"), diverged, clean("d"), clean("e")])

    assert lines[0] == f"a, b: {IN_SYNC}"
    assert lines[1] == "c:"
    assert "respectively 2 and 3 commits" in lines[2]
    local_header = lines.index("  local-only commits:")
    remote_header = lines.index("  remote-only commits:")
    assert lines[local_header + 1 : remote_header] == ["    1111111 local one", "    2222222 local two"]
    assert lines[remote_header + 1 : remote_header + 4] == ["    3333333 r1", "    4444444 r2", "    5555555 r3"]
    assert lines[-1] == f"d, e: {IN_SYNC}"


def test_uncommitted_changes_break_the_run() -> None:
    dirty = VCSStatus.from_counts("b", 0, 0, uncommitted=True)
    lines = render_status([clean("a"), dirty, clean("c")])
    assert lines == [
        f"a: {IN_SYNC}",
        "b:",
        "  contains uncommitted modifications",
        f"  {IN_SYNC}",
        f"c: {IN_SYNC}",
    ]


def test_advanced_and_behind_show_commit_counts() -> None:
    lines = render_status([VCSStatus.from_counts("a", 4, 0), VCSStatus.from_counts("b", 0, 1)])
    assert lines == [
        "a:",
        "  local contains 4 commit(s) that remote does not have",
        "b:",
        "  remote contains 1 commit(s) that local does not have",
    ]


class FakeGit:
    def __init__(self, outputs: Dict[str, str], broken: Optional[Path] = None) -> None:
        self.outputs = outputs
        self.broken = broken
        self.calls: List[List[str]] = []

    def __call__(self, argv, **kwargs):
        self.calls.append(list(argv))
        if kwargs.get("cwd") == self.broken:
            raise CommandError(argv, 128, "", "fatal: couldn't find remote ref master")
        key = argv[1]
        if key == "log":
            key = f"log {argv[-1]}"
        return SimpleNamespace(returncode=0, stdout=self.outputs.get(key, ""), stderr="")


def test_git_status_parses_counts_and_summaries(tmp_path: Path) -> None:
    runner = FakeGit(
        {
            "rev-list": "2\t1\n",
            "status": " M src/main.cpp\n",
            "log FETCH_HEAD..HEAD": "abc1234 local change\ndef5678 another\n",
            "log HEAD..FETCH_HEAD": "0123456 upstream fix\n",
        }
    )
    status = GitImporter(runner).status(PackageSpec(name="pkg", branch="main"), tmp_path)

    assert runner.calls[0] == ["git", "fetch", "origin", "main"]
    assert status.state is SyncState.DIVERGED
    assert (status.local_count, status.remote_count) == (2, 1)
    assert status.uncommitted
    assert status.local_commits == ("abc1234 local change", "def5678 another")
    assert status.remote_commits == ("0123456 upstream fix",)


def test_importers_without_status_support_are_reported_not_failed(tmp_path: Path) -> None:
    (tmp_path / "git").mkdir()
    (tmp_path / "local").mkdir()
    runner = FakeGit({"rev-list": "0 0"})
    importers = {"git": GitImporter(runner), "local": LocalImporter()}
    packages = [
        (PackageSpec(name="tracked"), tmp_path / "git"),
        (PackageSpec(name="vendored", vcs="local", path="local"), tmp_path / "local"),
        (PackageSpec(name="absent"), tmp_path / "absent"),
    ]

    statuses, notices = collect_statuses(packages, importers)

    assert [s.package for s in statuses] == ["tracked"]
    assert statuses[0].is_clean_sync
    assert notices == {
        "vendored": "vendored: the local importer does not support status display",
        "absent": "absent: not checked out",
    }


def test_failing_package_does_not_hide_the_others(tmp_path: Path) -> None:
    for name in ("a", "b", "c"):
        (tmp_path / name).mkdir()
    runner = FakeGit({"rev-list": "0\t0\n"}, broken=tmp_path / "a")
    packages = [(PackageSpec(name=name), tmp_path / name) for name in ("a", "b", "c")]

    statuses, notices = collect_statuses(packages, {"git": GitImporter(runner)})

    assert [s.package for s in statuses] == ["b", "c"]
    assert list(notices) == ["a"]
    assert notices["a"].startswith("a: cannot get status: Command git fetch origin master failed")
    assert render_status(statuses, notices) == [notices["a"], f"b, c: {IN_SYNC}"]


def test_notices_are_placed_in_name_order() -> None:
    notices = {"c": "c: not checked out", "z": "z: not checked out"}
    lines = render_status([clean("a"), clean("b"), clean("d"), VCSStatus.from_counts("e", 1, 0)], notices)

    assert lines == [
        f"a, b: {IN_SYNC}",
        "c: not checked out",
        f"d: {IN_SYNC}",
        "e:",
        "  local contains 1 commit(s) that remote does not have",
        "z: not checked out",
    ]


def test_local_importer_refuses_status_queries(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="does not support status"):
        LocalImporter().status(PackageSpec(name="vendored", vcs="local"), tmp_path)
