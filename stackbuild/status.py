"""Aggregated synchronization report for many packages.

Packages that are in sync with their remote and have no local modifications
are coalesced into a single line; every other package gets its own block::

    base/logging, base/types: local and remote are in sync
    base/scripts:
      contains uncommitted modifications
      local and remote have diverged with respectively 2 and 3 commits each
      local-only commits:
        1a2b3c4 fix the frobnicator
        ...
      remote-only commits:
        ...
    drivers/camera: local and remote are in sync
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .importers import Importer, importer_for
from .models import PackageSpec, SyncState, VCSStatus
from .utils import CommandError

logger = logging.getLogger(__name__)

IN_SYNC = "local and remote are in sync"


def collect_statuses(
    packages: Iterable[Tuple[PackageSpec, Path]],
    importers: Dict[str, Importer],
) -> Tuple[List[VCSStatus], Dict[str, str]]:
    """Query every package; returns the statuses and the degraded notices by package."""

    statuses: List[VCSStatus] = []
    notices: Dict[str, str] = {}
    for package, srcdir in packages:
        importer = importer_for(importers, package.vcs)
        if not importer.supports_status:
            notice = f"{package.name}: the {package.vcs} importer does not support status display"
        elif not srcdir.exists():
            notice = f"{package.name}: not checked out"
        else:
            try:
                statuses.append(importer.status(package, srcdir))
                continue
            except CommandError as exc:
                notice = f"{package.name}: cannot get status: {exc}"
        logger.warning(notice)
        notices[package.name] = notice
    return statuses, notices


def _detail_lines(status: VCSStatus) -> List[str]:
    lines = [f"{status.package}:"]
    if status.uncommitted:
        lines.append("  contains uncommitted modifications")

    if status.state is SyncState.UP_TO_DATE:
        lines.append(f"  {IN_SYNC}")
    elif status.state is SyncState.ADVANCED:
        lines.append(f"  local contains {status.local_count} commit(s) that remote does not have")
    elif status.state is SyncState.BEHIND:
        lines.append(f"  remote contains {status.remote_count} commit(s) that local does not have")
    else:
        lines.append(
            "  local and remote have diverged with respectively "
            f"{status.local_count} and {status.remote_count} commits each"
        )
        lines.append("  local-only commits:")
        lines.extend(f"    {summary}" for summary in status.local_commits)
        lines.append("  remote-only commits:")
        lines.extend(f"    {summary}" for summary in status.remote_commits)
    return lines


def render_status(statuses: Sequence[VCSStatus], notices: Optional[Mapping[str, str]] = None) -> List[str]:
    """Render the report; notices take the place of their package in name order."""

    notices = notices or {}
    entries: List[Tuple[str, Optional[VCSStatus]]] = [(s.package, s) for s in statuses]
    entries.extend((name, None) for name in notices)
    lines: List[str] = []
    clean_run: List[str] = []

    def flush() -> None:
        if clean_run:
            lines.append(f"{', '.join(clean_run)}: {IN_SYNC}")
            clean_run.clear()

    for name, status in sorted(entries, key=lambda entry: entry[0]):
        if status is None:
            flush()
            lines.append(notices[name])
            continue
        if status.is_clean_sync:
            clean_run.append(status.package)
            continue
        flush()
        lines.extend(_detail_lines(status))
    flush()
    return lines
