from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Dict, Optional

from .errors import UnknownOperatingSystem
from .models import OSIdentity

logger = logging.getLogger(__name__)


def _read_marker(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="ignore").strip()
    except OSError:
        return None


def _debian_version(root: Path) -> Optional[str]:
    return _read_marker(root / "etc/debian_version")


# family -> probe returning the version label, or None when the marker is absent
_RELEASE_PROBES: Dict[str, Callable[[Path], Optional[str]]] = {
    "debian": _debian_version,
}


def detect(root: str | Path = "/") -> OSIdentity:
    """Return the family and version label of the running operating system."""

    root = Path(root)
    for family, probe in _RELEASE_PROBES.items():
        version = probe(root)
        if version is not None:
            identity = OSIdentity(family=family, version=version)
            logger.debug("Detected operating system %s %s", identity.family, identity.version)
            return identity
    raise UnknownOperatingSystem("Unknown operating system")
