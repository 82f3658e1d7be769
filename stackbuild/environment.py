from __future__ import annotations

import logging
import os
import shlex
import threading
from pathlib import Path
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)


class Environment:
    """Environment variables contributed by the prepare stage of packages.

    Path-like variables accumulate entries (newest first, no duplicates) and
    are prepended to whatever the caller's environment already holds; plain
    variables are overwritten.
    """

    def __init__(self) -> None:
        self._paths: Dict[str, List[str]] = {}
        self._values: Dict[str, str] = {}
        self._lock = threading.Lock()

    def add_path(self, name: str, value: str | Path) -> None:
        value = str(value)
        with self._lock:
            entries = self._paths.setdefault(name, [])
            if value in entries:
                entries.remove(value)
            entries.insert(0, value)

    def set(self, name: str, value: str) -> None:
        with self._lock:
            self._values[name] = value

    def add_prefix(self, prefix: str | Path) -> None:
        prefix = Path(prefix)
        self.add_path("PATH", prefix / "bin")
        self.add_path("LD_LIBRARY_PATH", prefix / "lib")
        self.add_path("PKG_CONFIG_PATH", prefix / "lib" / "pkgconfig")
        self.add_path("CMAKE_PREFIX_PATH", prefix)

    def update(self, other: "Environment") -> None:
        for name, entries in other._paths.items():
            for value in reversed(entries):
                self.add_path(name, value)
        for name, value in other._values.items():
            self.set(name, value)

    def is_empty(self) -> bool:
        return not (self._paths or self._values)

    def resolved(self, base: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        """Variables to pass to a subprocess, layered on top of ``base``."""

        base = os.environ if base is None else base
        result: Dict[str, str] = {}
        with self._lock:
            for name, entries in self._paths.items():
                existing = base.get(name)
                result[name] = os.pathsep.join(entries + ([existing] if existing else []))
            result.update(self._values)
        return result

    def export_script(self) -> str:
        lines = []
        with self._lock:
            for name in sorted(self._paths):
                joined = os.pathsep.join(self._paths[name])
                lines.append(f'export {name}={shlex.quote(joined)}"${{{name}:+:${name}}}"')
            for name in sorted(self._values):
                lines.append(f"export {name}={shlex.quote(self._values[name])}")
        return "\n".join(lines) + "\n"

    def write(self, path: str | Path) -> Path:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.export_script(), encoding="utf-8")
        logger.info("environment written to %s", path)
        return path
