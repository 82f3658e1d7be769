from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from .errors import ConfigError
from .models import OSIdentity
from .osdeps import LANGUAGE_MANAGERS, DependencyCatalog, ResolvedDependencies
from .osprobe import detect
from .utils import format_argv, run_command

logger = logging.getLogger(__name__)

GAIN_ROOT_ACCESS = """\
if test `id -u` != "0"; then
    exec sudo /bin/bash $0 "$@"
fi
"""

OS_PACKAGE_INSTALL: Dict[str, str] = {
    "debian": "apt-get install %s",
}

SCRIPT_NAME = "osdeps.sh"

_SCRIPT_FLAGS = os.O_CREAT | os.O_EXCL | os.O_WRONLY | getattr(os, "O_NOFOLLOW", 0)

_INSTALL_LOCK = threading.Lock()


def build_install_script(
    native: Sequence[str],
    fragments: Sequence[str],
    os_identity: OSIdentity,
) -> str:
    try:
        template = OS_PACKAGE_INSTALL[os_identity.family]
    except KeyError:
        raise ConfigError(f"no package installation command known for {os_identity.family}") from None

    parts = [
        "#! /bin/bash\n",
        GAIN_ROOT_ACCESS,
        (template % " ".join(native)) + "\n",
    ]
    parts.extend(fragment.strip("\n") + "\n" for fragment in fragments)
    return "\n".join(parts)


class OSDepsInstaller:
    """Installs OS and language package dependencies named in a catalog."""

    def __init__(
        self,
        catalog: DependencyCatalog,
        *,
        os_detector: Callable[[], OSIdentity] = detect,
        script_path: str | Path = SCRIPT_NAME,
        runner: Callable[..., object] = run_command,
        verbose: bool = False,
    ) -> None:
        self.catalog = catalog
        self.os_detector = os_detector
        self.script_path = Path(script_path)
        self.runner = runner
        self.verbose = verbose
        self._os_identity: Optional[OSIdentity] = None

    @property
    def os_identity(self) -> OSIdentity:
        if self._os_identity is None:
            self._os_identity = self.os_detector()
        return self._os_identity

    def plan(self, names: Iterable[str]) -> ResolvedDependencies:
        """Partition then resolve; language packages skip OS detection."""

        os_names, language = self.catalog.partition(names)
        if os_names:
            resolved = self.catalog.resolve(os_names, self.os_identity)
        else:
            resolved = ResolvedDependencies()
        for manager, packages in language.items():
            resolved.language.setdefault(manager, []).extend(packages)
        return resolved

    def install(self, names: Iterable[str]) -> ResolvedDependencies:
        resolved = self.plan(names)
        with _INSTALL_LOCK:
            if resolved.native or resolved.fragments:
                self._run_script(resolved.native, resolved.fragments)
            for manager, packages in resolved.language.items():
                self._install_language_packages(manager, packages)
        return resolved

    def _run_script(self, native: List[str], fragments: List[str]) -> None:
        script = build_install_script(native, fragments, self.os_identity)
        if self.verbose:
            logger.info("Installing non-language OS dependencies with\n%s", script)
        logger.info("installing OS dependencies")
        fd = self._create_script()
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(script)
            self.runner(["bash", str(self.script_path)])
        finally:
            self.script_path.unlink(missing_ok=True)

    def _create_script(self) -> int:
        """Create the script file, refusing to reuse anything already at its path."""

        self.script_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            return os.open(self.script_path, _SCRIPT_FLAGS, 0o700)
        except FileExistsError:
            raise ConfigError(
                f"refusing to write the OS dependencies script: {self.script_path} already exists"
            ) from None

    def _install_language_packages(self, manager: str, packages: List[str]) -> None:
        argv = [*LANGUAGE_MANAGERS[manager], *packages]
        if self.verbose:
            logger.info("Installing %s dependencies with %s", manager, format_argv(argv))
        logger.info("installing %s dependencies", manager)
        self.runner(argv)
