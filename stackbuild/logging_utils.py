from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

LOG_FILE_NAME = "stackbuild.log"


def configure_logging(
    log_dir: str | Path,
    *,
    verbose: bool = False,
    also_console: bool = True,
) -> str:
    """Configure root logging for a run.

    The full DEBUG trail always goes to ``<log_dir>/stackbuild.log``; the
    console only shows INFO and above unless ``verbose`` is set. If the log
    directory is not writable the file lands in the current directory.

    Returns the actual file path being used.
    """

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    if getattr(root, "_stackbuild_configured", False):
        return getattr(root, "_stackbuild_log_path")

    fmt = logging.Formatter(
        fmt="%(asctime)s %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S%z",
    )

    requested = Path(log_dir) / LOG_FILE_NAME
    file_handler: Optional[logging.Handler] = None
    try:
        requested.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(requested)
        chosen_path = str(requested)
    except OSError:
        fallback = Path.cwd() / LOG_FILE_NAME
        file_handler = logging.FileHandler(fallback)
        chosen_path = str(fallback)
    file_handler.setFormatter(fmt)
    file_handler.setLevel(logging.DEBUG)
    root.addHandler(file_handler)

    if also_console:
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter("%(message)s"))
        console.setLevel(logging.DEBUG if verbose else logging.INFO)
        root.addHandler(console)

    setattr(root, "_stackbuild_configured", True)
    setattr(root, "_stackbuild_log_path", chosen_path)

    logging.getLogger(__name__).debug("Logging initialized (requested=%s, actual=%s)", requested, chosen_path)
    return chosen_path
