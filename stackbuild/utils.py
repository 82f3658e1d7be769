from __future__ import annotations

import json
import logging
import os
import shlex
import subprocess
from pathlib import Path
from typing import Any, Mapping, Sequence

import yaml

logger = logging.getLogger(__name__)


class CommandError(RuntimeError):
    """Raised when a subprocess exits with a non-zero status code."""

    def __init__(self, command: Sequence[str], returncode: int, stdout: str, stderr: str) -> None:
        self.command = list(command)
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(f"Command {format_argv(command)} failed with exit code {returncode}")


def format_argv(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(a)) for a in argv)


def run_command(
    command: Sequence[str],
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    check: bool = True,
    log_path: str | Path | None = None,
) -> subprocess.CompletedProcess[str]:
    """Execute a subprocess command and return the completed process.

    When ``log_path`` is given, the command line and its output are appended
    to that file.
    """

    argv = [str(a) for a in command]
    logger.debug("CMD %s", format_argv(argv))

    process_env = os.environ.copy()
    if env:
        process_env.update(env)

    result = subprocess.run(
        argv,
        cwd=str(cwd) if cwd else None,
        env=process_env,
        stdout=subprocess.PIPE,
        stderr=subprocess.PIPE,
        text=True,
        check=False,
    )
    if log_path is not None:
        append_log(log_path, argv, result)
    if check and result.returncode != 0:
        raise CommandError(argv, result.returncode, result.stdout, result.stderr)
    return result


def append_log(path: str | Path, argv: Sequence[str], result: subprocess.CompletedProcess[str]) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as handle:
        handle.write(f"$ {format_argv(argv)}\n")
        if result.stdout:
            handle.write(result.stdout)
        if result.stderr:
            handle.write(result.stderr)
        handle.write(f"[exit {result.returncode}]\n")


def ensure_directory(path: str | Path) -> Path:
    """Create a directory and return its Path object."""

    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def load_document(path: str | Path) -> Any:
    """Parse a JSON or YAML document; an empty file yields None."""

    path = Path(path)
    raw_text = path.read_text(encoding="utf-8")
    try:
        return json.loads(raw_text)
    except json.JSONDecodeError:
        return yaml.safe_load(raw_text)
