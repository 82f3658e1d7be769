from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest
import yaml


def write_yaml(path: Path, data: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False))
    return path


@pytest.fixture
def make_workspace(tmp_path: Path):
    """Create a workspace with local sources: ``{set name: [package dicts]}``."""

    def _make(sets: Dict[str, List[Dict[str, Any]]], osdeps: Dict[str, Any] | None = None) -> Path:
        sources = []
        for set_name, packages in sets.items():
            source_dir = tmp_path / "sources" / set_name
            write_yaml(source_dir / "source.yml", {"name": set_name, "packages": packages})
            sources.append({"name": set_name, "path": f"sources/{set_name}"})
        write_yaml(tmp_path / "config" / "manifest.yml", {"sources": sources})
        if osdeps is not None:
            write_yaml(tmp_path / "config" / "osdeps.yml", osdeps)
        return tmp_path

    return _make
