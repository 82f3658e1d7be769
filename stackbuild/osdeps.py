"""Catalog of OS dependencies.

A catalog document maps a dependency name either to a language package marker
(``gem``, ``pip``) or to a mapping from OS family to an install action::

    boost:
      debian: [libboost-dev, libboost-thread-dev]
    cmake:
      debian: cmake
    sdformat:
      debian:
        bookworm: libsdformat-dev
    nokogiri: gem

Every value is classified into one :data:`Action` variant when the document is
loaded; resolution only switches on those variants.
"""

from __future__ import annotations

import logging
import re
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Tuple, Union

import yaml

from .errors import CatalogError, UndefinedDependency, UnsupportedOS, UnsupportedOSVersion
from .models import OSIdentity
from .utils import load_document

logger = logging.getLogger(__name__)

# marker literal -> argv prefix of the language package manager install command
LANGUAGE_MANAGERS: Dict[str, List[str]] = {
    "gem": ["gem", "install"],
    "pip": [sys.executable, "-m", "pip", "install"],
}

_SINGLE_TOKEN = re.compile(r"^\S+$")


@dataclass(frozen=True)
class NativeList:
    names: Tuple[str, ...]


@dataclass(frozen=True)
class NativeSingle:
    name: str


@dataclass(frozen=True)
class ShellFragment:
    text: str


@dataclass(frozen=True)
class LanguageMarker:
    manager: str


@dataclass(frozen=True)
class VersionedMapping:
    versions: Mapping[str, "Action"]


Action = Union[NativeList, NativeSingle, ShellFragment, VersionedMapping, LanguageMarker]

# A definition is either a bare marker or a mapping from OS family to an action.
Definition = Union[LanguageMarker, Mapping[str, Action]]


def classify(value: Any, *, allow_versions: bool = True) -> Action:
    """Turn one raw catalog value into exactly one action variant."""

    if isinstance(value, (list, tuple)):
        if not all(isinstance(item, str) for item in value):
            raise CatalogError(f"package lists may only contain strings, got {value!r}")
        return NativeList(tuple(value))
    if isinstance(value, str):
        text = value.strip()
        if text in LANGUAGE_MANAGERS:
            return LanguageMarker(text)
        if _SINGLE_TOKEN.match(text):
            return NativeSingle(text)
        return ShellFragment(value)
    if isinstance(value, dict):
        if not allow_versions:
            raise CatalogError("version mappings cannot be nested")
        return VersionedMapping(
            {str(label): classify(item, allow_versions=False) for label, item in value.items()}
        )
    raise CatalogError(f"invalid OS dependency definition {value!r}")


def _parse_definition(name: str, raw: Any) -> Definition:
    if isinstance(raw, str):
        marker = raw.strip()
        if marker not in LANGUAGE_MANAGERS:
            raise CatalogError(f"unknown OS-independent package management type {raw!r} for {name}")
        return LanguageMarker(marker)
    if isinstance(raw, dict):
        return {str(family): classify(value) for family, value in raw.items()}
    raise CatalogError(f"invalid definition for the OS dependency {name}: {raw!r}")


def _language_manager(definition: Definition) -> str | None:
    if isinstance(definition, LanguageMarker):
        return definition.manager
    managers = {
        action.manager if isinstance(action, LanguageMarker) else None
        for action in definition.values()
    }
    if len(managers) == 1:
        return managers.pop()
    return None


@dataclass
class ResolvedDependencies:
    native: List[str] = field(default_factory=list)
    fragments: List[str] = field(default_factory=list)
    language: Dict[str, List[str]] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not (self.native or self.fragments or self.language)


@dataclass(frozen=True)
class DependencyCatalog:
    """Read-only mapping from dependency names to per-OS install actions."""

    definitions: Mapping[str, Definition] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DependencyCatalog":
        return cls({str(name): _parse_definition(str(name), raw) for name, raw in data.items()})

    @classmethod
    def load(cls, path: str | Path) -> "DependencyCatalog":
        try:
            data = load_document(path)
        except yaml.YAMLError as exc:
            raise CatalogError(f"cannot parse OS dependency file {path}: {exc}") from exc
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise CatalogError(f"{path}: OS dependency file must contain a mapping")
        logger.debug("Loaded %d OS dependency definitions from %s", len(data), path)
        return cls.from_dict(data)

    def merge(self, other: "DependencyCatalog") -> "DependencyCatalog":
        """Return a catalog where each name defined in ``other`` replaces ours whole."""

        merged = dict(self.definitions)
        merged.update(other.definitions)
        return DependencyCatalog(merged)

    def __contains__(self, name: str) -> bool:
        return name in self.definitions

    def __len__(self) -> int:
        return len(self.definitions)

    def _definition(self, name: str) -> Definition:
        try:
            return self.definitions[name]
        except KeyError:
            raise UndefinedDependency(name) from None

    def partition(self, names: Iterable[str]) -> Tuple[List[str], Dict[str, List[str]]]:
        """Split names into OS dependencies and language packages (by manager).

        Only the raw definitions are inspected, so language packages never go
        through OS resolution.
        """

        os_names: List[str] = []
        language: Dict[str, List[str]] = {}
        for name in dict.fromkeys(names):
            manager = _language_manager(self._definition(name))
            if manager is None:
                os_names.append(name)
            else:
                language.setdefault(manager, []).append(name)
        return os_names, language

    def resolve(self, names: Iterable[str], os_identity: OSIdentity) -> ResolvedDependencies:
        resolved = ResolvedDependencies()
        for name in names:
            definition = self._definition(name)
            if isinstance(definition, LanguageMarker):
                resolved.language.setdefault(definition.manager, []).append(name)
                continue

            action = definition.get(os_identity.family)
            if action is None:
                raise UnsupportedOS(name, os_identity.family)
            if isinstance(action, VersionedMapping):
                action = action.versions.get(os_identity.version)
                if action is None:
                    raise UnsupportedOSVersion(name, os_identity.family, os_identity.version)

            if isinstance(action, NativeList):
                resolved.native.extend(action.names)
            elif isinstance(action, NativeSingle):
                resolved.native.append(action.name)
            elif isinstance(action, ShellFragment):
                resolved.fragments.append(action.text)
            elif isinstance(action, LanguageMarker):
                resolved.language.setdefault(action.manager, []).append(name)
        return resolved
