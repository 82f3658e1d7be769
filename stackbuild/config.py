from __future__ import annotations

import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

TRUE_STRINGS = ("on", "yes", "y", "true")
FALSE_STRINGS = ("off", "no", "n", "false")

MAX_ATTEMPTS = 5

Prompt = Callable[[str], str]


class InputError(ValueError):
    """Raised when an answer does not validate; the question is asked again."""


def validate_boolean(value: Any, option: "BuildOption") -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in TRUE_STRINGS:
        return True
    if text in FALSE_STRINGS:
        return False
    raise InputError(
        f"invalid boolean value '{value}', accepted values are "
        f"'{', '.join(TRUE_STRINGS)}' for true, and '{', '.join(FALSE_STRINGS)}' for false"
    )


def validate_string(value: Any, option: "BuildOption") -> str:
    text = str(value)
    if option.possible_values and text not in option.possible_values:
        raise InputError(
            f"invalid value '{text}', accepted values are '{', '.join(option.possible_values)}'"
        )
    return text


_VALIDATORS: Dict[str, Callable[[Any, "BuildOption"], Any]] = {
    "boolean": validate_boolean,
    "string": validate_string,
}


@dataclass
class BuildOption:
    name: str
    type: str
    doc: str = ""
    default: Any = None
    possible_values: Sequence[str] = ()
    validator: Optional[Callable[[Any], Any]] = None

    def __post_init__(self) -> None:
        if self.type not in _VALIDATORS:
            raise ConfigError(f"invalid option type {self.type}")
        if not self.doc:
            self.doc = f"{self.name} (no documentation for this option)"

    def validate(self, value: Any) -> Any:
        value = _VALIDATORS[self.type](value, self)
        if self.validator is not None:
            value = self.validator(value)
        return value

    def ask(self, current_value: Any, prompt: Prompt, *, max_attempts: int = MAX_ATTEMPTS) -> Any:
        default_value = current_value if current_value is not None else self.default
        last_error: Optional[InputError] = None
        for _ in range(max_attempts):
            answer = prompt(f"  {self.doc} [{_display(default_value)}] ").strip()
            if answer == "":
                if default_value is None:
                    last_error = InputError("an answer is required")
                    logger.warning(str(last_error))
                    continue
                answer = default_value
            try:
                return self.validate(answer)
            except InputError as exc:
                last_error = exc
                logger.warning(str(exc))
        raise ConfigError(f"no valid answer for option '{self.name}': {last_error}")


def _display(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return "" if value is None else str(value)


def stdin_prompt(text: str) -> str:
    sys.stderr.write(text)
    sys.stderr.flush()
    line = sys.stdin.readline()
    if not line:
        raise ConfigError("standard input closed while waiting for a configuration answer")
    return line.rstrip("\n")


@dataclass
class ConfigStore:
    """Persisted configuration answers.

    Each key maps to ``(value, presented)``: values loaded from disk start
    with ``presented`` false and are shown (or asked again on reconfigure)
    the first time they are read in a run.
    """

    path: Optional[Path] = None
    prompt: Prompt = stdin_prompt
    reconfigure: bool = False
    options: Dict[str, BuildOption] = field(default_factory=dict)
    _values: Dict[str, Tuple[Any, bool]] = field(default_factory=dict)

    @classmethod
    def load(cls, path: str | Path, *, prompt: Prompt = stdin_prompt, reconfigure: bool = False) -> "ConfigStore":
        store = cls(path=Path(path), prompt=prompt, reconfigure=reconfigure)
        if store.path.exists():
            try:
                data = yaml.safe_load(store.path.read_text(encoding="utf-8")) or {}
            except yaml.YAMLError as exc:
                raise ConfigError(f"cannot parse configuration file {path}: {exc}") from exc
            if not isinstance(data, dict):
                raise ConfigError(f"configuration file {path} must contain a mapping")
            for key, value in data.items():
                store._values[str(key)] = (value, False)
        return store

    def declare(self, name: str, type: str, **kwargs: Any) -> BuildOption:
        option = BuildOption(name=name, type=type, **kwargs)
        self.options[name] = option
        return option

    def __contains__(self, key: str) -> bool:
        return key in self._values

    def get(self, key: str) -> Any:
        value, presented = self._values.get(key, (None, False))
        if value is None or (not presented and self.reconfigure):
            return self.configure(key)
        if not presented:
            option = self.options.get(key)
            doc = option.doc if option is not None else key
            logger.info("  %s: %s", doc, _display(value))
            self._values[key] = (value, True)
        return value

    def set(self, key: str, value: Any) -> None:
        self._values[key] = (value, True)

    def configure(self, key: str) -> Any:
        option = self.options.get(key)
        if option is None:
            raise ConfigError(f"undeclared option '{key}'")
        current = self._values.get(key, (None, False))[0]
        value = option.ask(current, self.prompt)
        self._values[key] = (value, True)
        return value

    def configure_all(self) -> None:
        for key in self.options:
            self.configure(key)

    def save(self) -> None:
        if self.path is None:
            raise ConfigError("configuration store has no file to save to")
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {key: value for key, (value, _) in self._values.items()}
        self.path.write_text(yaml.safe_dump(data, sort_keys=True), encoding="utf-8")


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InputError(f"'{value}' is not an integer") from None
    if number < 1:
        raise InputError(f"expected a positive number, got {number}")
    return number


def declare_standard_options(store: ConfigStore) -> ConfigStore:
    store.declare(
        "install_osdeps",
        "boolean",
        doc="Should OS dependencies be installed automatically",
        default=True,
    )
    store.declare(
        "parallel_builds",
        "string",
        doc="How many packages may be processed in parallel",
        default="1",
        validator=positive_int,
    )
    return store
