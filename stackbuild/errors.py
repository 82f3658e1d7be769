from __future__ import annotations


class StackBuildError(RuntimeError):
    """Base class for errors raised by stackbuild."""


class ConfigError(StackBuildError):
    """Raised for user-facing configuration problems; aborts the whole run."""


class CatalogError(ConfigError):
    """Raised when a catalog or source document cannot be parsed."""


class UnknownOperatingSystem(StackBuildError):
    """Raised when none of the known OS release markers is present."""


class OSDependencyError(StackBuildError):
    """Raised when an OS dependency cannot be resolved for the current OS."""

    def __init__(self, name: str, message: str) -> None:
        self.name = name
        super().__init__(message)


class UndefinedDependency(OSDependencyError):
    def __init__(self, name: str) -> None:
        super().__init__(name, f"the OS dependency {name} is not defined")


class UnsupportedOS(OSDependencyError):
    def __init__(self, name: str, family: str) -> None:
        self.family = family
        super().__init__(name, f"no data for installing the OS dependency {name} on {family}")


class UnsupportedOSVersion(OSDependencyError):
    def __init__(self, name: str, family: str, version: str) -> None:
        self.family = family
        self.version = version
        super().__init__(
            name,
            f"no information for installing the OS dependency {name} "
            f"on this specific version of {family} ({version})",
        )


class StageFailure(StackBuildError):
    """Raised when one stage of one package fails."""

    def __init__(self, package: str, stage: str, reason: str) -> None:
        self.package = package
        self.stage = stage
        self.reason = reason
        super().__init__(f"{package}: {stage} failed: {reason}")
