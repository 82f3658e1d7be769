"""Meta-build orchestration for stacks of packages grouped in package sets."""

from .catalog import SourceCatalog, Workspace
from .orchestrator import Mode, Orchestrator, RunOptions
from .osdeps import DependencyCatalog

__all__ = ["DependencyCatalog", "Mode", "Orchestrator", "RunOptions", "SourceCatalog", "Workspace"]
