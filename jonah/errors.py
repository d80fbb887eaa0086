"""Exception types raised by the build orchestrator."""
from __future__ import annotations


class JonahError(RuntimeError):
    """Base class for errors that abort a build."""


class ConfigError(JonahError):
    """Raised when a descriptor is malformed or structurally invalid."""


class ResolveError(JonahError):
    """Raised when a project source cannot be made available locally."""


class BuildError(JonahError):
    """Raised when the container image build fails."""


class ContainerError(JonahError):
    """Raised when a container cannot be created from the built image."""
