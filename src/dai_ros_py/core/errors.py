"""
Error taxonomy shared by the runtime, the execution context and the streamers.

Registration errors are logged by the execution context and re-raised so the
caller decides whether to continue; publish errors always propagate.
"""

from __future__ import annotations


class DaiRosError(RuntimeError):
    """Base class for every error raised by dai_ros_py."""


class ConfigurationError(DaiRosError):
    """Unknown executor kind, out-of-order call or uninitialized runtime."""


class ResourceNotFoundError(DaiRosError):
    """A package resource, plugin record or plugin class could not be found."""


class ParseError(DaiRosError):
    """A resource index record is malformed."""


class LoadError(DaiRosError):
    """A plugin library failed to load."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Failed to load library '{path}'. Reason: {reason}")
        self.path = path
        self.reason = reason


class TransportError(DaiRosError):
    """A message could not be handed to the transport."""


__all__ = [
    "ConfigurationError",
    "DaiRosError",
    "LoadError",
    "ParseError",
    "ResourceNotFoundError",
    "TransportError",
]
