"""Engine process adapters."""

from .subprocess_channel import EngineLaunchError, SubprocessChannel

__all__ = ["EngineLaunchError", "SubprocessChannel"]
