"""Spawning and controlling hi-friend server processes."""

from hifriend.process.launcher import LaunchFailedError, ProcessLauncher, ServerProcess

__all__ = ["LaunchFailedError", "ProcessLauncher", "ServerProcess"]
