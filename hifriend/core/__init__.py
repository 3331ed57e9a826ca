"""Core modules for the HiFriend session supervisor."""

from hifriend.core.config import SupervisorConfig, load_config
from hifriend.core.models import (
    HandshakeRecord,
    Invoking,
    Running,
    SessionState,
    WorkspaceFolder,
)
from hifriend.core.versions import MalformedVersionError, VersionTriple, compare_versions

__all__ = [
    "HandshakeRecord",
    "Invoking",
    "MalformedVersionError",
    "Running",
    "SessionState",
    "SupervisorConfig",
    "VersionTriple",
    "WorkspaceFolder",
    "compare_versions",
    "load_config",
]
