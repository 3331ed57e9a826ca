"""Terminal UI components for the supervisor."""

from hifriend.cli_ui.status_bar import StatusBar, StatusSurface

__all__ = ["StatusBar", "StatusSurface"]
