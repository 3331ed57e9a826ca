"""Terminal rendition of the editor status bar items.

There is exactly one toggle item and one progress item for all sessions;
they show whatever the most recently acted-upon session last reported.
"""

from typing import Protocol

from rich.console import Console
from rich.markup import escape

EYE_OPEN = "HiFriend $(eye)"
EYE_CLOSED = "HiFriend $(eye-closed)"
ERROR_TEXT = "$(error) HiFriend"

TOGGLE_COMMAND = "hi-friend.toggle"
JUMP_TO_OUTPUT_COMMAND = "hi-friend.jumpToOutputChannel"

_ICONS = {
    "$(sync~spin)": "[cyan]⟳[/cyan]",
    "$(eye)": "[green]◉[/green]",
    "$(eye-closed)": "[dim]◎[/dim]",
    "$(error)": "[red]✖[/red]",
}


class StatusSurface(Protocol):
    """UI affordances the supervisor drives."""

    def show_progress(self, message: str) -> None: ...

    def hide_progress(self) -> None: ...

    def show_toggle(self) -> None: ...

    def show_error(self) -> None: ...

    def toggle(self) -> bool: ...

    def jump_to_output(self) -> str | None: ...

    def reset(self) -> None: ...


def render_icons(text: str) -> str:
    text = escape(text)
    for codicon, glyph in _ICONS.items():
        text = text.replace(escape(codicon), glyph)
    return text


class StatusBar:
    """Progress item (left) and toggle/error item (right), printed with rich."""

    def __init__(self, console: Console | None = None, log_location: str | None = None):
        self.console = console or Console(stderr=True)
        self.log_location = log_location

        self.progress_text = ""
        self.progress_visible = False

        self.toggle_text = ""
        self.toggle_command: str | None = None
        self.toggle_visible = False

    @property
    def signature_enabled(self) -> bool:
        return self.toggle_visible and self.toggle_text == EYE_OPEN

    @property
    def error_visible(self) -> bool:
        return self.toggle_visible and self.toggle_text == ERROR_TEXT

    def show_progress(self, message: str) -> None:
        self.progress_text = f"$(sync~spin) {message}"
        self.progress_visible = True
        self._print(self.progress_text)

    def hide_progress(self) -> None:
        self.progress_visible = False

    def show_toggle(self) -> None:
        self.hide_progress()
        self.toggle_text = EYE_OPEN
        self.toggle_command = TOGGLE_COMMAND
        self.toggle_visible = True
        self._print(self.toggle_text)

    def show_error(self) -> None:
        self.hide_progress()
        self.toggle_text = ERROR_TEXT
        self.toggle_command = JUMP_TO_OUTPUT_COMMAND
        self.toggle_visible = True
        self._print(self.toggle_text)
        if self.log_location:
            self.console.print(f"  See the output log: {escape(self.log_location)}")

    def toggle(self) -> bool:
        """Flip signature display. Returns True if now enabled."""
        if self.toggle_text == EYE_OPEN:
            self.toggle_text = EYE_CLOSED
        else:
            self.toggle_text = EYE_OPEN
        self._print(self.toggle_text)
        return self.toggle_text == EYE_OPEN

    def jump_to_output(self) -> str | None:
        """Where the output log lives; hides the progress item."""
        self.hide_progress()
        return self.log_location

    def reset(self) -> None:
        self.progress_visible = False
        self.toggle_visible = False

    def _print(self, text: str) -> None:
        self.console.print(render_icons(text))
