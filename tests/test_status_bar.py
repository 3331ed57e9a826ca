"""Tests for the terminal status bar."""

from __future__ import annotations

import io

from rich.console import Console

from hifriend.cli_ui.status_bar import (
    ERROR_TEXT,
    EYE_CLOSED,
    EYE_OPEN,
    JUMP_TO_OUTPUT_COMMAND,
    TOGGLE_COMMAND,
    StatusBar,
    render_icons,
)


def make_bar(log_location: str | None = None) -> tuple[StatusBar, io.StringIO]:
    buffer = io.StringIO()
    return StatusBar(Console(file=buffer, width=120), log_location=log_location), buffer


class TestStatusBar:
    """Progress and toggle items."""

    def test_progress_spins(self):
        bar, buffer = make_bar()
        bar.show_progress("Try to start HiFriend for IDE")
        assert bar.progress_visible
        assert bar.progress_text == "$(sync~spin) Try to start HiFriend for IDE"
        assert "⟳ Try to start HiFriend for IDE" in buffer.getvalue()

    def test_toggle_hides_progress(self):
        bar, _ = make_bar()
        bar.show_progress("Ruby HiFriend is running")
        bar.show_toggle()
        assert not bar.progress_visible
        assert bar.toggle_text == EYE_OPEN
        assert bar.toggle_command == TOGGLE_COMMAND
        assert bar.signature_enabled

    def test_error_replaces_toggle(self):
        bar, buffer = make_bar(log_location="/tmp/hf.log")
        bar.show_toggle()
        bar.show_error()
        assert bar.error_visible
        assert not bar.signature_enabled
        assert bar.toggle_text == ERROR_TEXT
        assert bar.toggle_command == JUMP_TO_OUTPUT_COMMAND
        assert "/tmp/hf.log" in buffer.getvalue()

    def test_toggle_flips_eye(self):
        bar, _ = make_bar()
        bar.show_toggle()
        assert bar.toggle() is False
        assert bar.toggle_text == EYE_CLOSED
        assert bar.toggle() is True
        assert bar.toggle_text == EYE_OPEN

    def test_jump_to_output(self):
        bar, _ = make_bar(log_location="/tmp/hf.log")
        bar.show_progress("Starting Ruby HiFriend (0.30.1)...")
        assert bar.jump_to_output() == "/tmp/hf.log"
        assert not bar.progress_visible

    def test_reset_hides_everything(self):
        bar, _ = make_bar()
        bar.show_progress("x")
        bar.show_toggle()
        bar.reset()
        assert not bar.progress_visible
        assert not bar.toggle_visible


class TestRenderIcons:
    def test_markup_in_message_is_escaped(self):
        assert render_icons("[bold]x") == "\\[bold]x"

    def test_codicons_become_glyphs(self):
        assert render_icons(ERROR_TEXT) == "[red]✖[/red] HiFriend"
