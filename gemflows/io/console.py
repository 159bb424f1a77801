# gemflows/io/console.py
"""Interactive console input
-----------------------------
Prompts on stdout and reads answers from stdin. The clipboard-confirm mode
waits for Enter and then reads the system clipboard.
"""

from __future__ import annotations

import sys
from typing import Optional, Protocol, TextIO

import click

from gemflows.exceptions import CapabilityError

DEFAULT_LINE_PROMPT = "Input:"
DEFAULT_MULTILINE_PROMPT = "Paste input (end with Ctrl-D):"
DEFAULT_CLIPBOARD_PROMPT = "Copy the text you want to use, then press Enter to read from clipboard:"


class ClipboardReader(Protocol):
    def read(self) -> str: ...


class ConsoleInput:
    """Input source for `input` steps backed by a text stream (stdin by default)."""

    def __init__(self, clipboard: Optional[ClipboardReader] = None, stream: Optional[TextIO] = None):
        self.clipboard = clipboard
        self._stream = stream

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdin

    def read_line(self, prompt: str) -> str:
        click.echo(f"{prompt or DEFAULT_LINE_PROMPT} ", nl=False)
        try:
            line = self.stream.readline()
        except OSError as e:
            raise CapabilityError(f"read input: {e}") from e
        # EOF without a newline still counts as an answer
        return line.rstrip("\r\n")

    def read_until_end(self, prompt: str) -> str:
        click.echo(prompt or DEFAULT_MULTILINE_PROMPT)
        try:
            text = self.stream.read()
        except OSError as e:
            raise CapabilityError(f"read input: {e}") from e
        return text.rstrip("\r\n")

    def read_clipboard_after_confirm(self, prompt: str) -> str:
        if self.clipboard is None:
            raise CapabilityError("no clipboard configured for clipboard input")
        click.echo(prompt or DEFAULT_CLIPBOARD_PROMPT)
        click.echo("Press Enter when ready (or Ctrl-C to cancel): ", nl=False)
        self.stream.readline()

        data = self.clipboard.read().rstrip("\r\n")
        if not data.strip():
            raise CapabilityError("clipboard is empty")
        return data
