# gemflows/io/clipboard.py
"""System clipboard
--------------------
Reads and writes the clipboard through the platform's helper binaries
(pbcopy/pbpaste, clip/PowerShell, wl-clipboard, xclip, xsel).
"""

from __future__ import annotations

import shutil
import subprocess
import sys
from typing import Optional, Sequence

from gemflows.exceptions import CapabilityError, ClipboardUnavailableError
from gemflows.utils.logger import get_logger

__all__ = ["SystemClipboard", "copy_command", "paste_command"]


# Linux helpers in order of preference
_LINUX_COPY = (
    ("wl-copy",),
    ("xclip", "-selection", "clipboard"),
    ("xsel", "--clipboard", "--input"),
)
_LINUX_PASTE = (
    ("wl-paste", "-n"),
    ("xclip", "-selection", "clipboard", "-o"),
    ("xsel", "--clipboard", "--output"),
)


def _first_available(candidates: Sequence[tuple[str, ...]]) -> Optional[list[str]]:
    for cmd in candidates:
        if shutil.which(cmd[0]):
            return list(cmd)
    return None


def copy_command(platform: Optional[str] = None) -> list[str]:
    plat = platform or sys.platform
    if plat == "darwin":
        return ["pbcopy"]
    if plat.startswith("win"):
        return ["cmd", "/c", "clip"]
    cmd = _first_available(_LINUX_COPY)
    if cmd is None:
        raise ClipboardUnavailableError("no clipboard helper found (install wl-copy, xclip, or xsel)")
    return cmd


def paste_command(platform: Optional[str] = None) -> list[str]:
    plat = platform or sys.platform
    if plat == "darwin":
        return ["pbpaste"]
    if plat.startswith("win"):
        return ["powershell", "-NoProfile", "-Command", "Get-Clipboard -Raw"]
    cmd = _first_available(_LINUX_PASTE)
    if cmd is None:
        raise ClipboardUnavailableError("no clipboard helper found (install wl-paste, xclip, or xsel)")
    return cmd


class SystemClipboard:
    """Clipboard sink/source backed by an external helper process."""

    def __init__(self, platform: Optional[str] = None):
        self.platform = platform
        self.log = get_logger(__name__)

    def _run(self, cmd: list[str], stdin: Optional[str] = None) -> str:
        self.log.debug(f"clipboard helper: {' '.join(cmd)}")
        try:
            proc = subprocess.run(
                cmd,
                input=stdin,
                capture_output=True,
                text=True,
                encoding="utf-8",
                check=True,
            )
        except FileNotFoundError as e:
            raise ClipboardUnavailableError(f"clipboard helper not found: {cmd[0]}") from e
        except subprocess.CalledProcessError as e:
            detail = (e.stderr or "").strip()
            raise CapabilityError(f"{cmd[0]} exited with status {e.returncode}{': ' + detail if detail else ''}") from e
        return proc.stdout

    def write(self, text: str) -> None:
        self._run(copy_command(self.platform), stdin=text)

    def read(self) -> str:
        return self._run(paste_command(self.platform))
