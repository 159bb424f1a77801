# gemflows/io/files.py
from __future__ import annotations

import os
from pathlib import Path

from gemflows.exceptions import CapabilityError


class LocalFileSink:
    """Writes step output to the local filesystem."""

    def write(self, path: str | os.PathLike, data: bytes) -> None:
        try:
            Path(path).write_bytes(data)
        except OSError as e:
            raise CapabilityError(f"write {path}: {e.strerror or e}") from e
