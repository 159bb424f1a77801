# gemflows/core/memory.py
"""Per-run memory
------------------
Maps step id -> output for the duration of one run. Each key is written once,
by the engine, right after its step succeeded.
"""

from __future__ import annotations

from typing import Iterator, Mapping, Optional


class Memory(Mapping[str, str]):
    """Append-only step output store read by the template renderer."""

    def __init__(self) -> None:
        self._values: dict[str, str] = {}

    def set(self, step_id: str, value: str) -> None:
        if step_id in self._values:
            raise KeyError(f"memory already holds an output for step {step_id!r}")
        self._values[step_id] = value

    def get(self, step_id: str, default: Optional[str] = None) -> Optional[str]:
        return self._values.get(step_id, default)

    def __getitem__(self, step_id: str) -> str:
        return self._values[step_id]

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._values

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def snapshot(self) -> dict[str, str]:
        """Independent copy; later writes are not visible through it."""
        return dict(self._values)

    def as_dict(self) -> dict[str, str]:
        return dict(self._values)

    def __repr__(self) -> str:
        return f"Memory({self._values!r})"
