# gemflows/core/templating.py
"""Template rendering
----------------------
Resolves `{{ step_id }}` tokens against the outputs already stored in memory.
"""

from __future__ import annotations

import re
from typing import Mapping, TypeVar

from gemflows.core.workflow_loader import TEMPLATED_FIELDS
from gemflows.exceptions import MissingVariablesError

__all__ = ["TOKEN_RE", "render_string", "render_step"]

TOKEN_RE = re.compile(r"\{\{\s*([a-zA-Z0-9_\-]+)\s*\}\}")

S = TypeVar("S")


def render_string(template: str, memory: Mapping[str, str]) -> str:
    """
    Replace every token with its memory value.

    Unknown identifiers render as nothing and are collected; if any were
    found, MissingVariablesError lists them once each in first-seen order.
    """
    if not template:
        return ""

    missing: list[str] = []

    def repl(m: re.Match) -> str:
        key = m.group(1)
        if key in memory:
            return memory[key]
        if key not in missing:
            missing.append(key)
        return ""

    out = TOKEN_RE.sub(repl, template)
    if missing:
        raise MissingVariablesError(missing)
    return out


def render_step(step: S, memory: Mapping[str, str]) -> S:
    """
    Return a copy of `step` with its templated fields rendered.

    Fields are rendered one by one in TEMPLATED_FIELDS order and the first
    failure propagates; fields the step type does not carry are skipped.
    """
    updates: dict[str, str] = {}
    for field in TEMPLATED_FIELDS:
        if not hasattr(step, field):
            continue
        updates[field] = render_string(getattr(step, field), memory)
    return step.model_copy(update=updates)
