# gemflows/core/actions.py
"""Step executor
-----------------
Maps rendered workflow steps to their capability (console input, generation
provider, file sink, clipboard) and times each call.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from gemflows.core.workflow_loader import (
    ClipboardStep,
    GenerateStep,
    InputStep,
    SaveStep,
    StepKind,
)
from gemflows.exceptions import CapabilityError, StepCancelledError, UnsupportedStepTypeError
from gemflows.providers import GenerationProvider
from gemflows.utils.logger import get_logger, log_with_context
from gemflows.utils.timing import Stopwatch, format_duration

__all__ = [
    "CancelToken",
    "Capabilities",
    "StepResult",
    "StepExecutor",
]


# ------------- Capability contracts -------------

class InputSource(Protocol):
    def read_line(self, prompt: str) -> str: ...

    def read_until_end(self, prompt: str) -> str: ...

    def read_clipboard_after_confirm(self, prompt: str) -> str: ...


class ClipboardSink(Protocol):
    def write(self, text: str) -> None: ...


class FileSink(Protocol):
    def write(self, path: str, data: bytes) -> None: ...


@dataclass
class Capabilities:
    """Everything a step may touch. `generator` is None when no provider is configured."""
    input_source: Optional[InputSource] = None
    generator: Optional[GenerationProvider] = None
    clipboard: Optional[ClipboardSink] = None
    files: Optional[FileSink] = None


class CancelToken:
    """
    Shared cancellation flag for the tasks of one parallel group.

    Advisory only: the executor checks it before dispatching a step, but a
    call already blocked inside a provider is not interrupted.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass
class StepResult:
    output: str
    duration_ms: int
    step_id: str = ""
    step_type: str = ""


# ------------- Step executors -------------

def _do_input(caps: Capabilities, step: InputStep) -> str:
    if caps.input_source is None:
        raise CapabilityError("no input source configured")
    if step.from_clipboard:
        return caps.input_source.read_clipboard_after_confirm(step.prompt)
    if step.multiline:
        return caps.input_source.read_until_end(step.prompt)
    return caps.input_source.read_line(step.prompt)


def _do_generate(caps: Capabilities, step: GenerateStep) -> str:
    if caps.generator is None:
        raise CapabilityError("generation provider is not configured (set GEMINI_API_KEY)")
    if not step.model:
        raise CapabilityError("model is required")
    try:
        text = caps.generator.generate(step.model, step.system_prompt, step.user_prompt)
    except CapabilityError:
        raise
    except Exception as e:
        raise CapabilityError(f"generation failed: {e}") from e
    if not text:
        raise CapabilityError("no text in response")
    return text


def _do_save(caps: Capabilities, step: SaveStep) -> str:
    if not step.filename:
        raise CapabilityError("filename is required")
    if caps.files is None:
        raise CapabilityError("no file sink configured")
    caps.files.write(step.filename, step.content.encode("utf-8"))
    return step.filename


def _do_clipboard(caps: Capabilities, step: ClipboardStep) -> str:
    if not step.content:
        raise CapabilityError("content is required")
    if caps.clipboard is None:
        raise CapabilityError("no clipboard configured")
    caps.clipboard.write(step.content)
    return "copied"


# ------------- Dispatcher -------------

class StepExecutor:
    """Runs one already-rendered step and reports its output and duration."""

    def __init__(self, capabilities: Capabilities):
        self.capabilities = capabilities
        self.log = get_logger(__name__)

    def _dispatch(self, step: Any) -> str:
        caps = self.capabilities
        kind = getattr(step, "type", None)

        if kind == StepKind.input:
            return _do_input(caps, step)
        elif kind == StepKind.generate:
            return _do_generate(caps, step)
        elif kind == StepKind.save:
            return _do_save(caps, step)
        elif kind == StepKind.clipboard:
            return _do_clipboard(caps, step)
        else:
            raise UnsupportedStepTypeError(kind)

    def execute(self, step: Any, cancel_token: Optional[CancelToken] = None) -> StepResult:
        """
        Execute one rendered step.

        Raises the step's error unchanged; the caller attaches the step id.
        Duration covers the dispatch only and is reported on success.
        """
        step_id = getattr(step, "id", "?")
        step_type = str(getattr(step, "type", "?"))
        local_log = log_with_context(self.log, step_id=step_id, step_type=step_type)

        if cancel_token is not None and cancel_token.cancelled:
            raise StepCancelledError("cancelled after a sibling step failed")

        local_log.info(f"==> step {step_id} ({step_type})")
        sw = Stopwatch()
        try:
            with sw:
                output = self._dispatch(step)
        except Exception:
            local_log.debug(f"step {step_id} failed after {format_duration(sw.elapsed_ms())}")
            raise

        duration_ms = sw.elapsed_ms()
        local_log.info(f"<== completed {step_id} in {duration_ms}ms")
        return StepResult(output=output, duration_ms=duration_ms, step_id=step_id, step_type=step_type)
