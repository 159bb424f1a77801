"""
Custom Exceptions
This module defines the error taxonomy of the workflow engine so callers can
tell a malformed recipe from a failing step.
"""

from __future__ import annotations

from typing import Iterable


class GemflowsError(Exception):
    """Base exception for all errors raised by gemflows."""

    pass


class ConfigurationError(GemflowsError):
    """An error related to settings or capability configuration."""

    pass


class WorkflowValidationError(GemflowsError):
    """The workflow is malformed (schema, duplicate ids, bad type, bad parallel group)."""

    pass


class RenderError(GemflowsError):
    """A templated field could not be rendered."""

    pass


class MissingVariablesError(RenderError):
    """One or more `{{var}}` tokens had no value in memory."""

    def __init__(self, missing: Iterable[str]):
        self.missing = list(missing)
        super().__init__(f"missing variables: {', '.join(self.missing)}")


class CapabilityError(GemflowsError):
    """The side effect behind a step failed (provider, clipboard, file, input)."""

    pass


class ClipboardUnavailableError(CapabilityError):
    """No clipboard helper is available on this host."""

    pass


class StepCancelledError(CapabilityError):
    """A parallel sibling failed before this step was dispatched."""

    pass


class UnsupportedStepTypeError(GemflowsError):
    """The step carries a type the executor does not know."""

    def __init__(self, step_type: object):
        self.step_type = step_type
        super().__init__(f"unsupported step type: {step_type}")


class StepFailedError(GemflowsError):
    """Wraps any error raised while running a step with that step's id."""

    def __init__(self, step_id: str, cause: BaseException):
        self.step_id = step_id
        self.cause = cause
        super().__init__(f"step {step_id} failed: {cause}")


class RecipeFetchError(GemflowsError):
    """A recipe could not be resolved locally or from the remote catalog."""

    pass
