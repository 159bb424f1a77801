# gemflows/core/workflow_loader.py
"""Workflow schema and loader
-----------------------------
Defines the pydantic models for recipes and their steps and loads YAML
workflows, including normalization of the legacy `gemini` step type and
multi-doc files.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Iterator, Literal, Optional, Sequence, Union

import yaml
from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from gemflows.exceptions import WorkflowValidationError


# ---------- Core enums ----------


class StepKind(str, Enum):
    input = "input"
    generate = "generate"
    save = "save"
    clipboard = "clipboard"


LEGACY_STEP_TYPES = {"gemini": StepKind.generate.value}

# Render order is fixed; see templating.render_step.
TEMPLATED_FIELDS = ("prompt", "user_prompt", "system_prompt", "model", "filename", "content")


# ---------- Step models (discriminated union by 'type') ----------


class StepBase(BaseModel):
    id: str = Field(..., description="Unique key; later steps read the output as {{id}}")
    type: str
    parallel_group: Optional[str] = Field(default=None, description="Contiguous steps with the same tag run concurrently")

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("id is required")
        return v

    @field_validator("parallel_group")
    @classmethod
    def _blank_group_is_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        return v.strip() or None


class InputStep(StepBase):
    type: Literal["input"]
    prompt: str = ""
    multiline: bool = False
    from_clipboard: bool = False


class GenerateStep(StepBase):
    type: Literal["generate"]
    model: str = ""
    system_prompt: str = ""
    user_prompt: str = ""


class SaveStep(StepBase):
    type: Literal["save"]
    filename: str = ""
    content: str = ""


class ClipboardStep(StepBase):
    type: Literal["clipboard"]
    content: str = ""


Step = Annotated[
    Union[InputStep, GenerateStep, SaveStep, ClipboardStep],
    Field(discriminator="type"),
]

_step_adapter: TypeAdapter = TypeAdapter(Step)


def parse_step(data: dict) -> Union[InputStep, GenerateStep, SaveStep, ClipboardStep]:
    """Validate a single step mapping (used by tests and tooling)."""
    return _step_adapter.validate_python(_normalize_step(data))


# ---------- Parallel groups ----------

# Step types allowed inside a parallel group
PARALLEL_STEP_TYPES = frozenset({StepKind.generate.value})


@dataclass
class Segment:
    """A single sequential step or one parallel group, in declared order."""
    steps: Sequence[Any]
    group: Optional[str] = None

    @property
    def is_parallel(self) -> bool:
        return self.group is not None


def plan_segments(steps: Sequence[Any]) -> Iterator[Segment]:
    """
    Split the step list into sequential steps and parallel groups.

    A group is the maximal contiguous run of steps sharing one non-empty
    `parallel_group` tag.
    """
    i = 0
    while i < len(steps):
        tag = getattr(steps[i], "parallel_group", None)
        if not tag:
            yield Segment(steps=[steps[i]])
            i += 1
            continue
        j = i
        while j < len(steps) and getattr(steps[j], "parallel_group", None) == tag:
            j += 1
        yield Segment(steps=list(steps[i:j]), group=tag)
        i = j


def validate_parallel_group(group: str, steps: Sequence[Any]) -> None:
    types = {str(getattr(s, "type", "")) for s in steps}
    if len(types) > 1:
        found = ", ".join(f"{s.id}={s.type}" for s in steps)
        raise WorkflowValidationError(f"parallel_group {group!r} mixes step types ({found})")
    for s in steps:
        if s.type not in PARALLEL_STEP_TYPES:
            raise WorkflowValidationError(
                f"parallel_group {group!r} only supports generate steps for now (got {s.type} for {s.id})"
            )


# ---------- Workflow model ----------


class Workflow(BaseModel):
    name: str = Field(..., description="Recipe name, reported with every telemetry event")
    description: str = ""
    steps: list[Step]

    @field_validator("name")
    @classmethod
    def _name_non_empty(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name is required")
        return v

    @field_validator("steps")
    @classmethod
    def _steps_non_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("steps is required")
        return v

    @model_validator(mode="after")
    def _unique_ids(self) -> "Workflow":
        seen: set[str] = set()
        for step in self.steps:
            if step.id in seen:
                raise ValueError(f"duplicate step id: {step.id}")
            seen.add(step.id)
        return self

    @model_validator(mode="after")
    def _valid_parallel_groups(self) -> "Workflow":
        for segment in plan_segments(self.steps):
            if not segment.is_parallel:
                continue
            try:
                validate_parallel_group(segment.group, segment.steps)
            except WorkflowValidationError as e:
                raise ValueError(str(e)) from e
        return self


# ---------- Normalization ----------


def _normalize_step(s: dict) -> dict:
    t = s.get("type")
    if isinstance(t, str):
        key = t.strip().lower()
        s = {**s, "type": LEGACY_STEP_TYPES.get(key, key)}
    return s


def _normalize(data: dict) -> dict:
    steps = data.get("steps")
    if isinstance(steps, list):
        data = {**data, "steps": [_normalize_step(s) if isinstance(s, dict) else s for s in steps]}
    # YAML turns `description:` with no value into None
    if data.get("description") is None:
        data = {**data, "description": ""}
    return data


def _format_validation_error(origin: str, ve: ValidationError) -> str:
    lines = [f"Invalid workflow '{origin}':"]
    for e in ve.errors():
        loc = ".".join(str(p) for p in e.get("loc", []))
        msg = e.get("msg", "invalid value")
        lines.append(f"  - {loc}: {msg}" if loc else f"  - {msg}")
    return "\n".join(lines)


def _validate(data: object, origin: str) -> Workflow:
    if not isinstance(data, dict):
        raise WorkflowValidationError(f"Workflow YAML in {origin} must define a mapping/object at the top level.")
    try:
        return Workflow.model_validate(_normalize(data))
    except ValidationError as ve:
        raise WorkflowValidationError(_format_validation_error(origin, ve)) from ve


# ---------- Public API ----------


def parse_workflow(data: str | bytes, origin: str = "<memory>") -> Workflow:
    """Parse YAML text into a validated Workflow."""
    if isinstance(data, bytes):
        try:
            data = data.decode("utf-8")
        except UnicodeDecodeError as ue:
            raise WorkflowValidationError(f"Workflow in {origin} is not valid UTF-8: {ue}") from ue
    try:
        raw = yaml.safe_load(data)
    except yaml.YAMLError as ye:
        raise WorkflowValidationError(f"YAML parse error in {origin}: {ye}") from ye
    return _validate(raw, origin)


def load_workflow(path: Path | str) -> Workflow:
    wf_path = Path(path)
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    return parse_workflow(wf_path.read_text(encoding="utf-8"), origin=str(wf_path))


def load_workflows_file(path: Path | str) -> list[Workflow]:
    """Load one or more workflows from a YAML file (supports multi-document)."""
    wf_path = Path(path)
    if not wf_path.exists():
        raise FileNotFoundError(f"Workflow file not found: {wf_path}")
    try:
        docs = list(yaml.safe_load_all(wf_path.read_text(encoding="utf-8")))
    except yaml.YAMLError as ye:
        raise WorkflowValidationError(f"YAML parse error in {wf_path}: {ye}") from ye

    out: list[Workflow] = []
    for idx, data in enumerate(docs, start=1):
        if data is None:
            continue
        out.append(_validate(data, f"{wf_path} (document {idx})"))
    if not out:
        raise WorkflowValidationError(f"No workflow documents found in {wf_path}")
    return out


def _is_yaml(name: str) -> bool:
    low = name.lower()
    return low.endswith(".yaml") or low.endswith(".yml")


def load_from_workflows_dir(directory: Path | str, key: str) -> Workflow:
    """Resolve `key` inside a workflows directory (`key.yaml`, then `key.yml`)."""
    root = Path(directory)
    if Path(key).suffix:
        candidates = [root / key]
    else:
        candidates = [root / f"{key}.yaml", root / f"{key}.yml"]

    last_err: Optional[Exception] = None
    for candidate in candidates:
        try:
            return load_workflow(candidate)
        except (FileNotFoundError, WorkflowValidationError) as e:
            last_err = e
    raise last_err


def list_keys(directory: Path | str) -> list[str]:
    """Workflow keys (file stems) available in a directory; [] if it does not exist."""
    root = Path(directory)
    if not root.is_dir():
        return []
    keys = {p.stem for p in root.iterdir() if p.is_file() and _is_yaml(p.name) and p.stem}
    return sorted(keys)


__all__ = [
    "StepKind",
    "StepBase",
    "InputStep",
    "GenerateStep",
    "SaveStep",
    "ClipboardStep",
    "Step",
    "TEMPLATED_FIELDS",
    "Workflow",
    "Segment",
    "PARALLEL_STEP_TYPES",
    "plan_segments",
    "validate_parallel_group",
    "parse_step",
    "parse_workflow",
    "load_workflow",
    "load_workflows_file",
    "load_from_workflows_dir",
    "list_keys",
]
