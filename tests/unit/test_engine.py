import threading
import time
import textwrap

import pytest

from conftest import FakeFiles, FakeGenerator, FakeInput, RecordingTelemetry

from gemflows.core import engine as engine_mod
from gemflows.core.actions import Capabilities
from gemflows.core.engine import Engine, engine_session, run_workflow
from gemflows.core.workflow_loader import Workflow, parse_step, parse_workflow, plan_segments
from gemflows.exceptions import (
    CapabilityError,
    MissingVariablesError,
    StepCancelledError,
    StepFailedError,
    WorkflowValidationError,
)
from gemflows.utils.config import Settings


def _wf(yaml_text: str):
    return parse_workflow(textwrap.dedent(yaml_text))


def test_end_to_end_input_then_generate(capabilities, fake_input, generator, telemetry):
    fake_input.lines = ["cats"]
    wf = _wf(
        """
        name: blog
        steps:
          - id: topic
            type: input
          - id: post
            type: generate
            model: gemini-2.5-flash
            user_prompt: "Write about {{topic}}"
        """
    )
    memory = Engine(capabilities, telemetry=telemetry).run(wf)

    assert memory["topic"] == "cats"
    assert generator.calls == [("gemini-2.5-flash", "", "Write about cats")]
    assert memory == {"topic": "cats", "post": "generated: Write about cats"}
    assert [(e[0], e[1], e[2]) for e in telemetry.events] == [
        ("blog", "topic", "input"),
        ("blog", "post", "generate"),
    ]
    assert all(isinstance(e[3], int) and e[3] >= 0 for e in telemetry.events)


def test_sequential_failure_stops_run_and_names_step(capabilities, generator, telemetry):
    generator.fail_on = {"boom": RuntimeError("provider down")}
    wf = _wf(
        """
        name: seq
        steps:
          - id: one
            type: generate
            model: m
            user_prompt: first
          - id: two
            type: generate
            model: m
            user_prompt: boom
          - id: three
            type: generate
            model: m
            user_prompt: "{{one}}"
        """
    )
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities, telemetry=telemetry).run(wf)

    assert ei.value.step_id == "two"
    assert isinstance(ei.value.cause, CapabilityError)
    assert "step two failed" in str(ei.value)
    assert [c[2] for c in generator.calls] == ["first", "boom"]
    assert [e[1] for e in telemetry.events] == ["one"]


def test_render_error_is_attributed_to_step(capabilities, generator):
    wf = _wf(
        """
        name: render
        steps:
          - id: post
            type: generate
            model: m
            user_prompt: "Write about {{topic}}"
        """
    )
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities).run(wf)
    assert ei.value.step_id == "post"
    assert isinstance(ei.value.cause, MissingVariablesError)
    assert ei.value.cause.missing == ["topic"]
    assert generator.calls == []


def test_later_steps_see_earlier_outputs(capabilities):
    files = capabilities.files
    wf = _wf(
        """
        name: chain
        steps:
          - id: a
            type: generate
            model: m
            user_prompt: alpha
          - id: b
            type: save
            filename: "{{a}}.txt"
            content: "A={{a}}"
        """
    )
    memory = Engine(capabilities).run(wf)
    assert memory == {"a": "generated: alpha", "b": "generated: alpha.txt"}
    assert files.written == {"generated: alpha.txt": b"A=generated: alpha"}


def test_plan_segments_groups_only_contiguous_tags():
    wf = _wf(
        """
        name: plan
        steps:
          - {id: a, type: generate, parallel_group: g}
          - {id: b, type: generate, parallel_group: g}
          - {id: c, type: generate}
          - {id: d, type: generate, parallel_group: g}
          - {id: e, type: generate, parallel_group: h}
        """
    )
    segments = [([s.id for s in seg.steps], seg.group) for seg in plan_segments(wf.steps)]
    assert segments == [(["a", "b"], "g"), (["c"], None), (["d"], "g"), (["e"], "h")]


def test_parallel_group_merges_in_declared_order(capabilities, generator, telemetry):
    # the first member finishes last
    def reply(model, system, user):
        if user == "slow":
            time.sleep(0.2)
        return f"out-{user}"

    generator.reply = reply
    wf = _wf(
        """
        name: par
        steps:
          - {id: seed, type: generate, model: m, user_prompt: seed}
          - {id: slow, type: generate, model: m, user_prompt: slow, parallel_group: g}
          - {id: fast, type: generate, model: m, user_prompt: fast, parallel_group: g}
          - {id: after, type: generate, model: m, user_prompt: "{{slow}}+{{fast}}"}
        """
    )
    memory = Engine(capabilities, telemetry=telemetry).run(wf)

    assert list(memory) == ["seed", "slow", "fast", "after"]
    assert memory["after"] == "out-out-slow+out-fast"
    assert [e[1] for e in telemetry.events] == ["seed", "slow", "fast", "after"]


def test_parallel_group_uses_snapshot(capabilities, generator):
    wf = _wf(
        """
        name: snap
        steps:
          - {id: p1, type: generate, model: m, user_prompt: one, parallel_group: g}
          - {id: p2, type: generate, model: m, user_prompt: "{{p1}}", parallel_group: g}
        """
    )
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities).run(wf)
    assert ei.value.step_id == "p2"
    assert isinstance(ei.value.cause, MissingVariablesError)
    # rendering happens before any member is launched
    assert generator.calls == []


def test_parallel_failure_waits_for_siblings_and_commits_nothing(capabilities, generator, telemetry):
    started = threading.Event()
    finished = threading.Event()

    def reply(model, system, user):
        if user == "b":
            # fail only once A is inside its provider call
            started.wait(timeout=5)
            raise RuntimeError("B failed")
        started.set()
        time.sleep(0.2)
        finished.set()
        return "A done"

    generator.reply = reply
    wf = _wf(
        """
        name: par_fail
        steps:
          - {id: A, type: generate, model: m, user_prompt: a, parallel_group: g}
          - {id: B, type: generate, model: m, user_prompt: b, parallel_group: g}
          - {id: C, type: generate, model: m, user_prompt: c}
        """
    )
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities, telemetry=telemetry).run(wf)

    assert ei.value.step_id == "B"
    assert "B failed" in str(ei.value.cause)
    assert finished.is_set()
    assert telemetry.events == []
    assert sorted(c[2] for c in generator.calls) == ["a", "b"]


def test_parallel_multiple_failures_report_lowest_index(capabilities, generator):
    barrier = threading.Barrier(2, timeout=5)

    def reply(model, system, user):
        if user in ("x", "y"):
            # both failing members are dispatched before either fails
            barrier.wait()
            raise RuntimeError(f"{user} broke")
        return "fine"

    generator.reply = reply
    wf = _wf(
        """
        name: both_fail
        steps:
          - {id: ok, type: generate, model: m, user_prompt: fine, parallel_group: g}
          - {id: X, type: generate, model: m, user_prompt: x, parallel_group: g}
          - {id: Y, type: generate, model: m, user_prompt: y, parallel_group: g}
        """
    )
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities).run(wf)
    assert ei.value.step_id == "X"


def test_parallel_cancellation_skips_queued_siblings(capabilities, generator):
    generator.fail_on = {"first": RuntimeError("first broke")}
    wf = _wf(
        """
        name: cancel
        steps:
          - {id: one, type: generate, model: m, user_prompt: first, parallel_group: g}
          - {id: two, type: generate, model: m, user_prompt: second, parallel_group: g}
        """
    )
    # one worker: `two` is still queued when `one` fails
    settings = Settings(MAX_PARALLEL_STEPS=1)
    with pytest.raises(StepFailedError) as ei:
        Engine(capabilities, settings=settings).run(wf)

    assert ei.value.step_id == "one"
    assert not isinstance(ei.value.cause, StepCancelledError)
    assert [c[2] for c in generator.calls] == ["first"]


def _unchecked_wf(name, steps):
    # bypasses Workflow validation to exercise the engine's own group check
    return Workflow.model_construct(name=name, description="", steps=[parse_step(s) for s in steps])


def test_parallel_group_with_mixed_types_rejected_before_execution(capabilities, generator):
    files = capabilities.files
    wf = _unchecked_wf(
        "mixed",
        [
            {"id": "gen", "type": "generate", "model": "m", "user_prompt": "hi", "parallel_group": "g"},
            {"id": "out", "type": "save", "filename": "f.txt", "content": "x", "parallel_group": "g"},
        ],
    )
    with pytest.raises(WorkflowValidationError, match="mixes step types"):
        Engine(capabilities).run(wf)
    assert generator.calls == []
    assert files.written == {}


def test_parallel_group_of_unsupported_type_rejected(capabilities, fake_input):
    fake_input.lines = ["a", "b"]
    wf = _unchecked_wf(
        "inputs",
        [
            {"id": "a", "type": "input", "parallel_group": "g"},
            {"id": "b", "type": "input", "parallel_group": "g"},
        ],
    )
    with pytest.raises(WorkflowValidationError, match="only supports generate"):
        Engine(capabilities).run(wf)
    assert fake_input.prompts == []


def test_run_workflow_uses_default_capabilities(tmp_path, monkeypatch):
    gen = FakeGenerator()
    caps = Capabilities(input_source=FakeInput(lines=["dogs"]), generator=gen, files=FakeFiles())
    monkeypatch.setattr(engine_mod, "default_capabilities", lambda settings=None: caps)

    path = tmp_path / "wf.yaml"
    path.write_text(
        textwrap.dedent(
            """
            name: shim
            steps:
              - {id: topic, type: input}
              - {id: post, type: generate, model: m, user_prompt: "About {{topic}}"}
            """
        ),
        encoding="utf-8",
    )
    memory = run_workflow(path)
    assert memory == {"topic": "dogs", "post": "generated: About dogs"}


class ClosingGenerator(FakeGenerator):
    def __init__(self):
        super().__init__()
        self.closed = False

    def close(self):
        self.closed = True


class ClosingTelemetry(RecordingTelemetry):
    def __init__(self):
        super().__init__()
        self.closed = False

    def close(self):
        self.closed = True


def test_engine_session_releases_resources_after_failure(monkeypatch):
    gen = ClosingGenerator()
    sink = ClosingTelemetry()
    caps = Capabilities(generator=gen, files=FakeFiles())
    monkeypatch.setattr(engine_mod, "default_capabilities", lambda settings=None: caps)
    monkeypatch.setattr(engine_mod.PostHogSink, "from_settings", classmethod(lambda cls, settings=None: sink))

    wf = _wf(
        """
        name: closing
        steps:
          - {id: post, type: generate, model: m, user_prompt: hi}
          - {id: out, type: save, content: "{{post}}"}
        """
    )
    with pytest.raises(StepFailedError):
        with engine_session() as engine:
            engine.run(wf)

    assert gen.closed
    assert sink.closed
    assert [e[1] for e in sink.events] == ["post"]
