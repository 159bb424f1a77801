# gemflows/core/engine.py
"""Workflow engine
-------------------
Walks a validated workflow, runs plain steps one at a time and contiguous
`parallel_group` runs concurrently, threads outputs through memory and reports
each completed step to the telemetry sink.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, wait
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Sequence

from gemflows.core.actions import CancelToken, Capabilities, StepExecutor, StepResult
from gemflows.core.memory import Memory
from gemflows.core.templating import render_step
from gemflows.core.workflow_loader import (
    Workflow,
    load_workflow,
    plan_segments,
    validate_parallel_group,
)
from gemflows.exceptions import StepCancelledError, StepFailedError
from gemflows.telemetry import TelemetrySink
from gemflows.telemetry.posthog import PostHogSink
from gemflows.utils.config import Settings, get_settings
from gemflows.utils.logger import get_logger, log_with_context


class Engine:
    """Runs workflows against a set of capabilities and reports step telemetry."""

    def __init__(
        self,
        capabilities: Capabilities,
        telemetry: Optional[TelemetrySink] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.executor = StepExecutor(capabilities)
        self.telemetry = telemetry
        self.log = get_logger(__name__)

    # ---- telemetry ----

    def _report(self, wf: Workflow, result: StepResult) -> None:
        if self.telemetry is None:
            return
        self.telemetry.report_step_completed(wf.name, result.step_id, result.step_type, result.duration_ms)

    # ---- sequential ----

    def _run_sequential(self, wf: Workflow, raw: Any, memory: Memory) -> None:
        try:
            step = render_step(raw, memory)
            result = self.executor.execute(step)
        except Exception as e:
            raise StepFailedError(raw.id, e) from e

        memory.set(step.id, result.output)
        self._report(wf, result)

    # ---- parallel ----

    def _run_parallel_group(self, wf: Workflow, group: str, raws: Sequence[Any], memory: Memory) -> None:
        # Workflow validation already checks groups; this covers models built without it
        validate_parallel_group(group, raws)

        group_log = log_with_context(self.log, parallel_group=group)
        group_log.info(f"==> parallel group {group!r} ({len(raws)} steps)")

        # Every member sees memory as it was before the group started
        snapshot = memory.snapshot()
        steps = []
        for raw in raws:
            try:
                steps.append(render_step(raw, snapshot))
            except Exception as e:
                raise StepFailedError(raw.id, e) from e

        token = CancelToken()

        def _task(step: Any) -> StepResult:
            try:
                return self.executor.execute(step, cancel_token=token)
            except Exception:
                token.cancel()
                raise

        workers = max(1, min(len(steps), self.settings.MAX_PARALLEL_STEPS))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"group-{group}") as pool:
            futures: list[Future] = [pool.submit(_task, step) for step in steps]
            wait(futures)

        failures = [(idx, f.exception()) for idx, f in enumerate(futures) if f.exception() is not None]
        if failures:
            real = [(idx, err) for idx, err in failures if not isinstance(err, StepCancelledError)]
            idx, err = (real or failures)[0]
            group_log.error(f"parallel group {group!r} failed at step {steps[idx].id}: {err}")
            raise StepFailedError(steps[idx].id, err) from err

        results = [f.result() for f in futures]
        for result in results:
            memory.set(result.step_id, result.output)
        for result in results:
            self._report(wf, result)
        group_log.info(f"<== completed parallel group {group!r}")

    # ---- public ----

    def run(self, wf: Workflow) -> dict[str, str]:
        """
        Execute every step of `wf` in order and return the final memory.

        Any failure aborts the run with StepFailedError naming the step; the
        memory of a failed run is discarded.
        """
        memory = Memory()
        wf_log = log_with_context(self.log, workflow=wf.name)
        wf_log.info(f"Starting workflow: {wf.name} (steps={len(wf.steps)})")

        for segment in plan_segments(wf.steps):
            if segment.is_parallel:
                self._run_parallel_group(wf, segment.group, segment.steps, memory)
            else:
                self._run_sequential(wf, segment.steps[0], memory)

        wf_log.info(f"Workflow {wf.name} completed")
        return memory.as_dict()


def default_capabilities(settings: Optional[Settings] = None) -> Capabilities:
    """Console input, system clipboard, local files and Gemini (if configured)."""
    from gemflows.io.clipboard import SystemClipboard
    from gemflows.io.console import ConsoleInput
    from gemflows.io.files import LocalFileSink
    from gemflows.providers.gemini import GeminiProvider

    s = settings or get_settings()
    clipboard = SystemClipboard()
    return Capabilities(
        input_source=ConsoleInput(clipboard=clipboard),
        generator=GeminiProvider.from_settings(s),
        clipboard=clipboard,
        files=LocalFileSink(),
    )


@contextmanager
def engine_session(settings: Optional[Settings] = None) -> Iterator[Engine]:
    """
    Engine wired to the default capabilities and PostHog telemetry.

    The telemetry sink is flushed and the generation provider closed on exit,
    whether or not the run succeeded.
    """
    s = settings or get_settings()
    caps = default_capabilities(s)
    telemetry = PostHogSink.from_settings(s)
    try:
        yield Engine(caps, telemetry=telemetry, settings=s)
    finally:
        if telemetry is not None:
            telemetry.close()
        close = getattr(caps.generator, "close", None)
        if callable(close):
            close()


def run_workflow(workflow: Path | str | Workflow, settings: Optional[Settings] = None) -> dict[str, str]:
    if isinstance(workflow, (str, Path)):
        wf = load_workflow(workflow)
    else:
        wf = workflow
    with engine_session(settings) as engine:
        return engine.run(wf)
