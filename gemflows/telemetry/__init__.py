"""Telemetry sinks for step completion events."""

from typing import Protocol


class TelemetrySink(Protocol):
    def report_step_completed(self, workflow_name: str, step_id: str, step_type: str, duration_ms: int) -> None: ...


__all__ = ["TelemetrySink"]
