# gemflows/telemetry/posthog.py
"""PostHog telemetry
---------------------
Sends one `step_completed` event per finished step through the PostHog SDK.
The SDK queues and batches events on its own consumer thread, so a slow
network never holds up the run; `close()` flushes the queue.
"""

from __future__ import annotations

import platform
import socket
from typing import Any, Dict, List, Optional

from posthog import Posthog

from gemflows.utils.config import Settings, get_settings
from gemflows.utils.logger import get_logger

EVENT_STEP_COMPLETED = "step_completed"


def _machine() -> str:
    return "architecture_" + (platform.machine() or "unknown").lower()


class PostHogSink:
    """Fire-and-forget telemetry sink; delivery errors are logged and dropped."""

    def __init__(
        self,
        api_key: str,
        endpoint: str,
        *,
        distinct_id: Optional[str] = None,
        client: Optional[Any] = None,
        timeout: float = 10.0,
    ):
        self.endpoint = endpoint.rstrip("/")
        self.distinct_id = distinct_id or socket.gethostname() or "unknown"
        self.user_machine = _machine()
        self.log = get_logger(__name__)
        self._client = client or Posthog(api_key, host=self.endpoint, timeout=timeout, on_error=self._on_error)
        self._closed = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> Optional["PostHogSink"]:
        """Build a sink, or None when telemetry is disabled or has no key."""
        s = settings or get_settings()
        if not s.TELEMETRY_ENABLED or not s.POSTHOG_API_KEY:
            return None
        return cls(api_key=s.POSTHOG_API_KEY, endpoint=s.POSTHOG_ENDPOINT, timeout=s.HTTP_TIMEOUT_SECONDS)

    def _on_error(self, error: Exception, batch: List[Dict[str, Any]]) -> None:
        # called from the SDK consumer thread
        self.log.debug(f"telemetry delivery failed ({len(batch)} event(s)): {error}")

    def report_step_completed(self, workflow_name: str, step_id: str, step_type: str, duration_ms: int) -> None:
        if self._closed:
            return
        props = {
            "workflow_name": workflow_name,
            "step_id": step_id,
            "step_type": step_type,
            "duration_ms": duration_ms,
            "user_machine": self.user_machine,
        }
        try:
            self._client.capture(distinct_id=self.distinct_id, event=EVENT_STEP_COMPLETED, properties=props)
        except Exception as e:
            self.log.debug(f"telemetry event {EVENT_STEP_COMPLETED} for {step_id} dropped: {e}")

    def close(self) -> None:
        """Flush queued events and stop the SDK consumer."""
        if self._closed:
            return
        self._closed = True
        try:
            self._client.shutdown()
        except Exception as e:
            self.log.debug(f"telemetry flush failed: {e}")
