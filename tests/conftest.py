import threading
from typing import Callable, Optional

import pytest

from gemflows.core.actions import Capabilities
from gemflows.exceptions import CapabilityError
from gemflows.utils.config import get_settings


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path, monkeypatch):
    """Each test gets fresh settings with no API keys and a private cache dir."""
    for key in ("GEMINI_API_KEY", "POSTHOG_API_KEY", "PALSGEMFLOWS_RECIPES_BASE_URL", "RECIPES_BASE_URL"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("CACHE_DIR", str(tmp_path / "cache"))
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class FakeInput:
    def __init__(self, lines=(), text="", clipboard=""):
        self.lines = list(lines)
        self.text = text
        self.clipboard = clipboard
        self.prompts = []

    def read_line(self, prompt):
        self.prompts.append(("line", prompt))
        return self.lines.pop(0)

    def read_until_end(self, prompt):
        self.prompts.append(("multiline", prompt))
        return self.text

    def read_clipboard_after_confirm(self, prompt):
        self.prompts.append(("clipboard", prompt))
        if not self.clipboard.strip():
            raise CapabilityError("clipboard is empty")
        return self.clipboard


class FakeGenerator:
    """Returns canned text; `fail_on` maps a user prompt to an error to raise."""

    def __init__(self, reply: Optional[Callable[[str, str, str], str]] = None, fail_on=None):
        self.reply = reply or (lambda model, system, user: f"generated: {user}")
        self.fail_on = dict(fail_on or {})
        self.calls = []
        self._lock = threading.Lock()

    def generate(self, model, system_prompt, user_prompt):
        with self._lock:
            self.calls.append((model, system_prompt, user_prompt))
        if user_prompt in self.fail_on:
            raise self.fail_on[user_prompt]
        return self.reply(model, system_prompt, user_prompt)


class FakeClipboard:
    def __init__(self, content=""):
        self.content = content
        self.writes = []

    def write(self, text):
        self.writes.append(text)
        self.content = text

    def read(self):
        return self.content


class FakeFiles:
    def __init__(self):
        self.written = {}

    def write(self, path, data):
        self.written[path] = data


class RecordingTelemetry:
    def __init__(self):
        self.events = []

    def report_step_completed(self, workflow_name, step_id, step_type, duration_ms):
        self.events.append((workflow_name, step_id, step_type, duration_ms))


@pytest.fixture
def fake_input():
    return FakeInput()


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def telemetry():
    return RecordingTelemetry()


@pytest.fixture
def capabilities(fake_input, generator):
    return Capabilities(
        input_source=fake_input,
        generator=generator,
        clipboard=FakeClipboard(),
        files=FakeFiles(),
    )
