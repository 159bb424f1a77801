import json
import logging

from gemflows.utils.logger import (
    ContextAdapter,
    attach_file_logger,
    bind,
    detach_file_logger,
    get_logger,
    log_with_context,
    unbind,
)


def _read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def test_file_logger_writes_json_with_context(tmp_path):
    path = tmp_path / "logs" / "run.jsonl"
    handler = attach_file_logger(path, level=logging.INFO)
    bind(run_id="r1", recipe="blog_post")
    try:
        log = get_logger("gemflows.test")
        step_log = log_with_context(log_with_context(log, workflow="blog"), step_id="topic")
        step_log.info("==> step topic (input)")
        log.info("plain line")
    finally:
        unbind("run_id", "recipe")
        detach_file_logger(handler)

    first, second = _read_lines(path)
    assert first["msg"] == "==> step topic (input)"
    assert first["level"] == "INFO"
    assert first["run_id"] == "r1"
    assert first["workflow"] == "blog"
    assert first["step_id"] == "topic"
    assert second["recipe"] == "blog_post"
    assert "step_id" not in second


def test_log_with_context_does_not_mutate_parent():
    log = get_logger("gemflows.test")
    child = log_with_context(log, step_id="a")
    assert isinstance(child, ContextAdapter)
    assert child.extra == {"step_id": "a"}
    assert log.extra == {}


def test_log_with_context_accepts_plain_logger():
    child = log_with_context(logging.getLogger("gemflows.plain"), group="g")
    assert child.extra == {"group": "g"}
