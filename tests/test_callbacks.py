"""Tests for BaseCallback dispatch and the structured LoggingCallback."""

import json
import logging

import pytest

from promptchain.callbacks import BaseCallback, ChainCallback, LoggingCallback


class _Counting(BaseCallback):
    def __init__(self):
        self.failed = []

    async def on_node_failed(self, data, **kwargs):
        self.failed.append(data["node_id"])


@pytest.mark.asyncio
async def test_base_callback_dispatches_known_events():
    cb = _Counting()
    await cb("node_failed", {"node_id": "a"})
    await cb("node_started", {"node_id": "a"})
    await cb("unknown_event", {"node_id": "b"})
    assert cb.failed == ["a"]


def test_base_callback_satisfies_protocol():
    assert isinstance(LoggingCallback(), ChainCallback)


@pytest.mark.asyncio
async def test_logging_callback_emits_json_lines(caplog):
    cb = LoggingCallback()
    with caplog.at_level(logging.INFO, logger="promptchain.audit"):
        await cb("run_started", {"run_id": "r1", "chain_id": "c1"})
        await cb("node_succeeded", {"run_id": "r1", "node_id": "n", "output": {"big": "x" * 500}})

    lines = [json.loads(r.getMessage()) for r in caplog.records if r.name == "promptchain.audit"]
    assert lines[0]["event"] == "run_started"
    assert lines[0]["chain_id"] == "c1"
    assert "ts" in lines[0]
    assert lines[1]["output_type"] == "dict"
    assert "output" not in lines[1]


@pytest.mark.asyncio
async def test_logging_callback_failure_levels(caplog):
    cb = LoggingCallback()
    with caplog.at_level(logging.INFO, logger="promptchain.audit"):
        await cb("node_failed", {"node_id": "n", "error": "e" * 500, "kind": "timeout"})
        await cb("run_completed", {"run_id": "r", "status": "failed"})
        await cb("run_completed", {"run_id": "r", "status": "succeeded"})

    records = [r for r in caplog.records if r.name == "promptchain.audit"]
    assert [r.levelno for r in records] == [logging.ERROR, logging.ERROR, logging.INFO]
    assert len(json.loads(records[0].getMessage())["error"]) == 200


@pytest.mark.asyncio
async def test_logging_callback_through_engine(make_engine, hello_chain, caplog):
    with caplog.at_level(logging.INFO, logger="promptchain.audit"):
        await make_engine(callbacks=[LoggingCallback()]).run(hello_chain)
    events = [
        json.loads(r.getMessage())["event"]
        for r in caplog.records if r.name == "promptchain.audit"
    ]
    assert events[0] == "run_started"
    assert events[-1] == "run_completed"
    assert events.count("node_succeeded") == 3
