import json

import pytest

from feather_core.agents.feather_agent import AgentConfig, FeatherAgent
from feather_core.domain.models import ChatChoice, ChatMessage, ChatResult
from feather_core.tracing import AgentEventBus, TraceRecorder


class FakeProvider:
    name = "fake"

    async def chat(self, req):
        msg = ChatMessage(role="assistant", content="pong")
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)], raw={"id": "r1"})


def test_bus_pairs_response_with_request():
    bus = AgentEventBus()
    bus.on_agent_registered("a1", "sys", [])
    bus.on_llm_request_stored("a1", 1, {"model": "m"})
    bus.on_llm_request_stored("a1", 2, {"model": "m"})
    bus.on_llm_response_stored("a1", 2, {"id": "r2"})
    records = bus.get_agent("a1").llm_requests
    assert records[0].response is None
    assert records[1].response == {"id": "r2"}


def test_bus_listeners_and_unsubscribe():
    bus = AgentEventBus()
    events = []
    unsubscribe = bus.subscribe(lambda name, payload: events.append(name))
    bus.on_agent_registered("a1", "sys", [])
    bus.on_error_updated("a1", "bad")
    unsubscribe()
    bus.on_log_appended("a1", "entry")
    assert events == ["agent_registered", "agent_error"]
    info = bus.get_agent("a1")
    assert info.last_error == "bad"
    assert info.logs == ["entry"]


def test_bus_broken_listener_does_not_stop_others():
    bus = AgentEventBus()
    seen = []

    def broken(name, payload):
        raise RuntimeError("nope")

    bus.subscribe(broken)
    bus.subscribe(lambda name, payload: seen.append(name))
    bus.on_agent_registered("a1", "sys", [])
    assert seen == ["agent_registered"]


def test_bus_active_agents():
    bus = AgentEventBus()
    bus.on_agent_registered("a1", "sys", [])
    bus.on_agent_registered("a2", "sys", [])
    bus.get_agent("a2").last_active -= 7200
    assert [a.id for a in bus.active_agents(within_seconds=3600)] == ["a1"]
    assert len(bus.all_agents()) == 2


def test_bus_ignores_unknown_agent():
    bus = AgentEventBus()
    bus.on_message_history_updated("ghost", [])
    bus.on_llm_response_stored("ghost", 1, {})
    assert bus.get_agent("ghost") is None


@pytest.mark.asyncio
async def test_agent_reports_to_bus():
    bus = AgentEventBus()
    agent = FeatherAgent(
        AgentConfig(system_prompt="base", model="m", agent_id="watched"),
        provider_client=FakeProvider(),
        event_sink=bus,
    )
    await agent.run("ping")
    info = bus.get_agent("watched")
    assert [m["role"] for m in info.chat_history] == ["system", "user", "assistant"]
    assert info.system_prompt == "base"
    assert len(info.llm_requests) == 1
    assert info.llm_requests[0].iteration == 1
    assert info.llm_requests[0].request["model"] == "m"
    assert info.llm_requests[0].response == {"id": "r1"}
    assert any("Agent created" in entry for entry in info.logs)


@pytest.mark.asyncio
async def test_trace_recorder_writes_json(tmp_path):
    recorder = TraceRecorder(trace_dir=str(tmp_path), max_text=10)
    agent = FeatherAgent(
        AgentConfig(system_prompt="base", model="m", agent_id="traced"),
        provider_client=FakeProvider(),
        event_sink=recorder,
    )
    await agent.run("a very long user message")
    data = json.loads((tmp_path / "traced.json").read_text(encoding="utf-8"))
    assert data["agent_id"] == "traced"
    assert data["llm_requests"][0]["response"] == {"id": "r1"}
    assert data["messages"][1]["content"] == "a very lon..."
    assert data["updated_at"] is not None


class ScriptedProvider:
    name = "fake"

    def __init__(self, *replies):
        self._replies = list(replies)

    async def chat(self, req):
        msg = ChatMessage(role="assistant", content=self._replies.pop(0))
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)], raw={"reply": msg.content})


class FanOut:
    def __init__(self, *sinks):
        self._sinks = sinks

    def __getattr__(self, name):
        def _call(*args):
            for sink in self._sinks:
                getattr(sink, name)(*args)

        return _call


@pytest.mark.asyncio
async def test_requests_paired_across_runs(tmp_path):
    bus = AgentEventBus()
    recorder = TraceRecorder(trace_dir=str(tmp_path))
    agent = FeatherAgent(
        AgentConfig(system_prompt="base", model="m", agent_id="twice"),
        provider_client=ScriptedProvider("first", "second"),
        event_sink=FanOut(bus, recorder),
    )
    await agent.run("one")
    await agent.run("two")

    records = bus.get_agent("twice").llm_requests
    assert [(r.iteration, r.response["reply"]) for r in records] == [(1, "first"), (2, "second")]
    traced = recorder.get("twice")["llm_requests"]
    assert [(r["iteration"], r["response"]["reply"]) for r in traced] == [(1, "first"), (2, "second")]
