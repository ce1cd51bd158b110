import pytest

from feather_core.agents.feather_agent import AgentConfig, FeatherAgent
from feather_core.agents.ids import AgentIdGenerator
from feather_core.domain.exceptions import ConfigurationError, NetworkError
from feather_core.domain.models import ChatChoice, ChatMessage, ChatResult, ForcedToolChoice
from feather_core.tools.definitions import FINISH_TOOL_NAME, FunctionCall, ToolDef


class FakeProvider:
    """按顺序返回预设回复，并记录每次请求。"""

    name = "fake"

    def __init__(self, *replies):
        self._replies = list(replies)
        self.requests = []

    async def chat(self, req):
        self.requests.append(req)
        reply = self._replies.pop(0) if len(self._replies) > 1 else self._replies[0]
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, ChatResult):
            return reply
        content, calls = reply if isinstance(reply, tuple) else (reply, None)
        msg = ChatMessage(role="assistant", content=content, tool_calls=calls)
        return ChatResult(provider="fake", model=req.model, choices=[ChatChoice(index=0, message=msg)])


def _call(name, args=None, call_id="c1"):
    return FunctionCall(id=call_id, name=name, arguments=args or {})


def _tool(name, handler):
    return ToolDef(name=name, description=name, parameters={"type": "object", "properties": {}}, handler=handler)


async def _add(args):
    return {"result": args["a"] + args["b"]}


async def _boom(args):
    raise RuntimeError("kaboom")


def _agent(provider, tools=None, **cfg):
    cfg.setdefault("system_prompt", "You are a test agent.")
    cfg.setdefault("model", "test-model")
    return FeatherAgent(AgentConfig(**cfg), provider_client=provider, tools=tools)


# ---- construction -----------------------------------------------------


def test_cognition_and_structured_rejected():
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), cognition=True, structured_output={"type": "object"})


@pytest.mark.parametrize("count", [0, 2])
def test_force_tool_requires_exactly_one_tool(count):
    tools = [_tool(f"t{i}", _add) for i in range(count)]
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), tools=tools, force_tool=True)


def test_force_tool_with_chain_rejected():
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), tools=[_tool("add", _add)], force_tool=True, chain_run=True)


def test_duplicate_tool_names_rejected():
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), tools=[_tool("add", _add), _tool("add", _add)])


def test_invalid_iteration_limits_rejected():
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), max_iterations=0)
    with pytest.raises(ConfigurationError):
        _agent(FakeProvider("x"), chain_run=True, max_chain_iterations=0)


def test_chain_mode_appends_finish_tool_once():
    agent = _agent(FakeProvider("x"), tools=[_tool("add", _add)], chain_run=True)
    assert [t.name for t in agent.tools] == ["add", FINISH_TOOL_NAME]


def test_agent_ids():
    gen = AgentIdGenerator(prefix="bot")
    a = FeatherAgent(AgentConfig(system_prompt="s", model="m"), provider_client=FakeProvider("x"), id_generator=gen)
    b = FeatherAgent(AgentConfig(system_prompt="s", model="m"), provider_client=FakeProvider("x"), id_generator=gen)
    assert (a.agent_id, b.agent_id) == ("bot-1", "bot-2")
    assert _agent(FakeProvider("x"), agent_id="fixed").agent_id == "fixed"
    assert _agent(FakeProvider("x")).agent_id.startswith("agent-")


# ---- final output -----------------------------------------------------


@pytest.mark.asyncio
async def test_plain_answer():
    provider = FakeProvider("  hello there  ")
    agent = _agent(provider)
    res = await agent.run("hi")
    assert res.success
    assert res.output == "hello there"
    assert len(provider.requests) == 1
    roles = [m.role for m in agent.get_messages()]
    assert roles == ["system", "user", "assistant"]


@pytest.mark.asyncio
async def test_cognition_returns_speak_segment():
    agent = _agent(FakeProvider("<think>capital?</think><plan>answer</plan><speak>Paris</speak>"), cognition=True)
    res = await agent.run("Capital of France?")
    assert res.output == "Paris"
    assert "<speak>" in agent.get_messages()[0].content


SCHEMA = {
    "name": "answer",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {"answer": {"type": "string"}, "confidence": {"type": "number"}},
        "required": ["answer", "confidence"],
    },
}


@pytest.mark.asyncio
async def test_structured_output_parsed():
    provider = FakeProvider('{"answer":"Paris","confidence":0.9}')
    res = await _agent(provider, structured_output=SCHEMA).run("q")
    assert res.success
    assert res.output == {"answer": "Paris", "confidence": 0.9}
    assert provider.requests[0].response_format.name == "answer"


@pytest.mark.asyncio
async def test_structured_output_malformed_falls_back():
    res = await _agent(FakeProvider(' {"answer": Paris '), structured_output=SCHEMA).run("q")
    assert res.success
    assert res.output == '{"answer": Paris'


@pytest.mark.asyncio
async def test_dynamic_variables_rendered_each_iteration():
    values = iter(["one", "two"])
    provider = FakeProvider(("", [_call("add", {"a": 1, "b": 2})]), "done")
    agent = _agent(
        provider,
        tools=[_tool("add", _add)],
        system_prompt="Counter: {{counter}}",
        dynamic_variables={"counter": lambda: next(values)},
    )
    await agent.run("go")
    assert provider.requests[0].messages[0].content == "Counter: one"
    assert provider.requests[1].messages[0].content == "Counter: two"


@pytest.mark.asyncio
async def test_messages_carry_agent_id_metadata():
    provider = FakeProvider("ok")
    agent = _agent(provider, agent_id="meta-agent")
    await agent.run("hi")
    assert all(m.meta["agent_id"] == "meta-agent" for m in provider.requests[0].messages)
    assert all("agent_id" not in m.meta for m in agent.get_messages())


# ---- tools ------------------------------------------------------------


@pytest.mark.asyncio
async def test_tool_results_appended_and_loop_continues():
    provider = FakeProvider(
        ("", [_call("add", {"a": 1, "b": 2}, "c1"), _call("boom", {}, "c2")]),
        "The sum is 3.",
    )
    agent = _agent(provider, tools=[_tool("add", _add), _tool("boom", _boom)])
    res = await agent.run("add")
    assert res.success
    assert res.output == "The sum is 3."
    assert len(provider.requests) == 2
    tool_turns = [m.content for m in agent.get_messages() if m.role == "user"][1:]
    assert len(tool_turns) == 2
    assert '<result>{"result": 3}</result>' in tool_turns[0]
    assert "Tool 'boom' errored: kaboom" in tool_turns[1]
    assert provider.requests[0].tool_choice == "auto"


@pytest.mark.asyncio
async def test_unknown_tool_is_transcript_entry():
    provider = FakeProvider(("", [_call("ghost")]), "sorry")
    agent = _agent(provider, tools=[_tool("add", _add)])
    res = await agent.run("x")
    assert res.success
    assert any("Tool 'ghost' not found" in m.text_content() for m in agent.get_messages())


@pytest.mark.asyncio
async def test_manual_tool_handling_returns_pending_calls():
    invoked = []

    async def record(args):
        invoked.append(args)

    calls = [_call("record", {"v": 1})]
    agent = _agent(FakeProvider((" <speak>calling</speak> ", calls)), tools=[_tool("record", record)], auto_execute_tools=False, cognition=True)
    res = await agent.run("x")
    assert res.success
    assert res.function_calls == calls
    assert res.output == "calling"
    assert invoked == []


@pytest.mark.asyncio
async def test_force_tool_returns_tool_value():
    provider = FakeProvider(("", [_call("add", {"a": 2, "b": 5})]))
    agent = _agent(provider, tools=[_tool("add", _add)], force_tool=True)
    res = await agent.run("x")
    assert res.success
    assert res.output == {"result": 7}
    assert len(provider.requests) == 1
    assert provider.requests[0].tool_choice == ForcedToolChoice("add")


@pytest.mark.asyncio
async def test_force_tool_failure_text():
    agent = _agent(FakeProvider(("", [_call("boom")])), tools=[_tool("boom", _boom)], force_tool=True)
    res = await agent.run("x")
    assert res.success
    assert res.output == "Tool 'boom' errored: kaboom"


# ---- iteration bounds ---------------------------------------------------


@pytest.mark.asyncio
async def test_max_iterations_failure():
    provider = FakeProvider(("", [_call("add", {"a": 1, "b": 1})]))
    agent = _agent(provider, tools=[_tool("add", _add)], max_iterations=3)
    res = await agent.run("loop")
    assert not res.success
    assert res.error == "Max iterations reached"
    assert res.error_code == "MAX_ITERATIONS"
    assert res.output == ""
    assert len(provider.requests) == 3


@pytest.mark.asyncio
async def test_default_bound_is_five():
    provider = FakeProvider(("", [_call("add", {"a": 1, "b": 1})]))
    res = await _agent(provider, tools=[_tool("add", _add)]).run("loop")
    assert not res.success
    assert len(provider.requests) == 5


@pytest.mark.asyncio
async def test_chain_without_finish_forces_finalize():
    provider = FakeProvider("thinking 1", "thinking 2", "  final words  ")
    agent = _agent(provider, chain_run=True, max_chain_iterations=3)
    res = await agent.run("go")
    assert res.success
    assert res.output == "final words"
    assert len(provider.requests) == 3
    assert [r.tool_choice for r in provider.requests] == ["auto", "auto", ForcedToolChoice(FINISH_TOOL_NAME)]
    assert "FINAL TURN" in provider.requests[2].messages[0].content
    assert "FINAL TURN" not in provider.requests[1].messages[0].content


@pytest.mark.asyncio
async def test_chain_exhausted_after_tool_calls_uses_last_content():
    provider = FakeProvider(("step", [_call("add", {"a": 1, "b": 1})]))
    agent = _agent(provider, tools=[_tool("add", _add)], chain_run=True, max_chain_iterations=2)
    res = await agent.run("go")
    assert res.success
    assert res.output == "step"
    assert len(provider.requests) == 2


@pytest.mark.asyncio
async def test_chain_finish_ends_run():
    provider = FakeProvider(
        ("", [_call("add", {"a": 1, "b": 2})]),
        ("", [_call("add", {"a": 3, "b": 3}, "c2"), _call(FINISH_TOOL_NAME, {"output": "It is 3."}, "c3")]),
    )
    agent = _agent(provider, tools=[_tool("add", _add)], chain_run=True, max_chain_iterations=5)
    res = await agent.run("go")
    assert res.success
    assert res.output == "It is 3."
    assert len(provider.requests) == 2


# ---- endpoint failures --------------------------------------------------


@pytest.mark.asyncio
async def test_endpoint_error():
    agent = _agent(FakeProvider(NetworkError(code="NETWORK_ERROR", message="down")))
    res = await agent.run("x")
    assert not res.success
    assert res.error_code == "ENDPOINT_ERROR"
    assert res.output == ""
    assert res.error == "down"
    # 失败不回滚：用户消息仍在历史中
    assert [m.role for m in agent.get_messages()] == ["system", "user"]


@pytest.mark.asyncio
async def test_empty_choices():
    res = await _agent(FakeProvider(ChatResult(provider="fake", model="m", choices=[]))).run("x")
    assert not res.success
    assert res.error_code == "EMPTY_RESPONSE"
    assert res.output == ""
    assert res.error == "No response from model"


@pytest.mark.asyncio
async def test_choice_without_message():
    result = ChatResult(provider="fake", model="m", choices=[ChatChoice(index=0, message=None)])
    res = await _agent(FakeProvider(result)).run("x")
    assert not res.success
    assert res.error_code == "MISSING_MESSAGE"
    assert res.output == ""
    assert res.error == "No message in model choice"


# ---- observability ------------------------------------------------------


class ExplodingSink:
    def __getattr__(self, name):
        def _raise(*args):
            raise RuntimeError(f"sink {name} failed")

        return _raise


@pytest.mark.asyncio
async def test_sink_failures_do_not_break_run():
    agent = FeatherAgent(
        AgentConfig(system_prompt="s", model="m"),
        provider_client=FakeProvider("fine"),
        event_sink=ExplodingSink(),
    )
    res = await agent.run("x")
    assert res.success
    assert res.output == "fine"


@pytest.mark.asyncio
async def test_caller_side_messages():
    provider = FakeProvider("ack")
    agent = _agent(provider)
    agent.add_user_message("look", images=["https://x/cat.png"])
    agent.add_assistant_message("earlier answer")
    await agent.run()
    sent = provider.requests[0].messages
    assert [m.role for m in sent] == ["system", "user", "assistant"]
    assert sent[1].content[1].url == "https://x/cat.png"
