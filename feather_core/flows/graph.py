"""LangGraph construction for the agent run loop.

The graph only wires nodes together; node bodies are bound methods of
``FeatherAgent`` so they can reach one agent's message store and provider.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from langgraph.graph import END, StateGraph
from langgraph.graph.state import CompiledStateGraph

from feather_core.flows.state import RunState

Node = Callable[[RunState], Awaitable[RunState]]


def next_iteration(state: RunState) -> str:
    if state.get("result") is not None:
        return "end"
    if state.get("iteration", 0) >= state.get("max_iterations", 1):
        return "exhausted"
    return "model"


def after_model(state: RunState) -> str:
    if state.get("result") is not None:
        return "end"
    if state.get("function_calls"):
        return "tools"
    return next_iteration(state)


def recursion_limit(max_iterations: int) -> int:
    """Each iteration visits at most two nodes, plus the exhausted node."""

    return 3 * max_iterations + 5


def build_run_graph(call_model: Node, execute_tools: Node, exhausted: Node) -> CompiledStateGraph:
    graph = StateGraph(RunState)
    graph.add_node("call_model", call_model)
    graph.add_node("execute_tools", execute_tools)
    graph.add_node("exhausted", exhausted)
    graph.set_entry_point("call_model")
    graph.add_conditional_edges(
        "call_model",
        after_model,
        {"tools": "execute_tools", "model": "call_model", "exhausted": "exhausted", "end": END},
    )
    graph.add_conditional_edges(
        "execute_tools",
        next_iteration,
        {"model": "call_model", "exhausted": "exhausted", "end": END},
    )
    graph.add_edge("exhausted", END)
    return graph.compile()
