"""Observer interface for agent state snapshots."""

from __future__ import annotations

from typing import Any, Dict, List, Protocol


class AgentEventSink(Protocol):
    """Write-only consumer of agent state.

    Methods are called synchronously after the agent has already applied the
    corresponding state change; return values are ignored and exceptions are
    logged by the agent, never propagated.
    """

    def on_agent_registered(self, agent_id: str, system_prompt: str, messages: List[Dict[str, Any]]) -> None:
        ...

    def on_system_prompt_updated(self, agent_id: str, prompt: str) -> None:
        ...

    def on_message_history_updated(self, agent_id: str, messages: List[Dict[str, Any]]) -> None:
        ...

    def on_llm_request_stored(self, agent_id: str, iteration: int, request: Dict[str, Any]) -> None:
        ...

    def on_llm_response_stored(self, agent_id: str, iteration: int, response: Dict[str, Any]) -> None:
        ...

    def on_error_updated(self, agent_id: str, error: str) -> None:
        ...

    def on_log_appended(self, agent_id: str, entry: str) -> None:
        ...
