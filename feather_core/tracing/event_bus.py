"""In-memory registry of agent snapshots with listener fan-out.

An ``AgentEventBus`` is created by whoever wants to watch agents (a debug UI,
a test) and handed to each ``FeatherAgent`` as its event sink. Listeners are
plain callables ``listener(event_name, payload)``.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from feather_core.infrastructure.logging.logger import logger

Listener = Callable[[str, Dict[str, Any]], None]


@dataclass
class LlmRequestRecord:
    iteration: int
    request: Dict[str, Any]
    response: Optional[Dict[str, Any]] = None


@dataclass
class AgentInfo:
    id: str
    system_prompt: str = ""
    chat_history: List[Dict[str, Any]] = field(default_factory=list)
    last_error: Optional[str] = None
    logs: List[str] = field(default_factory=list)
    llm_requests: List[LlmRequestRecord] = field(default_factory=list)
    last_active: float = field(default_factory=time.time)


class AgentEventBus:
    """Keeps the latest state of every registered agent."""

    def __init__(self) -> None:
        self._agents: Dict[str, AgentInfo] = {}
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def get_agent(self, agent_id: str) -> Optional[AgentInfo]:
        return self._agents.get(agent_id)

    def all_agents(self) -> List[AgentInfo]:
        return list(self._agents.values())

    def active_agents(self, within_seconds: float = 3600.0) -> List[AgentInfo]:
        cutoff = time.time() - within_seconds
        return [a for a in self._agents.values() if a.last_active > cutoff]

    # ---- sink interface ------------------------------------------------

    def on_agent_registered(self, agent_id: str, system_prompt: str, messages: List[Dict[str, Any]]) -> None:
        info = AgentInfo(id=agent_id, system_prompt=system_prompt, chat_history=list(messages))
        existing = self._agents.get(agent_id)
        if existing:
            # re-registration keeps what was already collected
            info.chat_history = existing.chat_history
            info.llm_requests = existing.llm_requests
            info.logs = existing.logs
        self._agents[agent_id] = info
        self._emit("agent_registered", {"agent_id": agent_id})

    def on_system_prompt_updated(self, agent_id: str, prompt: str) -> None:
        info = self._touch(agent_id)
        if info:
            info.system_prompt = prompt
            self._emit("system_prompt_updated", {"agent_id": agent_id, "prompt": prompt})

    def on_message_history_updated(self, agent_id: str, messages: List[Dict[str, Any]]) -> None:
        info = self._touch(agent_id)
        if info:
            info.chat_history = list(messages)
            self._emit("chat_history_updated", {"agent_id": agent_id, "messages": info.chat_history})

    def on_llm_request_stored(self, agent_id: str, iteration: int, request: Dict[str, Any]) -> None:
        info = self._touch(agent_id)
        if info:
            info.llm_requests.append(LlmRequestRecord(iteration=iteration, request=request))
            self._emit("llm_requests_updated", {"agent_id": agent_id, "requests": info.llm_requests})

    def on_llm_response_stored(self, agent_id: str, iteration: int, response: Dict[str, Any]) -> None:
        info = self._agents.get(agent_id)
        if not info:
            return
        record = next((r for r in info.llm_requests if r.iteration == iteration), None)
        if record:
            record.response = response
            self._emit("llm_requests_updated", {"agent_id": agent_id, "requests": info.llm_requests})

    def on_error_updated(self, agent_id: str, error: str) -> None:
        info = self._agents.get(agent_id)
        if info:
            info.last_error = error
            self._emit("agent_error", {"agent_id": agent_id, "error": error})

    def on_log_appended(self, agent_id: str, entry: str) -> None:
        info = self._agents.get(agent_id)
        if info:
            info.logs.append(entry)
            self._emit("agent_log_appended", {"agent_id": agent_id, "entry": entry})

    # ---- helpers -------------------------------------------------------

    def _touch(self, agent_id: str) -> Optional[AgentInfo]:
        info = self._agents.get(agent_id)
        if info:
            info.last_active = time.time()
        return info

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, payload)
            except Exception:  # noqa: BLE001 - one bad listener must not starve the rest
                logger.warning("Event listener failed", exc_info=True, extra={"extra": {"event": event}})
