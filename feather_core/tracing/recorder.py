"""Agent trace 记录器。

每个 agent 对应一个 JSON 文件，记录系统提示词、消息历史、每轮模型请求/响应、
错误与日志，便于离线审计。实现 AgentEventSink 接口，可直接作为 event_sink 传入。
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from feather_core.config.settings import settings


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class TraceRecorder:
    """把 agent 状态快照写入 ``<trace_dir>/<agent_id>.json``。"""

    def __init__(self, trace_dir: Optional[str] = None, max_text: int = 2000):
        self.root = Path(trace_dir or settings.trace_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.max_text = max_text
        self._traces: Dict[str, Dict[str, Any]] = {}

    def path_for(self, agent_id: str) -> Path:
        return self.root / f"{agent_id}.json"

    def get(self, agent_id: str) -> Optional[Dict[str, Any]]:
        return self._traces.get(agent_id)

    def _flush(self, agent_id: str) -> None:
        data = self._traces[agent_id]
        data["updated_at"] = _utcnow()
        self.path_for(agent_id).write_text(
            json.dumps(data, ensure_ascii=False, indent=2, default=str), encoding="utf-8"
        )

    def _ensure(self, agent_id: str) -> Dict[str, Any]:
        if agent_id not in self._traces:
            self._traces[agent_id] = {
                "agent_id": agent_id,
                "started_at": _utcnow(),
                "updated_at": None,
                "system_prompt": "",
                "messages": [],
                "llm_requests": [],
                "last_error": None,
                "logs": [],
            }
        return self._traces[agent_id]

    def on_agent_registered(self, agent_id: str, system_prompt: str, messages: List[Dict[str, Any]]) -> None:
        data = self._ensure(agent_id)
        data["system_prompt"] = system_prompt
        data["messages"] = self._trim(messages)
        self._flush(agent_id)

    def on_system_prompt_updated(self, agent_id: str, prompt: str) -> None:
        self._ensure(agent_id)["system_prompt"] = prompt
        self._flush(agent_id)

    def on_message_history_updated(self, agent_id: str, messages: List[Dict[str, Any]]) -> None:
        self._ensure(agent_id)["messages"] = self._trim(messages)
        self._flush(agent_id)

    def on_llm_request_stored(self, agent_id: str, iteration: int, request: Dict[str, Any]) -> None:
        self._ensure(agent_id)["llm_requests"].append(
            {"iteration": iteration, "timestamp": _utcnow(), "request": self._trim(request), "response": None}
        )
        self._flush(agent_id)

    def on_llm_response_stored(self, agent_id: str, iteration: int, response: Dict[str, Any]) -> None:
        data = self._ensure(agent_id)
        for entry in data["llm_requests"]:
            if entry["iteration"] == iteration:
                entry["response"] = self._trim(response)
                break
        self._flush(agent_id)

    def on_error_updated(self, agent_id: str, error: str) -> None:
        self._ensure(agent_id)["last_error"] = error
        self._flush(agent_id)

    def on_log_appended(self, agent_id: str, entry: str) -> None:
        self._ensure(agent_id)["logs"].append(entry)
        self._flush(agent_id)

    def _trim(self, value: Any) -> Any:
        """递归截断过长字符串，避免 trace 文件膨胀。"""

        if isinstance(value, str) and len(value) > self.max_text:
            return value[: self.max_text] + "..."
        if isinstance(value, dict):
            return {k: self._trim(v) for k, v in value.items()}
        if isinstance(value, list):
            return [self._trim(v) for v in value]
        return value
