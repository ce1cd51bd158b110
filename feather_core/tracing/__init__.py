"""Agent 状态观测：sink 协议、内存事件总线与 JSON trace 记录器。"""

from feather_core.tracing.event_bus import AgentEventBus, AgentInfo, LlmRequestRecord
from feather_core.tracing.recorder import TraceRecorder
from feather_core.tracing.sink import AgentEventSink

__all__ = ["AgentEventBus", "AgentInfo", "AgentEventSink", "LlmRequestRecord", "TraceRecorder"]
